"""memora CLI: study queue, grading, migration and stats commands."""

import json
import logging
import sys
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated, Any, NoReturn

import typer

from memora.application.config import AppConfig, resolve_config
from memora.application.queue_builder import QueueLimits
from memora.application.review_service import ReviewService
from memora.application.scheduler import Scheduler
from memora.domain.cards.models import Grade
from memora.domain.errors import (
    DeserializationError,
    MemoraError,
    TemporalOrderError,
    UnknownCardError,
    ValidationError,
)
from memora.infrastructure.adapters.json_repository import JsonCollectionRepository

# ---------------------------------------------------------------------------
# Root app
# ---------------------------------------------------------------------------

app = typer.Typer(
    help="memora: spaced-repetition scheduling for your card collection.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

config_app = typer.Typer(help="Manage memora configuration.")
app.add_typer(config_app, name="config")

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s:%(name)s:%(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def humanize_error(error: MemoraError) -> str:
    """Turn a core error into a one-line message for the terminal."""
    if isinstance(error, UnknownCardError):
        return f"Unknown card: {error.value}. Import it first with 'memora import'."
    if isinstance(error, TemporalOrderError):
        return f"Review time is before the card's last review ({error.value})."
    if isinstance(error, DeserializationError):
        where = f" (field: {error.field})" if error.field else ""
        return f"Could not read stored data{where}: {error}"
    if isinstance(error, ValidationError):
        where = f" (field: {error.field})" if error.field else ""
        return f"Invalid value{where}: {error}"
    return str(error)


def _fail(error: MemoraError) -> NoReturn:
    typer.secho(humanize_error(error), fg="red", err=True)
    raise typer.Exit(1)


def _parse_time(value: str | None) -> datetime | None:
    if value is None:
        return None
    try:
        moment = datetime.fromisoformat(value)
    except ValueError:
        raise typer.BadParameter(f"Not an ISO-8601 timestamp: {value}") from None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def _config(ctx: typer.Context) -> AppConfig:
    obj = ctx.ensure_object(dict)
    return resolve_config({"collection_path": obj.get("collection_path")})


def _service(ctx: typer.Context) -> ReviewService:
    config = _config(ctx)
    repository = JsonCollectionRepository(config.collection_path)
    return ReviewService(
        repository.load(),
        scheduler=Scheduler(config.scheduler_parameters()),
        repository=repository,
        limits=config.queue_limits(),
        retention_threshold=config.retention_threshold,
    )


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Grade):
        return value.name.lower()
    if hasattr(value, "value"):
        return value.value
    return value


def _dump(data: dict[str, Any]) -> str:
    return json.dumps({k: _jsonable(v) for k, v in data.items()}, indent=2)


# ---------------------------------------------------------------------------
# Global callback
# ---------------------------------------------------------------------------


@app.callback()
def main_callback(
    ctx: typer.Context,
    verbose: Annotated[
        int,
        typer.Option(
            "--verbose", "-v", count=True, help="Show debug logging (scheduling details)."
        ),
    ] = 0,
    collection: Annotated[
        Path | None,
        typer.Option("--collection", "-c", help="Collection file. Defaults to config."),
    ] = None,
):
    """Global settings for memora."""
    ctx.ensure_object(dict)
    ctx.obj["collection_path"] = collection
    logging.getLogger("memora").setLevel(logging.DEBUG if verbose else logging.INFO)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command("import")
def import_cards(
    ctx: typer.Context,
    keys: Annotated[
        list[str] | None, typer.Argument(help="Card keys. Generates one key if omitted.")
    ] = None,
):
    """[bold green]Register[/bold green] new cards."""
    try:
        service = _service(ctx)
        for key in keys or [None]:
            card = service.import_card(key)
            typer.echo(card.key)
    except MemoraError as e:
        _fail(e)


@app.command()
def grade(
    ctx: typer.Context,
    key: Annotated[str, typer.Argument(help="Card key.")],
    grade: Annotated[str, typer.Argument(help="again, hard, good or easy (or 1-4).")],
    at: Annotated[
        str | None, typer.Option("--at", help="Review time (ISO-8601). Defaults to now.")
    ] = None,
    time_ms: Annotated[int, typer.Option("--time-ms", help="Answer time in ms.")] = 0,
):
    """Grade a review and print the card's next due date."""
    try:
        service = _service(ctx)
        card = service.grade_review(key, Grade.parse(grade), _parse_time(at), time_ms)
    except MemoraError as e:
        _fail(e)

    typer.echo(
        f"{card.key}: {card.state.value}, due {card.due_at.isoformat()} "
        f"(S={card.stability:.2f}, D={card.difficulty:.2f})"
    )


@app.command()
def queue(
    ctx: typer.Context,
    max_due: Annotated[int | None, typer.Option(help="Cap on due cards.")] = None,
    max_new: Annotated[int | None, typer.Option(help="Cap on new cards.")] = None,
    interleave: Annotated[
        int | None, typer.Option(help="Insert one new card after every N due cards.")
    ] = None,
    at: Annotated[str | None, typer.Option("--at", help="Reference time (ISO-8601).")] = None,
):
    """Print today's study queue, one key per line."""
    try:
        service = _service(ctx)
    except MemoraError as e:
        _fail(e)

    defaults = service.limits
    limits = QueueLimits(
        max_due=defaults.max_due if max_due is None else max_due,
        max_new=defaults.max_new if max_new is None else max_new,
        interleave_every=defaults.interleave_every if interleave is None else interleave,
    )
    keys = service.get_study_queue(_parse_time(at), limits)
    if not keys:
        typer.secho("Nothing to study.", fg="yellow")
        return
    for key in keys:
        typer.echo(key)


@app.command()
def preview(
    ctx: typer.Context,
    key: Annotated[str, typer.Argument(help="Card key.")],
    at: Annotated[str | None, typer.Option("--at", help="Reference time (ISO-8601).")] = None,
):
    """Show the next interval for every grade without applying any."""
    try:
        options = _service(ctx).preview(key, _parse_time(at))
    except MemoraError as e:
        _fail(e)

    for grade_, option in options.items():
        typer.echo(f"{grade_.name.lower():>5}: {option.label:>6}  ({option.state.state.value})")


@app.command()
def stats(
    ctx: typer.Context,
    at: Annotated[str | None, typer.Option("--at", help="Reference time (ISO-8601).")] = None,
):
    """Print collection statistics as JSON."""
    from memora.application.stats import CollectionStatsService

    config = _config(ctx)
    service = CollectionStatsService(JsonCollectionRepository(config.collection_path))
    now = _parse_time(at) or datetime.now(timezone.utc)
    try:
        summary = service.get_summary(now)
    except MemoraError as e:
        _fail(e)
    typer.echo(_dump(asdict(summary)))


@app.command()
def weak(
    ctx: typer.Context,
    stability: Annotated[float, typer.Option(help="Stability below this is weak.")] = 7.0,
    lapses: Annotated[int, typer.Option(help="This many lapses is weak.")] = 1,
    retrievability: Annotated[
        float, typer.Option(help="Retrievability below this is weak.")
    ] = 0.7,
    at: Annotated[str | None, typer.Option("--at", help="Reference time (ISO-8601).")] = None,
):
    """List weak cards, weakest first."""
    from memora.application.stats import CollectionStatsService

    config = _config(ctx)
    service = CollectionStatsService(JsonCollectionRepository(config.collection_path))
    now = _parse_time(at) or datetime.now(timezone.utc)
    try:
        cards = service.get_weak_cards(now, stability, lapses, retrievability)
    except MemoraError as e:
        _fail(e)

    for card in cards:
        typer.echo(
            f"{card.key}  R={card.current_retrievability:.2f}  "
            f"S={card.stability:.2f}  lapses={card.lapse_count}"
        )


@app.command()
def migrate(
    ctx: typer.Context,
    source: Annotated[Path, typer.Argument(help="JSON file with a list of legacy SM-2 cards.")],
    dry_run: Annotated[
        bool, typer.Option("--dry-run", help="Report without saving.")
    ] = False,
):
    """Import legacy SM-2 cards into the collection."""
    from memora.infrastructure.adapters.persisted import migrate_legacy

    try:
        records = json.loads(source.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        typer.secho(f"Could not read {source}: {e}", fg="red", err=True)
        raise typer.Exit(1) from e
    if isinstance(records, dict):
        records = records.get("cards", [])

    try:
        service = _service(ctx)
        migrated = [migrate_legacy(record) for record in records]
    except MemoraError as e:
        _fail(e)

    if dry_run:
        added = [card for card in migrated if card.key not in service.collection]
        skipped = len(migrated) - len(added)
        typer.echo(f"[DRY RUN] Would add {len(added)} card(s), skip {skipped} existing.")
        return

    added = service.register(migrated)
    skipped = len(migrated) - len(added)
    logger.info(f"Migrated {len(added)} legacy card(s) from {source}")
    typer.secho(f"Added {len(added)} card(s), skipped {skipped} existing.", fg="green")


@app.command()
def remove(
    ctx: typer.Context,
    key: Annotated[str, typer.Argument(help="Card key.")],
):
    """Delete a card from the collection."""
    try:
        _service(ctx).remove_card(key)
    except MemoraError as e:
        _fail(e)
    typer.echo(f"Removed {key}")


# ---------------------------------------------------------------------------
# Config subgroup
# ---------------------------------------------------------------------------


@config_app.command("show")
def config_show():
    """Display final resolved configuration."""
    config = resolve_config()
    d = {k: str(v) if isinstance(v, Path) else v for k, v in config.model_dump().items()}
    typer.echo(json.dumps(d, indent=2))


def main():
    app()


if __name__ == "__main__":
    main()
