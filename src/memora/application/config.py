from datetime import timedelta
from pathlib import Path
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from memora.application.queue_builder import QueueLimits
from memora.application.scheduler import SchedulerParameters
from memora.domain.constants import (
    DEFAULT_DESIRED_RETENTION,
    DEFAULT_LEARNING_STEPS_MINUTES,
    DEFAULT_MAX_NEW_PER_DAY,
    DEFAULT_MAX_REVIEW_PER_DAY,
    DEFAULT_MAXIMUM_INTERVAL,
    DEFAULT_RELEARNING_STEP_MINUTES,
    DEFAULT_WEIGHTS,
    RETENTION_THRESHOLD,
    WEIGHT_COUNT,
)


def config_files() -> list[Path]:
    """Candidate config files, highest priority first."""
    return [
        Path.home() / ".config/memora/config.toml",
        Path.home() / ".memora.toml",
    ]


class AppConfig(BaseSettings):
    """
    Configuration model for memora.
    Supports loading from:
    1. Environment variables (MEMORA_*)
    2. Config file (~/.config/memora/config.toml)
    3. Manual overrides (CLI)
    """

    model_config = SettingsConfigDict(
        env_prefix="MEMORA_",
        extra="ignore",
    )

    # Paths
    collection_path: Path = Field(
        default_factory=lambda: Path.home() / ".local/share/memora/collection.json"
    )

    # Scheduler
    weights: list[float] = Field(default_factory=lambda: list(DEFAULT_WEIGHTS))
    desired_retention: float = Field(default=DEFAULT_DESIRED_RETENTION, gt=0, lt=1)
    maximum_interval: int = Field(default=DEFAULT_MAXIMUM_INTERVAL, ge=1)
    learning_steps_minutes: list[float] = Field(
        default_factory=lambda: list(DEFAULT_LEARNING_STEPS_MINUTES), min_length=1
    )
    relearning_step_minutes: float = Field(default=DEFAULT_RELEARNING_STEP_MINUTES, gt=0)

    # Study queues
    max_new_per_day: int = Field(default=DEFAULT_MAX_NEW_PER_DAY, ge=0)
    max_review_per_day: int = Field(default=DEFAULT_MAX_REVIEW_PER_DAY, ge=0)
    interleave_every: int | None = Field(default=None, ge=1)
    retention_threshold: float = Field(default=RETENTION_THRESHOLD, gt=0, le=1)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        from pydantic_settings import TomlConfigSettingsSource

        # First existing file wins; CLI overrides (init) take final precedence.
        toml_file = next((f for f in config_files() if f.exists()), None)

        if toml_file:
            return (
                init_settings,
                env_settings,
                TomlConfigSettingsSource(settings_cls, toml_file=toml_file),
            )
        return (init_settings, env_settings)

    @field_validator("collection_path", mode="before")
    @classmethod
    def expand_path(cls, v: Any) -> Path:
        return Path(v).expanduser()

    @field_validator("weights")
    @classmethod
    def check_weights(cls, v: list[float]) -> list[float]:
        if len(v) != WEIGHT_COUNT:
            raise ValueError(f"expected {WEIGHT_COUNT} weights, got {len(v)}")
        return v

    @field_validator("learning_steps_minutes")
    @classmethod
    def check_steps(cls, v: list[float]) -> list[float]:
        if any(m <= 0 for m in v):
            raise ValueError("learning steps must be positive")
        return v

    def scheduler_parameters(self) -> SchedulerParameters:
        return SchedulerParameters(
            weights=tuple(self.weights),
            desired_retention=self.desired_retention,
            maximum_interval=self.maximum_interval,
            learning_steps=tuple(timedelta(minutes=m) for m in self.learning_steps_minutes),
            relearning_step=timedelta(minutes=self.relearning_step_minutes),
        )

    def queue_limits(self) -> QueueLimits:
        return QueueLimits(
            max_due=self.max_review_per_day,
            max_new=self.max_new_per_day,
            interleave_every=self.interleave_every,
        )


def resolve_config(cli_overrides: dict[str, Any] | None = None) -> AppConfig:
    """
    Multi-layered configuration resolution.
    1. Defaults in AppConfig
    2. ~/.config/memora/config.toml (if exists)
    3. Environment variables (MEMORA_*)
    4. cli_overrides (passed from Typer)
    """
    # Typer passes None for options the user did not set; drop them so the
    # lower layers still apply.
    overrides = {k: v for k, v in (cli_overrides or {}).items() if v is not None}
    return AppConfig(**overrides)
