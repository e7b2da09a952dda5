"""
Scheduler core: how a review grade transforms a card's memory state.

Implements the FSRS stability/difficulty model with fixed learning steps:

1. New cards are seeded from per-grade stability/difficulty values
2. Learning/Relearning cards walk short, sub-day steps until they graduate
3. Review cards grow stability on recall (more after longer gaps) and
   shrink it on a lapse

Pure and deterministic: no I/O, no randomness, inputs are never mutated.
"""

import logging
import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone

from memora.domain.cards.models import CardMemoryState, CardState, Grade, ReviewLog
from memora.domain.constants import (
    DECAY,
    DEFAULT_DESIRED_RETENTION,
    DEFAULT_LEARNING_STEPS_MINUTES,
    DEFAULT_MAXIMUM_INTERVAL,
    DEFAULT_RELEARNING_STEP_MINUTES,
    DEFAULT_WEIGHTS,
    FACTOR,
    HARD_LAST_STEP_MULTIPLIER,
    LAPSE_STABILITY_CAP,
    MAX_DIFFICULTY,
    MAX_STABILITY,
    MIN_DIFFICULTY,
    MIN_STABILITY,
    SECONDS_PER_DAY,
    WEIGHT_COUNT,
)
from memora.domain.errors import TemporalOrderError, ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SchedulerParameters:
    """
    Tuning table for the scheduler.

    Attributes:
        weights: The 17 FSRS model weights (w0..w16).
        desired_retention: Recall probability at which a Review card falls due.
        maximum_interval: Upper bound on Review intervals, in days.
        learning_steps: Delays between Learning steps (sub-day).
        relearning_step: Delay before a lapsed card is shown again.
    """

    weights: tuple[float, ...] = DEFAULT_WEIGHTS
    desired_retention: float = DEFAULT_DESIRED_RETENTION
    maximum_interval: int = DEFAULT_MAXIMUM_INTERVAL
    learning_steps: tuple[timedelta, ...] = field(
        default_factory=lambda: tuple(
            timedelta(minutes=m) for m in DEFAULT_LEARNING_STEPS_MINUTES
        )
    )
    relearning_step: timedelta = timedelta(minutes=DEFAULT_RELEARNING_STEP_MINUTES)

    def __post_init__(self) -> None:
        if len(self.weights) != WEIGHT_COUNT:
            raise ValidationError(
                f"Expected {WEIGHT_COUNT} weights, got {len(self.weights)}",
                field="weights",
                value=self.weights,
            )
        if not 0 < self.desired_retention < 1:
            raise ValidationError(
                "desired_retention must be strictly between 0 and 1",
                field="desired_retention",
                value=self.desired_retention,
            )
        if self.maximum_interval < 1:
            raise ValidationError(
                "maximum_interval must be at least 1 day",
                field="maximum_interval",
                value=self.maximum_interval,
            )
        if not self.learning_steps or any(s <= timedelta(0) for s in self.learning_steps):
            raise ValidationError(
                "learning_steps must be a non-empty sequence of positive delays",
                field="learning_steps",
                value=self.learning_steps,
            )
        if self.relearning_step <= timedelta(0):
            raise ValidationError(
                "relearning_step must be positive",
                field="relearning_step",
                value=self.relearning_step,
            )


DEFAULT_PARAMETERS = SchedulerParameters()


@dataclass(frozen=True)
class SchedulingOption:
    """Outcome of one grade, as shown before the learner answers."""

    grade: Grade
    state: CardMemoryState
    interval_days: float
    label: str


# ---------------------------------------------------------------------------
# Model functions
# ---------------------------------------------------------------------------


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def days_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / SECONDS_PER_DAY


def retrievability(elapsed_days: float, stability: float) -> float:
    """
    Probability of recall after elapsed_days for the given stability.

    R = (1 + FACTOR * t / S) ^ DECAY. Continuous, strictly decreasing in t/S,
    equal to 1.0 at t = 0 and 0.9 at t = S.
    """
    if elapsed_days <= 0:
        return 1.0
    return (1 + FACTOR * elapsed_days / stability) ** DECAY


def card_retrievability(state: CardMemoryState, now: datetime) -> float:
    """Current recall estimate for a card; New and never-reviewed cards count as 1.0."""
    if state.state is CardState.NEW or state.last_reviewed_at is None:
        return 1.0
    return retrievability(days_between(state.last_reviewed_at, _as_utc(now)), state.stability)


def is_due(state: CardMemoryState, now: datetime) -> bool:
    return state.due_at is not None and state.due_at <= _as_utc(now)


def initial_stability(grade: Grade, weights: tuple[float, ...] = DEFAULT_WEIGHTS) -> float:
    return _clamp(weights[grade - 1], MIN_STABILITY, MAX_STABILITY)


def initial_difficulty(grade: Grade, weights: tuple[float, ...] = DEFAULT_WEIGHTS) -> float:
    return _clamp(weights[4] - (grade - 3) * weights[5], MIN_DIFFICULTY, MAX_DIFFICULTY)


def next_difficulty(
    difficulty: float, grade: Grade, weights: tuple[float, ...] = DEFAULT_WEIGHTS
) -> float:
    """
    Again raises difficulty, Hard raises it slightly, Good leaves it (apart from
    a small pull towards the Good seed) and Easy lowers it.
    """
    shifted = difficulty - weights[6] * (grade - 3)
    reverted = weights[7] * initial_difficulty(Grade.GOOD, weights) + (1 - weights[7]) * shifted
    return _clamp(reverted, MIN_DIFFICULTY, MAX_DIFFICULTY)


def next_recall_stability(
    difficulty: float,
    stability: float,
    recall: float,
    grade: Grade,
    weights: tuple[float, ...] = DEFAULT_WEIGHTS,
) -> float:
    """
    Stability after a successful recall.

    The gain grows as retrievability drops (the spacing effect) and shrinks
    with difficulty and with already-high stability.
    """
    hard_penalty = weights[15] if grade is Grade.HARD else 1.0
    easy_bonus = weights[16] if grade is Grade.EASY else 1.0
    gain = (
        math.exp(weights[8])
        * (11 - difficulty)
        * stability ** (-weights[9])
        * (math.exp(weights[10] * (1 - recall)) - 1)
        * hard_penalty
        * easy_bonus
    )
    return _clamp(stability * (1 + gain), MIN_STABILITY, MAX_STABILITY)


def next_forget_stability(
    difficulty: float,
    stability: float,
    recall: float,
    weights: tuple[float, ...] = DEFAULT_WEIGHTS,
) -> float:
    """
    Stability after a lapse.

    At most LAPSE_STABILITY_CAP of the stability before it, so a lapse always
    shrinks stability, even after a long gap where the formula alone would not.
    """
    forgotten = (
        weights[11]
        * difficulty ** (-weights[12])
        * ((stability + 1) ** weights[13] - 1)
        * math.exp(weights[14] * (1 - recall))
    )
    return _clamp(min(forgotten, stability * LAPSE_STABILITY_CAP), MIN_STABILITY, MAX_STABILITY)


def next_interval(
    stability: float,
    desired_retention: float = DEFAULT_DESIRED_RETENTION,
    maximum_interval: int = DEFAULT_MAXIMUM_INTERVAL,
) -> int:
    """Whole days until retrievability falls to desired_retention (at least 1)."""
    raw = stability / FACTOR * (desired_retention ** (1 / DECAY) - 1)
    return int(_clamp(round(raw), 1, maximum_interval))


def format_interval(days: float) -> str:
    """Short human label for an interval: 10min, 3h, 4d, 2w, 3mo, 1y."""
    if days < 1:
        minutes = round(days * 24 * 60)
        if minutes < 60:
            return f"{minutes}min"
        return f"{round(minutes / 60)}h"
    if days < 7:
        return f"{round(days)}d"
    if days < 30:
        return f"{round(days / 7)}w"
    if days < 365:
        return f"{round(days / 30)}mo"
    return f"{round(days / 365)}y"


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None or moment.utcoffset() is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def _start_of_day(moment: datetime) -> datetime:
    # Review due dates are whole UTC days; sub-day steps keep their time.
    return moment.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------


class Scheduler:
    """
    Maps (state, grade, now) to the next state.

    Stateless apart from its parameters; safe to share.
    """

    def __init__(self, params: SchedulerParameters | None = None):
        self.params = params or DEFAULT_PARAMETERS

    def schedule(
        self, state: CardMemoryState, grade: Grade | int | str, now: datetime
    ) -> CardMemoryState:
        """Apply one graded review and return the new state."""
        new_state, _ = self.review(state, grade, now)
        return new_state

    def review(
        self,
        state: CardMemoryState,
        grade: Grade | int | str,
        now: datetime,
        time_spent_ms: int = 0,
    ) -> tuple[CardMemoryState, ReviewLog]:
        """
        Apply one graded review.

        Args:
            state: Current memory state of the card.
            grade: Again, Hard, Good or Easy.
            now: Review timestamp; naive values are read as UTC.
            time_spent_ms: Answer time, recorded in the log only.

        Returns:
            Tuple of (new state, review log entry).

        Raises:
            TemporalOrderError: now precedes the card's last review.
        """
        grade = Grade.parse(grade)
        now = _as_utc(now)

        if state.last_reviewed_at is not None and now < state.last_reviewed_at:
            raise TemporalOrderError(
                f"Review of {state.key!r} at {now.isoformat()} precedes its last review "
                f"at {state.last_reviewed_at.isoformat()}",
                field="now",
                value=now,
            )

        elapsed = days_between(state.last_reviewed_at or now, now)

        if state.state is CardState.NEW:
            new_state = self._first_exposure(state, grade, now)
        elif state.state is CardState.LEARNING:
            new_state = self._learning(state, grade, now)
        elif state.state is CardState.REVIEW:
            new_state = self._review(state, grade, now, elapsed)
        else:
            new_state = self._relearning(state, grade, now)

        new_state = replace(
            new_state,
            last_reviewed_at=now,
            review_count=state.review_count + 1,
            elapsed_days=elapsed,
        )

        log = ReviewLog(
            key=state.key,
            grade=grade,
            reviewed_at=now,
            state_before=state.state,
            state_after=new_state.state,
            stability_before=state.stability,
            stability_after=new_state.stability,
            difficulty_before=state.difficulty,
            difficulty_after=new_state.difficulty,
            elapsed_days=elapsed,
            scheduled_days=new_state.scheduled_days,
            time_spent_ms=time_spent_ms,
        )
        logger.debug(
            f"[schedule] {state.key}: {state.state.value} -{grade.name}-> "
            f"{new_state.state.value} S={new_state.stability:.2f} "
            f"D={new_state.difficulty:.2f} due={new_state.due_at}"
        )
        return new_state, log

    def preview(self, state: CardMemoryState, now: datetime) -> dict[Grade, SchedulingOption]:
        """Outcome of every grade for this card, without committing any of them."""
        options: dict[Grade, SchedulingOption] = {}
        for grade in Grade:
            outcome = self.schedule(state, grade, now)
            interval = outcome.scheduled_days
            options[grade] = SchedulingOption(
                grade=grade,
                state=outcome,
                interval_days=interval,
                label=format_interval(interval),
            )
        return options

    # -- transitions --------------------------------------------------------

    def _first_exposure(
        self, state: CardMemoryState, grade: Grade, now: datetime
    ) -> CardMemoryState:
        w = self.params.weights
        steps = self.params.learning_steps
        step = len(steps) - 1 if grade is Grade.EASY else 0
        delay = steps[step]
        return replace(
            state,
            state=CardState.LEARNING,
            stability=initial_stability(grade, w),
            difficulty=initial_difficulty(grade, w),
            learning_step=step,
            due_at=now + delay,
        )

    def _learning(self, state: CardMemoryState, grade: Grade, now: datetime) -> CardMemoryState:
        w = self.params.weights
        steps = self.params.learning_steps
        stability = initial_stability(grade, w)
        difficulty = next_difficulty(state.difficulty, grade, w)

        if grade is Grade.AGAIN:
            step, delay = 0, steps[0]
        elif grade is Grade.HARD:
            step = min(state.learning_step, len(steps) - 1)
            delay = self._hard_delay(step)
        elif grade is Grade.GOOD and state.learning_step + 1 < len(steps):
            step = state.learning_step + 1
            delay = steps[step]
        else:
            return self._graduate(state, stability, difficulty, now)

        return replace(
            state,
            state=CardState.LEARNING,
            stability=stability,
            difficulty=difficulty,
            learning_step=step,
            due_at=now + delay,
        )

    def _review(
        self, state: CardMemoryState, grade: Grade, now: datetime, elapsed: float
    ) -> CardMemoryState:
        w = self.params.weights
        recall = retrievability(elapsed, state.stability)
        difficulty = next_difficulty(state.difficulty, grade, w)

        if grade is Grade.AGAIN:
            return replace(
                state,
                state=CardState.RELEARNING,
                stability=next_forget_stability(state.difficulty, state.stability, recall, w),
                difficulty=difficulty,
                lapse_count=state.lapse_count + 1,
                learning_step=0,
                due_at=now + self.params.relearning_step,
            )

        stability = next_recall_stability(state.difficulty, state.stability, recall, grade, w)
        return self._graduate(state, stability, difficulty, now)

    def _relearning(self, state: CardMemoryState, grade: Grade, now: datetime) -> CardMemoryState:
        difficulty = next_difficulty(state.difficulty, grade, self.params.weights)
        if grade is Grade.AGAIN:
            return replace(
                state,
                state=CardState.RELEARNING,
                difficulty=difficulty,
                learning_step=0,
                due_at=now + self.params.relearning_step,
            )
        return self._graduate(state, state.stability, difficulty, now)

    def _graduate(
        self, state: CardMemoryState, stability: float, difficulty: float, now: datetime
    ) -> CardMemoryState:
        days = next_interval(
            stability, self.params.desired_retention, self.params.maximum_interval
        )
        return replace(
            state,
            state=CardState.REVIEW,
            stability=stability,
            difficulty=difficulty,
            learning_step=0,
            due_at=_start_of_day(now + timedelta(days=days)),
        )

    def _hard_delay(self, step: int) -> timedelta:
        # Halfway to the next step; past the last step, stretch the last one.
        steps = self.params.learning_steps
        if step + 1 < len(steps):
            return (steps[step] + steps[step + 1]) / 2
        return steps[step] * HARD_LAST_STEP_MULTIPLIER


_default_scheduler = Scheduler()


def schedule(
    state: CardMemoryState, grade: Grade | int | str, now: datetime
) -> CardMemoryState:
    """Schedule with the default parameters."""
    return _default_scheduler.schedule(state, grade, now)
