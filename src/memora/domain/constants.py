"""Centralized constants for the memora scheduling core.

All tuning numbers and defaults live here so every layer
imports from a single source of truth.
"""

# ---------- Record formats ----------
LEGACY_FORMAT_VERSION = 1
CURRENT_FORMAT_VERSION = 2

# ---------- FSRS model ----------
# Weights w0..w16. w0-w3 are the seed stabilities for Again/Hard/Good/Easy.
DEFAULT_WEIGHTS: tuple[float, ...] = (
    0.4,
    0.6,
    2.4,
    5.8,
    4.93,
    0.94,
    0.86,
    0.01,
    1.49,
    0.14,
    0.94,
    2.18,
    0.05,
    0.34,
    1.26,
    0.29,
    2.61,
)
WEIGHT_COUNT = len(DEFAULT_WEIGHTS)

# Forgetting curve R(t, S) = (1 + FACTOR * t / S) ** DECAY, so R(S, S) == 0.9
DECAY = -0.5
FACTOR = 19 / 81

DEFAULT_DESIRED_RETENTION = 0.9
DEFAULT_MAXIMUM_INTERVAL = 365  # days

MIN_DIFFICULTY = 1.0
MAX_DIFFICULTY = 10.0
MIN_STABILITY = 0.01  # days
MAX_STABILITY = 36500.0  # days
LAPSE_STABILITY_CAP = 0.5  # post-lapse stability is at most this share of the old one

DEFAULT_NEW_STABILITY = DEFAULT_WEIGHTS[2]
DEFAULT_NEW_DIFFICULTY = 5.0

# ---------- Learning steps ----------
DEFAULT_LEARNING_STEPS_MINUTES: tuple[float, ...] = (1.0, 10.0)
DEFAULT_RELEARNING_STEP_MINUTES = 10.0
HARD_LAST_STEP_MULTIPLIER = 1.5

# ---------- Study queues ----------
DEFAULT_MAX_NEW_PER_DAY = 20
DEFAULT_MAX_REVIEW_PER_DAY = 200
RETENTION_THRESHOLD = 0.9

# ---------- Insights ----------
WEAK_STABILITY_THRESHOLD = 7.0
WEAK_LAPSE_THRESHOLD = 1
WEAK_RETRIEVABILITY_THRESHOLD = 0.7

# ---------- Legacy SM-2 migration ----------
LEGACY_DEFAULT_EASE = 2.5
LEGACY_STABILITY_FACTOR = 0.9
LEGACY_DIFFICULTY_PER_EASE = 5.0
LEGACY_LEARNING_REPETITIONS = 3  # below this a legacy card is still learning

SECONDS_PER_DAY = 86400.0
