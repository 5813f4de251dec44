"""Application-wide constants and configuration values.

This module centralizes the thresholds and fixed values used by the quiz loop
and the dashboard statistics.
"""

# Difficulty Adjustment
PROMOTION_THRESHOLD = 80
"""Quiz score (percent) at or above which the learner moves up one tier."""

DEMOTION_THRESHOLD = 40
"""Quiz score (percent) at or below which the learner moves down one tier."""

# Score Display Bands
SCORE_BAND_SUCCESS = 80
"""Minimum score shown as a success."""

SCORE_BAND_WARNING = 50
"""Minimum score shown as a warning; anything lower is an error band."""

# Dashboard Statistics
MINUTES_PER_TOPIC = 15
"""Estimated study minutes credited per topic studied."""

DAYS_PER_WEEK = 7
"""Denominator of the weekly goal percentage."""

RECENT_ACTIVITY_LIMIT = 5
"""Number of history events shown on the dashboard."""

# Quiz Generation
DEFAULT_QUESTION_COUNT = 5
"""Number of multiple-choice questions requested per quiz."""

MAX_QUESTION_COUNT = 20
"""Upper bound on questions per generated quiz."""

DOUBT_CONTEXT_MESSAGES = 6
"""Most recent chat messages included as context when answering a doubt."""

DOUBT_DEFAULT_TOPIC = "General"
"""Topic recorded for doubts asked without a topic context."""

# Text Generation
LLM_TEMPERATURE = 0.7
"""Sampling temperature for all generation calls."""

LLM_DEFAULT_MAX_TOKENS = 2048
"""Output token cap for generation calls."""

LLM_BACKOFF_MULTIPLIER = 2
"""Exponential backoff multiplier; waits are 2s, 4s, 8s."""

LLM_BACKOFF_MAX = 8
"""Longest wait between rate-limited retries, in seconds."""

LLM_BACKOFF_MIN = 2
"""Shortest wait between rate-limited retries, in seconds."""

LLM_PLAN_MAX_TOKENS = 8192
"""Output token cap for the weekly study plan."""

# Cookie Configuration
COOKIE_NAME = "sl_uid"
"""Name of the cookie used to store the anonymous user id."""

USER_ID_PREFIX = "sl_"
"""Prefix of generated user ids."""

# Rate Limiting
DEFAULT_RATE_LIMIT = "100/minute"
"""Default requests per minute per client IP."""

# Logging
DEFAULT_LOG_LEVEL = "INFO"
"""Default logging level for the application."""
