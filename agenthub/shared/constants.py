"""
Named constants: replaces magic numbers throughout the codebase.

All tunable limits and thresholds that are not environment-driven
live here with descriptive names.
"""

# ── Job Reads ────────────────────────────────────────────────

DEFAULT_RECENT_JOBS_LIMIT = 20
"""Number of jobs returned by list_recent_jobs when the caller gives no limit."""

MAX_RECENT_JOBS_LIMIT = 200
"""Upper bound on the limit accepted by the jobs listing endpoint."""

# ── Priorities ───────────────────────────────────────────────

DEFAULT_BULK_PRIORITY = 5
"""Priority of bulk jobs when the caller does not give one."""

DEFAULT_SINGLE_PRIORITY = 3
"""Priority of single-lead jobs when the caller does not give one."""

AUTO_QUALIFY_PRIORITY = 1
"""Auto-qualification of newly created leads runs behind user-initiated work."""

# ── Errors ───────────────────────────────────────────────────

MAX_ERROR_DETAIL_LENGTH = 500
"""Maximum characters kept per item error and for Job.last_error."""

# ── Qualification Ratings ────────────────────────────────────

HIGH_RATING_MIN_SCORE = 80
"""Scores at or above this map to the 'high' qualification rating."""

MEDIUM_RATING_MIN_SCORE = 60
"""Scores at or above this (and below high) map to 'medium'."""

# ── Lead Prompt ──────────────────────────────────────────────

MAX_LEAD_FIELD_IN_PROMPT = 1000
"""Maximum characters of a single lead field embedded in an agent prompt."""
