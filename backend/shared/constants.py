"""
Named constants: replaces magic numbers and strings throughout the codebase.

All tunable limits, lookup tables and user-facing fallback messages are
defined here so flows, normalizers and tests share one source of truth.
"""

# ── Voice Command ────────────────────────────────────────────

LOCATION_ALIASES = (
    ("downtown", "lot_A"),
    ("airport", "lot_B"),
    ("mall", "lot_C"),
)
"""Free-text lot names mapped to canonical lot IDs. Matched as case-insensitive
substrings, in this order; the first hit wins."""

CANCEL_RESERVATION_RESPONSE = (
    "Okay, which reservation would you like to cancel? "
    "You can check your active reservations in your profile."
)

VOICE_FALLBACK_RESPONSE = (
    "Sorry, I didn't quite understand that. "
    "Can you please repeat or try phrasing it differently?"
)

MAX_TRANSCRIPT_LENGTH = 1000
"""Characters of the transcript forwarded to the model."""

MAX_BOOKMARKS_IN_PROMPT = 20
"""Bookmark labels listed in the voice prompt."""

# ── Recommendations ──────────────────────────────────────────

MAX_LOTS_IN_PROMPT = 25
"""Nearby lots serialized into the recommendation prompt."""

# ── Availability Prediction ──────────────────────────────────

PREDICTION_FALLBACK_AVAILABILITY = 0.5

PREDICTION_FALLBACK_FACTORS = (
    "Prediction unavailable right now. Showing a neutral estimate."
)

CONFIDENCE_LEVELS = ("low", "medium", "high")

# ── Logging ──────────────────────────────────────────────────

MAX_LOGGED_OUTPUT = 300
"""Maximum characters of raw model output included in a log line."""
