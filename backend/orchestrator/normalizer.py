"""
Output normalization for provider results.

Every function here turns a raw (possibly missing, possibly malformed)
provider object into a guaranteed-valid result:
- missing object or missing mandatory fields -> the flow's fallback
- valid object -> field-level normalization and cross-referencing against
  the caller-supplied context (bookmarks, nearby lots)
"""

import logging
import math
import re
from typing import Any, Optional

from pydantic import ValidationError

from backend.orchestrator.schemas import (
    AvailabilityPrediction,
    Recommendation,
    RecommendationResult,
    VoiceCommandResult,
)
from backend.shared.constants import CONFIDENCE_LEVELS, LOCATION_ALIASES, MAX_LOGGED_OUTPUT

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")

# snake_case spellings a provider may use for recommendation entry keys
_ENTRY_KEYS = {
    "lot_id": "lotId",
    "lot_name": "lotName",
    "estimated_cost": "estimatedCost",
    "availability_score": "availabilityScore",
}


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------

def normalize_spot_id(spot_id: Optional[str]) -> Optional[str]:
    """'c 12' -> 'C12'. Empty input stays None."""
    if not spot_id:
        return None
    normalized = _WHITESPACE.sub("", spot_id).upper()
    return normalized or None


def map_location_id(location_id: Optional[str]) -> Optional[str]:
    """Map a spoken lot name to its canonical ID via the alias table."""
    if not location_id:
        return None
    lowered = location_id.lower()
    for alias, canonical in LOCATION_ALIASES:
        if alias in lowered:
            return canonical
    return location_id.strip()


def resolve_label(spoken: Optional[str], labels: list[str]) -> Optional[str]:
    """
    Resolve a spoken label to the canonical one from caller context.

    Exact match wins; otherwise the first case-insensitive match. When several
    labels match case-insensitively the first in caller order is used.
    Unmatched input is returned unchanged.
    """
    if not spoken:
        return None
    candidate = spoken.strip()
    if candidate in labels:
        return candidate

    folded = candidate.casefold()
    matches = [label for label in labels if label.strip().casefold() == folded]
    if len(matches) > 1:
        logger.warning(
            f"Destination '{candidate}' matches {len(matches)} saved locations; using '{matches[0]}'"
        )
    return matches[0] if matches else candidate


def _clamp_unit(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number):
        return None
    return min(1.0, max(0.0, number))


def _non_negative(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or number < 0:
        return None
    return number


def _preview(raw: Any) -> str:
    return repr(raw)[:MAX_LOGGED_OUTPUT]


# ---------------------------------------------------------------------------
# Voice command
# ---------------------------------------------------------------------------

def normalize_voice_command(
    raw: Optional[dict], bookmark_labels: Optional[list[str]] = None
) -> VoiceCommandResult:
    """Validate and normalize the voice command output."""
    if raw is None:
        logger.warning("No voice command output from provider; using fallback")
        return VoiceCommandResult.fallback()
    if not isinstance(raw, dict):
        logger.error(f"Voice command output is not an object: {_preview(raw)}")
        return VoiceCommandResult.fallback()

    try:
        result = VoiceCommandResult.model_validate(raw)
    except ValidationError as e:
        logger.error(
            f"Invalid voice command output ({e.error_count()} error(s)): {_preview(raw)}"
        )
        return VoiceCommandResult.fallback()

    entities = result.entities
    entities.spot_id = normalize_spot_id(entities.spot_id)
    entities.location_id = map_location_id(entities.location_id)
    if bookmark_labels:
        entities.destination = resolve_label(entities.destination, bookmark_labels)
    return result


# ---------------------------------------------------------------------------
# Recommendations
# ---------------------------------------------------------------------------

def _wire_entry(item: dict) -> dict:
    """Copy an entry with every key in its camelCase spelling; camelCase wins on conflict."""
    entry: dict = {}
    for key, value in item.items():
        wire_key = _ENTRY_KEYS.get(key, key)
        if wire_key == key or wire_key not in entry:
            entry[wire_key] = value
    return entry


def _canonical_lot(entry: dict, lots_by_id: dict[str, dict]) -> dict:
    """Rewrite id/name to the caller-supplied canonical values when they match."""
    lot = lots_by_id.get(str(entry.get("lotId", "")).strip().casefold())
    if not lot:
        return entry
    entry["lotId"] = str(lot["id"])
    name = entry.get("lotName")
    canonical_name = lot.get("name")
    if (
        isinstance(name, str) and isinstance(canonical_name, str)
        and _WHITESPACE.sub("", name).casefold() == _WHITESPACE.sub("", canonical_name).casefold()
    ):
        entry["lotName"] = canonical_name
    return entry


def normalize_recommendations(
    raw: Optional[dict],
    nearby_lots: Optional[list[dict]] = None,
    max_recommendations: int = 5,
) -> RecommendationResult:
    """Filter, clean and cap the provider's recommendation list."""
    if raw is None:
        logger.warning("No recommendation output from provider; using fallback")
        return RecommendationResult.fallback()
    if not isinstance(raw, dict) or not isinstance(raw.get("recommendations"), list):
        logger.error(f"Invalid recommendation output format: {_preview(raw)}")
        return RecommendationResult.fallback()

    lots_by_id = {
        str(lot["id"]).strip().casefold(): lot
        for lot in (nearby_lots or [])
        if isinstance(lot, dict) and lot.get("id") is not None
    }

    raw_entries = raw["recommendations"]
    kept: list[Recommendation] = []
    for index, item in enumerate(raw_entries):
        if not isinstance(item, dict):
            logger.debug(f"Recommendation #{index} is not an object; skipped")
            continue
        entry = _wire_entry(item)
        entry["estimatedCost"] = _non_negative(entry.get("estimatedCost"))
        entry["availabilityScore"] = _clamp_unit(entry.get("availabilityScore"))
        entry = _canonical_lot(entry, lots_by_id)
        try:
            kept.append(Recommendation.model_validate(entry))
        except ValidationError as e:
            logger.debug(f"Recommendation #{index} rejected: {e.error_count()} error(s)")

    if len(kept) != len(raw_entries):
        logger.warning(
            f"Recommendation count mismatch: provider returned {len(raw_entries)}, "
            f"{len(kept)} passed validation"
        )
    if len(kept) > max_recommendations:
        logger.info(f"Truncating recommendations from {len(kept)} to {max_recommendations}")
        kept = kept[:max_recommendations]

    return RecommendationResult(recommendations=kept)


# ---------------------------------------------------------------------------
# Availability prediction
# ---------------------------------------------------------------------------

def normalize_prediction(raw: Optional[dict]) -> AvailabilityPrediction:
    """Clamp availability into [0, 1] and coerce the confidence level."""
    if raw is None:
        logger.warning("No prediction output from provider; using fallback")
        return AvailabilityPrediction.fallback()
    if not isinstance(raw, dict):
        logger.error(f"Prediction output is not an object: {_preview(raw)}")
        return AvailabilityPrediction.fallback()

    availability = _clamp_unit(raw.get("predictedAvailability"))
    if availability is None:
        logger.error(f"Prediction output lacks a numeric availability: {_preview(raw)}")
        return AvailabilityPrediction.fallback()

    confidence = str(raw.get("confidenceLevel") or "").strip().lower()
    if confidence not in CONFIDENCE_LEVELS:
        logger.warning(f"Unknown confidence level {confidence!r}; using 'low'")
        confidence = "low"

    factors = raw.get("factors")
    if isinstance(factors, list):
        factors = ", ".join(str(f) for f in factors if f)

    try:
        return AvailabilityPrediction(
            predicted_availability=availability,
            confidence_level=confidence,
            factors=factors if isinstance(factors, str) else "",
        )
    except ValidationError as e:
        logger.error(f"Invalid prediction output ({e.error_count()} error(s)): {_preview(raw)}")
        return AvailabilityPrediction.fallback()
