"""
Pydantic schemas for flow inputs and structured LLM output.

Output models enforce the minimum-required-fields predicate of each flow:
a raw provider object that fails validation is replaced by the flow's
fallback. Field names are snake_case in Python and camelCase on the wire,
matching the JSON the prompts ask the model for.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from backend.shared.constants import (
    PREDICTION_FALLBACK_AVAILABILITY,
    PREDICTION_FALLBACK_FACTORS,
    VOICE_FALLBACK_RESPONSE,
    CANCEL_RESERVATION_RESPONSE,
)
from backend.shared.models import ConfidenceLevel, VoiceIntent

RECOMMENDATION_FALLBACK_MESSAGE = (
    "We couldn't generate parking recommendations right now. Please try again shortly."
)


class _WireModel(BaseModel):
    model_config = ConfigDict(
        populate_by_name=True,
        coerce_numbers_to_str=True,
        str_strip_whitespace=True,
    )

    def to_wire(self) -> dict:
        """Serialize with camelCase keys, omitting unset optionals."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ─── Voice Command ────────────────────────────────────────────

class VoiceCommandInput(_WireModel):
    transcript: str = Field(description="Text transcribed from the user's voice command")
    user_id: Optional[str] = Field(default=None, alias="userId")
    user_bookmarks: Optional[Any] = Field(
        default=None,
        alias="userBookmarks",
        description="JSON array of the user's saved locations, encoded or already decoded",
    )


class VoiceCommandEntities(_WireModel):
    destination: Optional[str] = None
    spot_id: Optional[str] = Field(default=None, alias="spotId")
    location_id: Optional[str] = Field(default=None, alias="locationId")
    issue_type: Optional[str] = Field(default=None, alias="issueType")

    @field_validator("*", mode="after")
    @classmethod
    def _blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        return value or None


class VoiceCommandResult(_WireModel):
    """Structured output of the voice command flow."""
    intent: VoiceIntent
    entities: VoiceCommandEntities = Field(default_factory=VoiceCommandEntities)
    response_text: str = Field(alias="responseText", min_length=1)

    @field_validator("entities", mode="before")
    @classmethod
    def _null_entities(cls, value):
        return value if value is not None else {}

    @classmethod
    def fallback(cls) -> "VoiceCommandResult":
        return cls(intent=VoiceIntent.UNKNOWN, response_text=VOICE_FALLBACK_RESPONSE)

    @classmethod
    def cancel_reservation(cls) -> "VoiceCommandResult":
        return cls(
            intent=VoiceIntent.CANCEL_RESERVATION,
            response_text=CANCEL_RESERVATION_RESPONSE,
        )


# ─── Parking Recommendation ───────────────────────────────────

class RecommendParkingInput(_WireModel):
    user_id: str = Field(alias="userId")
    current_latitude: Optional[float] = Field(default=None, alias="currentLatitude")
    current_longitude: Optional[float] = Field(default=None, alias="currentLongitude")
    destination_latitude: Optional[float] = Field(default=None, alias="destinationLatitude")
    destination_longitude: Optional[float] = Field(default=None, alias="destinationLongitude")
    preferred_services: Optional[list[str]] = Field(default=None, alias="preferredServices")
    max_distance_km: Optional[float] = Field(default=None, alias="maxDistanceKm", ge=0)
    nearby_parking_lots: Optional[Any] = Field(
        default=None,
        alias="nearbyParkingLots",
        description="JSON array of nearby lots with availability and pricing, encoded or already decoded",
    )
    user_history_summary: Optional[str] = Field(default=None, alias="userHistorySummary")


class Recommendation(_WireModel):
    lot_id: str = Field(alias="lotId", min_length=1)
    lot_name: str = Field(alias="lotName", min_length=1)
    reason: str = Field(min_length=1)
    estimated_cost: Optional[float] = Field(default=None, alias="estimatedCost", ge=0)
    availability_score: Optional[float] = Field(default=None, alias="availabilityScore", ge=0, le=1)


class RecommendationResult(_WireModel):
    """Structured output of the recommendation flow."""
    recommendations: list[Recommendation] = Field(default_factory=list)
    message: Optional[str] = None

    @classmethod
    def fallback(cls) -> "RecommendationResult":
        return cls(recommendations=[], message=RECOMMENDATION_FALLBACK_MESSAGE)


# ─── Availability Prediction ──────────────────────────────────

class PredictAvailabilityInput(_WireModel):
    spot_id: str = Field(alias="spotId", min_length=1)
    historical_data: str = Field(default="", alias="historicalData")
    trends: str = ""


class AvailabilityPrediction(_WireModel):
    """Structured output of the availability prediction flow."""
    predicted_availability: float = Field(alias="predictedAvailability", ge=0, le=1)
    confidence_level: ConfidenceLevel = Field(alias="confidenceLevel")
    factors: str = Field(min_length=1)

    @classmethod
    def fallback(cls) -> "AvailabilityPrediction":
        return cls(
            predicted_availability=PREDICTION_FALLBACK_AVAILABILITY,
            confidence_level=ConfidenceLevel.LOW,
            factors=PREDICTION_FALLBACK_FACTORS,
        )
