"""
Flow definitions.

A flow is one request/response operation around a single model call. Each
flow supplies only what differs between operations: its input model, prompt
template, local short-circuit rules, context preparation, output
normalization and fallback. Retry, graph wiring and failure handling are
shared (see graph.py).
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

from pydantic import BaseModel

from backend.orchestrator.context import object_items, parse_optional_json_array
from backend.orchestrator.normalizer import (
    normalize_prediction,
    normalize_recommendations,
    normalize_voice_command,
)
from backend.orchestrator.schemas import (
    AvailabilityPrediction,
    PredictAvailabilityInput,
    RecommendationResult,
    RecommendParkingInput,
    VoiceCommandInput,
    VoiceCommandResult,
)
from backend.shared.prompts import (
    PREDICT_AVAILABILITY_PROMPT,
    RECOMMEND_PARKING_PROMPT,
    VOICE_COMMAND_PROMPT,
    PromptTemplate,
)

logger = logging.getLogger(__name__)


class StructuredFlow(ABC):
    """Per-operation hooks plugged into the shared flow graph."""

    name: str
    template: PromptTemplate
    input_model: type[BaseModel]

    def short_circuit(self, request: BaseModel) -> Optional[BaseModel]:
        """Answer locally without a provider call, or return None to continue."""
        return None

    @abstractmethod
    def prepare(self, request: BaseModel) -> tuple[dict, dict]:
        """Return (structured prompt input, context kept for normalization)."""

    @abstractmethod
    def normalize(self, raw: Optional[dict], context: dict) -> BaseModel:
        """Turn the raw provider object (or None) into a valid result."""

    @abstractmethod
    def fallback(self) -> BaseModel:
        """Deterministic, schema-valid substitute result."""


# ---------------------------------------------------------------------------
# Voice command
# ---------------------------------------------------------------------------

class VoiceCommandFlow(StructuredFlow):
    """Interpret a transcribed voice command into intent + entities."""

    name = "processVoiceCommand"
    template = VOICE_COMMAND_PROMPT
    input_model = VoiceCommandInput

    def short_circuit(self, request: VoiceCommandInput) -> Optional[VoiceCommandResult]:
        transcript = request.transcript.lower()
        if not transcript.strip():
            logger.warning(f"{self.name}: empty transcript, skipping provider call")
            return VoiceCommandResult.fallback()
        if "cancel" in transcript and "reservation" in transcript:
            logger.info(f"{self.name}: cancel-reservation keyword match, skipping provider call")
            return VoiceCommandResult.cancel_reservation()
        return None

    def prepare(self, request: VoiceCommandInput) -> tuple[dict, dict]:
        parsed = parse_optional_json_array(request.user_bookmarks, "userBookmarks")
        labels = []
        for bookmark in object_items(parsed.value, "userBookmarks"):
            label = bookmark.get("label")
            if isinstance(label, str) and label.strip():
                labels.append(label.strip())
        prompt_input = {"transcript": request.transcript, "bookmark_labels": labels}
        return prompt_input, {"bookmark_labels": labels}

    def normalize(self, raw: Optional[dict], context: dict) -> VoiceCommandResult:
        return normalize_voice_command(raw, context.get("bookmark_labels"))

    def fallback(self) -> VoiceCommandResult:
        return VoiceCommandResult.fallback()


# ---------------------------------------------------------------------------
# Parking recommendation
# ---------------------------------------------------------------------------

class RecommendParkingFlow(StructuredFlow):
    """Rank nearby lots for a user."""

    name = "recommendParking"
    template = RECOMMEND_PARKING_PROMPT
    input_model = RecommendParkingInput

    def __init__(self, max_recommendations: int = 5):
        self._max_recommendations = max_recommendations

    def prepare(self, request: RecommendParkingInput) -> tuple[dict, dict]:
        parsed = parse_optional_json_array(request.nearby_parking_lots, "nearbyParkingLots")
        lots = object_items(parsed.value, "nearbyParkingLots")
        prompt_input: dict[str, Any] = request.model_dump(exclude={"nearby_parking_lots"})
        prompt_input["nearby_parking_lots"] = lots
        return prompt_input, {"nearby_lots": lots}

    def normalize(self, raw: Optional[dict], context: dict) -> RecommendationResult:
        return normalize_recommendations(
            raw, context.get("nearby_lots"), self._max_recommendations
        )

    def fallback(self) -> RecommendationResult:
        return RecommendationResult.fallback()


# ---------------------------------------------------------------------------
# Availability prediction
# ---------------------------------------------------------------------------

class PredictAvailabilityFlow(StructuredFlow):
    """Predict how likely a spot is to be free."""

    name = "predictParkingAvailability"
    template = PREDICT_AVAILABILITY_PROMPT
    input_model = PredictAvailabilityInput

    def prepare(self, request: PredictAvailabilityInput) -> tuple[dict, dict]:
        return request.model_dump(), {}

    def normalize(self, raw: Optional[dict], context: dict) -> AvailabilityPrediction:
        return normalize_prediction(raw)

    def fallback(self) -> AvailabilityPrediction:
        return AvailabilityPrediction.fallback()
