"""
Assistant engine - wraps the LangGraph flow graphs behind three operations.

  process_voice_command        transcript -> intent + entities
  recommend_parking            user + nearby lots -> ranked lots
  predict_parking_availability spot + history -> availability estimate

Every operation returns a schema-valid result; provider outages and
malformed output degrade to each flow's fallback.
"""

import json
import logging
from collections import Counter
from typing import Any, Optional, Union

from pydantic import BaseModel, ValidationError

from backend.orchestrator.flows import (
    PredictAvailabilityFlow,
    RecommendParkingFlow,
    VoiceCommandFlow,
)
from backend.orchestrator.graph import FlowRunner
from backend.orchestrator.schemas import (
    AvailabilityPrediction,
    PredictAvailabilityInput,
    RecommendationResult,
    RecommendParkingInput,
    VoiceCommandInput,
    VoiceCommandResult,
)
from backend.shared.call_limiter import ProviderCallLimiter
from backend.shared.config import AppConfig
from backend.shared.constants import MAX_BOOKMARKS_IN_PROMPT, MAX_LOTS_IN_PROMPT
from backend.shared.interfaces import ICompletionProvider, IParkingStore

logger = logging.getLogger(__name__)

RequestLike = Union[BaseModel, dict[str, Any]]


class AssistantEngine:
    """
    Entry point for the AI-assisted parking features.

    When a request names a user but omits a context blob (bookmarks, nearby
    lots, history summary), the engine fills it from the parking store.
    Caller-supplied context always wins.
    """

    def __init__(
        self,
        config: AppConfig,
        provider: ICompletionProvider,
        store: Optional[IParkingStore] = None,
        limiter: Optional[ProviderCallLimiter] = None,
    ):
        self._config = config
        self._provider = provider
        self._store = store
        self._limiter = limiter or ProviderCallLimiter(config.flows.max_concurrent_provider_calls)
        self._outcomes: dict[str, Counter] = {}

        self._voice = self._build_runner(VoiceCommandFlow())
        self._recommend = self._build_runner(
            RecommendParkingFlow(max_recommendations=config.flows.max_recommendations)
        )
        self._predict = self._build_runner(PredictAvailabilityFlow())

    def _build_runner(self, flow) -> FlowRunner:
        self._outcomes[flow.name] = Counter()
        return FlowRunner(flow, self._provider, self._config.retry, self._limiter)

    # ── Operations ───────────────────────────────────────

    async def process_voice_command(self, request: RequestLike) -> VoiceCommandResult:
        """Interpret a voice command transcript."""
        command = _coerce(VoiceCommandInput, request)
        if command is not None and command.user_bookmarks is None and command.user_id:
            bookmarks = await self._load_context(
                "bookmarks", command.user_id, self._store_bookmarks
            )
            if bookmarks is not None:
                command = command.model_copy(update={"user_bookmarks": bookmarks})
        return await self._run(self._voice, command if command is not None else request)

    async def recommend_parking(self, request: RequestLike) -> RecommendationResult:
        """Rank nearby parking lots for a user."""
        query = _coerce(RecommendParkingInput, request)
        if query is not None:
            update = {}
            if query.nearby_parking_lots is None:
                lots = await self._load_context("parking lots", query.user_id, self._store_lots)
                if lots is not None:
                    update["nearby_parking_lots"] = lots
            if query.user_history_summary is None:
                summary = await self._load_context(
                    "history summary", query.user_id, self._store_history
                )
                if summary:
                    update["user_history_summary"] = summary
            if update:
                query = query.model_copy(update=update)
        return await self._run(self._recommend, query if query is not None else request)

    async def predict_parking_availability(self, request: RequestLike) -> AvailabilityPrediction:
        """Estimate the availability of one spot."""
        return await self._run(self._predict, request)

    async def get_status(self) -> dict:
        try:
            usage = await self._provider.get_usage()
        except Exception as e:
            logger.warning(f"Could not read provider usage: {e}")
            usage = {}
        return {
            "provider": self._config.llm_provider.value,
            "usage": usage,
            "limiter": self._limiter.get_status(),
            "flows": {
                name: {outcome: count for outcome, count in counts.items()}
                for name, counts in self._outcomes.items()
            },
        }

    # ── Helpers ──────────────────────────────────────────

    async def _run(self, runner: FlowRunner, request: RequestLike):
        final_state = await runner.run(request)
        self._outcomes[runner.name][final_state["outcome"].value] += 1
        return final_state["result"]

    async def _load_context(self, what: str, user_id: str, loader) -> Optional[str]:
        """Fetch one context blob from the store; store failures degrade to no context."""
        if self._store is None:
            return None
        try:
            return await loader(user_id)
        except Exception as e:
            logger.warning(f"Could not load {what} for user {user_id}: {e}")
            return None

    async def _store_bookmarks(self, user_id: str) -> Optional[str]:
        bookmarks = await self._store.get_bookmarks(user_id)
        if not bookmarks:
            return None
        return json.dumps([b.to_dict() for b in bookmarks[:MAX_BOOKMARKS_IN_PROMPT]])

    async def _store_lots(self, user_id: str) -> Optional[str]:
        lots = await self._store.get_parking_lots()
        if not lots:
            return None
        return json.dumps([lot.to_dict() for lot in lots[:MAX_LOTS_IN_PROMPT]])

    async def _store_history(self, user_id: str) -> Optional[str]:
        summary = await self._store.get_history_summary(user_id)
        return summary or None


def _coerce(model: type[BaseModel], request: RequestLike) -> Optional[BaseModel]:
    if isinstance(request, model):
        return request
    try:
        return model.model_validate(request)
    except ValidationError:
        # The flow runner logs and substitutes the fallback
        return None
