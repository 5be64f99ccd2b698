"""
LangGraph-based flow graph for structured-output provider calls.

Every flow runs the same ordered steps, built as a StateGraph:
  SHORT_CIRCUIT -> PREPARE -> INVOKE -> NORMALIZE -> END
                \\-> END (answered locally, provider never called)

Node failures never escape the graph: any exception (other than
cancellation) ends the run with the flow's fallback result.
"""

import logging
from typing import Any, Literal, Optional, TypedDict, Union

from langgraph.graph import END, StateGraph
from pydantic import BaseModel, ValidationError

from backend.orchestrator.flows import StructuredFlow
from backend.orchestrator.retry import RetryState, retry_with_backoff
from backend.shared.call_limiter import ProviderCallLimiter
from backend.shared.config import RetryConfig
from backend.shared.errors import ProviderError
from backend.shared.interfaces import ICompletionProvider
from backend.shared.models import FlowOutcome

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Graph State: typed dict that flows through every node
# ---------------------------------------------------------------------------

class FlowGraphState(TypedDict, total=False):
    """State that flows through the LangGraph nodes."""
    request: BaseModel       # Validated flow input
    prompt_input: dict       # Structured input rendered into the prompt
    context: dict            # Parsed caller context used by normalization
    raw_output: Optional[dict]
    retry_state: RetryState
    result: BaseModel        # Final, schema-valid result
    outcome: FlowOutcome
    error: str               # Error message if any node fails


# ---------------------------------------------------------------------------
# Graph Builder - creates the compiled LangGraph
# ---------------------------------------------------------------------------

class FlowGraphBuilder:
    """
    Builds a LangGraph StateGraph for one structured flow.

      short_circuit_node -> route_short_circuit -> prepare_node
                                               -> invoke_node -> normalize_node
    """

    def __init__(
        self,
        flow: StructuredFlow,
        provider: ICompletionProvider,
        retry_policy: Optional[RetryConfig] = None,
        limiter: Optional[ProviderCallLimiter] = None,
    ):
        self._flow = flow
        self._provider = provider
        self._policy = retry_policy or RetryConfig()
        self._limiter = limiter

    def build(self):
        """Build and compile the LangGraph StateGraph."""
        graph = StateGraph(FlowGraphState)

        graph.add_node("short_circuit", self._short_circuit_node)
        graph.add_node("prepare", self._prepare_node)
        graph.add_node("invoke", self._invoke_node)
        graph.add_node("normalize", self._normalize_node)

        graph.set_entry_point("short_circuit")

        graph.add_conditional_edges(
            "short_circuit",
            self._route_after_short_circuit,
            {"prepare": "prepare", "end": END},
        )
        graph.add_conditional_edges(
            "prepare",
            self._route_after_prepare,
            {"invoke": "invoke", "end": END},
        )
        graph.add_edge("invoke", "normalize")
        graph.add_edge("normalize", END)

        return graph.compile()

    # ── Node implementations ─────────────────────────────

    async def _short_circuit_node(self, state: FlowGraphState) -> FlowGraphState:
        """Answer locally when a keyword rule matches."""
        flow = self._flow
        try:
            result = flow.short_circuit(state["request"])
        except Exception as e:
            logger.error(f"{flow.name} short-circuit check failed: {e}")
            return self._fallback_update(str(e))

        if result is None:
            return {}
        outcome = FlowOutcome.FALLBACK if result == flow.fallback() else FlowOutcome.SHORT_CIRCUIT
        return {"result": result, "outcome": outcome}

    async def _prepare_node(self, state: FlowGraphState) -> FlowGraphState:
        """Parse caller context and build the structured prompt input."""
        try:
            prompt_input, context = self._flow.prepare(state["request"])
        except Exception as e:
            logger.error(f"{self._flow.name} context preparation failed: {e}")
            return self._fallback_update(str(e))
        return {"prompt_input": prompt_input, "context": context}

    async def _invoke_node(self, state: FlowGraphState) -> FlowGraphState:
        """Call the provider under the retry policy."""
        flow = self._flow
        retry_state = RetryState(max_attempts=self._policy.max_attempts)
        prompt_input = state["prompt_input"]

        try:
            raw = await retry_with_backoff(
                lambda: self._provider.complete(flow.template, prompt_input),
                flow.name,
                policy=self._policy,
                limiter=self._limiter,
                state=retry_state,
            )
        except ProviderError as e:
            return {"raw_output": None, "retry_state": retry_state, "error": e.detail}

        update: FlowGraphState = {"raw_output": raw, "retry_state": retry_state}
        if raw is None and retry_state.last_error is not None:
            update["error"] = retry_state.last_error.detail
        return update

    async def _normalize_node(self, state: FlowGraphState) -> FlowGraphState:
        """Validate the raw provider object, substituting the fallback on failure."""
        flow = self._flow
        raw = state.get("raw_output")
        try:
            result = flow.normalize(raw, state.get("context", {}))
        except Exception as e:
            logger.error(f"{flow.name} normalization failed: {e}")
            return self._fallback_update(str(e))

        outcome = FlowOutcome.FALLBACK if raw is None or result == flow.fallback() else FlowOutcome.PROVIDER
        return {"result": result, "outcome": outcome}

    # ── Routing functions ────────────────────────────────

    def _route_after_short_circuit(self, state: FlowGraphState) -> Literal["prepare", "end"]:
        return "end" if state.get("result") is not None else "prepare"

    def _route_after_prepare(self, state: FlowGraphState) -> Literal["invoke", "end"]:
        return "end" if state.get("result") is not None else "invoke"

    # ── Helpers ──────────────────────────────────────────

    def _fallback_update(self, error: str) -> FlowGraphState:
        return {"result": self._flow.fallback(), "outcome": FlowOutcome.FALLBACK, "error": error}


# ---------------------------------------------------------------------------
# Runner - the public face of a compiled flow
# ---------------------------------------------------------------------------

class FlowRunner:
    """
    Runs one flow end to end and always returns a schema-valid result.

    The compiled graph is stateless across invocations; each call gets its
    own graph state and retry bookkeeping, so concurrent calls never
    interfere.
    """

    def __init__(
        self,
        flow: StructuredFlow,
        provider: ICompletionProvider,
        retry_policy: Optional[RetryConfig] = None,
        limiter: Optional[ProviderCallLimiter] = None,
    ):
        self._flow = flow
        self._graph = FlowGraphBuilder(flow, provider, retry_policy, limiter).build()

    @property
    def name(self) -> str:
        return self._flow.name

    async def run(self, request: Union[BaseModel, dict[str, Any]]) -> FlowGraphState:
        """Run the graph and return the final state (result + outcome always set)."""
        flow = self._flow
        try:
            if not isinstance(request, flow.input_model):
                request = flow.input_model.model_validate(request)
        except ValidationError as e:
            logger.error(f"{flow.name} rejected invalid input ({e.error_count()} error(s))")
            return {"result": flow.fallback(), "outcome": FlowOutcome.FALLBACK, "error": str(e)}

        try:
            final_state = await self._graph.ainvoke({"request": request})
        except Exception as e:
            logger.error(f"{flow.name} flow error: {e}")
            return {"request": request, "result": flow.fallback(),
                    "outcome": FlowOutcome.FALLBACK, "error": str(e)}

        if final_state.get("result") is None:
            final_state = {**final_state, "result": flow.fallback(), "outcome": FlowOutcome.FALLBACK}

        outcome = final_state["outcome"]
        retry_state = final_state.get("retry_state")
        attempts = retry_state.attempt if retry_state else 0
        logger.info(f"{flow.name} completed: outcome={outcome.value}, provider_attempts={attempts}")
        return final_state

    async def invoke(self, request: Union[BaseModel, dict[str, Any]]) -> BaseModel:
        """Run the flow and return only its result."""
        final_state = await self.run(request)
        return final_state["result"]
