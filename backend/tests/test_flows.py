"""
End-to-end tests of the three flows through the LangGraph flow graph.

A scripted provider stands in for the hosted model, so every path
(short-circuit, retries, fatal errors, malformed output, fallbacks) is
exercised without network access.
"""

import asyncio
import json
import logging

import pytest

from backend.orchestrator.flows import (
    PredictAvailabilityFlow,
    RecommendParkingFlow,
    VoiceCommandFlow,
)
from backend.orchestrator.graph import FlowRunner
from backend.orchestrator.schemas import (
    AvailabilityPrediction,
    RecommendationResult,
    VoiceCommandInput,
    VoiceCommandResult,
)
from backend.shared.errors import ProviderError
from backend.shared.models import FlowOutcome, VoiceIntent


def _voice_reply(intent="reserve_spot", **entities):
    return {"intent": intent, "entities": entities, "responseText": "Got it."}


def _rec(lot_id, name="Some Lot", reason="Near your destination"):
    return {"lotId": lot_id, "lotName": name, "reason": reason}


# ---------------------------------------------------------------------------
# Voice command
# ---------------------------------------------------------------------------

class TestVoiceCommandFlow:
    @pytest.mark.asyncio
    async def test_cancel_reservation_short_circuits(self, scripted_provider, fast_retry):
        provider = scripted_provider(_voice_reply())
        runner = FlowRunner(VoiceCommandFlow(), provider, fast_retry)

        state = await runner.run({"transcript": "Please CANCEL my Reservation for tonight"})

        assert provider.call_count == 0
        assert state["outcome"] == FlowOutcome.SHORT_CIRCUIT
        result = state["result"]
        assert result.intent == VoiceIntent.CANCEL_RESERVATION
        assert result.to_wire()["entities"] == {}
        assert result.response_text.startswith("Okay, which reservation")

    @pytest.mark.asyncio
    async def test_cancel_without_reservation_goes_to_provider(self, scripted_provider, fast_retry):
        provider = scripted_provider(_voice_reply("unknown"))
        runner = FlowRunner(VoiceCommandFlow(), provider, fast_retry)

        await runner.invoke({"transcript": "cancel that"})
        assert provider.call_count == 1

    @pytest.mark.asyncio
    async def test_empty_transcript_falls_back_without_call(self, scripted_provider, fast_retry):
        provider = scripted_provider(_voice_reply())
        runner = FlowRunner(VoiceCommandFlow(), provider, fast_retry)

        result = await runner.invoke({"transcript": "   "})

        assert provider.call_count == 0
        assert result == VoiceCommandResult.fallback()

    @pytest.mark.asyncio
    async def test_spot_id_normalized(self, scripted_provider, fast_retry):
        provider = scripted_provider(_voice_reply(spotId="c 12"))
        runner = FlowRunner(VoiceCommandFlow(), provider, fast_retry)

        state = await runner.run({"transcript": "reserve spot c 12"})

        assert state["outcome"] == FlowOutcome.PROVIDER
        assert state["result"].intent == VoiceIntent.RESERVE_SPOT
        assert state["result"].entities.spot_id == "C12"

    @pytest.mark.asyncio
    async def test_missing_response_text_falls_back(self, scripted_provider, fast_retry):
        provider = scripted_provider({"intent": "find_parking", "entities": {}})
        runner = FlowRunner(VoiceCommandFlow(), provider, fast_retry)

        state = await runner.run({"transcript": "find parking"})

        assert state["outcome"] == FlowOutcome.FALLBACK
        assert state["result"] == VoiceCommandResult.fallback()

    @pytest.mark.asyncio
    async def test_malformed_bookmarks_behave_as_absent(self, scripted_provider, fast_retry, caplog):
        reply = _voice_reply("find_parking", destination="home")
        with_bad = FlowRunner(VoiceCommandFlow(), scripted_provider(reply), fast_retry)
        without = FlowRunner(VoiceCommandFlow(), scripted_provider(reply), fast_retry)

        with caplog.at_level(logging.WARNING):
            bad_result = await with_bad.invoke(
                {"transcript": "park near home", "userBookmarks": "[{not json"}
            )
        absent_result = await without.invoke({"transcript": "park near home"})

        assert bad_result == absent_result
        assert "userBookmarks" in caplog.text

    @pytest.mark.asyncio
    async def test_bookmark_labels_sent_and_resolved(self, scripted_provider, fast_retry):
        provider = scripted_provider(_voice_reply("find_parking", destination="WORK"))
        runner = FlowRunner(VoiceCommandFlow(), provider, fast_retry)
        bookmarks = json.dumps([{"label": "Home"}, {"label": "Work"}, "junk"])

        result = await runner.invoke(
            {"transcript": "find parking near work", "userBookmarks": bookmarks}
        )

        _, structured_input = provider.calls[0]
        assert structured_input["bookmark_labels"] == ["Home", "Work"]
        assert result.entities.destination == "Work"

    @pytest.mark.asyncio
    async def test_decoded_bookmark_list_accepted(self, scripted_provider, fast_retry):
        provider = scripted_provider(_voice_reply("find_parking", destination="home"))
        runner = FlowRunner(VoiceCommandFlow(), provider, fast_retry)

        state = await runner.run(
            {"transcript": "Reserve spot C twelve", "userBookmarks": [{"label": "Home"}]}
        )

        assert provider.call_count == 1
        assert state["outcome"] == FlowOutcome.PROVIDER
        _, structured_input = provider.calls[0]
        assert structured_input["bookmark_labels"] == ["Home"]
        assert state["result"].entities.destination == "Home"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("blob", [{"label": "Home"}, 42, True])
    async def test_wrong_type_bookmarks_behave_as_absent(self, scripted_provider, fast_retry, blob):
        provider = scripted_provider(_voice_reply("find_parking", destination="home"))
        runner = FlowRunner(VoiceCommandFlow(), provider, fast_retry)

        result = await runner.invoke({"transcript": "park near home", "userBookmarks": blob})

        assert provider.call_count == 1
        _, structured_input = provider.calls[0]
        assert structured_input["bookmark_labels"] == []
        assert result.intent == VoiceIntent.FIND_PARKING
        assert result.entities.destination == "home"

    @pytest.mark.asyncio
    async def test_accepts_input_model(self, scripted_provider, fast_retry):
        provider = scripted_provider(_voice_reply(spotId="a5"))
        runner = FlowRunner(VoiceCommandFlow(), provider, fast_retry)

        result = await runner.invoke(VoiceCommandInput(transcript="reserve a5"))
        assert result.entities.spot_id == "A5"

    @pytest.mark.asyncio
    async def test_invalid_input_falls_back(self, scripted_provider, fast_retry):
        provider = scripted_provider(_voice_reply())
        runner = FlowRunner(VoiceCommandFlow(), provider, fast_retry)

        result = await runner.invoke({"userId": "u1"})  # no transcript

        assert provider.call_count == 0
        assert result == VoiceCommandResult.fallback()


# ---------------------------------------------------------------------------
# Retry behaviour through the graph
# ---------------------------------------------------------------------------

class TestRetryThroughGraph:
    @pytest.mark.asyncio
    async def test_transient_twice_then_success(self, scripted_provider, fast_retry):
        provider = scripted_provider(
            ProviderError.transient("HTTP 503"),
            ProviderError.transient("HTTP 429"),
            {"predictedAvailability": 0.7, "confidenceLevel": "medium", "factors": "Weekday"},
        )
        runner = FlowRunner(PredictAvailabilityFlow(), provider, fast_retry)

        state = await runner.run({"spotId": "A5"})

        assert provider.call_count == 3
        assert state["retry_state"].attempt == 3
        assert state["outcome"] == FlowOutcome.PROVIDER
        assert state["result"].predicted_availability == 0.7

    @pytest.mark.asyncio
    async def test_fatal_error_single_call_then_fallback(self, scripted_provider, fast_retry):
        provider = scripted_provider(ProviderError.fatal("HTTP 401: bad key"))
        runner = FlowRunner(RecommendParkingFlow(), provider, fast_retry)

        state = await runner.run({"userId": "u1"})

        assert provider.call_count == 1
        assert state["outcome"] == FlowOutcome.FALLBACK
        assert state["result"] == RecommendationResult.fallback()
        assert "401" in state["error"]

    @pytest.mark.asyncio
    async def test_exhaustion_falls_back(self, scripted_provider, fast_retry):
        provider = scripted_provider(ProviderError.transient("HTTP 529: overloaded"))
        runner = FlowRunner(PredictAvailabilityFlow(), provider, fast_retry)

        state = await runner.run({"spotId": "A5"})

        assert provider.call_count == fast_retry.max_attempts
        assert state["result"] == AvailabilityPrediction.fallback()

    @pytest.mark.asyncio
    async def test_unexpected_provider_exception_falls_back(self, scripted_provider, fast_retry):
        provider = scripted_provider(RuntimeError("socket exploded"))
        runner = FlowRunner(VoiceCommandFlow(), provider, fast_retry)

        result = await runner.invoke({"transcript": "find parking"})

        assert provider.call_count == 1
        assert result == VoiceCommandResult.fallback()

    @pytest.mark.asyncio
    async def test_cancellation_is_not_swallowed(self, fast_retry):
        started = asyncio.Event()

        class _SlowProvider:
            async def complete(self, template, structured_input):
                started.set()
                await asyncio.Event().wait()

            async def get_usage(self):
                return {}

        runner = FlowRunner(VoiceCommandFlow(), _SlowProvider(), fast_retry)
        task = asyncio.create_task(runner.invoke({"transcript": "find parking"}))
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

    @pytest.mark.asyncio
    async def test_concurrent_invocations_are_independent(self, scripted_provider, fast_retry):
        ok = scripted_provider(_voice_reply(spotId="b7"))
        failing = scripted_provider(ProviderError.fatal("HTTP 400"))
        ok_runner = FlowRunner(VoiceCommandFlow(), ok, fast_retry)
        failing_runner = FlowRunner(VoiceCommandFlow(), failing, fast_retry)

        results = await asyncio.gather(
            ok_runner.invoke({"transcript": "reserve b7"}),
            failing_runner.invoke({"transcript": "reserve b7"}),
            ok_runner.invoke({"transcript": "reserve b7"}),
        )

        assert results[0].entities.spot_id == "B7"
        assert results[1] == VoiceCommandResult.fallback()
        assert results[2].entities.spot_id == "B7"


# ---------------------------------------------------------------------------
# Recommendations
# ---------------------------------------------------------------------------

class TestRecommendParkingFlow:
    @pytest.mark.asyncio
    async def test_one_invalid_of_five_returns_four(self, scripted_provider, fast_retry):
        reply = {"recommendations": [
            _rec("lot_1"), _rec("lot_2"), _rec("lot_3", reason=""), _rec("lot_4"), _rec("lot_5"),
        ]}
        runner = FlowRunner(RecommendParkingFlow(), scripted_provider(reply), fast_retry)

        result = await runner.invoke({"userId": "u1"})

        assert [r.lot_id for r in result.recommendations] == ["lot_1", "lot_2", "lot_4", "lot_5"]

    @pytest.mark.asyncio
    async def test_malformed_lots_blob_still_calls_provider(self, scripted_provider, fast_retry):
        provider = scripted_provider({"recommendations": [_rec("lot_1")]})
        runner = FlowRunner(RecommendParkingFlow(), provider, fast_retry)

        result = await runner.invoke({"userId": "u1", "nearbyParkingLots": "{oops"})

        assert provider.call_count == 1
        _, structured_input = provider.calls[0]
        assert structured_input["nearby_parking_lots"] == []
        assert len(result.recommendations) == 1

    @pytest.mark.asyncio
    async def test_decoded_lots_list_accepted(self, scripted_provider, fast_retry):
        lots = [{"id": "lot_A", "name": "Downtown Garage"}]
        provider = scripted_provider({"recommendations": [_rec("lot_a", name="Downtown Garage")]})
        runner = FlowRunner(RecommendParkingFlow(), provider, fast_retry)

        state = await runner.run({"userId": "u1", "nearbyParkingLots": lots})

        assert state["outcome"] == FlowOutcome.PROVIDER
        _, structured_input = provider.calls[0]
        assert structured_input["nearby_parking_lots"] == lots
        assert state["result"].recommendations[0].lot_id == "lot_A"

    @pytest.mark.asyncio
    async def test_lots_object_blob_treated_as_empty(self, scripted_provider, fast_retry):
        provider = scripted_provider({"recommendations": [_rec("lot_1")]})
        runner = FlowRunner(RecommendParkingFlow(), provider, fast_retry)

        result = await runner.invoke({"userId": "u1", "nearbyParkingLots": {"id": "lot_A"}})

        assert provider.call_count == 1
        _, structured_input = provider.calls[0]
        assert structured_input["nearby_parking_lots"] == []
        assert len(result.recommendations) == 1

    @pytest.mark.asyncio
    async def test_lots_forwarded_and_canonicalized(self, scripted_provider, fast_retry):
        lots = [{"id": "lot_A", "name": "Downtown Garage"}]
        provider = scripted_provider({"recommendations": [_rec("LOT_A", name="downtown garage")]})
        runner = FlowRunner(RecommendParkingFlow(), provider, fast_retry)

        result = await runner.invoke({"userId": "u1", "nearbyParkingLots": json.dumps(lots)})

        _, structured_input = provider.calls[0]
        assert structured_input["nearby_parking_lots"] == lots
        assert structured_input["user_id"] == "u1"
        assert result.recommendations[0].lot_id == "lot_A"
        assert result.recommendations[0].lot_name == "Downtown Garage"

    @pytest.mark.asyncio
    async def test_respects_max_recommendations(self, scripted_provider, fast_retry):
        reply = {"recommendations": [_rec(f"lot_{i}") for i in range(6)]}
        runner = FlowRunner(RecommendParkingFlow(max_recommendations=2),
                            scripted_provider(reply), fast_retry)

        result = await runner.invoke({"userId": "u1"})
        assert len(result.recommendations) == 2


# ---------------------------------------------------------------------------
# Availability prediction
# ---------------------------------------------------------------------------

class TestPredictAvailabilityFlow:
    @pytest.mark.asyncio
    async def test_prompt_input_carries_history(self, scripted_provider, fast_retry):
        provider = scripted_provider(
            {"predictedAvailability": -0.2, "confidenceLevel": "High", "factors": "Game night"}
        )
        runner = FlowRunner(PredictAvailabilityFlow(), provider, fast_retry)

        result = await runner.invoke(
            {"spotId": "A5", "historicalData": "Busy on Fridays", "trends": "Rising"}
        )

        _, structured_input = provider.calls[0]
        assert structured_input["historical_data"] == "Busy on Fridays"
        assert result.predicted_availability == 0.0
        assert result.confidence_level.value == "high"

    @pytest.mark.asyncio
    async def test_fallback_shape(self, scripted_provider, fast_retry):
        runner = FlowRunner(PredictAvailabilityFlow(), scripted_provider({}), fast_retry)

        result = await runner.invoke({"spotId": "A5"})

        assert result.to_wire() == {
            "predictedAvailability": 0.5,
            "confidenceLevel": "low",
            "factors": "Prediction unavailable right now. Showing a neutral estimate.",
        }
