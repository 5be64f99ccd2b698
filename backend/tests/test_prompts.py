"""
Tests for shared/prompts.py: template rendering from structured input.
"""

from backend.shared.constants import MAX_TRANSCRIPT_LENGTH
from backend.shared.prompts import (
    JSON_ONLY_INSTRUCTION,
    PREDICT_AVAILABILITY_PROMPT,
    RECOMMEND_PARKING_PROMPT,
    VOICE_COMMAND_PROMPT,
)


class TestVoiceCommandPrompt:
    def test_renders_transcript_and_labels(self):
        text = VOICE_COMMAND_PROMPT.render(
            {"transcript": "park near work", "bookmark_labels": ["Home", "Work"]}
        )
        assert 'User command: "park near work"' in text
        assert '"Home", "Work"' in text

    def test_no_labels_section_when_empty(self):
        text = VOICE_COMMAND_PROMPT.render({"transcript": "hi", "bookmark_labels": []})
        assert "saved locations" not in text

    def test_transcript_truncated(self):
        text = VOICE_COMMAND_PROMPT.render({"transcript": "x" * (MAX_TRANSCRIPT_LENGTH + 50)})
        assert "x" * MAX_TRANSCRIPT_LENGTH in text
        assert "x" * (MAX_TRANSCRIPT_LENGTH + 1) not in text

    def test_system_prompt_lists_intents_and_json_rule(self):
        for intent in ("find_parking", "reserve_spot", "report_issue", "unknown"):
            assert intent in VOICE_COMMAND_PROMPT.system
        assert JSON_ONLY_INSTRUCTION in VOICE_COMMAND_PROMPT.system


class TestRecommendParkingPrompt:
    def test_unknown_location_and_destination(self):
        text = RECOMMEND_PARKING_PROMPT.render({"user_id": "u1"})
        assert "Current location unknown." in text
        assert "Destination unknown." in text
        assert "No specific service preferences." in text
        assert "No history available." in text

    def test_full_context(self):
        text = RECOMMEND_PARKING_PROMPT.render({
            "user_id": "u1",
            "current_latitude": 1.5,
            "current_longitude": 2.5,
            "destination_latitude": 3.0,
            "destination_longitude": 4.0,
            "preferred_services": ["ev_charging"],
            "max_distance_km": 2,
            "nearby_parking_lots": [{"id": "lot_A"}],
            "user_history_summary": "Parks downtown",
        })
        assert "Current Lat: 1.5, Current Lon: 2.5" in text
        assert "Lat: 3.0, Lon: 4.0" in text
        assert '["ev_charging"]' in text
        assert "Max distance: 2km." in text
        assert '"id": "lot_A"' in text
        assert "Parks downtown" in text


class TestPredictAvailabilityPrompt:
    def test_renders_fields(self):
        text = PREDICT_AVAILABILITY_PROMPT.render(
            {"spot_id": "A5", "historical_data": "Busy Fridays", "trends": "Rising"}
        )
        assert "Spot ID: A5" in text
        assert "Historical data: Busy Fridays" in text
        assert "Trends: Rising" in text
        assert "confidenceLevel" in PREDICT_AVAILABILITY_PROMPT.system
