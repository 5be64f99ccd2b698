"""
Shared prompt templates: single source of truth.

Each flow owns one PromptTemplate: a system prompt plus a builder that turns
the flow's structured input into the user message. Provider clients render
templates; flows never format prompt text themselves.
"""

import json
from dataclasses import dataclass
from typing import Callable

from .constants import MAX_BOOKMARKS_IN_PROMPT, MAX_LOTS_IN_PROMPT, MAX_TRANSCRIPT_LENGTH

JSON_ONLY_INSTRUCTION = (
    "Respond with a single JSON object and nothing else. "
    "Do not wrap it in markdown."
)


@dataclass(frozen=True)
class PromptTemplate:
    """A named prompt: system instructions + user-message builder."""
    name: str
    system: str
    builder: Callable[[dict], str]

    def render(self, structured_input: dict) -> str:
        return self.builder(structured_input)


# ─── Voice Command ────────────────────────────────────────────

VOICE_COMMAND_SYSTEM_PROMPT = f"""You are a voice assistant for the Carpso smart parking app.
Analyze the user command transcript and determine the user's intent and any relevant entities.

Possible intents:
- find_parking: User wants to find available parking spots, possibly near a destination.
- reserve_spot: User wants to reserve a specific parking spot.
- check_availability: User wants to know if a specific spot or area is free.
- cancel_reservation: User wants to cancel an existing reservation.
- get_directions: User wants directions to a parking lot or their pinned car.
- report_issue: User wants to report a problem with a spot (e.g., occupied, blocked).
- unknown: The intent is unclear or not related to parking.

Relevant entities (all optional):
- destination: A place name, address or saved location (e.g., "the mall", "Home").
- spotId: A specific spot identifier (e.g., "A5", "lot_B-S22").
- locationId: A specific parking lot name or ID (e.g., "Downtown Garage", "lot_A").
- issueType: The nature of a reported problem (e.g., "occupied", "blocked").

Output format:
{{"intent": "<intent>", "entities": {{"destination": "...", "spotId": "...", "locationId": "...", "issueType": "..."}}, "responseText": "<short reply spoken back to the user>"}}

Rules:
1. Normalize spot IDs when possible ("spot a five" -> "A5").
2. If the user names one of their saved locations, use that label as the destination.
3. responseText confirms what you understood or asks for clarification. If the intent is unknown, say so politely.

Example: "Reserve spot C twelve" ->
{{"intent": "reserve_spot", "entities": {{"spotId": "C12"}}, "responseText": "Got it. You want to reserve spot C12. Please confirm on the screen."}}

{JSON_ONLY_INSTRUCTION}"""


def _build_voice_command_prompt(data: dict) -> str:
    transcript = str(data.get("transcript", ""))[:MAX_TRANSCRIPT_LENGTH]
    labels = data.get("bookmark_labels") or []
    saved = ""
    if labels:
        saved = "\n\nUser's saved locations: " + ", ".join(
            f'"{label}"' for label in labels[:MAX_BOOKMARKS_IN_PROMPT]
        )
    return f'User command: "{transcript}"{saved}'


VOICE_COMMAND_PROMPT = PromptTemplate(
    name="processVoiceCommand",
    system=VOICE_COMMAND_SYSTEM_PROMPT,
    builder=_build_voice_command_prompt,
)


# ─── Parking Recommendation ───────────────────────────────────

RECOMMEND_PARKING_SYSTEM_PROMPT = f"""You are a smart parking assistant AI.
Provide personalized parking recommendations based on the user's context and preferences.

Instructions:
1. Analyze the user's location, destination, preferences, and past behavior.
2. Evaluate the provided nearby parking lots on proximity to the destination, current availability,
   estimated cost, offered services, and alignment with the user's past preferences.
3. Return the top 3-5 recommendations ordered by relevance.
4. Every recommendation needs lotId, lotName and a specific, non-empty reason. Add estimatedCost
   (typical stay) and availabilityScore (0 to 1) when you can.
5. Only recommend lots from the provided list when one is given.

Output format:
{{"recommendations": [{{"lotId": "...", "lotName": "...", "reason": "...", "estimatedCost": 0.0, "availabilityScore": 0.0}}]}}

{JSON_ONLY_INSTRUCTION}"""


def _build_recommend_parking_prompt(data: dict) -> str:
    if data.get("current_latitude") is not None and data.get("current_longitude") is not None:
        location = f"Current Lat: {data['current_latitude']}, Current Lon: {data['current_longitude']}"
    else:
        location = "Current location unknown."
    if data.get("destination_latitude") is not None and data.get("destination_longitude") is not None:
        destination = f"Lat: {data['destination_latitude']}, Lon: {data['destination_longitude']}"
    else:
        destination = "Destination unknown."

    services = data.get("preferred_services") or []
    preferences = (
        f"Prefers lots with: {json.dumps(services)}" if services
        else "No specific service preferences."
    )
    if data.get("max_distance_km") is not None:
        preferences += f" Max distance: {data['max_distance_km']}km."

    lots = (data.get("nearby_parking_lots") or [])[:MAX_LOTS_IN_PROMPT]
    lots_text = json.dumps(lots, indent=2) if lots else "[] (no lot context available)"
    history = data.get("user_history_summary") or "No history available."

    return (
        f"User information:\n"
        f"- User ID: {data.get('user_id', '')}\n"
        f"- Location: {location}\n"
        f"- Destination: {destination}\n"
        f"- Preferences: {preferences}\n"
        f"- Past behavior summary: {history}\n\n"
        f"Available parking lots (JSON):\n{lots_text}"
    )


RECOMMEND_PARKING_PROMPT = PromptTemplate(
    name="recommendParking",
    system=RECOMMEND_PARKING_SYSTEM_PROMPT,
    builder=_build_recommend_parking_prompt,
)


# ─── Availability Prediction ──────────────────────────────────

PREDICT_AVAILABILITY_SYSTEM_PROMPT = f"""You are an AI expert in predicting parking availability.
Based on the provided historical data and trends, predict the availability of the parking spot.
Consider time of day, day of the week, and any upcoming events that might affect parking.

Output format:
{{"predictedAvailability": <number between 0 and 1>, "confidenceLevel": "<low|medium|high>", "factors": "<factors influencing the prediction>"}}

{JSON_ONLY_INSTRUCTION}"""


def _build_predict_availability_prompt(data: dict) -> str:
    return (
        f"Spot ID: {data.get('spot_id', '')}\n"
        f"Historical data: {data.get('historical_data', '')}\n"
        f"Trends: {data.get('trends', '')}"
    )


PREDICT_AVAILABILITY_PROMPT = PromptTemplate(
    name="predictParkingAvailability",
    system=PREDICT_AVAILABILITY_SYSTEM_PROMPT,
    builder=_build_predict_availability_prompt,
)
