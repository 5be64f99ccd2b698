"""
Domain models for the Carpso AI backend.
Pure data classes with no external dependencies (Clean Architecture inner layer).
"""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class VoiceIntent(Enum):
    """Intents the voice assistant understands."""
    FIND_PARKING = "find_parking"
    RESERVE_SPOT = "reserve_spot"
    CHECK_AVAILABILITY = "check_availability"
    CANCEL_RESERVATION = "cancel_reservation"
    GET_DIRECTIONS = "get_directions"
    REPORT_ISSUE = "report_issue"
    UNKNOWN = "unknown"


class ConfidenceLevel(Enum):
    """Confidence of an availability prediction."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class FlowOutcome(Enum):
    """How a flow produced the result it returned."""
    SHORT_CIRCUIT = "short_circuit"  # answered locally, no provider call
    PROVIDER = "provider"            # provider output passed normalization
    FALLBACK = "fallback"            # documented fallback substituted


def _optional_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass
class Bookmark:
    """A saved location of a user (e.g. "Home", "Work")."""
    label: str
    id: str = field(default_factory=lambda: f"bm_{uuid.uuid4().hex[:8]}")
    address: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "label": self.label,
            "address": self.address,
            "latitude": self.latitude,
            "longitude": self.longitude,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Bookmark":
        return cls(
            id=str(data.get("id") or f"bm_{uuid.uuid4().hex[:8]}"),
            label=str(data.get("label", "")),
            address=str(data.get("address") or ""),
            latitude=_optional_float(data.get("latitude")),
            longitude=_optional_float(data.get("longitude")),
        )


@dataclass
class ParkingLot:
    """A parking lot as known to the store."""
    id: str
    name: str
    address: str = ""
    capacity: int = 0
    current_occupancy: Optional[int] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    services: list = field(default_factory=list)
    hourly_rate: Optional[float] = None

    @property
    def available_spots(self) -> Optional[int]:
        if self.current_occupancy is None:
            return None
        return max(0, self.capacity - self.current_occupancy)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "capacity": self.capacity,
            "current_occupancy": self.current_occupancy,
            "available_spots": self.available_spots,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "services": list(self.services),
            "hourly_rate": self.hourly_rate,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ParkingLot":
        occupancy = data.get("current_occupancy")
        return cls(
            id=str(data.get("id", "")),
            name=str(data.get("name", "")),
            address=str(data.get("address") or ""),
            capacity=int(data.get("capacity") or 0),
            current_occupancy=int(occupancy) if occupancy is not None else None,
            latitude=_optional_float(data.get("latitude")),
            longitude=_optional_float(data.get("longitude")),
            services=list(data.get("services") or []),
            hourly_rate=_optional_float(data.get("hourly_rate")),
        )
