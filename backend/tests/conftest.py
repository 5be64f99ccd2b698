"""
Shared test fixtures for the Carpso AI test suite.
"""

import os
import sys
import tempfile

import pytest

# Ensure backend is importable
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

from backend.memory.store import InMemoryParkingStore
from backend.shared.config import AppConfig, FlowConfig, RetryConfig, StoreBackend, StoreConfig
from backend.shared.interfaces import ICompletionProvider
from backend.shared.models import ParkingLot


class ScriptedProvider(ICompletionProvider):
    """
    Completion provider that replays a script of outcomes.

    Each entry is either a dict (returned) or an exception (raised). The last
    entry repeats once the script runs out.
    """

    def __init__(self, *outcomes):
        self._outcomes = list(outcomes) or [{}]
        self.calls = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def complete(self, template, structured_input: dict) -> dict:
        self.calls.append((template, structured_input))
        index = min(len(self.calls) - 1, len(self._outcomes) - 1)
        outcome = self._outcomes[index]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def get_usage(self) -> dict:
        return {"total_input_tokens": 0, "total_output_tokens": 0}


@pytest.fixture
def tmp_dir():
    with tempfile.TemporaryDirectory() as d:
        yield d


@pytest.fixture
def scripted_provider():
    """Factory: scripted_provider(outcome, ...) -> ScriptedProvider."""
    return ScriptedProvider


@pytest.fixture
def fast_retry():
    """Retry policy with zero backoff so tests never sleep."""
    return RetryConfig(max_attempts=3, backoff_base_seconds=0.0, call_timeout_seconds=5.0)


@pytest.fixture
def app_config(fast_retry):
    return AppConfig(retry=fast_retry, flows=FlowConfig(max_recommendations=5))


@pytest.fixture
def store_config(tmp_dir):
    return StoreConfig(
        backend=StoreBackend.JSON,
        file_path=os.path.join(tmp_dir, "data", "test_store.json"),
        backup_on_write=False,
    )


@pytest.fixture
def memory_store():
    return InMemoryParkingStore()


@pytest.fixture
def sample_lots():
    return [
        ParkingLot(id="lot_A", name="Downtown Garage", capacity=200, current_occupancy=150,
                   services=["ev_charging"], hourly_rate=3.5),
        ParkingLot(id="lot_B", name="Airport Parking", capacity=500, current_occupancy=480,
                   hourly_rate=5.0),
        ParkingLot(id="lot_C", name="Mall Parking", capacity=300, current_occupancy=10,
                   services=["car_wash"], hourly_rate=1.0),
    ]
