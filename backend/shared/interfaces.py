"""
Abstract interfaces (Ports) for the Carpso AI backend.
Following Dependency Inversion Principle - depend on abstractions, not concretions.
"""

from abc import ABC, abstractmethod
from typing import Optional

from .models import Bookmark, ParkingLot
from .prompts import PromptTemplate


class ICompletionProvider(ABC):
    """Interface for the hosted language model.

    ``complete`` either returns the decoded JSON object produced by the model
    or raises ``ProviderError`` tagged transient or fatal.
    """

    @abstractmethod
    async def complete(self, template: PromptTemplate, structured_input: dict) -> dict:
        """Render the template with the input and return the model's JSON object."""

    @abstractmethod
    async def get_usage(self) -> dict:
        """Return current token usage statistics."""


class IParkingStore(ABC):
    """Interface for user and lot data, with explicit get/put per entity."""

    @abstractmethod
    async def get_bookmarks(self, user_id: str) -> list[Bookmark]:
        """Return the user's bookmarks (empty list for unknown users)."""

    @abstractmethod
    async def put_bookmark(self, user_id: str, bookmark: Bookmark) -> Bookmark:
        """Insert or replace a bookmark (matched by id)."""

    @abstractmethod
    async def delete_bookmark(self, user_id: str, bookmark_id: str) -> bool:
        """Delete a bookmark. Returns True if something was removed."""

    @abstractmethod
    async def get_parking_lots(self) -> list[ParkingLot]:
        """Return all known parking lots."""

    @abstractmethod
    async def get_parking_lot(self, lot_id: str) -> Optional[ParkingLot]:
        """Return one lot or None."""

    @abstractmethod
    async def put_parking_lot(self, lot: ParkingLot) -> ParkingLot:
        """Insert or replace a lot (matched by id)."""

    @abstractmethod
    async def get_history_summary(self, user_id: str) -> str:
        """Return the user's parking history summary ("" if none)."""

    @abstractmethod
    async def put_history_summary(self, user_id: str, summary: str) -> None:
        """Replace the user's parking history summary."""
