"""
Parking stores: bookmarks, parking lots and per-user history summaries.
Implements IParkingStore with an in-memory and a JSON-file backend.
"""

import asyncio
import copy
import json
import logging
import os
import shutil
from abc import abstractmethod
from typing import Optional

from backend.shared.config import StoreBackend, StoreConfig
from backend.shared.interfaces import IParkingStore
from backend.shared.models import Bookmark, ParkingLot

logger = logging.getLogger(__name__)


def _empty_document() -> dict:
    return {"bookmarks": {}, "parking_lots": [], "history_summaries": {}}


def _validate_bookmark(bookmark: Bookmark) -> None:
    if not bookmark.label or not bookmark.label.strip():
        raise ValueError("Bookmark label must not be empty")


def _validate_lot(lot: ParkingLot) -> None:
    if not lot.id or not lot.id.strip():
        raise ValueError("Parking lot id must not be empty")


class _DocumentStore(IParkingStore):
    """Shared get/put logic over one JSON-shaped document."""

    def __init__(self):
        self._lock = asyncio.Lock()

    @abstractmethod
    def _read(self) -> dict:
        """Return the whole document."""

    @abstractmethod
    def _write(self, data: dict) -> None:
        """Replace the whole document."""

    async def get_bookmarks(self, user_id: str) -> list[Bookmark]:
        async with self._lock:
            data = self._read()
            return [
                Bookmark.from_dict(item)
                for item in data.get("bookmarks", {}).get(user_id, [])
            ]

    async def put_bookmark(self, user_id: str, bookmark: Bookmark) -> Bookmark:
        _validate_bookmark(bookmark)
        bookmark.label = bookmark.label.strip()
        async with self._lock:
            data = self._read()
            items = data.setdefault("bookmarks", {}).setdefault(user_id, [])
            items[:] = [item for item in items if item.get("id") != bookmark.id]
            items.append(bookmark.to_dict())
            self._write(data)
        logger.info(f"Bookmark saved for {user_id}: {bookmark.id} ({bookmark.label})")
        return bookmark

    async def delete_bookmark(self, user_id: str, bookmark_id: str) -> bool:
        async with self._lock:
            data = self._read()
            items = data.get("bookmarks", {}).get(user_id, [])
            kept = [item for item in items if item.get("id") != bookmark_id]
            if len(kept) == len(items):
                return False
            data["bookmarks"][user_id] = kept
            self._write(data)
        logger.info(f"Bookmark deleted for {user_id}: {bookmark_id}")
        return True

    async def get_parking_lots(self) -> list[ParkingLot]:
        async with self._lock:
            data = self._read()
            return [ParkingLot.from_dict(item) for item in data.get("parking_lots", [])]

    async def get_parking_lot(self, lot_id: str) -> Optional[ParkingLot]:
        for lot in await self.get_parking_lots():
            if lot.id == lot_id:
                return lot
        return None

    async def put_parking_lot(self, lot: ParkingLot) -> ParkingLot:
        _validate_lot(lot)
        async with self._lock:
            data = self._read()
            lots = [item for item in data.get("parking_lots", []) if item.get("id") != lot.id]
            lots.append(lot.to_dict())
            data["parking_lots"] = lots
            self._write(data)
        logger.info(f"Parking lot saved: {lot.id}")
        return lot

    async def get_history_summary(self, user_id: str) -> str:
        async with self._lock:
            data = self._read()
            return data.get("history_summaries", {}).get(user_id, "")

    async def put_history_summary(self, user_id: str, summary: str) -> None:
        async with self._lock:
            data = self._read()
            data.setdefault("history_summaries", {})[user_id] = summary
            self._write(data)


class InMemoryParkingStore(_DocumentStore):
    """Process-local store; contents are lost on restart."""

    def __init__(self, initial: Optional[dict] = None):
        super().__init__()
        self._data = copy.deepcopy(initial) if initial else _empty_document()

    def _read(self) -> dict:
        return copy.deepcopy(self._data)

    def _write(self, data: dict) -> None:
        self._data = copy.deepcopy(data)


class JSONParkingStore(_DocumentStore):
    """Persistent JSON-file store with a .bak copy on every write."""

    def __init__(self, config: StoreConfig):
        super().__init__()
        self._config = config
        self._ensure_file_exists()

    def _ensure_file_exists(self) -> None:
        directory = os.path.dirname(self._config.file_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        if not os.path.exists(self._config.file_path):
            self._write(_empty_document())

    def _read(self) -> dict:
        try:
            with open(self._config.file_path, "r") as f:
                data = json.load(f)
        except (json.JSONDecodeError, FileNotFoundError) as e:
            logger.warning(f"Store file unreadable ({e}); starting from an empty document")
            return _empty_document()
        if not isinstance(data, dict):
            logger.warning("Store file does not contain an object; starting from an empty document")
            return _empty_document()
        return data

    def _write(self, data: dict) -> None:
        if self._config.backup_on_write and os.path.exists(self._config.file_path):
            shutil.copy2(self._config.file_path, self._config.file_path + ".bak")
        with open(self._config.file_path, "w") as f:
            json.dump(data, f, indent=2)


def create_store(config: StoreConfig) -> IParkingStore:
    """Factory: pick the store backend from configuration."""
    if config.backend == StoreBackend.JSON:
        logger.info(f"Using JSON parking store at {config.file_path}")
        return JSONParkingStore(config)
    logger.info("Using in-memory parking store")
    return InMemoryParkingStore()
