"""Bounded, newest-first log of stock movements."""
from __future__ import annotations

from collections import deque
from typing import Deque, Iterable, Iterator, List, Optional
import json
import logging
import secrets
import time

from .models import Movement, serialize_timestamp
from .storage import MOVEMENTS_KEY, KeyValueStorage

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 500
DEFAULT_DISPLAY_LIMIT = 30


def _movement_id() -> str:
    return f"{int(time.time() * 1000)}-{secrets.token_hex(3)}"


class MovementLedger:
    """Append-only movement history that drops its oldest entries when full."""

    def __init__(
        self,
        storage: KeyValueStorage,
        *,
        capacity: int = DEFAULT_CAPACITY,
        display_limit: int = DEFAULT_DISPLAY_LIMIT,
        key: str = MOVEMENTS_KEY,
    ) -> None:
        if capacity <= 0:
            raise ValueError("Ledger capacity must be positive")
        self.storage = storage
        self.capacity = capacity
        self.display_limit = display_limit
        self.key = key
        self._entries: Deque[Movement] = deque(maxlen=capacity)
        self._entries.extend(self._read()[:capacity])

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Movement]:
        return iter(list(self._entries))

    def append(self, item_id: int, delta: int, note: str = "") -> Movement:
        movement = Movement(
            id=_movement_id(),
            item_id=int(item_id),
            delta=int(delta),
            note=str(note or ""),
            timestamp=serialize_timestamp(),
        )
        self._entries.appendleft(movement)
        self.save()
        return movement

    def query_by_item(self, item_id: int, limit: Optional[int] = None) -> List[Movement]:
        if limit is None:
            limit = self.display_limit
        matches = [entry for entry in self._entries if entry.item_id == item_id]
        if limit is not None and limit >= 0:
            return matches[:limit]
        return matches

    def query_all(self) -> List[Movement]:
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()
        self.save()

    def prune_for_item(self, item_id: int) -> int:
        kept = [entry for entry in self._entries if entry.item_id != item_id]
        removed = len(self._entries) - len(kept)
        if removed:
            self._entries = deque(kept, maxlen=self.capacity)
            self.save()
        return removed

    def replace(self, movements: Iterable[Movement]) -> None:
        """Adopt ``movements`` (newest first), keeping only the newest ``capacity``."""

        self._entries = deque(maxlen=self.capacity)
        for movement in movements:
            if len(self._entries) >= self.capacity:
                break
            self._entries.append(movement)
        self.save()

    def save(self) -> None:
        records = [entry.to_record() for entry in self._entries]
        self.storage.set(self.key, json.dumps(records, ensure_ascii=False))

    def _read(self) -> List[Movement]:
        raw = self.storage.get(self.key)
        if not raw:
            return []
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Discarding unreadable movement history")
            return []
        return parse_movements(payload)


def parse_movements(payload: object) -> List[Movement]:
    """Decode movement records, skipping the ones that do not parse."""

    if not isinstance(payload, list):
        return []
    movements: List[Movement] = []
    for record in payload:
        try:
            movements.append(Movement.from_record(record))
        except ValueError:
            logger.warning("Skipping malformed movement record: %r", record)
            continue
    return movements


__all__ = ["MovementLedger", "parse_movements", "DEFAULT_CAPACITY", "DEFAULT_DISPLAY_LIMIT"]
