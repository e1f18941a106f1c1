"""Hydrate the item collection from whichever storage generation exists."""
from __future__ import annotations

from typing import Any, List, Optional, Sequence
import json
import logging

from .models import Item
from .normalizer import normalize_batch
from .storage import ITEMS_KEY, LEGACY_ITEM_KEYS, KeyValueStorage

logger = logging.getLogger(__name__)

_WRAPPER_FIELDS = ("items", "products")


def extract_records(payload: Any) -> Optional[List[Any]]:
    """Return the item array of ``payload``, bare or wrapped, or ``None``."""

    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for field in _WRAPPER_FIELDS:
            value = payload.get(field)
            if isinstance(value, list):
                return value
    return None


class MigrationLoader:
    """Reads the first parseable item collection among the known keys."""

    def __init__(
        self,
        storage: KeyValueStorage,
        candidates: Sequence[str] = (ITEMS_KEY, *LEGACY_ITEM_KEYS),
    ) -> None:
        self.storage = storage
        self.candidates = tuple(candidates)
        self.source_key: Optional[str] = None

    def load(self) -> List[Item]:
        self.source_key = None
        for key in self.candidates:
            try:
                items = self._load_candidate(key)
            except Exception:  # any failure moves on to the next generation
                logger.warning("Skipping unreadable item record %r", key, exc_info=True)
                continue
            if items is None:
                continue
            self.source_key = key
            if key != self.candidates[0]:
                logger.info("Migrated %d item(s) from legacy key %r", len(items), key)
            return items
        logger.debug("No stored item collection found; starting empty")
        return []

    def _load_candidate(self, key: str) -> Optional[List[Item]]:
        raw = self.storage.get(key)
        if not raw:
            return None
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Item record %r is not valid JSON", key)
            return None
        records = extract_records(payload)
        if records is None:
            logger.warning("Item record %r has no item array", key)
            return None
        return normalize_batch(records)


__all__ = ["MigrationLoader", "extract_records"]
