"""Offline inventory tracker core."""
from __future__ import annotations

from .errors import NotFoundError, ParseError, StockroomError, ValidationError
from .inventory import InventoryStore, SortMode, query_items
from .ledger import MovementLedger
from .migration import MigrationLoader
from .models import Item, Movement, StockLevel, UNGROUPED
from .normalizer import normalize, normalize_batch
from .storage import FileStorage, MemoryStorage

__all__ = [
    "create_app",
    "FileStorage",
    "InventoryStore",
    "Item",
    "MemoryStorage",
    "MigrationLoader",
    "Movement",
    "MovementLedger",
    "NotFoundError",
    "ParseError",
    "SortMode",
    "StockLevel",
    "StockroomError",
    "UNGROUPED",
    "ValidationError",
    "normalize",
    "normalize_batch",
    "query_items",
]


def create_app(*args, **kwargs):
    from .app import create_app as _create_app

    return _create_app(*args, **kwargs)
