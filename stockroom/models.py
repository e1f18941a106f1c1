"""Canonical records kept by the inventory store."""
from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

UNGROUPED = "Ungrouped"
DEFAULT_LOW_THRESHOLD = 2


def now() -> datetime:
    return datetime.now(timezone.utc)


def serialize_timestamp(value: Optional[datetime] = None) -> str:
    if value is None:
        value = now()
    return value.astimezone(timezone.utc).isoformat()


def parse_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class StockLevel(str, Enum):
    """Stock classification derived from quantity and threshold."""

    ZERO = "zero"
    LOW = "low"
    NORMAL = "normal"

    @property
    def needs_attention(self) -> bool:
        return self is not StockLevel.NORMAL


@dataclass
class Item:
    """A single stock keeping unit."""

    id: int
    name: str
    group: str = UNGROUPED
    model: str = ""
    description: str = ""
    location: str = ""
    photo: Optional[str] = None
    price: Optional[float] = None
    quantity: int = 0
    low_threshold: int = DEFAULT_LOW_THRESHOLD
    updated_at: str = ""

    @property
    def stock_level(self) -> StockLevel:
        if self.quantity == 0:
            return StockLevel.ZERO
        if self.quantity <= self.low_threshold:
            return StockLevel.LOW
        return StockLevel.NORMAL

    @property
    def title(self) -> str:
        """Label combining group, model and name, skipping blank parts."""

        group = self.group.strip()
        model = self.model.strip()
        name = self.name.strip()
        left = f"{model} • {name}" if model else name
        return f"{group} — {left}" if group else left

    @property
    def stock_value(self) -> float:
        if self.price is None:
            return 0.0
        return self.price * self.quantity

    def copy(self, **changes: Any) -> "Item":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "group": self.group,
            "model": self.model,
            "name": self.name,
            "description": self.description,
            "location": self.location,
            "photo": self.photo,
            "price": self.price,
            "quantity": self.quantity,
            "lowThreshold": self.low_threshold,
            "updatedAt": self.updated_at,
        }


@dataclass(frozen=True)
class Movement:
    """An immutable ledger entry for one item."""

    id: str
    item_id: int
    delta: int
    note: str
    timestamp: str

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "itemId": self.item_id,
            "delta": self.delta,
            "note": self.note,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_record(cls, record: Any) -> "Movement":
        if not isinstance(record, dict):
            raise ValueError("Movement record must be an object")
        raw_item_id = record.get("itemId", record.get("item_id"))
        try:
            item_id = int(raw_item_id)
            delta = int(record.get("delta", 0))
        except (TypeError, ValueError, OverflowError) as exc:
            raise ValueError("Movement record has a non-numeric field") from exc
        timestamp = record.get("timestamp")
        if parse_timestamp(timestamp) is None:
            raise ValueError("Invalid timestamp in movement record")
        movement_id = str(record.get("id") or "").strip()
        if not movement_id:
            raise ValueError("Movement record missing id")
        note = record.get("note")
        return cls(
            id=movement_id,
            item_id=item_id,
            delta=delta,
            note="" if note is None else str(note),
            timestamp=str(timestamp),
        )


__all__ = [
    "Item",
    "Movement",
    "StockLevel",
    "UNGROUPED",
    "DEFAULT_LOW_THRESHOLD",
    "now",
    "serialize_timestamp",
    "parse_timestamp",
]
