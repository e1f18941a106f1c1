"""Turn decoded records from any stored generation into canonical items.

No version tag is ever written alongside the data, so the shape of a record is
inferred from the fields it carries:

* ``RecordShape.MODERN`` records have at least one of ``name``, ``model`` or
  ``group`` (or the ``nome``/``modelo``/``grupo`` spelling used by the first
  releases). Fields are mapped one to one with per-field defaults.
* ``RecordShape.LEGACY`` records are the flat ``{descricao, valor, quantidade}``
  rows written by the very first release. They are lifted into the default
  group with the default low-stock threshold.

Every record read from storage or from an imported file goes through
:func:`normalize` before it becomes an :class:`~stockroom.models.Item`.
"""
from __future__ import annotations

from enum import Enum
from threading import Lock
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Set
import math
import time
import unicodedata

from .models import DEFAULT_LOW_THRESHOLD, UNGROUPED, Item, serialize_timestamp

_MISSING = object()

_FIELD_ALIASES: Dict[str, tuple[str, ...]] = {
    "id": ("id",),
    "name": ("name", "nome"),
    "model": ("model", "modelo"),
    "group": ("group", "grupo"),
    "description": ("description", "descricao"),
    "location": ("location", "local", "localizacao"),
    "photo": ("photo", "foto"),
    "price": ("price", "valor", "value"),
    "quantity": ("quantity", "quantidade"),
    "low_threshold": ("lowThreshold", "low_threshold", "limite"),
    "updated_at": ("updatedAt", "updated_at", "atualizado_em"),
}

_MODERN_MARKERS = ("name", "model", "group", "nome", "modelo", "grupo")


class RecordShape(str, Enum):
    MODERN = "modern"
    LEGACY = "legacy"


def fold(value: Any) -> str:
    """Case and accent insensitive comparison key."""

    if value is None:
        return ""
    decomposed = unicodedata.normalize("NFD", str(value))
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.lower().strip()


def safe_number(value: Any, fallback: Any = 0) -> Any:
    """Parse ``value`` as a finite number or return ``fallback``."""

    if value is None:
        return fallback
    if isinstance(value, str):
        value = value.strip()
        if value == "":
            return fallback
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return fallback
    if not math.isfinite(number):
        return fallback
    return number


def non_negative_int(value: Any, fallback: int = 0) -> int:
    number = safe_number(value, fallback)
    return int(max(0, number))


def lenient_price(value: Any) -> Optional[float]:
    """Price as stored by older releases: blank is ``None``, garbage is ``0``."""

    if value is None or value is _MISSING:
        return None
    if isinstance(value, str) and value.strip() == "":
        return None
    number = safe_number(value, None)
    if number is None or number < 0:
        return 0.0
    return float(number)


class _FallbackIds:
    """Monotonic id source seeded from the wall clock in milliseconds."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._last = 0
        self._lock = Lock()

    def next(self, index_hint: int = 0) -> int:
        with self._lock:
            candidate = int(self._clock() * 1000) + max(0, int(index_hint))
            self._last = max(self._last + 1, candidate)
            return self._last


fallback_ids = _FallbackIds()


def _pick(record: Mapping[str, Any], field: str) -> Any:
    for key in _FIELD_ALIASES[field]:
        if key in record:
            return record[key]
    return _MISSING


def _text(value: Any) -> str:
    if value is None or value is _MISSING:
        return ""
    return str(value).strip()


def coerce_id(value: Any) -> Optional[int]:
    """Item id from ``value``; integers and integer strings are taken exactly."""

    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    number = safe_number(value, None)
    if number is None:
        return None
    return int(number)


def _item_id(record: Mapping[str, Any], index_hint: int) -> int:
    number = coerce_id(record.get("id"))
    if number is None:
        return fallback_ids.next(index_hint)
    return number


def _updated_at(record: Mapping[str, Any]) -> str:
    value = _pick(record, "updated_at")
    text = _text(value)
    return text or serialize_timestamp()


def _photo(record: Mapping[str, Any]) -> Optional[str]:
    value = _pick(record, "photo")
    if isinstance(value, str) and value.strip():
        return value
    return None


def detect_shape(record: Mapping[str, Any]) -> RecordShape:
    if any(marker in record for marker in _MODERN_MARKERS):
        return RecordShape.MODERN
    return RecordShape.LEGACY


def _normalize_modern(record: Mapping[str, Any], index_hint: int) -> Item:
    return Item(
        id=_item_id(record, index_hint),
        group=_text(_pick(record, "group")) or UNGROUPED,
        model=_text(_pick(record, "model")),
        name=_text(_pick(record, "name")),
        description=_text(_pick(record, "description")),
        location=_text(_pick(record, "location")),
        photo=_photo(record),
        price=lenient_price(_pick(record, "price")),
        quantity=non_negative_int(_pick(record, "quantity"), 0),
        low_threshold=non_negative_int(
            _pick(record, "low_threshold"), DEFAULT_LOW_THRESHOLD
        ),
        updated_at=_updated_at(record),
    )


def _normalize_legacy(record: Mapping[str, Any], index_hint: int) -> Item:
    name = _pick(record, "description")
    if name is _MISSING or not _text(name):
        name = _pick(record, "name")
    return Item(
        id=_item_id(record, index_hint),
        group=UNGROUPED,
        name=_text(name),
        price=lenient_price(_pick(record, "price")),
        quantity=non_negative_int(_pick(record, "quantity"), 0),
        low_threshold=DEFAULT_LOW_THRESHOLD,
        updated_at=_updated_at(record),
    )


_NORMALIZERS: Dict[RecordShape, Callable[[Mapping[str, Any], int], Item]] = {
    RecordShape.MODERN: _normalize_modern,
    RecordShape.LEGACY: _normalize_legacy,
}


def normalize(raw: Any, index_hint: int = 0) -> Optional[Item]:
    """Return a canonical item for ``raw`` or ``None`` when it is not a record."""

    if not isinstance(raw, Mapping):
        return None
    return _NORMALIZERS[detect_shape(raw)](raw, index_hint)


def normalize_batch(
    records: Iterable[Any],
    *,
    existing_ids: Iterable[int] = (),
) -> List[Item]:
    """Normalize ``records`` and make their ids unique within the batch."""

    seen: Set[int] = set(existing_ids)
    items: List[Item] = []
    for index, raw in enumerate(records):
        item = normalize(raw, index)
        if item is None:
            continue
        while item.id in seen:
            item.id = fallback_ids.next(index)
        seen.add(item.id)
        items.append(item)
    return items


__all__ = [
    "RecordShape",
    "coerce_id",
    "detect_shape",
    "fold",
    "lenient_price",
    "non_negative_int",
    "normalize",
    "normalize_batch",
    "safe_number",
]
