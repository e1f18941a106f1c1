"""Inventory state: items, groups and the movement ledger kept consistent."""
from __future__ import annotations

from enum import Enum
from threading import RLock
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence
import json
import logging

from .config import Settings, get_settings
from .errors import NotFoundError, ValidationError
from .ledger import MovementLedger
from .migration import MigrationLoader
from .models import (
    DEFAULT_LOW_THRESHOLD,
    UNGROUPED,
    Item,
    Movement,
    StockLevel,
    serialize_timestamp,
)
from .normalizer import coerce_id, fallback_ids, fold, non_negative_int, safe_number
from .storage import GROUPS_KEY, ITEMS_KEY, KeyValueStorage

logger = logging.getLogger(__name__)


class SortMode(str, Enum):
    TRIAGE = "triage"
    ALPHABETICAL = "az"
    RECENT = "recent"

    @classmethod
    def parse(cls, value: Any) -> "SortMode":
        if isinstance(value, SortMode):
            return value
        text = str(value or "").strip().lower()
        if text == "low":
            return cls.TRIAGE
        for mode in cls:
            if mode.value == text:
                return mode
        return cls.TRIAGE


_TRIAGE_RANK = {StockLevel.ZERO: 0, StockLevel.LOW: 1, StockLevel.NORMAL: 2}


def _search_blob(item: Item) -> str:
    return fold(" ".join([item.group, item.model, item.name, item.location, item.description]))


def query_items(
    items: Iterable[Item],
    *,
    search: str = "",
    group: Optional[str] = None,
    only_attention: bool = False,
    sort: SortMode | str = SortMode.TRIAGE,
) -> List[Item]:
    """Filter and order ``items`` the way the catalog list shows them."""

    needle = fold(search)
    group_key = fold(group) if group else ""
    selected: List[Item] = []
    for item in items:
        if needle and needle not in _search_blob(item):
            continue
        if group_key and fold(item.group) != group_key:
            continue
        if only_attention and not item.stock_level.needs_attention:
            continue
        selected.append(item)
    mode = SortMode.parse(sort)
    if mode is SortMode.ALPHABETICAL:
        return sorted(selected, key=lambda item: fold(item.title))
    if mode is SortMode.RECENT:
        return sorted(selected, key=lambda item: item.updated_at, reverse=True)
    return sorted(
        selected,
        key=lambda item: (_TRIAGE_RANK[item.stock_level], fold(item.title)),
    )


def _clean_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _draft_value(draft: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in draft:
            return draft[key]
    return None


def parse_price(value: Any) -> Optional[float]:
    """Strict price parsing for user drafts: blank is ``None``, bad input raises."""

    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        if value == "":
            return None
    number = safe_number(value, None)
    if number is None:
        raise ValidationError("Price must be a number or left blank")
    if number < 0:
        raise ValidationError("Price cannot be negative")
    return float(number)


def validate_draft(draft: Mapping[str, Any]) -> Dict[str, Any]:
    """Check an item draft and return its cleaned field values."""

    if not isinstance(draft, Mapping):
        raise ValidationError("Item data must be an object")
    name = _clean_text(draft.get("name"))
    if not name:
        raise ValidationError("Item name is required")
    quantity = safe_number(draft.get("quantity"), None)
    if quantity is None:
        raise ValidationError("Quantity must be a number")
    if quantity < 0:
        raise ValidationError("Quantity cannot be negative")
    if not float(quantity).is_integer():
        raise ValidationError("Quantity must be a whole number")
    values: Dict[str, Any] = {
        "name": name,
        "group": _clean_text(draft.get("group")),
        "model": _clean_text(draft.get("model")),
        "description": _clean_text(draft.get("description")),
        "location": _clean_text(draft.get("location")),
        "price": parse_price(draft.get("price")),
        "quantity": int(quantity),
        "low_threshold": non_negative_int(
            _draft_value(draft, "low_threshold", "lowThreshold"), DEFAULT_LOW_THRESHOLD
        ),
    }
    if "photo" in draft:
        photo = draft.get("photo")
        values["photo"] = photo if isinstance(photo, str) and photo else None
    return values


def _find_group(groups: Sequence[str], name: Any) -> Optional[str]:
    key = fold(name)
    for existing in groups:
        if fold(existing) == key:
            return existing
    return None


def _ensure_in(groups: List[str], name: Any) -> str:
    candidate = _clean_text(name) or UNGROUPED
    existing = _find_group(groups, candidate)
    if existing is not None:
        return existing
    groups.append(candidate)
    return candidate


def _is_sentinel(name: Any) -> bool:
    return fold(name) == fold(UNGROUPED)


class InventoryStore:
    """Owns the item, group and movement collections and every mutation on them.

    The store hydrates once, at construction, through :class:`MigrationLoader`
    and writes the touched collections back to ``storage`` after each
    successful mutation. Items handed out are copies; mutate through the
    store's operations.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        settings: Optional[Settings] = None,
    ) -> None:
        self.storage = storage
        self.settings = settings if settings is not None else get_settings()
        self._lock = RLock()
        self.ledger = MovementLedger(
            storage,
            capacity=self.settings.movement_capacity,
            display_limit=self.settings.movement_display_limit,
        )
        loader = MigrationLoader(storage)
        items = loader.load()
        self._groups: List[str] = self._read_groups()
        stored_groups = list(self._groups)
        for item in items:
            item.group = _ensure_in(self._groups, item.group)
        self._items: List[Item] = items
        if loader.source_key not in (None, ITEMS_KEY):
            self._persist(groups=True)
        elif self._groups != stored_groups:
            self._persist(items=False, groups=True)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    @property
    def items(self) -> List[Item]:
        with self._lock:
            return [item.copy() for item in self._items]

    @property
    def groups(self) -> List[str]:
        with self._lock:
            return list(self._groups)

    def get(self, item_id: Any) -> Item:
        with self._lock:
            return self._locate(item_id).copy()

    def movements_for(self, item_id: Any, limit: Optional[int] = None) -> List[Movement]:
        return self.ledger.query_by_item(self._coerce_id(item_id), limit=limit)

    @staticmethod
    def classify(item: Item) -> StockLevel:
        return item.stock_level

    def attention_items(self) -> List[Item]:
        return self.query(only_attention=True, sort=SortMode.TRIAGE)

    def query(
        self,
        *,
        search: str = "",
        group: Optional[str] = None,
        only_attention: bool = False,
        sort: SortMode | str = SortMode.TRIAGE,
    ) -> List[Item]:
        return query_items(
            self.items,
            search=search,
            group=group,
            only_attention=only_attention,
            sort=sort,
        )

    def summary(self) -> Dict[str, Any]:
        with self._lock:
            levels = [item.stock_level for item in self._items]
            return {
                "items": len(self._items),
                "units": sum(item.quantity for item in self._items),
                "attention": sum(1 for level in levels if level.needs_attention),
                "low": levels.count(StockLevel.LOW),
                "zero": levels.count(StockLevel.ZERO),
                "stock_value": round(sum(item.stock_value for item in self._items), 2),
            }

    # ------------------------------------------------------------------
    # Item mutations
    # ------------------------------------------------------------------
    def create(self, draft: Mapping[str, Any]) -> Item:
        with self._lock:
            values = validate_draft(draft)
            group, created_group = self._ensure_group_locked(values.pop("group"))
            item = Item(
                id=self._next_id(),
                group=group,
                updated_at=serialize_timestamp(),
                **values,
            )
            self._items.append(item)
            self.ledger.append(item.id, 0, "created")
            self._persist(groups=created_group)
            logger.debug("Created item %s (%s)", item.id, item.name)
            return item.copy()

    def update(self, item_id: Any, draft: Mapping[str, Any]) -> Item:
        with self._lock:
            values = validate_draft(draft)
            item = self._locate(item_id)
            group, created_group = self._ensure_group_locked(values.pop("group"))
            item.group = group
            for field_name, value in values.items():
                setattr(item, field_name, value)
            item.updated_at = serialize_timestamp()
            self.ledger.append(item.id, 0, "edit")
            self._persist(groups=created_group)
            logger.debug("Updated item %s", item.id)
            return item.copy()

    def delete(self, item_id: Any) -> Item:
        with self._lock:
            item = self._locate(item_id)
            self._items = [entry for entry in self._items if entry.id != item.id]
            pruned = self.ledger.prune_for_item(item.id)
            self._persist()
            logger.debug("Deleted item %s and %d movement(s)", item.id, pruned)
            return item

    def clear_movements(self) -> int:
        with self._lock:
            cleared = len(self.ledger)
            self.ledger.clear()
            logger.info("Cleared %d movement(s)", cleared)
            return cleared

    def adjust_quantity(self, item_id: Any, delta: Any, note: str = "") -> Item:
        """Add ``delta`` to the quantity, clamping the result at zero.

        The ledger records the requested ``delta`` even when the clamp makes
        the effective change smaller.
        """

        number = safe_number(delta, None)
        if number is None or not float(number).is_integer():
            raise ValidationError("Quantity change must be a whole number")
        change = int(number)
        with self._lock:
            item = self._locate(item_id)
            item.quantity = max(0, item.quantity + change)
            item.updated_at = serialize_timestamp()
            if not note:
                note = "in" if change > 0 else "out" if change < 0 else "adjust"
            self.ledger.append(item.id, change, note)
            self._persist(groups=False)
            return item.copy()

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------
    def ensure_group(self, name: Any) -> str:
        with self._lock:
            canonical, created = self._ensure_group_locked(name)
            if created:
                self._persist(items=False, groups=True)
            return canonical

    def rename_group(self, old_name: Any, new_name: Any) -> str:
        with self._lock:
            current = self._require_group(old_name)
            if _is_sentinel(current):
                raise ValidationError("The default group cannot be renamed")
            target = _clean_text(new_name)
            if not target:
                raise ValidationError("Group name is required")
            clash = _find_group(self._groups, target)
            if clash is not None and clash != current:
                raise ValidationError(f"A group named '{clash}' already exists")
            self._groups[self._groups.index(current)] = target
            self._relabel_items(current, target)
            self._persist()
            return target

    def delete_group(self, name: Any) -> int:
        with self._lock:
            if _is_sentinel(name):
                raise ValidationError("The default group cannot be deleted")
            current = self._require_group(name)
            moved = self._relabel_items(current, UNGROUPED)
            self._groups.remove(current)
            self._persist()
            return moved

    def merge_groups(self, source: Any, target: Any) -> int:
        with self._lock:
            if _is_sentinel(source):
                raise ValidationError("The default group cannot be merged away")
            current = self._require_group(source)
            if not _clean_text(target):
                raise ValidationError("Target group is required")
            if fold(current) == fold(target):
                raise ValidationError("A group cannot be merged into itself")
            destination, _ = self._ensure_group_locked(target)
            moved = self._relabel_items(current, destination)
            self._groups.remove(current)
            self._persist()
            return moved

    # ------------------------------------------------------------------
    # Wholesale replacement
    # ------------------------------------------------------------------
    def replace_all(
        self,
        items: Iterable[Item],
        groups: Optional[Iterable[Any]] = None,
        movements: Optional[Iterable[Movement]] = None,
    ) -> int:
        """Swap in a new catalog, as restore and CSV import do."""

        incoming = [item.copy() for item in items]
        new_groups: List[str] = [UNGROUPED]
        if groups is not None:
            for name in groups:
                if isinstance(name, str) and name.strip():
                    _ensure_in(new_groups, name)
        seen: set[int] = set()
        for index, item in enumerate(incoming):
            while item.id in seen:
                item.id = fallback_ids.next(index)
            seen.add(item.id)
            item.group = _ensure_in(new_groups, item.group)
        adopted = None if movements is None else list(movements)
        with self._lock:
            self._items = incoming
            self._groups = new_groups
            if adopted is not None:
                self.ledger.replace(adopted)
            self._persist()
            logger.info(
                "Replaced catalog with %d item(s) in %d group(s)",
                len(incoming),
                len(new_groups),
            )
            return len(incoming)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _coerce_id(item_id: Any) -> int:
        number = coerce_id(item_id)
        if number is None:
            raise NotFoundError(f"Item '{item_id}' not found")
        return number

    def _locate(self, item_id: Any) -> Item:
        wanted = self._coerce_id(item_id)
        for item in self._items:
            if item.id == wanted:
                return item
        raise NotFoundError(f"Item '{item_id}' not found")

    def _next_id(self) -> int:
        return max((item.id for item in self._items), default=0) + 1

    def _ensure_group_locked(self, name: Any) -> tuple[str, bool]:
        before = len(self._groups)
        canonical = _ensure_in(self._groups, name)
        return canonical, len(self._groups) != before

    def _require_group(self, name: Any) -> str:
        existing = _find_group(self._groups, name)
        if existing is None:
            raise NotFoundError(f"Group '{name}' not found")
        return existing

    def _relabel_items(self, old_name: str, new_name: str) -> int:
        key = fold(old_name)
        stamp = serialize_timestamp()
        moved = 0
        for item in self._items:
            if fold(item.group) == key:
                item.group = new_name
                item.updated_at = stamp
                moved += 1
        return moved

    def _read_groups(self) -> List[str]:
        groups: List[str] = [UNGROUPED]
        raw = self.storage.get(GROUPS_KEY)
        if not raw:
            return groups
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Discarding unreadable group list")
            return groups
        if not isinstance(payload, list):
            return groups
        # the sentinel always carries its canonical spelling
        for name in payload:
            if isinstance(name, str) and name.strip():
                _ensure_in(groups, name)
        return groups

    def _persist(self, *, items: bool = True, groups: bool = True) -> None:
        if items:
            records = [item.to_dict() for item in self._items]
            self.storage.set(ITEMS_KEY, json.dumps(records, ensure_ascii=False))
        if groups:
            self.storage.set(GROUPS_KEY, json.dumps(self._groups, ensure_ascii=False))


__all__ = [
    "InventoryStore",
    "SortMode",
    "parse_price",
    "query_items",
    "validate_draft",
]
