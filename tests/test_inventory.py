from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict

import pytest

from stockroom.config import Settings
from stockroom.errors import NotFoundError, ValidationError
from stockroom.inventory import InventoryStore, SortMode, query_items
from stockroom.models import UNGROUPED, Item, StockLevel
from stockroom.storage import GROUPS_KEY, ITEMS_KEY, FileStorage, MemoryStorage


def _draft(**overrides: Any) -> Dict[str, Any]:
    draft: Dict[str, Any] = {
        "group": "Tools",
        "model": "X1",
        "name": "Hammer",
        "description": "Steel head",
        "location": "Aisle 3",
        "price": "19.90",
        "quantity": 5,
        "lowThreshold": 2,
    }
    draft.update(overrides)
    return draft


def test_create_and_get(store: InventoryStore) -> None:
    item = store.create(_draft())

    assert item.id == 1
    assert item.quantity == 5
    assert item.price == 19.9
    assert item.group == "Tools"
    assert item.updated_at

    fetched = store.get(item.id)
    assert fetched == item
    assert "Tools" in store.groups

    movements = store.movements_for(item.id)
    assert len(movements) == 1
    assert movements[0].delta == 0
    assert movements[0].note == "created"


def test_create_assigns_next_id_after_maximum(store: InventoryStore) -> None:
    store.replace_all([Item(id=41, name="Old")])

    item = store.create(_draft())

    assert item.id == 42
    assert len({entry.id for entry in store.items}) == 2


def test_blank_price_is_none_and_zero_is_kept(store: InventoryStore) -> None:
    blank = store.create(_draft(price=""))
    zero = store.create(_draft(name="Free sample", price="0"))

    assert blank.price is None
    assert zero.price == 0.0


def test_blank_group_uses_default_group(store: InventoryStore) -> None:
    item = store.create(_draft(group="   "))

    assert item.group == UNGROUPED


@pytest.mark.parametrize(
    "overrides",
    [
        {"name": "  "},
        {"quantity": -1},
        {"quantity": "abc"},
        {"quantity": None},
        {"quantity": 1.5},
        {"price": "-3"},
        {"price": "cheap"},
    ],
)
def test_create_rejects_invalid_drafts_without_writing(
    store: InventoryStore, overrides: Dict[str, Any]
) -> None:
    with pytest.raises(ValidationError):
        store.create(_draft(group="Brand new group", **overrides))

    assert store.items == []
    assert store.ledger.query_all() == []
    assert store.groups == [UNGROUPED]


def test_update_replaces_fields_and_logs_edit(store: InventoryStore) -> None:
    item = store.create(_draft(photo="data:image/jpeg;base64,AAAA"))

    updated = store.update(
        item.id,
        _draft(name="Claw hammer", group="Hand tools", quantity=8, price=None),
    )

    assert updated.name == "Claw hammer"
    assert updated.group == "Hand tools"
    assert updated.quantity == 8
    assert updated.price is None
    assert updated.photo == "data:image/jpeg;base64,AAAA"
    assert "Hand tools" in store.groups
    notes = [movement.note for movement in store.movements_for(item.id)]
    assert notes == ["edit", "created"]


def test_update_can_clear_photo(store: InventoryStore) -> None:
    item = store.create(_draft(photo="data:image/jpeg;base64,AAAA"))

    updated = store.update(item.id, _draft(photo=None))

    assert updated.photo is None


def test_update_unknown_item(store: InventoryStore) -> None:
    with pytest.raises(NotFoundError):
        store.update(99, _draft())


def test_update_validation_leaves_item_untouched(store: InventoryStore) -> None:
    item = store.create(_draft())

    with pytest.raises(ValidationError):
        store.update(item.id, _draft(name="Renamed", price="-1"))

    assert store.get(item.id).name == "Hammer"
    assert len(store.movements_for(item.id)) == 1


def test_delete_prunes_movements(store: InventoryStore) -> None:
    keep = store.create(_draft(name="Keep"))
    drop = store.create(_draft(name="Drop"))
    store.adjust_quantity(drop.id, 1)

    removed = store.delete(drop.id)

    assert removed.id == drop.id
    assert [item.id for item in store.items] == [keep.id]
    assert store.movements_for(drop.id) == []
    assert len(store.movements_for(keep.id)) == 1
    with pytest.raises(NotFoundError):
        store.get(drop.id)
    with pytest.raises(NotFoundError):
        store.delete(drop.id)


def test_adjust_quantity_clamps_at_zero(store: InventoryStore) -> None:
    item = store.create(_draft(quantity=3))

    adjusted = store.adjust_quantity(item.id, -1000)

    assert adjusted.quantity == 0
    latest = store.movements_for(item.id)[0]
    assert latest.delta == -1000
    assert latest.note == "out"


def test_adjust_quantity_records_note(store: InventoryStore) -> None:
    item = store.create(_draft(quantity=3))

    store.adjust_quantity(item.id, 1, "restock")
    store.adjust_quantity(item.id, -1, "sale")

    assert store.get(item.id).quantity == 3
    assert [m.note for m in store.movements_for(item.id)] == ["sale", "restock", "created"]


def test_adjust_quantity_errors(store: InventoryStore) -> None:
    item = store.create(_draft())

    with pytest.raises(NotFoundError):
        store.adjust_quantity(item.id + 1, 1)
    with pytest.raises(ValidationError):
        store.adjust_quantity(item.id, 0.5)
    with pytest.raises(ValidationError):
        store.adjust_quantity(item.id, "many")


def test_ensure_group_is_idempotent(store: InventoryStore) -> None:
    first = store.ensure_group("Tools")
    second = store.ensure_group("Tools")
    variant = store.ensure_group("  tools ")

    assert first == second == variant == "Tools"
    assert store.groups.count("Tools") == 1


def test_ensure_group_is_accent_insensitive(store: InventoryStore) -> None:
    canonical = store.ensure_group("Elétrica")

    assert store.ensure_group("ELETRICA") == canonical
    assert store.ensure_group("") == UNGROUPED
    assert store.ensure_group(None) == UNGROUPED
    assert store.groups == [UNGROUPED, "Elétrica"]


def test_rename_group_relabels_items(store: InventoryStore) -> None:
    item = store.create(_draft(group="Tools"))
    store.ensure_group("Paint")
    before = store.get(item.id).updated_at

    renamed = store.rename_group("tools", "Hardware")

    assert renamed == "Hardware"
    assert store.get(item.id).group == "Hardware"
    assert store.get(item.id).updated_at >= before
    assert "Tools" not in store.groups
    assert "Hardware" in store.groups


def test_rename_group_rules(store: InventoryStore) -> None:
    store.ensure_group("Tools")
    store.ensure_group("Paint")

    with pytest.raises(ValidationError):
        store.rename_group("Tools", "PAINT")
    with pytest.raises(ValidationError):
        store.rename_group("Tools", "  ")
    with pytest.raises(ValidationError):
        store.rename_group(UNGROUPED, "Misc")
    with pytest.raises(NotFoundError):
        store.rename_group("Missing", "Other")

    assert store.rename_group("Tools", "TOOLS") == "TOOLS"


def test_delete_group_reassigns_items(store: InventoryStore) -> None:
    for name in ("Saw", "Drill", "Level"):
        store.create(_draft(name=name, group="Tools"))
    other = store.create(_draft(name="Brush", group="Paint"))

    moved = store.delete_group("Tools")

    assert moved == 3
    assert "Tools" not in store.groups
    groups = {item.name: item.group for item in store.items}
    assert groups == {"Saw": UNGROUPED, "Drill": UNGROUPED, "Level": UNGROUPED, "Brush": "Paint"}
    assert store.get(other.id).group == "Paint"


def test_default_group_cannot_be_deleted(store: InventoryStore) -> None:
    with pytest.raises(ValidationError):
        store.delete_group(UNGROUPED)
    with pytest.raises(ValidationError):
        store.delete_group("ungrouped")
    with pytest.raises(NotFoundError):
        store.delete_group("Missing")
    assert UNGROUPED in store.groups


def test_merge_groups(store: InventoryStore) -> None:
    store.create(_draft(name="Saw", group="Tools"))
    store.create(_draft(name="Drill", group="Power tools"))

    moved = store.merge_groups("Power tools", "tools")

    assert moved == 1
    assert {item.group for item in store.items} == {"Tools"}
    assert "Power tools" not in store.groups
    with pytest.raises(ValidationError):
        store.merge_groups("Tools", "TOOLS")
    with pytest.raises(ValidationError):
        store.merge_groups(UNGROUPED, "Tools")


@pytest.mark.parametrize("target", [None, "", "   "])
def test_merge_groups_requires_target(store: InventoryStore, target) -> None:
    store.create(_draft(name="Saw", group="Tools"))

    with pytest.raises(ValidationError):
        store.merge_groups("Tools", target)

    assert store.groups == [UNGROUPED, "Tools"]
    assert [item.group for item in store.items] == ["Tools"]


def test_stored_default_group_spelling_is_canonical(settings: Settings) -> None:
    storage = MemoryStorage({GROUPS_KEY: json.dumps(["ungrouped", "Tools"])})
    store = InventoryStore(storage, settings)
    saw = store.create(_draft(name="Saw", group="Tools"))

    assert store.groups == [UNGROUPED, "Tools"]

    store.delete_group("Tools")

    assert store.groups == [UNGROUPED]
    assert store.get(saw.id).group == UNGROUPED
    assert store.ensure_group("ungrouped") == UNGROUPED
    assert json.loads(storage.get(GROUPS_KEY)) == [UNGROUPED]


def test_large_ids_are_kept_exactly(settings: Settings) -> None:
    big_id = 9007199254740993
    storage = MemoryStorage({ITEMS_KEY: json.dumps([{"id": big_id, "name": "Cable"}])})
    store = InventoryStore(storage, settings)

    assert store.items[0].id == big_id
    assert store.get(big_id).name == "Cable"
    assert store.get(str(big_id)).name == "Cable"
    assert store.adjust_quantity(big_id, 2).quantity == 2


def test_clear_movements(store: InventoryStore) -> None:
    item = store.create(_draft())
    store.adjust_quantity(item.id, -1)

    assert store.clear_movements() == 2
    assert len(store.ledger) == 0
    assert store.movements_for(item.id) == []
    assert store.get(item.id).quantity == 4


def test_classification() -> None:
    assert Item(id=1, name="a", quantity=0, low_threshold=5).stock_level is StockLevel.ZERO
    assert Item(id=2, name="b", quantity=2, low_threshold=2).stock_level is StockLevel.LOW
    assert Item(id=3, name="c", quantity=3, low_threshold=2).stock_level is StockLevel.NORMAL
    assert Item(id=4, name="d", quantity=1, low_threshold=0).stock_level is StockLevel.NORMAL


def test_classification_follows_latest_quantity(store: InventoryStore) -> None:
    item = store.create(_draft(quantity=3, lowThreshold=2))
    assert store.classify(store.get(item.id)) is StockLevel.NORMAL

    store.adjust_quantity(item.id, -1)
    assert store.classify(store.get(item.id)) is StockLevel.LOW

    store.adjust_quantity(item.id, -2)
    assert store.classify(store.get(item.id)) is StockLevel.ZERO
    assert [entry.id for entry in store.attention_items()] == [item.id]


def _catalog() -> list[Item]:
    return [
        Item(id=1, name="Vidro", group="Películas", model="A10", quantity=10,
             updated_at="2024-01-02T00:00:00+00:00"),
        Item(id=2, name="Capa", group="Capas", quantity=0,
             updated_at="2024-01-05T00:00:00+00:00"),
        Item(id=3, name="Cabo", group="Cabos", location="Gaveta azul", quantity=1,
             updated_at="2024-01-03T00:00:00+00:00"),
        Item(id=4, name="Adaptador", group="Cabos", quantity=2,
             updated_at="2024-01-01T00:00:00+00:00"),
    ]


def test_query_search_is_accent_insensitive() -> None:
    assert [i.id for i in query_items(_catalog(), search="PELICULAS")] == [1]
    assert [i.id for i in query_items(_catalog(), search="azul")] == [3]
    assert [i.id for i in query_items(_catalog(), search="a10 vidro")] == [1]


def test_query_group_and_attention_filters() -> None:
    cables = query_items(_catalog(), group="cabos", sort=SortMode.ALPHABETICAL)
    assert [i.id for i in cables] == [4, 3]

    attention = query_items(_catalog(), only_attention=True)
    assert [i.id for i in attention] == [2, 4, 3]


def test_query_sort_orders() -> None:
    assert [i.id for i in query_items(_catalog(), sort="az")] == [4, 3, 2, 1]
    assert [i.id for i in query_items(_catalog(), sort="recent")] == [2, 3, 1, 4]
    assert [i.id for i in query_items(_catalog(), sort="triage")] == [2, 4, 3, 1]
    assert [i.id for i in query_items(_catalog(), sort="low")] == [2, 4, 3, 1]


def test_item_title() -> None:
    assert Item(id=1, name="Vidro", group="Películas", model="A10").title == "Películas — A10 • Vidro"
    assert Item(id=1, name="Vidro", group="Películas").title == "Películas — Vidro"


def test_replace_all_derives_groups(store: InventoryStore) -> None:
    store.ensure_group("Stale")
    items = [
        Item(id=1, name="a", group="Cabos"),
        Item(id=1, name="b", group="cabos"),
        Item(id=2, name="c", group="Capas"),
    ]

    count = store.replace_all(items)

    assert count == 3
    assert store.groups == [UNGROUPED, "Cabos", "Capas"]
    assert len({item.id for item in store.items}) == 3
    assert {item.group for item in store.items} == {"Cabos", "Capas"}


def test_replace_all_with_explicit_groups(store: InventoryStore) -> None:
    store.replace_all([Item(id=1, name="a", group="Cabos")], groups=["Capas", "capas", "", 7])

    assert store.groups == [UNGROUPED, "Capas", "Cabos"]


def test_summary(store: InventoryStore) -> None:
    store.create(_draft(name="A", quantity=0, price="2"))
    store.create(_draft(name="B", quantity=2, price="1.5", lowThreshold=2))
    store.create(_draft(name="C", quantity=10, price=""))

    summary = store.summary()

    assert summary == {
        "items": 3,
        "units": 12,
        "attention": 2,
        "low": 1,
        "zero": 1,
        "stock_value": 3.0,
    }


def test_state_survives_restart(tmp_path: Path, settings: Settings) -> None:
    storage = FileStorage(tmp_path / "kv")
    store = InventoryStore(storage, settings)
    item = store.create(_draft())
    store.adjust_quantity(item.id, -2, "sale")

    reopened = InventoryStore(FileStorage(tmp_path / "kv"), settings)

    assert reopened.get(item.id).quantity == 3
    assert reopened.groups == [UNGROUPED, "Tools"]
    assert [m.note for m in reopened.movements_for(item.id)] == ["sale", "created"]


def test_returned_items_are_copies(store: InventoryStore) -> None:
    item = store.create(_draft())
    item.quantity = -50

    assert store.get(item.id).quantity == 5


def test_memory_storage_contains() -> None:
    storage = MemoryStorage({"a": "1"})

    assert "a" in storage
    assert "b" not in storage
