"""JSON backup/restore and CSV import/export for the whole catalog.

Imports are all-or-nothing: the incoming data is decoded and normalized in
full before the store is touched, and any decoding problem raises
:class:`~stockroom.errors.ParseError` with the store left as it was.
"""
from __future__ import annotations

from datetime import datetime
from io import StringIO
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional
import csv
import json
import logging

from .errors import ParseError
from .ledger import parse_movements
from .migration import extract_records
from .models import Item, now, serialize_timestamp
from .normalizer import normalize_batch

if TYPE_CHECKING:
    from .inventory import InventoryStore

logger = logging.getLogger(__name__)

BACKUP_APP = "stockroom"
BACKUP_VERSION = 4

CSV_COLUMNS = [
    "id",
    "group",
    "model",
    "name",
    "location",
    "description",
    "price",
    "quantity",
    "lowThreshold",
    "updatedAt",
]


def _normalize_csv_key(value: Any) -> str:
    if value is None:
        return ""
    text = str(value).replace("\ufeff", "").strip().lower()
    for separator in (" ", "_", "-"):
        text = text.replace(separator, "")
    return text


_CSV_FIELD_ALIASES: Dict[str, set[str]] = {
    "id": {"id"},
    "group": {"group", "grupo"},
    "model": {"model", "modelo"},
    "name": {"name", "nome"},
    "location": {"location", "local", "localizacao"},
    "description": {"description", "descricao"},
    "price": {"price", "valor"},
    "quantity": {"quantity", "quantidade", "qty"},
    "lowThreshold": {"lowthreshold", "threshold", "limite"},
    "updatedAt": {"updatedat", "atualizadoem"},
}

_CSV_HEADER_LOOKUP: Dict[str, str] = {
    _normalize_csv_key(alias): canonical
    for canonical, aliases in _CSV_FIELD_ALIASES.items()
    for alias in aliases
}


def _decode(payload: str | bytes) -> str:
    if isinstance(payload, bytes):
        try:
            return payload.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise ParseError("File is not valid UTF-8 text") from exc
    return payload.lstrip("\ufeff")


def _format_number(value: Optional[float]) -> str:
    if value is None:
        return ""
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def backup_filename(moment: Optional[datetime] = None) -> str:
    moment = moment or now()
    return f"stockroom-backup-{moment.date().isoformat()}.json"


def csv_filename(moment: Optional[datetime] = None) -> str:
    moment = moment or now()
    return f"stockroom-{moment.date().isoformat()}.csv"


# ----------------------------------------------------------------------
# JSON backup
# ----------------------------------------------------------------------
def export_backup(store: "InventoryStore") -> Dict[str, Any]:
    return {
        "app": BACKUP_APP,
        "version": BACKUP_VERSION,
        "exportedAt": serialize_timestamp(),
        "groups": store.groups,
        "items": [item.to_dict() for item in store.items],
        "movements": [movement.to_record() for movement in store.ledger.query_all()],
    }


def dump_backup(store: "InventoryStore") -> str:
    return json.dumps(export_backup(store), indent=2, ensure_ascii=False)


def restore_backup(store: "InventoryStore", payload: str | bytes) -> int:
    """Replace the whole store with the contents of a backup file."""

    text = _decode(payload)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ParseError("Backup file is not valid JSON") from exc
    records = extract_records(data)
    if records is None:
        raise ParseError("Backup file does not contain an item list")
    items = normalize_batch(records)
    groups = None
    movements = None
    if isinstance(data, dict):
        if isinstance(data.get("groups"), list):
            groups = data["groups"]
        if isinstance(data.get("movements"), list):
            movements = parse_movements(data["movements"])[: store.ledger.capacity]
    count = store.replace_all(items, groups=groups, movements=movements)
    logger.info("Restored %d item(s) from backup", count)
    return count


# ----------------------------------------------------------------------
# CSV
# ----------------------------------------------------------------------
def export_csv(items: Iterable[Item]) -> str:
    buffer = StringIO()
    buffer.write(",".join(CSV_COLUMNS) + "\r\n")
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\r\n")
    for item in items:
        writer.writerow(
            [
                item.id,
                item.group,
                item.model,
                item.name,
                item.location,
                item.description,
                _format_number(item.price),
                item.quantity,
                item.low_threshold,
                item.updated_at,
            ]
        )
    return buffer.getvalue()


def parse_csv(payload: str | bytes) -> List[Dict[str, str]]:
    """Decode CSV text into rows keyed by canonical column name.

    Columns are matched by header name, so their order does not matter and
    absent columns come back as empty strings. Rows whose name is blank are
    dropped.
    """

    text = _decode(payload)
    reader = csv.reader(StringIO(text, newline=""), strict=True)
    try:
        header = next(reader, None)
        if header is None:
            raise ParseError("CSV file is empty")
        positions: Dict[str, int] = {}
        for index, column in enumerate(header):
            canonical = _CSV_HEADER_LOOKUP.get(_normalize_csv_key(column))
            if canonical is not None and canonical not in positions:
                positions[canonical] = index
        if "name" not in positions:
            raise ParseError("CSV file has no name column")
        rows: List[Dict[str, str]] = []
        for cells in reader:
            if not any(cell.strip() for cell in cells):
                continue
            row: Dict[str, str] = {}
            for column in CSV_COLUMNS:
                position = positions.get(column)
                if position is None or position >= len(cells):
                    row[column] = ""
                else:
                    row[column] = cells[position]
            if not row["name"].strip():
                continue
            rows.append(row)
    except csv.Error as exc:
        raise ParseError(f"CSV file is malformed: {exc}") from exc
    return rows


def import_csv(store: "InventoryStore", payload: str | bytes) -> int:
    """Replace the catalog with the rows of a CSV file."""

    rows = parse_csv(payload)
    items = normalize_batch(rows)
    for item in items:
        item.photo = None
    count = store.replace_all(items)
    logger.info("Imported %d item(s) from CSV", count)
    return count


__all__ = [
    "BACKUP_APP",
    "BACKUP_VERSION",
    "CSV_COLUMNS",
    "backup_filename",
    "csv_filename",
    "dump_backup",
    "export_backup",
    "export_csv",
    "import_csv",
    "parse_csv",
    "restore_backup",
]
