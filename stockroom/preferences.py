"""UI preferences, PIN lock and low-stock notification state."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from threading import RLock
from typing import Any, Callable, Dict, List, Optional
import json
import logging
import re

from werkzeug.security import check_password_hash, generate_password_hash

from .errors import ValidationError
from .inventory import InventoryStore, SortMode
from .models import Item, now, parse_timestamp, serialize_timestamp
from .storage import (
    LEGACY_ONLY_LOW_KEY,
    LEGACY_SORT_KEY,
    PREFS_KEY,
    SECURITY_KEY,
    KeyValueStorage,
)

logger = logging.getLogger(__name__)

_PIN_PATTERN = re.compile(r"^\d{4,8}$")


def _read_json(storage: KeyValueStorage, key: str) -> Dict[str, Any]:
    raw = storage.get(key)
    if not raw:
        return {}
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Ignoring unreadable record %r", key)
        return {}
    return payload if isinstance(payload, dict) else {}


@dataclass
class Preferences:
    """List view settings remembered between sessions."""

    sort_mode: str = "triage"
    only_attention: bool = False
    group_filter: str = ""

    def to_record(self) -> Dict[str, Any]:
        return {
            "sortMode": self.sort_mode,
            "onlyAttention": self.only_attention,
            "groupFilter": self.group_filter,
        }


def _sort_mode(value: Any) -> str:
    return SortMode.parse(value).value


def load_preferences(storage: KeyValueStorage) -> Preferences:
    record = _read_json(storage, PREFS_KEY)
    if record:
        return Preferences(
            sort_mode=_sort_mode(record.get("sortMode")),
            only_attention=bool(record.get("onlyAttention", False)),
            group_filter=str(record.get("groupFilter") or "").strip(),
        )
    return Preferences(
        sort_mode=_sort_mode(storage.get(LEGACY_SORT_KEY)),
        only_attention=(storage.get(LEGACY_ONLY_LOW_KEY) or "0") == "1",
    )


def save_preferences(storage: KeyValueStorage, preferences: Preferences) -> Preferences:
    cleaned = Preferences(
        sort_mode=_sort_mode(preferences.sort_mode),
        only_attention=bool(preferences.only_attention),
        group_filter=str(preferences.group_filter or "").strip(),
    )
    storage.set(PREFS_KEY, json.dumps(cleaned.to_record(), ensure_ascii=False))
    return cleaned


class SecurityState:
    """PIN hash and notification flags persisted under one key."""

    def __init__(self, storage: KeyValueStorage) -> None:
        self.storage = storage
        self._lock = RLock()

    # PIN ----------------------------------------------------------------
    def has_pin(self) -> bool:
        with self._lock:
            return bool(self._record().get("pinHash"))

    def set_pin(self, pin: Any) -> None:
        candidate = str(pin or "").strip()
        if not _PIN_PATTERN.match(candidate):
            raise ValidationError("PIN must have between 4 and 8 digits")
        with self._lock:
            record = self._record()
            record["pinHash"] = generate_password_hash(candidate)
            self._write(record)
        logger.info("PIN lock enabled")

    def clear_pin(self) -> None:
        with self._lock:
            record = self._record()
            record.pop("pinHash", None)
            self._write(record)
        logger.info("PIN lock disabled")

    def verify_pin(self, pin: Any) -> bool:
        with self._lock:
            pin_hash = self._record().get("pinHash")
        if not pin_hash:
            return True
        return check_password_hash(pin_hash, str(pin or "").strip())

    # Notifications ------------------------------------------------------
    @property
    def notify_enabled(self) -> bool:
        with self._lock:
            return bool(self._record().get("notifyEnabled", False))

    def set_notify_enabled(self, enabled: bool) -> None:
        with self._lock:
            record = self._record()
            record["notifyEnabled"] = bool(enabled)
            self._write(record)

    @property
    def last_notified_at(self) -> Optional[datetime]:
        with self._lock:
            return parse_timestamp(self._record().get("lastNotifiedAt"))

    def mark_notified(self, moment: datetime) -> None:
        with self._lock:
            record = self._record()
            record["lastNotifiedAt"] = serialize_timestamp(moment)
            self._write(record)

    def _record(self) -> Dict[str, Any]:
        return _read_json(self.storage, SECURITY_KEY)

    def _write(self, record: Dict[str, Any]) -> None:
        self.storage.set(SECURITY_KEY, json.dumps(record, ensure_ascii=False))


NotifyCallback = Callable[[List[Item]], None]


class LowStockNotifier:
    """Hands items needing attention to ``notify`` at most once per cooldown."""

    def __init__(
        self,
        store: InventoryStore,
        security: SecurityState,
        notify: NotifyCallback,
        *,
        cooldown: timedelta = timedelta(hours=12),
    ) -> None:
        self.store = store
        self.security = security
        self.notify = notify
        self.cooldown = cooldown

    def check(self, moment: Optional[datetime] = None) -> bool:
        if not self.security.notify_enabled:
            return False
        moment = moment or now()
        last = self.security.last_notified_at
        if last is not None and moment - last < self.cooldown:
            return False
        attention = self.store.attention_items()
        if not attention:
            return False
        self.notify(attention)
        self.security.mark_notified(moment)
        logger.debug("Low-stock notification sent for %d item(s)", len(attention))
        return True


__all__ = [
    "LowStockNotifier",
    "Preferences",
    "SecurityState",
    "load_preferences",
    "save_preferences",
]
