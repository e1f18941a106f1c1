"""Durable string-keyed storage backends."""
from __future__ import annotations

from pathlib import Path
from threading import RLock
from typing import Dict, Iterator, Optional
import re

ITEMS_KEY = "stockroom_items_v4"
GROUPS_KEY = "stockroom_groups_v4"
MOVEMENTS_KEY = "stockroom_movements_v4"
PREFS_KEY = "stockroom_prefs"
SECURITY_KEY = "stockroom_security"

# Item collections written by earlier releases, newest first.
LEGACY_ITEM_KEYS = ("estoque_pro_pwa_v3", "estoque_pro_pwa_v2", "estoque_pwa")
LEGACY_SORT_KEY = "estoque_sort_mode"
LEGACY_ONLY_LOW_KEY = "estoque_only_low"

_SAFE_KEY = re.compile(r"^[A-Za-z0-9_-]+$")


class KeyValueStorage:
    """Minimal interface shared by the storage backends."""

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    def remove(self, key: str) -> None:
        raise NotImplementedError

    def keys(self) -> Iterator[str]:
        raise NotImplementedError

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.get(key) is not None


class MemoryStorage(KeyValueStorage):
    """In-process storage, mostly useful for tests."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = str(value)

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> Iterator[str]:
        return iter(list(self._data))


class FileStorage(KeyValueStorage):
    """Stores every key as its own UTF-8 file inside ``directory``."""

    suffix = ".json"

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)
        self._lock = RLock()
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path_for(self, key: str) -> Path:
        if not _SAFE_KEY.match(key):
            raise ValueError(f"Invalid storage key: {key!r}")
        return self.directory / f"{key}{self.suffix}"

    def get(self, key: str) -> Optional[str]:
        path = self._path_for(key)
        with self._lock:
            if not path.exists():
                return None
            return path.read_text(encoding="utf-8")

    def set(self, key: str, value: str) -> None:
        path = self._path_for(key)
        with self._lock:
            self.directory.mkdir(parents=True, exist_ok=True)
            temp_path = path.with_suffix(".tmp")
            temp_path.write_text(str(value), encoding="utf-8")
            temp_path.replace(path)

    def remove(self, key: str) -> None:
        path = self._path_for(key)
        with self._lock:
            if path.exists():
                path.unlink()

    def keys(self) -> Iterator[str]:
        with self._lock:
            names = sorted(p.stem for p in self.directory.glob(f"*{self.suffix}"))
        return iter(names)


__all__ = [
    "KeyValueStorage",
    "MemoryStorage",
    "FileStorage",
    "ITEMS_KEY",
    "GROUPS_KEY",
    "MOVEMENTS_KEY",
    "PREFS_KEY",
    "SECURITY_KEY",
    "LEGACY_ITEM_KEYS",
    "LEGACY_SORT_KEY",
    "LEGACY_ONLY_LOW_KEY",
]
