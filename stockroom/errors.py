"""Exception types raised by the stockroom core."""
from __future__ import annotations


class StockroomError(Exception):
    """Base class for every error raised by the inventory core."""


class ValidationError(StockroomError, ValueError):
    """A draft or command carried an invalid value; nothing was written."""


class NotFoundError(StockroomError, KeyError):
    """An operation referenced an item or group that does not exist."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep messages readable.
        return str(self.args[0]) if self.args else ""


class ParseError(StockroomError, ValueError):
    """Imported or persisted data could not be decoded."""


__all__ = ["StockroomError", "ValidationError", "NotFoundError", "ParseError"]
