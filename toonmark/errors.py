"""
Toonmark — error taxonomy

Only PatternError/CatalogError (load time) and InvalidStateError (wiring bug)
ever reach a caller. PersistenceError is raised by the storage substrate and
caught at the store boundary.
"""


class ToonmarkError(Exception):
    """Base class for all Toonmark errors."""


class PatternError(ToonmarkError):
    """An episode pattern does not compile or has no capture group."""

    def __init__(self, item_id: str, pattern: str, reason: str):
        super().__init__(f"{item_id}: bad episode pattern {pattern!r}: {reason}")
        self.item_id = item_id
        self.pattern = pattern


class CatalogError(ToonmarkError):
    """The catalog file is malformed or contains duplicate ids."""


class PersistenceError(ToonmarkError):
    """Reading or writing the key-value substrate failed."""

    def __init__(self, key: str, op: str, cause: Exception | None = None):
        msg = f"{op} {key!r} failed"
        if cause is not None:
            msg = f"{msg}: {cause}"
        super().__init__(msg)
        self.key = key
        self.op = op
        self.cause = cause


class InvalidStateError(ToonmarkError):
    """Shared state was read before it was loaded."""
