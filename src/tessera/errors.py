"""Exception taxonomy for unit loading and export visibility."""

from __future__ import annotations

from .types import SourceLocation


class TesseraError(Exception):
    """Base class for every error raised by the loading engine."""

    def __init__(self, message: str, *, location: SourceLocation | None = None) -> None:
        super().__init__(message)
        self.location = location


class NotFoundError(TesseraError, ImportError):
    """Raised when a reference matches no file or directory."""


class InvalidTagError(NotFoundError):
    """Raised when a reference uses a tag that was never registered."""


class ForeignPackageError(TesseraError, ImportError):
    """Raised when an installed package does not integrate with the loader.

    Callers should fall back to Python's native ``import`` statement.
    """


class ExportSymbolNotFoundError(TesseraError, NameError):
    """Raised when a declared export has no matching definition."""


class PrivateAccessError(TesseraError, AttributeError):
    """Raised on external access to a member that was not exported."""


class DefaultValueTypeError(TesseraError, TypeError):
    """Raised when a default export cannot carry unit metadata."""


class MixedExportError(TesseraError):
    """Raised when a unit declares both named and default exports."""


class ReloadTargetNotFoundError(TesseraError, LookupError):
    """Raised when reloading an identity that was never loaded."""


__all__ = [
    "TesseraError",
    "NotFoundError",
    "InvalidTagError",
    "ForeignPackageError",
    "ExportSymbolNotFoundError",
    "PrivateAccessError",
    "DefaultValueTypeError",
    "MixedExportError",
    "ReloadTargetNotFoundError",
]
