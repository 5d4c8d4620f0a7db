"""Tessera: file-based units with explicit exports, hot reload and packing."""

from importlib import metadata

from .errors import (
    DefaultValueTypeError,
    ExportSymbolNotFoundError,
    ForeignPackageError,
    InvalidTagError,
    MixedExportError,
    NotFoundError,
    PrivateAccessError,
    ReloadTargetNotFoundError,
    TesseraError,
)
from .exports import ref
from .loader import AutoImportMap, Loader, call_entry_point
from .namespace import Unit


def _discover_version() -> str:
    """Return the installed package version, falling back to dev marker."""
    try:
        return metadata.version("tessera")
    except metadata.PackageNotFoundError:  # pragma: no cover - occurs in editable installs
        return "0.0.0"


__all__ = [
    "__version__",
    "AutoImportMap",
    "DefaultValueTypeError",
    "ExportSymbolNotFoundError",
    "ForeignPackageError",
    "InvalidTagError",
    "Loader",
    "MixedExportError",
    "NotFoundError",
    "PrivateAccessError",
    "ReloadTargetNotFoundError",
    "TesseraError",
    "Unit",
    "call_entry_point",
    "ref",
]
__version__ = _discover_version()
