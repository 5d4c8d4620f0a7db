"""Source providers used to resolve and read unit files."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable


@runtime_checkable
class SourceProvider(Protocol):
    """Where unit sources come from."""

    def is_file(self, path: str) -> bool:
        """Return True when ``path`` names a readable unit."""

    def is_dir(self, path: str) -> bool:
        """Return True when ``path`` names a directory of units."""

    def read(self, path: str) -> str:
        """Return the source text stored at ``path``."""

    def list_files(self, directory: str, extension: str, *, recursive: bool) -> list[str]:
        """Return unit paths under ``directory`` in lexicographic order."""


class FileSystemSource:
    """Read units straight from disk."""

    def is_file(self, path: str) -> bool:
        return Path(path).is_file()

    def is_dir(self, path: str) -> bool:
        return Path(path).is_dir()

    def read(self, path: str) -> str:
        return Path(path).read_text(encoding="utf-8")

    def list_files(self, directory: str, extension: str, *, recursive: bool) -> list[str]:
        root = Path(directory)
        pattern = f"*{extension}"
        candidates = root.rglob(pattern) if recursive else root.glob(pattern)
        return sorted(str(path) for path in candidates if path.is_file())


__all__ = ["SourceProvider", "FileSystemSource"]
