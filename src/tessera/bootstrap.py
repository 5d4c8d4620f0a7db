"""Runtime support for packed artifacts produced by ``tessera pack``."""

from __future__ import annotations

import base64
import logging
import os
import zlib
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from .errors import TesseraError
from .loader import Loader, call_entry_point
from .sources import FileSystemSource, SourceProvider
from .types import Segment

LOGGER = logging.getLogger(__name__)

PAYLOAD_SENTINEL = "# --- tessera payload ---"


class EmbeddedSource:
    """Serve unit sources out of a packed payload, falling back to another provider."""

    def __init__(
        self,
        directory: Mapping[str, tuple[int, int] | Segment],
        payload: bytes,
        fallback: SourceProvider | None = None,
    ) -> None:
        self._directory = {identity: Segment(*entry) for identity, entry in directory.items()}
        self._payload = payload
        self._fallback = fallback if fallback is not None else FileSystemSource()

    def is_file(self, path: str) -> bool:
        return path in self._directory or self._fallback.is_file(path)

    def is_dir(self, path: str) -> bool:
        prefix = path.rstrip(os.sep) + os.sep
        if any(identity.startswith(prefix) for identity in self._directory):
            return True
        return self._fallback.is_dir(path)

    def read(self, path: str) -> str:
        segment = self._directory.get(path)
        if segment is None:
            return self._fallback.read(path)
        chunk = self._payload[segment.offset:segment.offset + segment.length]
        LOGGER.debug("Serving %s from packed payload", path)
        return zlib.decompress(chunk).decode("utf-8")

    def list_files(self, directory: str, extension: str, *, recursive: bool) -> list[str]:
        prefix = directory.rstrip(os.sep) + os.sep
        found = set()
        for identity in self._directory:
            if not identity.startswith(prefix) or not identity.endswith(extension):
                continue
            if recursive or os.sep not in identity[len(prefix):]:
                found.add(identity)
        if self._fallback.is_dir(directory):
            found.update(self._fallback.list_files(directory, extension, recursive=recursive))
        return sorted(found)

    def __contains__(self, path: object) -> bool:
        return path in self._directory


def read_payload(artifact: str | os.PathLike[str]) -> bytes:
    """Decode the payload lines that follow the sentinel in ``artifact``."""

    text = Path(artifact).read_text(encoding="utf-8")
    marker = text.find(PAYLOAD_SENTINEL)
    if marker < 0:
        raise TesseraError(f"No packed payload found in {artifact}")
    encoded = []
    for line in text[marker + len(PAYLOAD_SENTINEL):].splitlines():
        line = line.strip()
        if line:
            encoded.append(line.removeprefix("#").strip())
    return base64.b85decode("".join(encoded))


def run(
    artifact: str | os.PathLike[str],
    directory: Mapping[str, tuple[int, int]],
    entry_point: str,
    entry_function: str = "main",
    *,
    loader: Loader | None = None,
) -> Any:
    """Import the packed entry unit and call its entry function."""

    loader = loader or Loader()
    loader.install_source(EmbeddedSource(directory, read_payload(artifact)))
    value = loader.import_unit(entry_point, None)
    return call_entry_point(value, entry_function)


__all__ = ["EmbeddedSource", "read_payload", "run"]
