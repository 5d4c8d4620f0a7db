"""Bundle a unit and its dependency closure into one runnable script."""

from __future__ import annotations

import base64
import logging
import os
import zlib
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path

from .bootstrap import PAYLOAD_SENTINEL
from .loader import Loader
from .types import Segment

LOGGER = logging.getLogger(__name__)

PAYLOAD_LINE_WIDTH = 76
DEFAULT_ENTRY_FUNCTION = "main"

BOOTSTRAP_TEMPLATE = '''#!/usr/bin/env python3
"""Packed tessera application; the units below the payload marker are zlib-compressed."""

from tessera.bootstrap import run

DIRECTORY = {directory}
ENTRY_POINT = {entry_point!r}
ENTRY_FUNCTION = {entry_function!r}

if __name__ == "__main__":
    run(__file__, DIRECTORY, ENTRY_POINT, ENTRY_FUNCTION)
'''


@dataclass(frozen=True)
class PackedArtifact:
    """Rendered artifact plus the pieces it was built from."""

    text: str
    entry_point: str
    directory: dict[str, Segment]
    payload: bytes

    def write(self, path: Path) -> Path:
        path.write_text(self.text, encoding="utf-8")
        path.chmod(path.stat().st_mode | 0o111)
        return path


class Packer:
    """Load entry units for real, then pack every file they pulled in."""

    def __init__(self, loader: Loader, *, entry_function: str = DEFAULT_ENTRY_FUNCTION) -> None:
        self._loader = loader
        self._entry_function = entry_function

    def collect(self, references: Iterable[str | os.PathLike[str]]) -> list[str]:
        """Identities of the entry units and their transitive dependencies."""

        files: list[str] = []
        for reference in references:
            identity = self._loader.resolve(reference, None)
            self._loader.import_unit(identity, None)
            for candidate in [identity, *self._loader.traverse_dependencies(identity)]:
                if candidate in files or candidate.startswith("<"):
                    continue
                if self._loader.source.is_file(candidate):
                    files.append(candidate)
        return files

    def pack(self, references: Iterable[str | os.PathLike[str]]) -> PackedArtifact:
        references = list(references)
        if not references:
            raise ValueError("pack() needs at least one entry unit")
        files = self.collect(references)
        sources = {identity: self._loader.source.read(identity) for identity in files}
        directory, payload = compress_sources(sources)
        entry_point = files[0]
        text = render_bootstrap(directory, entry_point, payload, self._entry_function)
        LOGGER.info("Packed %d unit(s), %d payload bytes, entry %s", len(files), len(payload), entry_point)
        return PackedArtifact(text=text, entry_point=entry_point, directory=directory, payload=payload)


def compress_sources(sources: Mapping[str, str]) -> tuple[dict[str, Segment], bytes]:
    """Compress each source on its own and concatenate the streams."""

    directory: dict[str, Segment] = {}
    chunks: list[bytes] = []
    offset = 0
    for identity, text in sources.items():
        compressed = zlib.compress(text.encode("utf-8"))
        directory[identity] = Segment(offset, len(compressed))
        chunks.append(compressed)
        offset += len(compressed)
    return directory, b"".join(chunks)


def render_bootstrap(
    directory: Mapping[str, Segment],
    entry_point: str,
    payload: bytes,
    entry_function: str = DEFAULT_ENTRY_FUNCTION,
) -> str:
    literal = {identity: (segment.offset, segment.length) for identity, segment in directory.items()}
    header = BOOTSTRAP_TEMPLATE.format(
        directory=repr(literal),
        entry_point=entry_point,
        entry_function=entry_function,
    )
    lines = [header.rstrip("\n"), "", PAYLOAD_SENTINEL, *encode_payload(payload)]
    return "\n".join(lines) + "\n"


def encode_payload(payload: bytes) -> list[str]:
    """Base85 text of ``payload`` as comment lines the interpreter ignores."""

    text = base64.b85encode(payload).decode("ascii")
    width = PAYLOAD_LINE_WIDTH
    return [f"# {text[start:start + width]}" for start in range(0, len(text), width)]


__all__ = [
    "PAYLOAD_SENTINEL",
    "PackedArtifact",
    "Packer",
    "compress_sources",
    "encode_payload",
    "render_bootstrap",
]
