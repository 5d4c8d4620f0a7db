"""Reference resolution: tags, relative paths and installed packages."""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Mapping
from importlib import metadata
from pathlib import Path

from .errors import InvalidTagError, NotFoundError
from .sources import FileSystemSource, SourceProvider
from .types import ResolveSignal

LOGGER = logging.getLogger(__name__)

DEFAULT_EXTENSION = ".py"
PACKAGE_MARKER = "tessera"
TAG_PATTERN = re.compile(r"^@([^/\\]+)")
REQUIREMENT_NAME = re.compile(r"^\s*([A-Za-z0-9][A-Za-z0-9._-]*)")


class TagTable:
    """Process-wide ``@tag`` -> directory table."""

    def __init__(self, tags: Mapping[str, str | Path] | None = None) -> None:
        self._tags: dict[str, str] = {}
        if tags:
            self.add(tags)

    def add(self, tags: Mapping[str, str | Path], caller_file: str | Path | None = None) -> None:
        """Register tags, resolving each directory relative to ``caller_file``."""

        base_dir = _caller_dir(caller_file)
        for name, target in tags.items():
            directory = os.path.abspath(os.path.join(base_dir, os.path.expanduser(str(target))))
            self._tags[str(name)] = directory
            LOGGER.debug("Registered tag @%s -> %s", name, directory)

    def expand(self, reference: str) -> str:
        """Substitute a leading ``@tag`` with its directory."""

        match = TAG_PATTERN.match(reference)
        if match is None:
            return reference
        tag = match.group(1)
        try:
            directory = self._tags[tag]
        except KeyError as exc:
            raise InvalidTagError(f"Invalid tag @{tag} in reference '{reference}'") from exc
        return directory + reference[match.end():]

    def reset(self) -> None:
        self._tags.clear()

    def __contains__(self, name: object) -> bool:
        return name in self._tags

    def __len__(self) -> int:
        return len(self._tags)


class Resolver:
    """Turn references into canonical identities."""

    def __init__(
        self,
        tags: TagTable | None = None,
        *,
        source: SourceProvider | None = None,
        extension: str = DEFAULT_EXTENSION,
        package_marker: str = PACKAGE_MARKER,
    ) -> None:
        self.tags = tags if tags is not None else TagTable()
        self.source: SourceProvider = source or FileSystemSource()
        self.extension = extension
        self.package_marker = package_marker

    def resolve(self, reference: str | Path, caller_file: str | Path | None) -> str | ResolveSignal | None:
        """Return an identity, ``ResolveSignal.USE_NATIVE_LOAD`` or None."""

        reference = str(reference)
        candidate = self.candidate_path(reference, caller_file)
        found = self.check_path(candidate)
        if found is not None:
            return found
        if not _has_separator(reference) and not TAG_PATTERN.match(reference):
            return self.lookup_package(reference)
        return None

    def candidate_path(self, reference: str | Path, caller_file: str | Path | None) -> str:
        """Absolute path for ``reference`` before any existence check."""

        expanded = os.path.expanduser(self.tags.expand(str(reference)))
        return os.path.abspath(os.path.join(_caller_dir(caller_file), expanded))

    def expected_path(self, reference: str | Path, caller_file: str | Path | None) -> str:
        """Identity ``reference`` would have once its file exists."""

        candidate = self.candidate_path(reference, caller_file)
        found = self.check_path(candidate)
        if found is not None:
            return found
        if candidate.endswith(self.extension):
            return candidate
        return candidate + self.extension

    def check_path(self, path: str) -> str | None:
        """Return ``path`` with or without the default extension if it exists."""

        qualified = path + self.extension
        if self.source.is_file(qualified):
            return qualified
        if self.source.is_file(path):
            return path
        return None

    def directory(self, reference: str | Path, caller_file: str | Path | None) -> str:
        """Resolve a directory reference used by the bulk loaders."""

        path = self.candidate_path(reference, caller_file)
        if not self.source.is_dir(path):
            raise NotFoundError(f"Invalid directory {path}")
        return path

    def enumerate_all(self, directory: str) -> list[str]:
        return self.source.list_files(directory, self.extension, recursive=True)

    def enumerate_map(self, directory: str) -> dict[str, str]:
        """Map each unit's basename (without extension) to its identity."""

        files = self.source.list_files(directory, self.extension, recursive=False)
        return {_unit_key(path, self.extension): path for path in files}

    def lookup_package(self, name: str) -> str | ResolveSignal | None:
        """Resolve ``name`` through installed distribution metadata."""

        try:
            distribution = metadata.distribution(name)
        except metadata.PackageNotFoundError:
            return None
        if not self.package_integrates(distribution):
            LOGGER.debug("Package '%s' does not depend on %s", name, self.package_marker)
            return ResolveSignal.USE_NATIVE_LOAD
        root = str(distribution.locate_file(""))
        for candidate in (os.path.join(root, name), os.path.join(root, name, "__init__")):
            found = self.check_path(os.path.abspath(candidate))
            if found is not None:
                return found
        return None

    def package_integrates(self, distribution: metadata.Distribution) -> bool:
        marker = _normalise(self.package_marker)
        for requirement in distribution.requires or []:
            match = REQUIREMENT_NAME.match(requirement)
            if match and _normalise(match.group(1)) == marker:
                return True
        return False


def _caller_dir(caller_file: str | Path | None) -> str:
    if caller_file is None:
        return os.getcwd()
    caller = str(caller_file)
    if caller.startswith("<"):
        return os.getcwd()
    return os.path.dirname(os.path.abspath(caller))


def _has_separator(reference: str) -> bool:
    return "/" in reference or os.sep in reference


def _unit_key(path: str, extension: str) -> str:
    name = os.path.basename(path)
    if extension and name.endswith(extension):
        return name[: -len(extension)]
    return name


def _normalise(name: str) -> str:
    return re.sub(r"[-_.]+", "-", name).lower()


__all__ = ["Resolver", "TagTable", "DEFAULT_EXTENSION", "PACKAGE_MARKER"]
