"""Loader: resolves, caches, executes and reloads units."""

from __future__ import annotations

import itertools
import logging
import os
import sys
from collections.abc import Iterator, Mapping
from contextlib import AbstractContextManager
from pathlib import Path
from types import TracebackType
from typing import TYPE_CHECKING, Any

from .errors import (
    ExportSymbolNotFoundError,
    ForeignPackageError,
    NotFoundError,
    ReloadTargetNotFoundError,
)
from .exports import finalize, mapping_member
from .graph import DependencyGraph
from .namespace import Namespace, Unit, namespace_of
from .paths import DEFAULT_EXTENSION, PACKAGE_MARKER, Resolver, TagTable
from .registry import Registry
from .sandbox import Sandbox, current_unit, loading_chain
from .sources import FileSystemSource, SourceProvider
from .types import ResolveSignal, UnitInfo, UnitState

if TYPE_CHECKING:
    from .config import TesseraConfig

LOGGER = logging.getLogger(__name__)

PACKAGE_DIR = os.path.dirname(os.path.abspath(__file__))

_MISSING = object()
_INFER = object()
_CONTEXT = object()


class AutoImportMap(dict):
    """Dictionary of units from one directory, imported on first access."""

    def __init__(
        self,
        loader: Loader,
        directory: str,
        *,
        not_found: Any = _MISSING,
        parent: str | None = None,
    ) -> None:
        super().__init__()
        self._loader = loader
        self._directory = directory
        self._not_found = not_found
        self._parent = parent

    def __missing__(self, key: str) -> Any:
        identity = self._loader.resolver.check_path(os.path.join(self._directory, str(key)))
        if identity is None:
            if self._not_found is not _MISSING:
                return self._not_found
            raise NotFoundError(f"{key} not found in {self._directory}")
        value = self._loader.import_unit(identity, None, parent=self._parent)
        self[key] = value
        return value

    def __repr__(self) -> str:
        return f"AutoImportMap({self._directory!r}, loaded={sorted(self)})"


class Loader:
    """Composition root of the resolver, registry, dependency graph and sandbox."""

    def __init__(
        self,
        *,
        source: SourceProvider | None = None,
        tags: TagTable | None = None,
        extension: str = DEFAULT_EXTENSION,
        package_marker: str = PACKAGE_MARKER,
        full_backtrace: bool = False,
    ) -> None:
        self.source: SourceProvider = source or FileSystemSource()
        self.resolver = Resolver(
            tags,
            source=self.source,
            extension=extension,
            package_marker=package_marker,
        )
        self.registry = Registry()
        self.graph = DependencyGraph()
        self.sandbox = Sandbox(self)
        self.full_backtrace = full_backtrace
        self._counter = itertools.count(1)

    @classmethod
    def from_config(cls, config: TesseraConfig) -> Loader:
        return cls(
            tags=TagTable(config.tags),
            extension=config.extension,
            package_marker=config.package_marker,
            full_backtrace=config.full_backtrace,
        )

    @property
    def extension(self) -> str:
        return self.resolver.extension

    # Imports -----------------------------------------------------------------

    def import_unit(
        self,
        reference: str | os.PathLike[str],
        caller_file: Any = _INFER,
        *,
        parent: Any = _CONTEXT,
    ) -> Any:
        """Import ``reference`` relative to ``caller_file`` and return its value.

        Failures are re-raised with engine frames removed from the traceback,
        except for the frame of this call, which Python adds while the error
        propagates. ``full_backtrace`` keeps every frame.
        """

        __tracebackhide__ = True
        try:
            identity = self._identity_for(reference, self._caller(caller_file))
            parent_identity = current_unit() if parent is _CONTEXT else parent
            value = self._import_identity(identity)
            if parent_identity is not None:
                self.graph.add_edge(parent_identity, identity)
            return value
        except Exception as exc:
            if self.full_backtrace:
                raise
            raise exc.with_traceback(strip_internal_frames(exc.__traceback__))

    def import_all(self, reference: str | os.PathLike[str], caller_file: Any = _INFER) -> list[Any]:
        """Import every unit under a directory, recursively, in sorted order."""

        directory = self.resolver.directory(reference, self._caller(caller_file))
        return [self.import_unit(path, None) for path in self.resolver.enumerate_all(directory)]

    def import_map(self, reference: str | os.PathLike[str], caller_file: Any = _INFER) -> dict[str, Any]:
        """Import the units directly inside a directory, keyed by basename."""

        directory = self.resolver.directory(reference, self._caller(caller_file))
        return {
            key: self.import_unit(path, None)
            for key, path in self.resolver.enumerate_map(directory).items()
        }

    def auto_import_map(
        self,
        reference: str | os.PathLike[str],
        caller_file: Any = _INFER,
        *,
        not_found: Any = _MISSING,
        parent: str | None = None,
    ) -> AutoImportMap:
        directory = self.resolver.directory(reference, self._caller(caller_file))
        return AutoImportMap(self, directory, not_found=not_found, parent=parent)

    def resolve(self, reference: str | os.PathLike[str], caller_file: Any = _INFER) -> str:
        return self._identity_for(reference, self._caller(caller_file))

    def create(self, prototype: str | Mapping[str, Any]) -> Any:
        """Create a unit from source text or from a mapping of members."""

        if isinstance(prototype, str):
            identity = f"<string:{next(self._counter)}>"
            with self.registry.lock:
                return self._load(identity, source=prototype, location=None)
        if isinstance(prototype, Mapping):
            return self._create_from_mapping(prototype)
        raise TypeError(f"Cannot create a unit from {type(prototype).__name__}")

    def add_tags(self, tags: Mapping[str, str | os.PathLike[str]], caller_file: Any = _INFER) -> None:
        self.resolver.tags.add(tags, self._caller(caller_file))

    def mock(
        self,
        reference: str | os.PathLike[str],
        value: Any,
        caller_file: Any = _INFER,
    ) -> AbstractContextManager[Any]:
        """Temporarily serve ``value`` wherever ``reference`` is imported."""

        identity = self.resolver.expected_path(reference, self._caller(caller_file))
        return self.registry.mock(identity, value)

    def install_source(self, source: SourceProvider) -> None:
        """Read and resolve units through ``source`` from now on."""

        self.source = source
        self.resolver.source = source

    def reset(self) -> None:
        with self.registry.lock:
            self.registry.reset()
            self.graph.reset()

    # Dependency queries ------------------------------------------------------

    def dependencies(self, target: Any) -> list[str]:
        return self.graph.dependencies(self.identity_of(target))

    def dependents(self, target: Any) -> list[str]:
        return self.graph.dependents(self.identity_of(target))

    def traverse_dependencies(self, target: Any) -> list[str]:
        return self.graph.traverse_dependencies(self.identity_of(target))

    def traverse_dependents(self, target: Any) -> list[str]:
        return self.graph.traverse_dependents(self.identity_of(target))

    # Reloading ---------------------------------------------------------------

    def reload(self, target: Any) -> Any:
        """Re-run a unit's source in place, keeping the facade's identity."""

        identity = self.identity_of(target)
        current = self.registry.get(identity, _MISSING)
        if current is _MISSING:
            raise ReloadTargetNotFoundError(f"Unit {identity} was never loaded")
        if not isinstance(current, Unit):
            return self.rebuild(identity)

        namespace = namespace_of(current)
        # default exports (a nested namespace included) are recreated, not rerun in place
        if namespace.parent is not None or namespace.root.info.default_export:
            return self.rebuild(identity)
        with self.registry.lock:
            source = namespace.source if namespace.location is None else self.source.read(identity)
            LOGGER.info("Reloading %s", identity)
            namespace.reset(source)
            self.sandbox.inject(namespace)
            self.graph.clear_outgoing(identity)
            try:
                self.sandbox.execute(namespace)
                value = finalize(namespace)
            except BaseException:
                namespace.state = UnitState.FAILED
                LOGGER.error("Reload of %s failed", identity)
                raise
            self.registry.register(identity, value)
        return value

    def rebuild(self, identity: str) -> Any:
        """Create a fresh unit for ``identity`` and replace the registry value."""

        current = self.registry.get(identity, _MISSING)
        if current is _MISSING:
            raise ReloadTargetNotFoundError(f"Unit {identity} was never loaded")
        info = unit_info(current)
        location = info.location if info is not None else identity
        source = info.source if info is not None and location is None else None
        with self.registry.lock:
            LOGGER.info("Rebuilding %s", identity)
            self.graph.clear_outgoing(identity)
            self.registry.remove(identity)
            try:
                return self._load(identity, source=source, location=location)
            except BaseException:
                self.registry.register(identity, current)
                raise

    def identity_of(self, target: Any) -> str:
        """Identity of a unit facade, default-exported value, or path."""

        if isinstance(target, Unit):
            return namespace_of(target).root.identity
        if isinstance(target, (str, os.PathLike)):
            return self._registered_identity(os.fspath(target))
        info = unit_info(target)
        if info is not None:
            return info.identity
        raise ReloadTargetNotFoundError(f"{target!r} is not a loaded unit")

    # Internals ---------------------------------------------------------------

    def _import_identity(self, identity: str) -> Any:
        value = self._cached(identity)
        if value is not _MISSING:
            return value
        with self.registry.lock:
            value = self.registry.get(identity, _MISSING)
            if value is not _MISSING:
                return value
            return self._load(identity)

    def _cached(self, identity: str) -> Any:
        value = self.registry.get(identity, _MISSING)
        if isinstance(value, Unit):
            namespace = namespace_of(value)
            # a unit still executing on another thread is waited for
            if namespace.state is UnitState.LOADING and identity not in loading_chain():
                return _MISSING
        return value

    def _load(self, identity: str, *, source: str | None = None, location: Any = _MISSING) -> Any:
        if location is _MISSING:
            location = identity
        if source is None:
            source = self.source.read(identity)
        namespace = self.sandbox.create(identity, source=source, location=location)
        self.registry.register(identity, namespace.facade)
        LOGGER.debug("Loading %s", identity)
        try:
            self.sandbox.execute(namespace)
            value = finalize(namespace)
        except BaseException:
            namespace.state = UnitState.FAILED
            self.registry.remove(identity)
            self.graph.clear_outgoing(identity)
            raise
        self.registry.register(identity, value)
        LOGGER.debug("Loaded %s", identity)
        return value

    def _create_from_mapping(self, prototype: Mapping[str, Any]) -> Unit:
        identity = f"<mapping:{next(self._counter)}>"
        namespace = Namespace(identity, source="", location=None, loader=self)
        for key, value in prototype.items():
            namespace.bindings[str(key)] = mapping_member(str(key), value)
        namespace.directives.names.extend(str(key) for key in prototype)
        return finalize(namespace)

    def _identity_for(self, reference: str | os.PathLike[str], caller_file: str | None) -> str:
        text = os.fspath(reference)
        if text.startswith("<") and text in self.registry:
            return text
        result = self.resolver.resolve(text, caller_file)
        if result is ResolveSignal.USE_NATIVE_LOAD:
            raise ForeignPackageError(
                f"Package '{text}' does not depend on {self.resolver.package_marker}; "
                "use a regular import statement"
            )
        if result is None:
            base = caller_file or os.getcwd()
            raise NotFoundError(f"{text} not found (relative to {base})")
        return result

    def _registered_identity(self, reference: str) -> str:
        if reference.startswith("<"):
            if reference in self.registry:
                return reference
            raise ReloadTargetNotFoundError(f"Unit {reference} was never loaded")
        candidate = os.path.abspath(os.path.expanduser(reference))
        for option in (candidate + self.extension, candidate):
            if option in self.registry:
                return option
        raise ReloadTargetNotFoundError(f"Unit {candidate} was never loaded")

    def _caller(self, caller_file: Any) -> str | None:
        if caller_file is _INFER:
            return external_caller()
        if caller_file is None:
            return None
        return os.fspath(caller_file)


def unit_info(value: Any) -> UnitInfo | None:
    """Return the metadata attached to a unit facade or default export."""

    if isinstance(value, Unit):
        return namespace_of(value).info
    info = getattr(value, "__unit_info__", None)
    return info if isinstance(info, UnitInfo) else None


def call_entry_point(value: Any, name: str = "main", *args: Any) -> Any:
    """Call ``name`` on a loaded unit, bypassing the export gate."""

    if isinstance(value, Unit):
        namespace = namespace_of(value)
        try:
            target = namespace.lookup(name)
        except NameError as exc:
            raise ExportSymbolNotFoundError(
                f"Entry point {name} not found in unit {namespace.identity}"
            ) from exc
    elif hasattr(value, name):
        target = getattr(value, name)
    elif callable(value):
        target = value
    else:
        raise ExportSymbolNotFoundError(f"Entry point {name} not found on {type(value).__name__}")
    if not callable(target):
        raise TypeError(f"Entry point {name} is not callable")
    return target(*args)


def is_internal_frame(filename: str) -> bool:
    return filename.startswith(PACKAGE_DIR + os.sep)


def strip_internal_frames(traceback: TracebackType | None) -> TracebackType | None:
    """Rebuild ``traceback`` without frames from this package."""

    kept: list[TracebackType] = []
    entry = traceback
    while entry is not None:
        if not is_internal_frame(entry.tb_frame.f_code.co_filename):
            kept.append(entry)
        entry = entry.tb_next
    stripped: TracebackType | None = None
    for entry in reversed(kept):
        stripped = TracebackType(stripped, entry.tb_frame, entry.tb_lasti, entry.tb_lineno)
    return stripped


def external_caller() -> str | None:
    """File of the nearest stack frame outside this package."""

    frame = sys._getframe(1)
    while frame is not None:
        filename = frame.f_code.co_filename
        if not is_internal_frame(filename):
            return None if filename.startswith("<") else filename
        frame = frame.f_back
    return None


def iter_file_units(loader: Loader) -> Iterator[str]:
    """Identities of units loaded from real files."""

    for identity in loader.registry:
        if not identity.startswith("<"):
            yield identity


__all__ = [
    "AutoImportMap",
    "Loader",
    "call_entry_point",
    "external_caller",
    "iter_file_units",
    "strip_internal_frames",
    "unit_info",
]
