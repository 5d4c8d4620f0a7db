"""Core immutable data structures used throughout Tessera."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import FrameType, TracebackType
from typing import Any, NamedTuple


class ResolveSignal(str, Enum):
    """Non-path outcomes of reference resolution."""

    USE_NATIVE_LOAD = "use_native_load"


class UnitState(str, Enum):
    """Lifecycle stage of a unit namespace."""

    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


@dataclass(frozen=True)
class SourceLocation:
    """File and line a declaration was made from."""

    filename: str
    lineno: int

    def __str__(self) -> str:
        return f"{self.filename}:{self.lineno}"


@dataclass(frozen=True)
class DeclarationSite:
    """Call site of an export directive, captured when it was declared."""

    location: SourceLocation
    frame: FrameType | None = field(default=None, compare=False, repr=False)

    def traceback(self) -> TracebackType | None:
        """Build a one-entry traceback pointing at the declaration line."""

        if self.frame is None:
            return None
        return TracebackType(None, self.frame, self.frame.f_lasti, self.location.lineno)


@dataclass(frozen=True)
class DependencyEdge:
    """Records that ``parent``'s execution imported ``child``."""

    parent: str
    child: str


class Segment(NamedTuple):
    """Byte range of one compressed unit inside a packed payload."""

    offset: int
    length: int


@dataclass
class UnitInfo:
    """Metadata describing a loaded unit."""

    identity: str
    location: str | None
    source: str
    exported_names: list[str] = field(default_factory=list)
    private_constants: list[str] = field(default_factory=list)
    default_export: bool = False


@dataclass(frozen=True)
class Ref:
    """Marks a string as the name of a binding rather than a literal."""

    name: str

    def __str__(self) -> str:
        return self.name


@dataclass
class NestedExport:
    """A nested sub-namespace whose gate runs after its parent finishes."""

    target: type
    names: list[str]
    site: DeclarationSite


@dataclass
class ExportDirectives:
    """Export declarations recorded while a unit executes."""

    names: list[str] = field(default_factory=list)
    sites: dict[str, DeclarationSite] = field(default_factory=dict)
    mappings: list[tuple[dict[str, Any], DeclarationSite]] = field(default_factory=list)
    receivers: list[tuple[Any, DeclarationSite]] = field(default_factory=list)
    nested: list[NestedExport] = field(default_factory=list)
    default: Any = None
    default_site: DeclarationSite | None = None

    @property
    def has_named(self) -> bool:
        return bool(self.names or self.mappings or self.receivers)

    @property
    def has_default(self) -> bool:
        return self.default_site is not None

    def add_names(self, names: list[str], site: DeclarationSite) -> None:
        for name in names:
            self.names.append(name)
            self.sites.setdefault(name, site)


__all__ = [
    "ResolveSignal",
    "UnitState",
    "SourceLocation",
    "DeclarationSite",
    "DependencyEdge",
    "Segment",
    "UnitInfo",
    "Ref",
    "NestedExport",
    "ExportDirectives",
]
