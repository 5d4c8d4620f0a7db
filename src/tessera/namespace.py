"""Per-unit namespaces and the gated facade handed to importers."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .errors import PrivateAccessError
from .types import ExportDirectives, UnitInfo, UnitState

if TYPE_CHECKING:
    from .loader import Loader

LOGGER = logging.getLogger(__name__)

MODULE_DUNDERS = frozenset(
    {
        "__builtins__",
        "__name__",
        "__file__",
        "__doc__",
        "__loader__",
        "__spec__",
        "__package__",
        "__cached__",
        "__annotations__",
    }
)


class _Deferred:
    """Placeholder for an exported name that is imported on first access."""

    _instance: _Deferred | None = None

    def __new__(cls) -> _Deferred:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "DEFERRED"

    def __bool__(self) -> bool:
        return False


DEFERRED = _Deferred()


def is_constant_name(name: str) -> bool:
    """Constants start with an upper-case character; everything else is a method."""

    return name[:1].isupper()


class Namespace:
    """Bindings and visibility state of one unit."""

    def __init__(
        self,
        identity: str,
        *,
        source: str,
        location: str | None,
        loader: Loader | None = None,
        parent: Namespace | None = None,
    ) -> None:
        self.identity = identity
        self.location = location
        self.source = source
        self.loader = loader
        self.parent = parent
        self.state = UnitState.LOADING
        self.bindings: dict[str, Any] = {}
        self.public: dict[str, Any] = {}
        self.private: dict[str, Any] = {}
        self.surface: dict[str, Any] = {}
        self.auto_imports: dict[str, tuple[str, str | None]] = {}
        self.injected: dict[str, Any] = {}
        self.directives = ExportDirectives()
        self.info = UnitInfo(identity=identity, location=location, source=source)
        self.facade = Unit(self)

    @property
    def root(self) -> Namespace:
        namespace = self
        while namespace.parent is not None:
            namespace = namespace.parent
        return namespace

    def members(self) -> dict[str, Any]:
        """Names the unit itself defined, without module dunders or injected API."""

        injected = self.injected
        return {
            name: value
            for name, value in self.bindings.items()
            if name not in MODULE_DUNDERS and injected.get(name, DEFERRED) is not value
        }

    def lookup(self, name: str) -> Any:
        """Two-tier lookup: local bindings, then the extended surface.

        A value found on the surface or through the auto-import table is stored
        in the bindings so later lookups take the fast path.
        """

        try:
            return self.bindings[name]
        except KeyError:
            pass
        if name in self.surface:
            value = self.surface[name]
        elif name in self.auto_imports:
            value = self._auto_import(name)
        else:
            raise NameError(f"name '{name}' is not defined in unit {self.identity}")
        self.bindings[name] = value
        return value

    def declares(self, name: str) -> bool:
        """Return True when ``name`` is bound or reachable through the surface."""

        if name in self.members():
            return True
        return name in self.surface or name in self.auto_imports

    def expose(self) -> Unit:
        """Make every private member public, reversing the export gate."""

        self.public.update(self.private)
        self.private.clear()
        self.info.private_constants.clear()
        LOGGER.debug("Exposed all members of %s", self.identity)
        return self.facade

    def reset(self, source: str) -> None:
        """Drop every definition so the source can run again in place."""

        self.state = UnitState.LOADING
        self.source = source
        self.bindings.clear()
        self.public.clear()
        self.private.clear()
        self.surface.clear()
        self.auto_imports.clear()
        self.injected = {}
        self.directives = ExportDirectives()
        self.info.source = source
        self.info.exported_names = []
        self.info.private_constants = []
        self.info.default_export = False

    def _auto_import(self, name: str) -> Any:
        if self.loader is None:
            raise NameError(f"name '{name}' cannot be auto-imported without a loader")
        reference, caller_file = self.auto_imports[name]
        LOGGER.debug("Auto-importing %s for %s from %s", name, self.identity, reference)
        return self.loader.import_unit(reference, caller_file, parent=self.root.identity)

    def __repr__(self) -> str:
        return f"Namespace({self.identity!r}, state={self.state.value})"


class Unit:
    """External facade of a loaded unit; only exported names are reachable."""

    __slots__ = ("_namespace",)

    def __init__(self, namespace: Namespace) -> None:
        object.__setattr__(self, "_namespace", namespace)

    def __getattr__(self, name: str) -> Any:
        if name == "_namespace":
            raise AttributeError(name)
        namespace = self._namespace
        if namespace.state is UnitState.LOADING:
            try:
                return namespace.lookup(name)
            except NameError as exc:
                raise AttributeError(
                    f"Unit {namespace.identity} has no attribute '{name}' (still loading)"
                ) from exc
        if name in namespace.public:
            value = namespace.public[name]
            if value is DEFERRED:
                value = namespace.lookup(name)
                namespace.public[name] = value
            return value
        if name in namespace.private or namespace.declares(name):
            raise PrivateAccessError(f"'{name}' is private to unit {namespace.identity}")
        raise AttributeError(f"Unit {namespace.identity} has no attribute '{name}'")

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError(f"Unit attributes are read-only (tried to set '{name}')")

    def __delattr__(self, name: str) -> None:
        raise AttributeError(f"Unit attributes are read-only (tried to delete '{name}')")

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        namespace = self._namespace
        target = namespace.public.get("__call__")
        if target is None:
            raise TypeError(f"Unit {namespace.identity} does not export __call__")
        return target(*args, **kwargs)

    def __dir__(self) -> list[str]:
        return sorted(self._namespace.public)

    def __repr__(self) -> str:
        namespace = self._namespace
        return f"<Unit {namespace.location or namespace.identity}>"

    @property
    def __unit_info__(self) -> UnitInfo:
        return self._namespace.info

    def __reload__(self) -> Any:
        namespace = self._namespace.root
        if namespace.loader is None:
            raise RuntimeError(f"Unit {namespace.identity} was not created by a loader")
        return namespace.loader.reload(namespace.facade)

    def __expose__(self) -> Unit:
        return self._namespace.expose()


def namespace_of(unit: Unit) -> Namespace:
    """Return the namespace behind a facade."""

    return object.__getattribute__(unit, "_namespace")


__all__ = ["DEFERRED", "MODULE_DUNDERS", "Namespace", "Unit", "is_constant_name", "namespace_of"]
