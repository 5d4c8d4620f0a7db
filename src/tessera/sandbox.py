"""Namespace creation and unit execution with a task-local loading chain."""

from __future__ import annotations

import builtins
import logging
import os
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .exports import as_instance_method, build_export_api, exported_members
from .namespace import Namespace, is_constant_name

if TYPE_CHECKING:
    from .loader import Loader

LOGGER = logging.getLogger(__name__)
UNIT_LOGGER_PREFIX = "tessera.units"

_LOADING_CHAIN: ContextVar[tuple[str, ...]] = ContextVar("tessera_loading_chain", default=())


@contextmanager
def loading(identity: str) -> Iterator[None]:
    """Mark ``identity`` as the unit currently executing in this context."""

    token = _LOADING_CHAIN.set(_LOADING_CHAIN.get() + (identity,))
    try:
        yield
    finally:
        _LOADING_CHAIN.reset(token)


def current_unit() -> str | None:
    """Identity of the innermost unit being executed, if any."""

    chain = _LOADING_CHAIN.get()
    return chain[-1] if chain else None


def loading_chain() -> tuple[str, ...]:
    return _LOADING_CHAIN.get()


def unit_module_name(identity: str) -> str:
    """Module-style name used for ``__name__`` and the unit's logger."""

    stem = Path(identity).stem if not identity.startswith("<") else identity.strip("<>").replace(":", "_")
    return f"{UNIT_LOGGER_PREFIX}.{stem}"


class Sandbox:
    """Create unit namespaces and run their source against them."""

    def __init__(self, loader: Loader) -> None:
        self._loader = loader

    def create(self, identity: str, *, source: str, location: str | None) -> Namespace:
        namespace = Namespace(identity, source=source, location=location, loader=self._loader)
        self.inject(namespace)
        return namespace

    def inject(self, namespace: Namespace) -> None:
        """Install the unit-side API and module dunders into ``namespace``."""

        api = build_export_api(namespace)
        api.update(self._import_api(namespace))
        api["MODULE"] = namespace.facade
        api["logger"] = logging.getLogger(unit_module_name(namespace.identity))
        namespace.injected = api
        namespace.bindings.update(api)
        namespace.bindings.update(
            {
                "__name__": unit_module_name(namespace.identity),
                "__file__": namespace.location,
                "__doc__": None,
                "__builtins__": builtins,
            }
        )

    def execute(self, namespace: Namespace) -> None:
        """Run the unit's source with it pushed onto the loading chain."""

        filename = namespace.location or namespace.identity
        code = compile(namespace.source, filename, "exec", dont_inherit=True)
        with loading(namespace.identity):
            exec(code, namespace.bindings)  # noqa: S102 - units are trusted code

    def _import_api(self, namespace: Namespace) -> dict[str, Any]:
        loader = self._loader
        caller = namespace.location

        def import_unit(reference: str | os.PathLike[str]) -> Any:
            return loader.import_unit(reference, caller)

        def import_all(reference: str | os.PathLike[str]) -> list[Any]:
            return loader.import_all(reference, caller)

        def import_map(reference: str | os.PathLike[str]) -> dict[str, Any]:
            return loader.import_map(reference, caller)

        def auto_import_map(reference: str | os.PathLike[str], **options: Any) -> dict[str, Any]:
            return loader.auto_import_map(reference, caller, parent=namespace.identity, **options)

        def auto_import(name: str | Mapping[str, str], reference: str | None = None) -> None:
            if isinstance(name, Mapping):
                entries = dict(name)
            elif reference is None:
                raise TypeError("auto_import() needs a reference when given a single name")
            else:
                entries = {name: reference}
            for key, target in entries.items():
                namespace.auto_imports[str(key)] = (str(target), caller)

        def define(name: str, value: Any) -> Any:
            namespace.surface[name] = value
            return value

        def lookup(name: str) -> Any:
            return namespace.lookup(name)

        def extend_from(reference: str | os.PathLike[str], *names: str, into: Any = None) -> Any:
            members = exported_members(loader.import_unit(reference, caller), names)
            if into is None:
                namespace.bindings.update(members)
                return None
            for name, member in members.items():
                if isinstance(into, type) and not is_constant_name(name):
                    member = staticmethod(member)
                setattr(into, name, member)
            return into

        def include_from(reference: str | os.PathLike[str], *names: str) -> Callable[[type], type]:
            members = exported_members(loader.import_unit(reference, caller), names)

            def decorate(target: type) -> type:
                for name, member in members.items():
                    setattr(target, name, member if is_constant_name(name) else as_instance_method(member))
                return target

            return decorate

        def add_tags(tags: Mapping[str, str]) -> None:
            loader.add_tags(tags, caller)

        return {
            "import_unit": import_unit,
            "import_all": import_all,
            "import_map": import_map,
            "auto_import_map": auto_import_map,
            "auto_import": auto_import,
            "define": define,
            "lookup": lookup,
            "add_tags": add_tags,
            "extend_from": extend_from,
            "include_from": include_from,
        }


__all__ = ["Sandbox", "current_unit", "loading", "loading_chain", "unit_module_name"]
