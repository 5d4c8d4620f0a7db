"""Export directives and the gate that applies them after execution."""

from __future__ import annotations

import functools
import logging
import numbers
import sys
from collections.abc import Callable, Mapping, Sequence
from enum import Enum
from types import ModuleType
from typing import Any, NoReturn

from .errors import (
    DefaultValueTypeError,
    ExportSymbolNotFoundError,
    MixedExportError,
)
from .namespace import DEFERRED, Namespace, Unit, is_constant_name, namespace_of
from .types import DeclarationSite, NestedExport, Ref, SourceLocation, UnitState

LOGGER = logging.getLogger(__name__)

DEFAULT_VALUE_ERROR = "Default export cannot be None, boolean, numeric or an enum member"
MIXED_EXPORT_ERROR = "Cannot mix default and named exports in unit {identity}"

_RETYPED: dict[type, type] = {}


def ref(name: str) -> Ref:
    """Refer to a binding by name, resolved once the unit finishes executing."""

    return Ref(name)


def declaration_site(depth: int = 2) -> DeclarationSite:
    """Capture the unit frame that called an export directive."""

    frame = sys._getframe(depth)
    location = SourceLocation(frame.f_code.co_filename, frame.f_lineno)
    return DeclarationSite(location=location, frame=frame)


def raise_at(error: Exception, site: DeclarationSite | None) -> NoReturn:
    """Raise ``error`` so its innermost traceback entry is the declaration line."""

    if site is None:
        raise error
    if getattr(error, "location", None) is None:
        error.location = site.location  # type: ignore[attr-defined]
    raise error.with_traceback(site.traceback())


def build_export_api(namespace: Namespace) -> dict[str, Any]:
    """Return the export directive functions injected into a unit."""

    def _check_named(site: DeclarationSite) -> None:
        if namespace.directives.has_default:
            raise_at(MixedExportError(MIXED_EXPORT_ERROR.format(identity=namespace.identity)), site)

    def export(*names: Any) -> None:
        site = declaration_site()
        _check_named(site)
        directives = namespace.directives
        if len(names) == 1 and isinstance(names[0], Mapping):
            mapping = {str(key): value for key, value in names[0].items()}
            directives.mappings.append((mapping, site))
            directives.add_names(list(mapping), site)
            return
        if len(names) == 1 and isinstance(names[0], (list, tuple)):
            names = tuple(names[0])
        for name in names:
            if not isinstance(name, (str, Ref)):
                raise_at(TypeError(f"Export names must be strings, got {type(name).__name__}"), site)
        directives.add_names([str(name) for name in names], site)

    def export_from(receiver: Any) -> None:
        site = declaration_site()
        _check_named(site)
        namespace.directives.receivers.append((receiver, site))

    def export_default(value: Any) -> None:
        site = declaration_site()
        directives = namespace.directives
        if directives.has_named:
            raise_at(MixedExportError(MIXED_EXPORT_ERROR.format(identity=namespace.identity)), site)
        directives.default = value
        directives.default_site = site

    def declare_namespace(*names: Any) -> Any:
        site = declaration_site()

        def decorate(target: type) -> type:
            namespace.directives.nested.append(NestedExport(target, [str(name) for name in names], site))
            return target

        if len(names) == 1 and isinstance(names[0], type):
            target, names = names[0], ()
            return decorate(target)
        return decorate

    return {
        "export": export,
        "export_from": export_from,
        "export_default": export_default,
        "namespace": declare_namespace,
        "ref": ref,
    }


def finalize(namespace: Namespace) -> Any:
    """Apply recorded directives and return the value importers receive."""

    directives = namespace.directives
    facades = _apply_nested(namespace)
    if directives.has_default:
        value = _default_value(namespace, facades)
        namespace.state = UnitState.READY
        LOGGER.debug("Unit %s exports default %s", namespace.identity, type(value).__name__)
        return value

    _apply_mappings(namespace)
    _apply_receivers(namespace)
    _gate(namespace, facades)
    namespace.state = UnitState.READY
    LOGGER.debug(
        "Unit %s exports %s", namespace.identity, ", ".join(namespace.info.exported_names) or "nothing"
    )
    return namespace.facade


def mapping_member(key: str, value: Any) -> Any:
    """Convert one literal mapping entry into the binding stored under ``key``."""

    if is_constant_name(key) or callable(value):
        return value
    return _constant_method(key, value)


def attach_unit_info(value: Any, namespace: Namespace, site: DeclarationSite | None = None) -> Any:
    """Give a default-exported value ``__unit_info__`` and ``__reload__``."""

    info = namespace.info
    identity = namespace.identity
    loader = namespace.loader

    def reload_default() -> Any:
        if loader is None:
            raise RuntimeError(f"Unit {identity} was not created by a loader")
        return loader.rebuild(identity)

    try:
        _set_reload_info(value, info, reload_default)
    except (AttributeError, TypeError):
        retyped = _retype(value)
        if retyped is None:
            raise_at(
                DefaultValueTypeError(
                    f"Default export of type {type(value).__name__} cannot carry unit metadata"
                ),
                site,
            )
        value = retyped
        _set_reload_info(value, info, reload_default)
    return value


def exported_members(value: Any, names: Sequence[str] = ()) -> dict[str, Any]:
    """Exported methods and constants of a loaded unit, optionally only ``names``."""

    if not isinstance(value, Unit):
        raise TypeError(f"Cannot copy members from a default export of type {type(value).__name__}")
    namespace = namespace_of(value)
    selected = list(names) or [name for name in namespace.public if not name.startswith("_")]
    members: dict[str, Any] = {}
    for name in selected:
        if name not in namespace.public:
            raise ExportSymbolNotFoundError(f"{name} is not exported by unit {namespace.identity}")
        member = getattr(value, name)
        if is_constant_name(name) or callable(member):
            members[name] = member
    return members


def as_instance_method(function: Callable[..., Any]) -> Callable[..., Any]:
    """Wrap ``function`` so it can sit on a class and ignore the instance."""

    @functools.wraps(function)
    def method(_self: Any, *args: Any, **kwargs: Any) -> Any:
        return function(*args, **kwargs)

    return method


def _gate(namespace: Namespace, facades: dict[int, Any]) -> None:
    directives = namespace.directives
    members = namespace.members()
    exported = list(dict.fromkeys(directives.names))

    for name in exported:
        site = directives.sites.get(name)
        if name in members:
            if not is_constant_name(name) and not callable(members[name]):
                _missing(namespace, name, site)
        elif name not in namespace.surface and name not in namespace.auto_imports:
            _missing(namespace, name, site)

    namespace.public.clear()
    namespace.private.clear()
    for name in exported:
        if name in members:
            value = members[name]
        elif name in namespace.surface:
            value = namespace.lookup(name)
        else:
            value = DEFERRED
        namespace.public[name] = facades.get(id(value), value)
    for name, value in members.items():
        if name not in namespace.public:
            namespace.private[name] = value

    namespace.info.exported_names = exported
    namespace.info.private_constants = [name for name in namespace.private if is_constant_name(name)]


def _missing(namespace: Namespace, name: str, site: DeclarationSite | None) -> NoReturn:
    kind = "Constant" if is_constant_name(name) else "Method"
    raise_at(ExportSymbolNotFoundError(f"{kind} {name} not found in unit {namespace.identity}"), site)


def _apply_mappings(namespace: Namespace) -> None:
    for mapping, site in namespace.directives.mappings:
        for key, value in mapping.items():
            if isinstance(value, Ref):
                value = _resolve_ref(namespace, value, site)
            namespace.bindings[key] = mapping_member(key, value)


def _resolve_ref(namespace: Namespace, value: Ref, site: DeclarationSite | None) -> Any:
    try:
        return namespace.lookup(value.name)
    except NameError:
        _missing(namespace, value.name, site)


def _apply_receivers(namespace: Namespace) -> None:
    directives = namespace.directives
    for receiver, site in directives.receivers:
        if isinstance(receiver, (str, Ref)):
            name = str(receiver)
            try:
                receiver = namespace.lookup(name)
            except NameError:
                raise_at(
                    ExportSymbolNotFoundError(f"Receiver {name} not found in unit {namespace.identity}"),
                    site,
                )
        directives.add_names(_forward_members(namespace, receiver), site)


def _forward_members(namespace: Namespace, receiver: Any) -> list[str]:
    if isinstance(receiver, (type, ModuleType)):
        ignored = set(dir(type(receiver)))
    else:
        ignored = set(dir(object))
    names = []
    for name in dir(receiver):
        if name.startswith("_") or name in ignored:
            continue
        value = getattr(receiver, name)
        if is_constant_name(name):
            namespace.bindings[name] = value
        elif callable(value):
            namespace.bindings[name] = _forwarder(receiver, name, value)
        else:
            continue
        names.append(name)
    return names


def _forwarder(receiver: Any, name: str, original: Callable[..., Any]) -> Callable[..., Any]:
    def forward(*args: Any, **kwargs: Any) -> Any:
        return getattr(receiver, name)(*args, **kwargs)

    forward.__name__ = name
    forward.__qualname__ = name
    forward.__doc__ = getattr(original, "__doc__", None)
    return forward


def _constant_method(name: str, value: Any) -> Callable[..., Any]:
    def constant(*_args: Any, **_kwargs: Any) -> Any:
        return value

    constant.__name__ = name
    constant.__qualname__ = name
    return constant


def _apply_nested(namespace: Namespace) -> dict[int, Any]:
    facades: dict[int, Any] = {}
    for nested in namespace.directives.nested:
        target = nested.target
        child = Namespace(
            f"{namespace.identity}#{target.__qualname__}",
            source=namespace.source,
            location=namespace.location,
            loader=namespace.loader,
            parent=namespace,
        )
        child.bindings.update(_class_members(target))
        child.directives.add_names(nested.names, nested.site)
        _gate(child, facades)
        child.state = UnitState.READY
        facades[id(target)] = child.facade
        LOGGER.debug("Nested namespace %s exports %s", child.identity, ", ".join(nested.names))
    return facades


def _class_members(target: type) -> dict[str, Any]:
    return {
        name: getattr(target, name)
        for name in vars(target)
        if not (name.startswith("__") and name.endswith("__"))
    }


def _default_value(namespace: Namespace, facades: dict[int, Any]) -> Any:
    directives = namespace.directives
    value = directives.default
    site = directives.default_site
    if isinstance(value, Ref):
        name = value.name
        resolved = _resolve_ref(namespace, value, site)
        if is_constant_name(name):
            value = resolved
        elif callable(resolved):
            value = _late_bound(namespace, name, resolved)
        else:
            _missing(namespace, name, site)
    value = facades.get(id(value), value)

    if value is namespace.facade:
        namespace.public.update(namespace.members())
        namespace.private.clear()
        namespace.info.exported_names = list(namespace.public)
        return value
    if value is None or isinstance(value, (bool, numbers.Number, Enum)):
        raise_at(DefaultValueTypeError(DEFAULT_VALUE_ERROR), site)

    namespace.info.default_export = True
    return attach_unit_info(value, namespace, site)


def _late_bound(namespace: Namespace, name: str, original: Callable[..., Any]) -> Callable[..., Any]:
    bindings = namespace.bindings

    @functools.wraps(original)
    def call(*args: Any, **kwargs: Any) -> Any:
        return bindings[name](*args, **kwargs)

    return call


def _set_reload_info(value: Any, info: Any, reload_default: Callable[[], Any]) -> None:
    if isinstance(value, Unit):
        return
    setattr(value, "__unit_info__", info)
    if isinstance(value, type):
        setattr(value, "__reload__", staticmethod(reload_default))
    else:
        setattr(value, "__reload__", reload_default)


def _retype(value: Any) -> Any:
    base = type(value)
    subclass = _RETYPED.get(base)
    try:
        if subclass is None:
            subclass = type(base.__name__, (base,), {"__module__": base.__module__})
            _RETYPED[base] = subclass
        return subclass(value)
    except TypeError:
        return None


__all__ = [
    "as_instance_method",
    "attach_unit_info",
    "build_export_api",
    "declaration_site",
    "exported_members",
    "finalize",
    "mapping_member",
    "raise_at",
    "ref",
]
