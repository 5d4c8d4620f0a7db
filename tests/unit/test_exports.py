from __future__ import annotations

from pathlib import Path
from textwrap import dedent

import pytest

from tessera import (
    DefaultValueTypeError,
    ExportSymbolNotFoundError,
    Loader,
    MixedExportError,
    PrivateAccessError,
    Unit,
)


def _write_unit(directory: Path, name: str, body: str) -> Path:
    path = directory / f"{name}.py"
    path.write_text(dedent(body), encoding="utf-8")
    return path


def _innermost(error: BaseException):
    entry = error.__traceback__
    while entry.tb_next is not None:
        entry = entry.tb_next
    return entry


@pytest.fixture()
def loader() -> Loader:
    return Loader()


def test_missing_export_is_reported_at_declaration(tmp_path, loader):
    path = _write_unit(
        tmp_path,
        "missing",
        """\
        def present():
            return 1

        export("present", "absent")

        def later():
            return 2
        """,
    )

    with pytest.raises(ExportSymbolNotFoundError, match="Method absent") as excinfo:
        loader.import_unit(path)

    assert excinfo.value.location.filename == str(path)
    assert excinfo.value.location.lineno == 4
    innermost = _innermost(excinfo.value)
    assert innermost.tb_frame.f_code.co_filename == str(path)
    assert innermost.tb_lineno == 4
    assert str(path) not in loader.registry


def test_missing_constant_export(tmp_path, loader):
    path = _write_unit(tmp_path, "noconst", "export('Missing')\n")

    with pytest.raises(ExportSymbolNotFoundError, match="Constant Missing"):
        loader.import_unit(path)


def test_lowercase_state_cannot_be_exported_as_method(tmp_path, loader):
    path = _write_unit(tmp_path, "state", "counter = 3\nexport('counter')\n")

    with pytest.raises(ExportSymbolNotFoundError):
        loader.import_unit(path)


def test_exports_accept_a_list_and_forward_references(tmp_path, loader):
    path = _write_unit(
        tmp_path,
        "forward",
        """
        export(["Later", "compute"])

        def compute():
            return Later * 2

        Later = 21
        """,
    )

    unit = loader.import_unit(path)

    assert unit.compute() == 42
    assert unit.__unit_info__.exported_names == ["Later", "compute"]


def test_mapping_export_aliases_and_literals(tmp_path, loader):
    path = _write_unit(
        tmp_path,
        "mapping",
        """
        Limit = 10

        def _double(value):
            return value * 2

        export({
            "double": ref("_double"),
            "Max": ref("Limit"),
            "greeting": "hello",
            "Banner": "tessera",
            "triple": lambda value: value * 3,
        })
        """,
    )

    unit = loader.import_unit(path)

    assert unit.double(4) == 8
    assert unit.Max == 10
    assert unit.greeting() == "hello"
    assert unit.Banner == "tessera"
    assert unit.triple(2) == 6
    with pytest.raises(PrivateAccessError):
        unit._double


def test_mapping_export_with_unknown_reference(tmp_path, loader):
    path = _write_unit(tmp_path, "badmap", "export({'alias': ref('nothing')})\n")

    with pytest.raises(ExportSymbolNotFoundError) as excinfo:
        loader.import_unit(path)

    assert excinfo.value.location.lineno == 1


def test_export_from_receiver(tmp_path, loader):
    path = _write_unit(
        tmp_path,
        "receiver",
        """
        class Api:
            Version = "1.0"

            def __init__(self):
                self.calls = 0

            def ping(self):
                self.calls += 1
                return f"pong {self.calls}"

            def _internal(self):
                return "hidden"

        Instance = Api()
        export_from(Instance)
        """,
    )

    unit = loader.import_unit(path)

    assert unit.Version == "1.0"
    assert unit.ping() == "pong 1"
    assert unit.ping() == "pong 2"
    assert "_internal" not in dir(unit)
    assert "calls" not in dir(unit)
    with pytest.raises(PrivateAccessError):
        unit.Instance


def test_export_from_named_receiver_skips_class_machinery(tmp_path, loader):
    path = _write_unit(
        tmp_path,
        "named_receiver",
        """
        class Tools:
            Scale = 3

            @staticmethod
            def scale(value):
                return value * Tools.Scale

        export_from("Tools")
        """,
    )

    unit = loader.import_unit(path)

    assert unit.scale(2) == 6
    assert unit.Scale == 3
    assert "mro" not in dir(unit)


def test_export_from_unknown_receiver(tmp_path, loader):
    path = _write_unit(tmp_path, "noreceiver", "export_from('Ghost')\n")

    with pytest.raises(ExportSymbolNotFoundError, match="Receiver Ghost"):
        loader.import_unit(path)


def test_nested_namespace_gate_runs_after_parent(tmp_path, loader):
    path = _write_unit(
        tmp_path,
        "nested",
        """
        @namespace("greet")
        class Greetings:
            def greet(name):
                return f"{Prefix} {name}"

            def _secret():
                return "internal"

        def reveal():
            return Greetings._secret()

        Prefix = "hello"
        export("Greetings", "reveal")
        """,
    )

    unit = loader.import_unit(path)

    assert isinstance(unit.Greetings, Unit)
    assert unit.Greetings.greet("bob") == "hello bob"
    assert unit.reveal() == "internal"
    with pytest.raises(PrivateAccessError):
        unit.Greetings._secret


def test_nested_namespace_missing_name(tmp_path, loader):
    path = _write_unit(
        tmp_path,
        "nested_missing",
        """\
        @namespace("nope")
        class Empty:
            pass
        """,
    )

    with pytest.raises(ExportSymbolNotFoundError) as excinfo:
        loader.import_unit(path)

    assert excinfo.value.location.lineno == 1


def test_mixed_exports_fail_at_declaration(tmp_path, loader):
    path = _write_unit(
        tmp_path,
        "mixed",
        """\
        def run():
            return 1

        export("run")
        export_default(ref("run"))
        """,
    )

    with pytest.raises(MixedExportError) as excinfo:
        loader.import_unit(path)

    assert excinfo.value.location.lineno == 5


def test_default_export_of_class(tmp_path, loader):
    path = _write_unit(
        tmp_path,
        "klass",
        """
        class Counter:
            def __init__(self):
                self.count = 0

        export_default(Counter)
        """,
    )

    value = loader.import_unit(path)

    assert isinstance(value, type)
    assert value().count == 0
    assert value.__unit_info__.identity == str(path)
    assert value.__unit_info__.default_export is True
    assert callable(value.__reload__)
    assert loader.import_unit(path) is value


def test_default_export_reference_to_method_is_late_bound(tmp_path, loader):
    path = _write_unit(
        tmp_path,
        "adder",
        """
        def add(left, right):
            return left + right

        export_default(ref("add"))
        """,
    )

    add = loader.import_unit(path)

    assert add(2, 3) == 5
    assert add.__name__ == "add"


def test_default_export_reference_to_constant(tmp_path, loader):
    path = _write_unit(
        tmp_path,
        "settings",
        """
        Settings = {"debug": True}
        export_default(ref("Settings"))
        """,
    )

    settings = loader.import_unit(path)

    assert settings == {"debug": True}
    assert isinstance(settings, dict)
    assert settings.__unit_info__.identity == str(path)


def test_default_export_of_module_facade_exposes_everything(tmp_path, loader):
    path = _write_unit(
        tmp_path,
        "everything",
        """
        def helper():
            return "visible"

        export_default(MODULE)
        """,
    )

    unit = loader.import_unit(path)

    assert isinstance(unit, Unit)
    assert unit.helper() == "visible"


@pytest.mark.parametrize("literal", ["None", "True", "42", "3.5"])
def test_default_export_rejects_primitives(tmp_path, loader, literal):
    path = _write_unit(tmp_path, "primitive", f"export_default({literal})\n")

    with pytest.raises(DefaultValueTypeError) as excinfo:
        loader.import_unit(path)

    assert excinfo.value.location.lineno == 1


def test_default_export_rejects_enum_members(tmp_path, loader):
    path = _write_unit(
        tmp_path,
        "enum_default",
        """
        import enum

        class Color(enum.Enum):
            RED = 1

        export_default(Color.RED)
        """,
    )

    with pytest.raises(DefaultValueTypeError):
        loader.import_unit(path)


def test_default_export_rebuild_replaces_registry_value(tmp_path, loader):
    path = _write_unit(tmp_path, "label", "export_default('first')\n")

    first = loader.import_unit(path)
    path.write_text("export_default('second')\n", encoding="utf-8")
    second = first.__reload__()

    assert first == "first"
    assert second == "second"
    assert loader.import_unit(path) is second


def test_callable_unit_forwards_to_exported_call(tmp_path, loader):
    path = _write_unit(
        tmp_path,
        "factorial",
        """
        def __call__(number):
            return 1 if number <= 1 else number * __call__(number - 1)

        export("__call__")
        """,
    )

    factorial = loader.import_unit(path)

    assert factorial(5) == 120


def test_facade_is_read_only(tmp_path, loader):
    path = _write_unit(tmp_path, "frozen", "Value = 1\nexport('Value')\n")

    unit = loader.import_unit(path)

    with pytest.raises(AttributeError):
        unit.Value = 2
    assert repr(unit) == f"<Unit {path}>"


def _write_ext(directory: Path) -> Path:
    return _write_unit(
        directory,
        "ext",
        """
        Foo = "bar"
        Hidden = "secret"

        def a():
            return "a"

        def b():
            return "b"

        def c():
            return "c"

        export("Foo", "a", "b")
        """,
    )


def test_extend_from_copies_exports_onto_a_class(tmp_path, loader):
    ext = _write_ext(tmp_path)
    path = _write_unit(
        tmp_path,
        "extended",
        """
        class Tools:
            pass

        extend_from("./ext", into=Tools)
        HasC = hasattr(Tools, "c")
        HasHidden = hasattr(Tools, "Hidden")

        def both():
            return Tools.a() + Tools.b()

        export("Tools", "HasC", "HasHidden", "both")
        """,
    )

    unit = loader.import_unit(path)

    assert unit.both() == "ab"
    assert unit.Tools.Foo == "bar"
    assert unit.HasC is False
    assert unit.HasHidden is False
    assert loader.dependencies(unit) == [str(ext)]


def test_extend_from_without_target_binds_into_the_unit(tmp_path, loader):
    _write_ext(tmp_path)
    path = _write_unit(
        tmp_path,
        "merged",
        """
        extend_from("./ext")

        def combined():
            return a() + Foo

        export("combined")
        """,
    )

    unit = loader.import_unit(path)

    assert unit.combined() == "abar"
    with pytest.raises(PrivateAccessError):
        unit.a


def test_include_from_adds_instance_methods_and_constants(tmp_path, loader):
    _write_ext(tmp_path)
    path = _write_unit(
        tmp_path,
        "widgets",
        """
        @include_from("./ext")
        class Widget:
            pass

        @include_from("./ext", "a")
        class Small:
            pass

        export("Widget", "Small")
        """,
    )

    unit = loader.import_unit(path)
    widget, small = unit.Widget(), unit.Small()

    assert widget.a() == "a"
    assert widget.b() == "b"
    assert unit.Widget.Foo == "bar"
    assert not hasattr(widget, "c")
    assert small.a() == "a"
    assert not hasattr(small, "b")
    assert not hasattr(unit.Small, "Foo")


def test_include_from_rejects_names_that_are_not_exported(tmp_path, loader):
    _write_ext(tmp_path)
    path = _write_unit(
        tmp_path,
        "bad_include",
        """
        @include_from("./ext", "c")
        class Widget:
            pass
        """,
    )

    with pytest.raises(ExportSymbolNotFoundError, match="c is not exported"):
        loader.import_unit(path)
