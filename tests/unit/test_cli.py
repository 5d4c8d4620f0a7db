from __future__ import annotations

import logging
from pathlib import Path
from textwrap import dedent

import pytest
from typer.testing import CliRunner

from tessera.cli import app, split_entry

runner = CliRunner()


@pytest.fixture(autouse=True)
def restore_root_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def _write_config(tmp_path: Path) -> Path:
    config = tmp_path / "config.yaml"
    config.write_text("logging:\n  level: warning\n", encoding="utf-8")
    return config


def _write_app(tmp_path: Path) -> Path:
    (tmp_path / "greeting.py").write_text("Word = 'hello'\nexport('Word')\n", encoding="utf-8")
    app_path = tmp_path / "app.py"
    app_path.write_text(
        dedent(
            """
            Greeting = import_unit("./greeting")

            def main():
                print(f"{Greeting.Word} from main")

            def shout():
                print(Greeting.Word.upper())
            """
        ),
        encoding="utf-8",
    )
    return app_path


@pytest.mark.parametrize(
    "entry, expected",
    [
        ("app.py", ("app.py", "main", False)),
        ("app.py:shout", ("app.py", "shout", True)),
        ("dir/app.py:run_it", ("dir/app.py", "run_it", True)),
    ],
)
def test_split_entry(entry, expected):
    assert split_entry(entry) == expected


def test_run_calls_main_by_default(tmp_path):
    app_path = _write_app(tmp_path)
    config = _write_config(tmp_path)

    result = runner.invoke(app, ["-c", str(config), "run", str(app_path)])

    assert result.exit_code == 0
    assert "hello from main" in result.stdout


def test_run_calls_named_function(tmp_path):
    app_path = _write_app(tmp_path)
    config = _write_config(tmp_path)

    result = runner.invoke(app, ["-c", str(config), "run", f"{app_path}:shout"])

    assert result.exit_code == 0
    assert "HELLO" in result.stdout
    assert "from main" not in result.stdout


def test_run_reports_missing_unit(tmp_path):
    config = _write_config(tmp_path)

    result = runner.invoke(app, ["-c", str(config), "run", str(tmp_path / "absent.py")])

    assert result.exit_code == 1


def test_deps_lists_entry_and_dependencies(tmp_path):
    app_path = _write_app(tmp_path)
    config = _write_config(tmp_path)

    result = runner.invoke(app, ["-c", str(config), "deps", str(app_path)])

    assert result.exit_code == 0
    assert result.stdout.splitlines() == [str(app_path), str(tmp_path / "greeting.py")]


def test_pack_writes_artifact(tmp_path):
    app_path = _write_app(tmp_path)
    config = _write_config(tmp_path)
    output = tmp_path / "dist" / "app_packed.py"
    output.parent.mkdir()

    result = runner.invoke(app, ["-c", str(config), "pack", str(app_path), "-o", str(output)])

    assert result.exit_code == 0
    text = output.read_text(encoding="utf-8")
    assert text.startswith("#!/usr/bin/env python3")
    assert str(tmp_path / "greeting.py") in text


def test_invalid_config_exits_with_code_two(tmp_path):
    config = tmp_path / "config.yaml"
    config.write_text("extension: ''\n", encoding="utf-8")

    result = runner.invoke(app, ["-c", str(config), "version"])
    assert result.exit_code == 0

    result = runner.invoke(app, ["-c", str(config), "deps", str(tmp_path)])
    assert result.exit_code == 2


def test_version_command():
    result = runner.invoke(app, ["version"])

    assert result.exit_code == 0
    assert result.stdout.startswith("tessera ")
