"""Tessera command-line interface."""

from __future__ import annotations

import logging
import os
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, NoReturn

import typer

from . import __version__
from .config import ConfigError, TesseraConfig, load_config
from .errors import TesseraError
from .loader import Loader, call_entry_point
from .logging import configure_logging
from .namespace import Unit, namespace_of
from .packer import Packer
from .watcher import UnitWatcher

app = typer.Typer(help="Load, inspect, pack and hot-reload tessera units.")
LOGGER = logging.getLogger(__name__)

DEFAULT_ENTRY_FUNCTION = "main"
ENTRY_SPEC = re.compile(r"^(?P<path>.+):(?P<function>[A-Za-z_][A-Za-z0-9_]*)$")


@dataclass
class CLIState:
    """Stores shared CLI options."""

    config_path: Path | None
    full_backtrace: bool = False
    verbose: bool = False


@app.callback()
def _tessera(
    ctx: typer.Context,
    config: Annotated[
        Path | None,
        typer.Option(
            "-c",
            "--config",
            help="Path to tessera config (env TESSERA_CONFIG or ~/.config/tessera/config.yaml).",
        ),
    ] = None,
    full_backtrace: Annotated[
        bool,
        typer.Option(
            "--full-backtrace",
            help="Keep loader frames in tracebacks of failed imports.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("-v", "--verbose", help="Log at debug level."),
    ] = False,
) -> None:
    """Capture global CLI options."""

    resolved = config.expanduser() if config else None
    ctx.obj = CLIState(config_path=resolved, full_backtrace=full_backtrace, verbose=verbose)


@app.command()
def run(
    ctx: typer.Context,
    entries: Annotated[
        list[str],
        typer.Argument(..., help="Unit files to run, optionally as FILE:FUNCTION."),
    ],
) -> None:
    """Import each unit and call its entry function (``main`` when defined)."""

    loader = _build_loader(_state(ctx))
    for entry in entries:
        path, function, explicit = split_entry(entry)
        try:
            value = loader.import_unit(os.path.abspath(path), None)
            if explicit or _has_entry_point(value, function):
                call_entry_point(value, function)
        except TesseraError as exc:
            _failure(exc)


@app.command()
def deps(
    ctx: typer.Context,
    paths: Annotated[list[Path], typer.Argument(..., help="Unit files or directories.")],
) -> None:
    """Print every unit file the given units load, entries first."""

    loader = _build_loader(_state(ctx))
    listed: list[str] = []
    try:
        for path in paths:
            for identity in _expand_paths(path, loader.extension):
                loader.import_unit(identity, None)
                for candidate in [identity, *loader.traverse_dependencies(identity)]:
                    if candidate not in listed:
                        listed.append(candidate)
    except TesseraError as exc:
        _failure(exc)
    for identity in listed:
        typer.echo(identity)


@app.command()
def pack(
    ctx: typer.Context,
    paths: Annotated[list[Path], typer.Argument(..., help="Entry unit first, then extra units.")],
    output: Annotated[
        Path | None,
        typer.Option("-o", "--output", help="Write the artifact here instead of stdout."),
    ] = None,
    entry_function: Annotated[
        str,
        typer.Option("-e", "--entry-function", help="Function the artifact calls on start."),
    ] = DEFAULT_ENTRY_FUNCTION,
) -> None:
    """Bundle units and their dependencies into one runnable script."""

    loader = _build_loader(_state(ctx))
    try:
        artifact = Packer(loader, entry_function=entry_function).pack(
            [os.path.abspath(path.expanduser()) for path in paths]
        )
    except TesseraError as exc:
        _failure(exc)
    if output is None:
        typer.echo(artifact.text, nl=False)
        return
    artifact.write(output.expanduser())
    typer.echo(f"Packed {len(artifact.directory)} unit(s) into {output}", err=True)


@app.command()
def watch(
    ctx: typer.Context,
    entry: Annotated[str, typer.Argument(..., help="Unit to load, optionally as FILE:FUNCTION.")],
    cascade: Annotated[
        bool,
        typer.Option("--cascade", help="Also reload units that depend on a changed unit."),
    ] = False,
) -> None:
    """Load a unit and reload it in place whenever its files change."""

    loader = _build_loader(_state(ctx))
    path, function, explicit = split_entry(entry)
    try:
        value = loader.import_unit(os.path.abspath(path), None)
        if explicit or _has_entry_point(value, function):
            call_entry_point(value, function)
    except TesseraError as exc:
        _failure(exc)

    watcher = UnitWatcher(loader, cascade=cascade)
    watcher.start()
    typer.echo(f"Watching {len(watcher.watched_directories())} director(ies); Ctrl+C to stop.", err=True)
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        LOGGER.info("Stopping watcher")
    finally:
        watcher.stop()


@app.command()
def version() -> None:
    """Print the installed tessera version."""

    typer.echo(f"tessera {__version__}")


def split_entry(entry: str) -> tuple[str, str, bool]:
    """Split ``FILE:FUNCTION`` into its parts; the function defaults to ``main``."""

    match = ENTRY_SPEC.match(entry)
    if match is None:
        return entry, DEFAULT_ENTRY_FUNCTION, False
    return match.group("path"), match.group("function"), True


def _has_entry_point(value: object, function: str) -> bool:
    if isinstance(value, Unit):
        return callable(namespace_of(value).bindings.get(function))
    return callable(getattr(value, function, None))


def _expand_paths(path: Path, extension: str) -> list[str]:
    target = path.expanduser()
    if target.is_dir():
        return sorted(os.path.abspath(item) for item in target.rglob(f"*{extension}") if item.is_file())
    return [os.path.abspath(target)]


def _state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        raise RuntimeError("CLI state missing from context.")
    return state


def _build_loader(state: CLIState) -> Loader:
    config = _load_config(state.config_path)
    configure_logging(config.logging, verbose=state.verbose)
    loader = Loader.from_config(config)
    if state.full_backtrace:
        loader.full_backtrace = True
    return loader


def _load_config(path: Path | None) -> TesseraConfig:
    try:
        return load_config(path)
    except ConfigError as exc:
        typer.secho(f"Configuration error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(2) from exc


def _failure(exc: TesseraError) -> NoReturn:
    location = f" ({exc.location})" if exc.location else ""
    typer.secho(f"{type(exc).__name__}: {exc}{location}", fg=typer.colors.RED, err=True)
    raise typer.Exit(1) from exc


def main() -> None:  # pragma: no cover - delegated to Typer
    app()


__all__ = ["app", "main", "split_entry"]
