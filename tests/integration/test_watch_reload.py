from __future__ import annotations

import os
from pathlib import Path

from tessera import Loader
from tessera.watcher import UnitWatcher

from tests.integration.conftest import EventCollector


def _replace(path: Path, text: str) -> None:
    staging = path.with_name(f".{path.name}.tmp")
    staging.write_text(text, encoding="utf-8")
    os.replace(staging, path)


def test_file_change_reloads_unit_in_place(tmp_path):
    child = tmp_path / "settings.py"
    parent = tmp_path / "app.py"
    _replace(child, "Mode = 'dev'\nexport('Mode')\n")
    _replace(parent, "Settings = import_unit('./settings')\nCurrent = Settings.Mode\nexport('Current')\n")
    loader = Loader()
    app = loader.import_unit(parent)
    settings = loader.import_unit(child)
    collector = EventCollector()
    watcher = UnitWatcher(loader, cascade=True, debounce_seconds=0)
    watcher.on_reload(lambda identity, _value: collector.add(identity))

    watcher.start()
    try:
        assert watcher.is_running
        _replace(child, "Mode = 'prod'\nexport('Mode')\n")
        assert collector.wait_for(2)
    finally:
        watcher.stop()

    assert str(child) in collector.events
    assert str(parent) in collector.events
    assert settings.Mode == "prod"
    assert app.Current == "prod"
