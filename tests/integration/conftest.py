from __future__ import annotations

import os
import threading
import time
from pathlib import Path
from typing import Any

import pytest

SRC_DIR = Path(__file__).resolve().parents[2] / "src"


class EventCollector:
    """Thread-safe helper for waiting on asynchronous events."""

    def __init__(self) -> None:
        self.events: list[Any] = []
        self._condition = threading.Condition()

    def add(self, event: Any) -> None:
        with self._condition:
            self.events.append(event)
            self._condition.notify_all()

    def wait_for(self, count: int, timeout: float = 10.0) -> bool:
        """Wait until a minimum number of events have been collected."""

        deadline = time.monotonic() + timeout
        with self._condition:
            while len(self.events) < count:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._condition.wait(timeout=remaining)
            return True


@pytest.fixture()
def subprocess_env(tmp_path: Path) -> dict[str, str]:
    """Environment for child interpreters that import tessera from the source tree."""

    env = dict(os.environ)
    env.pop("TESSERA_CONFIG", None)
    existing = env.get("PYTHONPATH")
    env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(SRC_DIR), existing]))
    env["HOME"] = str(tmp_path / "home")
    return env


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Automatically mark tests in this package as integration."""

    package_root = Path(__file__).resolve().parent
    integration_mark = pytest.mark.integration
    for item in items:
        try:
            path = Path(item.fspath).resolve()
        except OSError:
            continue
        if package_root in path.parents:
            item.add_marker(integration_mark)
