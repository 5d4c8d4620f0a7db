"""Identity -> loaded value cache shared by the loader components."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

LOGGER = logging.getLogger(__name__)

_MISSING = object()


class Registry:
    """Cache of loaded units keyed by identity.

    The re-entrant ``lock`` serializes first-time loads and reloads; reads of
    already registered values never take it.
    """

    def __init__(self) -> None:
        self._values: dict[str, Any] = {}
        self.lock = threading.RLock()

    def get(self, identity: str, default: Any = None) -> Any:
        return self._values.get(identity, default)

    def register(self, identity: str, value: Any) -> None:
        self._values[identity] = value

    def remove(self, identity: str) -> Any:
        return self._values.pop(identity, None)

    def identities(self) -> list[str]:
        return list(self._values)

    def reset(self) -> None:
        """Forget every cached unit."""
        with self.lock:
            count = len(self._values)
            self._values.clear()
        LOGGER.debug("Registry reset (%d units dropped)", count)

    @contextmanager
    def mock(self, identity: str, value: Any) -> Iterator[Any]:
        """Serve ``value`` for ``identity`` until the block exits."""

        previous = self._values.get(identity, _MISSING)
        self._values[identity] = value
        LOGGER.debug("Mocking %s", identity)
        try:
            yield value
        finally:
            if previous is _MISSING:
                self._values.pop(identity, None)
            else:
                self._values[identity] = previous
            LOGGER.debug("Restored %s", identity)

    def __contains__(self, identity: object) -> bool:
        return identity in self._values

    def __getitem__(self, identity: str) -> Any:
        return self._values[identity]

    def __len__(self) -> int:
        return len(self._values)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._values))


__all__ = ["Registry"]
