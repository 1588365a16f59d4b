from __future__ import annotations

import logging
from threading import Lock
from typing import Any, Callable

logger = logging.getLogger(__name__)


class Listeners:
    """
    Small publish/subscribe registry.

    `emit` calls every listener registered at call time, synchronously, on the
    caller's thread. A failing listener is logged and does not stop the others.
    """

    def __init__(self, name: str = "") -> None:
        self._name = name
        self._lock = Lock()
        self._callbacks: list[Callable[..., Any]] = []

    def add(self, callback: Callable[..., Any]) -> Callable[[], None]:
        with self._lock:
            self._callbacks.append(callback)

        def unsubscribe() -> None:
            self.remove(callback)

        return unsubscribe

    def remove(self, callback: Callable[..., Any]) -> None:
        with self._lock:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass

    def emit(self, *args: Any) -> None:
        with self._lock:
            callbacks = list(self._callbacks)
        for cb in callbacks:
            try:
                cb(*args)
            except Exception:
                logger.exception("Listener failed (%s)", self._name or "signal")

    def __len__(self) -> int:
        with self._lock:
            return len(self._callbacks)
