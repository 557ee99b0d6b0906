from __future__ import annotations

import itertools
import logging
import threading
from typing import Callable, Dict


logger = logging.getLogger("agritracker.sync.hub")

Listener = Callable[[], None]


class NotificationHub:
    """Registry of no-argument callbacks fired after every queue persist.

    Listeners run synchronously in subscription order. Each cycle iterates a
    copy of the registry taken when it starts, so subscribing or
    unsubscribing from inside a callback only affects later cycles.
    """

    def __init__(self) -> None:
        self._listeners: Dict[int, Listener] = {}
        self._tokens = itertools.count(1)
        self._lock = threading.Lock()

    def subscribe(self, callback: Listener) -> Callable[[], None]:
        with self._lock:
            token = next(self._tokens)
            self._listeners[token] = callback

        def unsubscribe() -> None:
            with self._lock:
                self._listeners.pop(token, None)

        return unsubscribe

    def notify(self) -> None:
        with self._lock:
            listeners = list(self._listeners.values())
        for listener in listeners:
            try:
                listener()
            except Exception:
                logger.exception("Sync listener %r failed", listener)

    def __len__(self) -> int:
        with self._lock:
            return len(self._listeners)


__all__ = ["NotificationHub", "Listener"]
