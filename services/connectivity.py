from __future__ import annotations

import asyncio
import itertools
import logging
import threading
from typing import Callable, Dict, Optional

from core.settings import SYNC


logger = logging.getLogger("agritracker.sync.connectivity")

Probe = Callable[[], bool]


class ConnectivityMonitor:
    """Tracks the online/offline state and announces transitions to online.

    Hosts with a native signal call :meth:`set_online` directly; others can
    run :meth:`watch`, which polls ``probe`` on a fixed interval. Going
    offline is only recorded: pausing work is up to the consumers.
    """

    def __init__(self, probe: Optional[Probe] = None, *, online: bool = True) -> None:
        self.probe = probe
        self._online = online
        self._callbacks: Dict[int, Callable[[], None]] = {}
        self._tokens = itertools.count(1)
        self._lock = threading.Lock()
        self._watching = False

    @property
    def is_online(self) -> bool:
        return self._online

    def on_online(self, callback: Callable[[], None]) -> Callable[[], None]:
        with self._lock:
            token = next(self._tokens)
            self._callbacks[token] = callback

        def unsubscribe() -> None:
            with self._lock:
                self._callbacks.pop(token, None)

        return unsubscribe

    def set_online(self, online: bool) -> None:
        with self._lock:
            came_online = online and not self._online
            changed = online != self._online
            self._online = online
            callbacks = list(self._callbacks.values()) if came_online else []
        if changed:
            logger.info("Connectivity changed: %s", "online" if online else "offline")
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Online callback %r failed", callback)

    async def check(self) -> bool:
        if self.probe is None:
            return self._online
        try:
            online = bool(await asyncio.to_thread(self.probe))
        except Exception as exc:
            logger.warning("Connectivity probe crashed: %s", exc)
            online = False
        self.set_online(online)
        return online

    async def watch(self, interval: Optional[float] = None) -> None:
        """Poll the probe until :meth:`stop` is called."""

        period = interval or SYNC.connectivity_probe_interval_sec
        self._watching = True
        logger.debug("Connectivity watch started (every %ss)", period)
        while self._watching:
            await self.check()
            await asyncio.sleep(period)
        logger.debug("Connectivity watch stopped")

    def stop(self) -> None:
        self._watching = False


__all__ = ["ConnectivityMonitor", "Probe"]
