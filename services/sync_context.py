"""Application-owned wiring for the offline sync core.

Start-up code builds exactly one :class:`SyncContext` and hands it to
whoever needs the queue (UI shell, CLI). The coordinator is created on
first access, once, no matter how many threads ask for it.
"""
from __future__ import annotations

import threading
from typing import Callable, Optional

from sqlmodel import Session

from core.settings import SUPABASE, SYNC, SupabaseSettings
from services.connectivity import ConnectivityMonitor
from services.notifications import NotificationHub
from services.remote_executor import RemoteExecutor, SupabaseExecutor
from services.sync_queue import SyncQueue
from storage.db import get_session, init_db
from storage.queue_store import QueueStore


class SyncContext:
    def __init__(
        self,
        *,
        executor: Optional[RemoteExecutor] = None,
        monitor: Optional[ConnectivityMonitor] = None,
        hub: Optional[NotificationHub] = None,
        session_factory: Optional[Callable[[], Session]] = None,
        supabase: SupabaseSettings = SUPABASE,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
    ) -> None:
        self.executor = executor if executor is not None else SupabaseExecutor(supabase)
        if monitor is None:
            probe = None
            if isinstance(self.executor, SupabaseExecutor) and supabase.is_configured:
                executor_ref = self.executor
                probe = lambda: executor_ref.probe(SYNC.probe_timeout_sec)  # noqa: E731
            monitor = ConnectivityMonitor(probe)
        self.monitor = monitor
        self.hub = hub if hub is not None else NotificationHub()
        self._session_factory = session_factory
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._coordinator: Optional[SyncQueue] = None
        self._lock = threading.Lock()

    @property
    def coordinator(self) -> SyncQueue:
        if self._coordinator is None:
            with self._lock:
                if self._coordinator is None:
                    self._coordinator = self._build()
        return self._coordinator

    def _build(self) -> SyncQueue:
        if self._session_factory is None:
            init_db()
            store = QueueStore(get_session)
        else:
            store = QueueStore(self._session_factory)
        return SyncQueue(
            store,
            self.executor,
            hub=self.hub,
            monitor=self.monitor,
            max_retries=self._max_retries,
            retry_delay=self._retry_delay,
        )

    def close(self) -> None:
        self.monitor.stop()
        if self._coordinator is not None:
            self._coordinator.close()
        close_executor = getattr(self.executor, "close", None)
        if callable(close_executor):
            close_executor()


__all__ = ["SyncContext"]
