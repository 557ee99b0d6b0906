from __future__ import annotations

import asyncio
import copy
import logging
import threading
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, List, Optional, Set

from core.settings import SYNC, SYNC_LOG_PATH
from datetime_utils import utc_now
from models.sync_operation import OperationStatus, OperationType, SyncOperation
from services.connectivity import ConnectivityMonitor
from services.notifications import Listener, NotificationHub
from services.remote_executor import ExecutionResult, RemoteExecutor
from storage.queue_store import QueueStore


EXECUTOR_UNAVAILABLE = "executor unavailable"
UNKNOWN_ERROR = "unknown error"
INTERRUPTED = "interrupted before completion"
RETRY_LIMIT_REACHED = "retry limit reached"


def _ensure_logger() -> logging.Logger:
    logger = logging.getLogger("agritracker.sync")
    if not logger.handlers:
        SYNC_LOG_PATH.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(SYNC_LOG_PATH, maxBytes=1_000_000, backupCount=3, encoding="utf-8")
        formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    return logger


class SyncQueue:
    """Owner of the offline mutation queue and its processing loop.

    Every mutation of queue state happens here and is followed by a full
    save to the store and a hub notification. Readers get copies.

    Passes are single-flight: a call to :meth:`process_queue` while another
    pass runs, or while the monitor reports offline, returns at once.
    Leftover work re-arms one delayed retry; a newer arm replaces the older
    timer, so at most one retry is ever scheduled.
    """

    def __init__(
        self,
        store: QueueStore,
        executor: RemoteExecutor,
        *,
        hub: Optional[NotificationHub] = None,
        monitor: Optional[ConnectivityMonitor] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
    ) -> None:
        self.store = store
        self.executor = executor
        self.hub = hub if hub is not None else NotificationHub()
        self.monitor = monitor if monitor is not None else ConnectivityMonitor()
        self.max_retries = SYNC.max_retries if max_retries is None else max_retries
        self.retry_delay = SYNC.retry_delay_sec if retry_delay is None else retry_delay
        self.logger = _ensure_logger()

        self._state_lock = threading.RLock()
        self._pass_lock = threading.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._retry_handle: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()
        self._last_attempt = None

        self._last_sync = self.store.load_last_sync()
        self._queue: List[SyncOperation] = self.store.load()
        self._recover_loaded()
        self._unsubscribe_online = self.monitor.on_online(self._trigger)

    # ------------------------------------------------------------------
    # Lifecycle
    def start(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """Bind to an event loop and kick off a pass for any loaded work."""

        self._loop = loop or asyncio.get_running_loop()
        self.logger.info("Sync queue started with %d queued operations", len(self._queue))
        self._trigger()

    def close(self) -> None:
        self._unsubscribe_online()
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None

    async def join(self) -> None:
        """Wait until every pass started by this queue has finished."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Public API
    def enqueue(
        self,
        op_type: OperationType | str,
        collection: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> str:
        operation = SyncOperation(
            type=OperationType.coerce(op_type),
            collection=collection,
            payload=copy.deepcopy(dict(payload or {})),
        )
        with self._state_lock:
            self._queue.append(operation)
        self._persist()
        self.logger.info("Queued %s on %s (%s)", operation.type.value, collection, operation.id)
        self._trigger()
        return operation.id

    def snapshot(self) -> List[SyncOperation]:
        with self._state_lock:
            return [op.copy() for op in self._queue]

    def pending_count(self) -> int:
        with self._state_lock:
            return sum(
                1
                for op in self._queue
                if op.status in (OperationStatus.PENDING, OperationStatus.FAILED)
            )

    def operations_for(self, collection: str) -> List[SyncOperation]:
        return [op for op in self.snapshot() if op.collection == collection]

    def subscribe(self, callback: Listener):
        return self.hub.subscribe(callback)

    @property
    def is_syncing(self) -> bool:
        return self._pass_lock.locked()

    def status(self) -> dict:
        with self._state_lock:
            ops = list(self._queue)
            return {
                "pending": sum(1 for op in ops if op.status is OperationStatus.PENDING),
                "inProgress": sum(1 for op in ops if op.status is OperationStatus.IN_PROGRESS),
                "failed": sum(1 for op in ops if op.status is OperationStatus.FAILED),
                "dead": sum(1 for op in ops if op.is_exhausted(self.max_retries)),
                "total": len(ops),
                "isOnline": self.monitor.is_online,
                "isSyncing": self.is_syncing,
                "lastSync": self._last_sync,
                "lastAttemptAt": self._last_attempt,
            }

    def remove(self, op_id: str) -> bool:
        """Drop one operation. In-flight operations cannot be removed."""

        with self._state_lock:
            target = next((op for op in self._queue if op.id == op_id), None)
            if target is None or target.status is OperationStatus.IN_PROGRESS:
                return False
            self._queue = [op for op in self._queue if op.id != op_id]
        self._persist()
        self.logger.info("Removed operation %s", op_id)
        return True

    def clear_failed(self) -> int:
        """Remove every operation that has used up its retries."""

        with self._state_lock:
            kept = [op for op in self._queue if not op.is_exhausted(self.max_retries)]
            removed = len(self._queue) - len(kept)
            self._queue = kept
        if removed:
            self._persist()
            self.logger.info("Cleared %d dead operations", removed)
        return removed

    def clear(self) -> int:
        with self._state_lock:
            kept = [op for op in self._queue if op.status is OperationStatus.IN_PROGRESS]
            removed = len(self._queue) - len(kept)
            self._queue = kept
        if removed:
            self._persist()
            self.logger.warning("Cleared %d queued operations", removed)
        return removed

    async def sync_now(self) -> None:
        await self.process_queue()

    # ------------------------------------------------------------------
    # Processing
    async def process_queue(self) -> None:
        if self._pass_lock.locked() or not self.monitor.is_online:
            return

        with self._state_lock:
            candidates = [op for op in self._queue if op.is_eligible(self.max_retries)]
        if not candidates:
            return

        if not self._pass_lock.acquire(blocking=False):
            return
        self._bind_running_loop()
        try:
            self.logger.info("Processing %d queued operations", len(candidates))
            for operation in candidates:
                await self._process_one(operation)
        finally:
            self._pass_lock.release()

        if self.pending_count() > 0:
            self._schedule_retry()

    async def _process_one(self, operation: SyncOperation) -> None:
        with self._state_lock:
            if not any(op is operation for op in self._queue):
                return
            operation.status = OperationStatus.IN_PROGRESS
            operation.retry_count += 1
            operation.last_error = None
            self._last_attempt = utc_now()
        self._persist()

        try:
            handle = self.executor.resolve()
        except Exception as exc:
            self.logger.error("Executor resolution failed: %s", exc)
            handle = None
        if handle is None:
            self.logger.warning("Executor unavailable, skipping operation %s", operation.id)
            self._fail(operation, EXECUTOR_UNAVAILABLE)
            return

        try:
            result: Optional[ExecutionResult] = await handle.execute(
                operation.type, operation.collection, copy.deepcopy(operation.payload)
            )
        except asyncio.CancelledError:
            self._fail(operation, "processing cancelled")
            raise
        except Exception as exc:
            self.logger.error("Operation %s (%s %s) crashed: %s",
                              operation.id, operation.type.value, operation.collection, exc)
            self._fail(operation, str(exc) or UNKNOWN_ERROR)
            return

        if result is None:
            self._fail(operation, "no response from executor")
        elif result.success:
            self._complete(operation)
        else:
            self._fail(operation, result.error or UNKNOWN_ERROR)

    def _complete(self, operation: SyncOperation) -> None:
        with self._state_lock:
            operation.status = OperationStatus.COMPLETED
            self._queue = [op for op in self._queue if op.id != operation.id]
            self._last_sync = utc_now()
            self.store.save_last_sync(self._last_sync)
        self._persist()
        self.logger.info("Applied %s on %s (%s)",
                         operation.type.value, operation.collection, operation.id)

    def _fail(self, operation: SyncOperation, error: str) -> None:
        with self._state_lock:
            operation.status = OperationStatus.FAILED
            operation.last_error = error
        self._persist()
        if operation.retry_count >= self.max_retries:
            self.logger.warning("Operation %s gave up after %d attempts: %s",
                                operation.id, operation.retry_count, error)
        else:
            self.logger.warning("Operation %s failed (attempt %d/%d): %s",
                                operation.id, operation.retry_count, self.max_retries, error)

    # ------------------------------------------------------------------
    # Helpers
    def _persist(self) -> None:
        with self._state_lock:
            self.store.save(self._queue)
        self.hub.notify()

    def _recover_loaded(self) -> None:
        # a stored IN_PROGRESS entry means the process died mid-attempt;
        # counts above the cap come from a store written with a higher limit
        recovered = clamped = 0
        with self._state_lock:
            for op in self._queue:
                if op.status in (OperationStatus.IN_PROGRESS, OperationStatus.COMPLETED):
                    op.status = OperationStatus.FAILED
                    op.last_error = INTERRUPTED
                    recovered += 1
                if op.retry_count >= self.max_retries and (
                    op.retry_count > self.max_retries or op.status is not OperationStatus.FAILED
                ):
                    op.retry_count = self.max_retries
                    op.status = OperationStatus.FAILED
                    op.last_error = op.last_error or RETRY_LIMIT_REACHED
                    clamped += 1
        if recovered:
            self.logger.warning("Recovered %d interrupted operations", recovered)
        if clamped:
            self.logger.warning("Marked %d stored operations as out of retries", clamped)
        if recovered or clamped:
            self._persist()

    def _bind_running_loop(self) -> None:
        if self._loop is None or self._loop.is_closed():
            self._loop = asyncio.get_running_loop()

    def _current_loop(self) -> Optional[asyncio.AbstractEventLoop]:
        try:
            return asyncio.get_running_loop()
        except RuntimeError:
            return None

    def _trigger(self) -> None:
        running = self._current_loop()
        loop = self._loop
        if loop is None or loop.is_closed():
            if running is None:
                self.logger.debug("No event loop bound, processing deferred")
                return
            loop = self._loop = running

        if running is loop:
            self._spawn_pass()
        elif loop.is_running():
            # create the task on the loop thread so join() sees it
            loop.call_soon_threadsafe(self._spawn_pass)
        else:
            self.logger.debug("Event loop is not running, processing deferred")

    def _spawn_pass(self) -> None:
        task = asyncio.get_running_loop().create_task(self.process_queue())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _schedule_retry(self) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return

        def arm() -> None:
            if self._retry_handle is not None:
                self._retry_handle.cancel()
            self._retry_handle = loop.call_later(self.retry_delay, self._on_retry_timer)

        if self._current_loop() is loop:
            arm()
        else:
            loop.call_soon_threadsafe(arm)
        self.logger.debug("Retry pass scheduled in %ss", self.retry_delay)

    def _on_retry_timer(self) -> None:
        self._retry_handle = None
        self._trigger()


__all__ = ["SyncQueue", "EXECUTOR_UNAVAILABLE", "UNKNOWN_ERROR", "INTERRUPTED", "RETRY_LIMIT_REACHED"]
