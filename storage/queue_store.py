"""Durable mirror of the offline sync queue.

The whole queue lives in one named :class:`QueueRecord` row as a JSON array
and every save overwrites it. Both directions are best effort:

* ``load`` degrades to an empty queue when the record is missing or cannot
  be parsed, so a corrupted store never blocks start-up;
* ``save`` logs and swallows write failures. After such a failure the
  in-memory queue held by the coordinator is the only copy, and anything
  not written before the process exits is lost.

The time of the last successful sync sits in a second record,
``<key>_status``, so it survives a restart along with the queue.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Callable, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from core.settings import SYNC
from datetime_utils import parse_rfc3339, to_rfc3339_utc, utc_now
from models.queue_record import QueueRecord
from models.sync_operation import OperationStatus, SyncOperation
from storage.db import get_session


logger = logging.getLogger("agritracker.sync.store")


class QueueStore:
    def __init__(
        self,
        session_factory: Callable[[], Session] = get_session,
        key: Optional[str] = None,
    ) -> None:
        self._session_factory = session_factory
        self.key = key or SYNC.queue_key
        self.status_key = f"{self.key}_status"

    def load(self) -> List[SyncOperation]:
        raw = self._read(self.key)
        if not raw:
            return []
        try:
            data = json.loads(raw)
            if not isinstance(data, list):
                raise ValueError(f"expected a list, got {type(data).__name__}")
            operations = [SyncOperation.from_dict(item) for item in data]
        except (ValueError, KeyError, TypeError, RecursionError) as exc:
            logger.warning("Sync queue record %r is corrupted, starting empty: %s", self.key, exc)
            return []

        logger.debug("Loaded %d queued operations", len(operations))
        return operations

    def save(self, operations: Iterable[SyncOperation]) -> bool:
        """Overwrite the stored queue. Returns ``False`` if the write failed."""

        try:
            payload = json.dumps(
                [op.to_dict() for op in operations if op.status is not OperationStatus.COMPLETED],
                ensure_ascii=False,
            )
        except (TypeError, ValueError) as exc:
            logger.error("Sync queue is not serializable, keeping previous copy: %s", exc)
            return False
        return self._write(self.key, payload)

    def clear(self) -> None:
        self.save([])

    def load_last_sync(self) -> Optional[datetime]:
        """Return the last successful sync time kept beside the queue, if any."""

        raw = self._read(self.status_key)
        if not raw:
            return None
        try:
            data = json.loads(raw)
            value = data.get("lastSync") if isinstance(data, dict) else None
            return parse_rfc3339(value) if isinstance(value, str) else None
        except (ValueError, RecursionError) as exc:
            logger.warning("Sync status record %r is corrupted, ignoring: %s", self.status_key, exc)
            return None

    def save_last_sync(self, moment: datetime) -> bool:
        return self._write(self.status_key, json.dumps({"lastSync": to_rfc3339_utc(moment)}))

    def _read(self, key: str) -> Optional[str]:
        try:
            with self._session_factory() as session:
                row = session.get(QueueRecord, key)
                return row.payload if row else None
        except (SQLAlchemyError, OSError) as exc:
            logger.warning("Sync store record %r unreadable, starting empty: %s", key, exc)
            return None

    def _write(self, key: str, payload: str) -> bool:
        try:
            with self._session_factory() as session:
                row = session.get(QueueRecord, key)
                if row is None:
                    row = QueueRecord(key=key, payload=payload)
                else:
                    row.payload = payload
                    row.updated_at = utc_now()
                session.add(row)
                session.commit()
        except (SQLAlchemyError, OSError) as exc:
            logger.error("Failed to persist sync queue; in-memory queue is authoritative: %s", exc)
            return False
        return True


__all__ = ["QueueStore"]
