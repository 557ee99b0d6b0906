"""In-memory representation of a queued remote mutation."""

from __future__ import annotations

import copy
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from datetime_utils import parse_rfc3339, to_rfc3339_utc, utc_now


class OperationType(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"

    @classmethod
    def coerce(cls, value: "OperationType | str") -> "OperationType":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValueError(f"Unsupported operation type: {value!r}") from None


class OperationStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


def new_operation_id() -> str:
    return uuid.uuid4().hex


@dataclass
class SyncOperation:
    type: OperationType
    collection: str
    payload: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=new_operation_id)
    enqueued_at: datetime = field(default_factory=utc_now)
    retry_count: int = 0
    status: OperationStatus = OperationStatus.PENDING
    last_error: Optional[str] = None

    def is_exhausted(self, max_retries: int) -> bool:
        return self.status is OperationStatus.FAILED and self.retry_count >= max_retries

    def is_eligible(self, max_retries: int) -> bool:
        """True when the next processing pass should attempt this operation."""

        if self.status is OperationStatus.PENDING:
            return True
        return self.status is OperationStatus.FAILED and self.retry_count < max_retries

    def copy(self) -> "SyncOperation":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "collection": self.collection,
            "payload": self.payload,
            "enqueued_at": to_rfc3339_utc(self.enqueued_at),
            "retry_count": self.retry_count,
            "status": self.status.value,
            "last_error": self.last_error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SyncOperation":
        """Rebuild an operation from its persisted form.

        Raises ``ValueError``/``KeyError``/``TypeError`` for malformed input;
        the store treats any of those as corruption.
        """

        if not isinstance(data, dict):
            raise TypeError(f"Expected a mapping, got {type(data).__name__}")
        op_id = data["id"]
        collection = data["collection"]
        if not isinstance(op_id, str) or not op_id:
            raise ValueError("Operation id must be a non-empty string")
        if not isinstance(collection, str) or not collection:
            raise ValueError("Operation collection must be a non-empty string")
        payload = data.get("payload") or {}
        if not isinstance(payload, dict):
            raise ValueError("Operation payload must be a mapping")
        raw_enqueued_at = data.get("enqueued_at")
        if not isinstance(raw_enqueued_at, str):
            raise TypeError(f"enqueued_at must be a string for operation {op_id}")
        enqueued_at = parse_rfc3339(raw_enqueued_at)
        if enqueued_at is None:
            raise ValueError(f"Invalid enqueued_at for operation {op_id}")
        retry_count = data.get("retry_count", 0)
        if isinstance(retry_count, bool) or not isinstance(retry_count, int) or retry_count < 0:
            raise ValueError(f"Invalid retry_count for operation {op_id}")
        last_error = data.get("last_error")
        return cls(
            id=op_id,
            type=OperationType(data["type"]),
            collection=collection,
            payload=payload,
            enqueued_at=enqueued_at,
            retry_count=retry_count,
            status=OperationStatus(data["status"]),
            last_error=str(last_error) if last_error is not None else None,
        )


__all__ = ["OperationStatus", "OperationType", "SyncOperation", "new_operation_id"]
