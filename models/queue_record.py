"""SQLModel table holding named, whole-value durable records."""

from __future__ import annotations

from datetime import datetime

from sqlmodel import Field, SQLModel

from datetime_utils import utc_now


class QueueRecord(SQLModel, table=True):
    key: str = Field(primary_key=True)
    payload: str
    updated_at: datetime = Field(default_factory=utc_now)


__all__ = ["QueueRecord"]
