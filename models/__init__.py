"""Data models exposed by the AgriTracker sync core."""
from .queue_record import QueueRecord
from .sync_operation import OperationStatus, OperationType, SyncOperation

__all__ = ["OperationStatus", "OperationType", "QueueRecord", "SyncOperation"]
