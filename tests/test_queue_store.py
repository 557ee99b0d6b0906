import json
from datetime import datetime

import pytest
from sqlalchemy.exc import SQLAlchemyError

from datetime_utils import UTC
from models.queue_record import QueueRecord
from models.sync_operation import OperationStatus, OperationType, SyncOperation
from storage.queue_store import QueueStore


def _write_raw(session_factory, key, payload):
    with session_factory() as session:
        session.add(QueueRecord(key=key, payload=payload))
        session.commit()


def _sample_ops():
    failed = SyncOperation(type=OperationType.UPDATE, collection="farmers", payload={"id": "f1", "name": "Alicia"})
    failed.status = OperationStatus.FAILED
    failed.retry_count = 2
    failed.last_error = "permission denied for table farmers"
    return [
        SyncOperation(type=OperationType.CREATE, collection="farmers", payload={"name": "Alice", "tags": ["a", "b"]}),
        failed,
        SyncOperation(type=OperationType.DELETE, collection="crops", payload={"id": 42}),
    ]


def test_load_without_record_is_empty(store):
    assert store.load() == []


def test_save_then_load_preserves_order_and_fields(store):
    ops = _sample_ops()
    assert store.save(ops) is True

    loaded = store.load()
    assert [op.to_dict() for op in loaded] == [op.to_dict() for op in ops]
    assert loaded[1].enqueued_at == ops[1].enqueued_at


def test_resaving_loaded_queue_is_a_noop(store):
    store.save(_sample_ops())
    first = [op.to_dict() for op in store.load()]

    store.save(store.load())

    assert [op.to_dict() for op in store.load()] == first


def test_completed_operations_are_never_persisted(store):
    ops = _sample_ops()
    ops[0].status = OperationStatus.COMPLETED
    store.save(ops)
    assert [op.id for op in store.load()] == [ops[1].id, ops[2].id]


def test_corrupted_json_loads_empty(session_factory, store, caplog):
    _write_raw(session_factory, store.key, "{not json")
    assert store.load() == []
    assert "corrupted" in caplog.text


def test_non_list_record_loads_empty(session_factory, store):
    _write_raw(session_factory, store.key, json.dumps({"id": "x"}))
    assert store.load() == []


def test_invalid_operation_loads_empty(session_factory, store):
    good = _sample_ops()[0].to_dict()
    bad = dict(good, id="other", status="DONE")
    _write_raw(session_factory, store.key, json.dumps([good, bad]))
    assert store.load() == []


def test_missing_field_loads_empty(session_factory, store):
    record = _sample_ops()[0].to_dict()
    del record["collection"]
    _write_raw(session_factory, store.key, json.dumps([record]))
    assert store.load() == []


def test_keys_are_isolated(session_factory):
    first = QueueStore(session_factory, key="a")
    second = QueueStore(session_factory, key="b")
    first.save(_sample_ops())
    assert second.load() == []
    assert len(first.load()) == 3


def test_overwrite_replaces_whole_queue(store):
    ops = _sample_ops()
    store.save(ops)
    store.save(ops[:1])
    assert [op.id for op in store.load()] == [ops[0].id]
    store.clear()
    assert store.load() == []


def test_unreadable_medium_loads_empty_and_write_failure_is_swallowed(caplog):
    def broken():
        raise SQLAlchemyError("database is locked")

    store = QueueStore(broken, key="q")
    assert store.load() == []
    assert store.save(_sample_ops()) is False
    assert "in-memory queue is authoritative" in caplog.text


def test_unserializable_payload_is_not_written(store):
    store.save(_sample_ops())
    bad = SyncOperation(type=OperationType.CREATE, collection="farmers", payload={"when": object()})
    assert store.save([bad]) is False
    assert len(store.load()) == 3


@pytest.mark.parametrize("enqueued_at", [1700000000, True, ["2024-05-01T10:00:00Z"], {"at": "now"}])
def test_non_string_timestamp_loads_empty(session_factory, store, enqueued_at):
    record = dict(_sample_ops()[0].to_dict(), enqueued_at=enqueued_at)
    _write_raw(session_factory, store.key, json.dumps([record]))
    assert store.load() == []


def test_deeply_nested_record_loads_empty(session_factory, store, caplog):
    _write_raw(session_factory, store.key, "[" * 100000 + "]" * 100000)
    assert store.load() == []
    assert "corrupted" in caplog.text


def test_last_sync_round_trip(store):
    assert store.load_last_sync() is None

    moment = datetime(2024, 5, 1, 10, 0, 0, 42, tzinfo=UTC)
    assert store.save_last_sync(moment) is True
    assert store.load_last_sync() == moment

    store.clear()
    assert store.load_last_sync() == moment


def test_corrupted_last_sync_is_ignored(session_factory, store):
    _write_raw(session_factory, store.status_key, "{broken")
    assert store.load_last_sync() is None
