from __future__ import annotations

import json
from unittest.mock import patch

import pytest

from src.errors import PersistenceError, RecordConflictError
from src.result_store import InMemoryResultStore, JsonResultStore
from src.schema import AnalysisStatus, FailureKind


def test_add_file_assigns_sequential_ids(make_stored_file):
    store = InMemoryResultStore()

    first = store.add_file(make_stored_file(name="a.txt"))
    second = store.add_file(make_stored_file(name="b.txt"))

    assert (first.id, second.id) == (1, 2)
    assert [stored.file_name for stored in store.list_files()] == ["a.txt", "b.txt"]


def test_create_record_starts_pending(make_task):
    store = InMemoryResultStore()
    task = make_task()

    record = store.create_record(task)

    assert record.status is AnalysisStatus.PENDING
    assert record.task_id == task.task_id
    assert json.loads(record.parameters)["metadata_extraction"] is False
    assert record.end_time is None


def test_second_pending_record_conflicts(make_task):
    store = InMemoryResultStore()
    store.create_record(make_task(file_id=1))

    with pytest.raises(RecordConflictError):
        store.create_record(make_task(file_id=1))


def test_terminal_record_can_be_replaced_by_new_analysis(make_task):
    store = InMemoryResultStore()
    store.create_record(make_task(file_id=1))
    store.update_record(1, status=AnalysisStatus.FAILED, error="Analysis timed out")

    retry = make_task(file_id=1)
    record = store.create_record(retry)

    assert record.status is AnalysisStatus.PENDING
    assert record.task_id == retry.task_id


def test_first_terminal_write_wins(make_stored_file, make_task):
    store = InMemoryResultStore()
    store.add_file(make_stored_file(file_id=1))
    task = make_task(file_id=1)
    store.create_record(task)

    assert store.update_record(
        1,
        status=AnalysisStatus.FAILED,
        error="Analysis timed out",
        failure_kind=FailureKind.TIMEOUT,
    )
    assert not store.update_record(1, status=AnalysisStatus.COMPLETED)

    record = store.get_record(1)
    assert record.status is AnalysisStatus.FAILED
    assert record.failure_kind is FailureKind.TIMEOUT
    assert record.end_time is not None
    assert store.get_file(1).analyzed is True


def test_completed_update_marks_file_analyzed(make_stored_file, make_task):
    store = InMemoryResultStore()
    store.add_file(make_stored_file(file_id=1))
    task = make_task(file_id=1)
    store.create_record(task)

    assert store.update_record(1, status=AnalysisStatus.COMPLETED, task_id=task.task_id)

    assert store.get_file(1).analyzed is True


def test_update_ignores_other_task_and_rejects_pending(make_task):
    store = InMemoryResultStore()
    store.create_record(make_task(file_id=1))

    assert not store.update_record(1, status=AnalysisStatus.COMPLETED, task_id="other")
    assert not store.update_record(2, status=AnalysisStatus.COMPLETED)
    with pytest.raises(ValueError):
        store.update_record(1, status=AnalysisStatus.PENDING)


def test_json_store_round_trips_state(tmp_path, make_stored_file, make_task):
    path = tmp_path / "results.json"
    store = JsonResultStore(path)
    store.add_file(make_stored_file(file_id=1))
    store.create_record(make_task(file_id=1))
    store.update_record(1, status=AnalysisStatus.COMPLETED)

    reloaded = JsonResultStore(path)

    assert reloaded.get_file(1).analyzed is True
    assert reloaded.get_file(1).encryption_password == ""
    assert reloaded.get_record(1).status is AnalysisStatus.COMPLETED
    assert "hunter2" not in path.read_text(encoding="utf-8")
    assert reloaded.add_file(make_stored_file(name="next.txt")).id == 2


def test_json_store_fails_interrupted_records(tmp_path, make_task):
    path = tmp_path / "results.json"
    JsonResultStore(path).create_record(make_task(file_id=3))

    reloaded = JsonResultStore(path)

    record = reloaded.get_record(3)
    assert record.status is AnalysisStatus.FAILED
    assert record.failure_kind is FailureKind.INTERNAL_ERROR


def test_json_store_rejects_corrupt_file(tmp_path):
    path = tmp_path / "results.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(PersistenceError):
        JsonResultStore(path)


def test_failed_write_rolls_back_update(tmp_path, make_task):
    store = JsonResultStore(tmp_path / "results.json")
    store.create_record(make_task(file_id=1))

    with patch("src.result_store.os.replace", side_effect=OSError("disk full")):
        with pytest.raises(PersistenceError):
            store.update_record(1, status=AnalysisStatus.COMPLETED)

    assert store.get_record(1).status is AnalysisStatus.PENDING


def test_unreadable_failure_can_leave_file_unanalyzed(make_stored_file, make_task):
    store = InMemoryResultStore()
    store.add_file(make_stored_file(file_id=1))
    store.create_record(make_task(file_id=1))

    assert store.update_record(
        1,
        status=AnalysisStatus.FAILED,
        error="failed to read file: gone",
        failure_kind=FailureKind.UNREADABLE_FILE,
        mark_analyzed=False,
    )

    assert store.get_file(1).analyzed is False


def test_list_records_is_ordered_by_file_id(make_task):
    store = InMemoryResultStore()
    for file_id in (3, 1, 2):
        store.create_record(make_task(file_id=file_id))

    assert [record.file_id for record in store.list_records()] == [1, 2, 3]
