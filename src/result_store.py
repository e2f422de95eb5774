"""Storage for uploaded file records and their analysis results."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from src.errors import PersistenceError, RecordConflictError
from src.schema import (
    AnalysisRecord,
    AnalysisSections,
    AnalysisStatus,
    AnalysisTask,
    FailureKind,
    StoredFile,
    utc_now,
)

logger = logging.getLogger("depot_analysis.store")


class InMemoryResultStore:
    """Thread-safe store of files and analysis records.

    Every read-modify-write happens under one lock. ``update_record`` only
    commits while the record is still pending, so the first terminal write
    wins and any later one is a no-op.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._files: dict[int, StoredFile] = {}
        self._records: dict[int, AnalysisRecord] = {}
        self._next_file_id = 1

    def add_file(self, stored_file: StoredFile) -> StoredFile:
        """Register an uploaded file and return it with its assigned id."""
        with self._lock:
            file_id = stored_file.id or self._next_file_id
            if file_id in self._files:
                raise RecordConflictError(f"File id {file_id} is already registered")
            registered = stored_file.model_copy(update={"id": file_id})
            self._files[file_id] = registered
            try:
                self._persist()
            except PersistenceError:
                del self._files[file_id]
                raise
            self._next_file_id = max(self._next_file_id, file_id + 1)
            return registered.model_copy()

    def get_file(self, file_id: int) -> StoredFile | None:
        with self._lock:
            stored = self._files.get(file_id)
            return stored.model_copy() if stored else None

    def list_files(self) -> list[StoredFile]:
        with self._lock:
            return [self._files[key].model_copy() for key in sorted(self._files)]

    def get_record(self, file_id: int) -> AnalysisRecord | None:
        with self._lock:
            record = self._records.get(file_id)
            return record.model_copy() if record else None

    def list_records(self) -> list[AnalysisRecord]:
        with self._lock:
            return [self._records[key].model_copy() for key in sorted(self._records)]

    def create_record(self, task: AnalysisTask) -> AnalysisRecord:
        """Create the pending record for ``task``.

        A terminal record from an earlier analysis of the same file is replaced;
        a pending one raises ``RecordConflictError``.
        """
        with self._lock:
            existing = self._records.get(task.file_id)
            if existing is not None and existing.status is AnalysisStatus.PENDING:
                raise RecordConflictError(
                    f"File {task.file_id} already has a pending analysis "
                    f"({existing.task_id})"
                )
            record = AnalysisRecord(
                file_id=task.file_id,
                task_id=task.task_id,
                file_name=task.file_name,
                parameters=task.parameters,
            )
            self._records[task.file_id] = record
            try:
                self._persist()
            except PersistenceError:
                if existing is None:
                    del self._records[task.file_id]
                else:
                    self._records[task.file_id] = existing
                raise
            return record.model_copy()

    def update_record(
        self,
        file_id: int,
        *,
        status: AnalysisStatus,
        sections: AnalysisSections | None = None,
        error: str | None = None,
        failure_kind: FailureKind | None = None,
        task_id: str | None = None,
        mark_analyzed: bool = True,
    ) -> bool:
        """Move a pending record to a terminal status.

        Returns False, changing nothing, when the record is missing, already
        terminal, or belongs to a different task than ``task_id``. The commit
        that wins also marks the source file as analyzed unless
        ``mark_analyzed`` is False.
        """
        if not status.is_terminal:
            raise ValueError("update_record requires a terminal status")

        with self._lock:
            record = self._records.get(file_id)
            if record is None or record.status is not AnalysisStatus.PENDING:
                return False
            if task_id is not None and record.task_id != task_id:
                return False

            updated = record.model_copy(
                update={
                    "status": status,
                    "sections": sections,
                    "error": error,
                    "failure_kind": failure_kind,
                    "end_time": utc_now(),
                }
            )
            self._records[file_id] = updated

            stored = self._files.get(file_id)
            if mark_analyzed and stored and not stored.analyzed:
                self._files[file_id] = stored.model_copy(update={"analyzed": True})

            try:
                self._persist()
            except PersistenceError:
                # Undo so the in-memory view never runs ahead of durable state.
                self._records[file_id] = record
                if stored is not None:
                    self._files[file_id] = stored
                raise
            return True

    def _persist(self) -> None:
        """Hook for durable subclasses; called with the lock held."""


class JsonResultStore(InMemoryResultStore):
    """Result store mirrored to a JSON manifest after every change."""

    def __init__(self, path: Path | str) -> None:
        super().__init__()
        self.path = Path(path)
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
            files = [StoredFile.model_validate(item) for item in data.get("files", [])]
            records = [
                AnalysisRecord.model_validate(item) for item in data.get("records", [])
            ]
        except (OSError, json.JSONDecodeError, ValidationError, AttributeError) as exc:
            raise PersistenceError(
                f"Result store {self.path} is unreadable: {exc}"
            ) from exc

        for stored in files:
            if stored.id is not None:
                self._files[stored.id] = stored
        for record in records:
            self._records[record.file_id] = record
        if self._files:
            self._next_file_id = max(self._files) + 1

        # Records left pending by a previous process will never be finished.
        interrupted = [
            record
            for record in self._records.values()
            if record.status is AnalysisStatus.PENDING
        ]
        for record in interrupted:
            self._records[record.file_id] = record.model_copy(
                update={
                    "status": AnalysisStatus.FAILED,
                    "error": "Analysis interrupted by shutdown",
                    "failure_kind": FailureKind.INTERNAL_ERROR,
                    "end_time": utc_now(),
                }
            )
        if interrupted:
            logger.warning(
                "Marked %d interrupted analysis record(s) as failed", len(interrupted)
            )

        logger.info(
            "Loaded %d file(s) and %d record(s) from %s",
            len(self._files),
            len(self._records),
            self.path,
        )

    def _snapshot(self) -> dict[str, Any]:
        return {
            "files": [
                self._files[key].model_dump(mode="json") for key in sorted(self._files)
            ],
            "records": [
                self._records[key].model_dump(mode="json")
                for key in sorted(self._records)
            ],
        }

    def _persist(self) -> None:
        data = self._snapshot()
        temp_path = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                mode="w",
                encoding="utf-8",
                dir=self.path.parent,
                prefix=f"{self.path.stem}-",
                suffix=".tmp",
                delete=False,
            ) as tmp_file:
                temp_path = Path(tmp_file.name)
                json.dump(data, tmp_file, indent=2)
                tmp_file.flush()
                os.fsync(tmp_file.fileno())
            os.replace(temp_path, self.path)
            temp_path = None
        except OSError as exc:
            raise PersistenceError(f"Failed to write {self.path}: {exc}") from exc
        finally:
            if temp_path and temp_path.exists():
                try:
                    temp_path.unlink()
                except OSError:
                    pass
