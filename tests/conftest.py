from __future__ import annotations

import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

import pytest

from src.schema import AnalysisParameters, AnalysisTask, StoredFile

UPLOAD_TIME = datetime(2024, 3, 15, 12, 30, 0, tzinfo=timezone.utc)


@pytest.fixture
def params() -> AnalysisParameters:
    return AnalysisParameters(
        content_patterns={"flag": ["secret", "confidential"], "money": ["iban"]},
        metadata_extraction=False,
    )


@pytest.fixture
def make_stored_file(tmp_path: Path) -> Callable[..., StoredFile]:
    """Write ``content`` under tmp_path and return a matching StoredFile."""

    def _make(
        content: bytes = b"This is SECRET",
        name: str = "report.TXT",
        file_id: int | None = None,
    ) -> StoredFile:
        path = tmp_path / "storage" / "key-1" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        return StoredFile(
            id=file_id,
            file_name=name,
            file_path=str(path),
            esp_id="esp-42",
            delivery_key="key-1",
            encryption_password="hunter2",
            file_size=len(content),
            upload_time=UPLOAD_TIME,
        )

    return _make


@pytest.fixture
def make_task(
    params: AnalysisParameters, make_stored_file: Callable[..., StoredFile]
) -> Callable[..., AnalysisTask]:
    def _make(content: bytes = b"This is SECRET", file_id: int = 1) -> AnalysisTask:
        stored = make_stored_file(content, file_id=file_id)
        return AnalysisTask(
            task_id=uuid.uuid4().hex,
            file_id=file_id,
            file_path=stored.file_path,
            file_name=stored.file_name,
            file_size=stored.file_size,
            upload_time=stored.upload_time,
            esp_id=stored.esp_id,
            delivery_key=stored.delivery_key,
            parameters=params,
        )

    return _make
