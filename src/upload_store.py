"""Persist uploaded files under the storage root and queue them for analysis."""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path, PurePath
from typing import BinaryIO

from src.errors import PersistenceError, UploadValidationError
from src.result_store import InMemoryResultStore
from src.schema import StoredFile, utc_now
from src.worker_pool import AnalysisScheduler

MAX_NAME_SUFFIX_ATTEMPTS = 100
UPLOAD_TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"

logger = logging.getLogger("depot_analysis.upload")


@dataclass(frozen=True)
class UploadReceipt:
    """What the upload path reports back to the uploader."""

    file_id: int
    queued_for_analysis: bool
    message: str = "File uploaded successfully"

    def to_payload(self) -> dict[str, object]:
        return {
            "message": self.message,
            "file_id": self.file_id,
            "queued_for_analysis": self.queued_for_analysis,
        }


def _validate_component(value: str, field: str) -> str:
    cleaned = value.strip()
    if not cleaned:
        raise UploadValidationError(f"Missing required metadata: {field}")
    if cleaned in {".", ".."} or PurePath(cleaned).name != cleaned or "\\" in cleaned:
        raise UploadValidationError(f"Invalid {field}: {value!r}")
    return cleaned


def unique_destination(directory: Path, file_name: str, now: datetime) -> Path:
    """Return a path in ``directory`` that does not collide with an existing file.

    The plain name is used when free. Otherwise a ``_<timestamp>`` suffix is
    inserted before the extension, then ``_<timestamp>_<n>`` if needed.
    """
    candidate = directory / file_name
    if not candidate.exists():
        return candidate

    stem = Path(file_name).stem
    suffix = Path(file_name).suffix
    timestamp = now.strftime(UPLOAD_TIMESTAMP_FORMAT)
    candidate = directory / f"{stem}_{timestamp}{suffix}"
    counter = 1
    while candidate.exists():
        if counter > MAX_NAME_SUFFIX_ATTEMPTS:
            raise FileExistsError(
                f"Unable to find a free name for {file_name} in {directory}"
            )
        candidate = directory / f"{stem}_{timestamp}_{counter}{suffix}"
        counter += 1
    return candidate


def save_upload(
    source: BinaryIO,
    original_name: str,
    *,
    esp_id: str,
    delivery_key: str,
    encryption_password: str,
    storage_path: Path | str,
) -> StoredFile:
    """Write an uploaded stream to ``<storage_path>/<delivery_key>/``.

    Raises ``UploadValidationError`` when any metadata field is missing or the
    delivery key or file name is not a plain path component.
    """
    if not esp_id.strip() or not encryption_password:
        raise UploadValidationError("Missing required metadata")
    delivery_key = _validate_component(delivery_key, "delivery_key")
    file_name = _validate_component(PurePath(original_name).name, "file name")

    delivery_dir = Path(storage_path) / delivery_key
    delivery_dir.mkdir(parents=True, exist_ok=True)

    upload_time = utc_now()
    destination = unique_destination(delivery_dir, file_name, upload_time)
    # "xb" fails rather than overwrite a file created since the name was chosen
    with destination.open("xb") as handle:
        shutil.copyfileobj(source, handle)
    file_size = destination.stat().st_size

    logger.info(
        "Stored upload %s from %s at %s (%d bytes)",
        file_name,
        esp_id,
        destination,
        file_size,
    )
    return StoredFile(
        file_name=file_name,
        file_path=str(destination),
        esp_id=esp_id.strip(),
        delivery_key=delivery_key,
        encryption_password=encryption_password,
        file_size=file_size,
        upload_time=upload_time,
    )


def handle_upload(
    source: BinaryIO,
    original_name: str,
    *,
    esp_id: str,
    delivery_key: str,
    encryption_password: str,
    storage_path: Path | str,
    store: InMemoryResultStore,
    scheduler: AnalysisScheduler,
) -> UploadReceipt:
    """Save, register and queue one upload. Never waits for the analysis."""
    stored = save_upload(
        source,
        original_name,
        esp_id=esp_id,
        delivery_key=delivery_key,
        encryption_password=encryption_password,
        storage_path=storage_path,
    )
    try:
        registered = store.add_file(stored)
    except PersistenceError:
        # Unregistered uploads are not kept on disk.
        Path(stored.file_path).unlink(missing_ok=True)
        raise
    queued = scheduler.submit(registered)
    return UploadReceipt(file_id=registered.id or 0, queued_for_analysis=queued)
