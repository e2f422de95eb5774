"""Post-upload analysis of a single stored file."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

from src.errors import AnalysisCancelled, UnreadableFileError
from src.metadata_extractor import extract_metadata
from src.pattern_matcher import scan_content
from src.schema import (
    AnalysisParameters,
    AnalysisSections,
    AnalysisTask,
    BasicInfo,
    ContentAnalysis,
    EspInfo,
    SizeInfo,
)
from src.text_utils import format_timestamp, human_readable_size, utc_timestamp

MetadataExtractor = Callable[[str], dict[str, Any]]

logger = logging.getLogger("depot_analysis.pipeline")


def _check_for_cancel(cancel_event: threading.Event | None, stage: str) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise AnalysisCancelled(f"Analysis abandoned before {stage}")


def build_basic_info(task: AnalysisTask) -> BasicInfo:
    return BasicInfo(
        name=task.file_name,
        collection_date=format_timestamp(task.upload_time),
        file_type=Path(task.file_name).suffix.lower(),
        size=SizeInfo(
            bytes=task.file_size,
            human_readable=human_readable_size(task.file_size),
        ),
    )


def build_esp_info(task: AnalysisTask) -> EspInfo:
    # Uploads are encrypted at rest before they reach the depot.
    return EspInfo(esp_id=task.esp_id, delivery_key=task.delivery_key)


def collect_metadata(
    task: AnalysisTask,
    params: AnalysisParameters,
    extractor: MetadataExtractor,
) -> dict[str, Any]:
    """Return the metadata section; failures become an ``Error`` entry."""
    if not params.metadata_extraction:
        return {}
    try:
        return extractor(task.file_path)
    except Exception as exc:
        logger.warning("Metadata extraction raised for %s: %s", task.file_path, exc)
        return {"Error": f"Failed to extract metadata: {exc}"}


def read_content(file_path: str) -> bytes:
    try:
        return Path(file_path).read_bytes()
    except OSError as exc:
        raise UnreadableFileError(f"failed to read file: {exc}") from exc


def perform_analysis(
    task: AnalysisTask,
    params: AnalysisParameters,
    cancel_event: threading.Event | None = None,
    *,
    metadata_extractor: MetadataExtractor = extract_metadata,
) -> AnalysisSections:
    """Run every analysis step for ``task`` and return the typed sections.

    Only an unreadable file is fatal (``UnreadableFileError``). Once
    ``cancel_event`` is set the remaining steps are skipped with
    ``AnalysisCancelled``. Nothing here touches shared state; persisting the
    result is the caller's job.
    """
    stage_start = time.time()
    basic_info = build_basic_info(task)
    esp_info = build_esp_info(task)

    _check_for_cancel(cancel_event, "metadata extraction")
    metadata = collect_metadata(task, params, metadata_extractor)

    _check_for_cancel(cancel_event, "content scan")
    content = read_content(task.file_path)
    matches, patterns_found = scan_content(content, params.content_patterns)

    _check_for_cancel(cancel_event, "completion")
    logger.debug(
        "Analysed %s in %.2fs (%d bytes, %d pattern group(s) matched)",
        task.file_path,
        time.time() - stage_start,
        len(content),
        len(matches),
    )
    return AnalysisSections(
        basic_info=basic_info,
        esp_info=esp_info,
        metadata=metadata,
        content_analysis=ContentAnalysis(
            patterns_found=patterns_found, matches=matches
        ),
        scan_timestamp=utc_timestamp(),
    )
