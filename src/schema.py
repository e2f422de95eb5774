from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AnalysisStatus(str, Enum):
    """Lifecycle status of an analysis record."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not AnalysisStatus.PENDING


class FailureKind(str, Enum):
    """Why a failed analysis failed, so timeouts stand apart from logic errors."""

    UNREADABLE_FILE = "unreadable_file"
    TIMEOUT = "timeout"
    INTERNAL_ERROR = "internal_error"


class AnalysisParameters(BaseModel):
    """Analysis options shared read-only by every worker."""

    model_config = ConfigDict(frozen=True)

    content_patterns: dict[str, list[str]] = Field(default_factory=dict)
    scan_timeout: str = "1m"
    metadata_extraction: bool = True

    @field_validator("content_patterns")
    @classmethod
    def _reject_blank_keywords(
        cls, value: dict[str, list[str]]
    ) -> dict[str, list[str]]:
        # A blank keyword would match every file.
        for group, keywords in value.items():
            if any(not keyword for keyword in keywords):
                raise ValueError(f"Pattern group '{group}' contains an empty keyword")
        return value


class StoredFile(BaseModel):
    """An uploaded file as recorded by the upload path."""

    id: int | None = None
    file_name: str
    file_path: str
    esp_id: str
    delivery_key: str
    encryption_password: str = Field(default="", exclude=True, repr=False)
    file_size: int = Field(ge=0)
    upload_time: datetime = Field(default_factory=utc_now)
    analyzed: bool = False


class AnalysisTask(BaseModel):
    """Immutable snapshot of one unit of scheduled analysis work."""

    model_config = ConfigDict(frozen=True)

    task_id: str
    file_id: int
    file_path: str
    file_name: str
    file_size: int
    upload_time: datetime
    esp_id: str
    delivery_key: str
    submitted_at: datetime = Field(default_factory=utc_now)
    parameters: AnalysisParameters


class SizeInfo(BaseModel):
    bytes: int
    human_readable: str


class BasicInfo(BaseModel):
    name: str
    collection_date: str
    file_type: str
    size: SizeInfo


class EspInfo(BaseModel):
    esp_id: str
    delivery_key: str
    is_encrypted: bool = True


class ContentAnalysis(BaseModel):
    patterns_found: bool = False
    matches: dict[str, list[str]] = Field(default_factory=dict)


class AnalysisSections(BaseModel):
    """The structured output of one pipeline run."""

    basic_info: BasicInfo
    esp_info: EspInfo
    metadata: dict[str, Any] = Field(default_factory=dict)
    content_analysis: ContentAnalysis
    scan_timestamp: str


class AnalysisRecord(BaseModel):
    """Per-file analysis result, pending until a worker or the deadline ends it."""

    file_id: int
    task_id: str
    file_name: str
    status: AnalysisStatus = AnalysisStatus.PENDING
    parameters: str = ""
    start_time: datetime = Field(default_factory=utc_now)
    end_time: datetime | None = None
    sections: AnalysisSections | None = None
    error: str | None = None
    failure_kind: FailureKind | None = None

    @field_validator("parameters", mode="before")
    @classmethod
    def _ensure_parameters_str(cls, value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, AnalysisParameters):
            return value.model_dump_json()
        if isinstance(value, dict):
            return json.dumps(value, sort_keys=True)
        return str(value)

    def to_payload(self) -> dict[str, Any]:
        """Return the read-back shape served for a single file's analysis."""
        sections = self.sections.model_dump(mode="json") if self.sections else {}
        return {
            "filename": self.file_name,
            "status": self.status.value,
            "parameters": self.parameters,
            "basic_info": sections.get("basic_info"),
            "esp_info": sections.get("esp_info"),
            "metadata": sections.get("metadata"),
            "content_analysis": sections.get("content_analysis"),
            "scan_timestamp": sections.get("scan_timestamp"),
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "error": self.error,
            "failure_kind": self.failure_kind.value if self.failure_kind else None,
        }
