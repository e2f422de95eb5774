"""Exception hierarchy for the depot analysis core."""

from __future__ import annotations


class DepotError(Exception):
    """Base class for every error raised by the depot analysis core."""


class ConfigError(DepotError):
    """Raised when the configuration file is missing or invalid."""


class UploadValidationError(DepotError):
    """Raised when an upload is missing required metadata."""


class UnreadableFileError(DepotError):
    """Raised when the uploaded file contents cannot be read for scanning."""


class AnalysisCancelled(DepotError):
    """Raised inside the pipeline once its cancel event has been set."""


class RecordConflictError(DepotError):
    """Raised when a file already has a pending analysis record."""


class PersistenceError(DepotError):
    """Raised when the result store cannot durably write its state."""
