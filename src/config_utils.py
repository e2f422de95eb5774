"""Helpers for working with the project configuration file."""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.errors import ConfigError
from src.schema import AnalysisParameters

CONFIG_PATH = Path("config.yaml")
CONFIG_ENV_VAR = "DEPOT_CONFIG"

DEFAULT_WORKER_TIMEOUT_SECONDS = 5 * 60.0
DEFAULT_QUEUE_SIZE = 100
DEFAULT_WORKER_COUNT = 4

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")

logger = logging.getLogger("depot_analysis.config")


class WorkerPoolSettings(BaseModel):
    """Sizing of the analysis queue and worker pool."""

    model_config = ConfigDict(frozen=True)

    analysis_queue_size: int = Field(default=DEFAULT_QUEUE_SIZE, ge=0)
    max_concurrent_analysis: int = Field(default=DEFAULT_WORKER_COUNT, ge=0)
    worker_timeout: str | float = "5m"


class DepotConfig(BaseModel):
    """Process-wide configuration, loaded once at start."""

    model_config = ConfigDict(frozen=True)

    storage_path: Path = Path("data/storage")
    results_path: Path = Path("data/results.json")
    worker_pool: WorkerPoolSettings = Field(default_factory=WorkerPoolSettings)
    analysis_params: AnalysisParameters = Field(default_factory=AnalysisParameters)

    @property
    def worker_timeout_seconds(self) -> float:
        return resolve_worker_timeout(self.worker_pool.worker_timeout)


def load_config(path: Path | str = CONFIG_PATH) -> dict[str, Any]:
    """Load the YAML configuration."""
    with Path(path).open("r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


def parse_duration(value: str) -> float:
    """Parse a duration string such as ``"300ms"``, ``"5m"`` or ``"1h30m"``.

    Returns the duration in seconds. A bare ``"0"`` is accepted; anything else
    without a unit raises ``ValueError``.
    """
    text = value.strip()
    sign = 1.0
    if text[:1] in {"+", "-"}:
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]

    if text == "0":
        return 0.0
    if not text:
        raise ValueError(f"invalid duration {value!r}")

    total = 0.0
    position = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            raise ValueError(f"invalid duration {value!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()

    if position != len(text):
        raise ValueError(f"invalid duration {value!r}")
    return sign * total


def resolve_worker_timeout(
    value: str | float | None,
    *,
    default: float = DEFAULT_WORKER_TIMEOUT_SECONDS,
) -> float:
    """Return the worker timeout in seconds, falling back to ``default``."""
    if value is None:
        return default

    try:
        if isinstance(value, (int, float)):
            seconds = float(value)
        else:
            seconds = parse_duration(value)
    except ValueError as exc:
        logger.warning(
            "Invalid worker timeout: %s, using default of %.0fs", exc, default
        )
        return default

    if seconds <= 0:
        logger.warning(
            "Worker timeout must be positive (got %r), using default of %.0fs",
            value,
            default,
        )
        return default
    return seconds


def build_depot_config(raw: Mapping[str, Any] | None) -> DepotConfig:
    """Validate a raw configuration mapping into a ``DepotConfig``."""
    try:
        return DepotConfig.model_validate(dict(raw or {}))
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc


def load_depot_config(path: Path | str | None = None) -> DepotConfig:
    """Load and validate the configuration from YAML.

    The path defaults to ``$DEPOT_CONFIG`` and then ``config.yaml``.
    """
    if path is None:
        path = os.getenv(CONFIG_ENV_VAR) or CONFIG_PATH

    config_path = Path(path)
    try:
        raw = load_config(config_path)
    except FileNotFoundError as exc:
        raise ConfigError(f"Configuration file not found: {config_path}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Configuration file {config_path} is not valid YAML") from exc

    if not isinstance(raw, Mapping):
        raise ConfigError(f"Configuration file {config_path} must contain a mapping")

    config = build_depot_config(raw)
    logger.debug(
        "Loaded configuration from %s (queue=%d, workers=%d, patterns=%d)",
        config_path,
        config.worker_pool.analysis_queue_size,
        config.worker_pool.max_concurrent_analysis,
        len(config.analysis_params.content_patterns),
    )
    return config
