"""Best-effort file metadata extraction through the ``exiftool`` binary."""

from __future__ import annotations

import json
import logging
import subprocess
from pathlib import Path
from typing import Any

EXIFTOOL_BINARY = "exiftool"
ERROR_KEY = "Error"

logger = logging.getLogger("depot_analysis.metadata")


def _error_result(message: str) -> dict[str, Any]:
    return {ERROR_KEY: message}


def _describe_failure(exc: Exception, binary: str) -> str:
    if isinstance(exc, FileNotFoundError):
        return f"{binary} executable not found"
    if isinstance(exc, subprocess.CalledProcessError):
        stderr = (exc.stderr or b"").decode("utf-8", errors="replace").strip()
        detail = f"exit status {exc.returncode}"
        return f"{detail}: {stderr}" if stderr else detail
    if isinstance(exc, subprocess.TimeoutExpired):
        return f"{binary} timed out after {exc.timeout}s"
    return str(exc)


def parse_metadata_output(output: bytes | str) -> dict[str, Any]:
    """Parse ``exiftool -json`` output into a single metadata mapping.

    exiftool prints a JSON array with one object per input file. Only the first
    object is used; an empty array yields an empty mapping. Output that is not
    JSON, or whose first entry is not an object, yields an error mapping.
    """
    if isinstance(output, bytes):
        output = output.decode("utf-8", errors="replace")

    try:
        parsed = json.loads(output)
    except json.JSONDecodeError as exc:
        return _error_result(f"Failed to parse metadata output: {exc}")

    if isinstance(parsed, list):
        if not parsed:
            return {}
        parsed = parsed[0]

    if not isinstance(parsed, dict):
        return _error_result(
            "Failed to parse metadata output: expected an object, "
            f"got {type(parsed).__name__}"
        )
    return parsed


def extract_metadata(
    file_path: str | Path,
    *,
    binary: str = EXIFTOOL_BINARY,
    timeout: float | None = None,
) -> dict[str, Any]:
    """Run exiftool on ``file_path`` and return its metadata.

    Parameters
    ----------
    file_path:
        Path of the file to inspect.
    binary:
        exiftool executable name or path.
    timeout:
        Optional subprocess timeout in seconds. The worker deadline bounds the
        call either way.

    Returns
    -------
    dict
        The first metadata record, or ``{"Error": "<description>"}`` when the
        tool is missing, fails, or prints something unparseable. Never raises
        for tool problems.
    """
    command = [binary, "-json", str(file_path)]
    logger.debug("Running %s", " ".join(command))

    try:
        completed = subprocess.run(
            command,
            capture_output=True,
            check=True,
            timeout=timeout,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        description = _describe_failure(exc, binary)
        logger.warning("%s failed for %s: %s", binary, file_path, description)
        return _error_result(f"Failed to extract metadata: {description}")

    metadata = parse_metadata_output(completed.stdout)
    if ERROR_KEY in metadata and len(metadata) == 1:
        logger.warning(
            "Unusable %s output for %s: %s", binary, file_path, metadata[ERROR_KEY]
        )
    return metadata
