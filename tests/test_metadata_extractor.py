from __future__ import annotations

import subprocess
from unittest.mock import MagicMock, patch

from src.metadata_extractor import extract_metadata, parse_metadata_output


def _completed(stdout: bytes) -> MagicMock:
    result = MagicMock()
    result.stdout = stdout
    result.returncode = 0
    return result


@patch("src.metadata_extractor.subprocess.run")
def test_extract_metadata_returns_first_record(mock_run):
    mock_run.return_value = _completed(
        b'[{"FileType": "JPEG", "ImageWidth": 640}, {"FileType": "PNG"}]'
    )

    metadata = extract_metadata("/tmp/photo.jpg")

    assert metadata == {"FileType": "JPEG", "ImageWidth": 640}
    args, kwargs = mock_run.call_args
    assert args[0] == ["exiftool", "-json", "/tmp/photo.jpg"]
    assert kwargs["check"] is True
    assert kwargs["capture_output"] is True


@patch("src.metadata_extractor.subprocess.run", side_effect=FileNotFoundError())
def test_missing_binary_degrades_to_error_entry(mock_run):
    metadata = extract_metadata("/tmp/photo.jpg")

    assert list(metadata) == ["Error"]
    assert "exiftool executable not found" in metadata["Error"]


@patch("src.metadata_extractor.subprocess.run")
def test_non_zero_exit_degrades_to_error_entry(mock_run):
    mock_run.side_effect = subprocess.CalledProcessError(
        1, ["exiftool"], output=b"", stderr=b"Error: File not found"
    )

    metadata = extract_metadata("/tmp/missing.jpg")

    assert list(metadata) == ["Error"]
    assert metadata["Error"].startswith("Failed to extract metadata:")
    assert "File not found" in metadata["Error"]


@patch("src.metadata_extractor.subprocess.run")
def test_timeout_degrades_to_error_entry(mock_run):
    mock_run.side_effect = subprocess.TimeoutExpired(["exiftool"], 5)

    metadata = extract_metadata("/tmp/slow.bin", timeout=5)

    assert list(metadata) == ["Error"]
    assert "timed out" in metadata["Error"]


@patch("src.metadata_extractor.subprocess.run")
def test_malformed_output_degrades_to_error_entry(mock_run):
    mock_run.return_value = _completed(b"not json at all")

    metadata = extract_metadata("/tmp/file.bin")

    assert list(metadata) == ["Error"]
    assert metadata["Error"].startswith("Failed to parse metadata output")


def test_parse_metadata_output_variants():
    assert parse_metadata_output(b"[]") == {}
    assert parse_metadata_output('{"FileSize": "3 bytes"}') == {"FileSize": "3 bytes"}
    assert "Error" in parse_metadata_output(b"[1, 2]")
    assert "Error" in parse_metadata_output(b'"just a string"')
