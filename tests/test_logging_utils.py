import logging

import pytest

from src import logging_utils


def test_configure_logging_creates_file_handler(tmp_path):
    log_path = tmp_path / "logs" / "run.log"

    logging_utils.configure_logging(level="warning", log_file=log_path, console=False)

    logger = logging.getLogger("depot_analysis.tests")
    logger.warning("coverage-check")

    contents = log_path.read_text(encoding="utf-8")
    assert "coverage-check" in contents
    assert "task=-" in contents


def test_reconfiguring_replaces_handlers(tmp_path):
    first = tmp_path / "first.log"
    second = tmp_path / "second.log"

    logging_utils.configure_logging(level="info", log_file=first, console=False)
    logging_utils.configure_logging(level="info", log_file=second, console=False)
    logging.getLogger("depot_analysis.tests").info("only-in-second")

    assert "only-in-second" not in first.read_text(encoding="utf-8")
    assert "only-in-second" in second.read_text(encoding="utf-8")


def test_log_records_carry_task_context(tmp_path):
    log_path = tmp_path / "task.log"
    logging_utils.configure_logging(level="info", log_file=log_path, console=False)

    logging_utils.set_task_context("abc123")
    try:
        logging.getLogger("depot_analysis.tests").info("inside task")
    finally:
        logging_utils.set_task_context(None)

    assert "task=abc123 | inside task" in log_path.read_text(encoding="utf-8")
    assert logging_utils.current_task_id() == logging_utils.NO_TASK


def test_level_and_file_come_from_environment(tmp_path, monkeypatch):
    log_path = tmp_path / "env.log"
    monkeypatch.setenv("DEPOT_LOG_LEVEL", "error")
    monkeypatch.setenv("DEPOT_LOG_FILE", str(log_path))

    logging_utils.configure_logging(console=False)

    assert logging.getLogger().level == logging.ERROR
    assert log_path.exists()


def test_unknown_level_falls_back_to_info(tmp_path):
    logging_utils.configure_logging(
        level="chatty", log_file=tmp_path / "x.log", console=False
    )

    assert logging.getLogger().level == logging.INFO


def test_configure_logging_requires_handler():
    with pytest.raises(ValueError):
        logging_utils.configure_logging(level="info", log_file="", console=False)
