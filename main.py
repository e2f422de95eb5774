#!/usr/bin/env python3
"""Ingest files through the upload path and run the analysis workers on them."""

from __future__ import annotations

import logging
import os
import signal
import threading
import time
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.table import Table
from typing_extensions import Annotated

from src.config_utils import load_depot_config
from src.errors import ConfigError, PersistenceError, UploadValidationError
from src.logging_utils import configure_logging
from src.result_store import InMemoryResultStore, JsonResultStore
from src.schema import AnalysisRecord, AnalysisStatus
from src.upload_store import UploadReceipt, handle_upload
from src.worker_pool import AnalysisScheduler

LOGGER_NAME = "depot_analysis.ingest"
run_logger = logging.getLogger(LOGGER_NAME)

CONSOLE = Console()
IDLE_POLL_INTERVAL = 0.5

app = typer.Typer(add_completion=False)

shutdown_event = threading.Event()


def request_shutdown(reason: str) -> None:
    """Ask the ingest run to stop; a second request exits immediately."""
    if shutdown_event.is_set():
        run_logger.warning(
            "Additional shutdown request received (%s); forcing termination.", reason
        )
        os._exit(1)
    run_logger.info("Shutdown requested: %s", reason)
    shutdown_event.set()


def signal_handler(signum, frame):
    """Handle termination signals by initiating a coordinated shutdown."""
    try:
        signal_name = signal.Signals(signum).name
    except ValueError:
        signal_name = str(signum)
    request_shutdown(f"signal {signal_name}")


def _install_signal_handlers() -> dict[int, Any]:
    previous: dict[int, Any] = {}
    if threading.current_thread() is not threading.main_thread():
        return previous
    for signum in (signal.SIGINT, signal.SIGTERM):
        previous[signum] = signal.signal(signum, signal_handler)
    return previous


def _restore_signal_handlers(previous: dict[int, Any]) -> None:
    for signum, handler in previous.items():
        signal.signal(signum, handler)


def wait_for_analyses(
    scheduler: AnalysisScheduler, wait_timeout: float | None
) -> bool:
    """Wait until every queued analysis finished, a shutdown, or the timeout."""
    if scheduler.worker_count == 0:
        run_logger.warning("No analysis workers configured; not waiting for results")
        return False

    deadline = None if wait_timeout is None else time.monotonic() + wait_timeout
    while not scheduler.wait_until_idle(timeout=IDLE_POLL_INTERVAL):
        if shutdown_event.is_set():
            return False
        if deadline is not None and time.monotonic() >= deadline:
            run_logger.warning("Gave up waiting for analyses after %.1fs", wait_timeout)
            return False
    return True


def _render_summary(
    store: InMemoryResultStore,
    receipts: list[tuple[Path, UploadReceipt]],
) -> Table:
    table = Table(title="Analysis results", expand=False)
    table.add_column("File ID", justify="right")
    table.add_column("File")
    table.add_column("Queued")
    table.add_column("Status")
    table.add_column("Patterns")
    table.add_column("Error", overflow="fold")

    for path, receipt in receipts:
        record: AnalysisRecord | None = store.get_record(receipt.file_id)
        status = record.status.value if record else "not analyzed"
        patterns = ""
        if record and record.sections:
            matches = record.sections.content_analysis.matches
            patterns = ", ".join(sorted(matches)) or "none"
        table.add_row(
            str(receipt.file_id),
            path.name,
            "yes" if receipt.queued_for_analysis else "no",
            status,
            patterns,
            (record.error or "") if record else "",
        )
    return table


@app.command()
def main(
    files: Annotated[
        list[Path], typer.Argument(help="Files to upload and analyze.")
    ],
    esp_id: Annotated[
        str,
        typer.Option(envvar="DEPOT_ESP_ID", help="Submitting device identifier."),
    ] = "local",
    delivery_key: Annotated[
        str,
        typer.Option(
            envvar="DEPOT_DELIVERY_KEY",
            help="Delivery key; files are stored under a directory of this name.",
        ),
    ] = "local-ingest",
    encryption_password: Annotated[
        str,
        typer.Option(
            envvar="DEPOT_ENCRYPTION_PASSWORD",
            help="Password the uploads were encrypted with.",
        ),
    ] = "local",
    config_path: Annotated[
        Optional[Path],
        typer.Option(
            "--config",
            help="Configuration file (default: $DEPOT_CONFIG or config.yaml).",
        ),
    ] = None,
    results_path: Annotated[
        Optional[Path],
        typer.Option(
            "--results",
            help="Result store JSON file (default: results_path from config).",
        ),
    ] = None,
    wait_timeout: Annotated[
        float,
        typer.Option(help="Seconds to wait for analyses (0 waits until done)."),
    ] = 0.0,
    log_file: Annotated[
        Optional[str],
        typer.Option(help="Log file path ('' disables file logging)."),
    ] = None,
    debug: Annotated[bool, typer.Option(help="Enable debug logging.")] = False,
) -> None:
    """Upload FILES into the depot, analyze them and print a summary."""
    configure_logging(
        level=logging.DEBUG if debug else logging.INFO,
        log_file=log_file,
        console=debug or log_file == "",
    )
    shutdown_event.clear()

    try:
        config = load_depot_config(config_path)
        store = JsonResultStore(results_path or config.results_path)
    except (ConfigError, PersistenceError) as exc:
        CONSOLE.print(f"[bold red]{exc}[/bold red]")
        raise typer.Exit(code=1)

    scheduler = AnalysisScheduler.from_config(config, store)
    scheduler.start()
    previous_handlers = _install_signal_handlers()

    receipts: list[tuple[Path, UploadReceipt]] = []
    ingest_failures = 0
    finished = False
    try:
        for path in files:
            if shutdown_event.is_set():
                break
            if not path.is_file():
                run_logger.warning("Skipping %s: not a regular file", path)
                ingest_failures += 1
                continue
            try:
                with path.open("rb") as handle:
                    receipt = handle_upload(
                        handle,
                        path.name,
                        esp_id=esp_id,
                        delivery_key=delivery_key,
                        encryption_password=encryption_password,
                        storage_path=config.storage_path,
                        store=store,
                        scheduler=scheduler,
                    )
            except UploadValidationError as exc:
                CONSOLE.print(f"[bold red]Upload rejected: {exc}[/bold red]")
                raise typer.Exit(code=1)
            except (OSError, PersistenceError) as exc:
                run_logger.error("Failed to ingest %s: %s", path, exc)
                ingest_failures += 1
                continue
            receipts.append((path, receipt))

        finished = wait_for_analyses(scheduler, wait_timeout or None)
    finally:
        interrupted = shutdown_event.is_set()
        # Draining after a missed --wait-timeout would wait for every queued task.
        scheduler.shutdown(drain=finished and not interrupted)
        _restore_signal_handlers(previous_handlers)

    CONSOLE.print(_render_summary(store, receipts))
    stats = scheduler.stats()
    CONSOLE.print(
        f"Queued {stats.submitted}, dropped {stats.dropped}, "
        f"completed {stats.completed}, failed {stats.failed} "
        f"(timed out {stats.timed_out})"
    )

    if interrupted:
        run_logger.warning("Shutdown request interrupted processing before completion.")
        raise typer.Exit(code=1)

    incomplete = [
        receipt
        for _, receipt in receipts
        if (record := store.get_record(receipt.file_id)) is None
        or record.status is not AnalysisStatus.COMPLETED
    ]
    if ingest_failures or incomplete or not finished:
        run_logger.warning("Some files failed to process. Check logs for details.")
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
