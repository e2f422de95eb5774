"""Command-line entry point for reading back depot analysis results."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from src.config_utils import load_depot_config
from src.errors import ConfigError, PersistenceError
from src.result_store import JsonResultStore

app = typer.Typer()
console = Console()
logger = logging.getLogger(__name__)

RESULTS_OPTION = typer.Option(
    Path("data/results.json"),
    "--results",
    help="Path to the result store JSON file (default: data/results.json).",
)


def _open_store(results: Path) -> JsonResultStore:
    if not results.exists():
        console.print(f"[bold red]Result store not found: {results}[/bold red]")
        raise typer.Exit(code=1)
    try:
        return JsonResultStore(results)
    except PersistenceError as exc:
        console.print(f"[bold red]{exc}[/bold red]")
        raise typer.Exit(code=1)


@app.command()
def files(results: Path = RESULTS_OPTION) -> None:
    """List stored files and whether they have been analyzed."""
    store = _open_store(results)
    logger.info("Listing files from %s", results)

    table = Table(title="Stored files")
    table.add_column("ID", justify="right")
    table.add_column("File")
    table.add_column("ESP")
    table.add_column("Delivery key")
    table.add_column("Size", justify="right")
    table.add_column("Analyzed")
    table.add_column("Status")
    statuses = {record.file_id: record.status.value for record in store.list_records()}
    for stored in store.list_files():
        table.add_row(
            str(stored.id),
            stored.file_name,
            stored.esp_id,
            stored.delivery_key,
            str(stored.file_size),
            "yes" if stored.analyzed else "no",
            statuses.get(stored.id, "not queued"),
        )
    console.print(table)


@app.command()
def result(
    file_id: int = typer.Argument(..., help="ID of the stored file."),
    results: Path = RESULTS_OPTION,
) -> None:
    """Print the analysis result of one file as JSON."""
    store = _open_store(results)
    record = store.get_record(file_id)
    if record is None:
        console.print(f"[bold red]Analysis result not found for {file_id}[/bold red]")
        raise typer.Exit(code=1)
    print(json.dumps(record.to_payload(), indent=2))


@app.command()
def config(
    path: Optional[Path] = typer.Option(
        None, "--config", help="Configuration file (default: config.yaml)."
    ),
) -> None:
    """Validate the configuration and print the effective values."""
    try:
        depot_config = load_depot_config(path)
    except ConfigError as exc:
        console.print(f"[bold red]{exc}[/bold red]")
        raise typer.Exit(code=1)

    payload = depot_config.model_dump(mode="json")
    payload["worker_pool"]["worker_timeout_seconds"] = (
        depot_config.worker_timeout_seconds
    )
    print(json.dumps(payload, indent=2))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
