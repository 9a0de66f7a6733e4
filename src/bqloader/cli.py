"""bqloader command line.

Thin Typer wrappers around ``LoaderService`` and the running-jobs
snapshot, with Rich output.

Commands:
    bqloader route REQUESTS.jsonl --config loader.yaml --out-dir out/
    bqloader capacity --config loader.yaml
    bqloader show-config --config loader.yaml
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from bqloader import __version__
from bqloader.backends.bigquery import BigQueryBackend
from bqloader.core.config import LoaderConfig
from bqloader.core.errors import ConfigError, RefreshError
from bqloader.core.logging import configure_logging
from bqloader.routing.channels import JsonlFileChannel, JsonlFileSource
from bqloader.service import LoaderService, RouteCounts
from bqloader.throttle.gate import has_capacity
from bqloader.throttle.snapshot import RunningJobSnapshot

console = Console()

app = typer.Typer(
    name="bqloader",
    help="Throttled BigQuery load job submission",
    add_completion=False,
)


class _LogOverrides:
    """Global logging options captured by the app callback."""

    level: str | None = None
    format: str | None = None
    file: Path | None = None


_log_overrides = _LogOverrides()

ConfigOption = Annotated[
    Path,
    typer.Option("--config", "-c", help="Loader YAML config file", envvar="BQLOADER_CONFIG"),
]


def version_callback(value: bool) -> None:
    if value:
        console.print(f"bqloader v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    log_level: Annotated[
        str | None,
        typer.Option(
            "--log-level",
            "-L",
            help="Logging level (DEBUG, INFO, WARNING, ERROR)",
            envvar="BQLOADER_LOG_LEVEL",
        ),
    ] = None,
    log_format: Annotated[
        str | None,
        typer.Option(
            "--log-format",
            help="Log format: json, console, or both",
            envvar="BQLOADER_LOG_FORMAT",
        ),
    ] = None,
    log_file: Annotated[
        Path | None,
        typer.Option("--log-file", help="Path for log file output", envvar="BQLOADER_LOG_FILE"),
    ] = None,
) -> None:
    """bqloader - submit BigQuery load jobs without exceeding a concurrency ceiling."""
    _log_overrides.level = log_level.upper() if log_level else None
    _log_overrides.format = log_format
    _log_overrides.file = log_file


def _load_config(path: Path) -> LoaderConfig:
    """Load the config and configure logging from it plus CLI overrides."""
    try:
        config = LoaderConfig.from_yaml(path)
    except ConfigError as e:
        console.print(f"[red]Invalid config {path}:[/red] {e}")
        raise typer.Exit(1) from None

    log = config.logging
    try:
        configure_logging(
            level=_log_overrides.level or log.level,  # type: ignore[arg-type]
            format=_log_overrides.format or log.format,  # type: ignore[arg-type]
            file_path=_log_overrides.file or log.file_path,
            max_file_size_mb=log.max_file_size_mb,
            backup_count=log.backup_count,
        )
    except (ValueError, AttributeError) as e:
        console.print(f"[red]Logging configuration error:[/red] {e}")
        raise typer.Exit(1) from None
    return config


def _counts_table(counts: RouteCounts, out_dir: Path, dead_letter: Path) -> Table:
    table = Table(title="Routing summary")
    table.add_column("Route", style="bold")
    table.add_column("Messages", justify="right")
    table.add_column("Written to")
    table.add_row("[green]submitted[/green]", str(counts.submitted), str(out_dir / "submitted.jsonl"))
    table.add_row("[yellow]retry[/yellow]", str(counts.retry), str(out_dir / "retry.jsonl"))
    table.add_row("[red]dead-letter[/red]", str(counts.dead_letter), str(dead_letter))
    if counts.failed:
        table.add_row("[red]failed[/red]", str(counts.failed), "(not acknowledged)")
    return table


@app.command()
def route(
    requests: Annotated[Path, typer.Argument(help="JSONL file, one load request per line")],
    config_file: ConfigOption = Path("loader.yaml"),
    out_dir: Annotated[
        Path,
        typer.Option("--out-dir", "-o", help="Directory for submitted.jsonl and retry.jsonl"),
    ] = Path("."),
) -> None:
    """Route every request in REQUESTS through the admission controller."""
    config = _load_config(config_file)
    if not requests.is_file():
        console.print(f"[red]Requests file not found:[/red] {requests}")
        raise typer.Exit(1)

    source = JsonlFileSource(requests)
    service = LoaderService.for_bigquery(
        config,
        source,
        submitted=JsonlFileChannel("submitted", out_dir / "submitted.jsonl"),
        retry=JsonlFileChannel("retry", out_dir / "retry.jsonl"),
    )
    counts = asyncio.run(service.run_until_empty())

    console.print(_counts_table(counts, out_dir, config.dead_letter_path.expanduser()))
    if counts.failed:
        raise typer.Exit(1)


@app.command()
def capacity(config_file: ConfigOption = Path("loader.yaml")) -> None:
    """Show running BigQuery jobs against the concurrency threshold."""
    config = _load_config(config_file)
    threshold = config.concurrent_load_jobs_threshold
    snapshot = RunningJobSnapshot(
        BigQueryBackend(config.bq_project),
        max_size=threshold,
        ttl_seconds=0,
    )
    try:
        asyncio.run(snapshot.get_running_jobs())
    except RefreshError as e:
        console.print(f"[red]Could not list running jobs:[/red] {e}")
        raise typer.Exit(1) from None

    running = snapshot.observed_count
    status = "[green]accepting[/green]" if has_capacity(running, threshold) else "[red]full[/red]"
    console.print(f"Project [bold]{config.bq_project}[/bold]: {running} running / {threshold} threshold - {status}")


@app.command(name="show-config")
def show_config(config_file: ConfigOption = Path("loader.yaml")) -> None:
    """Print the effective configuration, defaults included."""
    config = _load_config(config_file)
    console.print_json(config.model_dump_json())


__all__ = ["app", "console", "main"]
