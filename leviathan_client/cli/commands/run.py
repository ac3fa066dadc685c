"""``leviathan run`` — upload the artifacts and attach to the test session.

Uploads the suite, configuration and image (skipping whatever the host
already has cached), prints a summary, then bridges the terminal to the
live session until it ends or is interrupted.
"""

from __future__ import annotations

import asyncio
import signal
from pathlib import Path

import typer
from rich.table import Table
from websockets.exceptions import WebSocketException

from leviathan_client.config import settings
from leviathan_client.cli.console import configure_logging, console
from leviathan_client.core.pipeline import ArtifactUploadError, InvalidArtifactError
from leviathan_client.core.runner import Runner
from leviathan_client.models.context import RunContext, default_artifacts
from leviathan_client.models.outcomes import ArtifactReport, UploadStatus
from leviathan_client.monitor.progress import RichProgressReporter

_OUTCOME_STYLES: dict[UploadStatus, str] = {
    UploadStatus.CACHED: "[cyan]cached[/cyan]",
    UploadStatus.UPLOADED: "[green]uploaded[/green]",
    UploadStatus.FAILED: "[bold red]failed[/bold red]",
}


def print_reports(reports: list[ArtifactReport]) -> None:
    """Print one row per artifact with its hash and outcome."""
    table = Table(title="Artifacts", header_style="bold cyan")
    table.add_column("Artifact", style="bold")
    table.add_column("Hash", style="dim")
    table.add_column("Outcome", justify="center")
    for report in reports:
        table.add_row(
            report.name,
            report.content_hash,
            _OUTCOME_STYLES.get(report.outcome.status, report.outcome.status.value),
        )
    console.print(table)


def run_cmd(
    suite: Path = typer.Option(
        ...,
        "--suite",
        "-s",
        help="Path to the test suite directory.",
    ),
    config: Path = typer.Option(
        ...,
        "--config",
        "-c",
        help="Path to the configuration file.",
    ),
    image: Path = typer.Option(
        ...,
        "--image",
        "-i",
        help="Path to the unconfigured OS image.",
    ),
    workdir: Path = typer.Option(
        None,
        "--workdir",
        "-w",
        help="Working directory (emptied at start). Defaults to LEVIATHAN_WORKDIR.",
    ),
    url: str = typer.Option(
        None,
        "--url",
        "-u",
        help="Leviathan host as host[:port]. Defaults to LEVIATHAN_URL.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Log debug output.",
    ),
) -> None:
    """Upload the test artifacts and attach to the live test session."""
    configure_logging(settings.log_level, verbose=verbose)

    context = RunContext(
        workdir=workdir or settings.workdir,
        host=url or settings.url,
        artifacts=default_artifacts(suite, config, image),
        exclude_names=tuple(settings.exclude_names),
    )
    runner = Runner(
        context,
        settings,
        reporter=RichProgressReporter(console),
        on_uploaded=print_reports,
    )

    try:
        code = asyncio.run(runner.execute())
    except KeyboardInterrupt:
        # Interrupted before the session installed its own handlers.
        raise typer.Exit(code=128 + signal.SIGINT)
    except ArtifactUploadError as exc:
        console.print(
            f"[bold red]Artifact {exc.artifact_name} was not accepted:[/bold red] {exc.reason}"
        )
        raise typer.Exit(code=1)
    except InvalidArtifactError as exc:
        console.print(f"[bold red]Invalid artifact:[/bold red] {exc}")
        raise typer.Exit(code=1)
    except (OSError, WebSocketException) as exc:
        console.print(f"[bold red]Run failed:[/bold red] {exc}")
        raise typer.Exit(code=1)

    raise typer.Exit(code=code)
