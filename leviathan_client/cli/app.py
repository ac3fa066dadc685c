"""Main Typer application — imports and registers all CLI commands.

Entry point: ``leviathan`` (configured via pyproject.toml scripts).
"""

from __future__ import annotations

import typer

from leviathan_client import __version__
from leviathan_client.cli.commands.hash_cmd import hash_cmd
from leviathan_client.cli.commands.run import run_cmd
from leviathan_client.cli.console import out

app = typer.Typer(
    name="leviathan",
    help="Leviathan client: upload test artifacts and attach to a live test run.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
    context_settings={"help_option_names": ["-h", "--help"]},
)

# Register subcommands
app.command(name="run", help="Upload artifacts and attach to the test session.")(run_cmd)
app.command(name="hash", help="Show the hash of a file or directory artifact.")(hash_cmd)


def _version_callback(value: bool) -> None:
    if value:
        out.print(f"leviathan {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
) -> None:
    """Leviathan client."""


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
