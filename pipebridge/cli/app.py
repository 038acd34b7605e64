"""Main Typer application — registers the pipebridge commands.

Entry point: ``pipebridge`` (configured via pyproject.toml console_scripts).
"""

from __future__ import annotations

import typer

from pipebridge.cli.commands.describe import describe_cmd
from pipebridge.cli.commands.relay import relay_cmd

app = typer.Typer(
    name="pipebridge",
    help="pipebridge: relay stdin, UDP and WebSocket streams from one source to many sinks.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

app.command(name="relay", help="Relay a source endpoint to one or more sinks.")(relay_cmd)
app.command(name="describe", help="Show how endpoint tokens resolve.")(describe_cmd)


@app.command(name="version", help="Print the pipebridge version.")
def version_cmd() -> None:
    """Print the installed pipebridge version."""
    from pipebridge import __version__

    typer.echo(f"pipebridge {__version__}")


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
