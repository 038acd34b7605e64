"""Rich renderer for the end-of-session report.

Color scheme
------------
- green     : OPEN / CLOSED sinks (survived)
- bold red  : FAILED sinks
- yellow    : chunks dropped by backpressure or size limits
"""

from __future__ import annotations

from rich.console import Console, Group
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from pipebridge.models.channels import ChannelState
from pipebridge.models.session import SessionReport, TerminationReason

_STATE_ICONS: dict[ChannelState, str] = {
    ChannelState.OPEN: "[green]OPEN[/green]",
    ChannelState.CLOSED: "[green]CLOSED[/green]",
    ChannelState.FAILED: "[bold red]FAILED[/bold red]",
    ChannelState.CONNECTING: "[dim]CONNECTING[/dim]",
}

_REASON_TEXT: dict[TerminationReason, str] = {
    TerminationReason.SOURCE_CLOSED: "[green]source closed[/green]",
    TerminationReason.SHUTDOWN: "[green]shutdown requested[/green]",
    TerminationReason.SOURCE_FAILED: "[bold red]source failed[/bold red]",
    TerminationReason.ALL_SINKS_FAILED: "[bold red]all sinks failed[/bold red]",
    TerminationReason.STARTUP_FAILED: "[bold red]startup failed[/bold red]",
}


class SessionRenderer:
    """Renders a ``SessionReport`` as a Rich panel.

    Parameters
    ----------
    console:
        Rich Console to print to.  Defaults to a stderr console.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console(stderr=True)

    def render_report(self, report: SessionReport) -> Panel:
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("#", style="dim", width=3, justify="right")
        table.add_column("Sink", min_width=20)
        table.add_column("Kind")
        table.add_column("Policy")
        table.add_column("State", justify="center")
        table.add_column("Delivered", justify="right")
        table.add_column("Dropped", justify="right")
        table.add_column("Oversized", justify="right")

        for i, sink in enumerate(report.sinks, start=1):
            dropped = f"[yellow]{sink.dropped}[/yellow]" if sink.dropped else "[dim]0[/dim]"
            oversized = f"[yellow]{sink.oversized}[/yellow]" if sink.oversized else "[dim]0[/dim]"
            table.add_row(
                str(i),
                Text(sink.name),
                sink.kind.value,
                sink.policy.value,
                _STATE_ICONS.get(sink.state, sink.state.value),
                str(sink.delivered),
                dropped,
                oversized,
            )

        summary = "  |  ".join(
            [
                f"[bold]Source:[/bold] {escape(report.source)}",
                f"[bold]Chunks:[/bold] {report.chunks_read}",
                f"[bold]Bytes:[/bold] {report.bytes_read:,}",
                f"[bold]Ended:[/bold] {_REASON_TEXT.get(report.reason, report.reason.value)}",
                f"[bold]Exit:[/bold] {report.exit_code}",
            ]
        )
        parts = [table, Text(""), Text.from_markup(summary)]
        if report.error:
            parts.append(Text(f"error: {report.error}", style="red"))

        return Panel(
            Group(*parts),
            title="[bold]pipebridge session[/bold]",
            border_style="green" if report.exit_code == 0 else "red",
            padding=(1, 2),
        )

    def print_report(self, report: SessionReport) -> None:
        self.console.print(self.render_report(report))
