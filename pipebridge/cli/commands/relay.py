"""``pipebridge relay`` — relay one source endpoint to one or more sinks.

Exit status is 0 when the source closes cleanly or a shutdown signal
(SIGINT/SIGTERM) arrives, 1 when the source cannot be opened, fails
mid-stream, no sink can be opened or every sink fails, and 2 for endpoint
syntax errors.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from typing import Any

import typer
from rich.markup import escape

from pipebridge.config import settings
from pipebridge.core.descriptors import DescriptorError, parse_invocation
from pipebridge.core.session import RelaySession
from pipebridge.log import configure_logging, stderr_console
from pipebridge.models.session import ExitStatus, SessionReport
from pipebridge.monitor.renderer import SessionRenderer

logger = logging.getLogger(__name__)


async def _run_session(session: RelaySession) -> SessionReport:
    """Run *session* with SIGINT/SIGTERM wired to its shutdown request.

    The first signal asks the session to stop reading and drain its sinks.
    A second one cancels the run outright, abandoning whatever is still
    queued.
    """
    loop = asyncio.get_running_loop()
    main = asyncio.current_task()
    forced = False

    def on_signal() -> None:
        nonlocal forced
        if not session.shutdown_requested:
            session.request_shutdown()
            return
        if main is not None and not forced:
            logger.warning("Second termination signal; abandoning the drain.")
            forced = True
            main.cancel()

    installed: list[signal.Signals] = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, on_signal)
        except (NotImplementedError, RuntimeError, ValueError):
            continue
        installed.append(sig)
    try:
        return await session.run()
    except asyncio.CancelledError:
        if not forced:
            raise
        return session.interrupted_report()
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


def relay_cmd(
    source: str = typer.Argument(
        ...,
        help="Source endpoint: stdin, udp://HOST:PORT, HOST:PORT (UDP bind) or ws://HOST:PORT.",
    ),
    sinks: list[str] = typer.Argument(
        ...,
        help="Sink endpoints: stdout, udp://HOST:PORT, ws://HOST:PORT or HOST:PORT "
        "(WebSocket server, one peer).",
    ),
    queue_size: int = typer.Option(
        None, "--queue-size", "-q", min=1, help="Per-sink queue capacity in chunks."
    ),
    drain_timeout: float = typer.Option(
        None, "--drain-timeout", min=0.0, help="Seconds sinks get to flush queued chunks on exit."
    ),
    stdin_lines: bool = typer.Option(
        False, "--stdin-lines", help="Read stdin one line per chunk (one datagram/frame per line)."
    ),
    stdout_newline: bool = typer.Option(
        False, "--stdout-newline", help="Write a newline after every chunk sent to stdout."
    ),
    log_level: str = typer.Option(
        None, "--log-level", "-l", help="Logging level (default: PIPEBRIDGE_LOG_LEVEL or WARNING)."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Shorthand for --log-level DEBUG."),
    summary: bool = typer.Option(
        False, "--summary/--no-summary", help="Print a per-sink delivery report to stderr on exit."
    ),
) -> None:
    """Relay SOURCE to every SINK until the source closes or the process is signalled."""
    try:
        source_descriptor, sink_descriptors = parse_invocation([source, *sinks])
    except DescriptorError as exc:
        stderr_console.print(f"[red]Error:[/red] {escape(str(exc))}")
        raise typer.Exit(code=int(ExitStatus.USAGE))

    overrides: dict[str, Any] = {}
    if queue_size is not None:
        overrides["queue_capacity"] = queue_size
    if drain_timeout is not None:
        overrides["drain_timeout"] = drain_timeout
    if stdin_lines:
        overrides["stdin_mode"] = "lines"
    if stdout_newline:
        overrides["stdout_newline"] = True
    relay_settings = settings.model_copy(update=overrides)

    configure_logging("DEBUG" if verbose else (log_level or relay_settings.log_level))

    session = RelaySession(source_descriptor, sink_descriptors, settings=relay_settings)
    report = asyncio.run(_run_session(session))

    if summary:
        SessionRenderer(stderr_console).print_report(report)
    raise typer.Exit(code=report.exit_code)
