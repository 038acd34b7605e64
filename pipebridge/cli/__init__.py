"""pipebridge CLI — Typer-based command-line interface.

Provides the ``pipebridge`` command with ``relay``, ``describe`` and
``version`` subcommands.  Diagnostics go to stderr through Rich; stdout is
left to relayed data.
"""
