"""``pipebridge describe`` — show how endpoint arguments resolve.

The first token is resolved as the source and the rest as sinks, exactly
as ``pipebridge relay`` would, without opening anything.
"""

from __future__ import annotations

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from pipebridge.core.descriptors import DescriptorError, parse_endpoint
from pipebridge.models.channels import BOUNDARY_FOR_KIND, EndpointPosition
from pipebridge.models.session import ExitStatus, policy_for_kind

console = Console()


def describe_cmd(
    tokens: list[str] = typer.Argument(..., help="Endpoints: SOURCE [SINK...]."),
) -> None:
    """Resolve endpoint tokens into channel descriptors and print them."""
    table = Table(show_header=True, header_style="bold cyan", expand=True)
    table.add_column("Position")
    table.add_column("Token", min_width=16)
    table.add_column("Kind")
    table.add_column("Role")
    table.add_column("Address")
    table.add_column("Boundary")
    table.add_column("Queue policy")

    failed = False
    for index, token in enumerate(tokens):
        position = EndpointPosition.SOURCE if index == 0 else EndpointPosition.SINK
        try:
            descriptor = parse_endpoint(token, position)
        except DescriptorError as exc:
            failed = True
            table.add_row(position.value, escape(token), f"[red]{escape(str(exc))}[/red]", "", "", "", "")
            continue

        address = descriptor.url or (
            f"{descriptor.host}:{descriptor.port}" if descriptor.address else "-"
        )
        policy = (
            policy_for_kind(descriptor.kind).value
            if position == EndpointPosition.SINK
            else "[dim]-[/dim]"
        )
        table.add_row(
            position.value,
            escape(token),
            descriptor.kind.value,
            descriptor.role.value,
            escape(address),
            BOUNDARY_FOR_KIND[descriptor.kind].value,
            policy,
        )

    console.print(table)
    if failed:
        raise typer.Exit(code=int(ExitStatus.USAGE))
