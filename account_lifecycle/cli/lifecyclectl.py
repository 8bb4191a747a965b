#!/usr/bin/env python3
"""
Lifecycle Control CLI - Command Line Interface for the Account Lifecycle Engine.

Provides commands for creating accounts, upgrading tiers, inspecting
workflow executions and serving the API.
"""

import logging
import sys
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..bootstrap import build_runtime
from ..config import load_settings
from ..errors import LifecycleError
from ..models import (
    ExecutionRecord,
    ExecutionStatus,
    Group,
    PostVerificationEvent,
    StepOutcome,
    UpgradeRequest,
)
from ..workflows.helpers import create_execution_summary

# Setup logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

# Rich console for pretty output
console = Console()

STATUS_STYLES = {
    ExecutionStatus.RUNNING: "yellow",
    ExecutionStatus.SUCCEEDED: "green",
    ExecutionStatus.FAILED: "red",
    ExecutionStatus.TIMED_OUT: "red",
}

OUTCOME_ICONS = {
    StepOutcome.SUCCEEDED: "[green]✓[/green]",
    StepOutcome.SOFT_FAILED: "[yellow]~[/yellow]",
    StepOutcome.FAILED: "[red]✗[/red]",
}


class LifecycleController:
    """Main controller for Account Lifecycle Engine operations."""

    def __init__(self, config_path: Optional[str] = None, mock_mode: bool = True):
        """Initialize the lifecycle controller."""
        self.settings = load_settings(config_path, mock_mode=mock_mode)
        self.runtime = build_runtime(self.settings)

        if config_path:
            console.print(f"[blue]Loaded configuration from {config_path}[/blue]")
        console.print(f"[green]Account Lifecycle Engine initialized (mock_mode={mock_mode})[/green]")


@click.group()
@click.option('--config', '-c', type=click.Path(exists=True), help='Path to configuration file (YAML or JSON)')
@click.option('--mock/--real', default=True, help='Use mock connectors (default) or real AWS services')
@click.pass_context
def cli(ctx, config, mock):
    """Lifecycle Control CLI - Account creation and tier upgrade workflows"""
    ctx.ensure_object(dict)
    try:
        ctx.obj['controller'] = LifecycleController(config, mock)
    except LifecycleError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        ctx.exit(1)


@cli.command()
@click.argument('email')
@click.option('--identity-id', required=True, help='Identity id issued by the identity provider')
@click.option('--first-name', default='', help='First name')
@click.option('--last-name', default='', help='Last name')
@click.option('--contact-number', default='', help='Contact number')
@click.option('--wait/--no-wait', default=True, help='Wait for the workflow to finish')
@click.pass_context
def create(ctx, email, identity_id, first_name, last_name, contact_number, wait):
    """Run the post-verification flow for a new account."""
    controller = ctx.obj['controller']

    try:
        event = PostVerificationEvent(
            identity_id=identity_id,
            user_name=identity_id,
            email=email,
            first_name=first_name,
            last_name=last_name,
            contact_number=contact_number,
        )
        handle = controller.runtime.post_verification.start(event)
    except (LifecycleError, ValueError) as e:
        console.print(f"[red]Account creation failed to start: {e}[/red]")
        logger.debug("Account creation failed to start", exc_info=True)
        ctx.exit(1)

    console.print(f"[blue]Started {handle.reference}[/blue]")
    if not wait:
        return

    record = handle.wait()
    display_execution(record)
    if not record.succeeded:
        ctx.exit(1)


@cli.command()
@click.argument('identity_id')
@click.option('--as', 'requester', help='Requester identity id (defaults to IDENTITY_ID)')
@click.option('--groups', default='', help='Requester group claims (comma-separated)')
@click.option('--wait/--no-wait', default=True, help='Wait for the workflow to finish')
@click.pass_context
def upgrade(ctx, identity_id, requester, groups, wait):
    """Upgrade an identity to the paid tier."""
    controller = ctx.obj['controller']

    request = UpgradeRequest(
        target_identity_id=identity_id,
        requester_identity_id=requester or identity_id,
        requester_groups=[g.strip() for g in groups.split(',') if g.strip()],
        wait=wait,
    )
    response = controller.runtime.upgrade.handle(request)

    style = "green" if response.success else "red"
    console.print(f"[{style}]{response.message}[/{style}]")

    if response.execution_reference:
        console.print(f"Execution: {response.execution_reference}")
        if wait:
            display_execution(controller.runtime.executor.describe(response.execution_reference))

    if not response.success:
        ctx.exit(1)


@cli.command()
@click.option('--identity-id', help='Filter by identity id')
@click.option('--workflow', help='Filter by workflow id')
@click.option('--status', type=click.Choice([s.value for s in ExecutionStatus]), help='Filter by status')
@click.option('--limit', default=50, help='Maximum number of executions to show')
@click.pass_context
def executions(ctx, identity_id, workflow, status, limit):
    """List workflow executions."""
    controller = ctx.obj['controller']

    records = controller.runtime.store.list_executions(
        identity_id=identity_id,
        workflow_id=workflow,
        status=ExecutionStatus(status) if status else None,
        limit=limit,
    )

    if not records:
        console.print("[yellow]No executions found[/yellow]")
        return

    table = Table(title=f"Executions ({len(records)})")
    table.add_column("Name", style="cyan")
    table.add_column("Workflow", style="green")
    table.add_column("Identity", style="yellow")
    table.add_column("Status")
    table.add_column("Steps", justify="right")
    table.add_column("Started", style="blue")

    for record in records:
        summary = create_execution_summary(record)
        style = STATUS_STYLES.get(record.status, "white")
        table.add_row(
            record.execution_name,
            record.workflow_id,
            record.identity_id,
            f"[{style}]{record.status.value}[/{style}]",
            f"{summary['successful_steps']}/{summary['total_steps']}",
            record.started_at.strftime("%Y-%m-%d %H:%M:%S"),
        )

    console.print(table)


@cli.command()
@click.argument('name')
@click.pass_context
def show_execution(ctx, name):
    """Show an execution and its steps by name or reference."""
    controller = ctx.obj['controller']

    try:
        record = controller.runtime.executor.describe(name)
    except LifecycleError as e:
        console.print(f"[red]{e}[/red]")
        ctx.exit(1)

    display_execution(record)


@cli.command()
@click.argument('identity_id')
@click.pass_context
def membership(ctx, identity_id):
    """Show the directory groups of an identity."""
    controller = ctx.obj['controller']

    result = controller.runtime.connectors.directory.list_groups(identity_id)
    if not result.success:
        console.print(f"[red]Failed to list groups: {result.error}[/red]")
        ctx.exit(1)

    groups = result.data
    if not groups.groups:
        console.print(f"[yellow]{identity_id} is not a member of any group[/yellow]")
        return

    primary = groups.primary_group
    console.print(Panel.fit(
        f"[bold]{identity_id}[/bold]\n"
        f"Groups: {', '.join(groups.groups)}\n"
        f"Primary group: {primary.value if primary else 'none'}\n"
        f"Paid member: {'yes' if Group.PAID in groups else 'no'}"
    ))


@cli.command()
@click.argument('identity_id')
@click.option('--limit', default=100, help='Maximum number of audit records to show')
@click.pass_context
def audit_trail(ctx, identity_id, limit):
    """Show the audit trail of step executions for an identity."""
    controller = ctx.obj['controller']

    audit_logger = controller.runtime.audit_logger
    if audit_logger is None:
        console.print("[yellow]Audit trail is disabled (set audit_dir to enable it)[/yellow]")
        return

    audit_records = audit_logger.get_events(identity_id=identity_id, limit=limit)
    if not audit_records:
        console.print(f"[yellow]No audit records found for {identity_id}[/yellow]")
        return

    table = Table(title=f"Audit Trail for {identity_id}")
    table.add_column("Timestamp", style="cyan")
    table.add_column("Execution", style="green")
    table.add_column("Step", style="yellow")
    table.add_column("Attempts", justify="right")
    table.add_column("Outcome")

    for record in audit_records:
        table.add_row(
            record.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            record.execution_name,
            record.step,
            str(record.attempts),
            OUTCOME_ICONS.get(record.outcome, record.outcome.value),
        )

    console.print(table)


@cli.command()
@click.option('--port', default=8000, help='Port to run the API server on')
@click.option('--host', default='127.0.0.1', help='Host to bind the API server to')
@click.pass_context
def serve(ctx, port, host):
    """Start the Account Lifecycle API server."""
    from ..api import server

    # Serve with the runtime built from the CLI options
    server.runtime = ctx.obj['controller'].runtime

    console.print(f"[green]Starting Account Lifecycle API server on {host}:{port}[/green]")
    console.print("[blue]Press Ctrl+C to stop[/blue]")

    try:
        server.start_server(host=host, port=port, reload=False)
    except KeyboardInterrupt:
        console.print("[yellow]Server stopped[/yellow]")


def display_execution(record: ExecutionRecord):
    """Display an execution record with its step history."""
    style = STATUS_STYLES.get(record.status, "white")
    console.print(Panel.fit(
        f"[bold]{record.execution_name}[/bold]\n"
        f"{record.workflow_id} for {record.identity_id}\n"
        f"Status: [{style}]{record.status.value}[/{style}]"
    ))

    table = Table(title="Steps")
    table.add_column("Step", style="cyan")
    table.add_column("Outcome")
    table.add_column("Attempts", justify="right")
    table.add_column("Error", style="red")

    for step in record.steps:
        table.add_row(
            step.step,
            OUTCOME_ICONS.get(step.outcome, "…") if step.outcome else "…",
            str(step.attempts),
            step.error or "",
        )

    console.print(table)

    if record.error:
        console.print(f"[red]Error ({record.failed_step or 'workflow'}): {record.error}[/red]")

    if record.output:
        console.print("[bold]Output[/bold]")
        for key, value in record.output.items():
            console.print(f"  {key}: {value}")


def main():
    cli(obj={})


if __name__ == "__main__":
    sys.exit(main())
