"""Policy commands for validating and dry-running automation policies."""

import asyncio
import json
from pathlib import Path
from typing import List, Optional

import click
from rich import box
from rich.console import Console
from rich.table import Table

from saasguard.cli.runtime import build_runtime
from saasguard.config.loader import ConfigurationError, load_policies, policy_warnings
from saasguard.config.settings import get_config
from saasguard.core.events.topics import Event, Topic
from saasguard.core.policies.engine import EventHandlingResult
from saasguard.core.policies.models import Policy

console = Console()


def _policies_table(policies: List[Policy]) -> Table:
    table = Table(title="Policies", box=box.ROUNDED)
    table.add_column("Name", style="cyan")
    table.add_column("Tenant")
    table.add_column("Trigger", style="magenta")
    table.add_column("Conditions")
    table.add_column("Actions")
    table.add_column("Cooldown (min)", justify="right")
    table.add_column("Daily Cap", justify="right")
    table.add_column("Enabled")

    for policy in policies:
        table.add_row(
            policy.name,
            policy.tenant_id,
            policy.trigger_type.value,
            json.dumps(policy.conditions) if policy.conditions else "-",
            ", ".join(a.type for a in policy.actions),
            str(policy.cooldown_minutes) if policy.cooldown_minutes else "-",
            str(policy.max_executions_per_day) if policy.max_executions_per_day else "-",
            "[green]yes[/green]" if policy.enabled else "[dim]no[/dim]",
        )
    return table


def print_event_result(result: EventHandlingResult, policies: List[Policy]) -> None:
    """Render the outcome of one handled event."""
    names = {p.id: p.name for p in policies}

    console.print(
        f"\n[bold]Event[/bold] {result.topic} for tenant [cyan]{result.tenant_id or '-'}[/cyan]: "
        f"{result.matched} matched, {result.executed} executed, "
        f"{result.skipped_cooldown} rate-limited, {result.skipped_conditions} filtered"
    )

    if result.executions:
        table = Table(title="Executions", box=box.ROUNDED)
        table.add_column("Policy", style="cyan")
        table.add_column("Status")
        table.add_column("Succeeded", justify="right", style="green")
        table.add_column("Failed", justify="right", style="red")
        table.add_column("Errors")

        for execution in result.executions:
            status_color = {"success": "green", "partial": "yellow", "failed": "red"}.get(
                execution.status.value, "white"
            )
            errors = "; ".join(o.error for o in execution.results if o.error)
            table.add_row(
                names.get(execution.policy_id, execution.policy_id),
                f"[{status_color}]{execution.status.value}[/{status_color}]",
                str(execution.actions_succeeded),
                str(execution.actions_failed),
                errors or "-",
            )
        console.print(table)

    for error in result.errors:
        console.print(f"[red]✗[/red] {error}")


@click.group(name="policy")
def policy_group() -> None:
    """Validate and simulate automation policies."""
    pass


@policy_group.command("validate")
@click.argument("policy_file", type=click.Path(exists=True, path_type=Path))
@click.option("--tenant", "tenant_id", help="Tenant to assign to every policy")
def validate_policies(policy_file: Path, tenant_id: Optional[str]) -> None:
    """Validate a YAML policy file and list its policies."""
    try:
        policies = load_policies(policy_file, tenant_id=tenant_id)
    except ConfigurationError as e:
        console.print(f"[red]✗[/red] Error: {e}", style="red")
        raise click.Abort()

    console.print(_policies_table(policies))

    runtime = build_runtime(get_config())
    for warning in policy_warnings(policies, runtime.engine.registry.registered_types()):
        console.print(f"[yellow]⚠[/yellow] {warning}")

    console.print(f"\n[green]✓[/green] {len(policies)} policies valid")


@policy_group.command("simulate")
@click.argument("policy_file", type=click.Path(exists=True, path_type=Path))
@click.option(
    "--event",
    "topic",
    required=True,
    type=click.Choice([t.value for t in Topic]),
    help="Event topic to publish",
)
@click.option("--data", "data_json", default="{}", help="Event payload as a JSON object")
@click.option("--tenant", "tenant_id", required=True, help="Tenant the event belongs to")
def simulate_policies(policy_file: Path, topic: str, data_json: str, tenant_id: str) -> None:
    """Run a single event through the policies of a file.

    Policies run against an in-memory store, so approval actions only
    report on what they would change.
    """
    try:
        data = json.loads(data_json)
        if not isinstance(data, dict):
            raise click.BadParameter("--data must be a JSON object")

        policies = load_policies(policy_file, tenant_id=tenant_id)
        runtime = build_runtime(get_config())

        async def run() -> EventHandlingResult:
            for policy in policies:
                await runtime.store.create_policy(policy)
            event = Event.from_dict(topic, {**data, "tenant_id": tenant_id})
            return await runtime.engine.handle_event(event)

        result = asyncio.run(run())
        print_event_result(result, policies)

    except click.BadParameter:
        raise
    except Exception as e:
        console.print(f"[red]✗[/red] Error: {e}", style="red")
        raise click.Abort()
