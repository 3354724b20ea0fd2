"""Shadow IT discovery commands."""

import asyncio
import json
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import click
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from saasguard.cli.runtime import Runtime, build_runtime
from saasguard.config.loader import load_policies
from saasguard.config.settings import get_config
from saasguard.core.analyzers.shadow_it_detector import SyncStats
from saasguard.core.connectors.static import StaticConnector
from saasguard.core.policies.models import PolicyExecution
from saasguard.core.storage.records import ApprovalStatus, SaasApp

console = Console()


def load_catalog(path: Path, tenant_id: str) -> List[SaasApp]:
    """Read a JSON list of catalog apps for a tenant.

    Each entry needs a ``name``; ``approval_status`` defaults to approved
    since the catalog lists apps the tenant already knows about.
    """
    with open(path, "r") as f:
        entries = json.load(f)

    if not isinstance(entries, list):
        raise ValueError("Catalog must be a JSON list of apps")

    apps = []
    for entry in entries:
        if not isinstance(entry, dict) or not entry.get("name"):
            raise ValueError("Every catalog entry needs a name")
        metadata: Dict[str, Any] = dict(entry.get("metadata") or {})
        if entry.get("external_id"):
            metadata["external_id"] = entry["external_id"]
        apps.append(
            SaasApp(
                id=entry.get("id") or str(uuid.uuid4()),
                tenant_id=tenant_id,
                name=entry["name"],
                vendor=entry.get("vendor"),
                website_url=entry.get("website_url"),
                approval_status=ApprovalStatus(entry.get("approval_status", "approved")),
                metadata=metadata,
            )
        )
    return apps


def _stats_table(stats: SyncStats) -> Table:
    table = Table(title=f"Sync Results ({stats.idp_id})", box=box.ROUNDED)
    table.add_column("Metric", style="cyan")
    table.add_column("Count", justify="right", style="bold")

    labels = {
        "users_synced": "Users synced",
        "apps_processed": "Apps processed",
        "apps_created": "Apps created",
        "apps_updated": "Apps updated",
        "shadow_it_detected": "Shadow IT detected",
        "high_risk_apps": "High-risk apps",
        "apps_failed": "Apps failed",
        "user_access_created": "Access grants created",
        "tokens_created": "OAuth tokens created",
    }
    values = stats.to_dict()
    for key, label in labels.items():
        value = values[key]
        if key in ("shadow_it_detected", "high_risk_apps", "apps_failed") and value:
            table.add_row(label, f"[red]{value}[/red]")
        else:
            table.add_row(label, str(value))
    return table


def _apps_table(apps: List[SaasApp]) -> Table:
    table = Table(title="Discovered Apps", box=box.ROUNDED)
    table.add_column("App", style="cyan")
    table.add_column("Vendor")
    table.add_column("Status")
    table.add_column("Risk", justify="right")
    table.add_column("Risk Factors")

    for app in sorted(apps, key=lambda a: a.risk_score, reverse=True):
        status_color = {
            ApprovalStatus.APPROVED: "green",
            ApprovalStatus.DENIED: "red",
            ApprovalStatus.PENDING: "yellow",
        }[app.approval_status]
        table.add_row(
            app.name,
            app.vendor or "-",
            f"[{status_color}]{app.approval_status.value}[/{status_color}]",
            str(app.risk_score),
            "\n".join(app.risk_factors) or "-",
        )
    return table


def _executions_table(executions: List[PolicyExecution], names: Dict[str, str]) -> Table:
    table = Table(title="Policy Executions", box=box.ROUNDED)
    table.add_column("Policy", style="cyan")
    table.add_column("Trigger", style="magenta")
    table.add_column("App")
    table.add_column("Status")
    table.add_column("Succeeded", justify="right", style="green")
    table.add_column("Failed", justify="right", style="red")

    for execution in executions:
        table.add_row(
            names.get(execution.policy_id, execution.policy_id),
            execution.trigger_event,
            str(execution.trigger_data.get("app_name", "-")),
            execution.status.value,
            str(execution.actions_succeeded),
            str(execution.actions_failed),
        )
    return table


@click.group(name="shadow-it")
def shadow_it_group() -> None:
    """Shadow IT discovery from identity-provider exports."""
    pass


@shadow_it_group.command("sync")
@click.argument("export_file", type=click.Path(exists=True, path_type=Path))
@click.option("--tenant", "tenant_id", required=True, help="Tenant to sync into")
@click.option(
    "--catalog",
    "catalog_file",
    type=click.Path(exists=True, path_type=Path),
    help="JSON list of apps already in the tenant catalog",
)
@click.option(
    "--policies",
    "policy_file",
    type=click.Path(exists=True, path_type=Path),
    help="YAML policies to run against discovery events",
)
def sync(
    export_file: Path,
    tenant_id: str,
    catalog_file: Optional[Path],
    policy_file: Optional[Path],
) -> None:
    """Run a full Shadow IT sync from an identity-provider export.

    Examples:
        saasguard shadow-it sync export.json --tenant acme
        saasguard shadow-it sync export.json --tenant acme --catalog catalog.json --policies policies.yaml
    """
    try:
        config = get_config()
        policy_file = policy_file or config.policy_file
        connector = StaticConnector.from_file(export_file)
        runtime = build_runtime(config, connector=connector)
        policies = load_policies(policy_file, tenant_id=tenant_id) if policy_file else []
        catalog = load_catalog(catalog_file, tenant_id) if catalog_file else []

        async def run(rt: Runtime) -> Tuple[SyncStats, List[SaasApp], List[PolicyExecution]]:
            for app in catalog:
                await rt.store.create_saas_app(app)
            for policy in policies:
                await rt.store.create_policy(policy)
            sync_stats = await rt.detector(tenant_id).process_full_sync(connector)
            return (
                sync_stats,
                await rt.store.list_saas_apps(tenant_id),
                await rt.store.list_policy_executions(tenant_id),
            )

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            task = progress.add_task(f"Syncing {connector.idp_id}...", total=None)
            stats, apps, executions = asyncio.run(run(runtime))
            progress.update(task, completed=True)

        console.print(_stats_table(stats))

        if apps:
            console.print(_apps_table(apps))

        if executions:
            console.print(_executions_table(executions, {p.id: p.name for p in policies}))

        if stats.apps.shadow_it_detected:
            console.print(
                Panel(
                    f"[bold red]{stats.apps.shadow_it_detected} unapproved app(s) in use[/bold red]\n"
                    f"Review them and set an approval status in the catalog.",
                    title="Shadow IT",
                    border_style="red",
                )
            )
        else:
            console.print("\n[green]✓[/green] No Shadow IT detected")

    except Exception as e:
        console.print(f"[red]✗[/red] Error: {e}", style="red")
        raise click.Abort()
