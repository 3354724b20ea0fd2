"""Access review commands."""

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional

import click
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from saasguard.cli.runtime import build_runtime
from saasguard.config.settings import get_config
from saasguard.core.access_review.campaign_engine import access_risk_score, calculate_access_risk
from saasguard.core.access_review.models import (
    AccessReviewItem,
    CampaignConfig,
    RiskLevel,
    ScopeType,
)
from saasguard.core.connectors.static import StaticConnector

console = Console()

RISK_COLORS = {
    RiskLevel.CRITICAL: "bold red",
    RiskLevel.HIGH: "red",
    RiskLevel.MEDIUM: "yellow",
    RiskLevel.LOW: "green",
}


@click.group(name="access-review")
def access_review_group() -> None:
    """Access review campaigns and grant risk."""
    pass


@access_review_group.command("risk")
@click.option("--app-risk-score", type=click.IntRange(0, 100), required=True, help="App risk score (0-100)")
@click.option("--access-type", default="user", show_default=True, help="Grant type (user, admin, owner)")
@click.option("--days-since-last-use", type=click.IntRange(min=0), help="Days since the grant was last used")
@click.option("--justification", help="Recorded business justification")
def risk(
    app_risk_score: int,
    access_type: str,
    days_since_last_use: Optional[int],
    justification: Optional[str],
) -> None:
    """Compute the review risk level of a single grant."""
    score = access_risk_score(app_risk_score, access_type, days_since_last_use, justification)
    level = calculate_access_risk(app_risk_score, access_type, days_since_last_use, justification)
    color = RISK_COLORS[level]

    console.print(
        Panel(
            f"Score: [bold]{score}[/bold]\n"
            f"Risk level: [{color}]{level.value.upper()}[/{color}]",
            title="Access Risk",
            border_style="cyan",
        )
    )


def _items_table(items: List[AccessReviewItem]) -> Table:
    table = Table(title="Review Items", box=box.ROUNDED)
    table.add_column("User", style="cyan")
    table.add_column("App")
    table.add_column("Access")
    table.add_column("Last Used", justify="right")
    table.add_column("Risk")
    table.add_column("Reviewer")

    for item in items:
        color = RISK_COLORS[item.risk_level]
        table.add_row(
            item.user_name or item.user_id,
            item.app_name,
            item.access_type,
            f"{item.days_since_last_use}d ago" if item.days_since_last_use is not None else "-",
            f"[{color}]{item.risk_level.value}[/{color}]",
            item.reviewer_name or item.reviewer_id or "-",
        )
    return table


@access_review_group.command("generate")
@click.argument("export_file", type=click.Path(exists=True, path_type=Path))
@click.option("--tenant", "tenant_id", required=True, help="Tenant to review")
@click.option("--name", default="Access Review", show_default=True, help="Campaign name")
@click.option("--due-in-days", type=click.IntRange(min=0), default=14, show_default=True)
@click.option("--department", "departments", multiple=True, help="Limit the review to a department")
def generate(
    export_file: Path,
    tenant_id: str,
    name: str,
    due_in_days: int,
    departments: List[str],
) -> None:
    """Sync an identity-provider export and generate review items.

    Examples:
        saasguard access-review generate export.json --tenant acme
        saasguard access-review generate export.json --tenant acme --department Finance
    """
    try:
        connector = StaticConnector.from_file(export_file)
        runtime = build_runtime(get_config(), connector=connector)
        campaigns = runtime.campaigns(tenant_id)

        async def run() -> List[AccessReviewItem]:
            await runtime.detector(tenant_id).process_full_sync(connector)
            now = datetime.now(timezone.utc)
            campaign = await campaigns.create_campaign(
                CampaignConfig(
                    name=name,
                    start_date=now,
                    due_date=now + timedelta(days=due_in_days),
                    scope_type=ScopeType.DEPARTMENT if departments else ScopeType.ALL,
                    scope_config={"departments": list(departments)} if departments else {},
                ),
                created_by="cli",
            )
            await campaigns.generate_review_items(campaign.id)
            return await runtime.store.list_review_items(campaign.id, tenant_id)

        items = asyncio.run(run())

        if not items:
            console.print("[yellow]⚠[/yellow] No grants in scope")
            return

        console.print(_items_table(items))
        high = sum(1 for i in items if i.risk_level in (RiskLevel.HIGH, RiskLevel.CRITICAL))
        console.print(f"\n[green]✓[/green] {len(items)} review items created, {high} high risk")

    except Exception as e:
        console.print(f"[red]✗[/red] Error: {e}", style="red")
        raise click.Abort()
