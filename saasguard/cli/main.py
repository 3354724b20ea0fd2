"""Main CLI entry point for SaaSGuard."""

from typing import Optional

import click
import structlog
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel

from saasguard import __version__
from saasguard.config.settings import get_config
from saasguard.logger import configure_logging

console = Console()

logger = structlog.get_logger(__name__)


@click.group()
@click.version_option(version=__version__, prog_name="saasguard")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Override the configured log level",
)
@click.option(
    "--debug",
    is_flag=True,
    help="Enable debug logging",
)
@click.pass_context
def cli(ctx: click.Context, log_level: Optional[str], debug: bool) -> None:
    """SaaSGuard: policy automation and SaaS governance.

    Discover Shadow IT from identity-provider exports, run tenant automation
    policies against governance events and review user access.
    """
    ctx.ensure_object(dict)

    try:
        config = get_config()
    except ValidationError as e:
        console.print(f"[red]✗[/red] Invalid configuration: {e}", style="red")
        raise click.Abort()

    level = "DEBUG" if debug else (log_level or config.log_level)
    configure_logging(level=level, json_output=config.log_json)

    ctx.obj["config"] = config
    logger.debug("cli_initialized", log_level=level, environment=config.environment.value)


@cli.command()
def version() -> None:
    """Show version information."""
    console.print(
        Panel(
            f"[bold cyan]SaaSGuard[/bold cyan] v{__version__}\n\n"
            f"Policy automation and event-driven SaaS governance",
            title="Version Info",
            border_style="cyan",
        )
    )


from saasguard.cli.commands.policy import policy_group  # noqa: E402
from saasguard.cli.commands.shadow_it import shadow_it_group  # noqa: E402
from saasguard.cli.commands.access_review import access_review_group  # noqa: E402

cli.add_command(policy_group)
cli.add_command(shadow_it_group)
cli.add_command(access_review_group)


if __name__ == "__main__":
    cli()
