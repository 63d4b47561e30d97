"""
Main CLI interface for AWS billing monitoring.

Provides commands to fetch costs for all configured accounts, watch them on a
schedule, and manage the account list.
"""

import asyncio
import json
import logging
import sys

import click
from dynaconf import ValidationError

from .config.settings import get_config, reload_config
from .models.account import DEFAULT_REGION, Account, AccountColor
from .store.billing_store import BillingStore, RefreshFrequency

logger = logging.getLogger(__name__)

TOP_SERVICES = 5


def setup_logging(verbose: bool = False):
    """Configure logging based on verbosity settings."""
    logging.basicConfig(format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    # Default is quiet (only show results)
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    else:
        logging.getLogger().setLevel(logging.ERROR)

    # Reduce noise from HTTP and AWS SDK loggers
    for logger_name in ["httpx", "httpcore", "boto3", "botocore", "urllib3"]:
        logging.getLogger(logger_name).setLevel(logging.INFO if verbose else logging.ERROR)


def _create_store(ctx, on_refresh=None) -> BillingStore:
    """Build a BillingStore from validated configuration, exiting on bad settings."""
    config = ctx.obj["config"]
    try:
        config.validate()
    except ValidationError as e:
        click.echo(f"❌ Invalid configuration: {e}", err=True)
        sys.exit(1)
    return BillingStore.from_config(config, on_refresh=on_refresh)


def _find_account(store: BillingStore, reference: str) -> Account:
    """Find an account by id, AWS account id or name."""
    for account in store.accounts:
        if reference in (account.id, account.account_id) or reference.lower() == account.name.lower():
            return account
    click.echo(f"❌ No account matching '{reference}'", err=True)
    sys.exit(1)


def _format_change(change) -> str:
    return f"{change:+.1f}%" if change is not None else "n/a"


def _display_snapshot_table(store: BillingStore, account: Account):
    """Display one account's billing in table format."""
    snapshot = store.snapshot(account.id)
    error = store.error(account.id)

    click.echo(f"\n{account.name} ({account.account_id}, {account.region})")
    click.echo("-" * 50)

    if snapshot is None:
        click.echo("  No billing data available")
    else:
        currency = snapshot.currency
        click.echo(f"  Month to date:  {snapshot.month_to_date_cost:.2f} {currency}")
        click.echo(f"  Last month:     {snapshot.last_month_cost:.2f} {currency}")
        if snapshot.forecasted_month_cost is not None:
            click.echo(
                f"  Forecast:       {snapshot.forecasted_month_cost:.2f} {currency} "
                f"(projected total {snapshot.projected_month_total:.2f} {currency})"
            )
        else:
            click.echo("  Forecast:       n/a")
        click.echo(f"  vs last month:  {_format_change(snapshot.month_over_month_change)}")
        click.echo(f"  Daily average:  {snapshot.daily_average_cost:.2f} {currency}")

        if snapshot.cost_by_service:
            click.echo("  Top services:")
            for service in snapshot.cost_by_service[:TOP_SERVICES]:
                click.echo(
                    f"    {service.short_name}: {service.cost:.2f} {currency} ({service.percentage:.1f}%)"
                )

    if error:
        click.echo(f"  ⚠️  Error: {error}")


def _display_cost_table(store: BillingStore):
    """Display billing for all enabled accounts plus totals."""
    aggregated = store.aggregated

    click.echo("\nAWS Billing Summary")
    click.echo("=" * 50)

    for account in store.enabled_accounts:
        _display_snapshot_table(store, account)

    click.echo("\n" + "=" * 50)
    click.echo(f"Total month to date: {aggregated.total_month_to_date:.2f}")
    click.echo(f"Total last month:    {aggregated.total_last_month:.2f}")
    if aggregated.total_forecast is not None:
        click.echo(f"Total forecast:      {aggregated.total_forecast:.2f}")
    click.echo(f"vs last month:       {_format_change(aggregated.month_over_month_change)}")


def _cost_data(store: BillingStore) -> dict:
    """Collect billing for all enabled accounts as JSON-serializable data."""
    aggregated = store.aggregated
    accounts = []
    for account in store.enabled_accounts:
        snapshot = store.snapshot(account.id)
        accounts.append(
            {
                "account": account.to_dict(),
                "billing": snapshot.to_dict() if snapshot else None,
                "error": store.error(account.id),
            }
        )

    return {
        "accounts": accounts,
        "total": {
            "month_to_date": aggregated.total_month_to_date,
            "last_month": aggregated.total_last_month,
            "forecast": aggregated.total_forecast,
            "month_over_month_change": aggregated.month_over_month_change,
        },
        "last_refresh": store.last_refresh.isoformat() if store.last_refresh else None,
    }


@click.group()
@click.option("--config", "-c", type=click.Path(exists=True, dir_okay=False), help="Path to configuration file")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging and debug output")
@click.pass_context
def cli(ctx, config, verbose):
    """AWS Billing Monitor - Track Cost Explorer spend across AWS accounts."""
    setup_logging(verbose)

    # Ensure context object exists
    ctx.ensure_object(dict)

    # Store common options
    ctx.obj["config_file"] = config
    ctx.obj["verbose"] = verbose

    # Load configuration
    if "config" not in ctx.obj:
        ctx.obj["config"] = reload_config([config]) if config else get_config()


@cli.command()
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format",
)
@click.pass_context
def costs(ctx, output_format):
    """Fetch and display current costs for all enabled accounts."""

    async def _costs():
        store = _create_store(ctx)
        try:
            if not store.enabled_accounts:
                click.echo("No enabled accounts configured. Add one with: aws-billing-monitor accounts add", err=True)
                return True

            await store.refresh()

            if output_format == "json":
                click.echo(json.dumps(_cost_data(store), indent=2))
            else:
                _display_cost_table(store)

            return len(store.errors) < len(store.enabled_accounts)
        finally:
            await store.aclose()

    if not asyncio.run(_costs()):
        sys.exit(1)


@cli.command()
@click.pass_context
def watch(ctx):
    """Refresh costs periodically and print a summary after each refresh."""
    config = ctx.obj["config"]
    frequency = RefreshFrequency(config.refresh_frequency)
    if frequency.seconds is None:
        click.echo("❌ Refresh frequency is manual; set refresh.frequency to watch", err=True)
        sys.exit(1)

    def _print_summary(store: BillingStore):
        aggregated = store.aggregated
        refreshed = store.last_refresh.strftime("%H:%M:%S") if store.last_refresh else "-"
        click.echo(
            f"[{refreshed}] month to date {aggregated.total_month_to_date:.2f}, "
            f"last month {aggregated.total_last_month:.2f}, "
            f"{len(store.errors)} error(s)"
        )
        for account_id, error in store.errors.items():
            account = store.account(account_id)
            click.echo(f"  ⚠️  {account.name if account else account_id}: {error}")

    async def _watch():
        store = _create_store(ctx, on_refresh=_print_summary)
        click.echo(f"Watching {len(store.enabled_accounts)} accounts every {frequency.display_name} (Ctrl+C to stop)")
        try:
            await store.refresh()
            store.start_timer()
            await asyncio.Event().wait()
        finally:
            await store.aclose()

    try:
        asyncio.run(_watch())
    except KeyboardInterrupt:
        click.echo("\nStopped")


@cli.group()
def accounts():
    """Manage the monitored AWS accounts."""
    pass


@accounts.command("list")
@click.pass_context
def list_accounts(ctx):
    """List configured accounts."""
    store = _create_store(ctx)
    if not store.accounts:
        click.echo("No accounts configured")
        return

    for account in store.accounts:
        status = "enabled" if account.is_enabled else "disabled"
        click.echo(
            f"{account.id}  {account.name}  {account.account_id}  "
            f"profile={account.profile_key}  region={account.region}  "
            f"color={account.color.display_name}  {status}"
        )


@accounts.command("add")
@click.option("--name", required=True, help="Display name")
@click.option("--account-id", required=True, help="12-digit AWS account id")
@click.option("--profile", help="AWS credential profile (default profile if omitted)")
@click.option("--region", default=DEFAULT_REGION, show_default=True, help="Cost Explorer region")
@click.option(
    "--color",
    type=click.Choice([color.value for color in AccountColor]),
    default=AccountColor.BLUE.value,
    show_default=True,
)
@click.pass_context
def add_account(ctx, name, account_id, profile, region, color):
    """Add an account."""
    store = _create_store(ctx)
    try:
        account = Account(
            name=name,
            account_id=account_id,
            profile_name=profile,
            region=region,
            color=AccountColor(color),
        )
    except ValueError as e:
        click.echo(f"❌ Invalid account: {e}", err=True)
        sys.exit(1)

    store.add_account(account)
    click.echo(f"✅ Added account {account.name} ({account.id})")


@accounts.command("remove")
@click.argument("reference")
@click.pass_context
def remove_account(ctx, reference):
    """Remove an account by id, AWS account id or name."""
    store = _create_store(ctx)
    account = _find_account(store, reference)
    store.remove_account(account.id)
    click.echo(f"✅ Removed account {account.name}")


def _set_enabled(ctx, reference: str, enabled: bool):
    store = _create_store(ctx)
    account = _find_account(store, reference)
    store.update_account(account.updated(is_enabled=enabled))
    click.echo(f"✅ {'Enabled' if enabled else 'Disabled'} account {account.name}")


@accounts.command("enable")
@click.argument("reference")
@click.pass_context
def enable_account(ctx, reference):
    """Enable an account."""
    _set_enabled(ctx, reference, True)


@accounts.command("disable")
@click.argument("reference")
@click.pass_context
def disable_account(ctx, reference):
    """Disable an account."""
    _set_enabled(ctx, reference, False)


@cli.command()
@click.pass_context
def profiles(ctx):
    """List AWS credential profiles known to the credential provider."""
    store = _create_store(ctx)
    names = asyncio.run(store.available_profiles())
    if not names:
        click.echo("No profiles found")
        return
    for name in names:
        click.echo(name)


if __name__ == "__main__":
    cli()
