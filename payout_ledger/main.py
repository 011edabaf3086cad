"""Payout Ledger - operator command line.

Maintenance commands for the stock database, run outside the chat bot:

    payout-ledger init-db
    payout-ledger configure GUILD_ID ROLE_ID [--log-channel CHANNEL_ID]
    payout-ledger import GUILD_ID nfa accounts.txt
    payout-ledger stock GUILD_ID
    payout-ledger stats GUILD_ID
    payout-ledger clear GUILD_ID fa --yes
"""

import asyncio
import logging
import sys

import click

from .config import settings
from .errors import LedgerError
from .importer import parse_credentials
from .ledger import StockLedger
from .models import ServiceType

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[
        logging.StreamHandler(sys.stdout),
    ],
)

logger = logging.getLogger(__name__)

_SERVICE_CHOICE = click.Choice([s.value for s in ServiceType], case_sensitive=False)


def _run(database_url, operation):
    """Open the ledger, run one coroutine against it, close it."""

    async def _main():
        ledger = StockLedger(database_url=database_url)
        await ledger.initialize()
        try:
            return await operation(ledger)
        finally:
            await ledger.close()

    try:
        return asyncio.run(_main())
    except LedgerError as e:
        raise click.ClickException(str(e)) from e
    except ValueError as e:
        raise click.BadParameter(str(e)) from e


@click.group()
@click.option(
    "--database-url",
    envvar="DATABASE_URL",
    default=None,
    help="Overrides DATABASE_URL from the environment / .env file.",
)
@click.pass_context
def cli(ctx: click.Context, database_url):
    """Manage payout stock from the command line."""
    ctx.obj = database_url


@cli.command("init-db")
@click.pass_obj
def init_db(database_url):
    """Create the tables if they do not exist."""
    async def noop(ledger):
        return None

    _run(database_url, noop)
    click.echo("Database schema is ready.")


@cli.command()
@click.argument("guild_id")
@click.argument("payout_role_id")
@click.option("--log-channel", "log_channel_id", default=None, help="Channel for audit notifications.")
@click.pass_obj
def configure(database_url, guild_id, payout_role_id, log_channel_id):
    """Set the payout role (and optionally the log channel) for a guild."""
    _run(database_url, lambda ledger: ledger.configure(guild_id, payout_role_id, log_channel_id))
    click.echo(f"Guild {guild_id}: payout role is now {payout_role_id}.")


@cli.command("import")
@click.argument("guild_id")
@click.argument("service", type=_SERVICE_CHOICE)
@click.argument("path", type=click.File("r", encoding="utf-8"))
@click.pass_obj
def import_stock(database_url, guild_id, service, path):
    """Bulk-add email:secret lines from a text file."""
    parsed = parse_credentials(path.read())
    if not parsed.credentials:
        raise click.ClickException("No valid email:secret lines found.")

    service_type = ServiceType.parse(service)
    result = _run(database_url, lambda ledger: ledger.bulk_add(guild_id, service_type, parsed.credentials))
    click.echo(
        f"Read {parsed.lines} line(s): added {result.succeeded}, "
        f"skipped {result.skipped} duplicate(s), {parsed.rejected} malformed."
    )


@cli.command()
@click.argument("guild_id")
@click.pass_obj
def stock(database_url, guild_id):
    """Show remaining stock per service."""
    counts = _run(database_url, lambda ledger: ledger.count(guild_id))
    if not counts:
        click.echo("Stock is empty.")
        return
    for service_type in ServiceType:
        if service_type in counts:
            click.echo(f"{service_type.display_name}: {counts[service_type]}")


@cli.command()
@click.argument("guild_id")
@click.pass_obj
def stats(database_url, guild_id):
    """Show total stock and total dispensed."""
    result = _run(database_url, lambda ledger: ledger.stats(guild_id))
    click.echo(f"In stock: {result.total_stock}")
    click.echo(f"Dispensed: {result.total_generated}")


@cli.command()
@click.argument("guild_id")
@click.argument("service", type=_SERVICE_CHOICE)
@click.option("--yes", is_flag=True, help="Confirm the deletion.")
@click.pass_obj
def clear(database_url, guild_id, service, yes):
    """Delete ALL stock of one service. Cannot be undone."""
    service_type = ServiceType.parse(service)
    if not yes:
        click.confirm(f"Delete all {service_type.display_name} stock in guild {guild_id}?", abort=True)
    deleted = _run(database_url, lambda ledger: ledger.clear_all(guild_id, service_type))
    click.echo(f"Deleted {deleted} {service_type.display_name} account(s).")


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
