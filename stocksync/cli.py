"""Command-line interface for manual stock operations."""

import asyncio
import sys

import click

from .api_server import build_store
from .auth.session import SessionAuthenticator
from .feed.change_feed import ChangeFeed
from .services.barcode_service import BarcodeResolutionService
from .services.context import Actor, RequestContext
from .services.mutation_service import StockMutationService
from .utils.config import get_config
from .utils.exceptions import ConfigurationError


def _context(actor_id: str, name: str, role: str) -> RequestContext:
    config = get_config()
    if config.env.store_backend.lower() == "memory":
        # A fresh in-process store per command would always be empty.
        raise ConfigurationError(
            "The CLI needs a shared ledger store; set STOCKSYNC_STORE_BACKEND=rest",
            details={"backend": config.env.store_backend}
        )
    store = build_store(ChangeFeed())
    return RequestContext(store=store, actor=Actor(id=actor_id, display_name=name or actor_id, role=role))


def _configuration_failed(error: ConfigurationError):
    click.echo(click.style(f"✗ Configuration error: {error.message}", fg="red"), err=True)
    sys.exit(1)


def _actor_options(func):
    func = click.option("--role", default="staff", show_default=True, help="Actor role")(func)
    func = click.option("--name", default=None, help="Actor display name")(func)
    func = click.option("--actor", "actor_id", required=True, help="Actor id recorded in the audit log")(func)
    return func


@click.group()
@click.version_option(version="1.0.0")
def cli():
    """
    StockSync CLI.

    Adjust stock and resolve barcodes against the configured ledger store.
    """
    pass


@cli.command()
@click.option("--host", default="0.0.0.0", show_default=True)
@click.option("--port", type=int, default=None, help="Defaults to STOCKSYNC_PORT")
def serve(host: str, port: int):
    """Run the HTTP API."""
    import uvicorn

    config = get_config()
    uvicorn.run("stocksync.api_server:app", host=host, port=port or config.env.port)


@cli.command()
@click.argument("product_id")
@click.argument("quantity", type=int)
@click.option(
    "--operation",
    type=click.Choice(["add", "remove"]),
    default="add",
    show_default=True,
)
@click.option("--barcode", default=None, help="Scanned barcode to attach to the audit record")
@_actor_options
def adjust(product_id: str, quantity: int, operation: str, barcode: str, actor_id: str, name: str, role: str):
    """
    Add or remove stock for a product.

    PRODUCT_ID: Product to change
    QUANTITY: Positive number of units
    """
    async def run():
        ctx = _context(actor_id, name, role)
        try:
            return await StockMutationService().adjust_quantity(ctx, product_id, quantity, operation, barcode=barcode)
        finally:
            await ctx.store.close()

    try:
        result = asyncio.run(run())
    except ConfigurationError as e:
        _configuration_failed(e)

    if not result.success:
        click.echo(click.style(f"✗ {result.error.kind}: {result.error.message}", fg="red"), err=True)
        sys.exit(1)

    adjustment = result.value
    click.echo(click.style("✓ Stock updated", fg="green", bold=True))
    click.echo(f"Previous quantity: {adjustment.previous_quantity}")
    click.echo(f"New quantity:      {adjustment.new_quantity}")
    click.echo(f"Applied delta:     {adjustment.applied_delta:+d}")
    if adjustment.clamped:
        click.echo(click.style("Removal exceeded stock on hand; quantity clamped to zero", fg="yellow"))
    if not adjustment.audit_recorded:
        click.echo(click.style("⚠ Audit record could not be written", fg="yellow"))


@cli.command()
@click.argument("barcode")
@_actor_options
def lookup(barcode: str, actor_id: str, name: str, role: str):
    """Resolve a barcode to a product."""
    async def run():
        ctx = _context(actor_id, name, role)
        try:
            return await BarcodeResolutionService().resolve_barcode(ctx, barcode)
        finally:
            await ctx.store.close()

    try:
        result = asyncio.run(run())
    except ConfigurationError as e:
        _configuration_failed(e)

    if not result.success:
        click.echo(click.style(f"✗ Lookup error: {result.error.message}", fg="red"), err=True)
        sys.exit(1)

    if result.value.not_found:
        click.echo(click.style(f"No product found with barcode: {barcode}", fg="yellow"))
        sys.exit(2)

    product = result.value.product
    click.echo(click.style(f"✓ Found: {product.name}", fg="green", bold=True))
    click.echo(f"  Id:        {product.id}")
    click.echo(f"  SKU:       {product.sku}")
    click.echo(f"  Quantity:  {product.quantity} {product.unit}")
    click.echo(f"  Threshold: {product.threshold}")
    click.echo(f"  Status:    {product.stock_status.value}")


@cli.command("recent-scans")
@click.option("--limit", type=int, default=5, show_default=True)
@_actor_options
def recent_scans(limit: int, actor_id: str, name: str, role: str):
    """List the latest barcode scans."""
    async def run():
        ctx = _context(actor_id, name, role)
        try:
            return await BarcodeResolutionService().recent_scans(ctx, limit)
        finally:
            await ctx.store.close()

    try:
        result = asyncio.run(run())
    except ConfigurationError as e:
        _configuration_failed(e)
    if not result.success:
        click.echo(click.style(f"✗ {result.error.message}", fg="red"), err=True)
        sys.exit(1)

    for scan in result.value:
        status = scan.product_id or click.style("not found", fg="yellow")
        click.echo(f"{scan.created_at.isoformat()}  {scan.barcode:<16} {status}")


@cli.command("issue-token")
@click.argument("actor_id")
@click.option("--name", default=None, help="Display name")
@click.option("--role", default="staff", show_default=True)
@click.option("--ttl", type=int, default=3600, show_default=True, help="Lifetime in seconds")
def issue_token(actor_id: str, name: str, role: str, ttl: int):
    """Mint a session token for local testing."""
    config = get_config()
    if config.is_production:
        click.echo(click.style("✗ Token minting is disabled in production", fg="red"), err=True)
        sys.exit(1)

    token = SessionAuthenticator().issue_token(Actor(id=actor_id, display_name=name or actor_id, role=role), ttl)
    click.echo(token)


@cli.command()
def config_info():
    """Display current configuration settings."""
    try:
        config = get_config()

        click.echo("Configuration Settings:")
        click.echo("=" * 60)
        click.echo()

        click.echo("Environment:")
        click.echo(f"  Environment:     {config.env.environment}")
        click.echo(f"  Log level:       {config.logging.level}")
        click.echo()

        click.echo("Ledger store:")
        click.echo(f"  Backend:         {config.env.store_backend}")
        click.echo(f"  URL:             {config.env.store_url}")
        click.echo(f"  API key:         {'set' if config.env.store_api_key else 'not set'}")
        click.echo()

        click.echo("Mutations:")
        click.echo(f"  Conflict retries: {config.mutation.max_conflict_retries}")
        click.echo(f"  Allowed roles:    {', '.join(config.mutation.allowed_roles)}")
        click.echo()

        click.echo("Scanner:")
        click.echo(f"  Debounce:        {config.scanner.debounce_seconds}s")
        click.echo(f"  Formats:         {', '.join(config.scanner.formats)}")
        click.echo()

    except Exception as e:
        click.echo(click.style(f"✗ Error loading config: {str(e)}", fg="red"), err=True)
        sys.exit(1)


if __name__ == "__main__":
    cli()
