"""CLI commands for ChainEquity."""

import json
import sys
import time
from typing import Optional

import click

from chainequity_api.analytics.captable import CapTableService
from chainequity_api.analytics.export import EXPORT_FORMATS, export_cap_table
from chainequity_api.db.session import Database
from chainequity_api.errors import IndexerError
from chainequity_api.indexer.factory import build_pipeline, build_watcher
from chainequity_api.ledger.balances import BalanceLedger
from chainequity_api.ledger.corporate import CorporateActionLedger
from chainequity_api.settings import get_settings
from chainequity_api.utils.log import configure_logging


@click.group()
@click.option("--database-url", envvar="DATABASE_URL", default=None, help="Override the configured database URL.")
@click.pass_context
def cli(ctx, database_url: Optional[str]):
    """ChainEquity indexer CLI."""
    settings = get_settings()
    # stdout carries command output (JSON, CSV)
    configure_logging(settings.log_level, "text", stream=sys.stderr)
    ctx.obj = {"settings": settings, "database_url": database_url or settings.database_url_computed}


def _database(ctx) -> Database:
    return Database(ctx.obj["database_url"])


@cli.command("init-db")
@click.pass_context
def init_db(ctx):
    """Create all tables (development; production runs Alembic)."""
    with _database(ctx) as database:
        database.create_all()
    click.echo("✓ Database schema created.")


@cli.command()
@click.option("--from-block", type=int, default=None, help="First block (default: watermark + 1).")
@click.option("--to-block", type=int, default=None, help="Last block (default: chain head).")
@click.option("--batch-size", type=int, default=None, help="Blocks per committed range.")
@click.pass_context
def sync(ctx, from_block: Optional[int], to_block: Optional[int], batch_size: Optional[int]):
    """Backfill the ledger from the chain."""
    settings = ctx.obj["settings"]
    with _database(ctx) as database:
        pipeline = build_pipeline(settings, database)
        try:
            if from_block is not None:
                end = to_block if to_block is not None else pipeline.chain.get_chain_head()
                results = [pipeline.ingest_range(from_block, end)]
            else:
                results = pipeline.sync_to(to_block, batch_size or settings.max_batch_size)
        except IndexerError as e:
            click.echo(f"✗ Sync failed: {e}", err=True)
            ctx.exit(1)
        inserted = sum(result.events_inserted for result in results)
        click.echo(f"✓ Synced {len(results)} ranges, {inserted} new events, watermark {pipeline.current_watermark()}.")


@cli.command()
@click.pass_context
def watch(ctx):
    """Follow the chain head until interrupted."""
    settings = ctx.obj["settings"]
    with _database(ctx) as database:
        watcher = build_watcher(settings, build_pipeline(settings, database))
        watcher.start()
        click.echo("Watching for new blocks (Ctrl+C to stop)...")
        try:
            while watcher.is_running():
                time.sleep(1)
        except KeyboardInterrupt:
            click.echo("Stopping watcher...")
        finally:
            watcher.stop()
        if watcher.halted:
            click.echo(f"✗ Watcher halted: {watcher.last_error}", err=True)
            ctx.exit(1)


@cli.command()
@click.pass_context
def summary(ctx):
    """Print cap table statistics as JSON."""
    settings = ctx.obj["settings"]
    with _database(ctx) as database:
        with database.read_session() as db:
            data = CapTableService(db, decimals=settings.token_decimals).summary()
    click.echo(json.dumps(data, indent=2))


@cli.command()
@click.option("--format", "fmt", type=click.Choice(EXPORT_FORMATS), default="csv")
@click.option("--block", "block_number", type=int, default=None, help="Historical block (default: current).")
@click.option("--output", type=click.Path(dir_okay=False, writable=True), default=None)
@click.pass_context
def export(ctx, fmt: str, block_number: Optional[int], output: Optional[str]):
    """Export the cap table as CSV or JSON."""
    settings = ctx.obj["settings"]
    with _database(ctx) as database:
        with database.read_session() as db:
            service = CapTableService(db, decimals=settings.token_decimals)
            try:
                table = service.cap_table() if block_number is None else service.snapshot_at(block_number)
            except IndexerError as e:
                click.echo(f"✗ Export failed: {e}", err=True)
                ctx.exit(1)
            content = export_cap_table(table, fmt, settings.token_decimals)
    if output:
        with open(output, "w", encoding="utf-8") as f:
            f.write(content)
        click.echo(f"✓ Exported {table.holder_count} holders to {output}")
    else:
        click.echo(content)


@cli.command()
@click.pass_context
def verify(ctx):
    """Replay stored events against the derived ledgers."""
    with _database(ctx) as database:
        with database.read_session() as db:
            mismatches = BalanceLedger(db).verify_balances()
            splits_ok, problem = CorporateActionLedger(db).verify_split_chain()
    for mismatch in mismatches:
        click.echo(
            f"✗ {mismatch['address']}: stored {mismatch['stored']}, replayed {mismatch['replayed']}", err=True
        )
    if not splits_ok:
        click.echo(f"✗ {problem}", err=True)
    if mismatches or not splits_ok:
        ctx.exit(1)
    click.echo("✓ Ledger matches the event store.")


if __name__ == "__main__":
    cli()
