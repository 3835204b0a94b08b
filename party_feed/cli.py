"""
Command-line interface for party-feed.

Provides commands to run scrape runs and timeline fan-out, manage source
configurations, initialize the database, and run diagnostic checks.

Usage:
    party-feed init-db                 # Create tables
    party-feed scrape --type sns       # Run one scrape run
    party-feed sources list            # Show configured sources
    party-feed validate-feed URL       # Check a candidate feed
    party-feed serve                   # Start the HTTP API
"""

import asyncio
import json
import sys

import click

from party_feed.config.settings import get_settings
from party_feed.observability.logging import setup_logging
from party_feed.observability.metrics import get_metrics

RUN_TYPES = ("news", "events", "sns", "all")


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def main(debug: bool) -> None:
    """Party Feed - party content ingestion and timeline fan-out."""
    setup_logging("DEBUG" if debug else None)


def _print_run(result) -> None:
    color = "green" if result.success else "red"
    click.echo(click.style(f"\n{result.message}", fg=color))
    click.echo("-" * 40)
    for name, count in result.counts.items():
        click.echo(f"  {name}: {count} new")
    click.echo(f"  total: {result.total}")
    if result.timeline_entries is not None:
        click.echo(f"  timeline entries: {result.timeline_entries}")
    for error in result.source_errors:
        click.echo(click.style(f"  ✗ {error.source}: {error.error_type}: {error.message}", fg="red"))
    for warning in result.warnings:
        click.echo(click.style(f"  ! {warning}", fg="yellow"))
    click.echo("-" * 40)


def _run_orchestrator(call) -> None:
    """Connect, run one orchestrator call, print the result and exit with its status."""
    from party_feed.services.scrape_orchestrator import ScrapeOrchestrator
    from party_feed.storage.database import Database

    async def run():
        async with Database() as db:
            return await call(ScrapeOrchestrator(db))

    result = asyncio.run(run())
    _print_run(result)
    sys.exit(0 if result.success else 1)


@main.command("init-db")
def init_db() -> None:
    """Initialize the database schema."""
    from party_feed.ingestion.deduplication import DedupStore
    from party_feed.sources.repository import SourceConfigRepository
    from party_feed.storage.database import Database
    from party_feed.timeline.repository import TimelineRepository

    async def run():
        async with Database() as db:
            # posts reference source_configs, timeline entries reference posts
            await SourceConfigRepository(db).create_table()
            await DedupStore(db).create_tables()
            await TimelineRepository(db).create_tables()

        click.echo("Database initialized successfully")

    asyncio.run(run())


@main.command()
@click.option(
    "--type",
    "run_type",
    default="all",
    type=click.Choice(RUN_TYPES, case_sensitive=False),
    help="Categories to scrape",
)
@click.option("--json", "as_json", is_flag=True, help="Print the raw result as JSON")
def scrape(run_type: str, as_json: bool) -> None:
    """Run one scrape run and fan out new posts."""
    from party_feed.services.scrape_orchestrator import ScrapeOrchestrator
    from party_feed.storage.database import Database

    async def run():
        async with Database() as db:
            return await ScrapeOrchestrator(db).run(run_type)

    result = asyncio.run(run())
    if as_json:
        click.echo(json.dumps(result.to_response(), ensure_ascii=False, indent=2))
    else:
        _print_run(result)
    sys.exit(0 if result.success else 1)


@main.command("scrape-politicians")
@click.option("--politician-id", default=None, help="Only this politician's accounts")
def scrape_politicians(politician_id: str | None) -> None:
    """Scrape politician accounts."""
    _run_orchestrator(lambda o: o.scrape_politicians(politician_id))


@main.command("scrape-source")
@click.argument("source_id", type=int)
def scrape_source(source_id: int) -> None:
    """Scrape a single configured source."""
    from party_feed.sources.service import SourceNotFound

    try:
        _run_orchestrator(lambda o: o.scrape_source(source_id))
    except SourceNotFound as e:
        raise click.ClickException(str(e))


@main.command("validate-feed")
@click.argument("url")
@click.option("--platform", default=None, help="Expected platform (twitter, youtube, ...)")
def validate_feed(url: str, platform: str | None) -> None:
    """Fetch a feed URL and report format, item count and platform flags."""
    from party_feed.ingestion.http_client import FetchError
    from party_feed.ingestion.validator import InvalidFormat
    from party_feed.sources.service import validate_feed_url

    try:
        validation = asyncio.run(validate_feed_url(url, platform))
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--platform")
    except (FetchError, InvalidFormat) as e:
        click.echo(click.style(f"✗ {type(e).__name__}: {e}", fg="red"))
        sys.exit(1)

    click.echo(json.dumps(validation.to_dict(), ensure_ascii=False, indent=2))
    if validation.warnings:
        sys.exit(2)


@main.command()
def fanout() -> None:
    """Fan out stored posts that have not reached user timelines yet."""
    from party_feed.storage.database import Database
    from party_feed.timeline.fanout import TimelineFanoutEngine

    async def run():
        async with Database() as db:
            return await TimelineFanoutEngine(db).fan_out()

    result = asyncio.run(run())
    click.echo(f"Posts considered: {result.posts_considered}")
    click.echo(f"Users considered: {result.users_considered}")
    for domain, count in sorted(result.entries_created.items()):
        click.echo(f"  {domain}: {count} entries")
    for error in result.plan_limit_errors:
        click.echo(click.style(f"  ! {error}", fg="yellow"))


# ── Source admin ────────────────────────────────────────────────


@main.group()
def sources() -> None:
    """Manage scrape-target configurations."""


@sources.command("list")
@click.option("--scope", type=click.Choice(["party_hq", "politician", "prefecture"]), default=None)
@click.option("--owner", "owner_ref", default=None, help="Politician id or prefecture code")
@click.option("--active-only", is_flag=True, help="Only active sources")
def sources_list(scope: str | None, owner_ref: str | None, active_only: bool) -> None:
    """List configured sources."""
    from party_feed.ingestion.schemas import Scope
    from party_feed.sources.service import SourceConfigRegistry
    from party_feed.storage.database import Database

    async def run():
        async with Database() as db:
            registry = SourceConfigRegistry(db)
            return await registry.list_sources(
                scope=Scope(scope) if scope else None,
                owner_ref=owner_ref,
                active_only=active_only,
            )

    rows = asyncio.run(run())
    if not rows:
        click.echo("No sources configured")
        return
    for s in rows:
        state = "removed" if s.is_removed else ("active" if s.is_active else "inactive")
        feed = s.rss_url or s.scraping_url or "-"
        click.echo(f"{s.id:>5}  {state:<8}  {s.label}  {feed}")


@sources.command("add")
@click.option("--scope", required=True, type=click.Choice(["party_hq", "politician", "prefecture"]))
@click.option("--platform", required=True, help="Platform name or alias")
@click.option("--account-url", required=True)
@click.option("--owner", "owner_ref", default=None, help="Politician id or prefecture code")
@click.option("--name", "account_name", default="", help="Display name (derived from the URL if omitted)")
@click.option("--rss-url", default=None)
@click.option("--scraping-url", default=None)
@click.option("--rss-feed-id", default=None, help="RSS bridge feed id for X/Twitter accounts")
@click.option("--channel-id", default=None, help="YouTube channel id")
@click.option("--prefecture", default=None, help="Prefecture code for politician sources")
@click.option("--inactive", is_flag=True, help="Register without scraping it yet")
def sources_add(
    scope: str,
    platform: str,
    account_url: str,
    owner_ref: str | None,
    account_name: str,
    rss_url: str | None,
    scraping_url: str | None,
    rss_feed_id: str | None,
    channel_id: str | None,
    prefecture: str | None,
    inactive: bool,
) -> None:
    """Register a new source."""
    from party_feed.ingestion.schemas import Platform, Scope
    from party_feed.sources.schemas import SourceConfig
    from party_feed.sources.service import Conflict, SourceConfigRegistry
    from party_feed.storage.database import Database

    try:
        source = SourceConfig(
            scope=Scope(scope),
            platform=Platform.parse(platform),
            account_url=account_url,
            owner_ref=owner_ref,
            account_name=account_name,
            rss_url=rss_url,
            scraping_url=scraping_url,
            rss_feed_id=rss_feed_id,
            prefecture=prefecture,
            is_active=not inactive,
        )
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--platform")

    async def run():
        async with Database() as db:
            return await SourceConfigRegistry(db).create(source, channel_id=channel_id)

    try:
        created = asyncio.run(run())
    except (Conflict, ValueError) as e:
        raise click.ClickException(str(e))

    click.echo(click.style(f"✓ Created source {created.id}: {created.label}", fg="green"))
    if created.rss_url:
        click.echo(f"  feed: {created.rss_url}")


@sources.command("update")
@click.argument("source_id", type=int)
@click.option("--platform", default=None)
@click.option("--account-url", default=None)
@click.option("--name", "account_name", default=None)
@click.option("--rss-url", default=None)
@click.option("--scraping-url", default=None)
@click.option("--rss-feed-id", default=None)
@click.option("--channel-id", default=None)
@click.option("--prefecture", default=None)
@click.option("--active/--inactive", "is_active", default=None)
def sources_update(source_id: int, channel_id: str | None, **options) -> None:
    """Update fields of an existing source."""
    from party_feed.sources.service import Conflict, SourceConfigRegistry, SourceNotFound
    from party_feed.storage.database import Database

    changes = {k: v for k, v in options.items() if v is not None}
    if not changes and channel_id is None:
        raise click.UsageError("Nothing to update")

    async def run():
        async with Database() as db:
            return await SourceConfigRegistry(db).update(source_id, channel_id=channel_id, **changes)

    try:
        updated = asyncio.run(run())
    except (SourceNotFound, Conflict, ValueError) as e:
        raise click.ClickException(str(e))

    click.echo(click.style(f"✓ Updated source {updated.id}: {updated.label}", fg="green"))


@sources.command("remove")
@click.argument("source_id", type=int)
@click.option("--purge", is_flag=True, help="Delete the row instead of soft removal")
def sources_remove(source_id: int, purge: bool) -> None:
    """Remove a source; it stops being scraped but keeps its history."""
    from party_feed.sources.service import Conflict, SourceConfigRegistry, SourceNotFound
    from party_feed.storage.database import Database

    async def run():
        async with Database() as db:
            await SourceConfigRegistry(db).delete(source_id, purge=purge)

    try:
        asyncio.run(run())
    except (SourceNotFound, Conflict) as e:
        raise click.ClickException(str(e))

    click.echo(f"{'Purged' if purge else 'Removed'} source {source_id}")


# ── Services ────────────────────────────────────────────────────


@main.command()
def health() -> None:
    """Check database connectivity."""
    import structlog

    logger = structlog.get_logger()

    async def check() -> bool:
        from party_feed.storage.database import Database

        try:
            async with Database() as db:
                return await db.health_check()
        except Exception as e:
            logger.error("Postgres health check failed", error=str(e))
            return False

    healthy = asyncio.run(check())
    icon = "✓" if healthy else "✗"
    color = "green" if healthy else "red"
    click.echo(click.style(f"  {icon} postgres: {healthy}", fg=color))
    sys.exit(0 if healthy else 1)


@main.command()
@click.option("--host", default=None, help="API server host")
@click.option("--port", default=None, type=int, help="API server port")
@click.option("--reload", is_flag=True, help="Enable auto-reload (dev only)")
@click.option("--metrics-port", default=None, type=int, help="Metrics server port")
def serve(host: str | None, port: int | None, reload: bool, metrics_port: int | None) -> None:
    """Start the trigger and admin API server."""
    import uvicorn

    settings = get_settings()
    host = host or settings.api_host
    port = port or settings.api_port
    metrics_port = metrics_port or settings.metrics_port

    get_metrics().start_server(port=metrics_port)

    click.echo(f"Starting API server on {host}:{port}")
    click.echo(f"Metrics available on http://localhost:{metrics_port}/metrics")
    click.echo(f"API docs available on http://localhost:{port}/docs")

    uvicorn.run(
        "party_feed.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level="info",
    )


if __name__ == "__main__":
    main()
