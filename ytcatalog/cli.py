"""
ytcatalog CLI.

Usage:
    ytcatalog query UC... @handle            # Top videos across channels (rich table)
    ytcatalog query --all --top 20           # Every channel in channels.yaml
    ytcatalog query @handle --format json    # Result as JSON
    ytcatalog collections                    # List stored collections
    ytcatalog create-collection "Science"    # New empty collection
    ytcatalog add-channel COLLECTION_ID @handle  # Store a channel's recent uploads
    ytcatalog channels COLLECTION_ID         # Channels and video counts in a collection
    ytcatalog enrich COLLECTION_ID --wait    # Enrich a collection, follow progress
    ytcatalog status COLLECTION_ID           # Enrichment status for a collection
    ytcatalog refresh                        # Re-read every stored channel, merge new uploads
    ytcatalog refresh --dry-run              # Show what would be refreshed
    ytcatalog config                         # Verify configuration
"""

import time
from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from ytcatalog import __version__
from ytcatalog.config import XDG_CONFIG_PATH, ChannelConfig, Settings, get_settings
from ytcatalog.engine import (
    CatalogService,
    ChannelExistsError,
    ChannelNotFoundError,
    ChannelSyncResult,
    CollectionLibrary,
    CollectionNotFoundError,
    EnrichmentManager,
    collection_stats,
)
from ytcatalog.ingest.base import SourceError
from ytcatalog.ingest.youtube import YouTubeDataSource
from ytcatalog.logging_config import setup_logging
from ytcatalog.models import AggregateResult, CatalogQueryRequest, EnrichmentStatus
from ytcatalog.storage.store import JsonCatalogStore

FormatChoice = typer.Option(
    "rich",
    "--format",
    "-f",
    help="Output format: rich (terminal) or json",
)

console = Console()

# Global state
state = {"verbose": False}


def _load_settings() -> Settings:
    """Load settings with a user-friendly error on failure."""
    try:
        return get_settings()
    except Exception as e:
        console.print(
            "[red]Configuration error.[/red] "
            "Check your config file or environment variables.\n"
        )
        for error in getattr(e, "errors", lambda: [])():
            loc = ".".join(str(part) for part in error["loc"])
            console.print(f"  [red]✗[/red] {loc}: {error['msg']}")
        if not getattr(e, "errors", None):
            console.print(f"  [red]✗[/red] {e}")
        console.print("\n[dim]Run 'ytcatalog config' to verify.[/dim]")
        raise typer.Exit(code=1) from None


def _build_source(settings: Settings) -> YouTubeDataSource:
    if not settings.youtube_api_key:
        console.print("[red]Missing YOUTUBE_API_KEY.[/red]")
        console.print(f"[dim]Set it in {XDG_CONFIG_PATH / 'config.env'} or .env[/dim]")
        raise typer.Exit(code=1)
    return YouTubeDataSource(
        settings.youtube_api_key, timeout=settings.request_timeout_seconds
    )


def _load_channel_config(settings: Settings) -> ChannelConfig:
    try:
        return ChannelConfig(settings.channels_path)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1) from None


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        print(f"ytcatalog v{__version__}")
        raise typer.Exit()


_QUICK_REF_ITEMS = [
    ("query", "CHANNEL... [--top N] [--days N] [--all] [--format rich|json]"),
    ("collections", ""),
    ("create-collection", "NAME"),
    ("rename-collection", "COLLECTION_ID NAME"),
    ("delete-collection", "COLLECTION_ID [--yes]"),
    ("channels", "COLLECTION_ID"),
    ("add-channel", "COLLECTION_ID HANDLE [--days N]"),
    ("remove-channel", "COLLECTION_ID CHANNEL"),
    ("enrich", "COLLECTION_ID [--wait]"),
    ("status", "COLLECTION_ID [--json]"),
    ("refresh", "[--collection ID] [--dry-run]"),
    ("config", ""),
]


class _HelpGroup(typer.core.TyperGroup):
    """Custom group that adds a quick-reference section to --help."""

    def format_help(self, ctx, formatter):
        super().format_help(ctx, formatter)
        if not typer.core.HAS_RICH or self.rich_markup_mode is None:
            with formatter.section("Quick Reference"):
                formatter.write_dl(_QUICK_REF_ITEMS)
            return

        table = Table.grid(padding=(0, 2))
        table.add_column(style="bold cyan")
        table.add_column()
        for command, usage in _QUICK_REF_ITEMS:
            table.add_row(command, usage)
        console.print(Panel(table, title="Quick Reference", title_align="left", border_style="dim"))


app = typer.Typer(
    name="ytcatalog",
    help="ytcatalog - top videos across YouTube channels",
    no_args_is_help=True,
    add_completion=False,
    cls=_HelpGroup,
    rich_markup_mode="markdown",
)


@app.callback()
def main(
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose logging output."
    ),
    version: bool | None = typer.Option(
        None,
        "--version",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit."
    ),
):
    """
    ytcatalog - top videos across YouTube channels
    """
    state["verbose"] = verbose
    if verbose:
        setup_logging("DEBUG")
    else:
        setup_logging("WARNING")


def _format_views(views: int) -> str:
    if views >= 1_000_000:
        return f"{views / 1_000_000:.1f}M"
    if views >= 1_000:
        return f"{views / 1_000:.1f}K"
    return str(views)


def _print_result_rich(result: AggregateResult, request: CatalogQueryRequest) -> None:
    """Print a query result with Rich formatting."""
    console.print(Panel(
        f"[bold]Top {request.top} videos[/bold] from the last {request.days} days\n"
        f"{len(request.channel_ids)} channel(s), generated "
        f"{result.generated_at.strftime('%Y-%m-%d %H:%M:%S')} UTC",
        border_style="yellow" if result.partial else "blue",
    ))

    if result.videos:
        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 1))
        table.add_column("#", style="dim", justify="right")
        table.add_column("Title", style="white", max_width=50, no_wrap=False)
        table.add_column("Channel", style="dim", max_width=20)
        table.add_column("Views", style="green", justify="right")
        table.add_column("Published", style="dim")
        table.add_column("Video", style="cyan")

        for rank, video in enumerate(result.videos, start=1):
            title = video.title
            if len(title) > 50:
                title = title[:47] + "..."
            table.add_row(
                str(rank),
                title,
                video.channel_title or video.channel_id,
                _format_views(video.views),
                video.published_at.strftime("%Y-%m-%d"),
                video.video_id,
            )
        console.print()
        console.print(table)
    else:
        console.print("\n[dim]No videos inside the window[/dim]")

    failed = [status for status in result.per_channel_status if not status.success]
    if failed:
        console.print(f"\n[yellow]⚠ {len(failed)} channel(s) failed[/yellow]")
        for status in failed:
            console.print(f"    [yellow]• {status.channel_id}: {status.message}[/yellow]")


@app.command()
def query(
    channels: list[str] | None = typer.Argument(None, help="Channel ids or @handles"),
    top: int | None = typer.Option(None, "--top", "-n", min=1, help="Number of videos"),
    days: int | None = typer.Option(None, "--days", "-d", min=1, help="Lookback window"),
    all_channels: bool = typer.Option(
        False, "--all", help="Include every channel from channels.yaml"
    ),
    output_format: str = FormatChoice,
    timeout: float | None = typer.Option(None, "--timeout", help="Overall deadline in seconds"),
) -> None:
    """Rank the most viewed recent videos across channels."""
    settings = _load_settings()

    channel_ids = list(channels or [])
    if all_channels:
        channel_ids.extend(_load_channel_config(settings).get_channel_ids())
    if not channel_ids:
        console.print("[red]No channels given.[/red] Pass channel ids or use --all.")
        raise typer.Exit(code=1)

    request = CatalogQueryRequest(
        channel_ids=channel_ids,
        top=top or settings.default_top,
        days=days or settings.default_days,
    )
    source = _build_source(settings)
    try:
        service = CatalogService.from_settings(settings, source)
        if output_format == "json":
            result = service.query(request, timeout=timeout)
        else:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                console=console,
                transient=True,
            ) as progress:
                progress.add_task(f"Querying {len(request.channel_ids)} channels...", total=None)
                result = service.query(request, timeout=timeout)
    finally:
        source.close()

    if output_format == "json":
        print(result.model_dump_json(indent=2))
    else:
        _print_result_rich(result, request)


def _library(settings: Settings, source: YouTubeDataSource | None = None) -> CollectionLibrary:
    return CollectionLibrary.from_settings(settings, JsonCatalogStore(settings.store_path), source)


@app.command()
def collections() -> None:
    """List stored collections."""
    settings = _load_settings()
    stored = _library(settings).list_collections()

    if not stored:
        console.print(f"[yellow]No collections found in {settings.store_path}[/yellow]")
        return

    table = Table(title="Collections")
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="white")
    table.add_column("Channels", style="green", justify="right")
    table.add_column("Videos", style="green", justify="right")
    for collection in stored:
        table.add_row(
            collection.id,
            collection.name,
            str(len(collection.channels)),
            str(collection.video_count),
        )
    console.print(table)


@app.command("create-collection")
def create_collection(name: str = typer.Argument(..., help="Collection name")) -> None:
    """Create an empty collection."""
    settings = _load_settings()
    try:
        collection = _library(settings).create_collection(name)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1) from None
    console.print(f"[green]✓[/green] Created [bold]{collection.name}[/bold] ({collection.id})")


@app.command("rename-collection")
def rename_collection(
    collection_id: str = typer.Argument(..., help="Collection to rename"),
    name: str = typer.Argument(..., help="New name"),
) -> None:
    """Rename a collection."""
    settings = _load_settings()
    try:
        collection = _library(settings).rename_collection(collection_id, name)
    except (CollectionNotFoundError, ValueError) as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1) from None
    console.print(f"[green]✓[/green] Renamed {collection.id} to [bold]{collection.name}[/bold]")


@app.command("delete-collection")
def delete_collection(
    collection_id: str = typer.Argument(..., help="Collection to delete"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Delete a collection and everything stored in it."""
    settings = _load_settings()
    library = _library(settings)
    try:
        collection = library.get_collection(collection_id)
        if not yes:
            typer.confirm(
                f"Delete {collection.name} with {len(collection.channels)} channels?", abort=True
            )
        library.delete_collection(collection_id)
    except CollectionNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1) from None
    console.print(f"[green]✓[/green] Deleted {collection.name}")


@app.command()
def channels(collection_id: str = typer.Argument(..., help="Collection to list")) -> None:
    """List the channels stored in a collection."""
    settings = _load_settings()
    try:
        collection = _library(settings).get_collection(collection_id)
    except CollectionNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1) from None

    if not collection.channels:
        console.print(f"[yellow]No channels in {collection.name}[/yellow]")
        return

    table = Table(title=collection.name)
    table.add_column("Handle", style="cyan")
    table.add_column("Title", style="white")
    table.add_column("Videos", style="green", justify="right")
    table.add_column("Shorts", style="dim", justify="right")
    table.add_column("Enriched", style="green", justify="right")
    table.add_column("Updated", style="dim")
    for channel in collection.channels:
        shorts = sum(video.is_short for video in channel.videos)
        enriched = sum(video.is_enriched for video in channel.videos if not video.is_short)
        updated = channel.last_updated.strftime("%Y-%m-%d %H:%M") if channel.last_updated else "-"
        table.add_row(
            channel.handle or channel.id,
            channel.title or "",
            str(len(channel.videos) - shorts),
            str(shorts),
            str(enriched),
            updated,
        )
    console.print(table)


@app.command("add-channel")
def add_channel(
    collection_id: str = typer.Argument(..., help="Collection to add to"),
    handle: str = typer.Argument(..., help="@handle or channel id"),
    days: int | None = typer.Option(None, "--days", "-d", min=1, help="How far back to read"),
) -> None:
    """Add a channel to a collection and store its recent uploads."""
    settings = _load_settings()
    source = _build_source(settings)
    try:
        with console.status(f"Reading uploads for {handle}..."):
            channel = _library(settings, source).add_channel(collection_id, handle, days)
    except (CollectionNotFoundError, ChannelExistsError, ValueError, SourceError) as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1) from None
    finally:
        source.close()

    shorts = sum(video.is_short for video in channel.videos)
    console.print(
        f"[green]✓[/green] Added [bold]{channel.handle}[/bold]: "
        f"{len(channel.videos) - shorts} videos, {shorts} shorts"
    )


@app.command("remove-channel")
def remove_channel(
    collection_id: str = typer.Argument(..., help="Collection to remove from"),
    channel: str = typer.Argument(..., help="@handle or stored channel id"),
) -> None:
    """Remove a channel and its stored videos from a collection."""
    settings = _load_settings()
    try:
        removed = _library(settings).remove_channel(collection_id, channel)
    except (CollectionNotFoundError, ChannelNotFoundError) as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1) from None
    console.print(f"[green]✓[/green] Removed {removed.handle or removed.id}")


def _status_table(status: EnrichmentStatus) -> Table:
    table = Table(title="Enrichment Status")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Status", status.status.value)
    table.add_row("Enriched", f"{status.enriched_videos}/{status.total_videos}")
    table.add_row("Shorts (excluded)", str(status.shorts_count))
    table.add_row("Failed", str(status.failed))
    if status.rate_limited:
        table.add_row("Rate limited", "[yellow]yes[/yellow]")
    return table


@app.command()
def enrich(
    collection_id: str = typer.Argument(..., help="Collection to enrich"),
    wait: bool = typer.Option(False, "--wait", help="Show live progress until done"),
) -> None:
    """Fetch publish dates and descriptions for a collection's videos."""
    settings = _load_settings()
    store = JsonCatalogStore(settings.store_path)
    source = _build_source(settings)
    manager = EnrichmentManager.from_settings(settings, store, source)

    try:
        result = manager.start(collection_id)
    except CollectionNotFoundError as e:
        source.close()
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1) from None

    if not result.started:
        console.print(f"[yellow]{result.message}[/yellow]")
        source.close()
        return

    job = result.job
    console.print(
        f"Enriching [bold]{job.total}[/bold] videos "
        f"([dim]{job.skipped} skipped[/dim])"
    )
    if not wait:
        # Job threads are daemons, so the command blocks either way
        manager.wait(collection_id)
        source.close()
        _report_enrichment(manager, collection_id)
        return

    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("{task.completed}/{task.total}"),
            console=console,
        ) as progress:
            task = progress.add_task("Enriching...", total=job.total or None)
            while job.is_running:
                progress.update(task, completed=job.enriched + job.failed)
                time.sleep(0.2)
            progress.update(task, completed=job.enriched + job.failed)
        manager.wait(collection_id)
    finally:
        source.close()

    _report_enrichment(manager, collection_id)


def _report_enrichment(manager: EnrichmentManager, collection_id: str) -> None:
    job = manager.get_job(collection_id)
    console.print(_status_table(manager.get_status(collection_id)))
    if job.rate_limited:
        console.print("[yellow]⚠ Stopped early due to rate limiting. Run again later.[/yellow]")
        raise typer.Exit(code=2)
    if job.error:
        console.print(f"[red]✗ {job.error}[/red]")
        raise typer.Exit(code=1)


@app.command()
def status(
    collection_id: str = typer.Argument(..., help="Collection to inspect"),
    json_format: bool = typer.Option(False, "--json", help="Output status as JSON"),
) -> None:
    """Show enrichment statistics for a collection."""
    settings = _load_settings()
    store = JsonCatalogStore(settings.store_path)

    collection = store.load().find_collection(collection_id)
    if collection is None:
        console.print(f"[red]Collection not found: {collection_id}[/red]")
        raise typer.Exit(code=1)

    stats = collection_stats(collection)
    enrichment_status = EnrichmentStatus(
        total=stats["total_videos"],
        enriched=stats["enriched_videos"],
        skipped=stats["shorts_count"],
        **stats,
    )

    if json_format:
        print(enrichment_status.model_dump_json(indent=2))
        return

    console.print(_status_table(enrichment_status))
    console.print(f"\n[dim]{collection.name}: {len(collection.channels)} channels[/dim]")


@app.command()
def refresh(
    collection_id: str | None = typer.Option(
        None, "--collection", "-c", help="Only refresh this collection"
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show the plan without fetching"),
) -> None:
    """Re-read stored channels and merge new uploads, keeping enrichment data."""
    settings = _load_settings()

    if dry_run:
        try:
            plans = _library(settings).plan_sync(collection_id)
        except CollectionNotFoundError as e:
            console.print(f"[red]{e}[/red]")
            raise typer.Exit(code=1) from None
        if not plans:
            console.print("[yellow]No channels found to refresh.[/yellow]")
            return
        table = Table(title="Refresh plan (dry run)")
        table.add_column("Collection", style="magenta")
        table.add_column("Channel", style="cyan")
        table.add_column("Videos", style="green", justify="right")
        table.add_column("Oldest", style="dim", justify="right")
        table.add_column("Window", style="dim", justify="right")
        for plan in plans:
            table.add_row(
                plan.collection_name,
                plan.handle,
                str(plan.video_count),
                f"~{plan.oldest_days}d",
                f"{plan.max_age_days}d",
            )
        console.print(table)
        return

    source = _build_source(settings)
    library = _library(settings, source)
    try:
        plans = library.plan_sync(collection_id)
        if not plans:
            console.print("[yellow]No channels found to refresh.[/yellow]")
            return

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("{task.completed}/{task.total}"),
            console=console,
        ) as progress:
            task = progress.add_task("Refreshing channels...", total=len(plans))

            def report(result: ChannelSyncResult) -> None:
                progress.advance(task)
                if result.ok:
                    progress.console.print(
                        f"[green]✓[/green] {result.plan.handle} [dim]{result.fetched} fetched, "
                        f"{result.total} total ({result.added:+d} new)[/dim]"
                    )
                else:
                    progress.console.print(f"[red]✗[/red] {result.plan.handle}: {result.error}")

            results = library.sync(collection_id, on_result=report)
    except CollectionNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1) from None
    finally:
        source.close()

    failed = sum(not result.ok for result in results)
    console.print(f"\n[bold]Refreshed:[/bold] {len(results) - failed}")
    if failed:
        console.print(f"[red]Failed:[/red] {failed}")
        raise typer.Exit(code=1)


@app.command()
def config() -> None:
    """Verify configuration and show settings."""
    console.print("[bold]Verifying configuration...[/bold]\n")

    console.print("[dim]Config search paths:[/dim]")
    xdg_config = XDG_CONFIG_PATH / "config.env"
    xdg_status = "[green](exists)[/green]" if xdg_config.exists() else "[dim](not found)[/dim]"
    console.print(f"  1. {xdg_config} {xdg_status}")
    local_env = Path(".env")
    local_status = "[green](exists)[/green]" if local_env.exists() else "[dim](not found)[/dim]"
    console.print(f"  2. {local_env.absolute()} {local_status}")
    console.print()

    errors = []
    settings = None

    try:
        settings = get_settings()
        console.print("[green]✓[/green] Settings loaded")

        if settings.youtube_api_key:
            key_preview = settings.youtube_api_key[:6] + "..."
            console.print(f"  YouTube API key: {key_preview}")
        else:
            errors.append("Missing YOUTUBE_API_KEY")

        console.print(
            f"  Concurrency: {settings.metadata_concurrency} per channel, "
            f"{settings.channel_concurrency} channels"
        )
        console.print(
            f"  Cache TTL: videos {settings.video_cache_ttl_hours}h, "
            f"queries {settings.query_cache_ttl_minutes}m"
        )
        console.print(
            f"  Enrichment: {settings.enrich_concurrency} workers, "
            f"{settings.enrich_delay_seconds}s delay"
        )

    except Exception as e:
        errors.append(f"Settings error: {e}")

    console.print()
    if settings is not None:
        try:
            channel_config = ChannelConfig(settings.channels_path)
            channels = channel_config.channels
            if channels:
                console.print(f"[green]✓[/green] Channels configured: {len(channels)}")
                for name, cfg in list(channels.items())[:5]:
                    marker = " [dim](refresh)[/dim]" if cfg.get("refresh") else ""
                    console.print(f"  • {name}: {cfg['id']}{marker}")
                if len(channels) > 5:
                    console.print(f"  ... and {len(channels) - 5} more")
            else:
                console.print(f"[dim]No channels configured in {settings.channels_path}[/dim]")
        except Exception as e:
            errors.append(f"Channels config error: {e}")

        console.print()
        console.print(f"[green]✓[/green] Config dir: {settings.config_dir}")
        console.print(f"[green]✓[/green] Data dir: {settings.data_dir}")
        console.print(f"[green]✓[/green] Store: {settings.store_path}")
    else:
        console.print(
            "[yellow]⚠ Skipping channel and directory checks (settings not loaded)[/yellow]"
        )

    console.print()
    if errors:
        console.print("[red]Configuration errors:[/red]")
        for error in errors:
            console.print(f"  [red]✗[/red] {error}")
        raise typer.Exit(code=1)
    else:
        console.print("[green]✓ Configuration valid[/green]")


def cli() -> None:
    """Entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[dim]Aborted.[/dim]")
        raise SystemExit(130) from None
    except Exception as e:
        console.print(f"\n[red]Unexpected error:[/red] {e}")
        console.print("[dim]Run with --verbose for more details.[/dim]")
        raise SystemExit(1) from e


if __name__ == "__main__":
    cli()
