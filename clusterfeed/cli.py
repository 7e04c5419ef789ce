"""
ClusterFeed Command Line
=======================

Usage:
    clusterfeed run                          # Merge every cluster in the input dir
    clusterfeed run --cluster news --cluster tech
    clusterfeed check-config                 # Show effective configuration
    clusterfeed resolve clusters/news.txt    # Dry-run source resolution
"""

import asyncio
import signal
import sys
from pathlib import Path
from typing import List, Optional
from urllib.parse import quote_plus

import click
from rich.console import Console
from rich.table import Table

from .config.settings import ClusterFeedSettings, get_settings
from .ingestion.resolver import PlaceholderResolver, read_source_lines
from .models import Cluster
from .processing.pipeline import ClusterOrchestrator, ClusterOutcome, discover_clusters
from .utils.exceptions import ClusterFeedError, SourceResolutionError
from .utils.logging import configure_application_logging


console = Console(stderr=True)

_STATUS_STYLE = {
    "written": "green",
    "empty": "yellow",
    "missing_input": "yellow",
    "unreadable_input": "red",
    "failed": "red",
}


def _load_settings(debug: bool) -> ClusterFeedSettings:
    settings = get_settings()
    if debug:
        settings = settings.model_copy(update={"debug": True})
    configure_application_logging(
        log_level=settings.get_effective_log_level(),
        log_file=settings.logging.file_path,
        enable_console=settings.logging.console_logging,
        structured_logging=settings.logging.structured_logging,
        max_file_size_mb=settings.logging.max_file_size_mb,
        backup_count=settings.logging.backup_count,
    )
    return settings


@click.group(invoke_without_command=True)
@click.option('--debug', is_flag=True, help='Enable debug logging')
@click.pass_context
def cli(ctx, debug):
    """ClusterFeed - merge many syndication feeds into one feed per cluster."""
    ctx.ensure_object(dict)
    ctx.obj['debug'] = debug

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command()
@click.option('--input-dir', type=click.Path(file_okay=False), help='Directory of cluster source lists')
@click.option('--output-dir', type=click.Path(file_okay=False), help='Directory for merged RSS documents')
@click.option('--titles-dir', type=click.Path(file_okay=False), help='Directory of channel title overrides')
@click.option('--cluster', 'cluster_names', multiple=True, help='Run only the named cluster(s)')
@click.pass_context
def run(ctx, input_dir, output_dir, titles_dir, cluster_names):
    """Fetch, merge and write every cluster."""
    try:
        settings = _load_settings(ctx.obj.get('debug', False))
    except ClusterFeedError as e:
        console.print(f"[bold red]❌ Configuration error: {e}[/bold red]")
        sys.exit(1)

    overrides = {
        key: value for key, value in (
            ("input_dir", input_dir),
            ("output_dir", output_dir),
            ("titles_dir", titles_dir),
        ) if value
    }
    if overrides:
        settings = settings.model_copy(
            update={"output": settings.output.model_copy(update=overrides)}
        )

    try:
        clusters = discover_clusters(settings.output, cluster_names)
    except ClusterFeedError as e:
        console.print(f"[bold red]❌ {e}[/bold red]")
        sys.exit(1)

    console.print(f"[bold blue]📡 Merging {len(clusters)} cluster(s)[/bold blue]")
    orchestrator = ClusterOrchestrator(settings)

    try:
        outcomes = asyncio.run(_run_until_signalled(orchestrator, clusters))
    except (KeyboardInterrupt, asyncio.CancelledError):
        console.print("\n[yellow]👋 Interrupted; finished clusters were kept[/yellow]")
        sys.exit(130)

    console.print(_outcome_table(outcomes))


async def _run_until_signalled(
    orchestrator: ClusterOrchestrator, clusters: List[Cluster]
) -> List[ClusterOutcome]:
    """Run the orchestrator, cancelling in-flight fetches on SIGINT/SIGTERM."""
    loop = asyncio.get_running_loop()
    task = asyncio.current_task()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, task.cancel)
        except (NotImplementedError, RuntimeError):
            # Windows event loops have no signal handlers; Ctrl+C still raises KeyboardInterrupt
            break
    return await orchestrator.run(clusters)


def _outcome_table(outcomes: List[ClusterOutcome]) -> Table:
    table = Table(title="Cluster Results")
    table.add_column("Cluster", style="cyan")
    table.add_column("Status")
    table.add_column("Sources", justify="right")
    table.add_column("Items", justify="right")
    table.add_column("Attempts", justify="right")
    table.add_column("Time", justify="right")
    table.add_column("Details")

    for outcome in outcomes:
        style = _STATUS_STYLE.get(outcome.status.value, "white")
        details = outcome.error or str(outcome.cluster.output_path)
        if outcome.rejections:
            dropped = ", ".join(f"{code}×{n}" for code, n in sorted(outcome.rejections.items()))
            details = f"{details} (dropped {dropped})"
        table.add_row(
            outcome.cluster.name,
            f"[{style}]{outcome.status.value}[/{style}]",
            f"{outcome.sources_fetched}/{outcome.sources_resolved}/{outcome.sources_total}",
            str(outcome.item_count),
            str(outcome.fetch_attempts),
            f"{outcome.duration:.1f}s",
            details,
        )
    return table


@cli.command()
@click.pass_context
def check_config(ctx):
    """Validate configuration and show the effective values."""
    console.print("[bold blue]🔧 Checking ClusterFeed Configuration[/bold blue]")

    try:
        settings = _load_settings(ctx.obj.get('debug', False))
        warnings = settings.validate_configuration()
    except ClusterFeedError as e:
        console.print(f"[bold red]❌ Configuration error: {e}[/bold red]")
        sys.exit(1)

    table = Table(title="Configuration")
    table.add_column("Option", style="cyan")
    table.add_column("Value", style="green")
    for key, value in settings.masked().items():
        table.add_row(key, value)
    console.print(table)

    for warning in warnings:
        console.print(f"[yellow]⚠️  {warning}[/yellow]")

    if not settings.origin.enabled:
        console.print("[yellow]No protected origin configured: templates, proxies and basic-auth are disabled[/yellow]")

    console.print("[bold green]✅ Configuration is valid[/bold green]")


@cli.command()
@click.argument('source_file', type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def resolve(ctx, source_file):
    """Show how each line of a source list resolves, without fetching."""
    try:
        settings = _load_settings(ctx.obj.get('debug', False))
    except ClusterFeedError as e:
        console.print(f"[bold red]❌ Configuration error: {e}[/bold red]")
        sys.exit(1)

    resolver = PlaceholderResolver(settings.origin)
    sources = read_source_lines(Path(source_file).read_text(encoding="utf-8"))

    table = Table(title=f"Sources in {source_file}")
    table.add_column("Line", justify="right", style="cyan")
    table.add_column("URL")
    table.add_column("Label")
    table.add_column("Status")

    for source in sources:
        try:
            resolved = resolver.resolve_strict(source.raw_line)
        except SourceResolutionError as e:
            kind = "config gap" if e.is_configuration_gap else "dropped"
            table.add_row(str(source.line_number), source.raw_line, "", f"[red]{kind}: {e}[/red]")
            continue
        table.add_row(
            str(source.line_number),
            _mask_secret(resolved.url, settings.origin.api_key),
            resolved.label or "",
            "[green]ok[/green]",
        )

    console.print(table)


def _mask_secret(url: str, secret: Optional[str]) -> str:
    if secret:
        for form in (secret, quote_plus(secret)):
            url = url.replace(form, "****")
    return url


def main() -> None:
    try:
        cli()
    except KeyboardInterrupt:
        console.print("\n[yellow]👋 ClusterFeed interrupted by user[/yellow]")
        sys.exit(130)


if __name__ == "__main__":
    main()
