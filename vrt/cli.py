"""CLI entry point for the visual regression runner."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from vrt.errors import ShardInputError
from vrt.models.config import DiffMethod, Environment, FrameworkConfig, IsolationMode
from vrt.orchestrator import Orchestrator

console = Console()

DEFAULT_CONFIG = "vrt-config.json"


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def _load_config(config: str) -> FrameworkConfig:
    try:
        return FrameworkConfig.load(config)
    except FileNotFoundError:
        console.print(f"[red]Config file not found: {config}[/red]")
        console.print("Run 'vrt init' to create a default config.")
        sys.exit(1)


config_option = click.option("--config", "-c", default=DEFAULT_CONFIG, envvar="VRT_CONFIG",
                             help="Config file path")


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool) -> None:
    """Cross-environment visual regression testing"""
    setup_logging(verbose)


@cli.command()
@click.option("--baseline-url", prompt="Baseline base URL", help="Base URL of the reference environment")
@click.option("--comparison-url", prompt="Comparison base URL", help="Base URL of the environment under test")
@click.option("--output", "-o", default=DEFAULT_CONFIG, help="Config file to write")
def init(baseline_url: str, comparison_url: str, output: str) -> None:
    """Create a default configuration file."""
    config_path = Path(output)
    if config_path.exists():
        if not click.confirm(f"{config_path} already exists. Overwrite?"):
            return

    cfg = FrameworkConfig()
    cfg.urls.baseline = baseline_url
    cfg.urls.comparison = comparison_url
    cfg.save(config_path)
    console.print(f"[green]Created {config_path}[/green]")
    console.print("\nAdd URL pairs to fixtures/urls.json (or 'vrt import-csv'), then run:")
    console.print("  [blue]vrt shard[/blue]")
    console.print("  [blue]vrt run --env baseline --shard 1[/blue]")


@cli.command()
@click.option("--urls", "urls_file", type=click.Path(path_type=Path), default=None,
              help="URL pair file (default: <fixtures>/urls.json)")
@config_option
def shard(urls_file: Path | None, config: str) -> None:
    """Split the URL corpus into shard files and a manifest."""
    cfg = _load_config(config)
    try:
        shards, manifest = Orchestrator(cfg).shard(urls_file)
    except ShardInputError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    table = Table(title="Shards")
    table.add_column("Shard", style="bold")
    table.add_column("URLs", justify="right")
    table.add_column("File")
    for s in shards:
        table.add_row(s.shard_id, str(len(s.records)), s.file_name)
    console.print(table)
    console.print(f"Manifest: [blue]{manifest}[/blue]")


@cli.command()
@config_option
def manifest(config: str) -> None:
    """Print the shard ids as a JSON list, for a CI job matrix."""
    cfg = _load_config(config)
    try:
        chunks = Orchestrator(cfg).shard_ids()
    except ShardInputError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    click.echo(json.dumps(chunks))


@cli.command()
@click.option("--env", "environment", envvar="APP", required=True,
              type=click.Choice([e.value for e in Environment]), help="Environment to capture")
@click.option("--shard", "shard_id", envvar="URLS_FILE", required=True, help="Shard id to run")
@click.option("--profile", "profiles", envvar="PROJECT", multiple=True,
              help="Device profile (repeatable, default: every configured profile)")
@click.option("--mode", envvar="TEST_MODE", default=None,
              type=click.Choice([m.value for m in IsolationMode], case_sensitive=False),
              help="Content isolation mode")
@click.option("--diff-method", envvar="IMAGE_DIFF_METHOD", default=None,
              type=click.Choice([m.value for m in DiffMethod], case_sensitive=False),
              help="Similarity algorithm")
@click.option("--baseline-url", envvar="BASELINE_URL", default=None, help="Override the baseline base URL")
@click.option("--comparison-url", envvar="COMPARISON_URL", default=None, help="Override the comparison base URL")
@click.option("--append-canonical", is_flag=True, help="Also append results to test-results.json")
@click.option("--headed", is_flag=True, help="Show the browser")
@config_option
def run(
    environment: str,
    shard_id: str,
    profiles: tuple[str, ...],
    mode: str | None,
    diff_method: str | None,
    baseline_url: str | None,
    comparison_url: str | None,
    append_canonical: bool,
    headed: bool,
    config: str,
) -> None:
    """Capture one shard in the baseline or comparison environment."""
    cfg = _load_config(config)
    if mode:
        cfg.page_elements.mode = IsolationMode(mode.upper())
    if diff_method:
        cfg.image_diff_method = DiffMethod(diff_method.upper())
    if baseline_url:
        cfg.urls.baseline = baseline_url
    if comparison_url:
        cfg.urls.comparison = comparison_url

    # URLS_FILE may hold the shard file name rather than its id
    shard_id = shard_id.removeprefix("urls-").removesuffix(".json")
    profile_names = list(profiles) or [p.name for p in cfg.profiles]

    try:
        summaries = Orchestrator(cfg).run_shard(
            Environment(environment), shard_id, profile_names,
            append_canonical=append_canonical, headless=not headed,
        )
    except (ShardInputError, ValueError) as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    console.print(f"\n[bold green]Shard {shard_id} complete ({environment})[/bold green]")
    table = Table(title="Profiles")
    table.add_column("Profile", style="bold")
    table.add_column("Attempted", justify="right")
    table.add_column("Completed", justify="right")
    table.add_column("Failed", justify="right")
    table.add_column("Results", justify="right")
    table.add_column("Failure")
    for s in summaries:
        failure = ""
        if s.failure_type:
            failure = f"[red]{s.failure_type.value}[/red] {s.failure_path or ''}"
        table.add_row(s.profile, str(s.attempted), str(s.completed),
                      f"[red]{s.failed}[/red]" if s.failed else "0", str(s.results), failure)
    console.print(table)


@cli.command()
@config_option
def merge(config: str) -> None:
    """Merge shard result files into test-results.json."""
    cfg = _load_config(config)
    orchestrator = Orchestrator(cfg)
    merged = orchestrator.merge_results()
    console.print(f"[green]Merged {len(merged.results)} result(s)[/green] into "
                  f"[blue]{orchestrator.aggregator.canonical_path}[/blue]")


@cli.command("merge-failures")
@config_option
def merge_failures(config: str) -> None:
    """Combine failure records into failed-runners.json."""
    cfg = _load_config(config)
    path, merged = Orchestrator(cfg).merge_failures()
    if path is None:
        console.print("[yellow]No failed runner files found[/yellow]")
        return
    console.print(f"Merged {merged.total_failures} failure record(s) into [blue]{path}[/blue]")


@cli.command("merge-limits")
@config_option
def merge_limits(config: str) -> None:
    """Combine oversize-page advisories into page-limit-exceed.json."""
    cfg = _load_config(config)
    path, merged = Orchestrator(cfg).merge_limits()
    console.print(f"Merged {len(merged)} advisory(ies) into [blue]{path}[/blue]")


@cli.command("missed-urls")
@click.option("--urls", "urls_file", type=click.Path(path_type=Path), default=None,
              help="URL pair file (default: <fixtures>/urls.json)")
@config_option
def missed_urls(urls_file: Path | None, config: str) -> None:
    """List URL pairs that have no result."""
    cfg = _load_config(config)
    try:
        report = Orchestrator(cfg).missed_urls(urls_file)
    except (ShardInputError, FileNotFoundError) as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    console.print(f"{report['missedUrls']} of {report['totalUrls']} URL(s) have no result")


@cli.command("export-csv")
@config_option
def export_csv(config: str) -> None:
    """Export test-results.json as CSV."""
    cfg = _load_config(config)
    try:
        path, count = Orchestrator(cfg).export_csv()
    except FileNotFoundError as e:
        console.print(f"[red]Results file not found: {e.filename}[/red]")
        sys.exit(1)
    console.print(f"[green]Exported {count} result(s)[/green] to [blue]{path}[/blue]")


@cli.command("import-csv")
@click.argument("csv_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@config_option
def import_csv(csv_file: Path, config: str) -> None:
    """Convert a CSV of baseline/comparison paths into fixtures/urls.json."""
    cfg = _load_config(config)
    orchestrator = Orchestrator(cfg)
    try:
        records = orchestrator.import_csv(csv_file)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    console.print(f"[green]Imported {len(records)} URL pair(s)[/green] into "
                  f"[blue]{orchestrator.corpus_path}[/blue]")


@cli.command("filter-urls")
@click.argument("start_id", type=int)
@click.argument("end_id", type=int)
@click.option("--source", type=click.Path(path_type=Path), default=None,
              help="Full URL pair file (default: <fixtures>/urls-full.json)")
@config_option
def filter_urls(start_id: int, end_id: int, source: Path | None, config: str) -> None:
    """Keep only URL pairs with ids in [START_ID, END_ID]."""
    cfg = _load_config(config)
    source = source or Path(cfg.fixtures_dir) / "urls-full.json"
    try:
        records = Orchestrator(cfg).filter_urls(source, start_id, end_id)
    except ShardInputError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    console.print(f"[green]Kept {len(records)} URL pair(s)[/green] with ids {start_id}-{end_id}")


@cli.command()
@click.option("--details", is_flag=True, help="List every result below the high threshold")
@config_option
def summary(details: bool, config: str) -> None:
    """Summarize test-results.json by similarity."""
    cfg = _load_config(config)
    try:
        result = Orchestrator(cfg).summary()
    except FileNotFoundError as e:
        console.print(f"[red]Results file not found: {e.filename}[/red]")
        sys.exit(1)

    high, medium = cfg.thresholds.similarity_high, cfg.thresholds.similarity_medium
    total = result.total or 1
    table = Table(title=f"Similarity ({result.total} results)")
    table.add_column("Bucket", style="bold")
    table.add_column("Count", justify="right")
    table.add_column("Share", justify="right")
    table.add_row(f"[green]High (>= {high}%)[/green]", str(len(result.high)), f"{len(result.high) / total:.0%}")
    table.add_row(f"[yellow]Medium ({medium}-{high - 1}%)[/yellow]", str(len(result.medium)),
                  f"{len(result.medium) / total:.0%}")
    table.add_row(f"[red]Low (< {medium}%)[/red]", str(len(result.low)), f"{len(result.low) / total:.0%}")
    console.print(table)

    if details:
        for r in [*result.low, *result.medium]:
            console.print(f"  {r.test_name} [{r.device}] {r.similarity}% {r.comparison_url}"
                          + (f" [red]{r.error}[/red]" if r.error else ""))


@cli.command()
@config_option
def devices(config: str) -> None:
    """List available device profiles."""
    cfg = _load_config(config)
    configured = {p.name for p in cfg.profiles}
    table = Table(title="Device profiles")
    table.add_column("Profile", style="bold")
    table.add_column("Browser")
    table.add_column("Viewport")
    table.add_column("Configured")
    for profile in Orchestrator(cfg).list_devices():
        table.add_row(profile.name, profile.browser_name, profile.viewport_label,
                      "yes" if profile.name in configured else "")
    console.print(table)


if __name__ == "__main__":
    cli()
