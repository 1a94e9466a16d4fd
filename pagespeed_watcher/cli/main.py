"""
CLI interface for PageSpeed Watcher.

Provides command-line access to connectivity checks and usage reporting.
"""

import logging
import sys
from datetime import timedelta
from pathlib import Path
from typing import Optional

import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from pagespeed_watcher.client.psi_client import create_client
from pagespeed_watcher.config.loader import (
    DEFAULT_CONFIG_PATH,
    WatcherConfig,
    load_watcher_config,
)
from pagespeed_watcher.core.errors import ErrorKind, ProviderErrorCode, WatcherError
from pagespeed_watcher.core.metrics import PerformanceRating, rate_performance, score_percent
from pagespeed_watcher.core.rate_limiter import RateLimiter
from pagespeed_watcher.storage.counter_store import CounterStoreError, SQLiteCounterStore
from pagespeed_watcher.storage.repository import LedgerError, UsageLedger, initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

# Share of the daily quota after which usage is flagged
DAILY_WARNING_RATIO = 0.8
LOW_REMAINING_REQUESTS = 100


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)]
    )


def _load_config(ctx: typer.Context) -> WatcherConfig:
    path = ctx.obj.get("config_path") if ctx.obj else None
    if path is None and Path(DEFAULT_CONFIG_PATH).exists():
        path = DEFAULT_CONFIG_PATH
    try:
        return load_watcher_config(path)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Configuration error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)


def _print_rating(percent: int, config: WatcherConfig) -> None:
    rating = rate_performance(
        percent,
        excellent=config.thresholds.excellent,
        good=config.thresholds.good
    )
    style = {
        PerformanceRating.EXCELLENT: "green",
        PerformanceRating.GOOD: "yellow",
        PerformanceRating.NEEDS_IMPROVEMENT: "red",
    }[rating]
    console.print(f"[{style}]Performance: {rating.value}[/]")


def _print_guidance(error: WatcherError) -> None:
    """Point the operator at the likely fix for a classified failure."""
    if error.kind == ErrorKind.PROVIDER_ERROR:
        if error.provider_code == ProviderErrorCode.AUTH_ERROR:
            console.print("Please check your PSI_API_KEY configuration.")
        elif error.provider_code == ProviderErrorCode.QUOTA_EXCEEDED:
            console.print("You may have exceeded your daily API quota.")
    elif error.kind == ErrorKind.RATE_LIMIT_EXCEEDED:
        console.print("Local rate limit reached. Wait for the window to roll over.")
    elif error.kind == ErrorKind.MISSING_CREDENTIAL:
        console.print("Please check your PSI_API_KEY configuration.")
    if error.retryable:
        console.print("[dim]This error is transient; retry later.[/]")


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help=f"Path to YAML config (defaults to ./{DEFAULT_CONFIG_PATH} if present)"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")
):
    """PageSpeed Watcher CLI."""
    _configure_logging(verbose)
    ctx.obj = {"config_path": config_path}
    if ctx.invoked_subcommand is None:
        console.print("PageSpeed Watcher - Use --help to see available commands")


@app.command()
def init(ctx: typer.Context):
    """Initialize the PageSpeed Watcher database."""
    config = _load_config(ctx)
    try:
        initialize_schema(config.db_path)
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command("test-page")
def test_page(
    ctx: typer.Context,
    url: Optional[str] = typer.Option(None, "--url", help="URL to test (defaults to app.url)"),
    strategy: str = typer.Option("mobile", "--strategy", help="Strategy to test: mobile or desktop")
):
    """Run a PSI test to validate connectivity and analyze page performance."""
    config = _load_config(ctx)
    target = url or config.app_url
    if not target:
        console.print("[red]APP_URL is not set[/]")
        sys.exit(EXIT_CODE_FAIL)

    initialize_schema(config.db_path)
    client = create_client(config)

    console.print(f"Testing PSI connectivity for {target} ({strategy})...")
    result = client.test_page(target, strategy)

    if result.http_code == 200:
        console.print(f"[green]HTTP Code: {result.http_code}[/]")
        if result.score is not None:
            console.print(f"Performance Score: {result.score}")
            _print_rating(result.score, config)
        sys.exit(EXIT_CODE_PASS)

    console.print(f"[red]HTTP Code: {result.http_code}[/]")
    console.print(f"[red]Error: {result.error}[/]")
    if result.http_code in (401, 403):
        console.print("Please check your PSI_API_KEY configuration.")
    elif result.http_code == 429:
        console.print("You may have exceeded your daily API quota.")
    sys.exit(EXIT_CODE_FAIL)


@app.command("test-api-key")
def test_api_key(
    ctx: typer.Context,
    url: Optional[str] = typer.Option(None, "--url", help="URL to test (defaults to app.url)"),
    strategy: str = typer.Option("mobile", "--strategy", help="Strategy to test: mobile or desktop")
):
    """Validate connectivity to PSI using the configured API key."""
    config = _load_config(ctx)
    if not config.api_key:
        console.print("[red]PSI_API_KEY is not set[/]")
        sys.exit(EXIT_CODE_FAIL)

    target = url or config.app_url
    if not target:
        console.print("[red]APP_URL is not set[/]")
        sys.exit(EXIT_CODE_FAIL)

    initialize_schema(config.db_path)
    client = create_client(config)

    console.print(f"Testing PSI connectivity for {target} ({strategy})...")
    try:
        result = client.run_test(target, strategy)
    except WatcherError as e:
        console.print(f"[red]Error connecting to PSI API ({e.kind.value}):[/] {e.message}")
        _print_guidance(e)
        sys.exit(EXIT_CODE_FAIL)

    console.print("[green]OK: PSI API reachable.[/]")
    percent = score_percent(result.metrics.score)
    if percent is not None:
        console.print(f"Score: {percent}%")
        _print_rating(percent, config)
    sys.exit(EXIT_CODE_PASS)


def _format_currency(amount) -> str:
    """Format currency with 4 decimal places."""
    return f"${amount:,.4f}"


@app.command()
def usage(ctx: typer.Context):
    """Display PSI API usage statistics."""
    config = _load_config(ctx)
    clock = config.clock()
    ledger = UsageLedger(config.quota, db_path=config.db_path, clock=clock)
    limiter = RateLimiter(SQLiteCounterStore(config.db_path, clock=clock), config.quota, clock=clock)

    try:
        initialize_schema(config.db_path)
        today = clock().date()
        today_usage = ledger.get_record(today)
        week = ledger.get_range(today - timedelta(days=6), today)
        stats = limiter.get_usage_stats()
    except (LedgerError, CounterStoreError) as e:
        console.print(f"[red]Error reading usage:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    console.print("[bold]PageSpeed Insights API Usage Statistics[/bold]")
    console.print("")

    if today_usage is None:
        console.print("No usage recorded yet.")
        sys.exit(EXIT_CODE_PASS)

    daily_limit = config.quota.daily_limit
    console.print("Today:")
    console.print(f"  Total Requests: {today_usage.requests_total}")
    console.print(f"  Successful: {today_usage.requests_ok}")
    console.print(f"  Errors: {today_usage.requests_error}")
    console.print(f"  Cost Estimate: {_format_currency(today_usage.cost_estimate_usd)}")
    progress = today_usage.requests_total / daily_limit
    console.print(f"  Progress: {progress * 100:.1f}%")
    if progress > DAILY_WARNING_RATIO:
        console.print("[yellow]  ⚠️  Daily limit nearly reached[/]")
    console.print("")

    if len(week) > 1:
        totals = ledger.summarize(week[0].date, week[-1].date)
        console.print("Last 7 Days:")
        console.print(f"  Total Requests: {totals.requests_total}")
        console.print(f"  Successful: {totals.requests_ok}")
        console.print(f"  Errors: {totals.requests_error}")
        console.print(f"  Total Cost Estimate: {_format_currency(totals.cost_estimate_usd)}")
        console.print("")

    table = Table(title="Rate Limiting")
    table.add_column("Window")
    table.add_column("Used", justify="right")
    table.add_column("Limit", justify="right")
    table.add_column("Remaining", justify="right")
    table.add_row("Today", str(stats.daily_used), str(stats.daily_limit), str(stats.daily_remaining))
    table.add_row("This minute", str(stats.minute_used), str(stats.minute_limit), str(stats.minute_remaining))
    console.print(table)
    console.print("")

    remaining = max(0, daily_limit - today_usage.requests_total)
    console.print(f"Daily Limit: {daily_limit} requests")
    console.print(f"Remaining Today: {remaining} requests")
    if remaining < LOW_REMAINING_REQUESTS:
        console.print("[yellow]⚠️  Daily limit nearly reached[/]")

    if today_usage.requests_error > 0:
        console.print("")
        console.print("[yellow]Recommendation: Check for API errors in your configuration[/]")
    if today_usage.cost_estimate_usd > 0:
        console.print("")
        console.print("[yellow]Recommendation: Consider reducing test frequency to avoid costs[/]")

    sys.exit(EXIT_CODE_PASS)


if __name__ == "__main__":
    app()
