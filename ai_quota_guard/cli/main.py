"""
CLI interface for AI Quota Guard.

Provides command-line access to usage inspection and administration.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from ai_quota_guard.config.loader import DEFAULT_CONFIG, TrackerConfig, load_tracker_config
from ai_quota_guard.core.plans import PlanType
from ai_quota_guard.core.token_counter import estimate_tokens
from ai_quota_guard.core.tracker import ResetScope, UsageTracker
from ai_quota_guard.core.windows import TimeRange
from ai_quota_guard.storage.connection import get_counter_store

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1  # Failing error or denied request


def build_tracker(redis_url: Optional[str], config_path: Optional[str]) -> UsageTracker:
    """Create a tracker from CLI options; --redis-url wins over the config file."""
    config: TrackerConfig = load_tracker_config(config_path) if config_path else DEFAULT_CONFIG
    store = get_counter_store(redis_url or config.redis_url)
    return UsageTracker(store, config)


def _tracker(ctx: typer.Context) -> UsageTracker:
    obj = ctx.obj or {}
    try:
        return build_tracker(obj.get("redis_url"), obj.get("config_path"))
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error loading configuration:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    redis_url: Optional[str] = typer.Option(
        None,
        "--redis-url",
        envvar="AI_QUOTA_GUARD_REDIS_URL",
        help="Redis URL of the counter store"
    ),
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        envvar="AI_QUOTA_GUARD_CONFIG",
        help="YAML file with plan limits and tracker settings"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")
):
    """AI Quota Guard CLI."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING)
    ctx.obj = {"redis_url": redis_url, "config_path": config_path}
    if ctx.invoked_subcommand is None:
        console.print("AI Quota Guard - Use --help to see available commands")


@app.command()
def status(ctx: typer.Context):
    """Check that the counter store is reachable."""
    tracker = _tracker(ctx)
    try:
        tracker.repository.store.ping()
    except Exception as e:
        console.print(f"[red]✗[/] Counter store unreachable: {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    console.print("[green]✓[/] Counter store is reachable")


@app.command()
def plans(ctx: typer.Context):
    """Show token limits per plan tier."""
    tracker = _tracker(ctx)

    table = Table(title="Plan Limits")
    table.add_column("Plan")
    table.add_column("Daily tokens", justify="right")
    table.add_column("Monthly tokens", justify="right")
    for plan in PlanType:
        limits = tracker.config.get_limits(plan)
        table.add_row(plan.value, _format_tokens(limits.daily), _format_tokens(limits.monthly))
    console.print(table)


@app.command()
def usage(
    ctx: typer.Context,
    user_id: str = typer.Argument(..., help="User to inspect"),
    plan: PlanType = typer.Option(PlanType.FREE, "--plan", "-p", help="Plan tier of the user")
):
    """Show a user's current daily and monthly usage."""
    tracker = _tracker(ctx)
    current = tracker.get_current_usage(user_id, plan)
    warnings = tracker.check_limit_warnings(user_id, plan)

    if current.degraded:
        console.print("[yellow]Counter store unavailable, showing zero usage[/]")

    console.print(f"\n[bold]Usage for {user_id}[/bold] ({plan.value})")
    console.print("-" * 40)
    console.print(
        f"Daily:   {_format_tokens(current.daily_used)} / {_format_tokens(current.daily_limit)} "
        f"({warnings.daily_percentage:.1f}%){_warning_marker(warnings.daily_warning)}"
    )
    console.print(
        f"Monthly: {_format_tokens(current.monthly_used)} / {_format_tokens(current.monthly_limit)} "
        f"({warnings.monthly_percentage:.1f}%){_warning_marker(warnings.monthly_warning)}"
    )
    console.print(f"Daily reset: {_format_time(current.reset_time)}")


@app.command()
def check(
    ctx: typer.Context,
    user_id: str = typer.Argument(..., help="User making the request"),
    tokens: int = typer.Argument(..., min=0, help="Estimated tokens of the request"),
    plan: PlanType = typer.Option(PlanType.FREE, "--plan", "-p", help="Plan tier of the user")
):
    """Check whether a request of TOKENS tokens would be allowed."""
    tracker = _tracker(ctx)
    decision = tracker.can_make_request(user_id, tokens, plan)

    if decision.is_degraded:
        console.print(f"[yellow]Degraded:[/] {decision.reason}")

    if decision.allowed:
        console.print(f"[green]✓[/] Allowed: {_format_tokens(tokens)} tokens for {user_id}")
        sys.exit(EXIT_CODE_PASS)

    console.print(f"[red]✗[/] Denied: {decision.reason}")
    if decision.reset_time:
        console.print(f"Resets at: {_format_time(decision.reset_time)}")
    sys.exit(EXIT_CODE_FAIL)


@app.command()
def stats(
    ctx: typer.Context,
    user_id: str = typer.Argument(..., help="User to report on"),
    time_range: TimeRange = typer.Option(TimeRange.MONTH, "--range", "-r", help="Look-back range")
):
    """Show a usage report for the last day, week or month."""
    tracker = _tracker(ctx)
    report = tracker.get_usage_stats(user_id, time_range)

    console.print(f"\n[bold]Usage report for {user_id}[/bold] (last {time_range.value})")
    console.print("-" * 40)
    if report.total_requests == 0:
        console.print("\n[dim]No usage recorded in this range.[/]")
        return

    console.print(f"Total tokens: {_format_tokens(report.total_tokens)}")
    console.print(f"Total cost: {_format_currency(report.total_cost)}")
    console.print(f"Requests: {report.total_requests}")
    console.print(f"Average cost/request: {_format_currency(report.average_cost_per_request)}")

    features = Table(title="Top Features")
    features.add_column("Feature")
    features.add_column("Tokens", justify="right")
    features.add_column("Cost", justify="right")
    for feature in report.top_features:
        features.add_row(feature.feature, _format_tokens(feature.tokens), _format_currency(feature.cost))
    console.print(features)

    daily = Table(title="Daily Breakdown")
    daily.add_column("Date")
    daily.add_column("Tokens", justify="right")
    daily.add_column("Cost", justify="right")
    for day in report.daily_breakdown:
        daily.add_row(day.date, _format_tokens(day.tokens), _format_currency(day.cost))
    console.print(daily)


@app.command()
def lifetime(
    ctx: typer.Context,
    user_id: str = typer.Argument(..., help="User to report on")
):
    """Show a user's all-time totals by model and feature."""
    tracker = _tracker(ctx)
    totals = tracker.get_lifetime_stats(user_id)

    console.print(f"\n[bold]Lifetime usage for {user_id}[/bold]")
    console.print("-" * 40)
    console.print(f"Total tokens: {_format_tokens(totals.total_tokens)}")
    console.print(f"Total cost: {_format_currency(totals.total_cost)}")
    console.print(f"Requests: {totals.total_requests}")

    for title, breakdown in (("By Model", totals.by_model), ("By Feature", totals.by_feature)):
        if not breakdown:
            continue
        table = Table(title=title)
        table.add_column("Name")
        table.add_column("Tokens", justify="right")
        table.add_column("Cost", justify="right")
        for name, entry in sorted(breakdown.items(), key=lambda item: item[1].tokens, reverse=True):
            table.add_row(name, _format_tokens(entry.tokens), _format_currency(entry.cost))
        console.print(table)


@app.command()
def headers(
    ctx: typer.Context,
    user_id: str = typer.Argument(..., help="User to inspect"),
    plan: PlanType = typer.Option(PlanType.FREE, "--plan", "-p", help="Plan tier of the user")
):
    """Print the rate limit headers a response to this user would carry."""
    tracker = _tracker(ctx)
    for name, value in tracker.get_rate_limit_headers(user_id, plan).items():
        console.print(f"{name}: {value}")


@app.command()
def estimate(
    text: Optional[str] = typer.Argument(None, help="Text to estimate"),
    file: Optional[Path] = typer.Option(None, "--file", "-f", exists=True, dir_okay=False, help="Read text from a file")
):
    """Estimate the tokens of TEXT (about 4 characters per token)."""
    if file is not None:
        text = file.read_text(encoding="utf-8")
    if text is None:
        console.print("[red]Error:[/] provide TEXT or --file")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"Estimated tokens: {estimate_tokens(text)}")


@app.command()
def reset(
    ctx: typer.Context,
    user_id: str = typer.Argument(..., help="User whose usage to reset"),
    scope: ResetScope = typer.Option(ResetScope.ALL, "--scope", "-s", help="Counters to clear"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation")
):
    """Reset a user's usage counters (administrative)."""
    if not yes:
        typer.confirm(f"Reset {scope.value} usage for {user_id}?", abort=True)

    tracker = _tracker(ctx)
    if not tracker.reset_usage(user_id, scope):
        console.print(f"[red]Error:[/] failed to reset usage for {user_id}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"[green]✓[/] Reset {scope.value} usage for {user_id}")


def _format_currency(amount: float) -> str:
    """Format currency to the 4 decimal places costs are kept at."""
    return f"${abs(amount):,.4f}"


def _format_tokens(count: int) -> str:
    return f"{count:,}"


def _format_time(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%d %H:%M UTC")


def _warning_marker(warning: bool) -> str:
    return " [yellow]⚠ approaching limit[/]" if warning else ""


if __name__ == "__main__":
    app()
