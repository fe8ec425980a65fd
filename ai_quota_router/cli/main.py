"""
CLI interface for AI Quota Router.

Provides command-line access to quota checks, routing, usage recording and
tier administration.
"""

import json
import logging
import sys
from contextlib import contextmanager
from dataclasses import replace
from decimal import Decimal
from typing import Iterator, Optional

import typer
import yaml
from openai import OpenAIError
from rich.console import Console
from rich.table import Table

from ai_quota_router.config.loader import AppConfig, load_config
from ai_quota_router.core.errors import (
    InvalidRequest,
    ModelInvocationFailed,
    QuotaExceeded,
    QuotaRouterError,
    StoreUnavailable,
    UnknownTier,
)
from ai_quota_router.core.orchestrator import RequestOrchestrator
from ai_quota_router.sdk.openai_client import OpenAIModelBackend, OpenAIQueryClassifier
from ai_quota_router.storage.repository import UsageStore

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_DENIED = 1  # Quota denial
EXIT_CODE_FAIL = 1  # Configuration or unexpected error
EXIT_CODE_INVALID = 2
EXIT_CODE_STORE_UNAVAILABLE = 3  # Retryable
EXIT_CODE_MODEL_FAILED = 4


def _load_settings(ctx: typer.Context) -> AppConfig:
    """Load configuration with CLI overrides applied."""
    options = ctx.obj or {}
    config = load_config(options.get("config"))
    if options.get("db"):
        config = replace(config, storage=replace(config.storage, db_path=options["db"]))
    return config


def _build_orchestrator(ctx: typer.Context, with_backend: bool = False) -> RequestOrchestrator:
    """Wire an orchestrator, creating the schema if needed."""
    config = _load_settings(ctx)
    classifier = None
    if config.routing.strategy == "remote":
        classifier = OpenAIQueryClassifier(config.model_catalog())
    backend = OpenAIModelBackend(config.models.timeout_seconds) if with_backend else None
    orchestrator = RequestOrchestrator.from_config(config, backend=backend, classifier=classifier)
    orchestrator.store.initialize_schema()
    return orchestrator


@contextmanager
def _exit_on_error() -> Iterator[None]:
    """Map domain errors to messages and exit codes."""
    try:
        yield
    except InvalidRequest as e:
        console.print(f"[red]Invalid request:[/] {e}")
        sys.exit(EXIT_CODE_INVALID)
    except StoreUnavailable as e:
        console.print(f"[red]Usage store unavailable (retry later):[/] {e}")
        sys.exit(EXIT_CODE_STORE_UNAVAILABLE)
    except ModelInvocationFailed as e:
        console.print(f"[red]Model invocation failed:[/] {e}")
        sys.exit(EXIT_CODE_MODEL_FAILED)
    except QuotaExceeded as e:
        console.print(f"[yellow]Denied:[/] {e.reason.value}")
        sys.exit(EXIT_CODE_DENIED)
    except UnknownTier as e:
        console.print(f"[red]Configuration error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)
    except QuotaRouterError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)
    except OpenAIError as e:
        console.print(f"[red]Model backend unavailable:[/] {e}")
        sys.exit(EXIT_CODE_MODEL_FAILED)
    except (ValueError, FileNotFoundError, yaml.YAMLError) as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)


def _emit(payload: dict, as_json: bool) -> None:
    if as_json:
        console.print_json(json.dumps(payload))
        return
    for key, value in payload.items():
        console.print(f"{key}: {value}")


def _format_currency(amount: Decimal) -> str:
    """Format currency with proper symbols and formatting."""
    return f"${amount:,.2f}"


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to YAML config file"),
    db: Optional[str] = typer.Option(None, "--db", help="Override the usage database path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")
):
    """AI Quota Router CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    ctx.obj = {"config": config, "db": db}
    if ctx.invoked_subcommand is None:
        console.print("AI Quota Router - Use --help to see available commands")


@app.command()
def init(ctx: typer.Context):
    """Initialize the usage database."""
    with _exit_on_error():
        config = _load_settings(ctx)
        UsageStore(config.storage.db_path).initialize_schema()
        console.print("[green]✓[/] Database initialized successfully")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def tiers(ctx: typer.Context):
    """Show the tier catalog."""
    with _exit_on_error():
        catalog = _load_settings(ctx).tier_catalog()

    table = Table(title="Tier Limits")
    table.add_column("Tier")
    table.add_column("Daily queries", justify="right")
    table.add_column("Daily advanced", justify="right")
    table.add_column("Monthly cap", justify="right")
    for tier, limits in catalog.items():
        table.add_row(
            tier.value,
            str(limits.daily_query_limit),
            str(limits.daily_advanced_limit),
            _format_currency(limits.monthly_cost_cap)
        )
    console.print(table)


@app.command()
def check(
    ctx: typer.Context,
    identity: str = typer.Argument(..., help="User identity"),
    advanced: bool = typer.Option(False, "--advanced", "-a", help="Request the advanced model"),
    estimated_cost: str = typer.Option("0", "--estimated-cost", "-e", help="Expected request cost"),
    as_json: bool = typer.Option(False, "--json", help="Print JSON")
):
    """Check quota for a prospective request without recording anything."""
    with _exit_on_error():
        result = _build_orchestrator(ctx).check_query(identity, advanced, estimated_cost)
    _emit(result.to_dict(), as_json)
    sys.exit(EXIT_CODE_PASS if result.allowed else EXIT_CODE_DENIED)


@app.command()
def route(
    ctx: typer.Context,
    identity: str = typer.Argument(..., help="User identity"),
    query: str = typer.Argument(..., help="Query text"),
    advanced: bool = typer.Option(False, "--advanced", "-a", help="Request the advanced model"),
    as_json: bool = typer.Option(False, "--json", help="Print JSON")
):
    """Select a model for a query without invoking it or recording usage."""
    with _exit_on_error():
        result = _build_orchestrator(ctx).route(identity, query, advanced)
    _emit(result.to_dict(), as_json)
    sys.exit(EXIT_CODE_PASS if result.allowed else EXIT_CODE_DENIED)


@app.command()
def ask(
    ctx: typer.Context,
    identity: str = typer.Argument(..., help="User identity"),
    query: str = typer.Argument(..., help="Query text"),
    advanced: bool = typer.Option(False, "--advanced", "-a", help="Request the advanced model"),
    as_json: bool = typer.Option(False, "--json", help="Print JSON")
):
    """Route, answer and record a query."""
    with _exit_on_error():
        served = _build_orchestrator(ctx, with_backend=True).handle(identity, query, advanced)
    if as_json:
        _emit(served.to_dict(), True)
    else:
        console.print(served.text, markup=False, highlight=False)
        console.print(
            f"\n[dim]{served.selection.model} ({served.selection.reason.value}), "
            f"cost {served.cost}[/]"
        )
    sys.exit(EXIT_CODE_PASS)


@app.command()
def record(
    ctx: typer.Context,
    identity: str = typer.Argument(..., help="User identity"),
    cost: str = typer.Option(..., "--cost", help="Realized request cost"),
    advanced: bool = typer.Option(False, "--advanced", "-a", help="Served on the advanced model")
):
    """Record one served request. Call exactly once per request."""
    with _exit_on_error():
        result = _build_orchestrator(ctx).record_usage(identity, advanced, cost)
    console.print(f"[green]✓[/] {result['status']}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def usage(
    ctx: typer.Context,
    identity: str = typer.Argument(..., help="User identity"),
    days: int = typer.Option(7, "--days", "-d", help="Days of history to show")
):
    """Show a user's tier, remaining quota and recent daily usage."""
    with _exit_on_error():
        orchestrator = _build_orchestrator(ctx)
        store = orchestrator.store
        user = store.get_or_create_user(identity)
        limits = orchestrator.catalog.limits_for(user.tier)
        monthly = store.get_or_create_monthly_usage(
            user.identity, orchestrator.calendar.this_month()
        )
        today = store.get_or_create_daily_usage(user.identity, orchestrator.calendar.today())
        history = store.get_daily_history(user.identity, days)

    console.print(f"\n[bold]User:[/bold] {user.identity} ({user.tier.value})")
    console.print(
        f"Queries today: {today.queries_used}/{limits.daily_query_limit} "
        f"(advanced {today.advanced_used}/{limits.daily_advanced_limit})"
    )
    console.print(
        f"Spend this month: {_format_currency(monthly.cost_accrued)} "
        f"of {_format_currency(limits.monthly_cost_cap)}"
    )

    table = Table(title="Daily Usage")
    table.add_column("Day")
    table.add_column("Queries", justify="right")
    table.add_column("Advanced", justify="right")
    for row in history:
        table.add_row(row.day, str(row.queries_used), str(row.advanced_used))
    console.print(table)


@app.command("set-tier")
def set_tier(
    ctx: typer.Context,
    identity: str = typer.Argument(..., help="User identity"),
    tier: str = typer.Argument(..., help="FREE, PLUS, PRO or PREMIUM")
):
    """Assign a subscription tier to a user (administrative)."""
    with _exit_on_error():
        store = _build_orchestrator(ctx).store
        user = store.set_user_tier(identity, tier)
    console.print(f"[green]✓[/] {user.identity} is now {user.tier.value}")
    sys.exit(EXIT_CODE_PASS)


if __name__ == "__main__":
    app()
