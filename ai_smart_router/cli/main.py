"""
CLI interface for AI Smart Router.

Provides command-line access to routing, cost statistics and knowledge
base maintenance.
"""

import logging
import sqlite3
import sys
from pathlib import Path
from typing import List, Optional

import typer
import yaml
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ai_smart_router.config.loader import RouterConfig, load_router_config
from ai_smart_router.core.capitalizer import KnowledgeCapitalizer
from ai_smart_router.core.classifier import classify_complexity
from ai_smart_router.core.ledger import CostLedger
from ai_smart_router.core.router import (
    AllProvidersFailedError,
    RouteOptions,
    UnknownModelError,
    build_router,
)
from ai_smart_router.core.selector import select_model
from ai_smart_router.storage.repository import initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_OK = 0
EXIT_CODE_FAIL = 1

# Reported as a one-line error with exit code 1
_HANDLED_ERRORS = (OSError, ValueError, yaml.YAMLError, sqlite3.Error)


def _load_config(ctx: typer.Context) -> RouterConfig:
    path = (ctx.obj or {}).get("config_path")
    if path is None:
        return RouterConfig()
    return load_router_config(path)


def _format_currency(amount: float) -> str:
    """Format currency with enough precision for per-request costs."""
    if abs(amount) < 0.01:
        return f"${amount:,.6f}"
    return f"${amount:,.2f}"


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(
        None, "--config", "-c", help="Path to router YAML configuration"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")
):
    """AI Smart Router CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    ctx.ensure_object(dict)
    if config is not None:
        ctx.obj["config_path"] = config
    if ctx.invoked_subcommand is None:
        console.print("AI Smart Router - Use --help to see available commands")


@app.command()
def init(ctx: typer.Context):
    """Initialize the AI Smart Router database."""
    try:
        config = _load_config(ctx)
        initialize_schema(config.db_path)
        console.print(f"[green]✓[/] Database initialized at {config.db_path}")
        sys.exit(EXIT_CODE_OK)
    except _HANDLED_ERRORS as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def classify(
    message: str = typer.Argument(..., help="Message to classify"),
    tier: str = typer.Option("free", "--tier", "-t", help="User subscription tier")
):
    """Preview how a message would be routed, without calling any provider."""
    category = classify_complexity(message)
    model = select_model(category, tier)

    table = Table(title="Routing preview")
    table.add_column("Category")
    table.add_column("Provider")
    table.add_column("Model")
    table.add_column("Cost tier")
    table.add_row(category.value, model.provider.value, model.name, model.tier.value)
    console.print(table)


@app.command()
def ask(
    ctx: typer.Context,
    message: str = typer.Argument(..., help="Message to send"),
    tier: str = typer.Option("free", "--tier", "-t", help="User subscription tier"),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="User id for cost attribution"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Force a catalog model"),
    no_cache: bool = typer.Option(False, "--no-cache", help="Skip the semantic cache")
):
    """Route a message to the cheapest capable model and print the answer."""
    try:
        router = build_router(_load_config(ctx))
        result = router.route(message, options=RouteOptions(
            user_tier=tier,
            user_id=user,
            force_model=model,
            skip_cache=no_cache
        ))
    except UnknownModelError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    except AllProvidersFailedError:
        console.print("[red]No provider could answer right now, please try again.[/]")
        sys.exit(EXIT_CODE_FAIL)
    except _HANDLED_ERRORS as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(result.content, markup=False)
    source = "cache" if result.from_cache else f"{result.provider}/{result.model}"
    console.print(
        f"\n[dim]{source} | category: {result.routing.category} | "
        f"cost: {_format_currency(result.cost)} | "
        f"{result.routing.latency_ms:.0f}ms[/]"
    )
    sys.exit(EXIT_CODE_OK)


@app.command()
def stats(
    ctx: typer.Context,
    days: int = typer.Option(30, "--days", "-d", help="Number of days to summarize")
):
    """Show cost, revenue, margin and cache statistics."""
    try:
        config = _load_config(ctx)
        ledger = CostLedger(config.db_path, config.target_margin)
        summary = ledger.get_stats(days=days)
    except sqlite3.OperationalError as e:
        if "no such table" in str(e).lower():
            console.print("\n[bold yellow]No cost data found[/]")
            console.print("Run `ai-smart-router init` to initialize the database\n")
            sys.exit(EXIT_CODE_OK)
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    except _HANDLED_ERRORS as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"\n[bold]Cost summary, last {summary.days} days[/bold]")
    console.print("-" * 40)
    console.print(f"Requests: {summary.total_requests}")
    console.print(f"Cost: {_format_currency(summary.total_cost)}")
    console.print(f"Revenue: {_format_currency(summary.total_revenue)}")
    console.print(
        f"Margin: {_format_currency(summary.total_margin)} "
        f"({summary.margin_percent:.1f}%, target {summary.target_margin_percent:.0f}%)"
    )
    console.print(
        f"Cache: {summary.cache_hits} hits / {summary.cache_misses} misses "
        f"({summary.cache_hit_rate:.1f}%), saved {_format_currency(summary.cache_savings)}"
    )

    if summary.by_provider:
        table = Table(title="Cost by provider")
        table.add_column("Provider")
        table.add_column("Cost", justify="right")
        for provider, cost in sorted(summary.by_provider.items()):
            table.add_row(provider, _format_currency(cost))
        console.print(table)
    sys.exit(EXIT_CODE_OK)


@app.command()
def export(
    ctx: typer.Context,
    export_format: str = typer.Option("openai", "--format", "-f",
                                      help="openai, anthropic or jsonl"),
    min_quality: float = typer.Option(0.6, "--min-quality", help="Minimum quality score"),
    min_uses: int = typer.Option(2, "--min-uses", help="Minimum reuse count"),
    category: Optional[List[str]] = typer.Option(None, "--category",
                                                 help="Restrict to a category"),
    output: Optional[str] = typer.Option(None, "--output", "-o",
                                         help="Output file (defaults to a dated name)")
):
    """Export high-quality knowledge entries as a fine-tuning dataset."""
    try:
        config = _load_config(ctx)
        result = KnowledgeCapitalizer(config.db_path).export_for_fine_tuning(
            min_quality=min_quality,
            min_use_count=min_uses,
            export_format=export_format,
            categories=category or None
        )
        path = Path(output or result.filename)
        path.write_text(result.data + ("\n" if result.data else ""), encoding="utf-8")
    except _HANDLED_ERRORS as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(
        f"[green]✓[/] Exported {result.stats['total_entries']} entries to {path} "
        f"(avg quality {result.stats['avg_quality']:.2f})"
    )
    sys.exit(EXIT_CODE_OK)


@app.command()
def gaps(ctx: typer.Context):
    """Show knowledge base categories that need attention."""
    try:
        config = _load_config(ctx)
        report = KnowledgeCapitalizer(config.db_path).analyze_gaps()
    except _HANDLED_ERRORS as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if not report.category_stats:
        console.print("\n[dim]Knowledge base is empty.[/]")
        sys.exit(EXIT_CODE_OK)

    table = Table(title="Knowledge by category")
    table.add_column("Category")
    table.add_column("Entries", justify="right")
    table.add_column("Avg uses", justify="right")
    table.add_column("Avg quality", justify="right")
    for stat in report.category_stats:
        table.add_row(
            stat["category"],
            str(stat["total_entries"]),
            f"{stat['avg_use']:.1f}",
            f"{stat['avg_quality']:.2f}"
        )
    console.print(table)

    for rec in report.recommendations:
        console.print(f"[yellow]•[/] {rec.message}")
    sys.exit(EXIT_CODE_OK)


@app.command()
def rescore(ctx: typer.Context):
    """Recompute the quality score of every knowledge entry."""
    try:
        config = _load_config(ctx)
        count = KnowledgeCapitalizer(config.db_path).rescore_all()
    except _HANDLED_ERRORS as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"[green]✓[/] Rescored {count} entries")
    sys.exit(EXIT_CODE_OK)


@app.command()
def cleanup(
    ctx: typer.Context,
    max_age: int = typer.Option(90, "--max-age", help="Minimum age in days"),
    min_quality: float = typer.Option(0.3, "--min-quality",
                                      help="Entries below this quality are candidates"),
    apply: bool = typer.Option(False, "--apply", help="Delete instead of listing")
):
    """Remove old, low-quality, rarely used knowledge entries.

    Dry run by default; pass --apply to delete.
    """
    try:
        config = _load_config(ctx)
        result = KnowledgeCapitalizer(config.db_path).cleanup(
            max_age_days=max_age,
            min_quality=min_quality,
            dry_run=not apply
        )
    except _HANDLED_ERRORS as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if result.dry_run:
        console.print(f"{result.matched} entries would be deleted")
        for entry in result.candidates:
            console.print(f"  [dim]{entry.id}[/] {escape(entry.question[:60])}")
    else:
        console.print(f"[green]✓[/] Deleted {result.deleted} entries")
    sys.exit(EXIT_CODE_OK)


if __name__ == "__main__":
    app()
