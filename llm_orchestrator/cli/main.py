"""
CLI interface for the LLM orchestrator.

Operator commands over the provenance ledger, budgets and key pool, plus a
command to run a single request end to end.
"""

import logging
import sys
from dataclasses import replace
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from llm_orchestrator.config.loader import (
    OrchestratorConfig,
    apply_env_overrides,
    default_config,
    load_config,
)
from llm_orchestrator.core.context import build_context
from llm_orchestrator.core.errors import ValidationError
from llm_orchestrator.core.orchestrator import RequestOptions
from llm_orchestrator.core.provenance import ProvenanceStore
from llm_orchestrator.core.registry import MODEL_REGISTRY
from llm_orchestrator.sdk.executor import ResponseFormat
from llm_orchestrator.storage.repository import ProvenanceRepository

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

_settings = {"config_path": None, "db_path": None}


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _load_settings() -> OrchestratorConfig:
    """Config file (or defaults), then environment, then the --db option."""
    path = _settings["config_path"]
    config = apply_env_overrides(load_config(path) if path else default_config())
    if _settings["db_path"]:
        config = replace(config, provenance=replace(config.provenance, db_path=_settings["db_path"]))
    return config


def _provenance_store(config: OrchestratorConfig) -> ProvenanceStore:
    return ProvenanceStore(
        ProvenanceRepository(config.provenance.db_path),
        enabled=True,
        drift_settings=config.drift,
    )


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(
        None, "--config", "-c", help="Path to YAML configuration file"
    ),
    db: Optional[str] = typer.Option(
        None, "--db", help="Path to the provenance database"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """LLM Orchestrator CLI."""
    _settings["config_path"] = config
    _settings["db_path"] = db
    _configure_logging(verbose)
    if ctx.invoked_subcommand is None:
        console.print("LLM Orchestrator - Use --help to see available commands")


@app.command()
def init():
    """Initialize the provenance database."""
    try:
        settings = _load_settings()
        ProvenanceRepository(settings.provenance.db_path).initialize_schema()
        console.print(f"[green]✓[/] Database initialized at {settings.provenance.db_path}")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def status():
    """Show key pool, budgets and active warnings."""
    try:
        context = build_context(_load_settings())
        stats = context.orchestrator.get_stats()
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    pool = stats["key_pool"]
    console.print(
        f"\n[bold]Key pool:[/bold] {pool['total']} total, "
        f"{pool['available']} available, {pool['rate_limited']} rate limited"
    )

    table = Table(title="Daily Budgets")
    table.add_column("Cost class")
    table.add_column("Used", justify="right")
    table.add_column("Limit", justify="right")
    table.add_column("Usage", justify="right")
    for cost_class, budget in stats["cost_budgets"].items():
        table.add_row(cost_class, str(budget["used"]), str(budget["limit"]),
                      f"{budget['percentage']}%")
    console.print(table)

    if stats["warnings"]:
        for warning in stats["warnings"]:
            console.print(f"[yellow]![/] {warning}")
    else:
        console.print("[green]✓[/] No active warnings")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def stats(
    days: int = typer.Option(7, "--days", "-d", min=1, help="Look-back window in days"),
):
    """Show per-model statistics from the provenance ledger."""
    try:
        model_stats = _provenance_store(_load_settings()).get_all_model_stats(days)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if not model_stats:
        console.print(f"\n[bold yellow]No requests recorded in the last {days} day(s)[/]")
        sys.exit(EXIT_CODE_PASS)

    table = Table(title=f"Model Statistics (last {days} days)")
    table.add_column("Model")
    table.add_column("Requests", justify="right")
    table.add_column("Avg latency", justify="right")
    table.add_column("Avg quality", justify="right")
    table.add_column("Error rate", justify="right")
    table.add_column("Last used")
    for s in model_stats:
        quality = "-" if s.average_quality_score is None else f"{s.average_quality_score:.1f}"
        last_used = s.last_used.strftime("%Y-%m-%d %H:%M") if s.last_used else "-"
        table.add_row(
            MODEL_REGISTRY.display_name(s.model_id),
            str(s.total_requests),
            f"{s.average_latency_ms}ms",
            quality,
            f"{s.error_rate * 100:.1f}%",
            last_used,
        )
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def distribution(
    days: int = typer.Option(7, "--days", "-d", min=1, help="Look-back window in days"),
):
    """Show request counts per task type."""
    try:
        counts = _provenance_store(_load_settings()).get_task_distribution(days)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    table = Table(title=f"Task Distribution (last {days} days)")
    table.add_column("Task type")
    table.add_column("Requests", justify="right")
    for task_type, count in sorted(counts.items(), key=lambda kv: -kv[1]):
        table.add_row(task_type, str(count))
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def errors(
    limit: int = typer.Option(10, "--limit", "-l", min=1, help="Number of errors to show"),
):
    """Show the most recent failed model calls."""
    try:
        entries = _provenance_store(_load_settings()).get_recent_errors(limit)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if not entries:
        console.print("[green]✓[/] No errors recorded")
        sys.exit(EXIT_CODE_PASS)

    table = Table(title="Recent Errors")
    table.add_column("When")
    table.add_column("Request")
    table.add_column("Model")
    table.add_column("Error")
    for entry in entries:
        table.add_row(
            entry.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            entry.request_id,
            entry.model_id,
            entry.error,
        )
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def drift(
    model: Optional[str] = typer.Option(
        None, "--model", "-m", help="Only check this model"
    ),
):
    """Compare recent model behaviour against its historical baseline."""
    if model is not None and model not in MODEL_REGISTRY:
        console.print(f"[red]Error:[/] Unknown model: {model}")
        sys.exit(EXIT_CODE_FAIL)
    try:
        store = _provenance_store(_load_settings())
        model_ids = [model] if model else MODEL_REGISTRY.ids()
        reports = [store.detect_drift(m) for m in model_ids]
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    table = Table(title="Drift Report")
    table.add_column("Model")
    table.add_column("Signal")
    table.add_column("Recent (n)", justify="right")
    table.add_column("Historical (n)", justify="right")
    table.add_column("Latency change", justify="right")
    table.add_column("Reasons")
    for report in reports:
        change = report.latency_change_pct
        table.add_row(
            report.model_id,
            report.signal.value,
            str(report.recent.sample_count),
            str(report.historical.sample_count),
            "N/A" if change is None else f"{'+' if change >= 0 else ''}{change:.1f}%",
            "; ".join(report.reasons) or "-",
        )
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def score(
    request_id: str = typer.Argument(..., help="Request id to score"),
    value: float = typer.Argument(..., help="Quality score between 0 and 100"),
):
    """Backfill the quality score of a recorded request."""
    try:
        applied = _provenance_store(_load_settings()).update_quality_score(request_id, value)
    except ValidationError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if not applied:
        console.print(f"[red]✗[/] {request_id} not found or already scored")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"[green]✓[/] Quality score {value:g} recorded for {request_id}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def ask(
    prompt: str = typer.Argument(..., help="User prompt"),
    system: str = typer.Option(
        "You are a helpful assistant.", "--system", "-s", help="System prompt"
    ),
    task_type: Optional[str] = typer.Option(
        None, "--task-type", "-t", help="Skip classification and use this intent"
    ),
    priority: Optional[str] = typer.Option(
        None, "--priority", "-p", help="speed, quality or cost"
    ),
    json_output: bool = typer.Option(False, "--json", help="Request a JSON response"),
    strategy: bool = typer.Option(False, "--strategy", help="Mark as a strategy request"),
    client_facing: bool = typer.Option(False, "--client-facing", help="Mark as client-facing"),
):
    """Run one request through the orchestrator."""
    try:
        context = build_context(_load_settings())
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    result = context.orchestrator.process(
        system,
        prompt,
        RequestOptions(
            task_type=task_type,
            priority=priority,
            is_strategy_request=strategy,
            is_client_facing=client_facing,
            response_format=ResponseFormat.JSON if json_output else ResponseFormat.TEXT,
        ),
    )

    if not result.success:
        console.print(f"[red]✗ {result.error_kind.value}:[/] {result.error}")
        if result.suggested_downgrade:
            console.print(f"Suggested downgrade: {result.suggested_downgrade}")
        sys.exit(EXIT_CODE_FAIL)

    if result.decision is not None:
        console.print(f"[dim]{MODEL_REGISTRY.display_name(result.model_id)}: "
                      f"{result.decision.reasoning}[/]")
    if isinstance(result.data, (dict, list)):
        console.print_json(data=result.data)
    else:
        console.print(result.data)
    if result.critique is not None:
        console.print(
            f"\n[bold]Critique:[/bold] rigor {result.critique.rigor_score:g}, "
            f"{'passed' if result.critique.validation_passed else 'failed'}"
        )
    if result.provenance is not None:
        console.print(f"[dim]request id: {result.provenance.request_id}[/]")
    sys.exit(EXIT_CODE_PASS)


if __name__ == "__main__":
    app()
