"""CLI interface for priorauth-eval."""

import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from priorauth_eval.config import EvaluatorConfig, load_settings
from priorauth_eval.db import DatabaseManager
from priorauth_eval.evaluator.fixtures import DEFAULT_FIXTURES_PATH, load_test_cases
from priorauth_eval.evaluator.harness import Evaluator, RunReport
from priorauth_eval.evaluator.store import EvalStore

# Configure logging with Rich
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    handlers=[RichHandler(rich_tracebacks=True)]
)

logger = logging.getLogger(__name__)

# Create Typer app
app = typer.Typer(
    name="priorauth-eval",
    help="Evaluation and safety-scoring harness for prior-authorization letters"
)

console = Console()

__version__ = "0.1.0"

METRIC_LABELS = (
    ("Criteria coverage", "criteria_coverage"),
    ("Clinical accuracy", "clinical_accuracy"),
    ("Format compliance", "format_compliance"),
    ("Completeness", "completeness"),
    ("LLM judge", "llm_judge"),
)


def _set_verbose_logging(verbose: bool) -> Optional[int]:
    if not verbose:
        return None
    root_logger = logging.getLogger()
    previous_level = root_logger.level
    root_logger.setLevel(logging.DEBUG)
    return previous_level


def _build_config(model: Optional[str] = None, run_name: Optional[str] = None, judge: Optional[bool] = None) -> EvaluatorConfig:
    settings = load_settings()
    logging.getLogger().setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    return EvaluatorConfig.from_settings(settings, model=model, run_name=run_name, judge_enabled=judge)


def _pct(value: Optional[float]) -> str:
    return "-" if value is None else f"{value * 100:.1f}%"


def _print_run_summary(report: RunReport) -> None:
    summary = report.summary
    console.print("\n[bold]=== SUMMARY ===[/bold]")
    console.print(f"Run: [cyan]{report.run_id}[/cyan] ({report.run_name})")
    console.print(f"Cases: {summary.completed_cases}/{summary.total_cases} stored, {summary.scored_cases} scored")

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Metric")
    table.add_column("Average", justify="right")
    table.add_row("Criteria coverage", _pct(summary.avg_criteria_coverage))
    table.add_row("Clinical accuracy", _pct(summary.avg_clinical_accuracy))
    table.add_row("Format compliance", _pct(summary.avg_format_compliance))
    table.add_row("Completeness", _pct(summary.avg_completeness))
    table.add_row("LLM judge", f"{summary.avg_llm_judge_score:.1f}/10")
    console.print(table)

    if summary.failed_cases:
        console.print(f"  ✗ Failed: [red]{summary.failed_cases}[/red]")
    if summary.lost_cases:
        console.print(f"  ⊘ Not stored: [yellow]{summary.lost_cases}[/yellow]")
    if summary.safety_critical_cases:
        console.print(f"  ⚠ Critical safety findings: [red]{summary.safety_critical_cases}[/red]")


@app.command()
def run(
    model: Optional[str] = typer.Option(
        None,
        "--model",
        "-m",
        help="Model identifier (defaults to LLM_MODEL)"
    ),
    run_name: Optional[str] = typer.Option(
        None,
        "--run-name",
        help="Run name (defaults to eval-<date>-<model>)"
    ),
    judge: Optional[bool] = typer.Option(
        None,
        "--judge/--no-judge",
        help="Ask the model for a second-opinion score (defaults to JUDGE_ENABLED)"
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose logging"
    ),
):
    """
    Generate and score a letter for every active golden test case.
    """
    config = _build_config(model, run_name, judge)
    previous_level = _set_verbose_logging(verbose)
    evaluator = Evaluator(config)
    try:
        report = evaluator.run()
    finally:
        evaluator.close()
        if previous_level is not None:
            logging.getLogger().setLevel(previous_level)

    if report is None:
        console.print("[yellow]No active test cases. Run 'priorauth-eval seed' first.[/yellow]")
        return
    _print_run_summary(report)


@app.command()
def seed(
    path: Path = typer.Argument(
        DEFAULT_FIXTURES_PATH,
        help="JSONL file of golden test cases",
        exists=True,
        dir_okay=False,
    )
):
    """
    Insert or update golden test cases.
    """
    config = _build_config()
    cases = load_test_cases(path)
    if not cases:
        console.print(f"[yellow]No test cases found in {path}[/yellow]")
        raise typer.Exit(0)

    db = DatabaseManager(config.database_url)
    store = EvalStore(db, config.schema)
    try:
        for case in cases:
            store.upsert_test_case(case)
            console.print(f"  ✓ {case.test_case_id}: [cyan]{case.case_name}[/cyan]")
    finally:
        db.close()
    console.print(f"\nSeeded [green]{len(cases)}[/green] test case(s) into schema [cyan]{config.schema}[/cyan]")


@app.command()
def runs(
    limit: int = typer.Option(
        20,
        "--limit",
        "-n",
        help="Number of runs to show"
    )
):
    """
    List recent evaluation runs.
    """
    config = _build_config()
    db = DatabaseManager(config.database_url)
    try:
        rows = EvalStore(db, config.schema).list_runs(limit=limit)
    finally:
        db.close()

    if not rows:
        console.print("[yellow]No runs found[/yellow]")
        return

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Run", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Model")
    table.add_column("Status", justify="center")
    table.add_column("Cases", justify="right")
    table.add_column("Coverage", justify="right")
    table.add_column("Accuracy", justify="right")
    table.add_column("Judge", justify="right")

    for row in rows:
        summary: Dict[str, Any] = row.get("summary") or {}
        status_style = {"running": "yellow", "completed": "green"}.get(row["status"], "white")
        judge_avg = summary.get("avg_llm_judge_score")
        table.add_row(
            row["run_id"],
            row.get("run_name") or "-",
            row.get("model_id") or "-",
            f"[{status_style}]{row['status']}[/{status_style}]",
            f"{summary.get('completed_cases', '-')}/{summary.get('total_cases', '-')}",
            _pct(summary.get("avg_criteria_coverage")),
            _pct(summary.get("avg_clinical_accuracy")),
            "-" if judge_avg is None else f"{judge_avg:.1f}",
        )
    console.print(table)


@app.command()
def results(
    run_id: str = typer.Argument(
        ...,
        help="Run identifier"
    )
):
    """
    Show per-case results for one run.
    """
    config = _build_config()
    db = DatabaseManager(config.database_url)
    try:
        rows = EvalStore(db, config.schema).list_results(run_id)
    finally:
        db.close()

    if not rows:
        console.print(f"[red]No results for run: {run_id}[/red]")
        raise typer.Exit(1)

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Test case", style="cyan")
    table.add_column("Gen ms", justify="right")
    table.add_column("Cov", justify="right")
    table.add_column("Acc", justify="right")
    table.add_column("Fmt", justify="right")
    table.add_column("Comp", justify="right")
    table.add_column("Judge", justify="right")
    table.add_column("Output", overflow="fold")

    for row in rows:
        table.add_row(
            row["test_case_id"],
            str(row.get("generation_time_ms") or "-"),
            _pct(row.get("criteria_coverage_score")),
            _pct(row.get("clinical_accuracy_score")),
            _pct(row.get("format_compliance_score")),
            _pct(row.get("completeness_score")),
            "-" if row.get("llm_judge_score") is None else str(row["llm_judge_score"]),
            row.get("output_preview") or "",
        )
    console.print(table)


@app.command()
def metrics(
    run_id: str = typer.Argument(
        ...,
        help="Run identifier"
    )
):
    """
    Show pass rates, averages and generation latency for one run.
    """
    config = _build_config()
    db = DatabaseManager(config.database_url)
    try:
        run_metrics = EvalStore(db, config.schema).run_metrics(run_id)
    finally:
        db.close()

    pass_rates = run_metrics.pass_rates
    if pass_rates is None:
        console.print(f"[red]No results for run: {run_id}[/red]")
        raise typer.Exit(1)

    console.print(f"\n[bold]Run {run_id}[/bold]: {run_metrics.total_cases} stored case(s)")
    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Metric")
    table.add_column("Average", justify="right")
    table.add_column("Pass rate", justify="right")
    table.add_column("Passed", justify="right")

    for label, name in METRIC_LABELS:
        average = run_metrics.averages.get(name)
        if name == "llm_judge":
            average_text = "-" if average is None else f"{average:.1f}/10"
        else:
            average_text = _pct(average)
        table.add_row(
            label,
            average_text,
            _pct(pass_rates[name]),
            f"{run_metrics.pass_counts.get(name, 0)}/{run_metrics.total_cases}",
        )
    console.print(table)

    if run_metrics.avg_generation_time_ms is not None:
        console.print(
            f"Generation latency: avg {run_metrics.avg_generation_time_ms:.0f}ms, "
            f"min {run_metrics.min_generation_time_ms}ms, max {run_metrics.max_generation_time_ms}ms"
        )


@app.command()
def version():
    """Show version information."""
    console.print(f"[cyan]priorauth-eval[/cyan] v{__version__}")


def main():
    """Main CLI entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(130)
    except Exception as e:
        console.print(f"\n[red]Error: {e}[/red]")
        logger.exception("Unhandled exception")
        sys.exit(1)


if __name__ == "__main__":
    main()
