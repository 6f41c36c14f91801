"""
Cadence CLI - inspect and exercise the adaptive scheduler from a terminal.

Usage:
    cadence replay attempts.jsonl          # Replay attempts, show final state
    cadence replay attempts.jsonl --json   # Same, as JSON
    cadence schedule --interval 7 --ease 2.5 --correct --latency 1200
    cadence schedule --correct --confidence struggling
    cadence settings                       # Show effective configuration
"""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Annotated

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from cadence.core.config import STORE_BACKENDS, coerce_level, get_settings
from cadence.core.feature_flags import FeatureFlags
from cadence.core.models import ScheduleCard
from cadence.core.telemetry import InMemoryMetrics
from cadence.db.store import create_store
from cadence.engine.registry import EngineRegistry
from cadence.study.adaptive_scheduler import AdaptiveScheduler, SchedulingContext

# =============================================================================
# CLI Setup
# =============================================================================

app = typer.Typer(
    name="cadence",
    help="Adaptive spaced-repetition scheduler",
    add_completion=False,
    rich_markup_mode="rich",
)

console = Console()

LOG_FORMAT = "<level>{level: <8}</level> | <cyan>{name}</cyan> - <level>{message}</level>"


def configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level, format=LOG_FORMAT)


def read_attempts(path: Path) -> list[dict]:
    """Parse a JSONL file; unreadable lines are skipped with a warning."""
    attempts = []
    with path.open(encoding="utf-8") as fh:
        for lineno, line in enumerate(fh, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                payload = json.loads(line)
            except json.JSONDecodeError as e:
                logger.warning(f"{path}:{lineno}: skipping invalid JSON ({e.msg})")
                continue
            if not isinstance(payload, dict):
                logger.warning(f"{path}:{lineno}: skipping non-object line")
                continue
            attempts.append(payload)
    return attempts


# =============================================================================
# Commands
# =============================================================================


@app.command()
def replay(
    file: Annotated[Path, typer.Argument(help="JSONL file of attempt events", exists=True, dir_okay=False)],
    user: Annotated[str, typer.Option("--user", "-u", help="Learner id")] = "default",
    store: Annotated[
        str | None, typer.Option("--store", "-s", help=f"Checkpoint store ({', '.join(STORE_BACKENDS)})")
    ] = None,
    as_json: Annotated[bool, typer.Option("--json", help="Print the snapshot as JSON")] = False,
) -> None:
    """Replay recorded attempts in chronological order and show the final state."""
    settings = get_settings()
    if store is not None:
        if store not in STORE_BACKENDS:
            console.print(f"[red]Unknown store '{store}'. Choose one of: {', '.join(STORE_BACKENDS)}[/]")
            raise typer.Exit(1)
        settings = settings.model_copy(update={"store_backend": store})

    attempts = read_attempts(file)
    if not attempts:
        console.print("[yellow]No attempts found.[/]")
        raise typer.Exit(0)

    metrics = InMemoryMetrics()

    async def run() -> dict:
        registry = EngineRegistry(
            settings=settings,
            store=create_store(settings),
            metrics=metrics,
            autostart_checkpoints=False,
        )
        await registry.replay(user, attempts)
        engine = await registry.get(user)
        await engine.save_checkpoint()
        await registry.close()
        return engine.get_snapshot()

    snapshot = asyncio.run(run())

    if as_json:
        console.print_json(json.dumps(snapshot, default=str))
        return

    table = Table(title=f"Engine state for '{user}' after {len(attempts)} attempts")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    for key in ("flow_state", "momentum_type", "momentum_score", "confidence_overall", "confidence_category"):
        value = snapshot[key]
        table.add_row(key, f"{value:.3f}" if isinstance(value, float) else str(value))
    for key, value in snapshot["metrics"].items():
        table.add_row(f"metrics.{key}", str(value))
    console.print(table)

    if metrics.counters:
        console.print(f"[dim]counters: {metrics.counters}[/]")


@app.command()
def schedule(
    interval: Annotated[int, typer.Option("--interval", "-i", help="Current interval in days")] = 1,
    ease: Annotated[float, typer.Option("--ease", "-e", help="Legacy ease factor (1.3-3.2)")] = 2.5,
    reps: Annotated[int, typer.Option("--reps", help="Successful reviews so far")] = 0,
    lapses: Annotated[int, typer.Option("--lapses", help="Lapses so far")] = 0,
    correct: Annotated[bool, typer.Option("--correct/--wrong", help="Outcome of this review")] = True,
    hints: Annotated[int, typer.Option("--hints", help="Hints used")] = 0,
    latency: Annotated[float | None, typer.Option("--latency", help="Response latency in ms")] = None,
    confidence: Annotated[
        str, typer.Option("--confidence", "-c", help="Confidence level (overconfident ... struggling)")
    ] = "uncertain",
    adaptive: Annotated[
        bool, typer.Option("--adaptive/--fallback", help="Use FSRS or the fixed interval table")
    ] = True,
) -> None:
    """Schedule one review of a card given in legacy (interval, ease) terms."""
    flags = FeatureFlags()
    flags.ADAPTIVE_SCHEDULING = adaptive
    scheduler = AdaptiveScheduler(get_settings(), flags)

    card = ScheduleCard.from_legacy(interval_days=interval, ease=ease, reps=reps, lapses=lapses)
    context = SchedulingContext(latency_ms=latency, confidence_level=coerce_level(confidence))
    result = scheduler.review(card, correct, hints, context)

    table = Table(title="Next review")
    table.add_column("Field", style="cyan")
    table.add_column("Before", style="dim")
    table.add_column("After", style="green")
    before, after = card.to_dict(), result.card.to_dict()
    for key in ("interval_days", "ease", "difficulty", "stability", "reps", "lapses", "state", "due", "leech"):
        table.add_row(key, _fmt(before.get(key)), _fmt(after.get(key)))
    console.print(table)

    rating = result.rating.name if result.rating is not None else "-"
    console.print(f"Rating: [bold]{rating}[/]  Fallback: {result.used_fallback}")
    if result.adjustment.reasons:
        console.print(f"Adjustments: {', '.join(result.adjustment.reasons)} (x{result.adjustment.multiplier:.2f})")


@app.command("settings")
def show_settings() -> None:
    """Show effective settings and feature flags."""
    settings = get_settings()
    table = Table(title="Settings (CADENCE_* environment)")
    table.add_column("Name", style="cyan")
    table.add_column("Value", style="green")
    for name, value in settings.model_dump().items():
        table.add_row(name, str(value))
    flags = FeatureFlags()
    for name in flags.__dataclass_fields__:
        table.add_row(f"flag.{name}", str(flags.is_enabled(name)))
    console.print(table)


def _fmt(value: object) -> str:
    if isinstance(value, float):
        return f"{value:.2f}"
    return "" if value is None else str(value)


# =============================================================================
# Entry Point
# =============================================================================


@app.callback()
def callback(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Debug logging")] = False,
) -> None:
    """
    Cadence - adaptive spaced-repetition scheduling.

    \b
    Quick Start:
      cadence replay attempts.jsonl
      cadence schedule --interval 7 --ease 2.5 --correct
      cadence settings
    """
    if verbose:
        configure_logging("DEBUG")


def main() -> None:
    """CLI entry point."""
    configure_logging(get_settings().log_level)
    app()


if __name__ == "__main__":
    main()
