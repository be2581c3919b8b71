"""CLI interface for perfcore."""

import json
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

import httpx
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from perfcore.config import ExecutionConfig, Settings
from perfcore.engine.aggregator import ScenarioOutcome, Verdict
from perfcore.engine.metrics import MetricsSnapshot, summarize
from perfcore.engine.scheduler import TestResult
from perfcore.executors import default_registry
from perfcore.harness import LoadTestHarness
from perfcore.scenario.schema import load_document
from perfcore.scenario.validation import ConfigurationError

# Configure logging with Rich
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    handlers=[RichHandler(rich_tracebacks=True)]
)

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="perfcore",
    help="Run declarative load-test scenarios and gate on their success rate"
)

console = Console()

__version__ = "0.1.0"

EXIT_PASS = 0
EXIT_FAIL = 1
EXIT_CONFIG = 2


class ConsoleReporter:
    """Prints one rich table per scenario: overall row plus per-request rows."""

    def __init__(self, target: Console, show_failures: int = 5) -> None:
        self.console = target
        self.show_failures = show_failures

    def report(self, results: Sequence[TestResult], snapshot: MetricsSnapshot, verdict: Verdict) -> None:
        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("Request", style="cyan")
        table.add_column("Samples", justify="right")
        table.add_column("Success %", justify="right")
        table.add_column("Mean ms", justify="right")
        table.add_column("p90 ms", justify="right")
        table.add_column("p95 ms", justify="right")
        table.add_column("Max ms", justify="right")

        names = []
        for result in results:
            if result.request_name not in names:
                names.append(result.request_name)
        for name in names:
            stats = summarize([result.sample for result in results if result.request_name == name], (90, 95))
            table.add_row(
                name,
                str(stats.count),
                f"{stats.success_rate:.1f}",
                f"{stats.mean_ms:.1f}",
                _format_ms(stats.percentile(90)),
                _format_ms(stats.percentile(95)),
                f"{stats.max_ms:.1f}",
            )

        table.add_row(
            "[bold]total[/bold]",
            str(snapshot.count),
            f"{snapshot.success_rate:.1f}",
            f"{snapshot.mean_ms:.1f}",
            _format_ms(snapshot.percentile(90)),
            _format_ms(snapshot.percentile(95)),
            f"{snapshot.max_ms:.1f}",
        )
        self.console.print(table)

        failures = [result for result in results if not result.success]
        for result in failures[: self.show_failures]:
            self.console.print(
                f"  ✗ {result.request_name} (worker {result.worker_id}, iteration {result.iteration}): "
                f"[red]{escape(result.label)}[/red] {escape(result.error or '')}"
            )
        if len(failures) > self.show_failures:
            self.console.print(f"  [dim]... {len(failures) - self.show_failures} more failure(s)[/dim]")

        style = "green" if verdict is Verdict.PASS else "red"
        self.console.print(f"Verdict: [bold {style}]{verdict.value}[/bold {style}]\n")


def _format_ms(value: Optional[float]) -> str:
    return "-" if value is None else f"{value:.1f}"


def _set_log_level(settings: Settings, verbose: bool) -> None:
    level = logging.DEBUG if verbose else getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.getLogger().setLevel(level)


def _read_document(path: Path) -> dict:
    try:
        document = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigurationError(f"Unable to read {path}", [str(exc)]) from exc
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"{path} is not valid JSON", [str(exc)]) from exc
    if not isinstance(document, dict):
        raise ConfigurationError(f"{path} must contain a JSON object")
    return document


def _write_results(path: Path, outcome: ScenarioOutcome) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(outcome.to_dict(include_results=True), indent=2), encoding="utf-8")
    console.print(f"Results written to [cyan]{path}[/cyan]")


@app.command()
def run(
    scenario_path: Path = typer.Argument(
        ...,
        help="Path to a JSON scenario definition",
        exists=True,
        dir_okay=False,
    ),
    threshold: Optional[float] = typer.Option(
        None,
        "--threshold",
        "-t",
        min=0.0,
        max=100.0,
        help="Override the scenario's success threshold (percent)"
    ),
    output: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        help="Write the outcome and every result as JSON"
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose logging"
    ),
):
    """
    Run one scenario with the built-in HTTP, GraphQL and SOAP executors.

    Exits 0 when the scenario passes, 1 when it fails its threshold and 2 on
    configuration errors.
    """
    settings = Settings()
    config = ExecutionConfig.from_settings(settings)
    _set_log_level(settings, verbose)

    try:
        document = _read_document(scenario_path)
        scenario, data_sources = load_document(document, config.default_success_threshold)
    except ConfigurationError as exc:
        console.print(f"[red]Configuration error: {escape(str(exc))}[/red]")
        raise typer.Exit(EXIT_CONFIG) from exc

    console.print(f"\n[bold blue]Load test: {scenario.name}[/bold blue]\n")
    console.print(
        f"Threads: [cyan]{scenario.threads}[/cyan]  Iterations: [cyan]{scenario.iterations}[/cyan]  "
        f"Ramp-up: [cyan]{scenario.ramp_up_seconds}s[/cyan]  Hold: [cyan]{scenario.hold_seconds}s[/cyan]\n"
    )

    with httpx.Client(verify=settings.verify_tls, follow_redirects=True) as client:
        harness = LoadTestHarness(
            default_registry(settings, client),
            config,
            reporters=[ConsoleReporter(console)],
            data_sources=data_sources,
        )
        try:
            outcome = harness.run_scenario(scenario, threshold)
        except ConfigurationError as exc:
            console.print(f"[red]Configuration error: {escape(str(exc))}[/red]")
            raise typer.Exit(EXIT_CONFIG) from exc

    for detail in outcome.details:
        console.print(f"  • {detail}")
    if output is not None:
        _write_results(output, outcome)

    raise typer.Exit(EXIT_PASS if outcome.passed else EXIT_FAIL)


@app.command()
def version():
    """Show version information."""
    console.print(f"[cyan]perfcore[/cyan] v{__version__}")


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
