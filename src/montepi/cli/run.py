"""``montepi run``: estimate pi across worker processes."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

import typer
from rich.console import Console
from rich.table import Table

from montepi._internal.config import load_config
from montepi._internal.errors import ConfigError, MontePiError
from montepi.engine.protocol import RunRequest, SamplingDomain
from montepi.engine.runner import PiRunner

if TYPE_CHECKING:
    from montepi.engine.protocol import Message, RunConfiguration
    from montepi.metrics.models import AggregateResult

console = Console(stderr=True)
output = Console(highlight=False)

USAGE = (
    "Please provide the number of samples to use for the estimate:\n\n"
    "\tmontepi run <number_of_samples>\n"
)


# ---------------------------------------------------------------------------
# Output helpers
# ---------------------------------------------------------------------------


def _print_summary(result: AggregateResult, domain: SamplingDomain) -> None:
    """Print the final estimate as a table.

    Args:
        result: Completed aggregate result.
        domain: Sampling domain the run used.
    """
    table = Table(
        title="Estimate Complete",
        show_header=True,
        header_style="bold green",
        expand=True,
    )
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    table.add_row("Workers", str(result.worker_count))
    table.add_row("Domain", domain.value)
    table.add_row("Inside Samples", str(result.total_inside))
    table.add_row("Total Samples", str(result.total_samples))
    table.add_row("Pi Estimate", f"{result.pi_estimate:.6f}")
    table.add_row("Absolute Error", f"{result.absolute_error:.6f}")
    table.add_row("Wall Time", f"{result.elapsed_seconds:.2f}s")

    output.print(table)


def _resolve_domain(name: str | None, default: SamplingDomain) -> SamplingDomain:
    if name is None:
        return default
    try:
        return SamplingDomain.from_name(name)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--domain") from None


# ---------------------------------------------------------------------------
# Command
# ---------------------------------------------------------------------------


def run_cmd(
    samples: str | None = typer.Argument(
        None,
        help="Total number of samples to draw across all workers.",
        show_default=False,
    ),
    workers: int | None = typer.Option(
        None,
        "--workers",
        "-w",
        help="Number of workers, the coordinator included (default: CPU count).",
    ),
    domain: str | None = typer.Option(
        None,
        "--domain",
        "-d",
        help="Sampling domain: quarter (unit square) or full (centered square).",
    ),
    seed: int | None = typer.Option(
        None,
        "--seed",
        "-s",
        help="Base seed for a reproducible run (default: clock-derived).",
        min=0,
    ),
    arena_size: int | None = typer.Option(
        None,
        "--arena-size",
        help="Outgoing message arena per worker, in bytes.",
        min=1,
    ),
    timeout: float | None = typer.Option(
        None,
        "--timeout",
        help="Seconds to wait for a stalled collective or drain before failing.",
    ),
    fmt: str = typer.Option(
        "text",
        "--format",
        "-f",
        help="Summary format: text or json.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose (DEBUG) logging.",
    ),
    log_json: bool = typer.Option(
        False,
        "--log-json",
        help="Emit log records as JSON lines on stderr.",
    ),
) -> None:
    """Estimate pi by distributed Monte Carlo sampling."""
    if fmt not in ("text", "json"):
        msg = f"Unknown format: {fmt}. Choose from: text, json"
        raise typer.BadParameter(msg, param_hint="--format")
    if timeout is not None and timeout <= 0:
        msg = f"Timeout must be positive, got: {timeout}"
        raise typer.BadParameter(msg, param_hint="--timeout")

    try:
        config = load_config()
    except ConfigError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(code=1) from exc

    request = RunRequest(
        raw_total=samples,
        domain=_resolve_domain(domain, config.domain),
        seed=seed,
        arena_capacity=arena_size if arena_size is not None else config.arena_capacity,
        timeout_seconds=timeout if timeout is not None else config.timeout_seconds,
        poll_interval=config.poll_interval,
    )

    # JSON output keeps stdout for the summary object only
    progress = console if fmt == "json" else output

    def _on_configured(run_config: RunConfiguration) -> None:
        progress.print(f"- Workers: {run_config.worker_count}")
        progress.print(
            f"- Each worker will compute "
            f"{run_config.total_samples // run_config.worker_count} samples "
            f"out of {run_config.total_samples}."
        )

    def _on_message(message: Message) -> None:
        progress.print(message.text, markup=False, soft_wrap=True)

    runner = PiRunner(
        request,
        num_workers=workers if workers is not None else config.workers,
        on_configured=_on_configured,
        on_message=_on_message,
        log_level=logging.DEBUG if verbose else logging.WARNING,
        log_json=log_json,
    )

    try:
        outcome = runner.run()
    except MontePiError as exc:
        console.print(f"[red]Run failed:[/red] {exc}")
        raise typer.Exit(code=1) from exc

    if outcome.aborted:
        typer.echo(USAGE)
        if outcome.reason:
            typer.echo(f"Reason: {outcome.reason}")
        raise typer.Exit(code=0)

    result = outcome.result
    if result is None:
        console.print("[red]Run failed:[/red] the coordinator returned no estimate")
        raise typer.Exit(code=1)

    if fmt == "json":
        payload = {"domain": request.domain.value, **result.to_dict()}
        typer.echo(json.dumps(payload, indent=2))
    else:
        _print_summary(result, request.domain)
