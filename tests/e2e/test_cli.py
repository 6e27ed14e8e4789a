"""End-to-end tests for the MontePi CLI."""

from __future__ import annotations

import json

import pytest
from typer.testing import CliRunner

from montepi import __version__
from montepi.cli.app import app
from montepi.engine.runner import PiRunner
from montepi.metrics.models import RunOutcome

runner = CliRunner()


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep MONTEPI_* variables from the host out of the CLI."""
    for name in (
        "MONTEPI_WORKERS",
        "MONTEPI_DOMAIN",
        "MONTEPI_ARENA_SIZE",
        "MONTEPI_TIMEOUT",
        "MONTEPI_POLL_INTERVAL",
    ):
        monkeypatch.delenv(name, raising=False)


# ---------------------------------------------------------------------------
# Tests: version and help
# ---------------------------------------------------------------------------


def test_version_flag():
    """--version prints version and exits 0."""
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_version_short_flag():
    """-V also prints version."""
    result = runner.invoke(app, ["-V"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_help_output():
    """--help shows usage information."""
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    assert "montepi" in result.output.lower()


def test_run_help():
    """montepi run --help shows run options."""
    result = runner.invoke(app, ["run", "--help"])
    assert result.exit_code == 0
    assert "--workers" in result.output
    assert "--domain" in result.output
    assert "--seed" in result.output


# ---------------------------------------------------------------------------
# Tests: input rejected by the coordinator
# ---------------------------------------------------------------------------


@pytest.mark.timeout(60)
def test_missing_samples_prints_usage():
    """A missing argument aborts the run cleanly with the usage hint."""
    result = runner.invoke(app, ["run", "--workers", "2"])
    assert result.exit_code == 0
    assert "Please provide the number of samples" in result.output
    assert "Estimate Complete" not in result.output


@pytest.mark.timeout(60)
@pytest.mark.parametrize("samples", ["0", "-10", "many"])
def test_invalid_samples_prints_usage(samples: str):
    """Zero, negative and malformed totals abort with the usage hint."""
    result = runner.invoke(app, ["run", "--workers", "2", "--", samples])
    assert result.exit_code == 0
    assert "montepi run <number_of_samples>" in result.output
    assert "Reason:" in result.output


def test_zero_workers_prints_usage():
    result = runner.invoke(app, ["run", "100", "--workers", "0"])
    assert result.exit_code == 0
    assert "Worker count must be >= 1" in result.output


# ---------------------------------------------------------------------------
# Tests: bad options
# ---------------------------------------------------------------------------


def test_unknown_domain():
    result = runner.invoke(app, ["run", "100", "--domain", "circle"])
    assert result.exit_code == 2


def test_unknown_format():
    result = runner.invoke(app, ["run", "100", "--format", "yaml"])
    assert result.exit_code == 2


def test_negative_seed():
    result = runner.invoke(app, ["run", "100", "--seed", "-1"])
    assert result.exit_code == 2


@pytest.mark.parametrize("timeout", ["0", "-1"])
def test_non_positive_timeout(timeout: str):
    """A timeout that could never be met is rejected before any worker starts."""
    result = runner.invoke(
        app, ["run", "1000", "--workers", "2", "--seed", "1", "--timeout", timeout]
    )
    assert result.exit_code == 2
    assert "Run failed" not in result.output


@pytest.mark.parametrize("arena_size", ["0", "-5"])
def test_non_positive_arena_size(arena_size: str):
    result = runner.invoke(
        app, ["run", "1000", "--workers", "2", "--seed", "1", "--arena-size", arena_size]
    )
    assert result.exit_code == 2
    assert "Run failed" not in result.output


def test_invalid_env_config(monkeypatch: pytest.MonkeyPatch):
    """A malformed MONTEPI_* variable fails before any worker starts."""
    monkeypatch.setenv("MONTEPI_TIMEOUT", "soon")
    result = runner.invoke(app, ["run", "100", "--workers", "1"])
    assert result.exit_code == 1
    assert "MONTEPI_TIMEOUT" in result.output


# ---------------------------------------------------------------------------
# Tests: montepi run
# ---------------------------------------------------------------------------


@pytest.mark.timeout(120)
def test_run_basic():
    """montepi run prints progress and the summary table."""
    result = runner.invoke(app, ["run", "10000", "--workers", "2", "--seed", "3"])
    assert result.exit_code == 0, f"output: {result.output}"
    assert "- Workers: 2" in result.output
    assert "- Each worker will compute 5000 samples out of 10000." in result.output
    assert "- Worker 1 will compute 5000 samples" in result.output
    assert "Estimate Complete" in result.output
    assert "Pi Estimate" in result.output


@pytest.mark.timeout(120)
def test_run_json_format():
    """--format json emits a parseable summary object."""
    result = runner.invoke(
        app,
        ["run", "20000", "--workers", "2", "--seed", "5", "--format", "json", "--domain", "full"],
    )
    assert result.exit_code == 0, f"output: {result.output}"

    payload = json.loads(result.output[result.output.index("{") :])
    assert payload["domain"] == "full"
    assert payload["total_samples"] == 20000
    assert payload["worker_count"] == 2
    assert payload["pi_estimate"] == pytest.approx(4 * payload["total_inside"] / 20000)


@pytest.mark.timeout(120)
def test_run_reads_workers_from_env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("MONTEPI_WORKERS", "1")
    result = runner.invoke(app, ["run", "500", "--seed", "1"])
    assert result.exit_code == 0, f"output: {result.output}"
    assert "- Workers: 1" in result.output


def test_missing_estimate_exits_one(monkeypatch: pytest.MonkeyPatch):
    """A completed run without an estimate is reported as a failure."""
    monkeypatch.setattr(PiRunner, "run", lambda self: RunOutcome())
    result = runner.invoke(app, ["run", "100", "--workers", "1"])
    assert result.exit_code == 1
    assert "no estimate" in result.output
