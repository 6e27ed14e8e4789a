"""Configuration loading for MontePi."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from montepi._internal.errors import ConfigError
from montepi.engine.protocol import DEFAULT_ARENA_SIZE, SamplingDomain


def _default_workers() -> int:
    return os.cpu_count() or 1


@dataclass(frozen=True)
class MontePiConfig:
    """Global MontePi configuration.

    Attributes:
        workers: Number of worker processes, the coordinator included.
        domain: Default sampling domain.
        arena_capacity: Outgoing message arena size per worker, in bytes.
        timeout_seconds: Maximum wait for a collective or the drain loop.
        poll_interval: Seconds between empty probes while draining.
    """

    workers: int = field(default_factory=_default_workers)
    domain: SamplingDomain = SamplingDomain.QUARTER_CIRCLE_UNIT_SQUARE
    arena_capacity: int = DEFAULT_ARENA_SIZE
    timeout_seconds: float = 300.0
    poll_interval: float = 0.001


def _int_from_env(name: str, default: int, minimum: int) -> int:
    raw = os.environ.get(name, str(default))
    try:
        value = int(raw)
    except ValueError:
        msg = f"{name} must be an integer, got: {raw!r}"
        raise ConfigError(msg) from None

    if value < minimum:
        msg = f"{name} must be >= {minimum}, got: {value}"
        raise ConfigError(msg)
    return value


def _float_from_env(name: str, default: float, *, allow_zero: bool) -> float:
    raw = os.environ.get(name, str(default))
    try:
        value = float(raw)
    except ValueError:
        msg = f"{name} must be a number, got: {raw!r}"
        raise ConfigError(msg) from None

    if value < 0 or (value == 0 and not allow_zero):
        qualifier = "non-negative" if allow_zero else "positive"
        msg = f"{name} must be {qualifier}, got: {value}"
        raise ConfigError(msg)
    return value


def load_config() -> MontePiConfig:
    """Load configuration from environment variables with defaults.

    Environment variables:
        MONTEPI_WORKERS: Worker process count (default: CPU count).
        MONTEPI_DOMAIN: ``quarter`` or ``full`` (default: quarter).
        MONTEPI_ARENA_SIZE: Arena size in bytes (default: 10096).
        MONTEPI_TIMEOUT: Collective timeout in seconds (default: 300.0).
        MONTEPI_POLL_INTERVAL: Drain poll interval in seconds (default: 0.001).

    Returns:
        Populated MontePiConfig instance.

    Raises:
        ConfigError: If an environment variable has an invalid value.
    """
    workers = _int_from_env("MONTEPI_WORKERS", _default_workers(), minimum=1)
    arena_capacity = _int_from_env(
        "MONTEPI_ARENA_SIZE", DEFAULT_ARENA_SIZE, minimum=1
    )
    timeout = _float_from_env("MONTEPI_TIMEOUT", 300.0, allow_zero=False)
    poll_interval = _float_from_env(
        "MONTEPI_POLL_INTERVAL", 0.001, allow_zero=True
    )

    domain_name = os.environ.get("MONTEPI_DOMAIN", "quarter")
    try:
        domain = SamplingDomain.from_name(domain_name)
    except ValueError as exc:
        msg = f"MONTEPI_DOMAIN is invalid: {exc}"
        raise ConfigError(msg) from None

    return MontePiConfig(
        workers=workers,
        domain=domain,
        arena_capacity=arena_capacity,
        timeout_seconds=timeout,
        poll_interval=poll_interval,
    )
