"""Protocol types and constants shared by the coordinator and workers."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

# Rank that validates input, drains messages and reports the estimate.
COORDINATOR_RANK = 0

# Tag under which progress messages travel to the coordinator.
PRINT_TAG = 100

# Largest progress message payload, in UTF-8 bytes.
MAX_MESSAGE_BYTES = 100

# Per-message bookkeeping charged against the outgoing arena.
BSEND_OVERHEAD = 96

# Enough room for ~100 maximum-size messages per worker.
DEFAULT_ARENA_SIZE = BSEND_OVERHEAD + 10_000


class SamplingDomain(Enum):
    """Where sample points are drawn from.

    Both domains estimate the area of the unit circle relative to the
    enclosing square, so ``4 * inside / total`` approximates pi in either.
    """

    QUARTER_CIRCLE_UNIT_SQUARE = "quarter"
    FULL_CIRCLE_CENTERED_SQUARE = "full"

    @classmethod
    def from_name(cls, name: str) -> SamplingDomain:
        """Look up a domain by its short CLI/environment name.

        Args:
            name: ``"quarter"`` or ``"full"`` (case-insensitive).

        Returns:
            The matching SamplingDomain.

        Raises:
            ValueError: If the name does not match any domain.
        """
        normalized = name.strip().lower()
        for domain in cls:
            if domain.value == normalized:
                return domain
        choices = ", ".join(d.value for d in cls)
        msg = f"Unknown sampling domain: {name!r}. Choose from: {choices}"
        raise ValueError(msg)


@dataclass(frozen=True)
class RunConfiguration:
    """Parameters of a single run, immutable once broadcast.

    Attributes:
        total_samples: Total number of points across all workers.
        worker_count: Number of workers (the coordinator included).
        domain: Sampling domain every worker uses.
        seed: Base seed for reproducible runs. None seeds from the clock.
        arena_capacity: Outgoing message arena size per worker, in bytes.
        timeout_seconds: Maximum wait for a collective or the drain loop.
        poll_interval: Pause between empty probes while draining.
    """

    total_samples: int
    worker_count: int
    domain: SamplingDomain = SamplingDomain.QUARTER_CIRCLE_UNIT_SQUARE
    seed: int | None = None
    arena_capacity: int = DEFAULT_ARENA_SIZE
    timeout_seconds: float = 300.0
    poll_interval: float = 0.001


@dataclass(frozen=True)
class Message:
    """A progress message emitted by a worker.

    Attributes:
        source_rank: Rank of the worker that sent the message.
        text: Message text, at most ``MAX_MESSAGE_BYTES`` bytes as UTF-8.
    """

    source_rank: int
    text: str


@dataclass(frozen=True)
class WorkerReport:
    """Result sent from a worker process back to the runner on exit.

    Attributes:
        rank: Rank of the worker that produced this report.
        success: Whether the worker completed its lifecycle.
        sent_messages: Number of progress messages the worker sent.
        aborted: Whether the worker exited on the coordinator's abort flag.
        error_message: Error description if the worker failed.
    """

    rank: int
    success: bool
    sent_messages: int = 0
    aborted: bool = False
    error_message: str | None = None


@dataclass(frozen=True)
class RunRequest:
    """What the coordinator is asked to run, before validation.

    Attributes:
        raw_total: The total sample count exactly as given on the command
            line, or None if it was missing.
        domain: Sampling domain every worker uses.
        seed: Base seed for reproducible runs. None seeds from the clock.
        arena_capacity: Outgoing message arena size per worker, in bytes.
        timeout_seconds: Maximum wait for a collective or the drain loop.
        poll_interval: Pause between empty probes while draining.
    """

    raw_total: str | None
    domain: SamplingDomain = SamplingDomain.QUARTER_CIRCLE_UNIT_SQUARE
    seed: int | None = None
    arena_capacity: int = DEFAULT_ARENA_SIZE
    timeout_seconds: float = 300.0
    poll_interval: float = 0.001
