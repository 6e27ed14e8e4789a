"""Sampling and aggregation dataclasses for MontePi."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from montepi.engine.protocol import WorkerReport

__all__ = [
    "AggregateResult",
    "RunOutcome",
    "SampleResult",
]


@dataclass(frozen=True)
class SampleResult:
    """Counts produced by one worker after sampling.

    ``SampleResult`` values add element-wise, which is what the sample
    reduction sums across workers.

    Attributes:
        inside_count: Points that fell inside the circle.
        total_count: Every point drawn, regardless of classification.
    """

    inside_count: int = 0
    total_count: int = 0

    def __post_init__(self) -> None:
        if self.inside_count < 0 or self.total_count < 0:
            msg = f"Counts must be non-negative, got {self.inside_count}/{self.total_count}"
            raise ValueError(msg)
        if self.inside_count > self.total_count:
            msg = (
                f"inside_count ({self.inside_count}) exceeds "
                f"total_count ({self.total_count})"
            )
            raise ValueError(msg)

    def __add__(self, other: object) -> SampleResult:
        if not isinstance(other, SampleResult):
            return NotImplemented
        return SampleResult(
            inside_count=self.inside_count + other.inside_count,
            total_count=self.total_count + other.total_count,
        )


@dataclass(frozen=True)
class AggregateResult:
    """Final estimate assembled on the coordinator.

    Attributes:
        total_inside: Inside count summed over all workers.
        total_samples: Total count summed over all workers.
        pi_estimate: ``4.0 * total_inside / total_samples``.
        worker_count: Number of workers that contributed.
        elapsed_seconds: Wall-clock time from broadcast to assembly.
    """

    total_inside: int
    total_samples: int
    pi_estimate: float
    worker_count: int
    elapsed_seconds: float = 0.0

    @property
    def absolute_error(self) -> float:
        """Return the distance between the estimate and ``math.pi``."""
        return abs(self.pi_estimate - math.pi)

    def to_dict(self) -> dict[str, float | int]:
        """Return the result as a JSON-serializable dictionary."""
        return {
            "total_inside": self.total_inside,
            "total_samples": self.total_samples,
            "pi_estimate": self.pi_estimate,
            "absolute_error": self.absolute_error,
            "worker_count": self.worker_count,
            "elapsed_seconds": self.elapsed_seconds,
        }


@dataclass
class RunOutcome:
    """Complete outcome of a run, as seen by the caller of the runner.

    Attributes:
        aborted: True if the coordinator rejected the input.
        reason: Why the run was aborted, if it was.
        result: The final estimate, or None when aborted.
        worker_reports: One report per worker, in rank order.
    """

    aborted: bool = False
    reason: str | None = None
    result: AggregateResult | None = None
    worker_reports: list[WorkerReport] = field(default_factory=list)
