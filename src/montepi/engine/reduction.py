"""Two-round reduction onto the coordinator and final result assembly."""

from __future__ import annotations

from typing import TYPE_CHECKING

from montepi._internal.errors import ProtocolError
from montepi._internal.logging import get_logger
from montepi.engine.protocol import COORDINATOR_RANK
from montepi.metrics.models import AggregateResult, SampleResult

if TYPE_CHECKING:
    from montepi.engine.channel import OrderedMessageChannel
    from montepi.runtime.communicator import Communicator

logger = get_logger("engine.reduction")


class ReductionCoordinator:
    """Drives the message-count and sample-count reductions.

    Both rounds are collectives: every worker must call them exactly once,
    message count first, in the same program order.
    """

    def __init__(self, comm: Communicator, root: int = COORDINATOR_RANK) -> None:
        self._comm = comm
        self._root = root

    @property
    def is_root(self) -> bool:
        """Return True on the rank that receives the reductions."""
        return self._comm.rank == self._root

    def reduce_message_count(self, channel: OrderedMessageChannel) -> int | None:
        """Sum every worker's sent-message counter onto the coordinator.

        Args:
            channel: This worker's channel. All of the worker's sends must
                already have been issued.

        Returns:
            Total messages sent by all workers on the coordinator; None elsewhere.
        """
        total = self._comm.reduce(channel.sent_count, root=self._root)
        if self.is_root:
            logger.debug("Message-count reduction: %d messages expected", total)
        return total

    def reduce_samples(self, result: SampleResult) -> SampleResult | None:
        """Sum every worker's counts element-wise onto the coordinator.

        Args:
            result: This worker's sampling result.

        Returns:
            The summed counts on the coordinator; None elsewhere.
        """
        total = self._comm.reduce(result, root=self._root)
        if self.is_root:
            logger.debug(
                "Sample reduction: inside=%d total=%d",
                total.inside_count,
                total.total_count,
            )
        return total


def assemble(
    totals: SampleResult,
    worker_count: int,
    elapsed_seconds: float = 0.0,
) -> AggregateResult:
    """Build the final estimate from the reduced counts.

    Args:
        totals: Counts summed over every worker.
        worker_count: Number of workers that contributed.
        elapsed_seconds: Wall-clock duration of the run.

    Returns:
        AggregateResult with ``pi_estimate = 4 * inside / total``.

    Raises:
        ProtocolError: If no samples were reduced.
    """
    if totals.total_count == 0:
        msg = "Cannot estimate pi from zero samples"
        raise ProtocolError(msg)

    return AggregateResult(
        total_inside=totals.inside_count,
        total_samples=totals.total_count,
        pi_estimate=4.0 * totals.inside_count / totals.total_count,
        worker_count=worker_count,
        elapsed_seconds=elapsed_seconds,
    )
