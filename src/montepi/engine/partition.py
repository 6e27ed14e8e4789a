"""Work partitioning: split a total sample count across workers."""

from __future__ import annotations

from montepi._internal.errors import PartitionError
from montepi.engine.protocol import COORDINATOR_RANK


def _check(total: int, workers: int) -> None:
    if workers < 1:
        msg = f"Worker count must be >= 1, got: {workers}"
        raise PartitionError(msg)
    if total < 0:
        msg = f"Total sample count must be >= 0, got: {total}"
        raise PartitionError(msg)


def partition(total: int, workers: int, rank: int = COORDINATOR_RANK) -> int:
    """Return the number of samples ``rank`` must compute.

    Every worker gets ``total // workers``. The remainder goes to the
    coordinator only, so the shares always add up to ``total``.

    Args:
        total: Total number of samples across all workers.
        workers: Number of workers.
        rank: Rank whose share is requested.

    Returns:
        The worker's share, never negative.

    Raises:
        PartitionError: If ``workers < 1``, ``total < 0`` or ``rank`` is
            outside ``[0, workers)``.
    """
    _check(total, workers)
    if not 0 <= rank < workers:
        msg = f"Rank {rank} is outside [0, {workers})"
        raise PartitionError(msg)

    share = total // workers
    if rank == COORDINATOR_RANK:
        share += total - share * workers
    return share


def partition_all(total: int, workers: int) -> list[int]:
    """Return every worker's share, in rank order.

    Args:
        total: Total number of samples across all workers.
        workers: Number of workers.

    Returns:
        List of ``workers`` shares summing to ``total``.

    Raises:
        PartitionError: If ``workers < 1`` or ``total < 0``.
    """
    _check(total, workers)
    return [partition(total, workers, rank) for rank in range(workers)]
