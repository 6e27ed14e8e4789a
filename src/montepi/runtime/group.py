"""Process group bootstrap: one inbox pair per rank."""

from __future__ import annotations

import multiprocessing
from typing import TYPE_CHECKING

from montepi._internal.logging import get_logger
from montepi.runtime.communicator import Communicator, PeerFailure

if TYPE_CHECKING:
    from multiprocessing import Queue as MpQueue
    from multiprocessing.context import BaseContext

    from montepi.runtime.communicator import CollectiveEnvelope, Envelope

logger = get_logger("runtime.group")


class ProcessGroup:
    """A fixed-size group of ranks that exchange messages through queues.

    The group owns a point-to-point inbox and a collective inbox for every
    rank. It is created once, before any worker starts; the per-rank
    :class:`Communicator` objects it hands out are passed to worker
    processes as spawn arguments.

    Attributes:
        size: Number of ranks.
    """

    def __init__(
        self,
        size: int,
        *,
        context: BaseContext | None = None,
        timeout: float = 300.0,
    ) -> None:
        """Create the inboxes for ``size`` ranks.

        Args:
            size: Number of ranks, at least 1.
            context: Multiprocessing context. Defaults to ``spawn``.
            timeout: Collective timeout handed to every communicator.

        Raises:
            ValueError: If ``size`` is less than 1.
        """
        if size < 1:
            msg = f"Process group size must be >= 1, got: {size}"
            raise ValueError(msg)

        self.size = size
        self._timeout = timeout
        self._ctx = context or multiprocessing.get_context("spawn")
        self._p2p_queues: list[MpQueue[Envelope | PeerFailure]] = [
            self._ctx.Queue() for _ in range(size)
        ]
        self._collective_queues: list[MpQueue[CollectiveEnvelope | PeerFailure]] = [
            self._ctx.Queue() for _ in range(size)
        ]
        logger.debug("Created process group of size %d", size)

    @property
    def context(self) -> BaseContext:
        """Return the multiprocessing context the group's queues belong to."""
        return self._ctx

    def communicator(self, rank: int) -> Communicator:
        """Return the endpoint for ``rank``.

        Args:
            rank: Rank in ``[0, size)``.

        Returns:
            A fresh Communicator bound to the group's queues.

        Raises:
            ValueError: If ``rank`` is out of range.
        """
        if not 0 <= rank < self.size:
            msg = f"Rank {rank} is outside [0, {self.size})"
            raise ValueError(msg)
        return Communicator(
            rank,
            self.size,
            self._p2p_queues,
            self._collective_queues,
            timeout=self._timeout,
        )

    def notify_failure(self, rank: int, exitcode: int | None, dest: int = 0) -> None:
        """Tell ``dest`` that ``rank`` exited before the run completed.

        The notice lands in both of ``dest``'s inboxes, so whichever
        collective or receive it is blocked in raises ``ProtocolError``.
        """
        notice = PeerFailure(source=rank, exitcode=exitcode)
        self._p2p_queues[dest].put(notice)
        self._collective_queues[dest].put(notice)
        logger.debug("Notified rank %d that rank %d exited (%s)", dest, rank, exitcode)

    def close(self) -> None:
        """Close every queue owned by the group."""
        for q in (*self._p2p_queues, *self._collective_queues):
            q.close()
