"""Per-rank endpoint of a process group: collectives and point-to-point messages."""

from __future__ import annotations

import operator
import queue
import time
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from montepi._internal.errors import ProtocolError
from montepi._internal.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable
    from multiprocessing import Queue as MpQueue

    from montepi._internal.types import Payload, Rank, Tag

logger = get_logger("runtime.communicator")

# Wildcards accepted by ``iprobe`` and ``recv``.
ANY_SOURCE = -1
ANY_TAG = -1


@dataclass(frozen=True)
class Status:
    """Describes a pending point-to-point message found by ``iprobe``.

    Attributes:
        source: Rank that sent the message.
        tag: Tag the message was sent with.
        count: Payload size in bytes.
    """

    source: int
    tag: int
    count: int


@dataclass(frozen=True)
class Envelope:
    """A point-to-point message in transit."""

    source: int
    tag: int
    payload: bytes


@dataclass(frozen=True)
class CollectiveEnvelope:
    """One participant's contribution to a collective round.

    Attributes:
        seq: Collective round number, identical on every rank for the same
            call site since all ranks call collectives in program order.
        source: Rank that contributed the value.
        value: Broadcast value or reduction operand.
    """

    seq: int
    source: int
    value: Any


@dataclass(frozen=True)
class PeerFailure:
    """Notice that a rank exited before the run completed.

    Posted to a survivor's inboxes by whoever supervises the processes, so a
    blocked collective or receive fails at once instead of waiting for its
    timeout.

    Attributes:
        source: Rank that exited.
        exitcode: The process exit status, negative for a signal.
    """

    source: int
    exitcode: int | None

    def error(self, rank: int) -> ProtocolError:
        msg = f"Rank {rank}: rank {self.source} exited with status {self.exitcode}"
        return ProtocolError(msg)


def _matches(envelope: Envelope, source: int, tag: int) -> bool:
    return (source in (ANY_SOURCE, envelope.source)) and (tag in (ANY_TAG, envelope.tag))


class Communicator:
    """Message-passing endpoint for one rank of a :class:`ProcessGroup`.

    Collectives (``bcast``, ``reduce``) must be called by every rank in
    the same order. Each call is numbered so that a contribution to a later
    round is held back until that round, and a rank that never shows up is
    reported as a ``ProtocolError`` once ``timeout`` expires.

    Point-to-point sends are asynchronous: ``bsend`` returns as soon as the
    payload is handed to the destination's inbox queue, whose feeder
    thread completes the transfer in the background.

    Attributes:
        rank: This endpoint's rank.
        size: Number of ranks in the group.
        timeout: Seconds to wait for a collective before giving up.
    """

    def __init__(
        self,
        rank: Rank,
        size: int,
        p2p_queues: list[MpQueue[Envelope | PeerFailure]],
        collective_queues: list[MpQueue[CollectiveEnvelope | PeerFailure]],
        *,
        timeout: float = 300.0,
    ) -> None:
        """Initialize the endpoint.

        Args:
            rank: This endpoint's rank.
            size: Number of ranks in the group.
            p2p_queues: Point-to-point inbox of every rank, indexed by rank.
            collective_queues: Collective inbox of every rank, indexed by rank.
            timeout: Seconds to wait for a collective before giving up.
        """
        self.rank = rank
        self.size = size
        self.timeout = timeout
        self._p2p_queues = p2p_queues
        self._collective_queues = collective_queues

        self._seq = 0
        self._held: dict[int, dict[int, Any]] = {}
        self._inbox: deque[Envelope] = deque()

    # ------------------------------------------------------------------
    # Collectives
    # ------------------------------------------------------------------

    def bcast(self, value: Any = None, root: Rank = 0) -> Any:
        """Broadcast ``value`` from ``root`` to every rank.

        Args:
            value: Value to broadcast. Ignored on non-root ranks.
            root: Rank whose value is broadcast.

        Returns:
            The root's value, on every rank.

        Raises:
            ProtocolError: If the root's value does not arrive in time.
        """
        seq = self._next_seq()
        if self.rank == root:
            for dest in range(self.size):
                if dest != root:
                    self._collective_queues[dest].put(
                        CollectiveEnvelope(seq=seq, source=root, value=value)
                    )
            return value

        return self._gather(seq, [root], "bcast")[root]

    def reduce(
        self,
        value: Any,
        op: Callable[[Any, Any], Any] = operator.add,
        root: Rank = 0,
    ) -> Any:
        """Combine every rank's ``value`` with ``op`` onto ``root``.

        Operands are combined in rank order, so non-commutative operations
        give the same answer on every run.

        Args:
            value: This rank's operand.
            op: Binary reduction operation. Defaults to summation.
            root: Rank that receives the result.

        Returns:
            The reduced value on ``root``; None on every other rank.

        Raises:
            ProtocolError: If a participant's operand does not arrive in time,
                or a participant is reported to have exited.
        """
        seq = self._next_seq()
        if self.rank != root:
            self._collective_queues[root].put(
                CollectiveEnvelope(seq=seq, source=self.rank, value=value)
            )
            return None

        sources = [r for r in range(self.size) if r != root]
        operands = self._gather(seq, sources, "reduce")
        operands[root] = value

        result = operands[0]
        for r in range(1, self.size):
            result = op(result, operands[r])
        return result

    def _next_seq(self) -> int:
        self._seq += 1
        return self._seq

    def _gather(self, seq: int, sources: list[int], name: str) -> dict[int, Any]:
        """Collect one contribution from each of ``sources`` for round ``seq``."""
        values = self._held.pop(seq, {})
        inbox = self._collective_queues[self.rank]
        deadline = time.monotonic() + self.timeout

        while len(values) < len(sources):
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                missing = sorted(set(sources) - set(values))
                msg = (
                    f"Rank {self.rank}: {name} round {seq} timed out after "
                    f"{self.timeout:.1f}s waiting for ranks {missing}"
                )
                raise ProtocolError(msg)

            try:
                envelope = inbox.get(timeout=remaining)
            except queue.Empty:
                continue

            if isinstance(envelope, PeerFailure):
                raise envelope.error(self.rank)

            if envelope.seq == seq:
                if envelope.source in values:
                    msg = (
                        f"Rank {self.rank}: rank {envelope.source} contributed "
                        f"twice to {name} round {seq}"
                    )
                    raise ProtocolError(msg)
                values[envelope.source] = envelope.value
            elif envelope.seq > seq:
                # Early contribution from a rank that is already a round ahead
                self._held.setdefault(envelope.seq, {})[envelope.source] = envelope.value
            else:
                msg = (
                    f"Rank {self.rank}: stale contribution for round "
                    f"{envelope.seq} from rank {envelope.source} during round {seq}"
                )
                raise ProtocolError(msg)

        return values

    # ------------------------------------------------------------------
    # Point-to-point
    # ------------------------------------------------------------------

    def bsend(self, payload: Payload, dest: Rank, tag: Tag) -> None:
        """Send ``payload`` to ``dest`` without waiting for delivery.

        Args:
            payload: Bytes to send.
            dest: Destination rank.
            tag: Message tag.
        """
        self._p2p_queues[dest].put(Envelope(source=self.rank, tag=tag, payload=payload))

    def iprobe(self, source: Rank = ANY_SOURCE, tag: Tag = ANY_TAG) -> Status | None:
        """Check, without blocking, for a pending message.

        Args:
            source: Sender rank, or ``ANY_SOURCE``.
            tag: Message tag, or ``ANY_TAG``.

        Returns:
            Status of the oldest matching message, or None if none is pending.

        Raises:
            ProtocolError: If a peer is reported to have exited.
        """
        self._pull_pending()
        for envelope in self._inbox:
            if _matches(envelope, source, tag):
                return Status(
                    source=envelope.source,
                    tag=envelope.tag,
                    count=len(envelope.payload),
                )
        return None

    def recv(
        self,
        source: Rank = ANY_SOURCE,
        tag: Tag = ANY_TAG,
        *,
        timeout: float | None = None,
    ) -> bytes:
        """Receive the oldest message matching ``source`` and ``tag``.

        Args:
            source: Sender rank, or ``ANY_SOURCE``.
            tag: Message tag, or ``ANY_TAG``.
            timeout: Seconds to wait. Defaults to the communicator timeout.

        Returns:
            The message payload.

        Raises:
            ProtocolError: If no matching message arrives in time, or a
                peer is reported to have exited.
        """
        wait = self.timeout if timeout is None else timeout
        deadline = time.monotonic() + wait
        inbox = self._p2p_queues[self.rank]

        while True:
            for envelope in self._inbox:
                if _matches(envelope, source, tag):
                    self._inbox.remove(envelope)
                    return envelope.payload

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                msg = (
                    f"Rank {self.rank}: no message from source={source} "
                    f"tag={tag} within {wait:.1f}s"
                )
                raise ProtocolError(msg)
            try:
                item = inbox.get(timeout=remaining)
            except queue.Empty:
                continue
            self._accept(item)

    def _pull_pending(self) -> None:
        inbox = self._p2p_queues[self.rank]
        while True:
            try:
                item = inbox.get_nowait()
            except queue.Empty:
                return
            self._accept(item)

    def _accept(self, item: Envelope | PeerFailure) -> None:
        if isinstance(item, PeerFailure):
            raise item.error(self.rank)
        self._inbox.append(item)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Flush everything this rank sent and release its queue handles.

        Blocks until the feeder threads of every queue this rank wrote to
        have pushed their data to the underlying pipes. Call once, at the
        very end of a worker process.
        """
        for q in (*self._p2p_queues, *self._collective_queues):
            q.close()
            q.join_thread()
        logger.debug("Rank %d: communicator closed", self.rank)
