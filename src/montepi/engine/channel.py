"""Buffered progress-message channel from workers to the coordinator.

Every worker owns one :class:`OrderedMessageChannel`. ``send`` copies the
text into a fixed-size arena and returns at once; a background flusher
thread hands arena entries to the transport. The coordinator calls
``drain`` with the total number of messages announced by the
message-count reduction and consumes exactly that many, in delivery order.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from typing import TYPE_CHECKING

from montepi._internal.errors import (
    ChannelCapacityError,
    ChannelError,
    MessageTooLongError,
    ProtocolError,
)
from montepi._internal.logging import get_logger
from montepi.engine.protocol import (
    BSEND_OVERHEAD,
    COORDINATOR_RANK,
    DEFAULT_ARENA_SIZE,
    MAX_MESSAGE_BYTES,
    PRINT_TAG,
    Message,
)
from montepi.runtime.communicator import ANY_SOURCE

if TYPE_CHECKING:
    from collections.abc import Callable
    from types import TracebackType

    from montepi.runtime.communicator import Communicator

logger = get_logger("engine.channel")


class OrderedMessageChannel:
    """Asynchronous, buffered message channel owned by a single worker.

    Lifecycle: ``attach`` → any number of ``send`` → ``detach``. The
    channel can also be used as a context manager, which attaches on entry
    and detaches on exit.

    Messages from one worker reach the coordinator in the order they were
    sent. Messages from different workers interleave in delivery order.

    Attributes:
        dest: Rank that receives the messages.
        tag: Tag the messages travel under.
    """

    def __init__(
        self,
        comm: Communicator,
        *,
        capacity: int = DEFAULT_ARENA_SIZE,
        dest: int = COORDINATOR_RANK,
        tag: int = PRINT_TAG,
    ) -> None:
        """Initialize a detached channel.

        Args:
            comm: The owning worker's communicator.
            capacity: Default arena size in bytes used by ``attach``.
            dest: Rank that receives the messages.
            tag: Tag the messages travel under.
        """
        self._comm = comm
        self._default_capacity = capacity
        self.dest = dest
        self.tag = tag

        self._cond = threading.Condition()
        self._arena: deque[bytes] = deque()
        self._capacity = 0
        self._used = 0
        self._attached = False
        self._closing = False
        self._flusher: threading.Thread | None = None
        self._flush_error: BaseException | None = None
        self._sent_count = 0

    @property
    def sent_count(self) -> int:
        """Return the number of messages sent over the channel's lifetime."""
        with self._cond:
            return self._sent_count

    @property
    def is_attached(self) -> bool:
        """Return True between ``attach`` and ``detach``."""
        with self._cond:
            return self._attached

    @property
    def bytes_in_use(self) -> int:
        """Return the arena bytes currently reserved by undelivered messages."""
        with self._cond:
            return self._used

    # ------------------------------------------------------------------
    # Sender side
    # ------------------------------------------------------------------

    def attach(self, capacity: int | None = None) -> None:
        """Acquire the outgoing arena and start the flusher thread.

        Args:
            capacity: Arena size in bytes. Defaults to the size given at
                construction.

        Raises:
            ChannelError: If the channel is already attached or the
                capacity is not positive.
        """
        size = self._default_capacity if capacity is None else capacity
        if size < 1:
            msg = f"Arena capacity must be >= 1 byte, got: {size}"
            raise ChannelError(msg)

        with self._cond:
            if self._attached:
                msg = f"Rank {self._comm.rank}: channel is already attached"
                raise ChannelError(msg)
            self._capacity = size
            self._used = 0
            self._closing = False
            self._flush_error = None
            self._attached = True

        self._flusher = threading.Thread(
            target=self._flush_loop,
            name=f"montepi-channel-{self._comm.rank}",
            daemon=True,
        )
        self._flusher.start()
        logger.debug("Rank %d: channel attached (%d bytes)", self._comm.rank, size)

    def send(self, text: str) -> None:
        """Copy ``text`` into the arena for delivery to the coordinator.

        Returns as soon as the message is in the arena; delivery happens in
        the background.

        Args:
            text: Message text, at most ``MAX_MESSAGE_BYTES`` UTF-8 bytes.

        Raises:
            MessageTooLongError: If the encoded text is too long.
            ChannelError: If the channel is not attached.
            ChannelCapacityError: If the arena has no room for the message.
        """
        payload = text.encode("utf-8")
        if len(payload) > MAX_MESSAGE_BYTES:
            msg = (
                f"Message is {len(payload)} bytes, the limit is "
                f"{MAX_MESSAGE_BYTES}: {text[:40]!r}..."
            )
            raise MessageTooLongError(msg)

        needed = len(payload) + BSEND_OVERHEAD
        with self._cond:
            if not self._attached or self._closing:
                msg = f"Rank {self._comm.rank}: send on a detached channel"
                raise ChannelError(msg)
            if self._used + needed > self._capacity:
                msg = (
                    f"Rank {self._comm.rank}: arena of {self._capacity} bytes "
                    f"cannot hold {needed} more bytes ({self._used} in use)"
                )
                raise ChannelCapacityError(msg)
            self._arena.append(payload)
            self._used += needed
            self._sent_count += 1
            self._cond.notify_all()

    def detach(self) -> None:
        """Wait for every buffered message to leave the arena, then release it.

        Raises:
            ChannelError: If the channel is not attached, or the flusher
                failed to hand a message to the transport.
        """
        with self._cond:
            if not self._attached:
                msg = f"Rank {self._comm.rank}: detach on a detached channel"
                raise ChannelError(msg)
            self._closing = True
            self._cond.notify_all()

        if self._flusher is not None:
            self._flusher.join()
            self._flusher = None

        with self._cond:
            self._attached = False
            self._capacity = 0
            error = self._flush_error

        if error is not None:
            msg = f"Rank {self._comm.rank}: failed to deliver buffered messages"
            raise ChannelError(msg) from error
        logger.debug(
            "Rank %d: channel detached after %d messages",
            self._comm.rank,
            self._sent_count,
        )

    def _flush_loop(self) -> None:
        """Move arena entries to the transport until detached and empty."""
        while True:
            with self._cond:
                while not self._arena and not self._closing:
                    self._cond.wait()
                if not self._arena:
                    return
                payload = self._arena[0]

            try:
                self._comm.bsend(payload, self.dest, self.tag)
            except Exception as exc:
                logger.exception("Rank %d: transport send failed", self._comm.rank)
                with self._cond:
                    self._flush_error = exc
                return

            with self._cond:
                self._arena.popleft()
                self._used -= len(payload) + BSEND_OVERHEAD
                self._cond.notify_all()

    def __enter__(self) -> OrderedMessageChannel:
        self.attach()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.detach()

    # ------------------------------------------------------------------
    # Coordinator side
    # ------------------------------------------------------------------

    def drain(
        self,
        expected_count: int,
        consumer: Callable[[Message], None],
        *,
        timeout: float = 300.0,
        poll_interval: float = 0.001,
    ) -> int:
        """Consume exactly ``expected_count`` messages addressed to this rank.

        Polls for pending messages from any source without blocking; each
        pending message is received and handed to ``consumer``. Stops as
        soon as the expected count is reached.

        Args:
            expected_count: Total messages sent by all workers, as announced
                by the message-count reduction.
            consumer: Called once per message, in delivery order.
            timeout: Seconds without a new message before giving up.
            poll_interval: Seconds to pause after an empty probe.

        Returns:
            The number of messages consumed.

        Raises:
            ChannelError: If called on a rank other than the destination.
            ProtocolError: If the count is negative or messages stop
                arriving before it is reached.
        """
        if self._comm.rank != self.dest:
            msg = f"Rank {self._comm.rank} cannot drain messages addressed to rank {self.dest}"
            raise ChannelError(msg)
        if expected_count < 0:
            msg = f"Expected message count must be >= 0, got: {expected_count}"
            raise ProtocolError(msg)

        remaining = expected_count
        deadline = time.monotonic() + timeout
        while remaining > 0:
            status = self._comm.iprobe(ANY_SOURCE, self.tag)
            if status is None:
                if time.monotonic() >= deadline:
                    msg = (
                        f"Drain stalled: {remaining} of {expected_count} "
                        f"messages did not arrive within {timeout:.1f}s"
                    )
                    raise ProtocolError(msg)
                if poll_interval > 0:
                    time.sleep(poll_interval)
                continue

            payload = self._comm.recv(status.source, status.tag)
            consumer(Message(source_rank=status.source, text=payload.decode("utf-8")))
            remaining -= 1
            deadline = time.monotonic() + timeout

        logger.debug("Drained %d messages", expected_count)
        return expected_count
