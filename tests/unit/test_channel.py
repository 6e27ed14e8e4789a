"""Tests for the sender side of OrderedMessageChannel."""

from __future__ import annotations

import threading

import pytest

from montepi._internal.errors import (
    ChannelCapacityError,
    ChannelError,
    MessageTooLongError,
    ProtocolError,
)
from montepi.engine.channel import OrderedMessageChannel
from montepi.engine.protocol import BSEND_OVERHEAD, MAX_MESSAGE_BYTES, PRINT_TAG


class _RecordingComm:
    """Communicator stand-in that records point-to-point sends.

    ``gate`` blocks ``bsend`` while cleared, which keeps messages in the
    arena so capacity can be tested deterministically.
    """

    def __init__(self, rank: int = 1, *, fail: bool = False) -> None:
        self.rank = rank
        self.fail = fail
        self.sent: list[tuple[bytes, int, int]] = []
        self.gate = threading.Event()
        self.gate.set()

    def bsend(self, payload: bytes, dest: int, tag: int) -> None:
        self.gate.wait(timeout=5.0)
        if self.fail:
            msg = "transport closed"
            raise OSError(msg)
        self.sent.append((payload, dest, tag))

    def iprobe(self, source: int, tag: int) -> None:
        return None


class TestAttachDetach:
    def test_send_before_attach_fails(self) -> None:
        channel = OrderedMessageChannel(_RecordingComm())  # type: ignore[arg-type]
        with pytest.raises(ChannelError, match="detached"):
            channel.send("hello")

    def test_attach_twice_fails(self) -> None:
        channel = OrderedMessageChannel(_RecordingComm())  # type: ignore[arg-type]
        channel.attach()
        try:
            with pytest.raises(ChannelError, match="already attached"):
                channel.attach()
        finally:
            channel.detach()

    def test_detach_without_attach_fails(self) -> None:
        channel = OrderedMessageChannel(_RecordingComm())  # type: ignore[arg-type]
        with pytest.raises(ChannelError):
            channel.detach()

    def test_non_positive_capacity_rejected(self) -> None:
        channel = OrderedMessageChannel(_RecordingComm())  # type: ignore[arg-type]
        with pytest.raises(ChannelError, match="capacity"):
            channel.attach(0)

    def test_context_manager(self) -> None:
        comm = _RecordingComm()
        with OrderedMessageChannel(comm) as channel:  # type: ignore[arg-type]
            assert channel.is_attached
            channel.send("inside")
        assert not channel.is_attached
        assert [p for p, _, _ in comm.sent] == [b"inside"]

    def test_send_after_detach_fails(self) -> None:
        channel = OrderedMessageChannel(_RecordingComm())  # type: ignore[arg-type]
        channel.attach()
        channel.detach()
        with pytest.raises(ChannelError):
            channel.send("late")


class TestSend:
    def test_detach_delivers_everything_in_order(self) -> None:
        comm = _RecordingComm(rank=3)
        channel = OrderedMessageChannel(comm)  # type: ignore[arg-type]
        channel.attach()
        for i in range(10):
            channel.send(f"message {i}")
        channel.detach()

        assert [p.decode() for p, _, _ in comm.sent] == [f"message {i}" for i in range(10)]
        assert all(dest == 0 and tag == PRINT_TAG for _, dest, tag in comm.sent)
        assert channel.bytes_in_use == 0

    def test_sent_count_increments(self) -> None:
        channel = OrderedMessageChannel(_RecordingComm())  # type: ignore[arg-type]
        with channel:
            channel.send("A")
            channel.send("B")
        assert channel.sent_count == 2

    def test_send_returns_before_delivery(self) -> None:
        comm = _RecordingComm()
        comm.gate.clear()
        channel = OrderedMessageChannel(comm)  # type: ignore[arg-type]
        channel.attach()
        channel.send("queued")
        assert comm.sent == []
        assert channel.bytes_in_use == len(b"queued") + BSEND_OVERHEAD

        comm.gate.set()
        channel.detach()
        assert [p for p, _, _ in comm.sent] == [b"queued"]

    def test_maximum_size_message_accepted(self) -> None:
        comm = _RecordingComm()
        with OrderedMessageChannel(comm) as channel:  # type: ignore[arg-type]
            channel.send("x" * MAX_MESSAGE_BYTES)
        assert len(comm.sent[0][0]) == MAX_MESSAGE_BYTES

    def test_oversized_message_rejected(self) -> None:
        channel = OrderedMessageChannel(_RecordingComm())  # type: ignore[arg-type]
        with channel:
            with pytest.raises(MessageTooLongError):
                channel.send("x" * (MAX_MESSAGE_BYTES + 1))
            assert channel.sent_count == 0

    def test_size_limit_counts_utf8_bytes(self) -> None:
        channel = OrderedMessageChannel(_RecordingComm())  # type: ignore[arg-type]
        with channel, pytest.raises(MessageTooLongError):
            channel.send("é" * 51)

    def test_message_larger_than_arena_fails(self) -> None:
        channel = OrderedMessageChannel(_RecordingComm())  # type: ignore[arg-type]
        channel.attach(BSEND_OVERHEAD + 10)
        try:
            with pytest.raises(ChannelCapacityError, match="cannot hold"):
                channel.send("eleven char")
        finally:
            channel.detach()

    def test_full_arena_fails_until_flushed(self) -> None:
        comm = _RecordingComm()
        comm.gate.clear()
        channel = OrderedMessageChannel(comm)  # type: ignore[arg-type]
        channel.attach(2 * (BSEND_OVERHEAD + 5))

        channel.send("first")
        channel.send("secnd")
        with pytest.raises(ChannelCapacityError):
            channel.send("third")

        comm.gate.set()
        channel.detach()
        assert [p for p, _, _ in comm.sent] == [b"first", b"secnd"]
        assert channel.sent_count == 2

    def test_transport_failure_surfaces_on_detach(self) -> None:
        channel = OrderedMessageChannel(_RecordingComm(fail=True))  # type: ignore[arg-type]
        channel.attach()
        channel.send("lost")
        with pytest.raises(ChannelError, match="failed to deliver"):
            channel.detach()


class TestDrainPreconditions:
    def test_only_destination_may_drain(self) -> None:
        channel = OrderedMessageChannel(_RecordingComm(rank=2))  # type: ignore[arg-type]
        with pytest.raises(ChannelError, match="cannot drain"):
            channel.drain(1, print)

    def test_negative_expected_count(self) -> None:
        channel = OrderedMessageChannel(_RecordingComm(rank=0))  # type: ignore[arg-type]
        with pytest.raises(ProtocolError, match=">= 0"):
            channel.drain(-1, print)

    def test_zero_expected_returns_immediately(self) -> None:
        channel = OrderedMessageChannel(_RecordingComm(rank=0))  # type: ignore[arg-type]
        assert channel.drain(0, print) == 0

    def test_stall_times_out(self) -> None:
        channel = OrderedMessageChannel(_RecordingComm(rank=0))  # type: ignore[arg-type]
        with pytest.raises(ProtocolError, match="1 of 1 messages"):
            channel.drain(1, print, timeout=0.05, poll_interval=0.01)
