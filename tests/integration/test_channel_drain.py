"""Integration tests for draining OrderedMessageChannel traffic on the coordinator."""

from __future__ import annotations

import pytest

from montepi._internal.errors import ProtocolError
from montepi.engine.channel import OrderedMessageChannel
from montepi.engine.protocol import Message


@pytest.mark.timeout(30)
class TestDrain:
    @pytest.mark.parametrize("size", [2, 4])
    def test_drains_every_message_in_per_worker_order(self, make_group, run_ranks, size):
        group = make_group(size)
        drained: list[Message] = []

        def _target(rank: int):
            comm = group.communicator(rank)
            channel = OrderedMessageChannel(comm)
            with channel:
                channel.send(f"A from {rank}")
                channel.send(f"B from {rank}")
                expected = comm.reduce(channel.sent_count)
                if rank == 0:
                    return channel.drain(expected, drained.append, timeout=5.0)
            return None

        outcomes = run_ranks(size, _target)

        assert outcomes[0] == 2 * size
        assert len(drained) == 2 * size
        for rank in range(size):
            texts = [m.text for m in drained if m.source_rank == rank]
            assert texts == [f"A from {rank}", f"B from {rank}"]

    def test_drain_stops_at_expected_count(self, make_group):
        group = make_group(2)
        sender = group.communicator(1)
        coordinator = group.communicator(0)

        with OrderedMessageChannel(sender) as channel:
            for i in range(3):
                channel.send(f"message {i}")

        drained: list[Message] = []
        count = OrderedMessageChannel(coordinator).drain(2, drained.append, timeout=5.0)

        assert count == 2
        assert [m.text for m in drained] == ["message 0", "message 1"]
        # The third message stays pending on the coordinator.
        assert coordinator.recv(source=1, timeout=5.0) == b"message 2"

    def test_missing_messages_stall(self, make_group):
        group = make_group(2)
        coordinator = group.communicator(0)

        with OrderedMessageChannel(group.communicator(1)) as channel:
            channel.send("only one")

        drained: list[Message] = []
        with pytest.raises(ProtocolError, match="Drain stalled"):
            OrderedMessageChannel(coordinator).drain(
                2, drained.append, timeout=0.3, poll_interval=0.01
            )
        assert [m.text for m in drained] == ["only one"]
