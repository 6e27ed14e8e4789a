"""Shared test fixtures for MontePi test suite."""

from __future__ import annotations

import multiprocessing
import threading
from typing import TYPE_CHECKING, Any

import pytest

from montepi.engine.protocol import RunRequest
from montepi.engine.worker import Worker
from montepi.runtime.group import ProcessGroup

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from montepi.engine.protocol import Message


# =============================================================================
# Pytest configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-apply markers based on test directory structure."""
    for item in items:
        test_path = str(item.fspath)
        if "/unit/" in test_path:
            item.add_marker(pytest.mark.unit)
        elif "/integration/" in test_path:
            item.add_marker(pytest.mark.integration)
        elif "/e2e/" in test_path:
            item.add_marker(pytest.mark.e2e)


# =============================================================================
# Process group fixtures
# =============================================================================


@pytest.fixture
def make_group() -> Iterator[Callable[..., ProcessGroup]]:
    """Factory for process groups shared by threads of the test process.

    Every rank runs as a thread, so the tests exercise the real queues
    without paying for process start-up. Groups are closed at teardown.
    """
    groups: list[ProcessGroup] = []

    def _make(size: int, timeout: float = 10.0) -> ProcessGroup:
        group = ProcessGroup(
            size,
            context=multiprocessing.get_context("spawn"),
            timeout=timeout,
        )
        groups.append(group)
        return group

    yield _make

    for group in groups:
        group.close()


def run_in_threads(size: int, target: Callable[[int], Any], timeout: float = 20.0) -> dict[int, Any]:
    """Run ``target(rank)`` for every rank on its own thread.

    Returns:
        Mapping of rank to the value returned, or the exception raised.
    """
    outcomes: dict[int, Any] = {}

    def _wrapper(rank: int) -> None:
        try:
            outcomes[rank] = target(rank)
        except Exception as exc:  # noqa: BLE001
            outcomes[rank] = exc

    threads = [
        threading.Thread(target=_wrapper, args=(rank,), name=f"rank-{rank}", daemon=True)
        for rank in range(size)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=timeout)
    assert not any(t.is_alive() for t in threads), "a rank did not finish in time"
    return outcomes


@pytest.fixture
def run_ranks() -> Callable[..., dict[int, Any]]:
    """Expose :func:`run_in_threads` to tests."""
    return run_in_threads


@pytest.fixture
def run_workers(
    make_group: Callable[..., ProcessGroup],
) -> Callable[..., tuple[dict[int, Any], dict[int, Worker], list[Message]]]:
    """Run a full Worker lifecycle on every rank of a threaded group.

    Returns a callable ``(size, request) -> (outcomes, workers, messages)``
    where ``messages`` are the coordinator's drained messages in delivery
    order.
    """

    def _run(
        size: int,
        request: RunRequest,
    ) -> tuple[dict[int, Any], dict[int, Worker], list[Message]]:
        group = make_group(size, timeout=request.timeout_seconds)
        messages: list[Message] = []
        lock = threading.Lock()
        workers: dict[int, Worker] = {}

        def _on_message(message: Message) -> None:
            with lock:
                messages.append(message)

        for rank in range(size):
            workers[rank] = Worker(
                group.communicator(rank),
                request=request if rank == 0 else None,
                on_message=_on_message if rank == 0 else None,
            )

        outcomes = run_in_threads(size, lambda rank: workers[rank].run())
        return outcomes, workers, messages

    return _run


@pytest.fixture
def quick_request() -> RunRequest:
    """A small, seeded request with short timeouts."""
    return RunRequest(raw_total="1000", seed=42, timeout_seconds=10.0)
