"""Per-worker run lifecycle, shared by the coordinator and every other rank."""

from __future__ import annotations

import time
from enum import Enum, auto
from typing import TYPE_CHECKING

from montepi._internal.errors import EngineError, InputError
from montepi._internal.logging import get_logger, setup_logging
from montepi.engine.channel import OrderedMessageChannel
from montepi.engine.partition import partition, partition_all
from montepi.engine.protocol import (
    COORDINATOR_RANK,
    RunConfiguration,
    RunRequest,
    WorkerReport,
)
from montepi.engine.reduction import ReductionCoordinator, assemble
from montepi.engine.sampler import sample, worker_seed

if TYPE_CHECKING:
    from collections.abc import Callable
    from multiprocessing import Queue as MpQueue

    from montepi.engine.protocol import Message
    from montepi.metrics.models import AggregateResult
    from montepi.runtime.communicator import Communicator

logger = get_logger("engine.worker")


class WorkerState(Enum):
    """State machine for one worker's run."""

    CREATED = auto()
    VALIDATING = auto()
    BROADCAST_GO = auto()
    ABORTED = auto()
    BROADCAST_SHARE = auto()
    PARTITIONED = auto()
    ATTACHED = auto()
    SAMPLING = auto()
    REDUCING = auto()
    DRAINING = auto()
    FINALIZING = auto()
    DETACHED = auto()
    COMPLETED = auto()
    FAILED = auto()


def validate_input(raw_total: str | None, worker_count: int) -> int:
    """Parse and check the total sample count given to the coordinator.

    Args:
        raw_total: The command-line argument, or None if it was missing.
        worker_count: Number of workers in the run.

    Returns:
        The total sample count, always positive.

    Raises:
        InputError: If the argument is missing, not an integer, not
            positive, or the worker count is zero.
    """
    if worker_count < 1:
        msg = f"Worker count must be >= 1, got: {worker_count}"
        raise InputError(msg)
    if raw_total is None or not raw_total.strip():
        msg = "Missing the number of samples to compute"
        raise InputError(msg)

    try:
        total = int(raw_total.strip())
    except ValueError:
        msg = f"Number of samples must be an integer, got: {raw_total!r}"
        raise InputError(msg) from None

    if total <= 0:
        msg = f"Number of samples must be > 0, got: {total}"
        raise InputError(msg)
    return total


class Worker:
    """One participant of a run, parameterized by its coordinator role.

    Every rank walks the same lifecycle:

    CREATED -> BROADCAST_GO -> BROADCAST_SHARE -> PARTITIONED -> ATTACHED
            -> SAMPLING -> REDUCING -> DETACHED -> COMPLETED

    The coordinator additionally validates the input before the first
    broadcast (VALIDATING), drains every worker's messages after the
    message-count reduction (DRAINING) and assembles the estimate after
    the sample reduction (FINALIZING). An invalid input moves every rank to
    ABORTED right after BROADCAST_GO; any exception moves the rank to FAILED.

    Attributes:
        rank: This worker's rank.
        is_coordinator: Whether this worker performs the coordinator duties.
    """

    def __init__(
        self,
        comm: Communicator,
        *,
        request: RunRequest | None = None,
        on_configured: Callable[[RunConfiguration], None] | None = None,
        on_message: Callable[[Message], None] | None = None,
    ) -> None:
        """Initialize a worker.

        Args:
            comm: This rank's communicator.
            request: The run request. Required on the coordinator, ignored
                elsewhere since every other rank receives the validated
                configuration by broadcast.
            on_configured: Coordinator only: called with the validated
                configuration before it is broadcast.
            on_message: Coordinator only: called with every drained message.

        Raises:
            ValueError: If the coordinator is created without a request.
        """
        self._comm = comm
        self.rank = comm.rank
        self.is_coordinator = comm.rank == COORDINATOR_RANK
        if self.is_coordinator and request is None:
            msg = "The coordinator needs a RunRequest"
            raise ValueError(msg)

        self._request = request
        self._on_configured = on_configured
        self._on_message = on_message
        self._state = WorkerState.CREATED
        self._abort_reason: str | None = None
        self._sent_messages = 0

    @property
    def state(self) -> WorkerState:
        """Return the current lifecycle state."""
        return self._state

    @property
    def abort_reason(self) -> str | None:
        """Return why the coordinator aborted the run, on the coordinator."""
        return self._abort_reason

    @property
    def sent_messages(self) -> int:
        """Return how many progress messages this worker sent."""
        return self._sent_messages

    def _transition(self, state: WorkerState) -> None:
        logger.debug("Rank %d: %s -> %s", self.rank, self._state.name, state.name)
        self._state = state

    def run(self) -> AggregateResult | None:
        """Execute the whole lifecycle once.

        Returns:
            The final estimate on the coordinator; None on every other rank
            and on every rank of an aborted run.

        Raises:
            MontePiError: Any protocol, channel or sampling failure. The run
                is not retried.
        """
        try:
            return self._run()
        except Exception:
            self._transition(WorkerState.FAILED)
            raise

    def _run(self) -> AggregateResult | None:
        config = self._validate() if self.is_coordinator else None

        self._transition(WorkerState.BROADCAST_GO)
        go = self._comm.bcast(config is not None, root=COORDINATOR_RANK)
        if not go:
            self._transition(WorkerState.ABORTED)
            return None

        self._transition(WorkerState.BROADCAST_SHARE)
        config = self._comm.bcast(config, root=COORDINATOR_RANK)
        started = time.monotonic()

        share = partition(config.total_samples, config.worker_count, self.rank)
        self._transition(WorkerState.PARTITIONED)

        channel = OrderedMessageChannel(self._comm, capacity=config.arena_capacity)
        reducer = ReductionCoordinator(self._comm)
        result: AggregateResult | None = None

        with channel:
            self._transition(WorkerState.ATTACHED)
            channel.send(f"- Worker {self.rank} will compute {share} samples")

            self._transition(WorkerState.SAMPLING)
            counts = sample(
                share,
                config.domain,
                seed=worker_seed(self.rank, config.seed),
            )
            channel.send(
                f"Samples from rank {self.rank}: "
                f"inside={counts.inside_count} total={counts.total_count}"
            )
            self._sent_messages = channel.sent_count

            self._transition(WorkerState.REDUCING)
            expected = reducer.reduce_message_count(channel)
            if self.is_coordinator:
                self._transition(WorkerState.DRAINING)
                channel.drain(
                    expected,
                    self._on_message or _log_message,
                    timeout=config.timeout_seconds,
                    poll_interval=config.poll_interval,
                )

            totals = reducer.reduce_samples(counts)
            if self.is_coordinator:
                self._transition(WorkerState.FINALIZING)
                result = assemble(
                    totals,
                    config.worker_count,
                    elapsed_seconds=time.monotonic() - started,
                )
                logger.info(
                    "Estimate: pi=%.6f from %d/%d points across %d workers",
                    result.pi_estimate,
                    result.total_inside,
                    result.total_samples,
                    result.worker_count,
                )

        self._transition(WorkerState.DETACHED)
        self._transition(WorkerState.COMPLETED)
        return result

    def _validate(self) -> RunConfiguration | None:
        """Coordinator only: turn the request into a configuration, or None."""
        self._transition(WorkerState.VALIDATING)
        request = self._request
        if request is None:
            msg = f"Rank {self.rank}: cannot validate without a RunRequest"
            raise EngineError(msg)

        try:
            total = validate_input(request.raw_total, self._comm.size)
        except InputError as exc:
            self._abort_reason = str(exc)
            logger.info("Aborting run: %s", exc)
            return None

        config = RunConfiguration(
            total_samples=total,
            worker_count=self._comm.size,
            domain=request.domain,
            seed=request.seed,
            arena_capacity=request.arena_capacity,
            timeout_seconds=request.timeout_seconds,
            poll_interval=request.poll_interval,
        )
        shares = partition_all(config.total_samples, config.worker_count)
        logger.info("Workers: %d", config.worker_count)
        logger.info(
            "Each worker computes %d samples out of %d (coordinator: %d)",
            shares[-1],
            config.total_samples,
            shares[COORDINATOR_RANK],
        )
        if self._on_configured is not None:
            self._on_configured(config)
        return config


def _log_message(message: Message) -> None:
    logger.info("[rank %d] %s", message.source_rank, message.text)


# =============================================================================
# Worker process entry point
# =============================================================================


def run_worker_process(
    comm: Communicator,
    report_queue: MpQueue[WorkerReport],
    log_level: int = 20,
    log_json: bool = False,
) -> None:
    """Entry point for a non-coordinator worker subprocess.

    Runs the worker lifecycle, sends a WorkerReport back to the runner and
    flushes the communicator before the process exits. A failed worker
    exits with status 1.

    Args:
        comm: This rank's communicator.
        report_queue: Queue for sending the WorkerReport on exit.
        log_level: Logging level.
        log_json: Emit JSON log lines.
    """
    setup_logging(level=log_level, json_format=log_json)

    worker = Worker(comm)
    success = True
    error_message: str | None = None

    try:
        worker.run()
    except KeyboardInterrupt:
        success = False
        error_message = "Interrupted"
        logger.info("Rank %d: KeyboardInterrupt, shutting down", comm.rank)
    except Exception as exc:
        success = False
        error_message = str(exc)
        logger.exception("Rank %d: failed", comm.rank)
    finally:
        report_queue.put(
            WorkerReport(
                rank=comm.rank,
                success=success,
                sent_messages=worker.sent_messages,
                aborted=worker.state is WorkerState.ABORTED,
                error_message=error_message,
            )
        )
        comm.close()

    if not success:
        raise SystemExit(1)
