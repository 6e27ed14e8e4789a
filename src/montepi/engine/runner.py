"""Top-level run orchestrator: spawn the workers, run the coordinator."""

from __future__ import annotations

import os
import queue
import threading
import time
from multiprocessing.connection import wait
from typing import TYPE_CHECKING

from montepi._internal.errors import EngineError, MontePiError
from montepi._internal.logging import get_logger, setup_logging
from montepi.engine.protocol import COORDINATOR_RANK, RunRequest, WorkerReport
from montepi.engine.worker import Worker, WorkerState, run_worker_process
from montepi.metrics.models import RunOutcome
from montepi.runtime.group import ProcessGroup

if TYPE_CHECKING:
    import multiprocessing.process
    from collections.abc import Callable
    from multiprocessing import Queue as MpQueue

    from montepi.engine.protocol import Message, RunConfiguration

logger = get_logger("engine.runner")


class PiRunner:
    """Orchestrates a distributed pi estimation run.

    Creates a process group of ``num_workers`` ranks, spawns ranks
    ``1..N-1`` as worker processes and runs the coordinator (rank 0) in the
    calling process, so drained messages reach the caller's ``on_message``
    callback directly. ``run()`` blocks until every worker has exited.

    Attributes:
        num_workers: Number of workers, the coordinator included.
    """

    def __init__(
        self,
        request: RunRequest,
        *,
        num_workers: int | None = None,
        on_configured: Callable[[RunConfiguration], None] | None = None,
        on_message: Callable[[Message], None] | None = None,
        log_level: int = 20,
        log_json: bool = False,
        join_timeout: float = 10.0,
    ) -> None:
        """Initialize the runner.

        Args:
            request: The unvalidated run request handed to the coordinator.
            num_workers: Number of workers. Defaults to CPU count.
            on_configured: Called on the coordinator with the validated
                configuration, before it is broadcast.
            on_message: Called on the coordinator with every drained message.
            log_level: Logging level for every worker.
            log_json: Emit JSON log lines from every worker.
            join_timeout: Seconds to wait for each worker process to exit
                once the coordinator is done.
        """
        self._request = request
        self.num_workers = num_workers if num_workers is not None else (os.cpu_count() or 1)
        self._on_configured = on_configured
        self._on_message = on_message
        self._log_level = log_level
        self._log_json = log_json
        self._join_timeout = join_timeout

    def run(self) -> RunOutcome:
        """Execute the run and return its outcome.

        Returns:
            RunOutcome holding the estimate, or the abort reason if the
            worker count is invalid or the coordinator rejected the input.

        Raises:
            EngineError: If any worker, the coordinator included, failed.
        """
        setup_logging(level=self._log_level, json_format=self._log_json)

        if self.num_workers < 1:
            reason = f"Worker count must be >= 1, got: {self.num_workers}"
            logger.info("Aborting run: %s", reason)
            return RunOutcome(aborted=True, reason=reason)

        logger.info(
            "Starting run: workers=%d, domain=%s",
            self.num_workers,
            self._request.domain.value,
        )

        group = ProcessGroup(
            self.num_workers,
            timeout=self._request.timeout_seconds,
        )
        report_queue: MpQueue[WorkerReport] = group.context.Queue()
        processes = self._spawn(group, report_queue)
        done = threading.Event()
        monitor = threading.Thread(
            target=self._monitor,
            args=(processes, group, done),
            name="montepi-monitor",
            daemon=True,
        )
        monitor.start()

        coordinator = Worker(
            group.communicator(COORDINATOR_RANK),
            request=self._request,
            on_configured=self._on_configured,
            on_message=self._on_message,
        )
        start_time = time.monotonic()
        coordinator_error: Exception | None = None
        result = None

        try:
            result = coordinator.run()
        except MontePiError as exc:
            coordinator_error = exc
            logger.exception("Coordinator failed")
        except Exception as exc:
            # Raised by a caller callback; reported like any worker failure
            coordinator_error = exc
            logger.exception("Coordinator callback failed")
        finally:
            done.set()
            monitor.join()
            reports = self._collect(processes, report_queue)
            report_queue.close()
            group.close()

        reports.insert(
            0,
            WorkerReport(
                rank=COORDINATOR_RANK,
                success=coordinator_error is None,
                sent_messages=coordinator.sent_messages,
                aborted=coordinator.state is WorkerState.ABORTED,
                error_message=str(coordinator_error) if coordinator_error else None,
            ),
        )

        failed = [r for r in reports if not r.success]
        if failed:
            for r in failed:
                logger.warning("Worker %d failed: %s", r.rank, r.error_message)
            msg = f"Run failed: {len(failed)} of {self.num_workers} workers failed"
            raise EngineError(msg) from coordinator_error

        if coordinator.state is WorkerState.ABORTED:
            return RunOutcome(
                aborted=True,
                reason=coordinator.abort_reason,
                worker_reports=reports,
            )

        logger.info(
            "Run completed: duration=%.2fs, messages=%d",
            time.monotonic() - start_time,
            sum(r.sent_messages for r in reports),
        )
        return RunOutcome(result=result, worker_reports=reports)

    def _spawn(
        self,
        group: ProcessGroup,
        report_queue: MpQueue[WorkerReport],
    ) -> list[multiprocessing.process.BaseProcess]:
        """Start one process per non-coordinator rank."""
        processes: list[multiprocessing.process.BaseProcess] = []
        for rank in range(1, self.num_workers):
            process = group.context.Process(
                target=run_worker_process,
                args=(group.communicator(rank), report_queue, self._log_level, self._log_json),
                name=f"montepi-worker-{rank}",
                daemon=False,
            )
            processes.append(process)

        for p in processes:
            p.start()
            logger.debug("Started worker process: pid=%d, name=%s", p.pid or 0, p.name)
        return processes

    def _monitor(
        self,
        processes: list[multiprocessing.process.BaseProcess],
        group: ProcessGroup,
        done: threading.Event,
    ) -> None:
        """Tell the coordinator as soon as a worker process dies.

        Watches the process sentinels until the coordinator finishes. The
        first worker to exit with a non-zero status is reported to the
        coordinator's inboxes, which fails its current collective or drain.
        """
        pending = {p.sentinel: (rank, p) for rank, p in enumerate(processes, start=1)}
        while pending and not done.is_set():
            for sentinel in wait(list(pending), timeout=0.1):
                rank, process = pending.pop(sentinel)
                process.join(timeout=1.0)
                if process.exitcode:
                    logger.warning(
                        "Worker %d exited with status %s before the run completed",
                        rank,
                        process.exitcode,
                    )
                    group.notify_failure(rank, process.exitcode, dest=COORDINATOR_RANK)
                    return

    def _collect(
        self,
        processes: list[multiprocessing.process.BaseProcess],
        report_queue: MpQueue[WorkerReport],
    ) -> list[WorkerReport]:
        """Gather one report per worker process, then join every process."""
        by_rank: dict[int, WorkerReport] = {}
        deadline = time.monotonic() + self._join_timeout

        # Read reports before joining: a child cannot exit while its
        # queued report is still waiting in the pipe.
        while len(by_rank) < len(processes):
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            try:
                report = report_queue.get(timeout=remaining)
            except queue.Empty:
                break
            by_rank[report.rank] = report

        for p in processes:
            p.join(timeout=max(deadline - time.monotonic(), 0.1))
            if p.is_alive():
                logger.warning("Worker %s did not exit in time, terminating", p.name)
                p.terminate()
                p.join(timeout=2.0)

        reports: list[WorkerReport] = []
        for rank in range(1, self.num_workers):
            report = by_rank.get(rank)
            if report is None:
                logger.warning("No report from worker %d", rank)
                report = WorkerReport(
                    rank=rank,
                    success=False,
                    error_message="No report received",
                )
            reports.append(report)
        return reports
