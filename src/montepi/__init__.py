"""MontePi: estimate pi by distributed Monte Carlo sampling."""

from __future__ import annotations

from montepi.engine.channel import OrderedMessageChannel
from montepi.engine.partition import partition, partition_all
from montepi.engine.protocol import (
    Message,
    RunConfiguration,
    RunRequest,
    SamplingDomain,
)
from montepi.engine.reduction import ReductionCoordinator, assemble
from montepi.engine.runner import PiRunner
from montepi.engine.sampler import sample, worker_seed
from montepi.engine.worker import Worker, WorkerState, validate_input
from montepi.metrics.models import AggregateResult, RunOutcome, SampleResult

__version__ = "0.1.0"

__all__ = [
    "AggregateResult",
    "Message",
    "OrderedMessageChannel",
    "PiRunner",
    "ReductionCoordinator",
    "RunConfiguration",
    "RunOutcome",
    "RunRequest",
    "SampleResult",
    "SamplingDomain",
    "Worker",
    "WorkerState",
    "assemble",
    "partition",
    "partition_all",
    "sample",
    "validate_input",
    "worker_seed",
]
