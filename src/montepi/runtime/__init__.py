"""Minimal message-passing runtime for MontePi workers.

Provides a fixed-size :class:`ProcessGroup` and a per-rank
:class:`Communicator` with the primitives the engine relies on:
``bcast`` and ``reduce`` collectives, and asynchronous point-to-point
``bsend`` with non-blocking ``iprobe`` and ``recv`` on the receiving side.
"""

from __future__ import annotations

from montepi.runtime.communicator import (
    ANY_SOURCE,
    ANY_TAG,
    Communicator,
    PeerFailure,
    Status,
)
from montepi.runtime.group import ProcessGroup

__all__ = [
    "ANY_SOURCE",
    "ANY_TAG",
    "Communicator",
    "PeerFailure",
    "ProcessGroup",
    "Status",
]
