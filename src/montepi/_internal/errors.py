"""Custom exception hierarchy for MontePi."""

from __future__ import annotations


class MontePiError(Exception):
    """Base exception for all MontePi errors.

    All custom exceptions in MontePi inherit from this class, making it
    easy to catch any MontePi-specific error with a single except clause.
    """


class ConfigError(MontePiError):
    """Raised when configuration is invalid or missing.

    Examples:
        - Required environment variable has an invalid value.
        - Configuration value is out of acceptable range.
    """


class InputError(MontePiError):
    """Raised when the coordinator rejects the run's input.

    This is the only error that turns into a clean, broadcast abort: every
    worker learns about it through the go/no-go flag and exits without
    doing any work.

    Examples:
        - The sample count argument is missing or not an integer.
        - The sample count is zero or negative.
        - The worker count is zero.
    """


class PartitionError(MontePiError, ValueError):
    """Raised when a workload cannot be partitioned (e.g. zero workers)."""


class SamplingError(MontePiError, ValueError):
    """Raised when a sampler is asked for a negative number of points."""


class ChannelError(MontePiError):
    """Raised when the outgoing message channel is misused.

    Examples:
        - ``send`` is called before ``attach`` or after ``detach``.
        - The channel is attached twice.
    """


class ChannelCapacityError(ChannelError):
    """Raised when the outgoing arena has no room for a message.

    Resource exhaustion is fatal: the arena must be sized ahead of time for
    the maximum number of in-flight messages times the maximum message size.
    """


class MessageTooLongError(ChannelError):
    """Raised when a message payload exceeds the maximum message size."""


class ProtocolError(MontePiError):
    """Raised when the collective protocol cannot complete.

    Examples:
        - A worker never reached a broadcast or reduction.
        - The coordinator drained fewer messages than announced before
          the timeout expired.
    """


class EngineError(MontePiError):
    """Raised when a run fails because a worker process failed."""
