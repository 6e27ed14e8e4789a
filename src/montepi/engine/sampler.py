"""Random point sampling for the Monte Carlo estimate."""

from __future__ import annotations

import time

import numpy as np

from montepi._internal.errors import SamplingError
from montepi.engine.protocol import SamplingDomain
from montepi.metrics.models import SampleResult

# Keeps seeds of neighbouring ranks apart when derived from the same base.
SEED_STRIDE = 4

# Points drawn per vectorized batch; bounds memory for large shares.
BATCH_SIZE = 1_000_000


def worker_seed(rank: int, base: int | None = None) -> int:
    """Return the seed a worker should use for its generator.

    Args:
        rank: The worker's rank.
        base: Configured base seed. None derives one from the clock.

    Returns:
        ``base + rank * SEED_STRIDE``, with ``base`` defaulting to the
        current time in nanoseconds.

    Raises:
        SamplingError: If ``base`` is negative.
    """
    if base is None:
        base = time.time_ns()
    elif base < 0:
        msg = f"Seed must be >= 0, got: {base}"
        raise SamplingError(msg)
    return base + rank * SEED_STRIDE


def sample(
    n: int,
    domain: SamplingDomain = SamplingDomain.QUARTER_CIRCLE_UNIT_SQUARE,
    seed: int | None = None,
) -> SampleResult:
    """Draw ``n`` uniform points and count those inside the unit circle.

    For the quarter-circle domain points are drawn from ``[0, 1]^2``; for
    the full-circle domain from ``[-1, 1]^2``. A point is inside iff
    ``x*x + y*y <= 1``. Every point counts towards ``total_count``.

    Args:
        n: Number of points to draw.
        domain: Where to draw points from.
        seed: Seed for a private generator. Same seed and ``n`` give the
            same result.

    Returns:
        SampleResult with ``total_count == n``.

    Raises:
        SamplingError: If ``n`` is negative.
    """
    if n < 0:
        msg = f"Sample count must be >= 0, got: {n}"
        raise SamplingError(msg)

    rng = np.random.default_rng(seed)
    if domain is SamplingDomain.FULL_CIRCLE_CENTERED_SQUARE:
        low, high = -1.0, 1.0
    else:
        low, high = 0.0, 1.0

    inside = 0
    remaining = n
    while remaining > 0:
        batch = min(remaining, BATCH_SIZE)
        x = rng.uniform(low, high, size=batch)
        y = rng.uniform(low, high, size=batch)
        inside += int(np.count_nonzero(x * x + y * y <= 1.0))
        remaining -= batch

    return SampleResult(inside_count=inside, total_count=n)
