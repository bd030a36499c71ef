"""Sharded regression statistics, one Session per worker.

A backend handle is never shared between workers. Each shard is encrypted
under its own key context, reduced to four encrypted sums, and decrypted
inside its worker. Only the exact plaintext partial sums leave the worker,
and they combine into the global moments without approximation.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from fractions import Fraction
from typing import Sequence

import numpy as np

from fhe_regression.config import Settings
from fhe_regression.core.errors import ArgumentShapeMismatch, DegenerateDataset
from fhe_regression.core.statistics import sums_program
from fhe_regression.session import Session

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ShardSums:
    """Decrypted partial sums of one shard."""

    n: int
    sum_x: Fraction
    sum_y: Fraction
    sum_xx: Fraction
    sum_xy: Fraction

    def __add__(self, other: "ShardSums") -> "ShardSums":
        return ShardSums(
            self.n + other.n,
            self.sum_x + other.sum_x,
            self.sum_y + other.sum_y,
            self.sum_xx + other.sum_xx,
            self.sum_xy + other.sum_xy,
        )


@dataclass(frozen=True)
class PlainMoments:
    """Global moments combined from shard sums, with the fitted line.

    Attributes:
        n_observations: Total observations across shards.
        mean_x: Mean of x.
        mean_y: Mean of y.
        variance_x: Population variance of x.
        covariance: Population covariance of x and y.
        slope: covariance / variance_x.
        intercept: mean_y - slope * mean_x.
    """

    n_observations: int
    mean_x: Fraction
    mean_y: Fraction
    variance_x: Fraction
    covariance: Fraction
    slope: Fraction
    intercept: Fraction

    @classmethod
    def from_sums(cls, sums: ShardSums) -> "PlainMoments":
        n = sums.n
        variance_x = (n * sums.sum_xx - sums.sum_x**2) / n**2
        if variance_x == 0:
            raise DegenerateDataset("variance(x) is zero across all shards")
        covariance = (n * sums.sum_xy - sums.sum_x * sums.sum_y) / n**2
        mean_x = sums.sum_x / n
        mean_y = sums.sum_y / n
        slope = covariance / variance_x
        return cls(n, mean_x, mean_y, variance_x, covariance, slope, mean_y - slope * mean_x)


def shard_sums(
    x: Sequence[float] | np.ndarray,
    y: Sequence[float] | np.ndarray,
    settings: Settings | None = None,
) -> ShardSums:
    """Encrypt one shard in a fresh Session and return its decrypted sums."""
    with Session(settings) as session:
        dataset = session.encrypt_dataset(x, y)
        n = dataset.n_observations
        outputs = session.run(sums_program(n), dataset.x, dataset.y)
        sum_x, sum_y, sum_xx, sum_xy = (session.decrypt_exact(value) for value in outputs)
    return ShardSums(n, sum_x, sum_y, sum_xx, sum_xy)


def fit_sharded(
    x_shards: Sequence[Sequence[float]],
    y_shards: Sequence[Sequence[float]],
    settings: Settings | None = None,
    num_workers: int = 4,
) -> PlainMoments:
    """Fit a regression line over sharded data in parallel.

    Args:
        x_shards: Independent-variable shards.
        y_shards: Dependent-variable shards, paired with x_shards.
        settings: Configuration shared by every worker's Session.
        num_workers: Worker threads.

    Returns:
        Exact combined moments and the fitted line.
    """
    if len(x_shards) != len(y_shards):
        raise ValueError(f"{len(x_shards)} x shards but {len(y_shards)} y shards")
    if not x_shards:
        raise ValueError("fit_sharded() needs at least one shard")
    for index, (xs, ys) in enumerate(zip(x_shards, y_shards)):
        if len(xs) != len(ys):
            raise ArgumentShapeMismatch(
                f"shard {index}",
                [f"encrypted_array[{len(xs)}]"] * 2,
                [f"encrypted_array[{len(xs)}]", f"encrypted_array[{len(ys)}]"],
            )

    settings = settings or Settings()
    start_time = time.perf_counter()
    workers = max(1, min(num_workers, len(x_shards)))

    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="fhe-shard") as executor:
        futures = [
            executor.submit(shard_sums, xs, ys, settings)
            for xs, ys in zip(x_shards, y_shards)
        ]
        partials = [future.result() for future in futures]

    total = partials[0]
    for partial in partials[1:]:
        total = total + partial
    moments = PlainMoments.from_sums(total)

    elapsed_ms = (time.perf_counter() - start_time) * 1000
    logger.info(
        f"Sharded fit over {len(partials)} shards ({moments.n_observations} observations, "
        f"{workers} workers) in {elapsed_ms:.2f}ms"
    )
    return moments
