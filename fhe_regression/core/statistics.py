"""Statistics over encrypted arrays.

Arithmetic on encrypted values is exact, so the expanded forms below equal
the textbook two-pass deviation forms exactly:

    var(x)    = (N * sum(x^2) - sum(x)^2) / N^2
    cov(x, y) = (N * sum(x*y) - sum(x) * sum(y)) / N^2

They also avoid subtracting an encrypted mean from every slot, which
would need a scalar-to-array broadcast the backend cannot do in-circuit.
Division by N is a plaintext reciprocal and folds into the public scale.

The functions execute eagerly on whatever backend their inputs live on.
The *_program factories wrap them as Computations for the Runtime, which
adds shape validation and overflow analysis before dispatch.
"""

from __future__ import annotations

from fractions import Fraction
from typing import Iterable

import numpy as np

from fhe_regression.core.backend import Capability
from fhe_regression.core.encrypted import EncryptedArray, EncryptedScalar, EncryptedValue
from fhe_regression.core.errors import ArgumentShapeMismatch
from fhe_regression.core.runtime import Computation, array


def _paired(a: EncryptedArray, b: EncryptedArray, operation: str) -> int:
    if a.size != b.size:
        raise ArgumentShapeMismatch(operation, [a.describe()] * 2, [a.describe(), b.describe()])
    return a.size


def total(x: EncryptedArray) -> EncryptedScalar:
    return x.sum()


def mean(x: EncryptedArray) -> EncryptedScalar:
    """sum(x) / N."""
    return x.sum() * Fraction(1, x.size)


def variance(x: EncryptedArray) -> EncryptedScalar:
    """Population variance of the packed slots."""
    n = x.size
    s = x.sum()
    return (n * (x * x).sum() - s * s) * Fraction(1, n * n)


def covariance(x: EncryptedArray, y: EncryptedArray) -> EncryptedScalar:
    """Population covariance of paired slots."""
    n = _paired(x, y, "covariance")
    return (n * (x * y).sum() - x.sum() * y.sum()) * Fraction(1, n * n)


def mean_signed_error(predicted: EncryptedArray, actual: EncryptedArray) -> EncryptedScalar:
    """mean(predicted - actual). Positive and negative errors cancel."""
    n = _paired(predicted, actual, "mean_signed_error")
    return (predicted - actual).sum() * Fraction(1, n)


def mean_squared_error(predicted: EncryptedArray, actual: EncryptedArray) -> EncryptedScalar:
    """mean((predicted - actual)^2), the sign-free error metric BFV supports."""
    n = _paired(predicted, actual, "mean_squared_error")
    diff = predicted - actual
    return (diff * diff).sum() * Fraction(1, n)


def mean_absolute_error(predicted: EncryptedArray, actual: EncryptedArray) -> EncryptedScalar:
    """mean(|predicted - actual|).

    Raises:
        UnsupportedOperation: Always on BFV, which has no absolute value or
            comparison. mean_squared_error is the supported alternative.
    """
    predicted.backend.require(
        Capability.ABSOLUTE, "use mean_squared_error, which needs no comparison"
    )
    n = _paired(predicted, actual, "mean_absolute_error")
    return abs(predicted - actual).sum() * Fraction(1, n)


def root_mean_squared_error(predicted, actual) -> float:
    """RMSE of decrypted values.

    Encrypted inputs are rejected: the square root has no encrypted form.
    """
    for value in (predicted, actual):
        if isinstance(value, EncryptedValue):
            value.backend.require(
                Capability.SQRT, "decrypt the predictions and compute RMSE on plaintext"
            )
    p = np.asarray(predicted, dtype=np.float64)
    a = np.asarray(actual, dtype=np.float64)
    if p.shape != a.shape:
        raise ValueError(f"RMSE needs equal shapes, got {p.shape} and {a.shape}")
    return float(np.sqrt(np.mean((p - a) ** 2)))


def accumulate(values: Iterable[EncryptedScalar]) -> EncryptedScalar:
    """Sum encrypted scalars with in-place accumulation."""
    iterator = iter(values)
    try:
        first = next(iterator)
    except StopIteration:
        raise ValueError("accumulate() needs at least one value") from None
    # Multiplying by 1 copies, so the caller's first value is not mutated
    result = first * 1
    for value in iterator:
        result += value
    return result


# Program bodies live at module level so repeated factory calls hit the
# compile cache, which is keyed on the body.


def _mean(x: EncryptedArray) -> dict[str, EncryptedValue]:
    return {"mean": mean(x)}


def _variance(x: EncryptedArray) -> dict[str, EncryptedValue]:
    return {"variance": variance(x)}


def _covariance(x: EncryptedArray, y: EncryptedArray) -> dict[str, EncryptedValue]:
    return {"covariance": covariance(x, y)}


def _mean_squared_error(predicted: EncryptedArray, actual: EncryptedArray) -> dict[str, EncryptedValue]:
    return {"mse": mean_squared_error(predicted, actual)}


def mean_program(n: int) -> Computation:
    return Computation(
        name="mean",
        signature=(array("x", n),),
        body=_mean,
        outputs=("mean",),
    )


def variance_program(n: int) -> Computation:
    return Computation(
        name="variance",
        signature=(array("x", n),),
        body=_variance,
        outputs=("variance",),
    )


def covariance_program(n: int) -> Computation:
    return Computation(
        name="covariance",
        signature=(array("x", n), array("y", n)),
        body=_covariance,
        outputs=("covariance",),
    )


def _sums(x: EncryptedArray, y: EncryptedArray) -> dict[str, EncryptedValue]:
    return {
        "sum_x": x.sum(),
        "sum_y": y.sum(),
        "sum_xx": (x * x).sum(),
        "sum_xy": (x * y).sum(),
    }


def sums_program(n: int) -> Computation:
    """Raw sums from which shards' moments combine exactly."""
    return Computation(
        name="sums",
        signature=(array("x", n), array("y", n)),
        body=_sums,
        outputs=("sum_x", "sum_y", "sum_xx", "sum_xy"),
    )


def mean_squared_error_program(n: int) -> Computation:
    return Computation(
        name="mean_squared_error",
        signature=(array("predicted", n), array("actual", n)),
        body=_mean_squared_error,
        outputs=("mse",),
    )
