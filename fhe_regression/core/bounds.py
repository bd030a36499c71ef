"""Analytic magnitude budget for the encrypted regression pipeline.

With N observations quantized to at most A in absolute value (A is the
codec's static bound, never the data's own maximum), the numerators in
the pipeline are bounded by:

    sums of x, y                  N * A
    sums of x*x, x*y              N * A^2
    variance / covariance         2 * N^2 * A^2
    intercept                     3 * N^3 * A^3
    prediction (slope*x + b)      5 * N^3 * A^3

so a configuration supports a dataset size exactly when 5 * N^3 * A^3 fits
within the backend's magnitude limit (t - 1) / 2.
"""

from __future__ import annotations

from fhe_regression.core.errors import ArithmeticOverflow
from fhe_regression.core.fixed_point import FixedPointCodec

PREDICTION_FACTOR = 5


def regression_magnitude(n_observations: int, codec: FixedPointCodec) -> int:
    """Worst-case numerator over fit and predict for N observations."""
    a = codec.max_encoded
    return PREDICTION_FACTOR * n_observations**3 * a**3


def check_regression_domain(
    n_observations: int,
    codec: FixedPointCodec,
    limit: int,
) -> int:
    """Reject a dataset size the configuration cannot fit without overflow.

    Args:
        n_observations: Number of (x, y) pairs.
        codec: Fixed-point codec the data is encrypted with.
        limit: Backend magnitude limit.

    Returns:
        The worst-case magnitude, for logging.

    Raises:
        ValueError: If n_observations is not positive.
        ArithmeticOverflow: If the budget exceeds the limit.
    """
    if n_observations < 1:
        raise ValueError(f"n_observations must be positive, got {n_observations}")
    bound = regression_magnitude(n_observations, codec)
    if bound > limit:
        raise ArithmeticOverflow(
            f"linear regression over {n_observations} observations "
            f"(supported: {max_observations(codec, limit)})",
            bound,
            limit,
        )
    return bound


def max_observations(codec: FixedPointCodec, limit: int) -> int:
    """Largest N whose regression budget fits within limit (0 if none)."""
    low, high = 0, 1
    while regression_magnitude(high, codec) <= limit:
        high *= 2
    # regression_magnitude(low) fits, regression_magnitude(high) does not
    while high - low > 1:
        mid = (low + high) // 2
        if regression_magnitude(mid, codec) <= limit:
            low = mid
        else:
            high = mid
    return low


def required_plain_modulus_bits(n_observations: int, codec: FixedPointCodec) -> int:
    """Bits a plain modulus needs so N observations cannot overflow."""
    return (2 * regression_magnitude(n_observations, codec) + 1).bit_length()
