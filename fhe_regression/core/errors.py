"""Typed errors raised by the encrypted regression stack.

Every failure that can happen while preparing or dispatching an encrypted
computation is reported as one of these, so callers never have to parse
messages from the encryption library.
"""

from __future__ import annotations

from typing import Sequence


class FHERegressionError(Exception):
    """Base class for all errors raised by this package."""


class ArithmeticOverflow(FHERegressionError):
    """A fixed-width encrypted integer would exceed its representable range.

    Attributes:
        operation: Operation that would have overflowed.
        bound: Worst-case magnitude the operation could produce.
        limit: Largest magnitude the backend represents without wrapping.
    """

    def __init__(self, operation: str, bound: int, limit: int) -> None:
        self.operation = operation
        self.bound = bound
        self.limit = limit
        super().__init__(
            f"{operation}: worst-case magnitude {bound} "
            f"(~2^{bound.bit_length()}) exceeds limit {limit} (~2^{limit.bit_length()})"
        )


class ArgumentShapeMismatch(FHERegressionError):
    """Arguments do not match the signature fixed at compile time.

    Attributes:
        computation: Name of the compiled computation.
        expected: Expected argument shapes, in order.
        actual: Shapes of the arguments actually passed.
    """

    def __init__(
        self,
        computation: str,
        expected: Sequence[str],
        actual: Sequence[str],
        detail: str = "",
    ) -> None:
        self.computation = computation
        self.expected = tuple(expected)
        self.actual = tuple(actual)
        self.detail = detail
        message = (
            f"{computation}: expected ({', '.join(self.expected)}) "
            f"but got ({', '.join(self.actual)})"
        )
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class UnsupportedOperation(FHERegressionError):
    """The backend's arithmetic model has no way to evaluate an operation.

    Attributes:
        operation: Operation that was requested.
        alternative: Feasible replacement, if there is one.
    """

    def __init__(self, operation: str, alternative: str = "") -> None:
        self.operation = operation
        self.alternative = alternative
        message = f"{operation} is not available on encrypted values"
        if alternative:
            message = f"{message}; {alternative}"
        super().__init__(message)


class PrecisionLoss(FHERegressionError):
    """A representation degraded below usable precision.

    Attributes:
        operation: Operation that would lose precision.
        bits: Bits the result would need.
        width: Bits available in the representation.
    """

    def __init__(self, operation: str, bits: int, width: int) -> None:
        self.operation = operation
        self.bits = bits
        self.width = width
        super().__init__(
            f"{operation}: result needs {bits} bits but the representation holds {width}"
        )


class DegenerateDataset(FHERegressionError):
    """The dataset cannot determine a model (e.g. every x is identical)."""


class BackendError(FHERegressionError):
    """The encryption library failed while executing a dispatched operation."""
