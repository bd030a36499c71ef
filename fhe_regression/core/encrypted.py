"""Encrypted fixed-point values.

An encrypted value is a backend ciphertext holding integer numerators plus
two pieces of public metadata:

- scale: the value represented is numerator / scale. Scales are fixed by
  the circuit and its plaintext constants, never by encrypted data, so
  they can be published without leaking anything.
- bound: an upper bound on |numerator| in every slot.

Arithmetic is exact. Instead of rescaling (which BFV cannot do) operands
are aligned to a common scale with plaintext integer multiplications, and
plaintext rationals fold their denominator into the scale. Precision
therefore never degrades; only magnitude grows, and every operation checks
the grown bound against the backend's limit before dispatching, raising
ArithmeticOverflow instead of letting the slot wrap modulo t.
"""

from __future__ import annotations

import math
import numbers
from fractions import Fraction
from typing import Any, ClassVar

from fhe_regression.core.backend import Capability, FHEBackend
from fhe_regression.core.errors import (
    ArgumentShapeMismatch,
    ArithmeticOverflow,
    UnsupportedOperation,
)

DIVIDE_HINT = (
    "decrypt the divisor with Session.disclose_reciprocal() and multiply "
    "by the plaintext reciprocal (this reveals the divisor)"
)
BROADCAST_HINT = "expand the scalar with Session.materialize() first"


def as_plaintext(value: Any) -> Fraction | None:
    """Exact rational for a plaintext constant, or None if not a number.

    Floats are read through their shortest decimal form, so 0.1 becomes
    1/10 rather than the binary expansion of the double.
    """
    if isinstance(value, Fraction):
        return value
    if isinstance(value, numbers.Integral):
        return Fraction(int(value))
    if isinstance(value, numbers.Rational):
        return Fraction(int(value.numerator), int(value.denominator))
    if isinstance(value, numbers.Real):
        f = float(value)
        if not math.isfinite(f):
            raise ValueError(f"plaintext constant must be finite, got {f}")
        return Fraction(repr(f))
    return None


class EncryptedValue:
    """Base class for encrypted scalars and arrays.

    Attributes:
        backend: Backend handle that owns the ciphertext.
        handle: Opaque ciphertext (None while tracing).
        size: Number of packed slots.
        scale: Public denominator of every slot.
        bound: Public upper bound on |numerator|.
        sealed: Once set, in-place operators return a new value instead
            of updating this one.
    """

    __slots__ = ("backend", "handle", "size", "scale", "bound", "sealed")
    kind: ClassVar[str] = "encrypted"

    # Keep numpy from broadcasting over encrypted values
    __array_ufunc__ = None

    def __init__(
        self,
        backend: FHEBackend,
        handle: Any,
        size: int,
        scale: int,
        bound: int,
    ) -> None:
        if scale <= 0:
            raise ValueError(f"scale must be positive, got {scale}")
        self.backend = backend
        self.handle = handle
        self.size = size
        self.scale = scale
        self.bound = bound
        self.sealed = False

    def describe(self) -> str:
        return self.kind

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(size={self.size}, scale={self.scale}, "
            f"bound~2^{self.bound.bit_length()}, backend={self.backend.name})"
        )

    @property
    def magnitude(self) -> Fraction:
        """Upper bound on the absolute plaintext value of any slot."""
        return Fraction(self.bound, self.scale)

    def traced(self, backend: FHEBackend) -> "EncryptedValue":
        """Metadata-only shadow of this value bound to another backend."""
        return type(self)(backend, None, self.size, self.scale, self.bound)

    def _new(self, handle: Any, scale: int, bound: int) -> "EncryptedValue":
        return type(self)(self.backend, handle, self.size, scale, bound)

    def _check(self, bound: int, operation: str) -> None:
        limit = self.backend.max_magnitude
        if bound > limit:
            raise ArithmeticOverflow(f"{operation} on {self.describe()}", bound, limit)

    def _peer(self, other: "EncryptedValue", operation: str) -> None:
        if other.backend is not self.backend:
            raise ValueError(f"{operation}: operands belong to different backend handles")
        if type(other) is not type(self):
            self.backend.require(Capability.BROADCAST, BROADCAST_HINT)
        if other.size != self.size:
            raise ArgumentShapeMismatch(operation, [self.describe()], [other.describe()])

    def _aligned(self, other: "EncryptedValue", operation: str) -> tuple[Any, Any, int, int]:
        scale = math.lcm(self.scale, other.scale)
        ma = scale // self.scale
        mb = scale // other.scale
        bound = self.bound * ma + other.bound * mb
        self._check(bound, operation)
        ha = self.handle if ma == 1 else self.backend.multiply_plain(self.handle, ma)
        hb = other.handle if mb == 1 else self.backend.multiply_plain(other.handle, mb)
        return ha, hb, scale, bound

    def _add_constant(self, constant: Fraction, operation: str) -> "EncryptedValue":
        self.backend.require(Capability.ADD_PLAIN)
        scale = math.lcm(self.scale, constant.denominator)
        factor = scale // self.scale
        addend = constant.numerator * (scale // constant.denominator)
        bound = self.bound * factor + abs(addend)
        self._check(bound, operation)
        handle = self.handle if factor == 1 else self.backend.multiply_plain(self.handle, factor)
        return self._new(self.backend.add_plain(handle, addend), scale, bound)

    def _scale_by(self, constant: Fraction, operation: str) -> "EncryptedValue":
        self.backend.require(Capability.MULTIPLY_PLAIN)
        # Cancel against the scale first so 1/N costs no ciphertext work
        common = math.gcd(constant.numerator, self.scale)
        factor = constant.numerator // common
        scale = (self.scale // common) * constant.denominator
        bound = self.bound * abs(factor)
        self._check(bound, operation)
        if factor == 1:
            handle = self.backend.copy(self.handle)
        else:
            handle = self.backend.multiply_plain(self.handle, factor)
        return self._new(handle, scale, bound)

    def __add__(self, other: Any) -> "EncryptedValue":
        if isinstance(other, EncryptedValue):
            self._peer(other, "add")
            self.backend.require(Capability.ADD)
            ha, hb, scale, bound = self._aligned(other, "add")
            return self._new(self.backend.add(ha, hb), scale, bound)
        constant = as_plaintext(other)
        if constant is None:
            return NotImplemented
        return self._add_constant(constant, "add")

    __radd__ = __add__

    def __sub__(self, other: Any) -> "EncryptedValue":
        if isinstance(other, EncryptedValue):
            self._peer(other, "subtract")
            self.backend.require(Capability.SUBTRACT)
            ha, hb, scale, bound = self._aligned(other, "subtract")
            return self._new(self.backend.subtract(ha, hb), scale, bound)
        constant = as_plaintext(other)
        if constant is None:
            return NotImplemented
        return self._add_constant(-constant, "subtract")

    def __rsub__(self, other: Any) -> "EncryptedValue":
        constant = as_plaintext(other)
        if constant is None:
            return NotImplemented
        return (-self)._add_constant(constant, "subtract")

    def __neg__(self) -> "EncryptedValue":
        self.backend.require(Capability.NEGATE)
        return self._new(self.backend.negate(self.handle), self.scale, self.bound)

    def __mul__(self, other: Any) -> "EncryptedValue":
        if isinstance(other, EncryptedValue):
            self._peer(other, "multiply")
            self.backend.require(Capability.MULTIPLY)
            bound = self.bound * other.bound
            self._check(bound, "multiply")
            handle = self.backend.multiply(self.handle, other.handle)
            return self._new(handle, self.scale * other.scale, bound)
        constant = as_plaintext(other)
        if constant is None:
            return NotImplemented
        return self._scale_by(constant, "multiply")

    __rmul__ = __mul__

    def __truediv__(self, other: Any) -> "EncryptedValue":
        if isinstance(other, EncryptedValue):
            self._unsupported(Capability.DIVIDE, DIVIDE_HINT)
        constant = as_plaintext(other)
        if constant is None:
            return NotImplemented
        if constant == 0:
            raise ZeroDivisionError("division of an encrypted value by zero")
        return self._scale_by(1 / constant, "divide")

    def __rtruediv__(self, other: Any) -> "EncryptedValue":
        self._unsupported(Capability.DIVIDE, DIVIDE_HINT)

    def __iadd__(self, other: Any) -> "EncryptedValue":
        if not self._accumulates(other):
            return self + other
        self._peer(other, "add")
        self.backend.require(Capability.ADD)
        bound = self.bound + other.bound
        self._check(bound, "add")
        self.handle = self.backend.add_inplace(self.handle, other.handle)
        self.bound = bound
        return self

    def __isub__(self, other: Any) -> "EncryptedValue":
        if not self._accumulates(other):
            return self - other
        self._peer(other, "subtract")
        self.backend.require(Capability.SUBTRACT)
        bound = self.bound + other.bound
        self._check(bound, "subtract")
        self.handle = self.backend.subtract_inplace(self.handle, other.handle)
        self.bound = bound
        return self

    def seal(self) -> "EncryptedValue":
        """Make this value immutable to += and -=; returns self."""
        self.sealed = True
        return self

    def _accumulates(self, other: Any) -> bool:
        # In-place only when no realignment is needed
        return (
            not self.sealed
            and isinstance(other, EncryptedValue)
            and type(other) is type(self)
            and other.scale == self.scale
            and other.handle is not self.handle
        )

    def _unsupported(self, capability: Capability, alternative: str) -> Any:
        self.backend.require(capability, alternative)
        raise UnsupportedOperation(
            capability.value,
            f"{self.backend.name} advertises it but encrypted values have no rule for it",
        )

    def __abs__(self) -> "EncryptedValue":
        return self._unsupported(
            Capability.ABSOLUTE, "use a squared error (mean_squared_error) instead"
        )

    def sqrt(self) -> "EncryptedValue":
        return self._unsupported(
            Capability.SQRT, "decrypt first and take the root on plaintext"
        )

    def __lt__(self, other: Any) -> bool:
        return self._unsupported(Capability.COMPARE, "compare after decryption")

    __le__ = __lt__
    __gt__ = __lt__
    __ge__ = __lt__


class EncryptedScalar(EncryptedValue):
    """One encrypted rational number (a single-slot ciphertext)."""

    __slots__ = ()
    kind: ClassVar[str] = "encrypted_scalar"

    def __init__(
        self,
        backend: FHEBackend,
        handle: Any,
        size: int = 1,
        scale: int = 1,
        bound: int = 0,
    ) -> None:
        if size != 1:
            raise ValueError(f"an encrypted scalar has exactly one slot, got {size}")
        super().__init__(backend, handle, size, scale, bound)


class EncryptedArray(EncryptedValue):
    """N encrypted rationals packed into one ciphertext.

    N is part of the value's shape: arrays of different sizes never combine.
    """

    __slots__ = ()
    kind: ClassVar[str] = "encrypted_array"

    def describe(self) -> str:
        return f"{self.kind}[{self.size}]"

    def __len__(self) -> int:
        return self.size

    def sum(self) -> EncryptedScalar:
        """Encrypted total of all slots."""
        self.backend.require(Capability.SUM)
        bound = self.bound * self.size
        self._check(bound, "sum")
        handle = self.backend.sum(self.handle, self.size)
        return EncryptedScalar(self.backend, handle, 1, self.scale, bound)
