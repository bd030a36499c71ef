"""Fixed-point encoding for integer-only encrypted arithmetic.

BFV only computes on integers, so real numbers are quantized to a fixed
binary scale before encryption: x -> round(x * 2^frac_bits). Encrypted
results carry their own public scale (see encrypted.py), so decoding is
just numerator / scale.

RunningFraction is the representation this module exists to avoid: an
evolving numerator/denominator pair held in fixed-width integers. Every
multiplication multiplies both halves, so they outgrow the width after a
few dozen operations and wrap into values unrelated to the true result.
It is kept as an explicit comparison type; checked mode turns that silent
divergence into PrecisionLoss.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from fractions import Fraction
from typing import Iterable

from fhe_regression.core.errors import ArithmeticOverflow, PrecisionLoss


@dataclass(frozen=True)
class FixedPointCodec:
    """Quantizes plaintext reals to scaled integers and back.

    Attributes:
        frac_bits: Fractional bits; the base scale is 2**frac_bits.
        input_bound: Largest |x| accepted for encryption. Fresh ciphertexts
            are analysed at this magnitude, never at the data's own maximum.
    """

    frac_bits: int = 4
    input_bound: float = 32.0

    def __post_init__(self) -> None:
        if self.frac_bits < 0:
            raise ValueError(f"frac_bits must be >= 0, got {self.frac_bits}")
        if not math.isfinite(self.input_bound) or self.input_bound <= 0:
            raise ValueError(f"input_bound must be a positive finite number, got {self.input_bound}")

    @property
    def scale(self) -> int:
        return 1 << self.frac_bits

    @property
    def resolution(self) -> Fraction:
        """Smallest representable step."""
        return Fraction(1, self.scale)

    @property
    def max_encoded(self) -> int:
        """Static magnitude bound of any freshly encoded value."""
        return round(Fraction(self.input_bound) * self.scale)

    def encode(self, value: float) -> int:
        """Quantize one value to the base scale.

        Raises:
            ValueError: If the value is NaN.
            ArithmeticOverflow: If |value| exceeds input_bound.
        """
        value = float(value)
        if math.isnan(value):
            raise ValueError("cannot encode NaN")
        if math.isinf(value) or abs(value) > self.input_bound:
            bound = self.max_encoded + 1 if math.isinf(value) else round(abs(Fraction(value)) * self.scale)
            raise ArithmeticOverflow(f"encode({value})", bound, self.max_encoded)
        return round(Fraction(value) * self.scale)

    def encode_many(self, values: Iterable[float]) -> list[int]:
        return [self.encode(v) for v in values]

    def decode_exact(self, numerator: int, scale: int | None = None) -> Fraction:
        return Fraction(numerator, self.scale if scale is None else scale)

    def decode(self, numerator: int, scale: int | None = None) -> float:
        return float(self.decode_exact(numerator, scale))

    def quantize(self, value: float) -> float:
        """Round-trip a plaintext value through the encoding."""
        return self.decode(self.encode(value))


@dataclass(frozen=True)
class RunningFraction:
    """Naive rational number: fixed-width numerator and denominator.

    Arithmetic never rescales. Results that leave the signed `width`-bit
    range wrap around (two's complement) unless `checked` is set, in which
    case PrecisionLoss is raised instead.
    """

    numerator: int
    denominator: int = 1
    width: int = 64
    checked: bool = False

    @classmethod
    def from_float(
        cls,
        value: float,
        max_denominator: int = 1 << 16,
        width: int = 64,
        checked: bool = False,
    ) -> "RunningFraction":
        exact = Fraction(value).limit_denominator(max_denominator)
        return cls(exact.numerator, exact.denominator, width, checked)

    def _fit(self, value: int, operation: str) -> int:
        low = -(1 << (self.width - 1))
        if low <= value < -low:
            return value
        if self.checked:
            raise PrecisionLoss(operation, value.bit_length() + 1, self.width)
        return (value - low) % (1 << self.width) + low

    def _combine(self, numerator: int, denominator: int, operation: str) -> "RunningFraction":
        return RunningFraction(
            self._fit(numerator, f"{operation} numerator"),
            self._fit(denominator, f"{operation} denominator"),
            self.width,
            self.checked,
        )

    def __mul__(self, other: "RunningFraction") -> "RunningFraction":
        return self._combine(
            self.numerator * other.numerator,
            self.denominator * other.denominator,
            "multiply",
        )

    def __add__(self, other: "RunningFraction") -> "RunningFraction":
        return self._combine(
            self.numerator * other.denominator + other.numerator * self.denominator,
            self.denominator * other.denominator,
            "add",
        )

    def __sub__(self, other: "RunningFraction") -> "RunningFraction":
        return self._combine(
            self.numerator * other.denominator - other.numerator * self.denominator,
            self.denominator * other.denominator,
            "subtract",
        )

    def __float__(self) -> float:
        if self.denominator == 0:
            return math.nan
        return self.numerator / self.denominator

    @property
    def value(self) -> float:
        return float(self)

    @property
    def bits_used(self) -> int:
        return max(abs(self.numerator).bit_length(), abs(self.denominator).bit_length()) + 1
