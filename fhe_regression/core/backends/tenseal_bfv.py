"""TenSEAL BFV Backend Implementation.

This module implements the FHE backend using TenSEAL with the BFV scheme,
which supports exact arithmetic on batched vectors of integers modulo the
plain modulus t.

BFV fits fixed-point statistics because:
- Addition and multiplication are exact (no approximation noise in results)
- Slot-wise SIMD packing keeps an N-value array in one ciphertext
- Overflow is a well-defined wraparound modulo t, so it can be bounded
  ahead of time instead of discovered after decryption

BFV cannot divide, compare or take square roots; those capabilities are
absent from the backend's capability table.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator, Sequence

import tenseal as ts

from fhe_regression.core.backend import FHEBackend, FHEScheme, ParamsConfig
from fhe_regression.core.errors import BackendError

logger = logging.getLogger(__name__)

# Multipliers up to this size are applied by double-and-add, which costs
# far less noise budget than a batched plaintext multiplication.
SMALL_MULTIPLIER = 64


@contextmanager
def _library_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except (ValueError, RuntimeError, TypeError) as e:
        raise BackendError(f"TenSEAL {operation} failed: {e}") from e


class TenSEALBFVBackend(FHEBackend):
    """TenSEAL BFV backend for exact arithmetic on encrypted integer vectors.

    This backend supports:
    - Encrypted vector addition/subtraction/negation
    - Encrypted-encrypted and encrypted-plaintext multiplication
    - Slot summation (rotations, needs Galois keys)

    The handle owns the TenSEAL context, secret key included.
    """

    def __init__(self) -> None:
        super().__init__()
        self._context: ts.Context | None = None

    @property
    def scheme(self) -> FHEScheme:
        return FHEScheme.BFV

    @property
    def name(self) -> str:
        return "TenSEAL-BFV"

    @property
    def context(self) -> ts.Context:
        if self._context is None:
            raise RuntimeError("Must call setup_context() before using the backend")
        return self._context

    def setup_context(self, config: ParamsConfig) -> None:
        """Set up the TenSEAL BFV context and generate keys.

        Args:
            config: Parameter configuration.
        """
        super().setup_context(config)

        kwargs: dict[str, Any] = {}
        if config.coeff_mod_bit_sizes:
            kwargs["coeff_mod_bit_sizes"] = config.coeff_mod_bit_sizes

        with _library_errors("context setup"):
            context = ts.context(
                ts.SCHEME_TYPE.BFV,
                poly_modulus_degree=config.poly_modulus_degree,
                plain_modulus=config.plain_modulus,
                **kwargs,
            )
            # Rotations for slot sums, relinearization after multiplication
            context.generate_galois_keys()
            context.generate_relin_keys()

        self._context = context
        logger.info(
            f"TenSEAL BFV context ready: n={config.poly_modulus_degree}, "
            f"t~2^{config.plain_modulus.bit_length()}"
        )

    def close(self) -> None:
        self._context = None
        super().close()

    def public_context(self, galois_keys: bool = True) -> bytes:
        """Serialize a copy of the context with the secret key dropped.

        Relinearization keys are always kept so the evaluator can
        multiply. Galois keys (needed for sums) dominate the size at
        n=16384 and can be left out.
        """
        with _library_errors("public context export"):
            public = self.context.copy()
            public.make_context_public()
            return public.serialize(save_galois_keys=galois_keys)

    def encrypt(self, values: Sequence[int]) -> ts.BFVVector:
        """Encrypt integers into a BFV vector."""
        with _library_errors("encrypt"):
            return ts.bfv_vector(self.context, [self.centered(int(v)) for v in values])

    def decrypt(self, handle: Any, size: int) -> list[int]:
        """Decrypt a BFV vector (centered representatives)."""
        self._check(handle)
        with _library_errors("decrypt"):
            return [self.centered(int(v)) for v in handle.decrypt()[:size]]

    def _check(self, *handles: Any) -> None:
        for handle in handles:
            if not isinstance(handle, ts.BFVVector):
                raise TypeError(f"Expected BFVVector, got {type(handle)}")

    def add(self, a: Any, b: Any) -> ts.BFVVector:
        self._check(a, b)
        with _library_errors("add"):
            return a + b

    def add_inplace(self, a: Any, b: Any) -> ts.BFVVector:
        self._check(a, b)
        with _library_errors("add"):
            a += b
        return a

    def subtract(self, a: Any, b: Any) -> ts.BFVVector:
        self._check(a, b)
        with _library_errors("subtract"):
            return a - b

    def subtract_inplace(self, a: Any, b: Any) -> ts.BFVVector:
        self._check(a, b)
        with _library_errors("subtract"):
            a -= b
        return a

    def negate(self, a: Any) -> ts.BFVVector:
        self._check(a)
        with _library_errors("negate"):
            return -a

    def multiply(self, a: Any, b: Any) -> ts.BFVVector:
        self._check(a, b)
        with _library_errors("multiply"):
            return a * b

    def add_plain(self, a: Any, value: int) -> ts.BFVVector:
        self._check(a)
        with _library_errors("add_plain"):
            return a + self.centered(value)

    def multiply_plain(self, a: Any, value: int) -> ts.BFVVector:
        """Multiply every slot by an integer.

        Note: a zero multiplier would produce a transparent ciphertext,
        which SEAL refuses; a fresh encryption of zeros is returned instead.
        """
        self._check(a)
        value = self.centered(value)
        with _library_errors("multiply_plain"):
            if value == 0:
                return ts.bfv_vector(self.context, [0] * a.size())
            if abs(value) <= SMALL_MULTIPLIER:
                return self._double_and_add(a, value)
            return a * value

    def _double_and_add(self, a: ts.BFVVector, value: int) -> ts.BFVVector:
        result: ts.BFVVector | None = None
        addend = a
        remaining = abs(value)
        while remaining:
            if remaining & 1:
                result = addend.copy() if result is None else result + addend
            remaining >>= 1
            if remaining:
                addend = addend + addend
        assert result is not None
        return -result if value < 0 else result

    def sum(self, a: Any, size: int) -> ts.BFVVector:  # noqa: ARG002 - vector knows its size
        self._check(a)
        with _library_errors("sum"):
            return a.sum()

    def copy(self, a: Any) -> ts.BFVVector:
        self._check(a)
        with _library_errors("copy"):
            return a.copy()
