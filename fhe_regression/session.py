"""Session: scope-bound owner of one backend handle.

A Session holds exactly one key context and one Runtime (the compiled
computation cache). Nothing is global: every component receives the
Session it works in. Closing the session releases both, and any further
use raises RuntimeError.

The session is also the key holder, which makes it the only place stages
can be joined. Each joining operation decrypts something, so each is
logged; the one that hands a plaintext back into the circuit
(disclose_reciprocal) is recorded as a Disclosure and logged as a warning.

In-process, one Session plays both parties: it holds the secret key and
also evaluates the compiled stages. The "evaluator" that a Disclosure is
addressed to is whoever runs those stages elsewhere; public_context()
exports the key material such an evaluator needs, without the secret key.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from fractions import Fraction
from typing import Any, Sequence

import numpy as np

from fhe_regression.config import Settings
from fhe_regression.core.backend import FHEBackend
from fhe_regression.core.backends import create_backend
from fhe_regression.core.encrypted import EncryptedArray, EncryptedScalar, EncryptedValue
from fhe_regression.core.errors import DegenerateDataset
from fhe_regression.core.fixed_point import FixedPointCodec
from fhe_regression.core.models.linear_regression import Dataset
from fhe_regression.core.runtime import CompiledComputation, Computation, Runtime
from fhe_regression.observability import increment_counter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Disclosure:
    """A decrypted value handed back to the evaluator as plaintext.

    Attributes:
        quantity: What was revealed, e.g. "variance(x)".
        value: The exact value revealed.
        reason: Why the computation needed it.
        timestamp: When it was revealed.
    """

    quantity: str
    value: Fraction
    reason: str
    timestamp: float = field(default_factory=time.time)


class Session:
    """Context manager owning one backend handle and its runtime.

    Args:
        settings: Configuration; defaults to Settings() (environment).
        backend: Existing backend handle to take ownership of. A handle
            without a key context is set up from settings.
    """

    def __init__(self, settings: Settings | None = None, backend: FHEBackend | None = None) -> None:
        self.settings = settings or Settings()
        self.codec: FixedPointCodec = self.settings.codec()
        if backend is None:
            backend = create_backend(self.settings.BACKEND, self.settings.params_config())
        elif backend.closed:
            backend.setup_context(self.settings.params_config())
        self._backend = backend
        self._lock = threading.RLock()
        self._runtime = Runtime(backend, self.codec, self._lock)
        self._disclosures: list[Disclosure] = []
        self._closed = False
        logger.info(
            f"Session opened: backend={backend.name}, "
            f"degree={backend.config.poly_modulus_degree}, "
            f"plain_modulus~2^{backend.plain_modulus.bit_length()}, "
            f"frac_bits={self.codec.frac_bits}, input_bound={self.codec.input_bound}"
        )

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def backend(self) -> FHEBackend:
        self._ensure_open()
        return self._backend

    @property
    def runtime(self) -> Runtime:
        self._ensure_open()
        return self._runtime

    @property
    def disclosures(self) -> tuple[Disclosure, ...]:
        return tuple(self._disclosures)

    def close(self) -> None:
        """Release the key context and the compiled computations."""
        with self._lock:
            if self._closed:
                return
            self._runtime.clear()
            self._backend.close()
            self._closed = True
        logger.info(f"Session closed ({len(self._disclosures)} disclosures)")

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("Session is closed")

    # Key holder

    def encrypt_array(self, values: Sequence[float] | np.ndarray) -> EncryptedArray:
        """Quantize and encrypt values into one packed ciphertext."""
        backend = self.backend
        data = np.asarray(values, dtype=np.float64)
        if data.ndim != 1 or data.size == 0:
            raise ValueError(f"Expected a non-empty 1-D sequence, got shape {data.shape}")
        if data.size > backend.config.slot_count:
            raise ValueError(
                f"{data.size} values exceed the {backend.config.slot_count} slots of one ciphertext"
            )
        encoded = self.codec.encode_many(data.tolist())
        with self._lock:
            handle = backend.encrypt(encoded)
        return EncryptedArray(backend, handle, len(encoded), self.codec.scale, self.codec.max_encoded)

    def encrypt_scalar(self, value: float) -> EncryptedScalar:
        backend = self.backend
        encoded = self.codec.encode(value)
        with self._lock:
            handle = backend.encrypt([encoded])
        return EncryptedScalar(backend, handle, 1, self.codec.scale, self.codec.max_encoded)

    def encrypt_dataset(
        self,
        x: Sequence[float] | np.ndarray,
        y: Sequence[float] | np.ndarray,
    ) -> Dataset:
        return Dataset(self.encrypt_array(x), self.encrypt_array(y))

    def _numerators(self, value: EncryptedValue) -> list[int]:
        backend = self.backend
        if value.backend is not backend:
            raise ValueError("Value belongs to another session")
        with self._lock:
            return backend.decrypt(value.handle, value.size)

    def decrypt_exact(self, value: EncryptedValue) -> Fraction | list[Fraction]:
        """Exact rational plaintext: a Fraction for scalars, a list for arrays."""
        fractions = [Fraction(n, value.scale) for n in self._numerators(value)]
        if isinstance(value, EncryptedScalar):
            return fractions[0]
        return fractions

    def decrypt(self, value: EncryptedValue) -> float | np.ndarray:
        """Plaintext as a float (scalars) or a float64 array (arrays)."""
        exact = self.decrypt_exact(value)
        if isinstance(exact, Fraction):
            return float(exact)
        return np.array([float(v) for v in exact], dtype=np.float64)

    # Stage boundaries

    def disclose_reciprocal(
        self,
        value: EncryptedScalar,
        quantity: str,
        reason: str = "division by an encrypted value",
    ) -> Fraction:
        """Decrypt a scalar and return its exact reciprocal as a plaintext.

        The reciprocal is meant to be fed back as a plaintext multiplier,
        so whoever evaluates the next stage learns the value. The
        disclosure is recorded and logged at WARNING.

        Raises:
            DegenerateDataset: If the value is zero.
        """
        return 1 / self.disclose_divisor(value, quantity, reason).value

    def disclose_divisor(
        self,
        value: EncryptedScalar,
        quantity: str,
        reason: str = "division by an encrypted value",
    ) -> Disclosure:
        """Decrypt a nonzero divisor and record it as a Disclosure.

        Returns the record this call created, so callers sharing the
        session across threads never pick up another caller's disclosure.

        Raises:
            DegenerateDataset: If the value is zero.
        """
        if not isinstance(value, EncryptedScalar):
            raise TypeError(f"Only scalars can be disclosed, got {value.describe()}")
        exact = self.decrypt_exact(value)
        if exact == 0:
            raise DegenerateDataset(f"{quantity} is zero, so it has no reciprocal")

        disclosure = Disclosure(quantity, exact, reason)
        with self._lock:
            self._disclosures.append(disclosure)
        increment_counter("disclosures_total")
        logger.warning(
            f"Disclosing {quantity} = {float(exact):.6g} to the evaluator as a "
            f"plaintext reciprocal ({reason})"
        )
        return disclosure

    def materialize(self, value: EncryptedScalar, size: int) -> EncryptedArray:
        """Re-encrypt a scalar replicated into `size` slots.

        The exact numerator, scale and bound are kept, so the array means
        exactly what the scalar meant.
        """
        if not isinstance(value, EncryptedScalar):
            raise TypeError(f"Only scalars can be materialized, got {value.describe()}")
        if size < 1:
            raise ValueError(f"size must be positive, got {size}")
        (numerator,) = self._numerators(value)
        with self._lock:
            handle = self._backend.encrypt([numerator] * size)
        logger.info(f"Materialized scalar into encrypted_array[{size}] (scale={value.scale})")
        return EncryptedArray(self._backend, handle, size, value.scale, value.bound)

    def refresh(self, value: EncryptedValue) -> EncryptedValue:
        """Re-encrypt a value at the codec's base scale.

        Resets magnitude growth and noise. The value is rounded to the
        codec's resolution.

        Raises:
            ArithmeticOverflow: If a slot lies outside the input bound.
        """
        exact = self.decrypt_exact(value)
        values = [exact] if isinstance(exact, Fraction) else exact
        encoded = self.codec.encode_many(float(v) for v in values)
        with self._lock:
            handle = self._backend.encrypt(encoded)
        logger.info(f"Refreshed {value.describe()} from scale {value.scale} to {self.codec.scale}")
        return type(value)(self._backend, handle, value.size, self.codec.scale, self.codec.max_encoded)

    def public_context(self, galois_keys: bool = True) -> bytes:
        """Evaluation context for a separate evaluator (no secret key).

        Raises:
            NotImplementedError: If the backend has no key material.
        """
        return self.backend.public_context(galois_keys)

    # Computations

    def compile(self, computation: Computation) -> CompiledComputation:
        return self.runtime.compile(computation)

    def run(self, computation: Computation, *args: Any) -> tuple[EncryptedValue, ...]:
        """Compile (cached) and run a computation in this session."""
        runtime = self.runtime
        return runtime.run(runtime.compile(computation), args)
