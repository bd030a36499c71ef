"""Compiled computations and their dispatch.

A Computation is a named arithmetic body plus an exact, ordered signature.
Compiling fixes that signature; running checks every call against it
before any ciphertext is touched:

    1. shape validation (count, order, encrypted/plaintext flag, array size)
    2. bound analysis on the tracing backend with the actual metadata
    3. dispatch on the real backend

Stages never feed each other implicitly. Outputs come back to the caller,
who decides (through the Session) how they cross into the next stage.
"""

from __future__ import annotations

import logging
import numbers
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping, Sequence

from fhe_regression.core.backend import FHEBackend
from fhe_regression.core.backends.tracing import TracingBackend
from fhe_regression.core.encrypted import EncryptedArray, EncryptedScalar, EncryptedValue
from fhe_regression.core.errors import (
    ArgumentShapeMismatch,
    BackendError,
    FHERegressionError,
)
from fhe_regression.core.fixed_point import FixedPointCodec
from fhe_regression.observability import increment_counter, trace_span

logger = logging.getLogger(__name__)


class ArgKind(str, Enum):
    """Encryption state of one argument position."""

    ENCRYPTED_ARRAY = "encrypted_array"
    ENCRYPTED_SCALAR = "encrypted_scalar"
    PLAINTEXT = "plaintext"


@dataclass(frozen=True)
class ArgSpec:
    """One position of a computation signature.

    Attributes:
        name: Argument name, used in error messages.
        kind: Encryption state expected at this position.
        size: Slot count; required for arrays, absent otherwise.
    """

    name: str
    kind: ArgKind
    size: int | None = None

    def __post_init__(self) -> None:
        if self.kind == ArgKind.ENCRYPTED_ARRAY:
            if self.size is None or self.size < 1:
                raise ValueError(f"Array argument {self.name!r} needs a positive size")
        elif self.size is not None:
            raise ValueError(f"Only array arguments carry a size ({self.name!r})")

    @property
    def encrypted(self) -> bool:
        return self.kind != ArgKind.PLAINTEXT

    def describe(self) -> str:
        if self.kind == ArgKind.ENCRYPTED_ARRAY:
            return f"{self.name}: {self.kind.value}[{self.size}]"
        return f"{self.name}: {self.kind.value}"

    def matches(self, value: Any) -> bool:
        if self.kind == ArgKind.ENCRYPTED_ARRAY:
            return isinstance(value, EncryptedArray) and value.size == self.size
        if self.kind == ArgKind.ENCRYPTED_SCALAR:
            return isinstance(value, EncryptedScalar)
        return isinstance(value, numbers.Real) and not isinstance(value, bool)


def array(name: str, size: int) -> ArgSpec:
    return ArgSpec(name, ArgKind.ENCRYPTED_ARRAY, size)


def scalar(name: str) -> ArgSpec:
    return ArgSpec(name, ArgKind.ENCRYPTED_SCALAR)


def plaintext(name: str) -> ArgSpec:
    return ArgSpec(name, ArgKind.PLAINTEXT)


def describe_argument(value: Any) -> str:
    """Shape of an actual argument, in the same vocabulary as ArgSpec."""
    if isinstance(value, EncryptedValue):
        return value.describe()
    if isinstance(value, numbers.Real) and not isinstance(value, bool):
        return ArgKind.PLAINTEXT.value
    return type(value).__name__


@dataclass(frozen=True)
class Computation:
    """An arithmetic body over a fixed signature.

    Attributes:
        name: Stage name.
        signature: Ordered argument specs.
        body: Function called with the arguments in signature order. It
            returns a mapping from output name to encrypted value.
        outputs: Output names, in the order run() returns them.
    """

    name: str
    signature: tuple[ArgSpec, ...]
    body: Callable[..., Mapping[str, EncryptedValue]]
    outputs: tuple[str, ...]

    def __post_init__(self) -> None:
        names = [spec.name for spec in self.signature]
        if len(set(names)) != len(names):
            raise ValueError(f"{self.name}: duplicate argument names in {names}")
        if not self.outputs:
            raise ValueError(f"{self.name}: a computation needs at least one output")


@dataclass(frozen=True)
class CompiledComputation:
    """A computation bound to one runtime with its signature fixed.

    Attributes:
        computation: The compiled computation.
        runtime: Runtime that compiled it; only that runtime runs it.
        static_bound: Worst-case magnitude at the codec's static input
            bound, when every argument is encrypted. None otherwise.
    """

    computation: Computation
    runtime: "Runtime"
    static_bound: int | None = None

    @property
    def name(self) -> str:
        return self.computation.name

    @property
    def signature(self) -> tuple[ArgSpec, ...]:
        return self.computation.signature

    def expected(self) -> list[str]:
        return [spec.describe() for spec in self.signature]


class Runtime:
    """Compiles computations and dispatches them to one backend.

    Args:
        backend: Backend handle that executes dispatched computations.
        codec: Codec fresh ciphertexts were encoded with; its static bound
            drives compile-time analysis.
        lock: Lock serializing dispatch. The owning Session passes its own.
    """

    def __init__(
        self,
        backend: FHEBackend,
        codec: FixedPointCodec,
        lock: threading.RLock | None = None,
    ) -> None:
        self._backend = backend
        self._codec = codec
        self._tracer = TracingBackend(backend)
        self._lock = lock or threading.RLock()
        self._cache: dict[tuple[str, tuple[ArgSpec, ...], Callable], CompiledComputation] = {}

    @property
    def backend(self) -> FHEBackend:
        return self._backend

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    def compile(self, computation: Computation) -> CompiledComputation:
        """Fix a computation's signature, analysing it when fully encrypted.

        Raises:
            ArithmeticOverflow: If the computation overflows at the codec's
                static input bound.
            UnsupportedOperation: If the body needs a missing capability.
        """
        key = (computation.name, computation.signature, computation.body)
        with self._lock:
            cached = self._cache.get(key)
            if cached is not None:
                return cached

            static_bound = None
            if all(spec.encrypted for spec in computation.signature):
                shadows = [self._static_shadow(spec) for spec in computation.signature]
                static_bound = self._analyse(computation, shadows)

            compiled = CompiledComputation(computation, self, static_bound)
            self._cache[key] = compiled
        increment_counter("computations_compiled_total")
        bits = f"~2^{static_bound.bit_length()}" if static_bound is not None else "deferred"
        logger.info(
            f"Compiled {computation.name}({', '.join(compiled.expected())}) "
            f"worst-case magnitude {bits}"
        )
        return compiled

    def validate(self, compiled: CompiledComputation, args: Sequence[Any]) -> None:
        """Check arguments against the compiled signature.

        Raises:
            ArgumentShapeMismatch: On any difference in count, order,
                encryption state, array size or owning session.
        """
        expected = compiled.expected()
        actual = [describe_argument(value) for value in args]
        signature = compiled.signature

        if len(args) != len(signature):
            raise ArgumentShapeMismatch(
                compiled.name,
                expected,
                actual,
                f"expected {len(signature)} arguments, got {len(args)}",
            )
        for position, (spec, value) in enumerate(zip(signature, args)):
            if not spec.matches(value):
                raise ArgumentShapeMismatch(
                    compiled.name, expected, actual, f"argument {position} ({spec.name})"
                )
            if spec.encrypted and value.backend is not self._backend:
                raise ArgumentShapeMismatch(
                    compiled.name,
                    expected,
                    actual,
                    f"argument {position} ({spec.name}) belongs to another session",
                )

    def run(self, compiled: CompiledComputation, args: Sequence[Any]) -> tuple[EncryptedValue, ...]:
        """Validate, analyse and dispatch a compiled computation.

        Returns:
            Output values in the computation's output order.
        """
        if compiled.runtime is not self:
            raise ValueError(f"{compiled.name} was compiled by a different runtime")
        args = list(args)
        self.validate(compiled, args)

        shadows = [
            value.traced(self._tracer) if isinstance(value, EncryptedValue) else value
            for value in args
        ]
        bound = self._analyse(compiled.computation, shadows)

        with self._lock, trace_span(
            f"run:{compiled.name}", {"backend": self._backend.name, "bound_bits": bound.bit_length()}
        ):
            try:
                results = compiled.computation.body(*args)
            except FHERegressionError:
                increment_counter("computations_failed_total")
                raise
            except (ValueError, TypeError, RuntimeError) as e:
                increment_counter("computations_failed_total")
                raise BackendError(f"{compiled.name} failed on {self._backend.name}: {e}") from e

        increment_counter("computations_run_total")
        return tuple(results[name] for name in compiled.computation.outputs)

    def clear(self) -> None:
        """Drop every compiled computation."""
        with self._lock:
            self._cache.clear()

    def _static_shadow(self, spec: ArgSpec) -> EncryptedValue:
        scale = self._codec.scale
        bound = self._codec.max_encoded
        if spec.kind == ArgKind.ENCRYPTED_ARRAY:
            return EncryptedArray(self._tracer, None, spec.size, scale, bound)
        return EncryptedScalar(self._tracer, None, 1, scale, bound)

    def _analyse(self, computation: Computation, args: Sequence[Any]) -> int:
        """Run the body on the tracing backend; return the largest output bound."""
        results = computation.body(*args)
        missing = [name for name in computation.outputs if name not in results]
        if missing:
            raise ValueError(f"{computation.name}: body did not produce outputs {missing}")
        return max(results[name].bound for name in computation.outputs)
