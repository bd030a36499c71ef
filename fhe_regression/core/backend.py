"""Abstract FHE Backend interface.

This module defines the capability contract every encryption backend
exposes to the statistics and regression code. Swap implementations to use
a different library; the encrypted-value layer only ever calls the methods
declared here.

Handles returned by a backend are opaque. Only the backend that produced a
handle may operate on it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Sequence

from fhe_regression.core.errors import UnsupportedOperation


class FHEScheme(str, Enum):
    """Supported FHE schemes."""

    BFV = "bfv"  # Exact arithmetic (integers modulo t)


class Capability(str, Enum):
    """Operations an encrypted arithmetic backend may offer."""

    ADD = "add"
    SUBTRACT = "subtract"
    NEGATE = "negate"
    MULTIPLY = "multiply"
    ADD_PLAIN = "add_plain"
    MULTIPLY_PLAIN = "multiply_plain"
    SUM = "sum"
    DIVIDE = "divide"  # by an encrypted value
    SQRT = "sqrt"
    COMPARE = "compare"
    ABSOLUTE = "absolute"
    BROADCAST = "broadcast"  # scalar -> array inside a circuit


# What an integer BFV backend can evaluate homomorphically.
ARITHMETIC_CAPABILITIES = frozenset(
    {
        Capability.ADD,
        Capability.SUBTRACT,
        Capability.NEGATE,
        Capability.MULTIPLY,
        Capability.ADD_PLAIN,
        Capability.MULTIPLY_PLAIN,
        Capability.SUM,
    }
)

# 45-bit prime, congruent to 1 mod 2 * 16384 (batching-friendly up to n=16384).
DEFAULT_PLAIN_MODULUS = 35184372121601


@dataclass
class ParamsConfig:
    """FHE parameter configuration.

    Attributes:
        scheme: The FHE scheme to use.
        poly_modulus_degree: Polynomial modulus degree (power of 2).
        plain_modulus: Plaintext modulus t. Must be prime and satisfy
            t = 1 mod 2 * poly_modulus_degree so slots can be batched.
        coeff_mod_bit_sizes: Coefficient modulus bit sizes. None selects the
            library default for the polynomial degree.
        security_level: Security level in bits (128, 192, 256).
    """

    scheme: FHEScheme = FHEScheme.BFV
    poly_modulus_degree: int = 16384
    plain_modulus: int = DEFAULT_PLAIN_MODULUS
    coeff_mod_bit_sizes: list[int] | None = None
    security_level: int = 128

    def __post_init__(self) -> None:
        degree = self.poly_modulus_degree
        if degree < 1024 or degree & (degree - 1):
            raise ValueError(f"poly_modulus_degree must be a power of 2 >= 1024, got {degree}")
        if self.plain_modulus < 3:
            raise ValueError(f"plain_modulus must be at least 3, got {self.plain_modulus}")
        if (self.plain_modulus - 1) % (2 * degree):
            raise ValueError(
                f"plain_modulus {self.plain_modulus} does not support batching: "
                f"it must be 1 mod {2 * degree}"
            )

    @property
    def slot_count(self) -> int:
        return self.poly_modulus_degree

    @property
    def max_magnitude(self) -> int:
        """Largest |value| a slot holds before decryption wraps around."""
        return (self.plain_modulus - 1) // 2


class FHEBackend(ABC):
    """Abstract FHE backend interface.

    A backend instance is the process-level handle to one key context. It is
    not meant to be copied; share it by reference or through a Session.
    All integer arguments are exact plaintext integers; implementations
    reduce them modulo the plain modulus themselves.
    """

    capabilities: frozenset[Capability] = ARITHMETIC_CAPABILITIES

    def __init__(self) -> None:
        self._config: ParamsConfig | None = None

    @property
    @abstractmethod
    def scheme(self) -> FHEScheme:
        """The FHE scheme this backend implements."""
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name of this backend."""
        ...

    @property
    def config(self) -> ParamsConfig:
        if self._config is None:
            raise RuntimeError("Must call setup_context() before using the backend")
        return self._config

    @property
    def plain_modulus(self) -> int:
        return self.config.plain_modulus

    @property
    def max_magnitude(self) -> int:
        return self.config.max_magnitude

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def require(self, capability: Capability, alternative: str = "") -> None:
        """Raise UnsupportedOperation unless the capability is available."""
        if capability not in self.capabilities:
            raise UnsupportedOperation(capability.value, alternative)

    def centered(self, value: int) -> int:
        """Reduce an integer to its centered residue modulo t."""
        t = self.plain_modulus
        value %= t
        return value - t if value > t // 2 else value

    def setup_context(self, config: ParamsConfig) -> None:
        """Set up the key context for this handle.

        Args:
            config: Parameter configuration.
        """
        if config.scheme != self.scheme:
            raise ValueError(f"{self.name} requires {self.scheme.value} scheme, got {config.scheme}")
        self._config = config

    def close(self) -> None:
        """Release the key context. The handle is unusable afterwards."""
        self._config = None

    @property
    def closed(self) -> bool:
        return self._config is None

    def public_context(self, galois_keys: bool = True) -> bytes:  # noqa: ARG002
        """Serialized evaluation context without the secret key.

        An evaluator loaded from it can run computations on this handle's
        ciphertexts but cannot decrypt them.
        """
        raise NotImplementedError(f"{self.name} has no key material to export")

    @abstractmethod
    def encrypt(self, values: Sequence[int]) -> Any:
        """Encrypt integers into one packed ciphertext.

        Args:
            values: Slot values, each within max_magnitude.

        Returns:
            Backend-specific ciphertext handle.
        """
        ...

    @abstractmethod
    def decrypt(self, handle: Any, size: int) -> list[int]:
        """Decrypt the first `size` slots as centered integers."""
        ...

    @abstractmethod
    def add(self, a: Any, b: Any) -> Any:
        """Slot-wise a + b."""
        ...

    @abstractmethod
    def add_inplace(self, a: Any, b: Any) -> Any:
        """Slot-wise a += b, returning the updated handle."""
        ...

    @abstractmethod
    def subtract(self, a: Any, b: Any) -> Any:
        """Slot-wise a - b."""
        ...

    @abstractmethod
    def subtract_inplace(self, a: Any, b: Any) -> Any:
        """Slot-wise a -= b, returning the updated handle."""
        ...

    @abstractmethod
    def negate(self, a: Any) -> Any:
        """Slot-wise -a."""
        ...

    @abstractmethod
    def multiply(self, a: Any, b: Any) -> Any:
        """Slot-wise a * b of two ciphertexts."""
        ...

    @abstractmethod
    def add_plain(self, a: Any, value: int) -> Any:
        """Add a plaintext integer to every slot."""
        ...

    @abstractmethod
    def multiply_plain(self, a: Any, value: int) -> Any:
        """Multiply every slot by a plaintext integer."""
        ...

    @abstractmethod
    def sum(self, a: Any, size: int) -> Any:
        """Sum the first `size` slots into a one-slot ciphertext."""
        ...

    @abstractmethod
    def copy(self, a: Any) -> Any:
        """Independent copy of a handle (safe to update in place)."""
        ...
