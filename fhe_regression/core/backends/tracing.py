"""Metadata-only backend used for bound analysis.

Computation bodies are ordinary Python over encrypted values. Running a
body against this backend executes every scale and bound rule of the
encrypted-value layer (and so every overflow check) while producing empty
handles, which means no operation ever reaches a real key context.
"""

from __future__ import annotations

from typing import Any, Sequence

from fhe_regression.core.backend import FHEBackend, FHEScheme


class TracingBackend(FHEBackend):
    """Shadow of a real backend: same limits and capabilities, no work."""

    def __init__(self, target: FHEBackend) -> None:
        super().__init__()
        self.target = target
        self.capabilities = target.capabilities
        self._config = target.config

    @property
    def scheme(self) -> FHEScheme:
        return self.target.scheme

    @property
    def name(self) -> str:
        return f"Tracing({self.target.name})"

    def encrypt(self, values: Sequence[int]) -> None:
        return None

    def decrypt(self, handle: Any, size: int) -> list[int]:
        raise RuntimeError("Traced values carry no data and cannot be decrypted")

    def add(self, a: Any, b: Any) -> None:
        return None

    def add_inplace(self, a: Any, b: Any) -> None:
        return None

    def subtract(self, a: Any, b: Any) -> None:
        return None

    def subtract_inplace(self, a: Any, b: Any) -> None:
        return None

    def negate(self, a: Any) -> None:
        return None

    def multiply(self, a: Any, b: Any) -> None:
        return None

    def add_plain(self, a: Any, value: int) -> None:
        return None

    def multiply_plain(self, a: Any, value: int) -> None:
        return None

    def sum(self, a: Any, size: int) -> None:
        return None

    def copy(self, a: Any) -> None:
        return None
