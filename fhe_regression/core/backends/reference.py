"""Exact modular-arithmetic reference backend.

Implements the backend contract with plain Python integers reduced modulo
the plain modulus t, which is the arithmetic a BFV ciphertext carries
once decrypted. There is no encryption: handles are tuples of residues.
Wraparound behaves exactly as it would under BFV, so the overflow checks in
the encrypted-value layer can be exercised without key generation.

Use it for tests and for checking a computation before running it under
real encryption.
"""

from __future__ import annotations

import logging
from typing import Sequence

from fhe_regression.core.backend import FHEBackend, FHEScheme

logger = logging.getLogger(__name__)

Residues = tuple[int, ...]


class ModularReferenceBackend(FHEBackend):
    """Plaintext simulation of batched BFV arithmetic.

    Attributes:
        dispatch_count: Number of operations executed, encryption and
            decryption included. Tests use it to prove a call never
            reached the backend.
    """

    def __init__(self) -> None:
        super().__init__()
        self.dispatch_count = 0

    @property
    def scheme(self) -> FHEScheme:
        return FHEScheme.BFV

    @property
    def name(self) -> str:
        return "Reference-BFV"

    def _dispatch(self) -> None:
        if self.closed:
            raise RuntimeError("Backend handle has been closed")
        self.dispatch_count += 1

    def _reduce(self, values: Sequence[int]) -> Residues:
        t = self.plain_modulus
        return tuple(v % t for v in values)

    def encrypt(self, values: Sequence[int]) -> Residues:
        self._dispatch()
        if len(values) > self.config.slot_count:
            raise ValueError(f"{len(values)} values exceed {self.config.slot_count} slots")
        return self._reduce([int(v) for v in values])

    def decrypt(self, handle: Residues, size: int) -> list[int]:
        self._dispatch()
        return [self.centered(v) for v in handle[:size]]

    def _zip(self, a: Residues, b: Residues) -> zip:
        if len(a) != len(b):
            raise ValueError(f"can't combine vectors of different sizes ({len(a)} and {len(b)})")
        return zip(a, b)

    def add(self, a: Residues, b: Residues) -> Residues:
        self._dispatch()
        return self._reduce([x + y for x, y in self._zip(a, b)])

    def add_inplace(self, a: Residues, b: Residues) -> Residues:
        # Tuples are immutable, so in-place accumulation rebinds.
        return self.add(a, b)

    def subtract(self, a: Residues, b: Residues) -> Residues:
        self._dispatch()
        return self._reduce([x - y for x, y in self._zip(a, b)])

    def subtract_inplace(self, a: Residues, b: Residues) -> Residues:
        return self.subtract(a, b)

    def negate(self, a: Residues) -> Residues:
        self._dispatch()
        return self._reduce([-x for x in a])

    def multiply(self, a: Residues, b: Residues) -> Residues:
        self._dispatch()
        return self._reduce([x * y for x, y in self._zip(a, b)])

    def add_plain(self, a: Residues, value: int) -> Residues:
        self._dispatch()
        return self._reduce([x + value for x in a])

    def multiply_plain(self, a: Residues, value: int) -> Residues:
        self._dispatch()
        return self._reduce([x * value for x in a])

    def sum(self, a: Residues, size: int) -> Residues:
        self._dispatch()
        return self._reduce([sum(a[:size])])

    def copy(self, a: Residues) -> Residues:
        self._dispatch()
        # tuple(a) would hand back the same object
        return tuple(list(a))
