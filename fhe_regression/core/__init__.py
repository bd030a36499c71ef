"""Encrypted arithmetic, statistics and compiled computations."""

from fhe_regression.core.backend import Capability, FHEBackend, FHEScheme, ParamsConfig
from fhe_regression.core.encrypted import EncryptedArray, EncryptedScalar, EncryptedValue
from fhe_regression.core.fixed_point import FixedPointCodec, RunningFraction
from fhe_regression.core.runtime import ArgKind, ArgSpec, CompiledComputation, Computation, Runtime

__all__ = [
    "ArgKind",
    "ArgSpec",
    "Capability",
    "CompiledComputation",
    "Computation",
    "EncryptedArray",
    "EncryptedScalar",
    "EncryptedValue",
    "FHEBackend",
    "FHEScheme",
    "FixedPointCodec",
    "ParamsConfig",
    "RunningFraction",
    "Runtime",
]
