"""Configuration for encrypted regression sessions."""

from __future__ import annotations

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from fhe_regression.core.backend import DEFAULT_PLAIN_MODULUS, FHEScheme, ParamsConfig
from fhe_regression.core.backends import BACKEND_NAMES
from fhe_regression.core.fixed_point import FixedPointCodec


class Settings(BaseSettings):
    # Backend
    BACKEND: str = "tenseal"  # tenseal or reference
    POLY_MODULUS_DEGREE: int = 16384
    PLAIN_MODULUS: int = DEFAULT_PLAIN_MODULUS

    # Fixed point
    FRAC_BITS: int = 4
    INPUT_BOUND: float = 32.0

    # Logging
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="FHE_REGRESSION_",
        env_file=".env",
        extra="ignore",
    )

    @field_validator("BACKEND")
    @classmethod
    def _known_backend(cls, value: str) -> str:
        value = value.lower()
        if value not in BACKEND_NAMES:
            raise ValueError(f"unknown backend {value!r}, expected one of {BACKEND_NAMES}")
        return value

    @field_validator("FRAC_BITS")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("FRAC_BITS must be >= 0")
        return value

    @field_validator("INPUT_BOUND")
    @classmethod
    def _positive(cls, value: float) -> float:
        if not value > 0:
            raise ValueError("INPUT_BOUND must be positive")
        return value

    @field_validator("LOG_LEVEL")
    @classmethod
    def _upper(cls, value: str) -> str:
        return value.upper()

    @model_validator(mode="after")
    def _batching_parameters(self) -> "Settings":
        # ParamsConfig rejects moduli that do not support batching
        self.params_config()
        return self

    def params_config(self) -> ParamsConfig:
        return ParamsConfig(
            scheme=FHEScheme.BFV,
            poly_modulus_degree=self.POLY_MODULUS_DEGREE,
            plain_modulus=self.PLAIN_MODULUS,
        )

    def codec(self) -> FixedPointCodec:
        return FixedPointCodec(frac_bits=self.FRAC_BITS, input_bound=self.INPUT_BOUND)
