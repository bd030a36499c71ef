"""Pydantic models for reports produced by the command line driver."""

from __future__ import annotations

from pydantic import BaseModel, Field


class DisclosureRecord(BaseModel):
    """A plaintext value revealed to the evaluator during a fit."""

    quantity: str = Field(..., description="What was revealed, e.g. variance(x)")
    value: float = Field(..., description="Revealed value")
    reason: str = Field(..., description="Why the computation needed it")


class ParametersReport(BaseModel):
    """Decrypted model parameters next to the plaintext reference fit."""

    slope: float
    intercept: float
    plaintext_slope: float
    plaintext_intercept: float


class FitReport(BaseModel):
    """Everything one run of the driver computed, decrypted."""

    backend: str = Field(..., description="Backend that evaluated the computation")
    n_observations: int = Field(..., description="Training set size")
    max_observations: int = Field(..., description="Largest training set the configuration supports")
    frac_bits: int
    input_bound: float
    parameters: ParametersReport
    predictions: list[float] = Field(default_factory=list)
    plaintext_predictions: list[float] = Field(default_factory=list)
    mean_squared_error: float | None = Field(default=None, description="Encrypted MSE, decrypted")
    root_mean_squared_error: float | None = Field(
        default=None, description="RMSE computed on decrypted predictions"
    )
    disclosures: list[DisclosureRecord] = Field(default_factory=list)
    latency_ms: float = Field(..., description="Wall time of encrypt, fit, predict and decrypt")
