"""Closed-form linear regression over BFV-encrypted data."""

from fhe_regression.config import Settings
from fhe_regression.core.errors import (
    ArgumentShapeMismatch,
    ArithmeticOverflow,
    BackendError,
    DegenerateDataset,
    FHERegressionError,
    PrecisionLoss,
    UnsupportedOperation,
)
from fhe_regression.core.models.linear_regression import Dataset, LinearRegression, ModelParameters
from fhe_regression.session import Disclosure, Session

__version__ = "0.1.0"

__all__ = [
    "ArgumentShapeMismatch",
    "ArithmeticOverflow",
    "BackendError",
    "Dataset",
    "DegenerateDataset",
    "Disclosure",
    "FHERegressionError",
    "LinearRegression",
    "ModelParameters",
    "PrecisionLoss",
    "Session",
    "Settings",
    "UnsupportedOperation",
]
