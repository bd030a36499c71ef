"""Models evaluated over encrypted data."""

from fhe_regression.core.models.linear_regression import Dataset, LinearRegression, ModelParameters

__all__ = ["Dataset", "LinearRegression", "ModelParameters"]
