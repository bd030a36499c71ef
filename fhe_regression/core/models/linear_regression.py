"""Closed-form simple linear regression over encrypted data.

    slope     = cov(x, y) / var(x)
    intercept = mean(y) - slope * mean(x)

The fit runs as two independently compiled stages joined by the key
holder. BFV cannot divide by an encrypted value, so between the stages the
Session decrypts var(x) and hands back its exact reciprocal as a plaintext
multiplier. That step discloses var(x) to whoever evaluates the
computation; it is recorded on the returned ModelParameters and logged as
a warning, never performed silently.

Prediction needs slope and intercept in every slot of the input array.
The Session re-encrypts them replicated (materialize) before the predict
stage, since the backend cannot broadcast a scalar inside a circuit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Sequence

import numpy as np

from fhe_regression.core.bounds import check_regression_domain
from fhe_regression.core.encrypted import EncryptedArray, EncryptedScalar
from fhe_regression.core.errors import ArgumentShapeMismatch, DegenerateDataset
from fhe_regression.core.runtime import Computation, array, plaintext, scalar
from fhe_regression.core.statistics import (
    covariance,
    mean,
    mean_squared_error_program,
    root_mean_squared_error,
    variance,
)

if TYPE_CHECKING:
    from fhe_regression.session import Disclosure, Session

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Dataset:
    """Paired encrypted observations.

    Attributes:
        x: Independent variable, one slot per observation.
        y: Dependent variable, same size as x.
    """

    x: EncryptedArray
    y: EncryptedArray

    def __post_init__(self) -> None:
        if not isinstance(self.x, EncryptedArray) or not isinstance(self.y, EncryptedArray):
            raise TypeError("Dataset needs two encrypted arrays")
        if self.x.size != self.y.size:
            raise ArgumentShapeMismatch(
                "dataset",
                [self.x.describe(), self.x.describe()],
                [self.x.describe(), self.y.describe()],
            )
        if self.x.backend is not self.y.backend:
            raise ValueError("Dataset arrays belong to different sessions")

    @property
    def n_observations(self) -> int:
        return self.x.size


@dataclass(frozen=True)
class ModelParameters:
    """Encrypted model produced by one fit. Never mutated; refit instead.

    The slope and intercept are sealed: in-place arithmetic on them
    returns a new value and leaves the parameters untouched.

    Attributes:
        slope: Encrypted slope.
        intercept: Encrypted intercept.
        n_observations: Training set size, which fixes the magnitude budget.
        disclosures: Plaintext values revealed to the evaluator by the fit.
    """

    slope: EncryptedScalar
    intercept: EncryptedScalar
    n_observations: int
    disclosures: tuple["Disclosure", ...] = ()


def _moments(x: EncryptedArray, y: EncryptedArray) -> dict:
    return {
        "variance_x": variance(x),
        "covariance": covariance(x, y),
        "mean_x": mean(x),
        "mean_y": mean(y),
    }


def _parameters(cov, mean_x, mean_y, inv_variance) -> dict:
    slope = cov * inv_variance
    return {"slope": slope, "intercept": mean_y - slope * mean_x}


def _predict(x, slope, intercept) -> dict:
    return {"predictions": slope * x + intercept}


def moments_program(n: int) -> Computation:
    return Computation(
        name="moments",
        signature=(array("x", n), array("y", n)),
        body=_moments,
        outputs=("variance_x", "covariance", "mean_x", "mean_y"),
    )


PARAMETERS_PROGRAM = Computation(
    name="parameters",
    signature=(
        scalar("covariance"),
        scalar("mean_x"),
        scalar("mean_y"),
        plaintext("inv_variance"),
    ),
    body=_parameters,
    outputs=("slope", "intercept"),
)


def predict_program(n: int) -> Computation:
    return Computation(
        name="predict",
        signature=(array("x", n), array("slope", n), array("intercept", n)),
        body=_predict,
        outputs=("predictions",),
    )


class LinearRegression:
    """Fits and applies a simple linear regression inside one Session.

    Args:
        session: Session owning the key context all values live in.
    """

    def __init__(self, session: "Session") -> None:
        self.session = session

    def fit(self, dataset: Dataset) -> ModelParameters:
        """Fit slope and intercept on encrypted data.

        Args:
            dataset: Encrypted training data.

        Returns:
            Encrypted parameters, with the disclosure the fit made.

        Raises:
            ArithmeticOverflow: If the dataset is too large for the
                configured magnitude budget (checked before any work).
            DegenerateDataset: If fewer than two observations are given
                or every x is identical.
        """
        n = dataset.n_observations
        if n < 2:
            raise DegenerateDataset(f"Linear regression needs at least 2 observations, got {n}")
        budget = check_regression_domain(
            n, self.session.codec, self.session.backend.max_magnitude
        )
        logger.info(f"Fitting linear regression: n={n}, worst-case magnitude ~2^{budget.bit_length()}")

        var_x, cov, mean_x, mean_y = self.session.run(moments_program(n), dataset.x, dataset.y)
        disclosure = self.session.disclose_divisor(
            var_x,
            "variance(x)",
            reason="slope = covariance / variance needs a plaintext reciprocal",
        )
        slope, intercept = self.session.run(
            PARAMETERS_PROGRAM, cov, mean_x, mean_y, 1 / disclosure.value
        )

        logger.info(f"Fit complete: slope scale={slope.scale}, intercept scale={intercept.scale}")
        # Sealed so += on a parameter (or an alias of it) builds a new value
        return ModelParameters(slope.seal(), intercept.seal(), n, (disclosure,))

    def predict(self, params: ModelParameters, x: EncryptedArray) -> EncryptedArray:
        """Encrypted slope * x + intercept, slot by slot."""
        if not isinstance(x, EncryptedArray):
            raise TypeError(f"predict() needs an encrypted array, got {type(x).__name__}")
        size = x.size
        slope = self.session.materialize(params.slope, size)
        intercept = self.session.materialize(params.intercept, size)
        (predictions,) = self.session.run(predict_program(size), x, slope, intercept)
        return predictions

    def predict_value(self, params: ModelParameters, value: float) -> EncryptedScalar:
        """Encrypt one input and predict it."""
        x = self.session.encrypt_array([value])
        predictions = self.predict(params, x)
        return EncryptedScalar(
            predictions.backend, predictions.handle, 1, predictions.scale, predictions.bound
        )

    def mean_squared_error(
        self,
        params: ModelParameters,
        x: EncryptedArray,
        y: EncryptedArray,
    ) -> EncryptedScalar:
        """Encrypted MSE of the model on (x, y).

        Predictions are refreshed to the base scale before scoring, so they
        are quantized to the codec's resolution and must lie within its
        input bound.
        """
        if x.size != y.size:
            raise ArgumentShapeMismatch(
                "mean_squared_error", [x.describe(), x.describe()], [x.describe(), y.describe()]
            )
        predictions = self.session.refresh(self.predict(params, x))
        (mse,) = self.session.run(mean_squared_error_program(x.size), predictions, y)
        return mse

    def root_mean_squared_error(
        self,
        params: ModelParameters,
        x: EncryptedArray,
        y_true: Sequence[float] | np.ndarray,
    ) -> float:
        """RMSE against plaintext targets, computed after decryption."""
        predictions = self.session.decrypt(self.predict(params, x))
        return root_mean_squared_error(predictions, y_true)

    def decrypt_parameters(self, params: ModelParameters) -> tuple[float, float]:
        """(slope, intercept) as floats."""
        return self.session.decrypt(params.slope), self.session.decrypt(params.intercept)

    @staticmethod
    def fit_plaintext(x: Sequence[float] | np.ndarray, y: Sequence[float] | np.ndarray) -> tuple[float, float]:
        """Reference fit on plaintext with numpy."""
        x = np.asarray(x, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        if x.shape != y.shape:
            raise ValueError(f"x and y need equal shapes, got {x.shape} and {y.shape}")
        var_x = np.mean((x - x.mean()) ** 2)
        if var_x == 0:
            raise DegenerateDataset("variance(x) is zero")
        slope = np.mean((x - x.mean()) * (y - y.mean())) / var_x
        return float(slope), float(y.mean() - slope * x.mean())

    @staticmethod
    def predict_plaintext(slope: float, intercept: float, x: Sequence[float] | np.ndarray) -> np.ndarray:
        return slope * np.asarray(x, dtype=np.float64) + intercept
