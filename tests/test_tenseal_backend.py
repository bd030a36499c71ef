"""Tests under real BFV encryption (TenSEAL)."""

from fractions import Fraction

import numpy as np
import pytest

ts = pytest.importorskip("tenseal")

from fhe_regression.config import Settings  # noqa: E402
from fhe_regression.core import statistics as stats  # noqa: E402
from fhe_regression.core.backend import FHEScheme, ParamsConfig  # noqa: E402
from fhe_regression.core.backends.tenseal_bfv import TenSEALBFVBackend  # noqa: E402
from fhe_regression.core.bounds import max_observations  # noqa: E402
from fhe_regression.core.encrypted import EncryptedArray  # noqa: E402
from fhe_regression.core.models.linear_regression import LinearRegression  # noqa: E402
from fhe_regression.session import Session  # noqa: E402


@pytest.fixture(scope="module")
def session():
    with Session(Settings(BACKEND="tenseal")) as session:
        yield session


class TestTenSEALBFVBackend:
    """Test the backend contract on raw integers."""

    @pytest.fixture(scope="class")
    def backend(self, session: Session) -> TenSEALBFVBackend:
        return session.backend

    def test_backend_properties(self, backend: TenSEALBFVBackend) -> None:
        assert backend.scheme == FHEScheme.BFV
        assert backend.name == "TenSEAL-BFV"
        assert backend.max_magnitude == (ParamsConfig().plain_modulus - 1) // 2

    def test_round_trip_centered(self, backend: TenSEALBFVBackend) -> None:
        values = [0, 1, -1, 123456, -(2**40)]
        assert backend.decrypt(backend.encrypt(values), len(values)) == values

    def test_arithmetic(self, backend: TenSEALBFVBackend) -> None:
        a = backend.encrypt([3, -4, 5])
        b = backend.encrypt([2, 2, -2])
        assert backend.decrypt(backend.add(a, b), 3) == [5, -2, 3]
        assert backend.decrypt(backend.subtract(a, b), 3) == [1, -6, 7]
        assert backend.decrypt(backend.multiply(a, b), 3) == [6, -8, -10]
        assert backend.decrypt(backend.negate(a), 3) == [-3, 4, -5]
        assert backend.decrypt(backend.add_plain(a, -10), 3) == [-7, -14, -5]
        assert backend.decrypt(backend.sum(a, 3), 1) == [4]

    @pytest.mark.parametrize("k", [0, 1, -1, 7, 64, -64, 65, 1000003, -(2**30)])
    def test_multiply_plain(self, backend: TenSEALBFVBackend, k: int) -> None:
        a = backend.encrypt([3, -4])
        assert backend.decrypt(backend.multiply_plain(a, k), 2) == [3 * k, -4 * k]

    def test_inplace_and_copy(self, backend: TenSEALBFVBackend) -> None:
        a = backend.encrypt([1, 2])
        b = backend.copy(a)
        a = backend.add_inplace(a, backend.encrypt([10, 10]))
        assert backend.decrypt(a, 2) == [11, 12]
        assert backend.decrypt(b, 2) == [1, 2]

    def test_rejects_foreign_handles(self, backend: TenSEALBFVBackend) -> None:
        with pytest.raises(TypeError):
            backend.add([1], [2])

    def test_closed_handle(self) -> None:
        backend = TenSEALBFVBackend()
        with pytest.raises(RuntimeError):
            backend.encrypt([1])


class TestEncryptedStatistics:
    """Statistics under encryption equal the plaintext results exactly."""

    def test_round_trip(self, session: Session) -> None:
        values = [1.0, -2.5, 31.9375, -32.0, 0.0625]
        assert session.decrypt(session.encrypt_array(values)).tolist() == values

    def test_statistics_agree(self, session: Session) -> None:
        rng = np.random.default_rng(7)
        x = (np.round(rng.uniform(-8.0, 8.0, 12) * 16) / 16).tolist()
        y = (np.round(rng.uniform(-8.0, 8.0, 12) * 16) / 16).tolist()
        cx, cy = session.encrypt_array(x), session.encrypt_array(y)

        ex = [Fraction(v) for v in x]
        ey = [Fraction(v) for v in y]
        mx, my = sum(ex) / 12, sum(ey) / 12
        assert session.decrypt_exact(stats.mean(cx)) == mx
        assert session.decrypt_exact(stats.variance(cx)) == sum((v - mx) ** 2 for v in ex) / 12
        assert session.decrypt_exact(stats.covariance(cx, cy)) == (
            sum((a - mx) * (b - my) for a, b in zip(ex, ey)) / 12
        )


class TestEncryptedRegression:
    """Fit and predict under real encryption."""

    @pytest.fixture(scope="class")
    def fitted(self, session: Session):
        model = LinearRegression(session)
        params = model.fit(session.encrypt_dataset([1.0, 2.0, 3.0, 4.0, 5.0], [0.5, 1.0, 2.5, 3.0, 3.25]))
        return model, params

    def test_fit(self, session: Session, fitted) -> None:
        _, params = fitted
        assert session.decrypt_exact(params.slope) == Fraction(3, 4)
        assert session.decrypt_exact(params.intercept) == Fraction(-1, 5)

    def test_predict(self, session: Session, fitted) -> None:
        model, params = fitted
        predictions = model.predict(params, session.encrypt_array([6.0, 7.0, 8.0]))
        assert session.decrypt_exact(predictions) == [Fraction(43, 10), Fraction(101, 20), Fraction(29, 5)]

    def test_mean_squared_error(self, session: Session, fitted) -> None:
        model, params = fitted
        mse = model.mean_squared_error(
            params, session.encrypt_array([6.0, 7.0, 8.0]), session.encrypt_array([4.0, 5.0, 5.5])
        )
        assert session.decrypt_exact(mse) == Fraction(17, 256)

    def test_exactly_linear(self, session: Session) -> None:
        model = LinearRegression(session)
        dataset = session.encrypt_dataset([1.0, 2.0, 3.0, 4.0], [2.0, 4.0, 6.0, 8.0])
        params = model.fit(dataset)
        assert model.decrypt_parameters(params) == (2.0, 0.0)
        assert session.decrypt(model.predict(params, dataset.x)).tolist() == [2.0, 4.0, 6.0, 8.0]

    def test_largest_supported_dataset(self, session: Session) -> None:
        # Every value at the input bound: the worst case the parameters must carry
        n = max_observations(session.codec, session.backend.max_magnitude)
        assert n == 29
        bound = session.codec.input_bound
        rng = np.random.default_rng(29)
        x = rng.choice([-bound, bound], n)
        x[0], x[1] = bound, -bound
        y = rng.choice([-bound, bound], n)

        model = LinearRegression(session)
        dataset = session.encrypt_dataset(x, y)
        params = model.fit(dataset)
        slope, intercept = model.decrypt_parameters(params)
        plain_slope, plain_intercept = LinearRegression.fit_plaintext(x, y)
        assert slope == pytest.approx(plain_slope, rel=1e-9, abs=1e-9)
        assert intercept == pytest.approx(plain_intercept, rel=1e-9, abs=1e-9)

        predictions = session.decrypt(model.predict(params, dataset.x))
        np.testing.assert_allclose(
            predictions,
            LinearRegression.predict_plaintext(plain_slope, plain_intercept, x),
            rtol=1e-9,
            atol=1e-9,
        )


class TestPublicContext:
    """A separate evaluator gets key material but no secret key."""

    def test_evaluator_computes_but_cannot_decrypt(self, session: Session) -> None:
        public = ts.context_from(session.public_context(galois_keys=False))
        assert not public.is_private()

        x = session.encrypt_array([1.0, 2.0])
        received = ts.bfv_vector_from(public, x.handle.serialize())
        doubled = received + received
        with pytest.raises((ValueError, RuntimeError)):
            doubled.decrypt()

        returned = ts.bfv_vector_from(session.backend.context, doubled.serialize())
        result = EncryptedArray(session.backend, returned, 2, x.scale, 2 * x.bound)
        assert session.decrypt_exact(result) == [Fraction(2), Fraction(4)]
