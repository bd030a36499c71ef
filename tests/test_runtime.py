"""Tests for compiled computations: shape validation, analysis and dispatch."""

from fractions import Fraction

import pytest

from fhe_regression.config import Settings
from fhe_regression.core.backend import ParamsConfig
from fhe_regression.core.backends import create_backend
from fhe_regression.core.encrypted import EncryptedArray
from fhe_regression.core.errors import (
    ArgumentShapeMismatch,
    ArithmeticOverflow,
    BackendError,
    UnsupportedOperation,
)
from fhe_regression.core.fixed_point import FixedPointCodec
from fhe_regression.core.runtime import (
    ArgKind,
    ArgSpec,
    Computation,
    Runtime,
    array,
    describe_argument,
    plaintext,
    scalar,
)
from fhe_regression.core.statistics import covariance_program, mean_program
from fhe_regression.session import Session


def _scaled_program(n: int) -> Computation:
    return Computation(
        name="scaled",
        signature=(array("x", n), plaintext("k")),
        body=lambda x, k: {"y": x * k},
        outputs=("y",),
    )


class TestArgSpec:
    """Test signature declarations."""

    def test_array_needs_size(self) -> None:
        with pytest.raises(ValueError):
            ArgSpec("x", ArgKind.ENCRYPTED_ARRAY)

    def test_only_arrays_have_size(self) -> None:
        with pytest.raises(ValueError):
            ArgSpec("s", ArgKind.ENCRYPTED_SCALAR, 3)

    def test_duplicate_names(self) -> None:
        with pytest.raises(ValueError, match="duplicate"):
            Computation("bad", (array("x", 2), array("x", 2)), lambda a, b: {"y": a}, ("y",))

    def test_describe(self) -> None:
        assert array("x", 4).describe() == "x: encrypted_array[4]"
        assert scalar("s").describe() == "s: encrypted_scalar"
        assert plaintext("k").describe() == "k: plaintext"

    def test_describe_argument(self, session: Session) -> None:
        assert describe_argument(session.encrypt_array([1.0, 2.0])) == "encrypted_array[2]"
        assert describe_argument(session.encrypt_scalar(1.0)) == "encrypted_scalar"
        assert describe_argument(Fraction(1, 3)) == "plaintext"
        assert describe_argument([1.0]) == "list"


class TestShapeValidation:
    """Mismatched calls fail with ArgumentShapeMismatch and never dispatch."""

    @pytest.fixture
    def x(self, session: Session) -> EncryptedArray:
        return session.encrypt_array([1.0, 2.0, 3.0])

    def _assert_rejected(self, session: Session, computation: Computation, *args) -> ArgumentShapeMismatch:
        compiled = session.compile(computation)
        before = session.backend.dispatch_count
        with pytest.raises(ArgumentShapeMismatch) as info:
            session.runtime.run(compiled, args)
        assert session.backend.dispatch_count == before
        return info.value

    def test_wrong_count(self, session: Session, x: EncryptedArray) -> None:
        error = self._assert_rejected(session, covariance_program(3), x)
        assert error.expected == ("x: encrypted_array[3]", "y: encrypted_array[3]")
        assert error.actual == ("encrypted_array[3]",)
        assert "expected 2 arguments, got 1" in str(error)

    def test_too_many(self, session: Session, x: EncryptedArray) -> None:
        self._assert_rejected(session, mean_program(3), x, x)

    def test_plaintext_where_encrypted_expected(self, session: Session, x: EncryptedArray) -> None:
        error = self._assert_rejected(session, covariance_program(3), x, 2.0)
        assert error.actual == ("encrypted_array[3]", "plaintext")
        assert "argument 1 (y)" in str(error)

    def test_encrypted_where_plaintext_expected(self, session: Session, x: EncryptedArray) -> None:
        error = self._assert_rejected(session, _scaled_program(3), x, session.encrypt_scalar(2.0))
        assert error.actual == ("encrypted_array[3]", "encrypted_scalar")

    def test_wrong_order(self, session: Session, x: EncryptedArray) -> None:
        self._assert_rejected(session, _scaled_program(3), 2.0, x)

    def test_wrong_array_size(self, session: Session, x: EncryptedArray) -> None:
        error = self._assert_rejected(session, mean_program(4), x)
        assert "x: encrypted_array[4]" in str(error)
        assert "encrypted_array[3]" in str(error)

    def test_scalars_instead_of_packed_array(self, session: Session) -> None:
        scalars = [session.encrypt_scalar(v) for v in (1.0, 2.0, 3.0)]
        error = self._assert_rejected(session, mean_program(3), scalars)
        assert error.actual == ("list",)
        self._assert_rejected(session, mean_program(3), *scalars)

    def test_value_from_another_session(self, session: Session, settings: Settings) -> None:
        with Session(settings) as other:
            foreign = other.encrypt_array([1.0, 2.0, 3.0])
            error = self._assert_rejected(session, mean_program(3), foreign)
        assert "another session" in str(error)

    def test_compiled_by_another_runtime(self, session: Session, settings: Settings, x: EncryptedArray) -> None:
        with Session(settings) as other:
            compiled = other.compile(mean_program(3))
            with pytest.raises(ValueError, match="different runtime"):
                session.runtime.run(compiled, [x])


class TestCompilation:
    """Test caching and design-time analysis."""

    def test_cache(self, session: Session) -> None:
        first = session.compile(mean_program(5))
        second = session.compile(mean_program(5))
        assert first is second
        session.compile(mean_program(6))
        assert session.runtime.cache_size == 2

    def test_same_name_with_another_body(self, session: Session) -> None:
        x = session.encrypt_array([1.0, 2.0, 3.0])
        (mean,) = session.run(mean_program(3), x)
        assert session.decrypt_exact(mean) == 2

        doubled = Computation(
            "mean", (array("x", 3),), lambda x: {"mean": x.sum() * 2}, ("mean",)
        )
        (result,) = session.run(doubled, x)
        assert session.decrypt_exact(result) == 12
        assert session.runtime.cache_size == 2
        assert session.compile(mean_program(3)) is session.compile(mean_program(3))

    def test_static_bound(self, session: Session) -> None:
        compiled = session.compile(mean_program(5))
        assert compiled.static_bound == 5 * 512

    def test_plaintext_arguments_defer_analysis(self, session: Session) -> None:
        assert session.compile(_scaled_program(3)).static_bound is None

    def test_static_overflow_rejected_at_compile(self) -> None:
        # 1000 values near the 2^44 ceiling
        settings = Settings(BACKEND="reference", FRAC_BITS=30, INPUT_BOUND=8192.0)
        with Session(settings) as session:
            with pytest.raises(ArithmeticOverflow):
                session.compile(mean_program(1000))
            assert session.runtime.cache_size == 0

    def test_unsupported_operation_rejected_at_compile(self, session: Session) -> None:
        computation = Computation(
            "absolute", (array("x", 2),), lambda x: {"y": abs(x)}, ("y",)
        )
        with pytest.raises(UnsupportedOperation):
            session.compile(computation)


class TestDispatch:
    """Test run-time analysis and dispatch."""

    def test_run_returns_outputs_in_order(self, session: Session) -> None:
        x = session.encrypt_array([1.0, 2.0])
        (y,) = session.run(_scaled_program(2), x, Fraction(1, 2))
        assert session.decrypt_exact(y) == [Fraction(1, 2), Fraction(1)]

    def test_dynamic_overflow_never_dispatches(self, session: Session) -> None:
        x = session.encrypt_array([1.0, 2.0])
        compiled = session.compile(_scaled_program(2))
        before = session.backend.dispatch_count
        with pytest.raises(ArithmeticOverflow):
            session.runtime.run(compiled, [x, 2**40])
        assert session.backend.dispatch_count == before

    def test_backend_failure_is_typed(self) -> None:
        backend = create_backend("reference", ParamsConfig())
        runtime = Runtime(backend, FixedPointCodec())
        x = EncryptedArray(backend, backend.encrypt([16, 32]), 2, 16, 512)
        compiled = runtime.compile(mean_program(2))
        backend.close()
        with pytest.raises(BackendError):
            runtime.run(compiled, [x])
