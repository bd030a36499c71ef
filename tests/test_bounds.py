"""Tests for the analytic magnitude budget."""

import pytest

from fhe_regression.core.backend import ParamsConfig
from fhe_regression.core.bounds import (
    check_regression_domain,
    max_observations,
    regression_magnitude,
    required_plain_modulus_bits,
)
from fhe_regression.core.errors import ArithmeticOverflow
from fhe_regression.core.fixed_point import FixedPointCodec

LIMIT = ParamsConfig().max_magnitude


class TestRegressionBudget:
    """Test the 5 * N^3 * A^3 budget."""

    @pytest.fixture
    def codec(self) -> FixedPointCodec:
        return FixedPointCodec()

    def test_magnitude(self, codec: FixedPointCodec) -> None:
        assert regression_magnitude(5, codec) == 5 * 5**3 * 512**3

    def test_default_configuration_supports_29(self, codec: FixedPointCodec) -> None:
        assert max_observations(codec, LIMIT) == 29
        assert check_regression_domain(29, codec, LIMIT) == regression_magnitude(29, codec)

    def test_rejects_30(self, codec: FixedPointCodec) -> None:
        with pytest.raises(ArithmeticOverflow) as info:
            check_regression_domain(30, codec, LIMIT)
        assert info.value.limit == LIMIT
        assert info.value.bound == regression_magnitude(30, codec)

    def test_coarser_codec_supports_more(self) -> None:
        codec = FixedPointCodec(frac_bits=2, input_bound=8.0)
        assert codec.max_encoded == 32
        assert max_observations(codec, LIMIT) == 475

    def test_nothing_fits(self, codec: FixedPointCodec) -> None:
        assert max_observations(codec, 0) == 0

    def test_invalid_size(self, codec: FixedPointCodec) -> None:
        with pytest.raises(ValueError):
            check_regression_domain(0, codec, LIMIT)

    def test_required_bits(self, codec: FixedPointCodec) -> None:
        assert required_plain_modulus_bits(29, codec) == 45
        assert required_plain_modulus_bits(30, codec) == 46
        assert ParamsConfig().plain_modulus.bit_length() == 45
