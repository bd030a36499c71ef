"""Tests for the command line driver (reference backend)."""

import pytest

from fhe_regression.cli import build_parser, load_settings, main
from fhe_regression.schemas import FitReport

TRAIN = ["--x", "1", "2", "3", "4", "5", "--y", "0.5", "1", "2.5", "3", "3.25"]


class TestCLI:
    """Test argument handling and reports."""

    def test_text_report(self, capsys: pytest.CaptureFixture) -> None:
        assert main(TRAIN + ["--backend", "reference", "--predict", "6"]) == 0
        out = capsys.readouterr().out
        assert "slope:     0.750000" in out
        assert "intercept: -0.200000" in out
        assert "prediction: 4.300000" in out
        assert "disclosed: variance(x)" in out

    def test_json_report(self, capsys: pytest.CaptureFixture) -> None:
        argv = TRAIN + [
            "--backend", "reference",
            "--predict", "6", "7", "8",
            "--test-y", "4", "5", "5.5",
            "--json",
        ]
        assert main(argv) == 0
        report = FitReport.model_validate_json(capsys.readouterr().out)
        assert report.backend == "Reference-BFV"
        assert report.n_observations == 5
        assert report.max_observations == 29
        assert report.parameters.slope == pytest.approx(0.75)
        assert report.parameters.intercept == pytest.approx(-0.2)
        assert report.predictions == pytest.approx(report.plaintext_predictions)
        assert report.mean_squared_error == 17 / 256
        assert [d.quantity for d in report.disclosures] == ["variance(x)"]

    def test_synthetic(self, capsys: pytest.CaptureFixture) -> None:
        assert main(["--synthetic", "20", "--backend", "reference", "--json"]) == 0
        report = FitReport.model_validate_json(capsys.readouterr().out)
        assert report.parameters.slope == pytest.approx(report.parameters.plaintext_slope, abs=0.05)

    def test_too_many_observations(self, capsys: pytest.CaptureFixture) -> None:
        assert main(["--synthetic", "40", "--backend", "reference"]) == 2
        assert "error:" in capsys.readouterr().err

    def test_value_errors_exit_cleanly(self, capsys: pytest.CaptureFixture) -> None:
        # More points than one ciphertext has slots
        assert main(["--synthetic", "20000", "--backend", "reference"]) == 2
        assert "slots" in capsys.readouterr().err

    @pytest.mark.parametrize(
        "argv",
        [
            ["--x", "1", "2", "--y", "1"],
            ["--backend", "reference"],
            TRAIN + ["--backend", "seal"],
            TRAIN + ["--backend", "reference", "--frac-bits", "-1"],
            TRAIN + ["--backend", "reference", "--test-y", "1"],
            ["--synthetic", "1", "--backend", "reference"],
            ["--x", "nan", "2", "--y", "1", "2", "--backend", "reference"],
            TRAIN + ["--backend", "reference", "--predict", "inf"],
        ],
    )
    def test_usage_errors(self, argv: list[str]) -> None:
        with pytest.raises(SystemExit) as info:
            main(argv)
        assert info.value.code == 2

    def test_load_settings_overrides(self) -> None:
        args = build_parser().parse_args(["--backend", "reference", "--frac-bits", "6"])
        settings = load_settings(args)
        assert settings.BACKEND == "reference"
        assert settings.FRAC_BITS == 6
