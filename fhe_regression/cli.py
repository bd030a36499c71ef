"""Command line driver: encrypt a dataset, fit, predict, decrypt, print."""

from __future__ import annotations

import argparse
import logging
import sys
import time

import numpy as np
from pydantic import ValidationError

from fhe_regression.config import Settings
from fhe_regression.core.backends import BACKEND_NAMES
from fhe_regression.core.bounds import max_observations
from fhe_regression.core.errors import FHERegressionError
from fhe_regression.core.models.linear_regression import LinearRegression
from fhe_regression.core.statistics import root_mean_squared_error
from fhe_regression.schemas import DisclosureRecord, FitReport, ParametersReport
from fhe_regression.session import Session

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fhe-regression",
        description="Simple linear regression over BFV-encrypted data",
    )
    data = parser.add_argument_group("data")
    data.add_argument("--x", nargs="+", type=float, help="Training inputs")
    data.add_argument("--y", nargs="+", type=float, help="Training targets")
    data.add_argument("--synthetic", type=int, metavar="N", help="Generate N noisy points instead")
    data.add_argument("--slope", type=float, default=2.0, help="Synthetic slope")
    data.add_argument("--intercept", type=float, default=1.0, help="Synthetic intercept")
    data.add_argument("--noise", type=float, default=0.5, help="Synthetic noise std-dev")
    data.add_argument("--seed", type=int, default=0, help="Synthetic RNG seed")

    evaluation = parser.add_argument_group("evaluation")
    evaluation.add_argument("--predict", nargs="+", type=float, help="Inputs to predict")
    evaluation.add_argument(
        "--test-y", nargs="+", type=float, help="True targets for --predict (MSE and RMSE)"
    )

    config = parser.add_argument_group("configuration")
    config.add_argument("--backend", choices=BACKEND_NAMES, help="Encryption backend")
    config.add_argument("--frac-bits", type=int, help="Fixed-point fractional bits")
    config.add_argument("--input-bound", type=float, help="Largest |value| accepted")
    config.add_argument("--log-level", help="Logging level (default from settings)")
    config.add_argument("--json", action="store_true", help="Print a JSON report")
    return parser


def load_settings(args: argparse.Namespace) -> Settings:
    overrides = {
        "BACKEND": args.backend,
        "FRAC_BITS": args.frac_bits,
        "INPUT_BOUND": args.input_bound,
        "LOG_LEVEL": args.log_level,
    }
    return Settings(**{key: value for key, value in overrides.items() if value is not None})


def load_data(args: argparse.Namespace, parser: argparse.ArgumentParser) -> tuple[np.ndarray, np.ndarray]:
    if args.synthetic is not None:
        if args.synthetic < 2:
            parser.error("--synthetic needs at least 2 points")
        rng = np.random.default_rng(args.seed)
        x = rng.uniform(-5.0, 5.0, args.synthetic)
        y = args.slope * x + args.intercept + rng.normal(0.0, args.noise, args.synthetic)
        return x, y
    if args.x is None or args.y is None:
        parser.error("give --x and --y, or --synthetic N")
    if len(args.x) != len(args.y):
        parser.error(f"--x has {len(args.x)} values but --y has {len(args.y)}")
    return np.asarray(args.x, dtype=np.float64), np.asarray(args.y, dtype=np.float64)


def check_finite(args: argparse.Namespace, parser: argparse.ArgumentParser) -> None:
    for option in ("x", "y", "predict", "test_y"):
        values = getattr(args, option)
        if values and not np.all(np.isfinite(values)):
            parser.error(f"--{option.replace('_', '-')} values must be finite")


def run(args: argparse.Namespace, settings: Settings, x: np.ndarray, y: np.ndarray) -> FitReport:
    """Encrypt, fit, evaluate and decrypt; everything inside one Session."""
    start_time = time.perf_counter()
    plain_slope, plain_intercept = LinearRegression.fit_plaintext(x, y)

    with Session(settings) as session:
        model = LinearRegression(session)
        params = model.fit(session.encrypt_dataset(x, y))
        slope, intercept = model.decrypt_parameters(params)

        predictions: list[float] = []
        plaintext_predictions: list[float] = []
        mse = rmse = None
        if args.predict:
            x_new = session.encrypt_array(args.predict)
            predictions = session.decrypt(model.predict(params, x_new)).tolist()
            plaintext_predictions = LinearRegression.predict_plaintext(
                plain_slope, plain_intercept, args.predict
            ).tolist()
            if args.test_y:
                y_new = session.encrypt_array(args.test_y)
                mse = session.decrypt(model.mean_squared_error(params, x_new, y_new))
                rmse = root_mean_squared_error(predictions, args.test_y)

        report = FitReport(
            backend=session.backend.name,
            n_observations=params.n_observations,
            max_observations=max_observations(session.codec, session.backend.max_magnitude),
            frac_bits=session.codec.frac_bits,
            input_bound=session.codec.input_bound,
            parameters=ParametersReport(
                slope=slope,
                intercept=intercept,
                plaintext_slope=plain_slope,
                plaintext_intercept=plain_intercept,
            ),
            predictions=predictions,
            plaintext_predictions=plaintext_predictions,
            mean_squared_error=mse,
            root_mean_squared_error=rmse,
            disclosures=[
                DisclosureRecord(quantity=d.quantity, value=float(d.value), reason=d.reason)
                for d in params.disclosures
            ],
            latency_ms=(time.perf_counter() - start_time) * 1000,
        )
    return report


def print_report(report: FitReport) -> None:
    p = report.parameters
    print("-" * 60)
    print(f"Backend: {report.backend}  (n={report.n_observations}, max n={report.max_observations})")
    print("-" * 60)
    print(f"slope:     {p.slope:.6f}  (plaintext {p.plaintext_slope:.6f})")
    print(f"intercept: {p.intercept:.6f}  (plaintext {p.plaintext_intercept:.6f})")
    for encrypted, plain in zip(report.predictions, report.plaintext_predictions):
        print(f"prediction: {encrypted:.6f}  (plaintext {plain:.6f})")
    if report.mean_squared_error is not None:
        print(f"MSE (encrypted):  {report.mean_squared_error:.6f}")
        print(f"RMSE (decrypted): {report.root_mean_squared_error:.6f}")
    for d in report.disclosures:
        print(f"disclosed: {d.quantity} = {d.value:.6g} ({d.reason})")
    print(f"\nCompleted in {report.latency_ms:.2f}ms")


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = load_settings(args)
    except ValidationError as e:
        parser.error(str(e))
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    check_finite(args, parser)
    x, y = load_data(args, parser)
    if args.test_y and (not args.predict or len(args.test_y) != len(args.predict)):
        parser.error("--test-y needs --predict with the same number of values")

    try:
        report = run(args, settings, x, y)
    except (FHERegressionError, ValueError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    if args.json:
        print(report.model_dump_json(indent=2))
    else:
        print_report(report)
    return 0


if __name__ == "__main__":
    sys.exit(main())
