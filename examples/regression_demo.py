#!/usr/bin/env python3
"""Encrypted Linear Regression Demo.

Walks through the whole pipeline on a small dataset:
1. Open a Session (one key context, scope-bound)
2. Encrypt x and y once, each into a single packed ciphertext
3. Fit slope and intercept (two compiled stages, one disclosure)
4. Predict new encrypted inputs
5. Score with encrypted MSE and client-side RMSE
6. Decrypt and compare with the plaintext fit

Set FHE_REGRESSION_BACKEND=reference to run without TenSEAL.
"""

from __future__ import annotations

import logging
import time

import numpy as np

from fhe_regression import ArithmeticOverflow, LinearRegression, Session, Settings
from fhe_regression.core.bounds import max_observations


def main() -> None:
    """Run the encrypted regression demo."""
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")

    print("=" * 70)
    print("ENCRYPTED LINEAR REGRESSION DEMO")
    print("=" * 70)

    x = np.array([1.0, 2.0, 3.0, 4.0, 5.0])
    y = np.array([0.5, 1.0, 2.5, 3.0, 3.25])
    x_test = np.array([6.0, 7.0, 8.0])
    y_test = np.array([4.0, 5.0, 5.5])

    settings = Settings()
    print(f"\n[1/6] Opening session (backend: {settings.BACKEND})...")
    start = time.perf_counter()
    with Session(settings) as session:
        print(f"       Key setup: {(time.perf_counter() - start) * 1000:.2f}ms")
        limit = session.backend.max_magnitude
        print(f"       Magnitude limit: ~2^{limit.bit_length()}")
        print(f"       Supported training size: n <= {max_observations(session.codec, limit)}")

        print("\n[2/6] Encrypting training data...")
        dataset = session.encrypt_dataset(x, y)
        print(f"       {dataset.x!r}")

        print("\n[3/6] Fitting on ciphertexts...")
        model = LinearRegression(session)
        start = time.perf_counter()
        params = model.fit(dataset)
        print(f"       Fit: {(time.perf_counter() - start) * 1000:.2f}ms")
        for d in params.disclosures:
            print(f"       ⚠ Disclosed {d.quantity} = {float(d.value):.4f} ({d.reason})")

        print("\n[4/6] Predicting encrypted inputs...")
        x_new = session.encrypt_array(x_test)
        predictions = session.decrypt(model.predict(params, x_new))

        print("\n[5/6] Scoring...")
        mse = session.decrypt(model.mean_squared_error(params, x_new, session.encrypt_array(y_test)))
        rmse = model.root_mean_squared_error(params, x_new, y_test)

        print("\n[6/6] Decrypting parameters...")
        slope, intercept = model.decrypt_parameters(params)

        print("\n" + "=" * 70)
        print("RESULTS")
        print("=" * 70)
        plain_slope, plain_intercept = LinearRegression.fit_plaintext(x, y)
        print(f"\n   slope:     {slope:.6f}  (plaintext {plain_slope:.6f})")
        print(f"   intercept: {intercept:.6f}  (plaintext {plain_intercept:.6f})")
        print(f"   predictions: {predictions}")
        print(f"   plaintext:   {LinearRegression.predict_plaintext(plain_slope, plain_intercept, x_test)}")
        print(f"   MSE (encrypted):  {mse:.6f}")
        print(f"   RMSE (decrypted): {rmse:.6f}")

        print("\n[Overflow] Fitting a dataset larger than the budget...")
        too_many = max_observations(session.codec, limit) + 1
        try:
            model.fit(session.encrypt_dataset(np.ones(too_many), np.ones(too_many)))
        except ArithmeticOverflow as e:
            print(f"   ✓ Rejected before any work: {e}")


if __name__ == "__main__":
    main()
