"""Shared fixtures: reference-backend sessions and seeded data."""

import numpy as np
import pytest

from fhe_regression.config import Settings
from fhe_regression.session import Session


@pytest.fixture
def settings() -> Settings:
    return Settings(BACKEND="reference")


@pytest.fixture
def session(settings: Settings):
    with Session(settings) as session:
        yield session


@pytest.fixture
def backend(session: Session):
    return session.backend


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(1234)
