"""FHE backend implementations."""

from __future__ import annotations

import logging

from fhe_regression.core.backend import FHEBackend, ParamsConfig

logger = logging.getLogger(__name__)

BACKEND_NAMES = ("tenseal", "reference")


def create_backend(name: str, config: ParamsConfig) -> FHEBackend:
    """Create a backend handle and set up its key context.

    Args:
        name: "tenseal" for real encryption, "reference" for the exact
            modular simulation.
        config: Parameter configuration.

    Returns:
        A ready-to-use backend handle.
    """
    backend: FHEBackend
    if name == "tenseal":
        # Imported here so the reference backend works without TenSEAL loaded
        from fhe_regression.core.backends.tenseal_bfv import TenSEALBFVBackend

        backend = TenSEALBFVBackend()
    elif name == "reference":
        from fhe_regression.core.backends.reference import ModularReferenceBackend

        backend = ModularReferenceBackend()
    else:
        raise ValueError(f"Unknown backend {name!r}, expected one of {BACKEND_NAMES}")

    backend.setup_context(config)
    logger.info(f"Created backend: {backend.name}")
    return backend
