"""Timing spans and counters for encrypted computations."""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from typing import Any, Generator

logger = logging.getLogger(__name__)

_lock = threading.Lock()
_counters: dict[str, int] = {
    "computations_compiled_total": 0,
    "computations_run_total": 0,
    "computations_failed_total": 0,
    "disclosures_total": 0,
}


def increment_counter(name: str, value: int = 1) -> None:
    """Increment a counter, creating it on first use."""
    with _lock:
        _counters[name] = _counters.get(name, 0) + value


def get_counters() -> dict[str, int]:
    """Snapshot of all counters."""
    with _lock:
        return _counters.copy()


@contextmanager
def trace_span(name: str, attributes: dict[str, Any] | None = None) -> Generator[dict, None, None]:
    """Time a block and log it at DEBUG.

    Usage:
        with trace_span("run:moments", {"n": 5}) as span:
            # dispatch
            span["outputs"] = 4
    """
    span: dict[str, Any] = {
        "name": name,
        "start_time": time.perf_counter(),
        "attributes": attributes or {},
    }

    try:
        yield span
    except Exception as e:
        span["error"] = f"{type(e).__name__}: {e}"
        raise
    finally:
        span["duration_ms"] = (time.perf_counter() - span["start_time"]) * 1000
        status = f" error={span['error']}" if "error" in span else ""
        logger.debug(
            f"Span: {name} duration={span['duration_ms']:.2f}ms "
            f"attrs={span['attributes']}{status}"
        )
