"""
financing_engines.tracer -- FINANCING_ENGINE_TRACE records for pure engines.

Responsibility:
    ``@traced_engine`` logs one structured record per engine call so a
    settlement split or accrual step can be matched to its inputs after
    the fact: engine name and version, a fingerprint of the selected
    arguments, wall time and outcome.

Architecture position:
    Engines -- infrastructure support for the pure calculation layer.
    Emits a log record only; engines stay free of I/O.

Invariants enforced:
    - Fingerprints depend only on argument values: mapping keys are
      sorted, ints are rendered exactly (uint256 included), bytes as hex
      and dataclasses field by field.
    - Arguments and results pass through untouched; an engine exception
      is traced with ``outcome`` set to its class name and re-raised.

Usage:
    @traced_engine("settlement_split", "1.0", fingerprint_fields=("gross_amount", "rule"))
    def compute_split(gross_amount, rule): ...
"""

from __future__ import annotations

import dataclasses
import functools
import hashlib
import inspect
import logging
import time
from collections.abc import Callable, Mapping
from enum import Enum
from typing import Any

_logger = logging.getLogger("financing_kernel.engines.tracer")

TRACE_TYPE = "FINANCING_ENGINE_TRACE"
FINGERPRINT_LENGTH = 16


def _canonicalize(value: Any) -> str:
    """Deterministic text form used for fingerprinting."""
    if value is None:
        return "null"
    if isinstance(value, Enum):
        return _canonicalize(value.value)
    if isinstance(value, (bool, int, float, str)):
        return str(value)
    if isinstance(value, bytes):
        return "0x" + value.hex()
    if isinstance(value, Mapping):
        inner = ",".join(f"{k}:{_canonicalize(value[k])}" for k in sorted(value))
        return "{" + inner + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(map(_canonicalize, value)) + "]"
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return _canonicalize(
            {f.name: getattr(value, f.name) for f in dataclasses.fields(value)}
        )
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    arguments: Mapping[str, Any],
) -> str:
    """SHA-256 prefix over ``name=value`` pairs; absent names hash as null."""
    canonical = "|".join(
        f"{name}={_canonicalize(arguments.get(name))}" for name in fingerprint_fields
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
    level: int = logging.INFO,
) -> Callable:
    """Trace every call of a pure engine function.

    Args:
        engine_name: Engine identifier, e.g. ``"yield_accrual"``.
        engine_version: Bumped whenever the engine's arithmetic changes.
        fingerprint_fields: Parameter names (positional or keyword) hashed
            into ``input_fingerprint``.
        level: Level of the trace record; per-account engines use DEBUG.
            Nothing is computed when the level is disabled.
    """

    def decorator(func: Callable) -> Callable:
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            if not _logger.isEnabledFor(level):
                return func(*args, **kwargs)

            fingerprint = ""
            if fingerprint_fields:
                bound = signature.bind_partial(*args, **kwargs)
                fingerprint = compute_input_fingerprint(fingerprint_fields, bound.arguments)

            outcome = "ok"
            started = time.perf_counter()
            try:
                return func(*args, **kwargs)
            except Exception as exc:
                outcome = type(exc).__name__
                raise
            finally:
                _logger.log(
                    level,
                    TRACE_TYPE,
                    extra={
                        "trace_type": TRACE_TYPE,
                        "engine_name": engine_name,
                        "engine_version": engine_version,
                        "input_fingerprint": fingerprint,
                        "duration_ms": round((time.perf_counter() - started) * 1000, 3),
                        "outcome": outcome,
                        "function": func.__qualname__,
                    },
                )

        return wrapper

    return decorator
