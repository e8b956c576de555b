"""
Configuration Loader (``financing_config.loader``).

Responsibility
--------------
Loads the ledger YAML file and parses it into the frozen
``financing_config.schema`` types.  Runtime callers use
``financing_config.get_active_config()``.

Invariants enforced
-------------------
* All parse errors raise ``ValueError`` (or ``KeyError`` for a missing
  required key) with a descriptive message.
* Every parsed object is a frozen dataclass.
* ``compute_checksum`` is a deterministic SHA-256 over the canonical JSON
  of the raw document.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from financing_config.schema import (
    STORE_BACKENDS,
    AccrualSettings,
    LedgerConfig,
    StoreSettings,
)
from financing_kernel.domain.types import PoolTerms
from financing_kernel.domain.values import BPS_DENOMINATOR, normalize_entity_id
from financing_kernel.exceptions import InvalidIdentifierError


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _bps(data: dict[str, Any], key: str, default: int, where: str) -> int:
    value = data.get(key, default)
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValueError(f"{where}.{key} must be an integer, got {value!r}")
    if not 0 <= value <= BPS_DENOMINATOR:
        raise ValueError(f"{where}.{key} must be within 0..{BPS_DENOMINATOR}, got {value}")
    return value


def _positive_number(value: Any, where: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ValueError(f"{where} must be a positive number, got {value!r}")
    return value


def _optional_timeout(value: Any, where: str) -> float | None:
    if value is None:
        return None
    return _positive_number(value, where)


def parse_pool_terms(data: dict[str, Any]) -> PoolTerms:
    """Parse one ``pools[]`` entry."""
    pool_id = data["pool_id"]
    if not isinstance(pool_id, str) or not pool_id:
        raise ValueError(f"pool_id must be a non-empty string, got {pool_id!r}")
    try:
        pool_id = normalize_entity_id(pool_id)
    except InvalidIdentifierError as exc:
        raise ValueError(f"pool_id {pool_id!r}: {exc.reason}") from None
    where = f"pools[{pool_id}]"

    tick_seconds = data.get("tick_seconds", 60)
    if isinstance(tick_seconds, bool) or not isinstance(tick_seconds, int) or tick_seconds <= 0:
        raise ValueError(f"{where}.tick_seconds must be a positive integer, got {tick_seconds!r}")

    annual_rate_bps = data.get("annual_rate_bps", 500)
    if isinstance(annual_rate_bps, bool) or not isinstance(annual_rate_bps, int) or annual_rate_bps < 0:
        raise ValueError(
            f"{where}.annual_rate_bps must be a non-negative integer, got {annual_rate_bps!r}"
        )

    return PoolTerms(
        pool_id=pool_id,
        ltv_bps=_bps(data, "ltv_bps", 6000, where),
        max_utilization_bps=_bps(data, "max_utilization_bps", 8000, where),
        max_single_loan_bps=_bps(data, "max_single_loan_bps", 0, where),
        annual_rate_bps=annual_rate_bps,
        tick_seconds=tick_seconds,
        carry_remainder=bool(data.get("carry_remainder", True)),
    )


def parse_accrual_settings(data: dict[str, Any]) -> AccrualSettings:
    return AccrualSettings(
        tick_interval_seconds=_positive_number(
            data.get("tick_interval_seconds", 60), "accrual.tick_interval_seconds",
        ),
        account_timeout_seconds=_optional_timeout(
            data.get("account_timeout_seconds", 5.0), "accrual.account_timeout_seconds",
        ),
    )


def parse_store_settings(data: dict[str, Any]) -> StoreSettings:
    backend = data.get("backend", "memory")
    if backend not in STORE_BACKENDS:
        raise ValueError(f"store.backend must be one of {STORE_BACKENDS}, got {backend!r}")
    database_url = data.get("database_url")
    if backend == "sql" and not database_url:
        raise ValueError("store.database_url is required for the sql backend")
    return StoreSettings(
        backend=backend,
        database_url=database_url,
        lock_timeout_seconds=_optional_timeout(
            data.get("lock_timeout_seconds", 10.0), "store.lock_timeout_seconds",
        ),
        echo=bool(data.get("echo", False)),
    )


def parse_ledger_config(data: dict[str, Any]) -> LedgerConfig:
    """
    Parse a full ledger configuration document.

    Raises:
        ValueError: invalid value or duplicate pool id.
        KeyError: missing required key.
    """
    pools = tuple(parse_pool_terms(p) for p in data.get("pools") or ())
    seen: set[str] = set()
    for terms in pools:
        if terms.pool_id in seen:
            raise ValueError(f"Duplicate pool_id in configuration: {terms.pool_id}")
        seen.add(terms.pool_id)

    return LedgerConfig(
        config_id=str(data.get("config_id", "default")),
        version=int(data.get("version", 1)),
        pools=pools,
        accrual=parse_accrual_settings(data.get("accrual") or {}),
        store=parse_store_settings(data.get("store") or {}),
        checksum=compute_checksum(data),
    )


def load_ledger_config(path: Path) -> LedgerConfig:
    """Load and parse a ledger YAML file."""
    return parse_ledger_config(load_yaml_file(Path(path)))


def compute_checksum(data: dict[str, Any]) -> str:
    """
    SHA-256 checksum of the canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
