"""
financing_config -- Ledger configuration.

``get_active_config()`` is the runtime entrypoint.  No other component
reads configuration files or environment variables.
"""

from __future__ import annotations

import logging
from pathlib import Path

from financing_config.loader import (
    compute_checksum,
    load_ledger_config,
    parse_ledger_config,
)
from financing_config.schema import AccrualSettings, LedgerConfig, StoreSettings

_logger = logging.getLogger("financing_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults" / "ledger.yaml"


def get_active_config(config_path: Path | None = None) -> LedgerConfig:
    """Load, validate and trace the active ledger configuration.

    Args:
        config_path: YAML file to load.  Defaults to the packaged
            ``financing_config/defaults/ledger.yaml``.

    Raises:
        FileNotFoundError: the file does not exist.
        ValueError: the configuration is invalid.
    """
    path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH
    config = load_ledger_config(path)

    _logger.info(
        "FINANCING_CONFIG_TRACE",
        extra={
            "trace_type": "FINANCING_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "pool_count": len(config.pools),
            "store_backend": config.store.backend,
            "path": str(path),
        },
    )
    return config


__all__ = [
    "AccrualSettings",
    "DEFAULT_CONFIG_PATH",
    "LedgerConfig",
    "StoreSettings",
    "compute_checksum",
    "get_active_config",
    "load_ledger_config",
    "parse_ledger_config",
]
