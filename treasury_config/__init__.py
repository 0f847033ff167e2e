"""
treasury_config -- single public entrypoint for treasury configuration.

Responsibility:
    ``get_active_config()`` is the only way runtime code obtains
    configuration.  No other component reads configuration files or
    environment variables.

Architecture position:
    Configuration -- YAML-driven, validated at startup.  Sits above
    ``treasury_kernel`` and ``treasury_engines`` and below
    ``treasury_modules`` / ``treasury_api``.  The kernel MUST NEVER import
    from here.

Environment:
    TREASURY_CONFIG        path to a YAML file replacing the bundled defaults
    TREASURY_DATABASE_URL  overrides ``database.url``

Failure modes:
    - ``ToleranceSettingsNotFoundError`` -- no complete system default.
    - ``ConfigurationError`` -- any other invalid value.
    - ``FileNotFoundError`` -- TREASURY_CONFIG points nowhere.

Audit relevance:
    Every load emits a ``TREASURY_CONFIG_TRACE`` log entry with the source
    file and checksum.
"""

from __future__ import annotations

import os
from pathlib import Path

from treasury_config.loader import load_yaml_file, parse_config
from treasury_config.schema import (
    DatabaseConfig,
    LoggingConfig,
    SmartPaymentConfig,
    ToleranceConfig,
    TreasuryConfig,
)
from treasury_kernel.logging_config import get_logger

_logger = get_logger("config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"
CONFIG_ENV_VAR = "TREASURY_CONFIG"
DATABASE_URL_ENV_VAR = "TREASURY_DATABASE_URL"


def load_config(path: Path | str | None = None) -> TreasuryConfig:
    """
    Load and validate configuration from ``path`` (bundled defaults if None).

    Honors TREASURY_DATABASE_URL.
    """
    config_path = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    data = load_yaml_file(config_path)
    config = parse_config(
        data,
        source=str(config_path),
        database_url=os.environ.get(DATABASE_URL_ENV_VAR),
    )
    _logger.info(
        "TREASURY_CONFIG_TRACE",
        extra={
            "trace_type": "TREASURY_CONFIG_TRACE",
            "source": config.source,
            "checksum": config.checksum,
            "country_layer_count": len(config.tolerance.countries),
            "auto_select_by": config.smart_payment.auto_select_by.value,
            "excess_credit_policy": config.smart_payment.excess_credit_policy.value,
        },
    )
    return config


def get_active_config() -> TreasuryConfig:
    """The ONLY runtime configuration entrypoint."""
    return load_config(os.environ.get(CONFIG_ENV_VAR))


__all__ = [
    "get_active_config",
    "load_config",
    "DEFAULT_CONFIG_PATH",
    "TreasuryConfig",
    "ToleranceConfig",
    "SmartPaymentConfig",
    "DatabaseConfig",
    "LoggingConfig",
]
