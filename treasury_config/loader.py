"""
Configuration Loader (``treasury_config.loader``).

Responsibility
--------------
Loads the treasury YAML file and parses it into the typed
``treasury_config.schema`` dataclasses.  Runtime callers go through
``treasury_config.get_active_config()``.

Invariants enforced
-------------------
* A complete system default tolerance is mandatory; its absence raises
  ``ToleranceSettingsNotFoundError`` so the process fails at startup.
* Every other invalid value raises ``ConfigurationError`` naming the key.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from treasury_config.schema import (
    DatabaseConfig,
    LoggingConfig,
    SmartPaymentConfig,
    ToleranceConfig,
    TreasuryConfig,
)
from treasury_engines.allocation import AutoSelectOrder
from treasury_engines.excess import ExcessCreditPolicy
from treasury_engines.tolerance import TolerancePolicyLayer, ToleranceScope
from treasury_kernel.exceptions import (
    ConfigurationError,
    ToleranceSettingsNotFoundError,
)

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ConfigurationError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigurationError("<root>", "expected a mapping at the top level")
    return data


def parse_decimal(value: Any, key: str) -> Decimal | None:
    """Parse an optional decimal; floats from YAML are read through str()."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise ConfigurationError(key, f"expected a decimal, got {value!r}")
    try:
        result = Decimal(str(value))
    except InvalidOperation as e:
        raise ConfigurationError(key, f"expected a decimal, got {value!r}") from e
    if not result.is_finite():
        raise ConfigurationError(key, f"expected a finite decimal, got {value!r}")
    return result


def parse_bool(value: Any, key: str) -> bool | None:
    if value is None or isinstance(value, bool):
        return value
    raise ConfigurationError(key, f"expected true or false, got {value!r}")


def parse_tolerance_layer(
    data: dict[str, Any] | None,
    scope: ToleranceScope,
    key: str,
) -> TolerancePolicyLayer:
    """Parse one tolerance layer; missing fields inherit (``None``)."""
    data = data or {}
    if not isinstance(data, dict):
        raise ConfigurationError(key, "expected a mapping")
    unknown = set(data) - {"enabled", "max_writeoff_percent", "max_writeoff_absolute"}
    if unknown:
        raise ConfigurationError(key, f"unknown fields: {sorted(unknown)}")
    try:
        return TolerancePolicyLayer(
            scope=scope,
            enabled=parse_bool(data.get("enabled"), f"{key}.enabled"),
            max_writeoff_percent=parse_decimal(
                data.get("max_writeoff_percent"), f"{key}.max_writeoff_percent"
            ),
            max_writeoff_absolute=parse_decimal(
                data.get("max_writeoff_absolute"), f"{key}.max_writeoff_absolute"
            ),
        )
    except ValueError as e:
        raise ConfigurationError(key, str(e)) from e


def parse_tolerance(data: dict[str, Any] | None) -> ToleranceConfig:
    data = data or {}
    system_data = data.get("system_default")
    if system_data is None:
        raise ToleranceSettingsNotFoundError("system")
    system_default = parse_tolerance_layer(
        system_data, ToleranceScope.SYSTEM, "tolerance.system_default"
    )
    if not system_default.is_complete:
        raise ToleranceSettingsNotFoundError("system")

    countries: dict[str, TolerancePolicyLayer] = {}
    for code, layer in (data.get("countries") or {}).items():
        country = str(code).upper()
        if len(country) != 2 or not country.isalpha():
            raise ConfigurationError(
                f"tolerance.countries.{code}", "expected an ISO 3166-1 alpha-2 code"
            )
        countries[country] = parse_tolerance_layer(
            layer, ToleranceScope.COUNTRY, f"tolerance.countries.{country}"
        )
    return ToleranceConfig(system_default=system_default, countries=countries)


def parse_smart_payment(data: dict[str, Any] | None) -> SmartPaymentConfig:
    data = data or {}
    try:
        auto_select_by = AutoSelectOrder(data.get("auto_select_by", "due_date"))
    except ValueError as e:
        raise ConfigurationError("smart_payment.auto_select_by", str(e)) from e
    try:
        policy = ExcessCreditPolicy(
            data.get("excess_credit_policy", "other_open_invoices")
        )
    except ValueError as e:
        raise ConfigurationError("smart_payment.excess_credit_policy", str(e)) from e
    return SmartPaymentConfig(auto_select_by=auto_select_by, excess_credit_policy=policy)


def parse_database(data: dict[str, Any] | None) -> DatabaseConfig:
    data = data or {}
    url = data.get("url", DatabaseConfig.url)
    if not isinstance(url, str) or not url:
        raise ConfigurationError("database.url", "expected a non-empty string")
    echo = parse_bool(data.get("echo", False), "database.echo")
    return DatabaseConfig(url=url, echo=bool(echo))


def parse_logging(data: dict[str, Any] | None) -> LoggingConfig:
    data = data or {}
    level = str(data.get("level", "INFO")).upper()
    if level not in _LOG_LEVELS:
        raise ConfigurationError("logging.level", f"unknown level {level!r}")
    return LoggingConfig(level=level)


def compute_checksum(data: dict[str, Any]) -> str:
    """Deterministic SHA-256 of the canonical JSON form of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def parse_config(
    data: dict[str, Any],
    source: str = "<memory>",
    database_url: str | None = None,
) -> TreasuryConfig:
    """
    Parse a raw configuration document.

    ``database_url`` overrides ``database.url`` when given.
    """
    database = parse_database(data.get("database"))
    if database_url:
        database = DatabaseConfig(url=database_url, echo=database.echo)
    return TreasuryConfig(
        tolerance=parse_tolerance(data.get("tolerance")),
        smart_payment=parse_smart_payment(data.get("smart_payment")),
        database=database,
        logging=parse_logging(data.get("logging")),
        source=source,
        checksum=compute_checksum(data),
    )
