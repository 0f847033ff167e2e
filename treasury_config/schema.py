"""
Configuration Schema (``treasury_config.schema``).

Responsibility
--------------
Frozen dataclasses describing the treasury configuration after it has been
parsed from YAML.  Nothing here touches the filesystem.

Architecture position
---------------------
**Config layer**.  Imports engine enums and policy layers so that parsed
values are immediately usable by the smart payment service.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from treasury_engines.allocation import AutoSelectOrder
from treasury_engines.excess import ExcessCreditPolicy
from treasury_engines.tolerance import TolerancePolicyLayer


@dataclass(frozen=True)
class ToleranceConfig:
    """System default plus optional per-country seed layers."""

    system_default: TolerancePolicyLayer
    countries: dict[str, TolerancePolicyLayer] = field(default_factory=dict)


@dataclass(frozen=True)
class SmartPaymentConfig:
    auto_select_by: AutoSelectOrder = AutoSelectOrder.DUE_DATE
    excess_credit_policy: ExcessCreditPolicy = ExcessCreditPolicy.OTHER_OPEN_INVOICES


@dataclass(frozen=True)
class DatabaseConfig:
    url: str = "sqlite+pysqlite:///./treasury.db"
    echo: bool = False


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class TreasuryConfig:
    """
    Complete, validated treasury configuration.

    ``checksum`` is the SHA-256 of the canonical JSON form of the source
    document and identifies the configuration in logs.
    """

    tolerance: ToleranceConfig
    smart_payment: SmartPaymentConfig
    database: DatabaseConfig
    logging: LoggingConfig
    source: str = "<memory>"
    checksum: str = ""
