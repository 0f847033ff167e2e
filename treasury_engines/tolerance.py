"""
Module: treasury_engines.tolerance
Responsibility:
    Resolve the effective payment tolerance for a company from its
    precedence chain (company -> country -> system default) and decide
    whether a payment difference qualifies for an automatic write-off.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import treasury_kernel domain values and exceptions.

Invariants enforced:
    - Fields are resolved independently: the first non-null value per field
      wins, walking company, country, then system default.
    - Caps are ``min(max_writeoff_absolute, base * max_writeoff_percent)``
      with the product truncated toward zero, so a qualifying difference
      never exceeds the exact percentage bound.
    - A disabled tolerance has a zero cap; nothing qualifies.

Failure modes:
    - ToleranceSettingsNotFoundError when the system default is missing or
      incomplete (a deployment error, detected when config is loaded).
    - ValueError on a negative cap or a percentage outside [0, 1].

Usage:
    resolver = ToleranceResolver()
    settings = resolver.resolve(
        system_default=TolerancePolicyLayer.system(True, Decimal("0.005"), Decimal("0.50")),
        country=TolerancePolicyLayer(scope=ToleranceScope.COUNTRY, max_writeoff_absolute=Decimal("0.10")),
    )
    check = check_tolerance(
        invoice_amount=Money.of("100.00", "EUR"),
        payment_amount=Money.of("99.95", "EUR"),
        settings=settings,
    )
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from treasury_engines.tracer import traced_engine
from treasury_kernel.domain.values import Money, min_money
from treasury_kernel.exceptions import ToleranceSettingsNotFoundError
from treasury_kernel.logging_config import get_logger

logger = get_logger("engines.tolerance")


class ToleranceScope(str, Enum):
    """Level of the precedence chain that supplied a setting."""

    COMPANY = "company"
    COUNTRY = "country"
    SYSTEM = "system"


class WriteoffKind(str, Enum):
    """Direction of a tolerance difference."""

    UNDERPAYMENT = "underpayment"  # invoice balance forgiven
    OVERPAYMENT = "overpayment"  # payment surplus absorbed


@dataclass(frozen=True)
class TolerancePolicyLayer:
    """
    One level of the tolerance precedence chain.

    ``None`` means "inherit from the next, less specific layer".
    """

    scope: ToleranceScope
    enabled: bool | None = None
    max_writeoff_percent: Decimal | None = None
    max_writeoff_absolute: Decimal | None = None

    def __post_init__(self) -> None:
        _validate_caps(self.max_writeoff_percent, self.max_writeoff_absolute)

    @classmethod
    def system(
        cls,
        enabled: bool,
        max_writeoff_percent: Decimal,
        max_writeoff_absolute: Decimal,
    ) -> TolerancePolicyLayer:
        return cls(
            scope=ToleranceScope.SYSTEM,
            enabled=enabled,
            max_writeoff_percent=max_writeoff_percent,
            max_writeoff_absolute=max_writeoff_absolute,
        )

    @property
    def is_empty(self) -> bool:
        return (
            self.enabled is None
            and self.max_writeoff_percent is None
            and self.max_writeoff_absolute is None
        )

    @property
    def is_complete(self) -> bool:
        return (
            self.enabled is not None
            and self.max_writeoff_percent is not None
            and self.max_writeoff_absolute is not None
        )


@dataclass(frozen=True)
class ToleranceSettings:
    """
    Effective tolerance for one company.

    Contract:
        Immutable per request.  ``max_writeoff_percent`` is a ratio
        (``Decimal("0.0050")`` is 0.5%); ``max_writeoff_absolute`` is an
        amount in whatever currency the payment uses.
    Guarantees:
        - Both caps are non-negative and the ratio is at most 1.
    """

    scope: ToleranceScope
    enabled: bool
    max_writeoff_percent: Decimal
    max_writeoff_absolute: Decimal

    def __post_init__(self) -> None:
        _validate_caps(self.max_writeoff_percent, self.max_writeoff_absolute)

    def cap_for(self, base: Money) -> Money:
        """Largest write-off allowed against ``base`` (zero when disabled)."""
        if not self.enabled:
            return Money.zero(base.currency)
        return min_money(
            Money.of(self.max_writeoff_absolute, base.currency),
            base.scaled_down(self.max_writeoff_percent),
        )


@dataclass(frozen=True)
class ToleranceCheck:
    """
    Result of comparing a payment against an invoice amount.

    ``difference`` is always non-negative; ``kind`` gives its direction and
    is ``None`` when the amounts are equal.
    """

    qualifies: bool
    difference: Money
    kind: WriteoffKind | None
    reason: str | None = None


def _validate_caps(percent: Decimal | None, absolute: Decimal | None) -> None:
    if percent is not None and not (Decimal("0") <= percent <= Decimal("1")):
        raise ValueError(f"max_writeoff_percent must be within [0, 1], got {percent}")
    if absolute is not None and absolute < 0:
        raise ValueError(f"max_writeoff_absolute cannot be negative, got {absolute}")


class ToleranceResolver:
    """
    Resolve effective tolerance settings.

    Contract:
        Pure function of the three layers.  No I/O.
    """

    def resolve(
        self,
        system_default: TolerancePolicyLayer | None,
        country: TolerancePolicyLayer | None = None,
        company: TolerancePolicyLayer | None = None,
    ) -> ToleranceSettings:
        """
        Merge the precedence chain into effective settings.

        Raises:
            ToleranceSettingsNotFoundError: if the system default is absent
                or does not define every field.
        """
        if system_default is None or not system_default.is_complete:
            logger.error("tolerance_system_default_missing")
            raise ToleranceSettingsNotFoundError("system")

        chain = [layer for layer in (company, country) if layer is not None]
        chain.append(system_default)

        def first(field_name: str):
            for layer in chain:
                value = getattr(layer, field_name)
                if value is not None:
                    return value
            return None  # unreachable: system default is complete

        scope = ToleranceScope.SYSTEM
        for layer in chain:
            if not layer.is_empty:
                scope = layer.scope
                break

        settings = ToleranceSettings(
            scope=scope,
            enabled=first("enabled"),
            max_writeoff_percent=first("max_writeoff_percent"),
            max_writeoff_absolute=first("max_writeoff_absolute"),
        )
        logger.debug("tolerance_resolved", extra={
            "scope": settings.scope.value,
            "enabled": settings.enabled,
            "max_writeoff_percent": str(settings.max_writeoff_percent),
            "max_writeoff_absolute": str(settings.max_writeoff_absolute),
        })
        return settings


@traced_engine("tolerance_check", "1.0", fingerprint_fields=("invoice_amount", "payment_amount"))
def check_tolerance(
    *,
    invoice_amount: Money,
    payment_amount: Money,
    settings: ToleranceSettings,
) -> ToleranceCheck:
    """
    Decide whether the difference between payment and invoice can be written off.

    A difference qualifies when the tolerance is enabled, the difference is
    non-zero, and it is within both the percentage threshold (relative to
    ``invoice_amount``) and the absolute threshold.

    Raises:
        CurrencyMismatchError: if the two amounts use different currencies.
    """
    signed = payment_amount - invoice_amount
    difference = abs(signed)
    if signed.is_zero:
        kind = None
    elif signed.is_negative:
        kind = WriteoffKind.UNDERPAYMENT
    else:
        kind = WriteoffKind.OVERPAYMENT

    if not settings.enabled:
        return ToleranceCheck(
            qualifies=False,
            difference=Money.zero(invoice_amount.currency),
            kind=None,
            reason="Tolerance disabled",
        )

    percentage_threshold = invoice_amount.scaled_down(settings.max_writeoff_percent)
    absolute_threshold = Money.of(settings.max_writeoff_absolute, invoice_amount.currency)
    within_percentage = difference <= percentage_threshold
    within_absolute = difference <= absolute_threshold

    if within_percentage and within_absolute and not difference.is_zero:
        return ToleranceCheck(qualifies=True, difference=difference, kind=kind)

    reason = None
    if not within_percentage:
        reason = f"Exceeds percentage threshold ({settings.max_writeoff_percent})"
    elif not within_absolute:
        reason = f"Exceeds max amount threshold ({settings.max_writeoff_absolute})"

    return ToleranceCheck(qualifies=False, difference=difference, kind=kind, reason=reason)
