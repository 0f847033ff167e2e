"""
Module: treasury_engines.excess
Responsibility:
    Classify what happens to payment money left over after allocation:
    nothing, a tolerance write-off, a reusable partner credit, or a refund.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - ``excess == 0`` always classifies as NONE.
    - TOLERANCE_WRITEOFF only when ``0 < excess <= cap`` where
      ``cap = min(max_writeoff_absolute, payment_amount * max_writeoff_percent)``
      (zero when the tolerance is disabled).
    - Above the cap the ExcessCreditPolicy decides between CREDIT_BALANCE and
      REFUND_REQUIRED.  The engine only flags a refund; it never executes one.

Failure modes:
    - ValueError on a negative excess.
"""

from __future__ import annotations

from enum import Enum

from treasury_engines.tolerance import ToleranceSettings
from treasury_kernel.domain.values import Money
from treasury_kernel.logging_config import get_logger

logger = get_logger("engines.excess")


class ExcessHandling(str, Enum):
    """Disposition of unallocated payment money."""

    NONE = "none"
    TOLERANCE_WRITEOFF = "tolerance_writeoff"
    REFUND_REQUIRED = "refund_required"
    CREDIT_BALANCE = "credit_balance"


class ExcessCreditPolicy(str, Enum):
    """When an excess above the tolerance cap becomes a partner credit."""

    OTHER_OPEN_INVOICES = "other_open_invoices"  # partner still owes on other invoices
    ALWAYS = "always"
    NEVER = "never"

    def grants_credit(self, has_other_open_invoices: bool) -> bool:
        if self is ExcessCreditPolicy.ALWAYS:
            return True
        if self is ExcessCreditPolicy.NEVER:
            return False
        return has_other_open_invoices


class ExcessClassifier:
    """
    Classify a preview's excess amount.

    Contract:
        Advisory only.  The classification is carried in the preview and
        acted upon by the applier; nothing is mutated here.
    """

    def __init__(self, policy: ExcessCreditPolicy = ExcessCreditPolicy.OTHER_OPEN_INVOICES):
        self._policy = policy

    @property
    def policy(self) -> ExcessCreditPolicy:
        return self._policy

    def tolerance_cap(self, payment_amount: Money, settings: ToleranceSettings) -> Money:
        """Largest excess that may be forgiven for this payment."""
        return settings.cap_for(payment_amount)

    def classify(
        self,
        excess_amount: Money,
        payment_amount: Money,
        settings: ToleranceSettings,
        has_other_open_invoices: bool,
    ) -> ExcessHandling:
        if excess_amount.is_negative:
            raise ValueError(f"excess_amount cannot be negative, got {excess_amount}")

        if excess_amount.is_zero:
            return ExcessHandling.NONE

        cap = self.tolerance_cap(payment_amount, settings)
        if excess_amount <= cap:
            handling = ExcessHandling.TOLERANCE_WRITEOFF
        elif self._policy.grants_credit(has_other_open_invoices):
            handling = ExcessHandling.CREDIT_BALANCE
        else:
            handling = ExcessHandling.REFUND_REQUIRED

        logger.info("excess_classified", extra={
            "excess_amount": excess_amount.to_str(),
            "cap": cap.to_str(),
            "policy": self._policy.value,
            "has_other_open_invoices": has_other_open_invoices,
            "excess_handling": handling.value,
        })
        return handling
