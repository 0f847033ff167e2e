"""Tests for the excess classifier."""

from decimal import Decimal

import pytest

from treasury_engines.excess import ExcessClassifier, ExcessCreditPolicy, ExcessHandling
from treasury_engines.tolerance import ToleranceScope, ToleranceSettings
from treasury_kernel.domain.values import Money

SETTINGS = ToleranceSettings(
    scope=ToleranceScope.SYSTEM,
    enabled=True,
    max_writeoff_percent=Decimal("0.0050"),
    max_writeoff_absolute=Decimal("0.50"),
)
PAYMENT = Money.of("100.00", "EUR")


def eur(amount: str) -> Money:
    return Money.of(amount, "EUR")


class TestExcessClassifier:

    def setup_method(self):
        self.classifier = ExcessClassifier()

    def test_zero_excess_is_none(self):
        assert self.classifier.classify(eur("0"), PAYMENT, SETTINGS, True) is ExcessHandling.NONE

    def test_within_cap_is_tolerance_writeoff(self):
        handling = self.classifier.classify(eur("0.40"), PAYMENT, SETTINGS, False)
        assert handling is ExcessHandling.TOLERANCE_WRITEOFF

    def test_cap_is_inclusive(self):
        handling = self.classifier.classify(eur("0.50"), PAYMENT, SETTINGS, False)
        assert handling is ExcessHandling.TOLERANCE_WRITEOFF

    def test_above_cap_with_other_open_invoices_is_credit(self):
        handling = self.classifier.classify(eur("5.00"), PAYMENT, SETTINGS, True)
        assert handling is ExcessHandling.CREDIT_BALANCE

    def test_above_cap_without_other_open_invoices_is_refund(self):
        handling = self.classifier.classify(eur("5.00"), PAYMENT, SETTINGS, False)
        assert handling is ExcessHandling.REFUND_REQUIRED

    def test_disabled_tolerance_never_writes_off(self):
        disabled = ToleranceSettings(
            scope=ToleranceScope.COMPANY,
            enabled=False,
            max_writeoff_percent=Decimal("0.0050"),
            max_writeoff_absolute=Decimal("0.50"),
        )
        handling = self.classifier.classify(eur("0.01"), PAYMENT, disabled, False)
        assert handling is ExcessHandling.REFUND_REQUIRED

    def test_negative_excess_rejected(self):
        with pytest.raises(ValueError):
            self.classifier.classify(eur("-1.00"), PAYMENT, SETTINGS, False)

    def test_cap_uses_payment_amount(self):
        assert self.classifier.tolerance_cap(eur("20.00"), SETTINGS) == eur("0.10")


class TestExcessCreditPolicy:

    @pytest.mark.parametrize("has_other, expected", [(True, True), (False, False)])
    def test_other_open_invoices(self, has_other, expected):
        assert ExcessCreditPolicy.OTHER_OPEN_INVOICES.grants_credit(has_other) is expected

    def test_always(self):
        classifier = ExcessClassifier(ExcessCreditPolicy.ALWAYS)
        handling = classifier.classify(eur("5.00"), PAYMENT, SETTINGS, False)
        assert handling is ExcessHandling.CREDIT_BALANCE

    def test_never(self):
        classifier = ExcessClassifier(ExcessCreditPolicy.NEVER)
        handling = classifier.classify(eur("5.00"), PAYMENT, SETTINGS, True)
        assert handling is ExcessHandling.REFUND_REQUIRED
