"""
Property-based tests for the allocation engine.

Random payments and invoice sets must always satisfy:
- Conservation: allocated + absorbed surplus + excess == payment amount
- No over-allocation against any invoice balance
- Every write-off within the tolerance cap of the invoice balance
- Underpayment write-offs settle the invoice exactly
- Determinism: the same inputs give the same preview
"""

from datetime import date, timedelta
from decimal import Decimal

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from treasury_engines.allocation import AllocationProposer, OpenInvoice, PaymentAllocationRequest
from treasury_engines.excess import ExcessHandling
from treasury_engines.tolerance import ToleranceScope, ToleranceSettings, WriteoffKind
from treasury_kernel.domain.values import Money

PARTNER = "partner-1"
BASE_DATE = date(2024, 1, 1)

PROPERTY_SETTINGS = settings(max_examples=200, suppress_health_check=[HealthCheck.too_slow])


def cents(n: int) -> Money:
    return Money.of(Decimal(n).scaleb(-2), "EUR")


@st.composite
def open_invoice_sets(draw):
    balances = draw(st.lists(st.integers(min_value=1, max_value=500_000), min_size=0, max_size=8))
    invoices = []
    for i, balance in enumerate(balances):
        offset = draw(st.integers(min_value=0, max_value=90))
        invoices.append(OpenInvoice(
            id=f"inv-{i:03d}",
            partner_id=PARTNER,
            total=cents(balance),
            balance=cents(balance),
            invoice_date=BASE_DATE,
            due_date=BASE_DATE + timedelta(days=offset),
        ))
    return invoices


@st.composite
def tolerance_settings(draw):
    return ToleranceSettings(
        scope=ToleranceScope.COMPANY,
        enabled=draw(st.booleans()),
        max_writeoff_percent=Decimal(draw(st.integers(min_value=0, max_value=500))).scaleb(-4),
        max_writeoff_absolute=Decimal(draw(st.integers(min_value=0, max_value=1000))).scaleb(-2),
    )


payment_amounts = st.integers(min_value=1, max_value=3_000_000).map(cents)


def _preview(amount, tolerance, invoices):
    return AllocationProposer().preview(
        request=PaymentAllocationRequest(payment_id="pay-1", partner_id=PARTNER, amount=amount),
        settings=tolerance,
        open_invoices=invoices,
    )


class TestAllocationProperties:

    @given(amount=payment_amounts, tolerance=tolerance_settings(), invoices=open_invoice_sets())
    @PROPERTY_SETTINGS
    def test_conservation(self, amount, tolerance, invoices):
        preview = _preview(amount, tolerance, invoices)

        total = Money.zero("EUR")
        for line in preview.allocations:
            total = total + line.allocated_amount
            if line.writeoff_kind is WriteoffKind.OVERPAYMENT:
                total = total + line.tolerance_writeoff
        assert total + preview.excess_amount == amount
        assert not preview.excess_amount.is_negative

    @given(amount=payment_amounts, tolerance=tolerance_settings(), invoices=open_invoice_sets())
    @PROPERTY_SETTINGS
    def test_no_over_allocation(self, amount, tolerance, invoices):
        preview = _preview(amount, tolerance, invoices)
        balances = {inv.id: inv.balance for inv in invoices}

        for line in preview.allocations:
            assert line.allocated_amount <= balances[line.invoice_id]
            assert line.allocated_amount.is_positive
            assert line.balance_before == balances[line.invoice_id]
        assert preview.total_allocated <= amount

    @given(amount=payment_amounts, tolerance=tolerance_settings(), invoices=open_invoice_sets())
    @PROPERTY_SETTINGS
    def test_writeoffs_within_cap(self, amount, tolerance, invoices):
        preview = _preview(amount, tolerance, invoices)

        for line in preview.allocations:
            if line.tolerance_writeoff is None:
                assert line.writeoff_kind is None
                continue
            assert tolerance.enabled
            assert line.tolerance_writeoff.is_positive
            assert line.tolerance_writeoff <= tolerance.cap_for(line.balance_before)

    @given(amount=payment_amounts, tolerance=tolerance_settings(), invoices=open_invoice_sets())
    @PROPERTY_SETTINGS
    def test_underpayment_writeoff_settles_invoice(self, amount, tolerance, invoices):
        preview = _preview(amount, tolerance, invoices)

        for line in preview.allocations:
            if line.writeoff_kind is WriteoffKind.UNDERPAYMENT:
                assert line.remaining_balance_after.is_zero
                assert line.allocated_amount + line.tolerance_writeoff == line.balance_before

    @given(amount=payment_amounts, tolerance=tolerance_settings(), invoices=open_invoice_sets())
    @PROPERTY_SETTINGS
    def test_excess_only_after_all_targets_covered(self, amount, tolerance, invoices):
        preview = _preview(amount, tolerance, invoices)

        if preview.excess_amount.is_positive:
            assert len(preview.allocations) == len(preview.target_invoice_ids)
            assert all(line.settles_invoice for line in preview.allocations)
        else:
            assert preview.excess_handling is ExcessHandling.NONE

    @given(amount=payment_amounts, tolerance=tolerance_settings(), invoices=open_invoice_sets())
    @PROPERTY_SETTINGS
    def test_deterministic(self, amount, tolerance, invoices):
        first = _preview(amount, tolerance, invoices)
        second = _preview(amount, tolerance, list(reversed(invoices)))

        assert first == second
