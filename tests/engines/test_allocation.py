"""
Tests for the allocation engine.

Covers:
- Worked payment scenarios (exact match, tolerance surplus, partial, excess)
- Target selection and ordering
- Underpayment tolerance settlement
- Request validation failures
- Manual per-invoice amounts
"""

from datetime import date
from decimal import Decimal

import pytest

from treasury_engines.allocation import (
    AllocationProposer,
    AutoSelectOrder,
    ManualAllocation,
    OpenInvoice,
    PaymentAllocationRequest,
)
from treasury_engines.excess import ExcessHandling
from treasury_engines.tolerance import ToleranceScope, ToleranceSettings, WriteoffKind
from treasury_kernel.domain.values import Money
from treasury_kernel.exceptions import (
    CurrencyMismatchError,
    InvalidAllocationRequestError,
    InvalidAmountError,
    InvoiceNotFoundError,
)

PARTNER = "partner-1"


def eur(amount: str) -> Money:
    return Money.of(amount, "EUR")


def tolerance(percent="0.0050", absolute="0.50", enabled=True) -> ToleranceSettings:
    return ToleranceSettings(
        scope=ToleranceScope.COMPANY,
        enabled=enabled,
        max_writeoff_percent=Decimal(percent),
        max_writeoff_absolute=Decimal(absolute),
    )


def invoice(
    invoice_id: str,
    balance: str,
    due_date: date | None = date(2024, 2, 1),
    invoice_date: date = date(2024, 1, 1),
    currency: str = "EUR",
    partner_id: str = PARTNER,
) -> OpenInvoice:
    return OpenInvoice(
        id=invoice_id,
        partner_id=partner_id,
        total=Money.of(balance, currency),
        balance=Money.of(balance, currency),
        invoice_date=invoice_date,
        due_date=due_date,
    )


def request(amount: str, invoice_ids=None, method=None, currency="EUR") -> PaymentAllocationRequest:
    return PaymentAllocationRequest(
        payment_id="pay-1",
        partner_id=PARTNER,
        amount=Money.of(amount, currency),
        invoice_ids=tuple(invoice_ids) if invoice_ids is not None else None,
        allocation_method=method,
    )


class TestAllocationScenarios:
    """Worked examples of the allocation walk."""

    def setup_method(self):
        self.proposer = AllocationProposer()

    def test_exact_payment(self):
        preview = self.proposer.preview(
            request=request("100.00"),
            settings=tolerance(),
            open_invoices=[invoice("inv-1", "100.00")],
        )

        assert len(preview.allocations) == 1
        line = preview.allocations[0]
        assert line.invoice_id == "inv-1"
        assert line.allocated_amount == eur("100.00")
        assert line.tolerance_writeoff is None
        assert line.remaining_balance_after.is_zero
        assert preview.total_writeoff.is_zero
        assert preview.excess_amount.is_zero
        assert preview.excess_handling is ExcessHandling.NONE

    def test_small_surplus_absorbed_as_writeoff(self):
        preview = self.proposer.preview(
            request=request("100.00"),
            settings=tolerance(percent="0.0100", absolute="1.00"),
            open_invoices=[invoice("inv-1", "99.50")],
        )

        line = preview.allocations[0]
        assert line.allocated_amount == eur("99.50")
        assert line.tolerance_writeoff == eur("0.50")
        assert line.writeoff_kind is WriteoffKind.OVERPAYMENT
        assert line.payment_consumed == eur("100.00")
        assert preview.excess_amount.is_zero
        assert preview.excess_handling is ExcessHandling.NONE
        assert preview.is_balanced

    def test_partial_payment_across_two_invoices(self):
        preview = self.proposer.preview(
            request=request("150.00", invoice_ids=["inv-1", "inv-2"]),
            settings=tolerance(),
            open_invoices=[invoice("inv-1", "100.00"), invoice("inv-2", "100.00")],
        )

        first, second = preview.allocations
        assert first.allocated_amount == eur("100.00")
        assert first.remaining_balance_after.is_zero
        assert second.allocated_amount == eur("50.00")
        assert second.remaining_balance_after == eur("50.00")
        assert second.tolerance_writeoff is None
        assert preview.total_allocated == eur("150.00")
        assert preview.excess_amount.is_zero
        assert preview.excess_handling is ExcessHandling.NONE

    def test_large_excess_without_other_invoices_requires_refund(self):
        preview = self.proposer.preview(
            request=request("105.00"),
            settings=tolerance(percent="0.0200", absolute="2.00"),
            open_invoices=[invoice("inv-1", "100.00")],
        )

        line = preview.allocations[0]
        assert line.allocated_amount == eur("100.00")
        assert line.tolerance_writeoff is None
        assert preview.excess_amount == eur("5.00")
        assert preview.excess_handling is ExcessHandling.REFUND_REQUIRED

    def test_large_excess_with_other_open_invoice_becomes_credit(self):
        preview = self.proposer.preview(
            request=request("105.00", invoice_ids=["inv-1"]),
            settings=tolerance(percent="0.0200", absolute="2.00"),
            open_invoices=[invoice("inv-1", "100.00"), invoice("inv-2", "40.00")],
        )

        assert [line.invoice_id for line in preview.allocations] == ["inv-1"]
        assert preview.excess_amount == eur("5.00")
        assert preview.excess_handling is ExcessHandling.CREDIT_BALANCE

    def test_other_currency_invoice_does_not_grant_credit(self):
        preview = self.proposer.preview(
            request=request("105.00", invoice_ids=["inv-1"]),
            settings=tolerance(percent="0.0200", absolute="2.00"),
            open_invoices=[
                invoice("inv-1", "100.00"),
                invoice("inv-usd", "40.00", currency="USD"),
            ],
        )

        assert preview.excess_handling is ExcessHandling.REFUND_REQUIRED

    def test_small_underpayment_settles_invoice(self):
        preview = self.proposer.preview(
            request=request("99.95"),
            settings=tolerance(),
            open_invoices=[invoice("inv-1", "100.00")],
        )

        line = preview.allocations[0]
        assert line.allocated_amount == eur("99.95")
        assert line.tolerance_writeoff == eur("0.05")
        assert line.writeoff_kind is WriteoffKind.UNDERPAYMENT
        assert line.remaining_balance_after.is_zero
        assert line.balance_before == eur("100.00")
        assert line.settles_invoice
        assert preview.total_allocated == eur("99.95")
        assert preview.total_writeoff == eur("0.05")
        assert preview.excess_amount.is_zero

    def test_underpayment_beyond_tolerance_leaves_balance(self):
        preview = self.proposer.preview(
            request=request("99.00"),
            settings=tolerance(),
            open_invoices=[invoice("inv-1", "100.00")],
        )

        line = preview.allocations[0]
        assert line.tolerance_writeoff is None
        assert line.remaining_balance_after == eur("1.00")
        assert not line.settles_invoice

    def test_disabled_tolerance_never_writes_off(self):
        preview = self.proposer.preview(
            request=request("99.95"),
            settings=tolerance(enabled=False),
            open_invoices=[invoice("inv-1", "100.00")],
        )

        assert preview.allocations[0].remaining_balance_after == eur("0.05")
        assert preview.total_writeoff.is_zero

    def test_surplus_above_both_caps_requires_refund(self):
        preview = self.proposer.preview(
            request=request("100.60"),
            settings=tolerance(),
            open_invoices=[invoice("inv-1", "100.00")],
        )

        assert preview.excess_amount == eur("0.60")
        assert preview.excess_handling is ExcessHandling.REFUND_REQUIRED

    def test_surplus_within_payment_cap_only_is_excess_writeoff(self):
        # invoice cap 10.00 * 0.005 = 0.0500, payment cap 10.0501 * 0.005 = 0.0502
        preview = self.proposer.preview(
            request=request("10.0501"),
            settings=tolerance(),
            open_invoices=[invoice("inv-1", "10.00")],
        )

        assert preview.allocations[0].tolerance_writeoff is None
        assert preview.excess_amount == eur("0.0501")
        assert preview.excess_handling is ExcessHandling.TOLERANCE_WRITEOFF

    def test_payment_exhausted_before_last_target(self):
        preview = self.proposer.preview(
            request=request("80.00"),
            settings=tolerance(),
            open_invoices=[
                invoice("inv-1", "50.00", due_date=date(2024, 1, 10)),
                invoice("inv-2", "30.00", due_date=date(2024, 1, 20)),
                invoice("inv-3", "70.00", due_date=date(2024, 1, 30)),
            ],
        )

        assert [line.invoice_id for line in preview.allocations] == ["inv-1", "inv-2"]
        assert preview.target_invoice_ids == ("inv-1", "inv-2", "inv-3")
        assert preview.excess_amount.is_zero

    def test_no_open_invoices_everything_is_excess(self):
        preview = self.proposer.preview(
            request=request("25.00"),
            settings=tolerance(),
            open_invoices=[],
        )

        assert preview.allocations == ()
        assert preview.excess_amount == eur("25.00")
        assert preview.excess_handling is ExcessHandling.REFUND_REQUIRED

    def test_preview_is_idempotent(self):
        invoices = [invoice("inv-1", "60.00"), invoice("inv-2", "60.00", due_date=date(2024, 3, 1))]
        first = self.proposer.preview(request=request("100.00"), settings=tolerance(), open_invoices=invoices)
        second = self.proposer.preview(request=request("100.00"), settings=tolerance(), open_invoices=invoices)

        assert first == second

    def test_preview_logs_lifecycle(self, captured_logs):
        self.proposer.preview(
            request=request("100.00"),
            settings=tolerance(),
            open_invoices=[invoice("inv-1", "100.00")],
        )

        messages = [r["message"] for r in captured_logs()]
        assert "allocation_preview_started" in messages
        assert "allocation_preview_completed" in messages
        assert "TREASURY_ENGINE_TRACE" in messages


class TestTargetSelection:

    def setup_method(self):
        self.proposer = AllocationProposer()

    def test_explicit_ids_keep_literal_order(self):
        invoices = [
            invoice("inv-a", "10.00", due_date=date(2024, 1, 1)),
            invoice("inv-b", "10.00", due_date=date(2024, 2, 1)),
        ]
        targets = self.proposer.select_targets(request("20.00", invoice_ids=["inv-b", "inv-a"]), invoices)

        assert [inv.id for inv in targets] == ["inv-b", "inv-a"]

    def test_auto_select_oldest_due_date_first(self):
        invoices = [
            invoice("inv-late", "10.00", due_date=date(2024, 3, 1)),
            invoice("inv-early", "10.00", due_date=date(2024, 1, 15)),
        ]
        targets = self.proposer.select_targets(request("20.00"), invoices)

        assert [inv.id for inv in targets] == ["inv-early", "inv-late"]

    def test_ties_broken_by_invoice_id(self):
        invoices = [invoice("inv-2", "10.00"), invoice("inv-1", "10.00")]
        targets = self.proposer.select_targets(request("20.00"), invoices)

        assert [inv.id for inv in targets] == ["inv-1", "inv-2"]

    def test_missing_due_date_falls_back_to_invoice_date(self):
        invoices = [
            invoice("inv-due", "10.00", due_date=date(2024, 1, 20)),
            invoice("inv-nodue", "10.00", due_date=None, invoice_date=date(2024, 1, 5)),
        ]
        targets = self.proposer.select_targets(request("20.00"), invoices)

        assert [inv.id for inv in targets] == ["inv-nodue", "inv-due"]

    def test_invoice_date_method(self):
        invoices = [
            invoice("inv-a", "10.00", due_date=date(2024, 1, 10), invoice_date=date(2023, 12, 20)),
            invoice("inv-b", "10.00", due_date=date(2024, 1, 5), invoice_date=date(2023, 12, 28)),
        ]
        by_due = self.proposer.select_targets(request("20.00"), invoices)
        by_invoice = self.proposer.select_targets(
            request("20.00", method=AutoSelectOrder.INVOICE_DATE), invoices,
        )

        assert [inv.id for inv in by_due] == ["inv-b", "inv-a"]
        assert [inv.id for inv in by_invoice] == ["inv-a", "inv-b"]

    def test_default_order_configurable(self):
        proposer = AllocationProposer(default_order=AutoSelectOrder.INVOICE_DATE)
        invoices = [
            invoice("inv-a", "10.00", due_date=date(2024, 1, 10), invoice_date=date(2023, 12, 20)),
            invoice("inv-b", "10.00", due_date=date(2024, 1, 5), invoice_date=date(2023, 12, 28)),
        ]

        assert [inv.id for inv in proposer.select_targets(request("20.00"), invoices)] == ["inv-a", "inv-b"]

    def test_auto_select_skips_other_currencies(self):
        invoices = [invoice("inv-usd", "10.00", currency="USD"), invoice("inv-eur", "10.00")]
        targets = self.proposer.select_targets(request("20.00"), invoices)

        assert [inv.id for inv in targets] == ["inv-eur"]

    def test_other_partners_and_settled_invoices_ignored(self):
        invoices = [
            invoice("inv-other", "10.00", partner_id="partner-2"),
            invoice("inv-paid", "0.00"),
            invoice("inv-open", "10.00"),
        ]
        targets = self.proposer.select_targets(request("20.00"), invoices)

        assert [inv.id for inv in targets] == ["inv-open"]


class TestRequestValidation:

    def setup_method(self):
        self.proposer = AllocationProposer()
        self.invoices = [invoice("inv-1", "100.00")]

    def _preview(self, req):
        return self.proposer.preview(request=req, settings=tolerance(), open_invoices=self.invoices)

    def test_zero_amount_rejected(self):
        with pytest.raises(InvalidAmountError):
            self._preview(request("0.00"))

    def test_unknown_invoice_id(self):
        with pytest.raises(InvoiceNotFoundError) as exc_info:
            self._preview(request("10.00", invoice_ids=["inv-404"]))
        assert exc_info.value.entity_id == "inv-404"

    def test_invoice_of_other_partner_is_not_found(self):
        self.invoices.append(invoice("inv-foreign", "10.00", partner_id="partner-2"))
        with pytest.raises(InvoiceNotFoundError):
            self._preview(request("10.00", invoice_ids=["inv-foreign"]))

    def test_currency_mismatch_on_explicit_target(self):
        self.invoices.append(invoice("inv-usd", "10.00", currency="USD"))
        with pytest.raises(CurrencyMismatchError):
            self._preview(request("10.00", invoice_ids=["inv-usd"]))

    def test_duplicate_ids_rejected(self):
        with pytest.raises(InvalidAllocationRequestError):
            self._preview(request("10.00", invoice_ids=["inv-1", "inv-1"]))

    def test_empty_ids_rejected(self):
        with pytest.raises(InvalidAllocationRequestError):
            self._preview(request("10.00", invoice_ids=[]))


def manual_request(amount: str, *lines, invoice_ids=None) -> PaymentAllocationRequest:
    return PaymentAllocationRequest(
        payment_id="pay-1",
        partner_id=PARTNER,
        amount=eur(amount),
        invoice_ids=invoice_ids,
        manual_allocations=tuple(ManualAllocation(i, eur(a)) for i, a in lines),
    )


class TestManualAllocation:
    """Caller-chosen amounts per invoice."""

    def setup_method(self):
        self.proposer = AllocationProposer()
        self.invoices = [
            invoice("inv-1", "100.00", due_date=date(2024, 1, 15)),
            invoice("inv-2", "80.00", due_date=date(2024, 2, 15)),
        ]

    def _preview(self, req):
        return self.proposer.preview(request=req, settings=tolerance(), open_invoices=self.invoices)

    def test_amounts_applied_in_given_order(self):
        preview = self._preview(manual_request("100.00", ("inv-2", "30.00"), ("inv-1", "50.00")))

        assert [line.invoice_id for line in preview.allocations] == ["inv-2", "inv-1"]
        assert [line.allocated_amount for line in preview.allocations] == [eur("30"), eur("50")]
        assert [line.remaining_balance_after for line in preview.allocations] == [
            eur("50"), eur("50"),
        ]
        assert preview.total_allocated == eur("80.00")
        assert preview.excess_amount == eur("20.00")
        assert preview.excess_handling is ExcessHandling.REFUND_REQUIRED
        assert preview.is_balanced

    def test_residual_with_other_open_invoice_becomes_credit(self):
        preview = self._preview(manual_request("100.00", ("inv-1", "60.00")))

        assert preview.excess_amount == eur("40.00")
        assert preview.excess_handling is ExcessHandling.CREDIT_BALANCE

    def test_no_tolerance_writeoff_on_manual_lines(self):
        preview = self._preview(manual_request("99.60", ("inv-1", "99.60")))

        line = preview.allocations[0]
        assert line.tolerance_writeoff is None
        assert line.writeoff_kind is None
        assert line.remaining_balance_after == eur("0.40")
        assert preview.excess_amount == eur("0.00")

    def test_amount_above_invoice_balance_rejected(self):
        with pytest.raises(InvalidAllocationRequestError, match="exceeds the balance"):
            self._preview(manual_request("200.00", ("inv-2", "80.01")))

    def test_amounts_above_payment_rejected(self):
        with pytest.raises(InvalidAllocationRequestError, match="exceed the payment amount"):
            self._preview(manual_request("100.00", ("inv-1", "60.00"), ("inv-2", "40.01")))

    def test_duplicate_invoice_rejected(self):
        with pytest.raises(InvalidAllocationRequestError, match="duplicates"):
            self._preview(manual_request("100.00", ("inv-1", "10.00"), ("inv-1", "20.00")))

    def test_empty_list_rejected(self):
        with pytest.raises(InvalidAllocationRequestError):
            self._preview(manual_request("100.00"))

    def test_cannot_combine_with_invoice_ids(self):
        with pytest.raises(InvalidAllocationRequestError, match="mutually exclusive"):
            self._preview(manual_request("100.00", ("inv-1", "10.00"), invoice_ids=("inv-1",)))

    def test_zero_line_amount_rejected(self):
        with pytest.raises(InvalidAmountError):
            self._preview(manual_request("100.00", ("inv-1", "0.00")))

    def test_unknown_invoice(self):
        with pytest.raises(InvoiceNotFoundError):
            self._preview(manual_request("100.00", ("inv-404", "10.00")))

    def test_line_in_other_currency_rejected(self):
        req = PaymentAllocationRequest(
            payment_id="pay-1",
            partner_id=PARTNER,
            amount=eur("100.00"),
            manual_allocations=(ManualAllocation("inv-1", Money.of("10.00", "USD")),),
        )
        with pytest.raises(CurrencyMismatchError):
            self._preview(req)
