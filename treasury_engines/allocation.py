"""
Module: treasury_engines.allocation
Responsibility:
    Propose how a customer payment is distributed across a partner's open
    invoices, absorbing small residual differences as tolerance write-offs,
    and compose the proposal with the excess classification into a preview.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import treasury_kernel domain values/exceptions and sibling
    engine modules.

Invariants enforced:
    - No over-allocation: no line allocates more than its invoice balance.
    - Conservation (exact, fixed-scale decimal):
      ``sum(allocated) + sum(overpayment writeoff) + excess == amount``.
      Underpayment write-offs forgive invoice balance and are not payment
      money; on those lines ``allocated + writeoff == balance``.
    - Tolerance bound: every write-off is within ``settings.cap_for(balance)``.
    - Determinism: identical inputs give identical previews (auto-selection
      sorts on (date, invoice id)).

Failure modes:
    - InvalidAmountError when the payment amount is not positive.
    - CurrencyMismatchError when a targeted invoice uses another currency.
    - InvoiceNotFoundError when an explicit invoice id is not open for the
      partner.
    - InvalidAllocationRequestError on an empty or duplicated invoice_ids or
      manual_allocations, on a manual amount above the invoice balance, and
      when manual amounts add up to more than the payment.

Usage:
    proposer = AllocationProposer(ExcessClassifier())
    preview = proposer.preview(
        request=PaymentAllocationRequest(
            payment_id="pay-1", partner_id="p-1", amount=Money.of("150.00", "EUR"),
        ),
        settings=settings,
        open_invoices=invoices,
    )
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum

from treasury_engines.excess import ExcessClassifier, ExcessHandling
from treasury_engines.tolerance import (
    ToleranceSettings,
    WriteoffKind,
    check_tolerance,
)
from treasury_engines.tracer import traced_engine
from treasury_kernel.domain.values import Money, min_money
from treasury_kernel.exceptions import (
    CurrencyMismatchError,
    InvalidAllocationRequestError,
    InvalidAmountError,
    InvoiceNotFoundError,
)
from treasury_kernel.logging_config import get_logger

logger = get_logger("engines.allocation")


class AutoSelectOrder(str, Enum):
    """Ordering used when the request does not name its invoices."""

    DUE_DATE = "due_date"  # oldest due date first
    INVOICE_DATE = "invoice_date"  # oldest invoice first


@dataclass(frozen=True)
class OpenInvoice:
    """
    Read-only snapshot of an open invoice for one allocation operation.

    Guarantees:
        - ``balance`` and ``total`` share one currency.
    """

    id: str
    partner_id: str
    total: Money
    balance: Money
    invoice_date: date
    due_date: date | None = None
    document_number: str | None = None

    def __post_init__(self) -> None:
        if self.total.currency != self.balance.currency:
            raise CurrencyMismatchError(self.total.currency.code, self.balance.currency.code)

    @property
    def currency(self) -> str:
        return self.balance.currency.code

    @property
    def effective_due_date(self) -> date:
        return self.due_date or self.invoice_date


@dataclass(frozen=True)
class ManualAllocation:
    """A caller-chosen amount for one invoice."""

    invoice_id: str
    amount: Money


@dataclass(frozen=True)
class PaymentAllocationRequest:
    """
    What to allocate, and optionally where.

    ``invoice_ids`` given: allocate in that literal order.
    ``manual_allocations`` given: allocate exactly those amounts, in order,
    without tolerance write-offs; the rest of the payment is excess.
    ``invoice_ids`` None: auto-select the partner's open invoices.
    """

    payment_id: str
    partner_id: str
    amount: Money
    invoice_ids: tuple[str, ...] | None = None
    allocation_method: AutoSelectOrder | None = None
    manual_allocations: tuple[ManualAllocation, ...] | None = None

    @property
    def currency(self) -> str:
        return self.amount.currency.code


@dataclass(frozen=True)
class AllocationLineProposal:
    """Proposed allocation to a single invoice."""

    invoice_id: str
    allocated_amount: Money
    remaining_balance_after: Money
    tolerance_writeoff: Money | None = None
    writeoff_kind: WriteoffKind | None = None

    @property
    def writeoff_or_zero(self) -> Money:
        return self.tolerance_writeoff or Money.zero(self.allocated_amount.currency)

    @property
    def balance_before(self) -> Money:
        """Invoice balance the line was computed against."""
        balance = self.allocated_amount + self.remaining_balance_after
        if self.writeoff_kind is WriteoffKind.UNDERPAYMENT:
            balance = balance + self.writeoff_or_zero
        return balance

    @property
    def payment_consumed(self) -> Money:
        """Payment money this line uses (allocation plus absorbed surplus)."""
        if self.writeoff_kind is WriteoffKind.OVERPAYMENT:
            return self.allocated_amount + self.writeoff_or_zero
        return self.allocated_amount

    @property
    def settles_invoice(self) -> bool:
        return self.remaining_balance_after.is_zero


@dataclass(frozen=True)
class PaymentAllocationPreview:
    """
    Complete allocation preview.

    Contract:
        Pure value; safe to compute repeatedly and discard.
    Guarantees:
        - ``payment_amount == sum(line.payment_consumed) + excess_amount``.
    """

    payment_id: str
    partner_id: str
    payment_amount: Money
    allocations: tuple[AllocationLineProposal, ...]
    total_allocated: Money
    total_writeoff: Money
    excess_amount: Money
    excess_handling: ExcessHandling
    target_invoice_ids: tuple[str, ...] = field(default=())

    @property
    def currency(self) -> str:
        return self.payment_amount.currency.code

    @property
    def is_balanced(self) -> bool:
        consumed = Money.zero(self.payment_amount.currency)
        for line in self.allocations:
            consumed = consumed + line.payment_consumed
        return consumed + self.excess_amount == self.payment_amount


class AllocationProposer:
    """
    Propose allocations for a payment.

    Contract:
        Pure functions over the request, the resolved tolerance settings and
        an invoice snapshot.  No I/O, no clock.
    Non-goals:
        - Does not persist anything; see the smart payment service.
    """

    def __init__(
        self,
        classifier: ExcessClassifier | None = None,
        default_order: AutoSelectOrder = AutoSelectOrder.DUE_DATE,
    ):
        self._classifier = classifier or ExcessClassifier()
        self._default_order = default_order

    def select_targets(
        self,
        request: PaymentAllocationRequest,
        open_invoices: Sequence[OpenInvoice],
    ) -> list[OpenInvoice]:
        """
        Determine the ordered invoices the payment is applied to.

        Only invoices of the request's partner with a positive balance are
        considered open.
        """
        partner_open = [
            inv for inv in open_invoices
            if inv.partner_id == request.partner_id and inv.balance.is_positive
        ]

        if request.manual_allocations is not None:
            if request.invoice_ids is not None:
                raise InvalidAllocationRequestError(
                    "invoice_ids and manual_allocations are mutually exclusive"
                )
            ids = tuple(m.invoice_id for m in request.manual_allocations)
            return self._explicit_targets(request, ids, partner_open, "manual_allocations")

        if request.invoice_ids is not None:
            return self._explicit_targets(
                request, request.invoice_ids, partner_open, "invoice_ids"
            )

        order = request.allocation_method or self._default_order
        candidates = [inv for inv in partner_open if inv.currency == request.currency]
        if order is AutoSelectOrder.INVOICE_DATE:
            return sorted(candidates, key=lambda inv: (inv.invoice_date, inv.id))
        return sorted(candidates, key=lambda inv: (inv.effective_due_date, inv.id))

    @staticmethod
    def _explicit_targets(
        request: PaymentAllocationRequest,
        invoice_ids: tuple[str, ...],
        partner_open: Sequence[OpenInvoice],
        field_name: str,
    ) -> list[OpenInvoice]:
        if not invoice_ids:
            raise InvalidAllocationRequestError(f"{field_name} must not be empty")
        if len(set(invoice_ids)) != len(invoice_ids):
            raise InvalidAllocationRequestError(f"{field_name} contains duplicates")
        by_id = {inv.id: inv for inv in partner_open}
        targets = []
        for invoice_id in invoice_ids:
            invoice = by_id.get(invoice_id)
            if invoice is None:
                raise InvoiceNotFoundError(invoice_id)
            if invoice.currency != request.currency:
                raise CurrencyMismatchError(request.currency, invoice.currency)
            targets.append(invoice)
        return targets

    @traced_engine("allocation", "1.0", fingerprint_fields=("request",))
    def propose(
        self,
        *,
        request: PaymentAllocationRequest,
        settings: ToleranceSettings,
        targets: Sequence[OpenInvoice],
    ) -> tuple[tuple[AllocationLineProposal, ...], Money]:
        """
        Walk the ordered targets and allocate the payment.

        Returns:
            (lines, excess_amount)
        """
        amount = request.amount
        if not amount.is_positive:
            raise InvalidAmountError(amount.to_str(), "payment amount must be positive")

        if request.manual_allocations is not None:
            return self._propose_manual(request, targets)

        remaining = amount
        lines: list[AllocationLineProposal] = []

        for invoice in targets:
            if remaining.is_zero:
                break
            if invoice.currency != request.currency:
                raise CurrencyMismatchError(request.currency, invoice.currency)

            allocated = min_money(remaining, invoice.balance)
            remaining = remaining - allocated
            residual = invoice.balance - allocated

            line = AllocationLineProposal(
                invoice_id=invoice.id,
                allocated_amount=allocated,
                remaining_balance_after=residual,
            )
            if residual.is_positive:
                # Small shortfall: forgive the residual and settle the invoice
                check = check_tolerance(
                    invoice_amount=invoice.balance,
                    payment_amount=allocated,
                    settings=settings,
                )
                if check.qualifies:
                    line = replace(
                        line,
                        remaining_balance_after=Money.zero(amount.currency),
                        tolerance_writeoff=check.difference,
                        writeoff_kind=WriteoffKind.UNDERPAYMENT,
                    )
            lines.append(line)

        if remaining.is_positive and lines:
            # Every target is fully covered; a small surplus is absorbed by
            # the last invoice instead of becoming excess.
            last_invoice = targets[len(lines) - 1]
            check = check_tolerance(
                invoice_amount=last_invoice.balance,
                payment_amount=last_invoice.balance + remaining,
                settings=settings,
            )
            if check.qualifies:
                lines[-1] = replace(
                    lines[-1],
                    tolerance_writeoff=check.difference,
                    writeoff_kind=WriteoffKind.OVERPAYMENT,
                )
                remaining = Money.zero(amount.currency)

        return tuple(lines), remaining

    @staticmethod
    def _propose_manual(
        request: PaymentAllocationRequest,
        targets: Sequence[OpenInvoice],
    ) -> tuple[tuple[AllocationLineProposal, ...], Money]:
        """Allocate the caller's amounts as given; no write-offs."""
        remaining = request.amount
        lines: list[AllocationLineProposal] = []
        for manual, invoice in zip(request.manual_allocations, targets):
            amount = manual.amount
            if amount.currency != request.amount.currency:
                raise CurrencyMismatchError(request.currency, amount.currency.code)
            if not amount.is_positive:
                raise InvalidAmountError(
                    amount.to_str(), f"amount for invoice {invoice.id} must be positive"
                )
            if amount > invoice.balance:
                raise InvalidAllocationRequestError(
                    f"amount {amount.to_str()} exceeds the balance "
                    f"{invoice.balance.to_str()} of invoice {invoice.id}"
                )
            if amount > remaining:
                raise InvalidAllocationRequestError(
                    f"manual allocations exceed the payment amount {request.amount.to_str()}"
                )
            remaining = remaining - amount
            lines.append(AllocationLineProposal(
                invoice_id=invoice.id,
                allocated_amount=amount,
                remaining_balance_after=invoice.balance - amount,
            ))
        return tuple(lines), remaining

    def preview(
        self,
        *,
        request: PaymentAllocationRequest,
        settings: ToleranceSettings,
        open_invoices: Sequence[OpenInvoice],
    ) -> PaymentAllocationPreview:
        """
        Compose target selection, allocation and excess classification.

        Pure: calling twice with the same inputs yields equal previews.
        """
        t0 = time.monotonic()
        logger.info("allocation_preview_started", extra={
            "payment_id": request.payment_id,
            "partner_id": request.partner_id,
            "amount": request.amount.to_str(),
            "currency": request.currency,
            "explicit_targets": request.invoice_ids is not None,
            "manual": request.manual_allocations is not None,
            "open_invoice_count": len(open_invoices),
        })

        if not request.amount.is_positive:
            raise InvalidAmountError(request.amount.to_str(), "payment amount must be positive")

        targets = self.select_targets(request, open_invoices)
        lines, excess = self.propose(request=request, settings=settings, targets=targets)

        target_ids = {inv.id for inv in targets}
        has_other_open = any(
            inv.partner_id == request.partner_id
            and inv.currency == request.currency
            and inv.balance.is_positive
            and inv.id not in target_ids
            for inv in open_invoices
        )
        handling = self._classifier.classify(
            excess_amount=excess,
            payment_amount=request.amount,
            settings=settings,
            has_other_open_invoices=has_other_open,
        )

        zero = Money.zero(request.amount.currency)
        total_allocated = zero
        total_writeoff = zero
        for line in lines:
            total_allocated = total_allocated + line.allocated_amount
            total_writeoff = total_writeoff + line.writeoff_or_zero

        preview = PaymentAllocationPreview(
            payment_id=request.payment_id,
            partner_id=request.partner_id,
            payment_amount=request.amount,
            allocations=lines,
            total_allocated=total_allocated,
            total_writeoff=total_writeoff,
            excess_amount=excess,
            excess_handling=handling,
            target_invoice_ids=tuple(inv.id for inv in targets),
        )

        assert preview.is_balanced, (
            f"Allocation conservation violated for payment {request.payment_id}"
        )

        logger.info("allocation_preview_completed", extra={
            "payment_id": request.payment_id,
            "line_count": len(lines),
            "total_allocated": total_allocated.to_str(),
            "total_writeoff": total_writeoff.to_str(),
            "excess_amount": excess.to_str(),
            "excess_handling": handling.value,
            "duration_ms": round((time.monotonic() - t0) * 1000, 2),
        })
        return preview
