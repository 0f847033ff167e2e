"""
Smart Payment Module Service - Orchestrates allocation via engines + kernel.

Thin glue layer that:
1. Calls ToleranceResolver to obtain the company's effective tolerance
2. Calls AllocationProposer (with the ExcessClassifier) to build previews
3. Applies an accepted preview: row locks, stale checks, immutable records

All computation lives in engines.  This service owns the transaction
boundary: it commits on success and rolls back on any failure.

Usage:
    service = SmartPaymentService(session, get_active_config(), clock)
    preview = service.preview_allocation(company_id, request)
    result = service.apply_allocation(company_id, preview.payment_id, preview)
"""

from __future__ import annotations

import time
from dataclasses import replace
from datetime import date
from uuid import UUID

from sqlalchemy.orm import Session

from treasury_config.schema import TreasuryConfig
from treasury_engines.allocation import (
    AllocationLineProposal,
    AllocationProposer,
    AutoSelectOrder,
    ManualAllocation,
    PaymentAllocationPreview,
    PaymentAllocationRequest,
)
from treasury_engines.excess import ExcessClassifier, ExcessHandling
from treasury_engines.tolerance import ToleranceResolver, ToleranceSettings, WriteoffKind
from treasury_kernel.domain.clock import Clock, SystemClock
from treasury_kernel.domain.values import Money
from treasury_kernel.exceptions import (
    CompanyNotFoundError,
    CurrencyMismatchError,
    InvalidAllocationRequestError,
    InvalidAmountError,
    InvoiceNotFoundError,
    StaleAllocationError,
)
from treasury_kernel.logging_config import LogContext, get_logger
from treasury_modules.smart_payment.models import (
    ApplyResult,
    InvoiceStatus,
    OpenInvoiceView,
    PaymentAllocationStatus,
    PaymentRecord,
)
from treasury_modules.smart_payment.orm import (
    InvoiceModel,
    PartnerCreditModel,
    PaymentAllocationModel,
    PaymentModel,
)
from treasury_modules.smart_payment.selectors import SmartPaymentSelector
from treasury_modules.smart_payment.workflows import (
    ALLOCATION_WORKFLOW,
    INVOICE_SETTLEMENT_WORKFLOW,
    Transition,
    allocation_state,
)

logger = get_logger("modules.smart_payment.service")


class SmartPaymentService:
    """
    Orchestrates smart payment allocation through engines and kernel.

    Engine composition:
    - ToleranceResolver: company -> country -> system default precedence
    - AllocationProposer: target selection, allocation walk, write-offs
    - ExcessClassifier: disposition of unallocated payment money

    Transaction boundary: write operations commit on success and roll back
    on failure.  Previews are read-only.
    """

    def __init__(
        self,
        session: Session,
        config: TreasuryConfig,
        clock: Clock | None = None,
    ):
        self._session = session
        self._config = config
        self._clock = clock or SystemClock()
        self._selector = SmartPaymentSelector(session)
        self._resolver = ToleranceResolver()
        self._classifier = ExcessClassifier(config.smart_payment.excess_credit_policy)
        self._proposer = AllocationProposer(
            self._classifier,
            default_order=config.smart_payment.auto_select_by,
        )

    # =========================================================================
    # Tolerance
    # =========================================================================

    def get_tolerance_settings(self, company_id: str | UUID) -> ToleranceSettings:
        """
        Effective tolerance for a company.

        The country layer comes from the database when a row exists for the
        company's country, otherwise from the configuration seed.
        """
        company_layer, country_code = self._selector.company_layers(company_id)
        country_layer = self._selector.country_layer(country_code)
        if country_layer is None and country_code:
            country_layer = self._config.tolerance.countries.get(country_code.upper())
        return self._resolver.resolve(
            system_default=self._config.tolerance.system_default,
            country=country_layer,
            company=company_layer,
        )

    # =========================================================================
    # Preview
    # =========================================================================

    def preview_allocation(
        self,
        company_id: str | UUID,
        request: PaymentAllocationRequest,
    ) -> PaymentAllocationPreview:
        """Compute an allocation preview.  Writes nothing."""
        with LogContext.bind(company_id=str(company_id), payment_id=str(request.payment_id)):
            partner_uuid = self._selector.require_partner(company_id, request.partner_id)
            invoice_ids = request.invoice_ids
            if invoice_ids is not None:
                invoice_ids = tuple(
                    str(self._selector.parse_id(i, InvoiceNotFoundError)) for i in invoice_ids
                )
            manual = request.manual_allocations
            if manual is not None:
                manual = tuple(
                    replace(
                        m,
                        invoice_id=str(self._selector.parse_id(m.invoice_id, InvoiceNotFoundError)),
                    )
                    for m in manual
                )
            request = replace(
                request,
                partner_id=str(partner_uuid),
                invoice_ids=invoice_ids,
                manual_allocations=manual,
            )

            settings = self.get_tolerance_settings(company_id)
            open_invoices = self._selector.open_invoices(company_id, partner_uuid)
            return self._proposer.preview(
                request=request,
                settings=settings,
                open_invoices=open_invoices,
            )

    def preview_for_payment(
        self,
        company_id: str | UUID,
        payment_id: str | UUID,
        invoice_ids: tuple[str, ...] | None = None,
        allocation_method: AutoSelectOrder | None = None,
        manual_allocations: tuple[ManualAllocation, ...] | None = None,
    ) -> PaymentAllocationPreview:
        """Preview a stored payment, rebuilding the request from its record."""
        payment = self._selector.get_payment(company_id, payment_id)
        return self.preview_allocation(
            company_id,
            PaymentAllocationRequest(
                payment_id=payment.id,
                partner_id=payment.partner_id,
                amount=payment.amount,
                invoice_ids=invoice_ids,
                allocation_method=allocation_method,
                manual_allocations=manual_allocations,
            ),
        )

    # =========================================================================
    # Apply / reject
    # =========================================================================

    def apply_allocation(
        self,
        company_id: str | UUID,
        payment_id: str | UUID,
        preview: PaymentAllocationPreview,
        actor_id: UUID | None = None,
    ) -> ApplyResult:
        """
        Persist an accepted preview, all-or-nothing.

        Raises:
            PaymentNotFoundError, InvoiceNotFoundError: unknown ids.
            StaleAllocationError: the payment is already applied or an
                invoice balance / the tolerance changed since the preview.
            InvalidAllocationRequestError: the preview is inconsistent.
            CurrencyMismatchError: preview or invoice in another currency.
        """
        with LogContext.bind(company_id=str(company_id), payment_id=str(payment_id)):
            t0 = time.monotonic()
            logger.info("smart_payment_apply_started", extra={
                "line_count": len(preview.allocations),
                "excess_handling": preview.excess_handling.value,
            })
            try:
                result = self._apply(company_id, payment_id, preview, actor_id)
                self._session.commit()
                logger.info("smart_payment_apply_committed", extra={
                    "allocation_count": len(result.allocations),
                    "excess_amount": result.excess_amount.to_str(),
                    "excess_handling": result.excess_handling.value,
                    "partner_credit_id": result.partner_credit_id,
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                })
                return result
            except Exception as exc:
                self._session.rollback()
                logger.warning("smart_payment_apply_rolled_back", extra={
                    "error_code": getattr(exc, "code", type(exc).__name__),
                })
                raise

    def _apply(
        self,
        company_id: str | UUID,
        payment_id: str | UUID,
        preview: PaymentAllocationPreview,
        actor_id: UUID | None,
    ) -> ApplyResult:
        payment = self._selector.lock_payment(company_id, payment_id)
        self._allocation_transition(str(payment.id), payment.allocation_status, "apply")

        record = payment.to_dto()
        self._validate_preview(record, preview)

        settings = self.get_tolerance_settings(company_id)
        line_ids = [line.invoice_id for line in preview.allocations]
        locked = (
            self._selector.lock_invoices(payment.company_id, payment.partner_id, line_ids)
            if line_ids else {}
        )
        invoices: list[InvoiceModel] = []
        for line in preview.allocations:
            key = str(self._selector.parse_id(line.invoice_id, InvoiceNotFoundError))
            invoice = locked[key]
            if invoice.currency != record.currency:
                raise CurrencyMismatchError(record.currency, invoice.currency)
            self._check_line_current(record.id, line, invoice, settings)
            invoices.append(invoice)

        self._check_excess_current(record, preview, settings, set(locked))

        now = self._clock.now()
        allocations: list[PaymentAllocationModel] = []
        for line, invoice in zip(preview.allocations, invoices):
            allocation = PaymentAllocationModel(
                payment_id=payment.id,
                invoice_id=invoice.id,
                currency=record.currency,
                amount=line.allocated_amount.amount,
                tolerance_writeoff=(
                    line.tolerance_writeoff.amount
                    if line.tolerance_writeoff is not None else None
                ),
                writeoff_kind=line.writeoff_kind.value if line.writeoff_kind else None,
                created_at=now,
                created_by_id=actor_id,
            )
            self._session.add(allocation)
            allocations.append(allocation)

            new_status = (
                InvoiceStatus.PAID.value
                if line.remaining_balance_after.is_zero
                else InvoiceStatus.PARTIALLY_PAID.value
            )
            INVOICE_SETTLEMENT_WORKFLOW.transition(invoice.status, "allocate", new_status)
            invoice.balance_due = line.remaining_balance_after.amount
            invoice.status = new_status

        credit: PartnerCreditModel | None = None
        if preview.excess_handling is ExcessHandling.CREDIT_BALANCE:
            credit = PartnerCreditModel(
                company_id=payment.company_id,
                partner_id=payment.partner_id,
                payment_id=payment.id,
                currency=record.currency,
                amount=preview.excess_amount.amount,
                created_at=now,
                created_by_id=actor_id,
            )
            self._session.add(credit)

        payment.allocation_status = PaymentAllocationStatus.APPLIED.value
        payment.excess_amount = preview.excess_amount.amount
        payment.excess_handling = preview.excess_handling.value
        payment.applied_at = now
        self._session.flush()

        return ApplyResult(
            payment_id=record.id,
            allocations=tuple(a.to_dto() for a in allocations),
            excess_handling=preview.excess_handling,
            excess_amount=preview.excess_amount,
            partner_credit_id=str(credit.id) if credit is not None else None,
        )

    @staticmethod
    def _allocation_transition(payment_id: str, payment_status: str, action: str) -> Transition:
        """Workflow transition for ``action``; a terminal payment is stale."""
        state = allocation_state(payment_status)
        try:
            return ALLOCATION_WORKFLOW.transition(state, action)
        except ValueError as e:
            raise StaleAllocationError(payment_id, None, f"payment is already {state}") from e

    def _validate_preview(self, payment: PaymentRecord, preview: PaymentAllocationPreview) -> None:
        """Structural checks that do not depend on current balances."""
        if str(preview.payment_id).lower() != payment.id.lower():
            raise InvalidAllocationRequestError("preview belongs to another payment")
        if preview.currency != payment.currency:
            raise CurrencyMismatchError(payment.currency, preview.currency)

        ids = [line.invoice_id.lower() for line in preview.allocations]
        if len(set(ids)) != len(ids):
            raise InvalidAllocationRequestError("preview allocates the same invoice twice")

        zero = Money.zero(payment.amount.currency)
        consumed = zero
        allocated = zero
        for line in preview.allocations:
            if line.allocated_amount.is_negative or line.remaining_balance_after.is_negative:
                raise InvalidAllocationRequestError(
                    f"negative amount on invoice {line.invoice_id}"
                )
            if (line.tolerance_writeoff is None) != (line.writeoff_kind is None):
                raise InvalidAllocationRequestError(
                    f"write-off without a kind on invoice {line.invoice_id}"
                )
            if line.tolerance_writeoff is not None:
                if not line.tolerance_writeoff.is_positive:
                    raise InvalidAllocationRequestError(
                        f"non-positive write-off on invoice {line.invoice_id}"
                    )
                if not line.remaining_balance_after.is_zero:
                    raise InvalidAllocationRequestError(
                        f"write-off line must settle invoice {line.invoice_id}"
                    )
            if line.allocated_amount.is_zero:
                raise InvalidAllocationRequestError(
                    f"line for invoice {line.invoice_id} allocates nothing"
                )
            consumed = consumed + line.payment_consumed
            allocated = allocated + line.allocated_amount

        if preview.excess_amount.is_negative:
            raise InvalidAllocationRequestError("negative excess amount")
        if allocated != preview.total_allocated:
            raise InvalidAllocationRequestError("total_allocated does not match the lines")
        if consumed + preview.excess_amount != payment.amount:
            raise InvalidAllocationRequestError(
                f"allocations and excess do not add up to the payment amount "
                f"{payment.amount.to_str()}"
            )

    def _check_line_current(
        self,
        payment_id: str,
        line: AllocationLineProposal,
        invoice: InvoiceModel,
        settings: ToleranceSettings,
    ) -> None:
        balance = Money.of(invoice.balance_due, invoice.currency)
        if line.balance_before != balance:
            raise StaleAllocationError(
                payment_id, str(invoice.id),
                f"balance is {balance.to_str()}, preview used {line.balance_before.to_str()}",
            )
        if line.allocated_amount > balance:
            raise StaleAllocationError(
                payment_id, str(invoice.id), "allocation exceeds current balance"
            )
        if line.tolerance_writeoff is not None:
            cap = settings.cap_for(balance)
            if line.tolerance_writeoff > cap:
                raise StaleAllocationError(
                    payment_id, str(invoice.id),
                    f"write-off {line.tolerance_writeoff.to_str()} exceeds current "
                    f"tolerance cap {cap.to_str()}",
                )
            if line.writeoff_kind is WriteoffKind.OVERPAYMENT and line.allocated_amount != balance:
                raise StaleAllocationError(
                    payment_id, str(invoice.id),
                    "overpayment write-off requires the invoice to be fully covered",
                )

    def _check_excess_current(
        self,
        payment: PaymentRecord,
        preview: PaymentAllocationPreview,
        settings: ToleranceSettings,
        allocated_invoice_ids: set[str],
    ) -> None:
        has_other_open = any(
            inv.currency == payment.currency and inv.id not in allocated_invoice_ids
            for inv in self._selector.open_invoices(payment.company_id, payment.partner_id)
        )
        expected = self._classifier.classify(
            excess_amount=preview.excess_amount,
            payment_amount=payment.amount,
            settings=settings,
            has_other_open_invoices=has_other_open,
        )
        if expected is not preview.excess_handling:
            raise StaleAllocationError(
                payment.id, None,
                f"excess handling is now '{expected.value}', preview used "
                f"'{preview.excess_handling.value}'",
            )

    def reject_allocation(
        self,
        company_id: str | UUID,
        payment_id: str | UUID,
        reason: str | None = None,
    ) -> str:
        """
        Discard a proposal.  Nothing is written; the payment stays unallocated.

        Returns:
            The terminal workflow state (``"rejected"``).
        """
        payment = self._selector.get_payment(company_id, payment_id)
        transition = self._allocation_transition(
            payment.id, payment.allocation_status.value, "reject"
        )
        logger.info("smart_payment_allocation_rejected", extra={
            "company_id": str(company_id),
            "payment_id": payment.id,
            "reason": reason,
        })
        return transition.to_state

    # =========================================================================
    # Payments and invoices
    # =========================================================================

    def record_payment(
        self,
        company_id: str | UUID,
        partner_id: str | UUID,
        amount: Money,
        payment_date: date,
        reference: str | None = None,
        actor_id: UUID | None = None,
    ) -> PaymentRecord:
        """Register a received payment, unallocated."""
        try:
            if not amount.is_positive:
                raise InvalidAmountError(amount.to_str(), "payment amount must be positive")
            partner_uuid = self._selector.require_partner(company_id, partner_id)
            payment = PaymentModel(
                company_id=self._selector.parse_id(company_id, CompanyNotFoundError),
                partner_id=partner_uuid,
                amount=amount.amount,
                currency=amount.currency.code,
                payment_date=payment_date,
                reference=reference,
                allocation_status=PaymentAllocationStatus.UNALLOCATED.value,
                created_at=self._clock.now(),
                created_by_id=actor_id,
            )
            self._session.add(payment)
            self._session.flush()
            record = payment.to_dto()
            self._session.commit()
            logger.info("smart_payment_payment_recorded", extra={
                "company_id": str(company_id),
                "payment_id": record.id,
                "amount": amount.to_str(),
                "currency": amount.currency.code,
            })
            return record
        except Exception:
            self._session.rollback()
            raise

    def list_open_invoices(
        self,
        company_id: str | UUID,
        partner_id: str | UUID,
    ) -> list[OpenInvoiceView]:
        """Open invoices in auto-selection order, aged against the clock."""
        invoices = self._selector.open_invoices(company_id, partner_id)
        if self._config.smart_payment.auto_select_by is AutoSelectOrder.INVOICE_DATE:
            invoices.sort(key=lambda inv: (inv.invoice_date, inv.id))
        else:
            invoices.sort(key=lambda inv: (inv.effective_due_date, inv.id))
        today = self._clock.today()
        return [
            OpenInvoiceView(
                invoice=inv,
                days_overdue=max(0, (today - inv.effective_due_date).days),
            )
            for inv in invoices
        ]
