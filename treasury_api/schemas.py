"""
HTTP request/response schemas.

Amounts cross the boundary as decimal strings with four fractional digits;
they are parsed into ``Money`` here and nowhere else.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field

from treasury_engines.allocation import (
    AllocationLineProposal,
    AutoSelectOrder,
    ManualAllocation,
    PaymentAllocationPreview,
    PaymentAllocationRequest,
)
from treasury_engines.excess import ExcessHandling
from treasury_engines.tolerance import ToleranceSettings, WriteoffKind
from treasury_kernel.domain.values import Money
from treasury_modules.smart_payment.models import (
    AppliedAllocation,
    ApplyResult,
    OpenInvoiceView,
)

ExcessHandlingName = Literal["none", "tolerance_writeoff", "refund_required", "credit_balance"]
WriteoffKindName = Literal["underpayment", "overpayment"]


def _opt(value: Money | None) -> str | None:
    return value.to_str() if value is not None else None


class ToleranceSettingsOut(BaseModel):
    scope: Literal["company", "country", "system"]
    enabled: bool
    max_writeoff_percent: str
    max_writeoff_absolute: str

    @classmethod
    def from_settings(cls, settings: ToleranceSettings) -> ToleranceSettingsOut:
        return cls(
            scope=settings.scope.value,
            enabled=settings.enabled,
            max_writeoff_percent=f"{settings.max_writeoff_percent:.4f}",
            max_writeoff_absolute=f"{settings.max_writeoff_absolute:.4f}",
        )


class ManualAllocationIn(BaseModel):
    invoice_id: str
    amount: str

    def to_manual(self, currency: str) -> ManualAllocation:
        return ManualAllocation(
            invoice_id=self.invoice_id,
            amount=Money.parse(self.amount, currency),
        )


class PreviewAllocationIn(BaseModel):
    payment_id: str
    partner_id: str
    amount: str
    currency: str = Field(min_length=3, max_length=3)
    invoice_ids: list[str] | None = None
    allocation_method: Literal["due_date", "invoice_date"] | None = None
    manual_allocations: list[ManualAllocationIn] | None = None

    def to_request(self) -> PaymentAllocationRequest:
        return PaymentAllocationRequest(
            payment_id=self.payment_id,
            partner_id=self.partner_id,
            amount=Money.parse(self.amount, self.currency),
            invoice_ids=tuple(self.invoice_ids) if self.invoice_ids is not None else None,
            allocation_method=(
                AutoSelectOrder(self.allocation_method) if self.allocation_method else None
            ),
            manual_allocations=(
                tuple(m.to_manual(self.currency) for m in self.manual_allocations)
                if self.manual_allocations is not None else None
            ),
        )


class AllocationLine(BaseModel):
    invoice_id: str
    allocated_amount: str
    remaining_balance_after: str
    tolerance_writeoff: str | None = None
    writeoff_kind: WriteoffKindName | None = None

    @classmethod
    def from_line(cls, line: AllocationLineProposal) -> AllocationLine:
        return cls(
            invoice_id=line.invoice_id,
            allocated_amount=line.allocated_amount.to_str(),
            remaining_balance_after=line.remaining_balance_after.to_str(),
            tolerance_writeoff=_opt(line.tolerance_writeoff),
            writeoff_kind=line.writeoff_kind.value if line.writeoff_kind else None,
        )

    def to_line(self, currency: str) -> AllocationLineProposal:
        return AllocationLineProposal(
            invoice_id=self.invoice_id,
            allocated_amount=Money.parse(self.allocated_amount, currency),
            remaining_balance_after=Money.parse(self.remaining_balance_after, currency),
            tolerance_writeoff=(
                Money.parse(self.tolerance_writeoff, currency)
                if self.tolerance_writeoff is not None else None
            ),
            writeoff_kind=WriteoffKind(self.writeoff_kind) if self.writeoff_kind else None,
        )


class AllocationPreviewOut(BaseModel):
    payment_id: str
    partner_id: str
    currency: str = Field(min_length=3, max_length=3)
    payment_amount: str
    allocations: list[AllocationLine]
    total_allocated: str
    total_writeoff: str = "0.0000"
    excess_handling: ExcessHandlingName
    excess_amount: str

    @classmethod
    def from_preview(cls, preview: PaymentAllocationPreview) -> AllocationPreviewOut:
        return cls(
            payment_id=preview.payment_id,
            partner_id=preview.partner_id,
            currency=preview.currency,
            payment_amount=preview.payment_amount.to_str(),
            allocations=[AllocationLine.from_line(line) for line in preview.allocations],
            total_allocated=preview.total_allocated.to_str(),
            total_writeoff=preview.total_writeoff.to_str(),
            excess_handling=preview.excess_handling.value,
            excess_amount=preview.excess_amount.to_str(),
        )

    def to_preview(self) -> PaymentAllocationPreview:
        lines = tuple(line.to_line(self.currency) for line in self.allocations)
        return PaymentAllocationPreview(
            payment_id=self.payment_id,
            partner_id=self.partner_id,
            payment_amount=Money.parse(self.payment_amount, self.currency),
            allocations=lines,
            total_allocated=Money.parse(self.total_allocated, self.currency),
            total_writeoff=Money.parse(self.total_writeoff, self.currency),
            excess_amount=Money.parse(self.excess_amount, self.currency),
            excess_handling=ExcessHandling(self.excess_handling),
            target_invoice_ids=tuple(line.invoice_id for line in lines),
        )


class ApplyAllocationIn(BaseModel):
    payment_id: str
    preview: AllocationPreviewOut


class AppliedAllocationOut(BaseModel):
    id: str
    payment_id: str
    invoice_id: str
    amount: str
    tolerance_writeoff: str | None
    writeoff_kind: WriteoffKindName | None
    created_at: datetime | None

    @classmethod
    def from_record(cls, record: AppliedAllocation) -> AppliedAllocationOut:
        return cls(
            id=record.id,
            payment_id=record.payment_id,
            invoice_id=record.invoice_id,
            amount=record.amount.to_str(),
            tolerance_writeoff=_opt(record.tolerance_writeoff),
            writeoff_kind=record.writeoff_kind.value if record.writeoff_kind else None,
            created_at=record.created_at,
        )


class ApplyAllocationOut(BaseModel):
    payment_id: str
    allocations: list[AppliedAllocationOut]
    excess_handling: ExcessHandlingName
    excess_amount: str
    partner_credit_id: str | None

    @classmethod
    def from_result(cls, result: ApplyResult) -> ApplyAllocationOut:
        return cls(
            payment_id=result.payment_id,
            allocations=[AppliedAllocationOut.from_record(a) for a in result.allocations],
            excess_handling=result.excess_handling.value,
            excess_amount=result.excess_amount.to_str(),
            partner_credit_id=result.partner_credit_id,
        )


class OpenInvoiceOut(BaseModel):
    id: str
    document_number: str | None
    currency: str
    total: str
    balance: str
    invoice_date: date
    due_date: date | None
    days_overdue: int

    @classmethod
    def from_view(cls, view: OpenInvoiceView) -> OpenInvoiceOut:
        inv = view.invoice
        return cls(
            id=inv.id,
            document_number=inv.document_number,
            currency=inv.currency,
            total=inv.total.to_str(),
            balance=inv.balance.to_str(),
            invoice_date=inv.invoice_date,
            due_date=inv.due_date,
            days_overdue=view.days_overdue,
        )
