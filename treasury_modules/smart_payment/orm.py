"""
Smart Payment ORM Models (``treasury_modules.smart_payment.orm``).

Responsibility
--------------
SQLAlchemy persistence models for the smart payment module: companies and
country defaults (tolerance layers), partners, invoices, payments, and the
immutable allocation and partner credit records written by the applier.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``treasury_kernel.db`` and
sibling ``models.py``.  MUST NOT be imported by ``treasury_kernel``.

Invariants enforced
-------------------
* PaymentAllocation and PartnerCredit rows are append-only.
* A Payment is frozen once ``allocation_status`` is ``applied``.
Both are enforced by the kernel immutability listeners declared at the
bottom of this module.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    Date,
    ForeignKey,
    Index,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from treasury_engines.allocation import OpenInvoice
from treasury_engines.excess import ExcessHandling
from treasury_engines.tolerance import TolerancePolicyLayer, ToleranceScope, WriteoffKind
from treasury_kernel.db.base import TrackedBase
from treasury_kernel.db.immutability import protect_append_only, protect_when_status
from treasury_kernel.domain.values import Money
from treasury_modules.smart_payment.models import (
    AppliedAllocation,
    InvoiceStatus,
    PaymentAllocationStatus,
    PaymentRecord,
)


# ---------------------------------------------------------------------------
# 1. Tolerance layers
# ---------------------------------------------------------------------------


class CompanyModel(TrackedBase):
    """
    Tenant company with its optional tolerance overrides.

    A NULL tolerance column inherits from the country, then the system
    default.
    """

    __tablename__ = "treasury_companies"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    country_code: Mapped[str | None] = mapped_column(String(2), nullable=True)
    tolerance_enabled: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    tolerance_max_writeoff_percent: Mapped[Decimal | None] = mapped_column(
        Numeric(12, 6), nullable=True
    )
    tolerance_max_writeoff_absolute: Mapped[Decimal | None] = mapped_column(nullable=True)

    def to_policy_layer(self) -> TolerancePolicyLayer:
        return TolerancePolicyLayer(
            scope=ToleranceScope.COMPANY,
            enabled=self.tolerance_enabled,
            max_writeoff_percent=self.tolerance_max_writeoff_percent,
            max_writeoff_absolute=self.tolerance_max_writeoff_absolute,
        )

    def __repr__(self) -> str:
        return f"<CompanyModel {self.name} ({self.country_code})>"


class CountryPaymentSettingsModel(TrackedBase):
    """Country default tolerance, overriding the system default."""

    __tablename__ = "treasury_country_payment_settings"

    __table_args__ = (
        UniqueConstraint("country_code", name="uq_treasury_country_settings_code"),
    )

    country_code: Mapped[str] = mapped_column(String(2), nullable=False)
    tolerance_enabled: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    tolerance_max_writeoff_percent: Mapped[Decimal | None] = mapped_column(
        Numeric(12, 6), nullable=True
    )
    tolerance_max_writeoff_absolute: Mapped[Decimal | None] = mapped_column(nullable=True)

    def to_policy_layer(self) -> TolerancePolicyLayer:
        return TolerancePolicyLayer(
            scope=ToleranceScope.COUNTRY,
            enabled=self.tolerance_enabled,
            max_writeoff_percent=self.tolerance_max_writeoff_percent,
            max_writeoff_absolute=self.tolerance_max_writeoff_absolute,
        )

    def __repr__(self) -> str:
        return f"<CountryPaymentSettingsModel {self.country_code}>"


# ---------------------------------------------------------------------------
# 2. Partners and invoices
# ---------------------------------------------------------------------------


class PartnerModel(TrackedBase):
    """Customer (business partner) of a company."""

    __tablename__ = "treasury_partners"

    __table_args__ = (
        Index("idx_treasury_partners_company_id", "company_id"),
    )

    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("treasury_companies.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    def __repr__(self) -> str:
        return f"<PartnerModel {self.name}>"


class InvoiceModel(TrackedBase):
    """
    Customer invoice.

    Guarantees:
        - balance_due is decremented only by the allocation applier.
        - status is ``paid`` exactly when balance_due is zero.
    """

    __tablename__ = "treasury_invoices"

    __table_args__ = (
        Index("idx_treasury_invoices_partner", "company_id", "partner_id"),
        Index("idx_treasury_invoices_status", "status"),
    )

    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("treasury_companies.id"), nullable=False
    )
    partner_id: Mapped[UUID] = mapped_column(
        ForeignKey("treasury_partners.id"), nullable=False
    )
    document_number: Mapped[str] = mapped_column(String(50), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    total: Mapped[Decimal] = mapped_column(nullable=False)
    balance_due: Mapped[Decimal] = mapped_column(nullable=False)
    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=InvoiceStatus.OPEN.value)

    def to_open_invoice(self) -> OpenInvoice:
        return OpenInvoice(
            id=str(self.id),
            partner_id=str(self.partner_id),
            total=Money.of(self.total, self.currency),
            balance=Money.of(self.balance_due, self.currency),
            invoice_date=self.invoice_date,
            due_date=self.due_date,
            document_number=self.document_number,
        )

    def __repr__(self) -> str:
        return f"<InvoiceModel {self.document_number} {self.balance_due} {self.currency}>"


# ---------------------------------------------------------------------------
# 3. Payments and their allocation outcome
# ---------------------------------------------------------------------------


class PaymentModel(TrackedBase):
    """
    Received customer payment.

    Frozen once ``allocation_status`` is ``applied``.
    """

    __tablename__ = "treasury_payments"

    __table_args__ = (
        Index("idx_treasury_payments_partner", "company_id", "partner_id"),
    )

    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("treasury_companies.id"), nullable=False
    )
    partner_id: Mapped[UUID] = mapped_column(
        ForeignKey("treasury_partners.id"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    allocation_status: Mapped[str] = mapped_column(
        String(20), default=PaymentAllocationStatus.UNALLOCATED.value
    )
    excess_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    excess_handling: Mapped[str | None] = mapped_column(String(30), nullable=True)
    applied_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def to_dto(self) -> PaymentRecord:
        return PaymentRecord(
            id=str(self.id),
            company_id=str(self.company_id),
            partner_id=str(self.partner_id),
            amount=Money.of(self.amount, self.currency),
            payment_date=self.payment_date,
            reference=self.reference,
            allocation_status=PaymentAllocationStatus(self.allocation_status),
            excess_amount=(
                Money.of(self.excess_amount, self.currency)
                if self.excess_amount is not None else None
            ),
            excess_handling=(
                ExcessHandling(self.excess_handling) if self.excess_handling else None
            ),
        )

    def __repr__(self) -> str:
        return f"<PaymentModel {self.amount} {self.currency} [{self.allocation_status}]>"


class PaymentAllocationModel(TrackedBase):
    """
    Immutable allocation of a payment to one invoice.

    Created only by the allocation applier.
    """

    __tablename__ = "treasury_payment_allocations"

    __table_args__ = (
        UniqueConstraint("payment_id", "invoice_id", name="uq_treasury_allocation_payment_invoice"),
        Index("idx_treasury_allocations_invoice", "invoice_id"),
    )

    payment_id: Mapped[UUID] = mapped_column(
        ForeignKey("treasury_payments.id"), nullable=False
    )
    invoice_id: Mapped[UUID] = mapped_column(
        ForeignKey("treasury_invoices.id"), nullable=False
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    tolerance_writeoff: Mapped[Decimal | None] = mapped_column(nullable=True)
    writeoff_kind: Mapped[str | None] = mapped_column(String(20), nullable=True)

    def to_dto(self) -> AppliedAllocation:
        return AppliedAllocation(
            id=str(self.id),
            payment_id=str(self.payment_id),
            invoice_id=str(self.invoice_id),
            amount=Money.of(self.amount, self.currency),
            tolerance_writeoff=(
                Money.of(self.tolerance_writeoff, self.currency)
                if self.tolerance_writeoff is not None else None
            ),
            writeoff_kind=WriteoffKind(self.writeoff_kind) if self.writeoff_kind else None,
            created_at=self.created_at,
        )

    def __repr__(self) -> str:
        return f"<PaymentAllocationModel {self.payment_id} -> {self.invoice_id}: {self.amount}>"


class PartnerCreditModel(TrackedBase):
    """Immutable credit balance created from a payment's excess."""

    __tablename__ = "treasury_partner_credits"

    __table_args__ = (
        Index("idx_treasury_partner_credits_partner", "company_id", "partner_id"),
    )

    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("treasury_companies.id"), nullable=False
    )
    partner_id: Mapped[UUID] = mapped_column(
        ForeignKey("treasury_partners.id"), nullable=False
    )
    payment_id: Mapped[UUID] = mapped_column(
        ForeignKey("treasury_payments.id"), nullable=False
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<PartnerCreditModel {self.partner_id}: {self.amount} {self.currency}>"


protect_append_only(PaymentAllocationModel, "PaymentAllocation")
protect_append_only(PartnerCreditModel, "PartnerCredit")
protect_when_status(
    PaymentModel,
    "Payment",
    status_attr="allocation_status",
    frozen_values=frozenset({PaymentAllocationStatus.APPLIED.value}),
)
