"""
Smart Payment Domain Models (``treasury_modules.smart_payment.models``).

Responsibility
--------------
Frozen dataclass records returned by the smart payment selectors and
service: stored payments, applied allocations, partner credits and the
result of applying a preview.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.

Invariants enforced
-------------------
* All models are ``frozen=True`` (immutable after construction).
* All monetary fields are ``Money`` -- NEVER ``float``.
"""

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum

from treasury_engines.allocation import OpenInvoice
from treasury_engines.excess import ExcessHandling
from treasury_engines.tolerance import WriteoffKind
from treasury_kernel.domain.values import Money


class InvoiceStatus(Enum):
    """Invoice settlement states."""
    OPEN = "open"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"


class PaymentAllocationStatus(Enum):
    """Allocation state of a stored payment."""
    UNALLOCATED = "unallocated"
    APPLIED = "applied"


@dataclass(frozen=True)
class PaymentRecord:
    """A received customer payment."""
    id: str
    company_id: str
    partner_id: str
    amount: Money
    payment_date: date
    reference: str | None = None
    allocation_status: PaymentAllocationStatus = PaymentAllocationStatus.UNALLOCATED
    excess_amount: Money | None = None
    excess_handling: ExcessHandling | None = None

    @property
    def currency(self) -> str:
        return self.amount.currency.code


@dataclass(frozen=True)
class AppliedAllocation:
    """A persisted, immutable allocation of a payment to one invoice."""
    id: str
    payment_id: str
    invoice_id: str
    amount: Money
    tolerance_writeoff: Money | None
    writeoff_kind: WriteoffKind | None
    created_at: datetime | None = None


@dataclass(frozen=True)
class OpenInvoiceView:
    """An open invoice as listed for a partner, with its age."""
    invoice: OpenInvoice
    days_overdue: int


@dataclass(frozen=True)
class ApplyResult:
    """Outcome of applying an allocation preview."""
    payment_id: str
    allocations: tuple[AppliedAllocation, ...]
    excess_handling: ExcessHandling
    excess_amount: Money
    partner_credit_id: str | None = None
