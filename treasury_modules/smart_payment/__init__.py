"""
Smart Payment Module.

Previews how a customer payment is allocated across a partner's open
invoices (with payment tolerance write-offs and excess handling) and
applies accepted previews as immutable allocation records.
"""

from treasury_modules.smart_payment.models import (
    AppliedAllocation,
    ApplyResult,
    InvoiceStatus,
    OpenInvoiceView,
    PaymentAllocationStatus,
    PaymentRecord,
)
from treasury_modules.smart_payment.service import SmartPaymentService
from treasury_modules.smart_payment.workflows import (
    ALLOCATION_WORKFLOW,
    INVOICE_SETTLEMENT_WORKFLOW,
)

__all__ = [
    "SmartPaymentService",
    "AppliedAllocation",
    "ApplyResult",
    "InvoiceStatus",
    "OpenInvoiceView",
    "PaymentAllocationStatus",
    "PaymentRecord",
    "ALLOCATION_WORKFLOW",
    "INVOICE_SETTLEMENT_WORKFLOW",
]
