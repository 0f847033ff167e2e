"""
Typed Exception Hierarchy for the Treasury Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (the API layer, tests, batch jobs) must react to allocation failures
by TYPE, never by parsing messages.  Every exception carries:

  1. A ``code`` class attribute (machine-readable, API-safe)
  2. Structured attributes describing the failure (not just a message)

Example:
    try:
        service.apply_allocation(payment_id, preview)
    except StaleAllocationError as e:
        # Balances moved since the preview; re-preview and retry once
        log.warning("stale", extra={"invoice_id": e.invoice_id})

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    TreasuryError (base)
    |
    +-- AmountError
    |   +-- InvalidAmountError
    |
    +-- CurrencyError
    |   +-- InvalidCurrencyError
    |   +-- CurrencyMismatchError
    |
    +-- NotFoundError
    |   +-- CompanyNotFoundError
    |   +-- PartnerNotFoundError
    |   +-- InvoiceNotFoundError
    |   +-- PaymentNotFoundError
    |   +-- ToleranceSettingsNotFoundError
    |
    +-- AllocationError
    |   +-- InvalidAllocationRequestError
    |   +-- StaleAllocationError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- ConfigurationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                        | When Raised
-------------|-----------------------------|-----------------------------------------
Amount       | INVALID_AMOUNT              | Non-numeric or non-positive payment amount
-------------|-----------------------------|-----------------------------------------
Currency     | INVALID_CURRENCY            | Not a valid ISO 4217 code
             | CURRENCY_MISMATCH           | Payment and invoice currencies differ
-------------|-----------------------------|-----------------------------------------
Not found    | COMPANY_NOT_FOUND           | Company id unknown
             | PARTNER_NOT_FOUND           | Partner id unknown for the company
             | INVOICE_NOT_FOUND           | Targeted invoice is not open / unknown
             | PAYMENT_NOT_FOUND           | Payment id unknown
             | TOLERANCE_SETTINGS_NOT_FOUND| No system default tolerance configured
-------------|-----------------------------|-----------------------------------------
Allocation   | INVALID_ALLOCATION_REQUEST  | Duplicate targets, tampered preview
             | STALE_ALLOCATION            | Balances changed between preview/apply
-------------|-----------------------------|-----------------------------------------
Immutability | IMMUTABILITY_VIOLATION      | Editing an allocation / credit record
-------------|-----------------------------|-----------------------------------------
Config       | CONFIGURATION_ERROR         | Invalid configuration file

===============================================================================
HANDLING PATTERNS
===============================================================================

1. StaleAllocationError is the expected outcome of a concurrent payment
   against the same invoice.  The caller re-previews and retries once, then
   surfaces the failure to the user.

2. NotFoundError subclasses map to HTTP 404; the API layer dispatches on
   the base class.

3. ToleranceSettingsNotFoundError is a deployment error.  It is raised while
   loading configuration, never per request.
"""


class TreasuryError(Exception):
    """
    Base exception for all treasury errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "TREASURY_ERROR"


# Amount-related exceptions


class AmountError(TreasuryError):
    """Base exception for amount errors."""

    code: str = "AMOUNT_ERROR"


class InvalidAmountError(AmountError):
    """Amount is not a number, has too many decimals, or is not positive."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, amount: str, reason: str):
        self.amount = amount
        self.reason = reason
        super().__init__(f"Invalid amount {amount!r}: {reason}")


# Currency-related exceptions


class CurrencyError(TreasuryError):
    """Base exception for currency errors."""

    code: str = "CURRENCY_ERROR"


class InvalidCurrencyError(CurrencyError):
    """Invalid ISO 4217 currency code."""

    code: str = "INVALID_CURRENCY"

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__(f"Invalid ISO 4217 currency code: '{currency}'")


class CurrencyMismatchError(CurrencyError):
    """Attempted operation on mismatched currencies."""

    code: str = "CURRENCY_MISMATCH"

    def __init__(self, currency1: str, currency2: str):
        self.currency1 = currency1
        self.currency2 = currency2
        super().__init__(f"Currency mismatch: {currency1} vs {currency2}")


# Lookup exceptions


class NotFoundError(TreasuryError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"
    entity_type: str = "Entity"

    def __init__(self, entity_id: str):
        self.entity_id = entity_id
        super().__init__(f"{self.entity_type} not found: {entity_id}")


class CompanyNotFoundError(NotFoundError):
    """Company with given ID was not found."""

    code: str = "COMPANY_NOT_FOUND"
    entity_type: str = "Company"


class PartnerNotFoundError(NotFoundError):
    """Partner with given ID was not found for the company."""

    code: str = "PARTNER_NOT_FOUND"
    entity_type: str = "Partner"


class InvoiceNotFoundError(NotFoundError):
    """Invoice is unknown or no longer open for the partner."""

    code: str = "INVOICE_NOT_FOUND"
    entity_type: str = "Invoice"


class PaymentNotFoundError(NotFoundError):
    """Payment with given ID was not found."""

    code: str = "PAYMENT_NOT_FOUND"
    entity_type: str = "Payment"


class ToleranceSettingsNotFoundError(NotFoundError):
    """No system default tolerance settings are configured."""

    code: str = "TOLERANCE_SETTINGS_NOT_FOUND"
    entity_type: str = "Tolerance settings"


# Allocation exceptions


class AllocationError(TreasuryError):
    """Base exception for allocation errors."""

    code: str = "ALLOCATION_ERROR"


class InvalidAllocationRequestError(AllocationError):
    """The request or the submitted preview is internally inconsistent."""

    code: str = "INVALID_ALLOCATION_REQUEST"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid allocation request: {reason}")


class StaleAllocationError(AllocationError):
    """
    Invoice balances changed between preview and apply.

    Nothing was written.  The caller must request a new preview.
    """

    code: str = "STALE_ALLOCATION"

    def __init__(self, payment_id: str, invoice_id: str | None, reason: str):
        self.payment_id = payment_id
        self.invoice_id = invoice_id
        self.reason = reason
        target = f" (invoice {invoice_id})" if invoice_id else ""
        super().__init__(
            f"Stale allocation for payment {payment_id}{target}: {reason}. "
            "Request a new preview."
        )


# Immutability exceptions


class ImmutabilityError(TreasuryError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    PaymentAllocation and PartnerCredit rows are immutable from creation;
    a Payment is frozen once its allocation is applied.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Configuration exceptions


class ConfigurationError(TreasuryError):
    """Configuration file is missing a value or holds an invalid one."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Invalid configuration '{key}': {reason}")
