"""
Module: treasury_kernel.db.types
Responsibility: Amount and currency utilities.  Centralizes scale,
    rounding, amount parsing and currency validation so that every model, engine and API schema uses identical rules.
Architecture position: Kernel > DB.  May be imported by models, domain,
    engines and the API layer.  MUST NOT import from any of those layers.

Invariants enforced:
    - Fixed scale: every monetary amount handled by the engine carries exactly
      AMOUNT_DECIMAL_PLACES (4) fractional digits.  round_amount() and
      truncate_amount() are the only sanctioned quantizers.
    - ISO 4217: validate_currency() rejects any code outside the registry.
    - Transport format: amounts cross the HTTP boundary as strings matching
      AMOUNT_PATTERN, never as floats.

Failure modes:
    - InvalidAmountError on a non-numeric, negative or over-precise string.
    - InvalidCurrencyError on an unknown currency code.
"""

import re
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation

from treasury_kernel.exceptions import InvalidAmountError, InvalidCurrencyError

AMOUNT_DECIMAL_PLACES = 4
AMOUNT_QUANTUM = Decimal("0.0001")
DEFAULT_ROUNDING = ROUND_HALF_UP

# Decimal string with at most four fractional digits, no sign, no exponent
AMOUNT_PATTERN = re.compile(r"^\d+(\.\d{1,4})?$")


def round_amount(value: Decimal, rounding: str = DEFAULT_ROUNDING) -> Decimal:
    """
    Quantize a value to the fixed engine scale.

    Preconditions: value is a finite Decimal.
    Postconditions: Returns value with exactly four fractional digits.
    """
    return value.quantize(AMOUNT_QUANTUM, rounding=rounding)


def truncate_amount(value: Decimal) -> Decimal:
    """
    Quantize toward zero.

    Used for caps derived by multiplication (balance * percent) so the cap
    never exceeds the exact product.
    """
    return value.quantize(AMOUNT_QUANTUM, rounding=ROUND_DOWN)


def parse_amount(value: str | Decimal | int) -> Decimal:
    """
    Parse a transport amount into a fixed-scale Decimal.

    Strings must match AMOUNT_PATTERN; Decimal and int inputs must be finite,
    non-negative and carry no more than four fractional digits.

    Raises:
        InvalidAmountError: on anything else.
    """
    if isinstance(value, bool):
        raise InvalidAmountError(str(value), "not a decimal amount")
    if isinstance(value, str):
        text = value.strip()
        if not AMOUNT_PATTERN.match(text):
            raise InvalidAmountError(value, "expected a decimal string with up to 4 decimals")
        return round_amount(Decimal(text))
    if isinstance(value, int):
        value = Decimal(value)
    if not isinstance(value, Decimal):
        raise InvalidAmountError(str(value), "not a decimal amount")
    try:
        if not value.is_finite():
            raise InvalidAmountError(str(value), "not a finite number")
        if value < 0:
            raise InvalidAmountError(str(value), "must not be negative")
        if value != value.quantize(AMOUNT_QUANTUM, rounding=ROUND_DOWN):
            raise InvalidAmountError(str(value), "more than 4 decimal places")
    except InvalidOperation as e:
        raise InvalidAmountError(str(value), "not a decimal amount") from e
    return round_amount(value)


def format_amount(value: Decimal) -> str:
    """Render an amount for transport: fixed-point, four decimals."""
    return f"{round_amount(value):.4f}"


# ISO 4217 Currency Codes
ISO_4217_CURRENCIES: frozenset[str] = frozenset({
    "USD", "EUR", "GBP", "JPY", "CHF", "CAD", "AUD", "NZD",
    "AED", "ARS", "BGN", "BHD", "BRL", "CLP", "CNY", "COP", "CZK",
    "DKK", "DZD", "EGP", "HKD", "HUF", "IDR", "ILS", "INR", "ISK",
    "JOD", "KES", "KRW", "KWD", "MAD", "MXN", "MYR", "NGN", "NOK",
    "OMR", "PEN", "PHP", "PKR", "PLN", "QAR", "RON", "RSD", "RUB",
    "SAR", "SEK", "SGD", "THB", "TND", "TRY", "TWD", "UAH", "UYU",
    "VND", "XAF", "XOF", "ZAR",
})


def validate_currency(currency: str) -> str:
    """
    Validate that a currency code is a known ISO 4217 code.

    Returns:
        The validated currency code (uppercase, trimmed).

    Raises:
        InvalidCurrencyError: If the currency code is not valid.
    """
    if not currency or not isinstance(currency, str):
        raise InvalidCurrencyError(str(currency))

    normalized = currency.upper().strip()
    if normalized not in ISO_4217_CURRENCIES:
        raise InvalidCurrencyError(currency)
    return normalized
