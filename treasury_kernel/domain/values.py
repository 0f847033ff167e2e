"""
Values -- Immutable, self-validating domain value objects.

Responsibility:
    Provides the fixed-scale money type used by every allocation computation.
    Amounts are Decimals quantized to four fractional digits and always
    paired with their currency.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Imported by engines, module records and the API layer.

Invariants enforced:
    - Decimal-only arithmetic (never float).
    - Fixed scale: amount always has exactly four fractional digits.
    - ISO 4217 currency validated at construction time.
    - Arithmetic and comparisons never mix currencies.

Failure modes:
    - InvalidCurrencyError on an unknown currency code.
    - CurrencyMismatchError when arithmetic mixes currencies.
    - InvalidAmountError when a transport string cannot be parsed.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from treasury_kernel.db.types import (
    format_amount,
    parse_amount,
    round_amount,
    truncate_amount,
    validate_currency,
)
from treasury_kernel.exceptions import CurrencyMismatchError, InvalidAmountError


@dataclass(frozen=True, slots=True)
class Currency:
    """
    ISO 4217 currency code value object.

    Guarantees:
        - Immutable and hashable
        - code is always uppercase, trimmed and a known ISO 4217 code
    """

    code: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "code", validate_currency(self.code))

    def __str__(self) -> str:
        return self.code

    def __repr__(self) -> str:
        return f"Currency({self.code!r})"


@dataclass(frozen=True, slots=True)
class Money:
    """
    Fixed-scale monetary amount.

    Contract:
        Pairs a Decimal amount with its Currency.  The amount is quantized to
        four fractional digits on construction (ROUND_HALF_UP), so sums and
        differences of Money values are exact.

    Guarantees:
        - Immutable and hashable
        - amount is always a Decimal with exactly four fractional digits
        - Arithmetic and ordering enforce the same-currency constraint

    Non-goals:
        - Does NOT perform currency conversion
    """

    amount: Decimal
    currency: Currency

    def __post_init__(self) -> None:
        amount = self.amount
        if isinstance(amount, float):
            raise TypeError("Money amount must not be float")
        if not isinstance(amount, Decimal):
            try:
                amount = Decimal(str(amount))
            except (InvalidOperation, ValueError) as e:
                raise InvalidAmountError(str(self.amount), "not a decimal amount") from e
        if not amount.is_finite():
            raise InvalidAmountError(str(amount), "not a finite number")
        object.__setattr__(self, "amount", round_amount(amount))

        if isinstance(self.currency, str):
            object.__setattr__(self, "currency", Currency(self.currency))
        elif not isinstance(self.currency, Currency):
            raise TypeError(f"currency must be Currency or str, got {type(self.currency)}")

    @classmethod
    def of(cls, amount: Decimal | str | int, currency: str | Currency) -> Money:
        """
        Factory for internal values (already-trusted Decimals, ints or strings).

        Does not enforce the transport format; use ``parse`` at the boundary.
        """
        if isinstance(amount, (str, int)) and not isinstance(amount, bool):
            try:
                amount = Decimal(str(amount))
            except InvalidOperation as e:
                raise InvalidAmountError(str(amount), "not a decimal amount") from e
        return cls(amount=amount, currency=currency)

    @classmethod
    def parse(cls, value: str | Decimal | int, currency: str | Currency) -> Money:
        """
        Parse a transport amount (non-negative, at most four decimals).

        Raises:
            InvalidAmountError: if the value is malformed.
        """
        return cls(amount=parse_amount(value), currency=currency)

    @classmethod
    def zero(cls, currency: str | Currency) -> Money:
        """Create a zero amount in the given currency."""
        return cls(amount=Decimal("0"), currency=currency)

    @property
    def is_zero(self) -> bool:
        return self.amount == 0

    @property
    def is_positive(self) -> bool:
        return self.amount > 0

    @property
    def is_negative(self) -> bool:
        return self.amount < 0

    def to_str(self) -> str:
        """Transport representation, e.g. ``"100.5000"``."""
        return format_amount(self.amount)

    def scaled_down(self, ratio: Decimal) -> Money:
        """
        Multiply by a ratio, truncating toward zero.

        Used to derive tolerance caps: the result never exceeds the exact
        product ``amount * ratio``.
        """
        return Money(amount=truncate_amount(self.amount * ratio), currency=self.currency)

    def _check_currency(self, other: Money) -> None:
        if self.currency != other.currency:
            raise CurrencyMismatchError(self.currency.code, other.currency.code)

    def __add__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other)
        return Money(amount=self.amount + other.amount, currency=self.currency)

    def __sub__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other)
        return Money(amount=self.amount - other.amount, currency=self.currency)

    def __neg__(self) -> Money:
        return Money(amount=-self.amount, currency=self.currency)

    def __abs__(self) -> Money:
        return Money(amount=abs(self.amount), currency=self.currency)

    def __lt__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other)
        return self.amount < other.amount

    def __le__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other)
        return self.amount <= other.amount

    def __gt__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other)
        return self.amount > other.amount

    def __ge__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other)
        return self.amount >= other.amount

    def __str__(self) -> str:
        return f"{self.to_str()} {self.currency.code}"

    def __repr__(self) -> str:
        return f"Money({self.to_str()!r}, {self.currency.code!r})"


def min_money(first: Money, *others: Money) -> Money:
    """Smallest of several same-currency amounts."""
    result = first
    for other in others:
        if other < result:
            result = other
    return result
