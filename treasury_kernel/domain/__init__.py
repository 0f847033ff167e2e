"""Pure domain value objects and the injectable clock."""

from treasury_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from treasury_kernel.domain.values import Currency, Money, min_money

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "Currency",
    "Money",
    "min_money",
]
