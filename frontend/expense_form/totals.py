"""
Valid-line predicate and the totals every other component agrees on.

A line only counts when it has both a nature and an amount and that amount is
a positive number. Totals stay unrounded ``Decimal`` values; rounding belongs
to :mod:`expense_common.formatting`.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

from expense_common.formatting import parse_decimal

from .config import KILOMETRIC_RATE
from .state import ExpenseLine, FormState

ZERO = Decimal("0")


def is_claimed(line: ExpenseLine) -> bool:
    return bool(line.nature.strip() and line.amount.strip())


def line_amount(line: ExpenseLine) -> Optional[Decimal]:
    """Positive amount of a claimed line, None otherwise."""
    if not is_claimed(line):
        return None
    value = parse_decimal(line.amount)
    if value is None or value <= 0:
        return None
    return value


def valid_lines(state: FormState) -> List[ExpenseLine]:
    return [line for line in state.expenses if line_amount(line) is not None]


def kilometers(state: FormState) -> Decimal:
    value = parse_decimal(state.kilometers)
    if value is None or value <= 0:
        return ZERO
    return value


@dataclass(frozen=True)
class Totals:
    expenses: Decimal
    kilometric: Decimal

    @property
    def grand(self) -> Decimal:
        return self.expenses + self.kilometric


def compute_totals(state: FormState) -> Totals:
    expenses = sum((line_amount(line) for line in valid_lines(state)), ZERO)
    return Totals(expenses=expenses, kilometric=kilometers(state) * KILOMETRIC_RATE)
