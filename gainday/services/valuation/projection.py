# gainday/services/valuation/projection.py
"""
Positions of an account's holdings as of a date.

The backfill values each historical day with the position the account
actually had then: only transactions with trade_date <= that day count.
"""

import logging
from datetime import date

from gainday.models import Account
from gainday.services.valuation.calculators import PositionCalculator
from gainday.services.valuation.types import PositionState

logger = logging.getLogger(__name__)


class AccountProjection:
    """
    Projects every holding of an account to a PositionState.

    Example:
        projection = AccountProjection()
        positions = projection.as_of(account, date(2024, 1, 4))
        positions[holding.id].quantity
    """

    def __init__(self, calculator: PositionCalculator | None = None) -> None:
        self._calculator = calculator or PositionCalculator()

    def as_of(self, account: Account, as_of_date: date) -> dict[int, PositionState]:
        """Positions keyed by holding ID using transactions on or before as_of_date."""
        return {
            holding.id: self._calculator.calculate(holding.transactions, as_of=as_of_date)
            for holding in account.holdings
        }

    def current(self, account: Account) -> dict[int, PositionState]:
        """Positions keyed by holding ID using every transaction."""
        return {
            holding.id: self._calculator.calculate(holding.transactions)
            for holding in account.holdings
        }
