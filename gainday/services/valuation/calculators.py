# gainday/services/valuation/calculators.py
"""
Point-in-time valuation calculators.

- PositionCalculator: Folds a holding's transactions into a PositionState
- ValuationCalculator: Values one position against a quote and FX rate

Both are stateless and raise nothing for missing data: an absent quote,
price or previous close degrades to zero (or to the effective price for
the previous close), never to an exception.

Usage:
    position = PositionCalculator().calculate(holding.transactions)
    valuation = ValuationCalculator().value_holding(holding, position, quote, fx_rate)
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING

from gainday.models import Holding, Transaction, TransactionType
from gainday.services.constants import PERCENT_SCALE, ZERO
from gainday.services.valuation.types import HoldingValuation, PositionState

if TYPE_CHECKING:
    from gainday.services.market_data.base import Quote

logger = logging.getLogger(__name__)


# =============================================================================
# POSITION CALCULATOR
# =============================================================================

class PositionCalculator:
    """
    Derives quantity, weighted average cost and realized P&L from
    transactions. Nothing derived is ever stored on the holding, so deleting
    a transaction needs no repair: the next calculation simply omits it.

    Walk (transactions sorted by trade_date, then id):
        BUY:      cost += qty × price + fee;  quantity += qty
        SELL:     if quantity > 0:
                      avg = cost / quantity
                      cost -= qty × avg
                      realized += qty × price - qty × avg - fee
                  quantity -= qty
        DIVIDEND: dividends += price × qty   (quantity unaffected)

    average_cost = cost / quantity when quantity > 0, else 0.
    """

    def calculate(
            self,
            transactions: Iterable[Transaction],
            as_of: date | None = None,
    ) -> PositionState:
        """
        Fold transactions into a position.

        Args:
            transactions: The holding's transactions, any order
            as_of: When given, only transactions with trade_date <= as_of count

        Returns:
            PositionState (all zeros when nothing applies)
        """
        ordered = sorted(
            (t for t in transactions if as_of is None or t.trade_date <= as_of),
            key=lambda t: (t.trade_date, t.id or 0),
        )

        quantity = ZERO
        cost = ZERO
        realized = ZERO
        dividends = ZERO
        sell_fees = ZERO

        for txn in ordered:
            qty = Decimal(str(txn.quantity))
            price = Decimal(str(txn.price))
            fee = Decimal(str(txn.fee or 0))

            if txn.transaction_type == TransactionType.BUY:
                cost += qty * price + fee
                quantity += qty

            elif txn.transaction_type == TransactionType.SELL:
                if quantity > ZERO:
                    avg_before = cost / quantity
                    # Sell fee hits realized P&L, not the remaining cost
                    cost -= qty * avg_before
                    realized += qty * price - qty * avg_before - fee
                quantity -= qty
                sell_fees += fee

            elif txn.transaction_type == TransactionType.DIVIDEND:
                dividends += price * qty

        if quantity < ZERO:
            logger.warning(
                f"Transactions sell more than they buy "
                f"(quantity={quantity}); valued as closed"
            )

        average_cost = cost / quantity if quantity > ZERO else ZERO

        return PositionState(
            quantity=quantity,
            average_cost=average_cost,
            realized_pnl=realized,
            total_dividends=dividends,
            total_sell_fees=sell_fees,
        )

    def for_holding(self, holding: Holding, as_of: date | None = None) -> PositionState:
        return self.calculate(holding.transactions, as_of=as_of)


# =============================================================================
# VALUATION CALCULATOR
# =============================================================================

class ValuationCalculator:
    """
    Values a single holding position.

    Formula (all in account currency after × fx_rate):
        market_value           = effective_price × quantity × fx_rate
        cost_basis             = average_cost × quantity × fx_rate
        unrealized_pnl         = market_value - cost_basis
        unrealized_pnl_percent = unrealized_pnl / cost_basis × 100     (0 if cost_basis <= 0)
        daily_pnl              = (effective_price - previous_close) × quantity × fx_rate
        daily_pnl_percent      = daily_pnl / (previous_close × quantity × fx_rate) × 100
                                                                       (0 if denominator <= 0)

    Note:
        previous_close defaults to effective_price when the quote has none,
        which makes the daily P&L zero rather than the whole position value.
        With no usable price (no quote, or no regular price) every P&L
        figure is 0; the cost basis is still reported.
    """

    @staticmethod
    def effective_price(quote: Quote | None) -> Decimal:
        """
        Price to value a holding at, given the session.

        - PRE/PREPRE with a pre-market price: pre-market price
        - POST/POSTPOST with a post-market price: post-market price
        - otherwise the regular price, or 0 when it is missing
        """
        if quote is None:
            return ZERO

        state = quote.market_state
        if state is not None:
            if state.is_pre_market and quote.pre_market_price is not None:
                return quote.pre_market_price
            if state.is_post_market and quote.post_market_price is not None:
                return quote.post_market_price

        return quote.regular_price if quote.regular_price is not None else ZERO

    def value_position(
            self,
            position: PositionState,
            quote: Quote | None,
            fx_rate: Decimal,
    ) -> dict[str, Decimal]:
        """Core formulas, returned as a dict of named figures."""
        price = self.effective_price(quote)
        previous_close = (
            quote.previous_close
            if quote is not None and quote.previous_close is not None
            else price
        )
        quantity = position.quantity

        market_value = price * quantity * fx_rate
        cost_basis = position.average_cost * quantity * fx_rate

        # Unpriced holdings report no P&L at all
        if price <= ZERO:
            unrealized = unrealized_pct = daily = daily_pct = ZERO
        else:
            unrealized = market_value - cost_basis
            unrealized_pct = unrealized / cost_basis * PERCENT_SCALE if cost_basis > ZERO else ZERO

            daily = (price - previous_close) * quantity * fx_rate
            previous_value = previous_close * quantity * fx_rate
            daily_pct = daily / previous_value * PERCENT_SCALE if previous_value > ZERO else ZERO

        return {
            "effective_price": price,
            "previous_close": previous_close,
            "market_value": market_value,
            "cost_basis": cost_basis,
            "unrealized_pnl": unrealized,
            "unrealized_pnl_percent": unrealized_pct,
            "daily_pnl": daily,
            "daily_pnl_percent": daily_pct,
        }

    def value_holding(
            self,
            holding: Holding,
            position: PositionState,
            quote: Quote | None,
            fx_rate: Decimal,
    ) -> HoldingValuation:
        """Value a holding record; see the class docstring for the formulas."""
        figures = self.value_position(position, quote, fx_rate)

        if quote is None:
            logger.debug(f"No quote for {holding.symbol}; valued at 0")

        return HoldingValuation(
            holding_id=holding.id,
            symbol=holding.symbol,
            name=holding.name or (quote.name if quote and quote.name else holding.symbol),
            asset_type=holding.asset_type,
            currency=holding.currency,
            quantity=position.quantity,
            fx_rate=fx_rate,
            has_quote=quote is not None,
            **figures,
        )
