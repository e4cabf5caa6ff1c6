# gainday/services/valuation/aggregator.py
"""
Portfolio aggregation across holdings, accounts and currencies.

Two stages:
    1. aggregate_account: value every holding of one account in the
       account's currency (holding -> account rate)
    2. aggregate_global: convert every account result into the global base
       (account -> base rate) and sum, building the asset-type breakdown and
       the per-holding ranking in the same pass

The global stage only runs once every account result exists, so the
global snapshot always equals the sum of the account snapshots.

Rate dictionaries are keyed by pair_key(from, to), e.g. "USDJPY". A missing
pair is valued at 1.0 and recorded as a warning, never raised.

Usage:
    aggregator = PortfolioAggregator()
    account_results = [aggregator.aggregate_account(a, quotes, rates) for a in accounts]
    global_result = aggregator.aggregate_global(account_results, rates, "JPY")
"""

import logging
from collections.abc import Iterable, Mapping
from decimal import Decimal

from gainday.models import Account, AssetType
from gainday.services.constants import DEFAULT_FX_RATE, ONE, ZERO
from gainday.services.currency_cache import pair_key
from gainday.services.market_data.base import Quote
from gainday.services.valuation.calculators import ValuationCalculator
from gainday.services.valuation.projection import AccountProjection
from gainday.services.valuation.types import (
    AccountValuation,
    AssetTypeBreakdown,
    ConvertedAccountTotals,
    GlobalValuation,
    HoldingDailyPnL,
    PositionState,
)

logger = logging.getLogger(__name__)

_ASSET_TYPE_ORDER = {asset_type.value: index for index, asset_type in enumerate(AssetType)}


def required_pairs(accounts: Iterable[Account], base_currency: str) -> set[tuple[str, str]]:
    """
    Currency pairs needed to value the given accounts.

    Holding currency -> account currency for every holding, and account
    currency -> base currency for every account with holdings. Identity
    pairs are left out.
    """
    base = base_currency.upper()
    pairs: set[tuple[str, str]] = set()
    for account in accounts:
        if not account.holdings:
            continue
        account_currency = account.base_currency.upper()
        if account_currency != base:
            pairs.add((account_currency, base))
        for holding in account.holdings:
            if holding.currency != account_currency:
                pairs.add((holding.currency, account_currency))
    return pairs


class PortfolioAggregator:
    """
    Sums holding valuations into account and global totals.

    Example:
        aggregator = PortfolioAggregator()
        result = aggregator.aggregate(accounts, quotes, rates, base_currency="JPY")
        result.total_value, result.breakdown, result.holding_pnls
    """

    def __init__(
            self,
            calculator: ValuationCalculator | None = None,
            projection: AccountProjection | None = None,
    ) -> None:
        self._calculator = calculator or ValuationCalculator()
        self._projection = projection or AccountProjection()

    # =========================================================================
    # ACCOUNT STAGE
    # =========================================================================

    def aggregate_account(
            self,
            account: Account,
            quotes: Mapping[str, Quote],
            rates: Mapping[str, Decimal],
            positions: Mapping[int, PositionState] | None = None,
    ) -> AccountValuation:
        """
        Value every holding of an account in the account's currency.

        Args:
            account: Account with holdings (and their transactions) loaded
            quotes: Quotes keyed by holding symbol; missing = valued at 0
            rates: Rates keyed by pair_key
            positions: Positions keyed by holding ID; defaults to the current
                transaction-derived positions. A holding absent from the
                mapping is valued as closed.

        Returns:
            AccountValuation in account currency
        """
        account_currency = account.base_currency.upper()
        result = AccountValuation(
            account_id=account.id,
            account_name=account.name,
            currency=account_currency,
        )

        if not account.holdings:
            return result

        if positions is None:
            positions = self._projection.current(account)

        for holding in account.holdings:
            position = positions.get(holding.id, PositionState())
            if position.quantity < ZERO:
                position = PositionState()

            rate = self._lookup_rate(rates, holding.currency, account_currency, result.warnings)
            valuation = self._calculator.value_holding(
                holding, position, quotes.get(holding.symbol), rate
            )

            result.holdings.append(valuation)
            result.total_value += valuation.market_value
            result.total_cost += valuation.cost_basis
            result.daily_pnl += valuation.daily_pnl

        logger.debug(
            f"Account {account.id} ({account.name}): value={result.total_value} "
            f"cost={result.total_cost} daily={result.daily_pnl} {account_currency}"
        )
        return result

    # =========================================================================
    # GLOBAL STAGE
    # =========================================================================

    def aggregate_global(
            self,
            account_results: Iterable[AccountValuation],
            rates: Mapping[str, Decimal],
            base_currency: str,
    ) -> GlobalValuation:
        """
        Combine account results in the global base currency.

        Accounts without holdings contribute nothing and are left out of
        result.accounts. Breakdown slices and ranking entries are only built
        from holdings with a positive quantity.
        """
        base = base_currency.upper()
        result = GlobalValuation(base_currency=base)
        global_breakdown: dict[str, AssetTypeBreakdown] = {}

        for account in account_results:
            result.warnings.extend(account.warnings)
            if not account.has_holdings:
                continue

            rate = self._lookup_rate(rates, account.currency, base, result.warnings)
            converted = ConvertedAccountTotals(
                account_id=account.account_id,
                account_name=account.account_name,
                account_currency=account.currency,
                fx_rate=rate,
                total_value=account.total_value * rate,
                total_cost=account.total_cost * rate,
                daily_pnl=account.daily_pnl * rate,
            )
            account_breakdown: dict[str, AssetTypeBreakdown] = {}

            for holding in account.holdings:
                if holding.quantity <= ZERO:
                    continue

                asset_type = holding.asset_type.value
                for target in (global_breakdown, account_breakdown):
                    entry = target.get(asset_type)
                    if entry is None:
                        entry = AssetTypeBreakdown(asset_type=asset_type, currency=base)
                        target[asset_type] = entry
                    entry.value += holding.market_value * rate
                    entry.cost += holding.cost_basis * rate
                    entry.pnl += holding.daily_pnl * rate

                converted.holding_pnls.append(HoldingDailyPnL(
                    symbol=holding.symbol,
                    name=holding.name,
                    daily_pnl=holding.daily_pnl * rate,
                    daily_pnl_percent=holding.daily_pnl_percent,
                    market_value=holding.market_value * rate,
                ))

            converted.breakdown = self._ordered(account_breakdown)

            result.accounts.append(converted)
            result.holding_pnls.extend(converted.holding_pnls)
            result.total_value += converted.total_value
            result.total_cost += converted.total_cost
            result.daily_pnl += converted.daily_pnl

        result.breakdown = self._ordered(global_breakdown)

        logger.debug(
            f"Global ({base}): value={result.total_value} cost={result.total_cost} "
            f"daily={result.daily_pnl} accounts={len(result.accounts)}"
        )
        return result

    def aggregate(
            self,
            accounts: Iterable[Account],
            quotes: Mapping[str, Quote],
            rates: Mapping[str, Decimal],
            base_currency: str,
            positions_by_account: Mapping[int, Mapping[int, PositionState]] | None = None,
    ) -> GlobalValuation:
        """Run both stages over a set of accounts."""
        account_results = []
        for account in accounts:
            if not account.holdings:
                continue
            positions = positions_by_account.get(account.id) if positions_by_account is not None else None
            account_results.append(self.aggregate_account(account, quotes, rates, positions))
        return self.aggregate_global(account_results, rates, base_currency)

    # =========================================================================
    # HELPERS
    # =========================================================================

    @staticmethod
    def _lookup_rate(
            rates: Mapping[str, Decimal],
            from_currency: str,
            to_currency: str,
            warnings: list[str],
    ) -> Decimal:
        if from_currency.upper() == to_currency.upper():
            return ONE
        key = pair_key(from_currency, to_currency)
        rate = rates.get(key)
        if rate is None:
            message = f"Missing FX rate {key}, using {DEFAULT_FX_RATE}"
            if message not in warnings:
                logger.warning(message)
                warnings.append(message)
            return DEFAULT_FX_RATE
        return rate

    @staticmethod
    def _ordered(breakdown: dict[str, AssetTypeBreakdown]) -> list[AssetTypeBreakdown]:
        return sorted(
            breakdown.values(),
            key=lambda entry: _ASSET_TYPE_ORDER.get(entry.asset_type, len(_ASSET_TYPE_ORDER)),
        )
