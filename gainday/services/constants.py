# gainday/services/constants.py
"""
Business constants for the valuation and snapshot services.

Tunables that operators may want to change per deployment (TTL, history
range, fan-out) live in gainday.config.Settings; the values here are
fixed by the domain.

Usage:
    from gainday.services.constants import LOOKBACK_DAYS, ZERO
"""

from decimal import Decimal


# =============================================================================
# LOOKBACK SETTINGS
# =============================================================================

# Calendar days to walk back when a close or FX rate is missing for a date
# Covers a weekend plus a holiday or two; day 6 is never used
LOOKBACK_DAYS: int = 5

# Calendar days searched before a backfill date for the previous close
PREVIOUS_CLOSE_LOOKBACK_DAYS: int = 5


# =============================================================================
# FX SETTINGS
# =============================================================================

# Rate used when no live, historical or cached rate exists for a pair
DEFAULT_FX_RATE: Decimal = Decimal("1")

# Yahoo Finance FX pair symbol, e.g. "USDJPY=X"
FX_SYMBOL_TEMPLATE: str = "{from_currency}{to_currency}=X"


# =============================================================================
# WIDGET SUMMARY
# =============================================================================

# Maximum held positions included in the widget summary
WIDGET_HOLDINGS_LIMIT: int = 6


# =============================================================================
# DECIMAL PRECISION
# =============================================================================

# Prices, quantities and FX rates from providers: 8 decimal places
PRICE_PRECISION: Decimal = Decimal("0.00000001")

# Percent values are scaled by this (0.05 -> 5%)
PERCENT_SCALE: Decimal = Decimal("100")


# =============================================================================
# UTILITY CONSTANTS
# =============================================================================

ZERO: Decimal = Decimal("0")
ONE: Decimal = Decimal("1")
