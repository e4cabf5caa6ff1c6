# gainday/services/exceptions.py
"""
Service layer exceptions.

Only transport and persistence failures are raised. Missing data (no
quote, no close, no FX rate) degrades to zero or a lookback value and is
logged instead.

Exception Hierarchy:
    ServiceError (base)
    ├── NotFoundError
    │   ├── AccountNotFoundError
    │   └── SnapshotNotFoundError
    ├── MarketDataError
    │   ├── ProviderUnavailableError
    │   ├── TickerNotFoundError
    │   └── RateLimitError
    ├── FXRateError
    │   ├── FXProviderError
    │   └── FXConversionError
    └── SnapshotError
        └── SnapshotPersistenceError
"""

from datetime import date


class ServiceError(Exception):
    """
    Base exception for all service layer errors.

    Attributes:
        message: Human-readable error description
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


# =============================================================================
# NOT FOUND ERRORS
# =============================================================================


class NotFoundError(ServiceError):
    """
    Base exception for resource not found errors.

    Attributes:
        resource_type: Type of resource (e.g., "Account", "Snapshot")
        resource_id: Identifier of the resource
    """

    def __init__(
            self,
            message: str,
            resource_type: str | None = None,
            resource_id: int | str | None = None,
    ) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(message)


class AccountNotFoundError(NotFoundError):
    def __init__(self, account_id: int) -> None:
        self.account_id = account_id
        super().__init__(
            f"Account {account_id} not found",
            resource_type="Account",
            resource_id=account_id,
        )


class SnapshotNotFoundError(NotFoundError):
    def __init__(self, snapshot_id: int) -> None:
        self.snapshot_id = snapshot_id
        super().__init__(
            f"Snapshot {snapshot_id} not found",
            resource_type="Snapshot",
            resource_id=snapshot_id,
        )


# =============================================================================
# MARKET DATA PROVIDER ERRORS
# =============================================================================


class MarketDataError(ServiceError):
    """
    Base exception for market data provider failures.

    Attributes:
        provider: Name of the provider that failed
        retryable: Whether MarketDataProvider retries the call with backoff
    """

    retryable: bool = False

    def __init__(self, message: str, provider: str | None = None) -> None:
        self.provider = provider
        super().__init__(message)


class ProviderUnavailableError(MarketDataError):
    """
    Raised when a market data provider is temporarily unavailable
    (network timeout, 5xx, maintenance).
    """

    retryable = True

    def __init__(self, provider: str, reason: str) -> None:
        message = f"Provider '{provider}' is unavailable: {reason}"
        super().__init__(message, provider=provider)
        self.reason = reason


class TickerNotFoundError(MarketDataError):
    """
    Raised when a symbol (or FX pair symbol) is unknown to the provider,
    or the provider has no price for it.
    """

    def __init__(self, symbol: str, provider: str) -> None:
        message = f"Symbol '{symbol}' not found by {provider}"
        super().__init__(message, provider=provider)
        self.symbol = symbol


class RateLimitError(MarketDataError):
    """
    Raised when the provider's rate limit has been exceeded.

    Attributes:
        retry_after: Seconds to wait before retrying (if provided by API)
    """

    retryable = True

    def __init__(self, provider: str, retry_after: int | None = None) -> None:
        message = f"Rate limit exceeded for provider '{provider}'"
        if retry_after:
            message += f" (retry after {retry_after}s)"
        super().__init__(message, provider=provider)
        self.retry_after = retry_after


def is_retryable(error: BaseException) -> bool:
    """True for market data errors that are worth retrying with backoff."""
    return isinstance(error, MarketDataError) and error.retryable


# =============================================================================
# FX RATE ERRORS
# =============================================================================


class FXRateError(ServiceError):
    """
    Base exception for FX rate errors.

    Attributes:
        from_currency: Source currency code
        to_currency: Target currency code
    """

    def __init__(
            self,
            message: str,
            from_currency: str | None = None,
            to_currency: str | None = None,
    ) -> None:
        self.from_currency = from_currency
        self.to_currency = to_currency
        super().__init__(message)


class FXProviderError(FXRateError):
    """
    Raised when fetching a live FX rate fails.

    Attributes:
        reason: Specific reason for failure
    """

    def __init__(self, from_currency: str, to_currency: str, reason: str) -> None:
        self.reason = reason
        super().__init__(
            f"FX rate {from_currency}->{to_currency} unavailable: {reason}",
            from_currency=from_currency,
            to_currency=to_currency,
        )


class FXConversionError(FXRateError):
    """
    Raised when a provider returns an unusable rate (zero, negative, NaN).

    Attributes:
        reason: Specific reason for conversion failure
    """

    def __init__(
            self,
            reason: str,
            from_currency: str | None = None,
            to_currency: str | None = None,
    ) -> None:
        self.reason = reason
        super().__init__(
            f"FX conversion error: {reason}",
            from_currency=from_currency,
            to_currency=to_currency,
        )


# =============================================================================
# SNAPSHOT ERRORS
# =============================================================================


class SnapshotError(ServiceError):
    pass


class SnapshotPersistenceError(SnapshotError):
    """
    Raised when a snapshot write fails. The transaction has already been
    rolled back when this propagates, so earlier writes are untouched.

    Attributes:
        snapshot_date: Date being written, if a single snapshot was involved
        account_id: Account being written (None for global or batch writes)
    """

    def __init__(
            self,
            reason: str,
            snapshot_date: date | None = None,
            account_id: int | None = None,
    ) -> None:
        self.reason = reason
        self.snapshot_date = snapshot_date
        self.account_id = account_id
        target = "global" if account_id is None else f"account {account_id}"
        where = f" for {target} on {snapshot_date}" if snapshot_date else ""
        super().__init__(f"Failed to persist snapshot{where}: {reason}")


__all__ = [
    # Base
    "ServiceError",
    # Not Found
    "NotFoundError",
    "AccountNotFoundError",
    "SnapshotNotFoundError",
    # Market Data
    "MarketDataError",
    "ProviderUnavailableError",
    "TickerNotFoundError",
    "RateLimitError",
    "is_retryable",
    # FX Rates
    "FXRateError",
    "FXProviderError",
    "FXConversionError",
    # Snapshots
    "SnapshotError",
    "SnapshotPersistenceError",
]
