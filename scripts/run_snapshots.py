#!/usr/bin/env python3
# scripts/run_snapshots.py
"""
Run a snapshot job against the configured database.

Meant to be called by a scheduler (cron, launchd) for the daily refresh,
and by hand after an import for the backfill.

Usage:
    python -m scripts.run_snapshots refresh
    python -m scripts.run_snapshots backfill --base-currency USD
    python -m scripts.run_snapshots rankings
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

project_dir = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_dir))

from gainday.config import settings
from gainday.database import SessionLocal, init_db
from gainday.services.accounts import load_accounts
from gainday.services.currency_cache import CurrencyConversionCache
from gainday.services.market_data import YahooFinanceProvider
from gainday.services.snapshots import (
    DailySnapshotService,
    HistoricalBackfillEngine,
    SnapshotStore,
)
from gainday.utils.logging import setup_logging

logger = logging.getLogger(__name__)


async def main(job: str, base_currency: str) -> int:
    provider = YahooFinanceProvider(
        timeout=settings.market_data_timeout,
        max_concurrency=settings.max_concurrent_fetches,
    )
    cache = CurrencyConversionCache(provider)
    store = SnapshotStore(SessionLocal)

    db = SessionLocal()
    try:
        accounts = load_accounts(db)

        if job == "refresh":
            service = DailySnapshotService(store, cache, provider, base_currency=base_currency)
            result = await service.refresh_today(accounts)
            logger.info(f"Refresh {result.status}: {result.account_snapshots} account snapshots")
            return 0 if result.status != "failed" else 1

        engine = HistoricalBackfillEngine(store, cache, provider)
        if job == "backfill":
            result = await engine.run(accounts, base_currency)
            logger.info(
                f"Backfill {result.status}: {result.created_account_snapshots} account + "
                f"{result.created_global_snapshots} global snapshots"
            )
            return 0 if result.status != "failed" else 1

        updated = await engine.fill_missing_rankings(accounts, base_currency)
        logger.info(f"Rankings filled for {updated} snapshots")
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run a Gainday snapshot job")
    parser.add_argument("job", choices=["refresh", "backfill", "rankings"])
    parser.add_argument("--base-currency", default=settings.base_currency)
    args = parser.parse_args()

    setup_logging()
    init_db()
    sys.exit(asyncio.run(main(args.job, args.base_currency.upper())))
