#!/usr/bin/env python3
# init_db.py
"""
Database initialization script.

Creates the accounts, holdings, transactions and daily_snapshots tables
for the configured DATABASE_URL. Safe to run repeatedly.

This script can be run from any directory:
    python init_db.py
    python /path/to/gainday-engine/init_db.py
"""
import sys
from pathlib import Path

# Add the project root to Python path so 'gainday' is importable
project_dir = Path(__file__).parent
sys.path.insert(0, str(project_dir))

from gainday.config import settings
from gainday.database import init_db
from gainday.utils.logging import setup_logging


if __name__ == "__main__":
    setup_logging(level=settings.log_level, log_format=settings.log_format)
    init_db()
