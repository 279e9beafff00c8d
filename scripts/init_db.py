#!/usr/bin/env python3
"""
Initialize the BranchGate database schema.

Creates principals, token, session, login history and audit tables.
Safe to run repeatedly (existing tables are left alone).

Usage:
    python scripts/init_db.py
    DATABASE_URL=sqlite:///branchgate.db python scripts/init_db.py
"""
import argparse
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from branchgate.auth.errors import StoreError
from branchgate.database.connection import Database

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Create BranchGate tables")
    parser.add_argument("--database-url", help="Overrides DATABASE_URL / POSTGRES_* settings")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    db = Database(args.database_url)
    try:
        db.init_schema()
    except StoreError as e:
        logger.error(f"Schema initialization failed: {e.detail}")
        return 1
    finally:
        db.dispose()

    print("✓ Schema ready")
    return 0


if __name__ == "__main__":
    sys.exit(main())
