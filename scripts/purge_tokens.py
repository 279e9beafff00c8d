#!/usr/bin/env python3
"""
Delete expired and used password reset tokens.

Meant for a periodic job (cron, systemd timer).

Usage:
    python scripts/purge_tokens.py
    python scripts/purge_tokens.py --stats
"""
import argparse
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from branchgate.auth.errors import StoreError
from branchgate.auth.notifier import LoggingNotifier
from branchgate.auth.password_reset import PasswordResetService
from branchgate.database.connection import Database
from branchgate.database.credential_store import CredentialStore
from branchgate.security.audit import AuditTrail

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Purge expired reset tokens")
    parser.add_argument("--stats", action="store_true", help="Print token counts before purging")
    parser.add_argument("--database-url", help="Overrides DATABASE_URL / POSTGRES_* settings")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    db = Database(args.database_url)
    resets = PasswordResetService(CredentialStore(db), LoggingNotifier(), AuditTrail(db))
    try:
        if args.stats:
            for state, count in resets.token_stats().items():
                print(f"  {state}: {count}")
        purged = resets.purge_expired()
    except StoreError as e:
        logger.error(f"Purge failed: {e.detail}")
        return 1
    finally:
        db.dispose()

    print(f"✓ Purged {purged} reset tokens")
    return 0


if __name__ == "__main__":
    sys.exit(main())
