#!/usr/bin/env python3
"""
Provision a principal (branch account) out of band.

Without --password the principal must complete registration
(POST /auth/register) before it can log in.

Usage:
    python scripts/provision_principal.py branch@client.com --name "Branch North"
    python scripts/provision_principal.py admin@client.com --password --verified
"""
import argparse
import getpass
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from branchgate.auth.errors import StoreError
from branchgate.database.connection import Database
from branchgate.database.credential_store import CredentialStore, hash_password

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Provision a BranchGate principal")
    parser.add_argument("email", help="Identity address")
    parser.add_argument("--name", dest="display_name", help="Display name")
    parser.add_argument("--password", action="store_true", help="Prompt for an initial password")
    parser.add_argument("--verified", action="store_true", help="Mark the email as already verified")
    parser.add_argument("--disabled", action="store_true", help="Create with login disabled")
    parser.add_argument("--database-url", help="Overrides DATABASE_URL / POSTGRES_* settings")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    password_hash = None
    if args.password:
        password = getpass.getpass("Password: ")
        if len(password) < 8:
            print("Password must be at least 8 characters", file=sys.stderr)
            return 2
        if password != getpass.getpass("Repeat password: "):
            print("Passwords do not match", file=sys.stderr)
            return 2
        password_hash = hash_password(password)

    db = Database(args.database_url)
    store = CredentialStore(db)
    try:
        principal_id = store.create_principal(
            args.email,
            display_name=args.display_name,
            password_hash=password_hash,
            is_login_enabled=not args.disabled,
            is_verified=args.verified,
        )
    except ValueError as e:
        print(str(e), file=sys.stderr)
        return 1
    except StoreError as e:
        logger.error(f"Provisioning failed: {e.detail}")
        return 1
    finally:
        db.dispose()

    print(f"✓ Principal created: {principal_id}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
