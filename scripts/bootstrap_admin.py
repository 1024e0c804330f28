#!/usr/bin/env python3
"""Bootstrap the first administrative account.

Usage:
    # Using environment variables:
    ADMIN_USER_NAME=rootadmin ADMIN_EMAIL=admin@example.com ADMIN_PASSWORD=changeme42 \
        ADMIN_PHONE=555-555-5555 python scripts/bootstrap_admin.py

    # Or with command line args:
    python scripts/bootstrap_admin.py --user-name rootadmin --email admin@example.com \
        --password changeme42 --phone 555-555-5555

Environment Variables:
    ADMIN_USER_NAME: User name for the admin account
    ADMIN_EMAIL: Email for the admin account
    ADMIN_PASSWORD: Password for the admin account
    ADMIN_PHONE: Contact phone for the admin account
    DATABASE_URL: PostgreSQL connection string (optional, uses memory store if not set)
"""
from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


async def bootstrap_admin(
    user_name: str, email: str, password: str, phone: str, dry_run: bool = False
) -> dict:
    """Create an admin account, or promote the account that owns ``email``.

    Returns:
        dict with account_id, email, and status
    """
    # Import here to avoid loading config before env vars are set
    from trustgate.service.runtime import get_runtime
    from trustgate.storage.models import ADMIN_ROLE

    runtime = get_runtime()
    existing = runtime.store.get_account_by_email(email)

    if existing:
        if existing.is_admin:
            print(f"Account {email} is already an admin (id: {existing.id})")
            return {"account_id": existing.id, "email": email, "status": "already_admin"}
        if dry_run:
            print(f"[DRY RUN] Would promote existing account {email} to admin")
            return {"account_id": existing.id, "email": email, "status": "dry_run"}
        existing.role = ADMIN_ROLE
        # goes through the manager so cached sessions pick up the new role
        promoted = await runtime.accounts.update_admin(existing)
        if not promoted.ok:
            raise RuntimeError(promoted.reason)
        print(f"Promoted existing account {email} to admin (id: {existing.id})")
        return {"account_id": existing.id, "email": email, "status": "promoted"}

    if dry_run:
        print(f"[DRY RUN] Would create admin account: {user_name} <{email}>")
        return {"account_id": None, "email": email, "status": "dry_run"}

    result = runtime.accounts.create(
        user_name=user_name,
        email=email,
        password=password,
        name="Administrator",
        phone=phone,
        role=ADMIN_ROLE,
        two_fa=True,
    )
    if not result.ok:
        raise RuntimeError(result.reason)
    account = result.value
    print(f"Created admin account: {user_name} (id: {account.id})")
    return {"account_id": account.id, "email": email, "status": "created"}


def main():
    parser = argparse.ArgumentParser(
        description="Bootstrap an admin account for trustgate",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--user-name",
        default=os.environ.get("ADMIN_USER_NAME"),
        help="Admin user name (or set ADMIN_USER_NAME env var)",
    )
    parser.add_argument(
        "--email",
        default=os.environ.get("ADMIN_EMAIL"),
        help="Admin email (or set ADMIN_EMAIL env var)",
    )
    parser.add_argument(
        "--password",
        default=os.environ.get("ADMIN_PASSWORD"),
        help="Admin password (or set ADMIN_PASSWORD env var)",
    )
    parser.add_argument(
        "--phone",
        default=os.environ.get("ADMIN_PHONE"),
        help="Admin phone number (or set ADMIN_PHONE env var)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )

    args = parser.parse_args()

    for flag, value in (
        ("--user-name/ADMIN_USER_NAME", args.user_name),
        ("--email/ADMIN_EMAIL", args.email),
        ("--password/ADMIN_PASSWORD", args.password),
        ("--phone/ADMIN_PHONE", args.phone),
    ):
        if not value:
            print(f"Error: {flag} required")
            sys.exit(1)

    if not os.environ.get("SHARED_FS_ROOT"):
        os.environ["SHARED_FS_ROOT"] = "/tmp/trustgate-bootstrap"

    if not os.environ.get("DATABASE_URL"):
        os.environ["USE_MEMORY_STORE"] = "true"
        print("Note: Using in-memory store (set DATABASE_URL for persistence)")

    os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")
    os.environ.setdefault("HOUSEKEEPING_ENABLED", "false")

    try:
        result = asyncio.run(
            bootstrap_admin(
                args.user_name, args.email, args.password, args.phone, args.dry_run
            )
        )
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)

    if result["status"] == "created":
        print("\nAdmin account created. Log in once to receive a device activation code.")
    elif result["status"] == "promoted":
        print("\nExisting account promoted to admin!")
    elif result["status"] == "already_admin":
        print("\nNo changes needed - account is already an admin.")


if __name__ == "__main__":
    main()
