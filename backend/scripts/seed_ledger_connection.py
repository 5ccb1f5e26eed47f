#!/usr/bin/env python
"""
Seed script storing OAuth tokens for one ledger tenant.
Run with: cd backend; python scripts/seed_ledger_connection.py
Requires DATABASE_URL, ENCRYPTION_KEY, LEDGER_TENANT_ID, LEDGER_ACCESS_TOKEN
and LEDGER_REFRESH_TOKEN in the environment or .env.
"""

import os
import sys

# Add backend to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from datetime import timedelta

import ledger_sync.models  # noqa: F401
from ledger_sync.config import settings
from ledger_sync.database import SessionLocal
from ledger_sync.models.ledger_connection import LedgerConnection
from ledger_sync.utils.encrypt import encrypt_data
from ledger_sync.utils.timeutils import utcnow


def seed_ledger_connection():
    tenant_id = os.getenv('LEDGER_TENANT_ID', settings.ledger_tenant_id)
    access_token = os.getenv('LEDGER_ACCESS_TOKEN')
    refresh_token = os.getenv('LEDGER_REFRESH_TOKEN')
    expires_in = int(os.getenv('LEDGER_EXPIRES_IN', '1800'))

    if not tenant_id or not access_token or not refresh_token:
        print("LEDGER_TENANT_ID, LEDGER_ACCESS_TOKEN and LEDGER_REFRESH_TOKEN must be set.")
        sys.exit(1)

    db = SessionLocal()
    try:
        connection = db.query(LedgerConnection).filter(LedgerConnection.tenant_id == tenant_id).first()
        if connection is None:
            connection = LedgerConnection(tenant_id=tenant_id, tenant_name=os.getenv('LEDGER_TENANT_NAME'))
            db.add(connection)
            print(f"Creating ledger connection for tenant {tenant_id}")
        else:
            print(f"Updating tokens of existing ledger connection for tenant {tenant_id}")

        connection.access_token = encrypt_data(access_token)
        connection.refresh_token = encrypt_data(refresh_token)
        connection.expires_at = utcnow() + timedelta(seconds=expires_in)
        connection.is_active = True
        db.commit()

        print("\nLedger connection seeded successfully!")
        print("Next steps:")
        print("1. Set LEDGER_CLIENT_ID and LEDGER_CLIENT_SECRET so tokens can be refreshed")
        print("2. Trigger a dry run: POST /api/v1/sync/run with {\"dry_run\": true}")
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == '__main__':
    seed_ledger_connection()
