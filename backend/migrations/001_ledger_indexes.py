#!/usr/bin/env python3
"""
MIGRATION SCRIPT: Ledger collections and constraints

Creates:
1. agencies, users, clients, contracts, transactions, audit_logs, counters
2. Unique indexes on every natural key (partial on client email)
3. Query indexes for balance, statistics and client listing

Collections are created up front because a MongoDB transaction cannot
implicitly create one on older servers.

Run: python migrations/001_ledger_indexes.py
"""

import asyncio
import os
import sys
from datetime import datetime

# Add backend to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import MONGO_URL, DB_NAME
from ledger.store import MongoEntityStore
from ledger.store.base import AGENCIES, USERS, CLIENTS, CONTRACTS, TRANSACTIONS, AUDIT_LOGS, COUNTERS

LEDGER_COLLECTIONS = [AGENCIES, USERS, CLIENTS, CONTRACTS, TRANSACTIONS, AUDIT_LOGS, COUNTERS]


async def run_migration():
    """Execute the ledger index migration."""

    print(f"Connecting to: {MONGO_URL}")
    print(f"Database: {DB_NAME}")

    store = MongoEntityStore.from_url(MONGO_URL, DB_NAME)
    db = store.db

    try:
        # Test connection
        await store.client.admin.command('ping')
        print("✓ Connected to MongoDB")

        existing = await db.list_collection_names()

        # =====================================================
        # 1. Collections
        # =====================================================
        for name in LEDGER_COLLECTIONS:
            if name not in existing:
                await db.create_collection(name)
                print(f"✓ Created {name} collection")
            else:
                print(f"• {name} collection already exists")

        # =====================================================
        # 2. Indexes
        # =====================================================
        await store.ensure_indexes()

        index_count = 0
        for name in LEDGER_COLLECTIONS:
            indexes = await db[name].index_information()
            print(f"\n=== {name} ===")
            for index_name, info in indexes.items():
                unique = " (unique)" if info.get("unique") else ""
                print(f"  {index_name}: {info['key']}{unique}")
                index_count += 1

        # =====================================================
        # Migration metadata
        # =====================================================
        await db.migrations.update_one(
            {"migration_id": "001_ledger_indexes"},
            {"$set": {
                "migration_id": "001_ledger_indexes",
                "description": "Ledger collections and unique constraints",
                "collections": LEDGER_COLLECTIONS,
                "executed_at": datetime.utcnow(),
                "status": "success"
            }},
            upsert=True
        )
        print("\n✓ Migration record saved")

        print("\n" + "="*50)
        print("MIGRATION COMPLETE: Ledger indexes")
        print("="*50)

        return {
            "status": "success",
            "collections": LEDGER_COLLECTIONS,
            "indexes": index_count
        }

    except Exception as e:
        print(f"\n✗ Migration failed: {str(e)}")
        raise
    finally:
        await store.close()


if __name__ == "__main__":
    result = asyncio.run(run_migration())
    print(f"\nResult: {result}")
