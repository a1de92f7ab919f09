"""
Seed script for the multi-agency ledger.

Creates:
- 4 Agencies (Yaoundé, Douala, Bafoussam, and an inactive Garoua branch)
- 7 Users covering every role (password for all: ledger123)
- 4 Clients and 4 Contracts (DRAFT, ACTIVE, CLOSED, and one in another agency)

Ids are allocated in insertion order, so a fresh store always gets the same
ids. The engine tests reuse seed_store() against the in-memory backend.
"""

import asyncio
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Dict, Any
import sys

# Add parent directory to path for imports
sys.path.append(str(Path(__file__).parent))

from auth import hash_password
from config import LEDGER_STORE, MONGO_URL, DB_NAME
from ledger.store import build_store

SEED_PASSWORD = "ledger123"

AGENCIES = [
    {"agency_code": "YDE", "agency_name": "Yaoundé Centre", "city": "Yaoundé", "is_active": True},
    {"agency_code": "DLA", "agency_name": "Douala Akwa", "city": "Douala", "is_active": True},
    {"agency_code": "BFS", "agency_name": "Bafoussam", "city": "Bafoussam", "is_active": True},
    {"agency_code": "GAR", "agency_name": "Garoua", "city": "Garoua", "is_active": False},
]

# agency is the 1-based position in AGENCIES
USERS = [
    {"username": "ceo", "full_name": "Marie Atangana", "role": "CEO", "agency": None, "is_active": True},
    {"username": "dla.manager", "full_name": "Samuel Eto", "role": "AGENCY_MANAGER", "agency": 2, "is_active": True},
    {"username": "dla.staff", "full_name": "Brigitte Ngo", "role": "AGENCY_STAFF", "agency": 2, "is_active": True},
    {"username": "dla.former", "full_name": "Luc Tchoumi", "role": "AGENCY_STAFF", "agency": 2, "is_active": False},
    {"username": "yde.manager", "full_name": "Henri Essomba", "role": "AGENCY_MANAGER", "agency": 1, "is_active": True},
    {"username": "auditor", "full_name": "Grace Manga", "role": "AUDIT", "agency": None, "is_active": True},
    {"username": "yde.staff", "full_name": "Alice Owona", "role": "AGENCY_STAFF", "agency": 1, "is_active": True},
]

CLIENTS = [
    {
        "national_id": "CM100000001", "full_name": "Jean Mbarga", "email": "jean.mbarga@example.cm",
        "phone": "+237670000001", "address": "Rue Joss, Douala", "date_of_birth": datetime(1985, 6, 20),
        "agency": 2, "status": "ACTIVE", "registration_date": datetime(2024, 1, 10), "created_by": 2,
    },
    {
        "national_id": "CM100000002", "full_name": "Aminatou Bello", "email": None,
        "phone": "+237670000002", "address": None, "date_of_birth": datetime(1990, 11, 2),
        "agency": 2, "status": "ACTIVE", "registration_date": datetime(2024, 3, 1), "created_by": 3,
    },
    {
        "national_id": "CM100000003", "full_name": "Paul Nkodo", "email": "paul.nkodo@example.cm",
        "phone": None, "address": None, "date_of_birth": None,
        "agency": 2, "status": "SUSPENDED", "registration_date": datetime(2023, 9, 15), "created_by": None,
    },
    {
        "national_id": "CM100000004", "full_name": "Claire Fotso", "email": "claire.fotso@example.cm",
        "phone": "+237690000004", "address": "Bastos, Yaoundé", "date_of_birth": datetime(1978, 2, 28),
        "agency": 1, "status": "ACTIVE", "registration_date": datetime(2024, 2, 20), "created_by": 5,
    },
]

# client is the 1-based position in CLIENTS
CONTRACTS = [
    {"contract_number": "CTR-2024-0001", "client": 1, "agency": 2, "contract_type": "LOAN",
     "amount": Decimal("500000.00"), "status": "DRAFT"},
    {"contract_number": "CTR-2024-0002", "client": 2, "agency": 2, "contract_type": "SAVINGS",
     "amount": Decimal("250000.00"), "status": "ACTIVE"},
    {"contract_number": "CTR-2023-0003", "client": 3, "agency": 2, "contract_type": "LOAN",
     "amount": Decimal("100000.00"), "status": "CLOSED"},
    {"contract_number": "CTR-2024-0004", "client": 4, "agency": 1, "contract_type": "LOAN",
     "amount": Decimal("750000.00"), "status": "ACTIVE"},
]


async def seed_store(store, hashed_password: str) -> Dict[str, Any]:
    """
    Insert the reference data into an empty store.

    Returns the allocated ids per collection, in seed order.
    """
    created_at = datetime(2024, 1, 1)
    ids = {"agencies": [], "users": [], "clients": [], "contracts": []}

    for agency in AGENCIES:
        ids["agencies"].append(await store.insert_agency(dict(agency)))

    def agency_id(position):
        return ids["agencies"][position - 1] if position else None

    for user in USERS:
        ids["users"].append(await store.insert_user({
            "username": user["username"],
            "email": f"{user['username']}@ledger.example.cm",
            "full_name": user["full_name"],
            "role": user["role"],
            "agency_id": agency_id(user["agency"]),
            "hashed_password": hashed_password,
            "is_active": user["is_active"],
        }))

    for client in CLIENTS:
        doc = {k: v for k, v in client.items() if k not in ("agency", "created_by")}
        doc["agency_id"] = agency_id(client["agency"])
        doc["created_by"] = ids["users"][client["created_by"] - 1] if client["created_by"] else None
        doc["created_at"] = created_at
        ids["clients"].append(await store.insert_client(doc))

    for contract in CONTRACTS:
        ids["contracts"].append(await store.insert_contract({
            "contract_number": contract["contract_number"],
            "client_id": ids["clients"][contract["client"] - 1],
            "agency_id": agency_id(contract["agency"]),
            "contract_type": contract["contract_type"],
            "amount": contract["amount"],
            "start_date": datetime(2024, 1, 15),
            "end_date": datetime(2026, 1, 15),
            "status": contract["status"],
            "updated_at": created_at,
        }))

    return ids


async def seed_database():
    """Seed the configured store with initial data"""

    store = build_store(LEDGER_STORE, mongo_url=MONGO_URL, db_name=DB_NAME)

    print("🌱 Starting database seeding...")

    try:
        await store.ensure_indexes()

        if await store.find_user_by_username(USERS[0]["username"]):
            print("   ⚠️  Seed data already present. Skipping...")
            return

        ids = await seed_store(store, hash_password(SEED_PASSWORD))

        # ============================================
        # SUMMARY
        # ============================================
        print("\n" + "="*60)
        print("✨ DATABASE SEEDING COMPLETE ✨")
        print("="*60)
        for name, created in ids.items():
            print(f"   ✅ {name}: {len(created)} created (ids {created})")
        print("\n👤 Users:")
        for user in USERS:
            print(f"   - {user['username']} ({user['role']})")
        print(f"🔑 Password for all users: {SEED_PASSWORD}")
        print("\n⚠️  SECURITY: Change passwords after first login!")
        print("\n📖 API Documentation: http://localhost:8001/docs")
        print("="*60)

    except Exception as e:
        print(f"\n❌ Error during seeding: {str(e)}")
        raise
    finally:
        await store.close()


if __name__ == "__main__":
    asyncio.run(seed_database())
