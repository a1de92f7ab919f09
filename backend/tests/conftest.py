"""
Shared fixtures: a freshly seeded in-memory store per test and a fixed clock.

Seeded ids (insertion order):
- agencies: 1 Yaoundé, 2 Douala, 3 Bafoussam, 4 Garoua (inactive)
- users: 1 CEO, 2 Douala manager, 3 Douala staff, 4 Douala staff (inactive),
  5 Yaoundé manager, 6 auditor, 7 Yaoundé staff
- clients: 1-3 Douala, 4 Yaoundé
- contracts: 1 DRAFT (Douala), 2 ACTIVE (Douala), 3 CLOSED (Douala),
  4 ACTIVE (Yaoundé)
"""
import os

os.environ.setdefault("LEDGER_STORE", "memory")

from datetime import datetime

import pytest

from audit_service import AuditService
from ledger.store import InMemoryEntityStore
from ledger.transaction_engine import TransactionEngine
from ledger.batch_processor import BatchProcessor
from ledger.statistics import TransactionStatisticsService
from ledger.client_service import ClientService
from seed import seed_store

FIXED_NOW = datetime(2024, 3, 15, 10, 30, 0)
TODAY_REF = "20240315"


def fixed_clock():
    return FIXED_NOW


@pytest.fixture
async def store():
    store = InMemoryEntityStore()
    await seed_store(store, hashed_password="not-a-real-hash")
    return store


@pytest.fixture
def audit_service(store):
    return AuditService(store, clock=fixed_clock)


@pytest.fixture
def engine(store, audit_service):
    return TransactionEngine(store, audit_service=audit_service, clock=fixed_clock)


@pytest.fixture
def batch_processor(engine):
    return BatchProcessor(engine, clock=fixed_clock)


@pytest.fixture
def stats_service(store):
    return TransactionStatisticsService(store, clock=fixed_clock)


@pytest.fixture
def client_service(store, audit_service):
    return ClientService(store, audit_service=audit_service, clock=fixed_clock)
