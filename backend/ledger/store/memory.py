"""
In-process entity store.

Fast, non-persistent backend for development and testing. Transactions are
serialised with one asyncio lock and rolled back from an undo journal, which
gives the same all-or-nothing behaviour as the MongoDB backend.
"""

from collections import defaultdict
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional
import asyncio
import copy
import logging

from ledger.errors import DuplicateKeyConflict
from ledger.enums import ContractStatus
from ledger.store.base import (
    EntityStore,
    AGENCIES, USERS, CLIENTS, CONTRACTS, TRANSACTIONS, AUDIT_LOGS,
    CLIENT_SEARCH_FIELDS,
)

logger = logging.getLogger(__name__)


class MemorySession:
    """Undo journal for one in-memory transaction"""

    def __init__(self):
        self._undo: List[Callable[[], None]] = []

    def record(self, undo: Callable[[], None]):
        self._undo.append(undo)

    def rollback(self):
        while self._undo:
            self._undo.pop()()


class InMemoryEntityStore(EntityStore):

    UNIQUE_FIELDS = {
        AGENCIES: ("agency_code",),
        USERS: ("username", "email"),
        CLIENTS: ("national_id", "email"),
        CONTRACTS: ("contract_number",),
        TRANSACTIONS: ("transaction_ref",),
    }

    def __init__(self):
        self._collections: Dict[str, Dict[Any, Dict[str, Any]]] = defaultdict(dict)
        self._counters: Dict[str, int] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Primitives
    # ------------------------------------------------------------------

    async def run_in_transaction(self, callback: Callable[[Any], Awaitable[Any]]) -> Any:
        async with self._lock:
            session = MemorySession()
            try:
                return await callback(session)
            except BaseException:
                session.rollback()
                logger.debug("[MEMORY STORE] Transaction rolled back")
                raise

    async def next_sequence(self, name: str, session=None) -> int:
        previous = self._counters.get(name, 0)
        self._counters[name] = previous + 1
        if session is not None:
            session.record(lambda: self._counters.__setitem__(name, previous))
        return previous + 1

    def _check_unique(self, collection: str, doc: Dict[str, Any]):
        for field_name in self.UNIQUE_FIELDS.get(collection, ()):
            value = doc.get(field_name)
            if value is None:
                continue
            for existing in self._collections[collection].values():
                if existing["_id"] != doc["_id"] and existing.get(field_name) == value:
                    raise DuplicateKeyConflict(collection, field_name, value)

    async def _insert(self, collection: str, doc: Dict[str, Any], session=None) -> int:
        doc = copy.deepcopy(doc)
        if doc.get("_id") is None:
            doc["_id"] = await self.next_sequence(collection, session=session)
        doc_id = doc["_id"]
        if doc_id in self._collections[collection]:
            raise DuplicateKeyConflict(collection, "_id", doc_id)
        self._check_unique(collection, doc)
        self._collections[collection][doc_id] = doc
        if session is not None:
            session.record(lambda: self._collections[collection].pop(doc_id, None))
        return doc_id

    def _update(self, collection: str, doc_id: Any, changes: Dict[str, Any], session=None):
        current = self._collections[collection][doc_id]
        previous = copy.deepcopy(current)
        current.update(changes)
        if session is not None:
            session.record(lambda: self._collections[collection].__setitem__(doc_id, previous))

    def _get(self, collection: str, doc_id: Any) -> Optional[Dict[str, Any]]:
        doc = self._collections[collection].get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    def _all(self, collection: str) -> List[Dict[str, Any]]:
        return [copy.deepcopy(d) for _, d in sorted(self._collections[collection].items())]

    # ------------------------------------------------------------------
    # Agencies / users
    # ------------------------------------------------------------------

    async def insert_agency(self, doc, session=None) -> int:
        return await self._insert(AGENCIES, doc, session)

    async def get_agency(self, agency_id, session=None):
        return self._get(AGENCIES, agency_id)

    async def get_agencies(self, agency_ids: Iterable[int], session=None):
        result = {}
        for agency_id in set(agency_ids):
            agency = self._get(AGENCIES, agency_id)
            if agency is not None:
                result[agency_id] = agency
        return result

    async def insert_user(self, doc, session=None) -> int:
        return await self._insert(USERS, doc, session)

    async def get_users(self, user_ids: Iterable[int], session=None):
        result = {}
        for user_id in set(user_ids):
            user = self._get(USERS, user_id)
            if user is not None:
                result[user_id] = user
        return result

    async def find_user_by_username(self, username):
        for user in self._all(USERS):
            if user.get("username") == username:
                return user
        return None

    # ------------------------------------------------------------------
    # Clients
    # ------------------------------------------------------------------

    async def insert_client(self, doc, session=None) -> int:
        return await self._insert(CLIENTS, doc, session)

    async def get_client(self, client_id, session=None):
        return self._get(CLIENTS, client_id)

    async def find_client(self, national_id=None, email=None, session=None):
        for client in self._all(CLIENTS):
            if national_id is not None and client.get("national_id") == national_id:
                return client
            if email is not None and client.get("email") == email:
                return client
        return None

    async def list_clients(
        self,
        agency_id,
        status=None,
        search_term=None,
        sort_field="full_name",
        descending=False,
        limit=100,
        offset=0
    ):
        needle = search_term.lower() if search_term is not None else None
        rows = []
        for client in self._all(CLIENTS):
            if client.get("agency_id") != agency_id:
                continue
            if status is not None and client.get("status") != status:
                continue
            if needle is not None and not any(
                needle in (client.get(f) or "").lower() for f in CLIENT_SEARCH_FIELDS
            ):
                continue
            rows.append(client)

        # Nulls sort first ascending, matching MongoDB
        rows.sort(
            key=lambda c: (c.get(sort_field) is not None, c.get(sort_field)),
            reverse=descending
        )
        return rows[offset:offset + limit]

    async def find_clients(self, agency_id):
        return [c for c in self._all(CLIENTS) if c.get("agency_id") == agency_id]

    # ------------------------------------------------------------------
    # Contracts
    # ------------------------------------------------------------------

    async def insert_contract(self, doc, session=None) -> int:
        doc = dict(doc)
        doc.setdefault("lock_version", 0)
        return await self._insert(CONTRACTS, doc, session)

    async def get_contract(self, contract_id, session=None):
        return self._get(CONTRACTS, contract_id)

    async def lock_contract(self, contract_id, session=None):
        # The store-wide transaction lock already serialises writers
        if contract_id not in self._collections[CONTRACTS]:
            return None
        current = self._collections[CONTRACTS][contract_id]
        self._update(
            CONTRACTS, contract_id,
            {"lock_version": current.get("lock_version", 0) + 1},
            session
        )
        return self._get(CONTRACTS, contract_id)

    async def activate_contract(self, contract_id, updated_at: datetime, session=None) -> bool:
        contract = self._collections[CONTRACTS].get(contract_id)
        if contract is None or contract.get("status") != ContractStatus.DRAFT.value:
            return False
        self._update(
            CONTRACTS, contract_id,
            {"status": ContractStatus.ACTIVE.value, "updated_at": updated_at},
            session
        )
        return True

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def insert_transaction(self, doc, session=None) -> int:
        return await self._insert(TRANSACTIONS, doc, session)

    async def reference_exists(self, reference, session=None) -> bool:
        return any(
            t.get("transaction_ref") == reference
            for t in self._collections[TRANSACTIONS].values()
        )

    async def find_transactions(
        self,
        contract_id=None,
        agency_id=None,
        status=None,
        start=None,
        end=None,
        session=None
    ):
        rows = []
        for txn in self._all(TRANSACTIONS):
            if contract_id is not None and txn.get("contract_id") != contract_id:
                continue
            if agency_id is not None and txn.get("agency_id") != agency_id:
                continue
            if status is not None and txn.get("status") != status:
                continue
            if start is not None and txn["transaction_date"] < start:
                continue
            if end is not None and txn["transaction_date"] >= end:
                continue
            rows.append(txn)
        return rows

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    async def insert_audit_log(self, doc, session=None) -> None:
        await self._insert(AUDIT_LOGS, doc, session)

    async def find_audit_logs(self, entity_type=None, entity_id=None, limit=100):
        logs = [
            log for log in self._all(AUDIT_LOGS)
            if (entity_type is None or log.get("entity_type") == entity_type)
            and (entity_id is None or log.get("entity_id") == entity_id)
        ]
        logs.sort(key=lambda log: (log["timestamp"], log["_id"]), reverse=True)
        return logs[:limit]
