"""
MongoDB entity store (Motor).

Provides:
1. Multi-document transactions with transient-error retry
2. Atomic named counters (findOneAndUpdate + $inc + upsert)
3. Contract write locks for check-then-write sequences
4. Unique indexes for every natural key

Requires a replica set (transactions are not available on a standalone mongod).
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional
import asyncio
import logging
import re

from bson import Decimal128
from bson.codec_options import CodecOptions, TypeCodec, TypeRegistry
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError
from pymongo.read_concern import ReadConcern
from pymongo.write_concern import WriteConcern

from ledger.errors import DuplicateKeyConflict
from ledger.enums import ContractStatus
from ledger.store.base import (
    EntityStore,
    AGENCIES, USERS, CLIENTS, CONTRACTS, TRANSACTIONS, AUDIT_LOGS, COUNTERS,
    CLIENT_SEARCH_FIELDS,
)

logger = logging.getLogger(__name__)


class DecimalCodec(TypeCodec):
    """Store Python Decimals as BSON Decimal128 and read them back as Decimal"""
    python_type = Decimal
    bson_type = Decimal128

    def transform_python(self, value):
        return Decimal128(value)

    def transform_bson(self, value):
        return value.to_decimal()


CODEC_OPTIONS = CodecOptions(type_registry=TypeRegistry([DecimalCodec()]))


class MongoEntityStore(EntityStore):

    MAX_RETRIES = 5
    RETRY_DELAY_MS = 100  # Base delay in milliseconds

    def __init__(self, client: AsyncIOMotorClient, db: AsyncIOMotorDatabase, max_retries: int = None):
        self.client = client
        self.db = db
        if max_retries is not None:
            self.MAX_RETRIES = max_retries

    @classmethod
    def from_url(cls, mongo_url: str, db_name: str, max_retries: int = None) -> "MongoEntityStore":
        client = AsyncIOMotorClient(mongo_url)
        db = client.get_database(db_name, codec_options=CODEC_OPTIONS)
        return cls(client, db, max_retries=max_retries)

    # ------------------------------------------------------------------
    # Primitives
    # ------------------------------------------------------------------

    async def run_in_transaction(self, callback: Callable[[Any], Awaitable[Any]]) -> Any:
        """
        Run callback(session) in a snapshot/majority transaction.

        Write conflicts (two sessions locking the same contract or bumping the
        same counter) surface as TransientTransactionError; the whole callback
        is re-run so it re-validates against committed state.
        """
        for attempt in range(self.MAX_RETRIES):
            try:
                async with await self.client.start_session() as session:
                    async with session.start_transaction(
                        read_concern=ReadConcern("snapshot"),
                        write_concern=WriteConcern("majority")
                    ):
                        return await callback(session)
            except PyMongoError as e:
                if e.has_error_label("TransientTransactionError") and attempt < self.MAX_RETRIES - 1:
                    logger.warning(f"[MONGO STORE] Transient transaction error, retry {attempt + 1}: {e}")
                    await asyncio.sleep(self.RETRY_DELAY_MS * (attempt + 1) / 1000)
                    continue
                raise

    async def next_sequence(self, name: str, session=None) -> int:
        """
        Uses findOneAndUpdate with $inc for thread-safe increment.
        Returns the NEW sequence number after increment.
        """
        result = await self.db[COUNTERS].find_one_and_update(
            {"_id": name},
            {
                "$inc": {"current_sequence": 1},
                "$set": {"updated_at": datetime.utcnow()},
                "$setOnInsert": {"created_at": datetime.utcnow()}
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
            session=session
        )
        return result["current_sequence"]

    async def _insert(self, collection: str, doc: Dict[str, Any], session=None) -> int:
        doc = dict(doc)
        if doc.get("_id") is None:
            doc["_id"] = await self.next_sequence(collection, session=session)
        try:
            await self.db[collection].insert_one(doc, session=session)
        except DuplicateKeyError as e:
            key_value = (e.details or {}).get("keyValue") or {}
            field_name, value = next(iter(key_value.items()), ("unknown", None))
            raise DuplicateKeyConflict(collection, field_name, value)
        return doc["_id"]

    async def _get_many(self, collection: str, ids: Iterable[Any], session=None) -> Dict[Any, Dict[str, Any]]:
        ids = list(set(ids))
        if not ids:
            return {}
        cursor = self.db[collection].find({"_id": {"$in": ids}}, session=session)
        return {doc["_id"]: doc async for doc in cursor}

    # ------------------------------------------------------------------
    # Agencies / users
    # ------------------------------------------------------------------

    async def insert_agency(self, doc, session=None) -> int:
        return await self._insert(AGENCIES, doc, session)

    async def get_agency(self, agency_id, session=None):
        return await self.db[AGENCIES].find_one({"_id": agency_id}, session=session)

    async def get_agencies(self, agency_ids, session=None):
        return await self._get_many(AGENCIES, agency_ids, session)

    async def insert_user(self, doc, session=None) -> int:
        return await self._insert(USERS, doc, session)

    async def get_users(self, user_ids, session=None):
        return await self._get_many(USERS, user_ids, session)

    async def find_user_by_username(self, username):
        return await self.db[USERS].find_one({"username": username})

    # ------------------------------------------------------------------
    # Clients
    # ------------------------------------------------------------------

    async def insert_client(self, doc, session=None) -> int:
        return await self._insert(CLIENTS, doc, session)

    async def get_client(self, client_id, session=None):
        return await self.db[CLIENTS].find_one({"_id": client_id}, session=session)

    async def find_client(self, national_id=None, email=None, session=None):
        clauses = []
        if national_id is not None:
            clauses.append({"national_id": national_id})
        if email is not None:
            clauses.append({"email": email})
        if not clauses:
            return None
        return await self.db[CLIENTS].find_one({"$or": clauses}, session=session)

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
        query: Dict[str, Any] = {"agency_id": agency_id}
        if status is not None:
            query["status"] = status
        if search_term is not None:
            # Literal substring: the caller's text is never a pattern
            pattern = {"$regex": re.escape(search_term), "$options": "i"}
            query["$or"] = [{f: pattern} for f in CLIENT_SEARCH_FIELDS]

        cursor = (
            self.db[CLIENTS]
            .find(query)
            .sort([(sort_field, DESCENDING if descending else ASCENDING), ("_id", ASCENDING)])
            .skip(offset)
            .limit(limit)
        )
        return await cursor.to_list(length=limit)

    async def find_clients(self, agency_id):
        return await self.db[CLIENTS].find({"agency_id": agency_id}).to_list(length=None)

    # ------------------------------------------------------------------
    # Contracts
    # ------------------------------------------------------------------

    async def insert_contract(self, doc, session=None) -> int:
        doc = dict(doc)
        doc.setdefault("lock_version", 0)
        return await self._insert(CONTRACTS, doc, session)

    async def get_contract(self, contract_id, session=None):
        return await self.db[CONTRACTS].find_one({"_id": contract_id}, session=session)

    async def lock_contract(self, contract_id, session=None):
        # SELECT ... FOR UPDATE: a write inside the transaction makes any
        # concurrent writer to this contract fail with a write conflict
        return await self.db[CONTRACTS].find_one_and_update(
            {"_id": contract_id},
            {"$inc": {"lock_version": 1}},
            return_document=ReturnDocument.AFTER,
            session=session
        )

    async def activate_contract(self, contract_id, updated_at, session=None) -> bool:
        result = await self.db[CONTRACTS].update_one(
            {"_id": contract_id, "status": ContractStatus.DRAFT.value},
            {"$set": {"status": ContractStatus.ACTIVE.value, "updated_at": updated_at}},
            session=session
        )
        return result.modified_count == 1

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def insert_transaction(self, doc, session=None) -> int:
        return await self._insert(TRANSACTIONS, doc, session)

    async def reference_exists(self, reference, session=None) -> bool:
        existing = await self.db[TRANSACTIONS].find_one(
            {"transaction_ref": reference},
            {"_id": 1},
            session=session
        )
        return existing is not None

    async def find_transactions(
        self,
        contract_id=None,
        agency_id=None,
        status=None,
        start=None,
        end=None,
        session=None
    ):
        query: Dict[str, Any] = {}
        if contract_id is not None:
            query["contract_id"] = contract_id
        if agency_id is not None:
            query["agency_id"] = agency_id
        if status is not None:
            query["status"] = status
        date_range = {}
        if start is not None:
            date_range["$gte"] = start
        if end is not None:
            date_range["$lt"] = end
        if date_range:
            query["transaction_date"] = date_range

        cursor = self.db[TRANSACTIONS].find(query, session=session).sort("_id", ASCENDING)
        return await cursor.to_list(length=None)

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    async def insert_audit_log(self, doc, session=None) -> None:
        await self._insert(AUDIT_LOGS, doc, session)

    async def find_audit_logs(self, entity_type=None, entity_id=None, limit=100):
        query: Dict[str, Any] = {}
        if entity_type:
            query["entity_type"] = entity_type
        if entity_id is not None:
            query["entity_id"] = entity_id
        cursor = self.db[AUDIT_LOGS].find(query).sort([("timestamp", DESCENDING), ("_id", DESCENDING)]).limit(limit)
        return await cursor.to_list(length=limit)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def ensure_indexes(self) -> None:
        """
        Create unique indexes on every natural key.
        Client email uniqueness only applies when an email is present.
        """
        await self.db[AGENCIES].create_index(
            [("agency_code", ASCENDING)], unique=True, name="unique_agency_code"
        )
        await self.db[USERS].create_index(
            [("username", ASCENDING)], unique=True, name="unique_username"
        )
        await self.db[USERS].create_index(
            [("email", ASCENDING)], unique=True, name="unique_user_email"
        )
        await self.db[CLIENTS].create_index(
            [("national_id", ASCENDING)], unique=True, name="unique_client_national_id"
        )
        await self.db[CLIENTS].create_index(
            [("email", ASCENDING)],
            unique=True,
            partialFilterExpression={"email": {"$type": "string"}},
            name="unique_client_email"
        )
        await self.db[CLIENTS].create_index(
            [("agency_id", ASCENDING), ("full_name", ASCENDING)], name="idx_client_agency_name"
        )
        await self.db[CONTRACTS].create_index(
            [("contract_number", ASCENDING)], unique=True, name="unique_contract_number"
        )
        await self.db[TRANSACTIONS].create_index(
            [("transaction_ref", ASCENDING)], unique=True, name="unique_transaction_ref"
        )
        await self.db[TRANSACTIONS].create_index(
            [("contract_id", ASCENDING), ("status", ASCENDING)], name="idx_txn_contract_status"
        )
        await self.db[TRANSACTIONS].create_index(
            [("agency_id", ASCENDING), ("transaction_date", ASCENDING)], name="idx_txn_agency_date"
        )
        await self.db[AUDIT_LOGS].create_index(
            [("entity_type", ASCENDING), ("entity_id", ASCENDING), ("timestamp", DESCENDING)],
            name="idx_audit_entity"
        )
        logger.info("Created ledger unique constraints and indexes")

    async def close(self) -> None:
        self.client.close()
