"""
In-memory store behaviour (transactions, uniqueness, counters) and the audit
delete guard.
"""
from datetime import datetime

import pytest

from audit_service import AuditService
from ledger.errors import DuplicateKeyConflict, FinancialDeleteBlockedError
from ledger.store import InMemoryEntityStore, MongoEntityStore, build_store


class TestInMemoryStore:

    async def test_rollback_restores_everything(self, store):
        async def unit(session):
            await store.next_sequence("transactions", session=session)
            await store.insert_client({"national_id": "X1", "full_name": "X", "agency_id": 2}, session=session)
            await store.activate_contract(1, datetime(2024, 3, 15), session=session)
            raise RuntimeError("abort")

        with pytest.raises(RuntimeError):
            await store.run_in_transaction(unit)

        assert await store.find_client(national_id="X1") is None
        assert (await store.get_contract(1))["status"] == "DRAFT"
        assert await store.next_sequence("transactions") == 1

    async def test_commit_returns_callback_result(self, store):
        async def unit(session):
            return await store.next_sequence("transactions", session=session)

        assert await store.run_in_transaction(unit) == 1
        assert await store.next_sequence("transactions") == 2

    async def test_unique_national_id(self, store):
        with pytest.raises(DuplicateKeyConflict) as exc:
            await store.insert_client({"national_id": "CM100000001", "full_name": "Dup", "agency_id": 2})
        assert exc.value.field == "national_id"

    async def test_missing_email_is_not_unique_constrained(self, store):
        await store.insert_client({"national_id": "A1", "full_name": "A", "email": None, "agency_id": 2})
        await store.insert_client({"national_id": "A2", "full_name": "B", "email": None, "agency_id": 2})

    async def test_activate_only_from_draft(self, store):
        assert await store.activate_contract(1, datetime(2024, 3, 15)) is True
        assert await store.activate_contract(1, datetime(2024, 3, 15)) is False
        assert await store.activate_contract(9999, datetime(2024, 3, 15)) is False

    async def test_reads_are_copies(self, store):
        contract = await store.get_contract(1)
        contract["status"] = "CLOSED"
        assert (await store.get_contract(1))["status"] == "DRAFT"

    async def test_lock_contract_bumps_version(self, store):
        before = (await store.get_contract(2))["lock_version"]
        locked = await store.lock_contract(2)
        assert locked["lock_version"] == before + 1
        assert await store.lock_contract(9999) is None


class TestBuildStore:

    def test_memory(self):
        assert isinstance(build_store("memory"), InMemoryEntityStore)

    def test_mongo_is_lazy(self):
        store = build_store("mongo", mongo_url="mongodb://localhost:27017", db_name="ledger_test")
        assert isinstance(store, MongoEntityStore)
        assert store.db.name == "ledger_test"

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            build_store("sqlite")


class TestAuditService:

    @pytest.mark.parametrize("entity_type", ["TRANSACTION", "CONTRACT"])
    async def test_delete_guard(self, store, entity_type):
        audit = AuditService(store)
        with pytest.raises(FinancialDeleteBlockedError) as exc:
            await audit.log_action(entity_type, 1, "DELETE", user_id=1)
        assert exc.value.entity_type == entity_type
        assert await audit.get_audit_logs() == []

    async def test_delete_of_client_is_logged(self, store):
        audit = AuditService(store)
        await audit.log_action("CLIENT", 1, "DELETE", user_id=1)
        logs = await audit.get_audit_logs(entity_type="CLIENT")
        assert logs[0]["action_type"] == "DELETE"

    async def test_write_failure_outside_session_is_swallowed(self, store, monkeypatch):
        async def broken(doc, session=None):
            raise RuntimeError("disk full")

        monkeypatch.setattr(store, "insert_audit_log", broken)
        await AuditService(store).log_action("CLIENT", 1, "UPDATE", user_id=1)

    async def test_most_recent_first(self, store):
        times = iter([datetime(2024, 1, 1), datetime(2024, 2, 1)])
        audit = AuditService(store, clock=lambda: next(times))
        await audit.log_action("CLIENT", 1, "CREATE", user_id=1)
        await audit.log_action("CLIENT", 1, "UPDATE", user_id=1)

        logs = await audit.get_audit_logs(entity_type="CLIENT", entity_id=1)
        assert [log["action_type"] for log in logs] == ["UPDATE", "CREATE"]
