"""
Transaction engine tests: recording, balance effects, contract activation,
rollback, concurrency and deadlines.
"""
import asyncio
from decimal import Decimal

import pytest

from conftest import TODAY_REF
from ledger.errors import RejectionKind, LedgerRejection
from ledger.transaction_engine import TransactionEngine


class TestAddTransaction:

    async def test_first_payment_activates_draft_contract(self, engine, store):
        """Contract 1 (DRAFT, Douala), PAYMENT 50000 by Douala staff"""
        result = await engine.add_transaction(1, "PAYMENT", Decimal("50000"), 2, 3)

        assert result.success
        assert result.transaction_id == 1
        assert result.reference == f"TXN-{TODAY_REF}-000001"
        assert result.message == f"Transaction added successfully. Reference: {result.reference}"
        assert result.contract_activated is True

        contract = await store.get_contract(1)
        assert contract["status"] == "ACTIVE"

    async def test_second_payment_leaves_contract_active(self, engine, store):
        await engine.add_transaction(1, "PAYMENT", 1000, 2, 3)
        result = await engine.add_transaction(1, "PAYMENT", 2000, 2, 3)

        assert result.success
        assert result.contract_activated is False
        assert (await store.get_contract(1))["status"] == "ACTIVE"

    async def test_deposit_does_not_activate(self, engine, store):
        result = await engine.add_transaction(1, "DEPOSIT", 1000, 2, 3)

        assert result.success
        assert result.contract_activated is False
        assert (await store.get_contract(1))["status"] == "DRAFT"

    async def test_unknown_contract(self, engine, store):
        result = await engine.add_transaction(9999, "PAYMENT", 100, 2, 3)

        assert not result.success
        assert result.kind == RejectionKind.NOT_FOUND
        assert result.transaction_id == 0
        assert result.reference == ""
        assert result.message == "Contract ID 9999 does not exist"
        assert await store.find_transactions() == []

    async def test_oversized_amount_is_a_rejection(self, engine, store):
        result = await engine.add_transaction(2, "DEPOSIT", "1E+30", 2, 3)

        assert not result.success
        assert result.kind == RejectionKind.INVALID_AMOUNT
        assert result.transaction_id == 0
        assert await store.find_transactions() == []

    async def test_stored_row(self, engine, store):
        result = await engine.add_transaction(
            2, "DEPOSIT", "1500.50", 2, 3, description="Cash deposit", verified_by=2
        )

        rows = await store.find_transactions(contract_id=2)
        assert len(rows) == 1
        row = rows[0]
        assert row["_id"] == result.transaction_id
        assert row["transaction_ref"] == result.reference
        assert row["amount"] == Decimal("1500.50")
        assert row["currency"] == "XAF"
        assert row["status"] == "COMPLETED"
        assert row["notes"] == "Verified transaction"
        assert row["description"] == "Cash deposit"
        assert row["performed_by"] == 3
        assert row["verified_by"] == 2

    async def test_unverified_row_notes(self, engine, store):
        await engine.add_transaction(2, "DEPOSIT", 100, 2, 3)
        row = (await store.find_transactions(contract_id=2))[0]
        assert row["notes"] == "Pending verification"
        assert row["verified_by"] is None

    async def test_references_are_sequential(self, engine):
        refs = []
        for _ in range(3):
            result = await engine.add_transaction(2, "DEPOSIT", 10, 2, 3)
            refs.append(result.reference)
        assert refs == [f"TXN-{TODAY_REF}-00000{i}" for i in (1, 2, 3)]

    async def test_rejected_call_does_not_consume_sequence(self, engine):
        await engine.add_transaction(2, "WITHDRAWAL", 10, 2, 3)
        result = await engine.add_transaction(2, "DEPOSIT", 10, 2, 3)
        assert result.reference == f"TXN-{TODAY_REF}-000001"

    async def test_audit_log_written(self, engine, audit_service):
        result = await engine.add_transaction(2, "DEPOSIT", 10, 2, 3)

        logs = await audit_service.get_audit_logs(entity_type="TRANSACTION", entity_id=result.transaction_id)
        assert len(logs) == 1
        assert logs[0]["action_type"] == "CREATE"
        assert logs[0]["new_value_json"]["transaction_ref"] == result.reference


class TestBalance:

    async def test_balance_reflects_signed_amounts(self, engine):
        await engine.add_transaction(2, "DEPOSIT", 10000, 2, 3)
        await engine.add_transaction(2, "PAYMENT", 5000, 2, 3)
        await engine.add_transaction(2, "WITHDRAWAL", 3000, 2, 3)
        await engine.add_transaction(2, "FEE", 500, 2, 3)
        await engine.add_transaction(2, "INTEREST", 999, 2, 3)

        balance = await engine.get_contract_balance(2)
        assert balance["balance"] == 11500.0
        assert balance["contract_number"] == "CTR-2024-0002"
        assert balance["agency_id"] == 2

    async def test_withdrawal_over_balance(self, engine, store):
        await engine.add_transaction(2, "DEPOSIT", 100, 2, 3)
        result = await engine.add_transaction(2, "WITHDRAWAL", 100.01, 2, 3)

        assert result.kind == RejectionKind.INSUFFICIENT_BALANCE
        assert result.message == "Insufficient balance. Available: 100.00, Requested: 100.01"
        assert len(await store.find_transactions(contract_id=2)) == 1

    async def test_withdrawal_of_exact_balance(self, engine):
        await engine.add_transaction(2, "DEPOSIT", 100, 2, 3)
        result = await engine.add_transaction(2, "WITHDRAWAL", 100, 2, 3)

        assert result.success
        assert (await engine.get_contract_balance(2))["balance"] == 0.0

    async def test_balance_of_unknown_contract(self, engine):
        with pytest.raises(LedgerRejection) as exc:
            await engine.get_contract_balance(9999)
        assert exc.value.kind == RejectionKind.NOT_FOUND

    async def test_balance_scoped_to_agency(self, engine, monkeypatch):
        async def no_balance(*args, **kwargs):
            raise AssertionError("balance computed for another agency's contract")

        monkeypatch.setattr(engine.balance_calculator, "contract_balance", no_balance)
        with pytest.raises(LedgerRejection) as other:
            await engine.get_contract_balance(4, agency_id=2)
        with pytest.raises(LedgerRejection) as missing:
            await engine.get_contract_balance(9999, agency_id=2)

        assert other.value.kind == missing.value.kind == RejectionKind.NOT_FOUND
        assert other.value.message == "Contract ID 4 does not exist"


class TestReceipt:

    async def test_receipt_details(self, engine):
        await engine.add_transaction(2, "DEPOSIT", 2000, 2, 3)
        result = await engine.add_transaction_with_receipt(2, "WITHDRAWAL", 500, 2, 2, description="Cash out")

        assert result.success
        assert result.receipt_number == f"RC-{TODAY_REF}-000002"
        details = result.receipt_details
        assert details["transaction_ref"] == f"TXN-{TODAY_REF}-000002"
        assert details["client_name"] == "Aminatou Bello"
        assert details["contract_number"] == "CTR-2024-0002"
        assert details["agency"] == "Douala Akwa"
        assert details["city"] == "Douala"
        assert details["date"] == "2024-03-15"
        assert details["time"] == "10:30:00"
        assert details["balance_before"] == 2000.0
        assert details["balance_after"] == 1500.0

    async def test_rejected_receipt(self, engine):
        result = await engine.add_transaction_with_receipt(3, "PAYMENT", 500, 2, 2)

        assert result.kind == RejectionKind.INVALID_STATE
        assert result.receipt_number == ""
        assert result.receipt_details is None


class TestAtomicity:

    async def test_failed_activation_rolls_back_insert(self, engine, store, monkeypatch):
        async def broken_activate(*args, **kwargs):
            raise RuntimeError("storage unavailable")

        monkeypatch.setattr(store, "activate_contract", broken_activate)
        result = await engine.add_transaction(1, "PAYMENT", 100, 2, 3)

        assert result.kind == RejectionKind.INTERNAL_FAULT
        assert result.message == "Error adding transaction: storage unavailable"
        assert result.transaction_id == 0
        assert await store.find_transactions() == []
        assert (await store.get_contract(1))["status"] == "DRAFT"
        assert await store.next_sequence("transactions") == 1

    async def test_failed_audit_rolls_back_insert(self, engine, store, monkeypatch):
        async def broken_audit(*args, **kwargs):
            raise RuntimeError("audit write failed")

        monkeypatch.setattr(store, "insert_audit_log", broken_audit)
        result = await engine.add_transaction(1, "PAYMENT", 100, 2, 3)

        assert result.kind == RejectionKind.INTERNAL_FAULT
        assert await store.find_transactions() == []
        assert (await store.get_contract(1))["status"] == "DRAFT"


class TestConcurrency:

    async def test_concurrent_references_are_distinct(self, engine, store):
        results = await asyncio.gather(*[
            engine.add_transaction(2, "DEPOSIT", 100 + i, 2, 3) for i in range(20)
        ])

        assert all(r.success for r in results)
        refs = [r.reference for r in results]
        assert len(set(refs)) == 20
        assert len(await store.find_transactions(contract_id=2)) == 20

    async def test_concurrent_withdrawals_never_overdraw(self, engine):
        await engine.add_transaction(2, "DEPOSIT", 1000, 2, 3)

        results = await asyncio.gather(*[
            engine.add_transaction(2, "WITHDRAWAL", 400, 2, 3) for _ in range(5)
        ])

        succeeded = [r for r in results if r.success]
        refused = [r for r in results if r.kind == RejectionKind.INSUFFICIENT_BALANCE]
        assert len(succeeded) == 2
        assert len(refused) == 3
        assert (await engine.get_contract_balance(2))["balance"] == 200.0


class TestDeadline:

    async def test_deadline_exceeded_rolls_back(self, store, audit_service, monkeypatch):
        engine = TransactionEngine(store, audit_service=audit_service, default_timeout=0.05)
        original_insert = store.insert_transaction

        async def slow_insert(doc, session=None):
            await original_insert(doc, session=session)
            await asyncio.sleep(1)

        monkeypatch.setattr(store, "insert_transaction", slow_insert)
        result = await engine.add_transaction(2, "DEPOSIT", 100, 2, 3)

        assert result.kind == RejectionKind.DEADLINE_EXCEEDED
        assert result.transaction_id == 0
        assert await store.find_transactions() == []

    async def test_per_call_timeout_overrides_default(self, engine):
        result = await engine.add_transaction(2, "DEPOSIT", 100, 2, 3, timeout=5)
        assert result.success
