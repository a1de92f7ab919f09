"""
Transaction validation pipeline tests.
Rejections surface as LedgerRejection; the engine turns them into results.
"""
from decimal import Decimal

import pytest

from ledger.errors import LedgerRejection, RejectionKind
from ledger.validation import TransactionValidator, TransactionRequest


def request(**overrides):
    data = dict(
        contract_id=2,
        transaction_type="DEPOSIT",
        amount=Decimal("1000"),
        agency_id=2,
        performed_by=3,
    )
    data.update(overrides)
    return TransactionRequest(**data)


class TestRequiredFields:
    """Step 1: presence and amount checks, no storage access"""

    @pytest.mark.parametrize("field_name, message", [
        ("contract_id", "Contract ID is required"),
        ("transaction_type", "Transaction type is required"),
        ("amount", "Transaction amount is required"),
        ("agency_id", "Agency ID is required"),
        ("performed_by", "Performed by user is required"),
    ])
    def test_missing_field(self, field_name, message):
        validator = TransactionValidator(None)
        with pytest.raises(LedgerRejection) as exc:
            validator.check_required_fields(request(**{field_name: None}))
        assert exc.value.kind == RejectionKind.MISSING_FIELD
        assert exc.value.message == message

    def test_first_missing_field_wins(self):
        validator = TransactionValidator(None)
        with pytest.raises(LedgerRejection) as exc:
            validator.check_required_fields(request(amount=None, contract_id=None))
        assert exc.value.message == "Contract ID is required"

    def test_zero_amount(self):
        validator = TransactionValidator(None)
        with pytest.raises(LedgerRejection) as exc:
            validator.check_required_fields(request(amount=Decimal("0.00")))
        assert exc.value.kind == RejectionKind.MISSING_FIELD
        assert exc.value.message == "Transaction amount cannot be zero"

    def test_negative_amount(self):
        validator = TransactionValidator(None)
        with pytest.raises(LedgerRejection) as exc:
            validator.check_required_fields(request(amount=-5))
        assert exc.value.kind == RejectionKind.INVALID_AMOUNT

    def test_unparseable_amount(self):
        validator = TransactionValidator(None)
        with pytest.raises(LedgerRejection) as exc:
            validator.check_required_fields(request(amount="twelve"))
        assert exc.value.kind == RejectionKind.INVALID_AMOUNT

    @pytest.mark.parametrize("amount", ["1E+30", Decimal("1E+30")])
    def test_amount_beyond_decimal_range(self, amount):
        validator = TransactionValidator(None)
        with pytest.raises(LedgerRejection) as exc:
            validator.check_required_fields(request(amount=amount))
        assert exc.value.kind == RejectionKind.INVALID_AMOUNT

    def test_amount_with_too_many_integer_digits(self):
        validator = TransactionValidator(None)
        assert validator.check_required_fields(request(amount="9999999999999.99")) == Decimal("9999999999999.99")
        with pytest.raises(LedgerRejection) as exc:
            validator.check_required_fields(request(amount="10000000000000"))
        assert exc.value.kind == RejectionKind.INVALID_AMOUNT
        assert "exceeds the maximum" in exc.value.message

    def test_amount_rounded_to_two_places(self):
        validator = TransactionValidator(None)
        assert validator.check_required_fields(request(amount="10.005")) == Decimal("10.01")


class TestLookupChecks:
    """Steps 2-9 against the seeded store"""

    async def test_valid_request(self, store):
        validated = await TransactionValidator(store).validate(request())
        assert validated.contract["_id"] == 2
        assert validated.agency["agency_code"] == "DLA"
        assert validated.performer["username"] == "dla.staff"
        assert validated.currency == "XAF"

    @pytest.mark.parametrize("overrides, kind, message", [
        ({"contract_id": 9999}, RejectionKind.NOT_FOUND, "Contract ID 9999 does not exist"),
        ({"contract_id": 3}, RejectionKind.INVALID_STATE, "Contract is not active. Current status: CLOSED"),
        ({"contract_id": 4}, RejectionKind.AGENCY_MISMATCH, "Contract belongs to agency ID 1, not agency ID 2"),
        ({"performed_by": 99}, RejectionKind.NOT_FOUND, "Performing user ID 99 does not exist"),
        ({"performed_by": 4}, RejectionKind.INACTIVE, "Performing user ID 4 is inactive"),
        ({"verified_by": 98}, RejectionKind.NOT_FOUND, "Verifying user ID 98 does not exist"),
        ({"verified_by": 4}, RejectionKind.INACTIVE, "Verifying user ID 4 is inactive"),
        ({"transaction_type": "GIFT"}, RejectionKind.INVALID_ENUM, "Invalid transaction type: GIFT"),
        ({"currency": "GBP"}, RejectionKind.INVALID_ENUM, "Unsupported currency: GBP"),
    ])
    async def test_rejections(self, store, overrides, kind, message):
        with pytest.raises(LedgerRejection) as exc:
            await TransactionValidator(store).validate(request(**overrides))
        assert exc.value.kind == kind
        assert exc.value.message == message

    async def test_mismatch_reported_before_agency_checks(self, store):
        """Contract 1 belongs to Douala; agency 4 is inactive but the mismatch comes first"""
        with pytest.raises(LedgerRejection) as exc:
            await TransactionValidator(store).validate(request(contract_id=1, agency_id=4))
        assert exc.value.kind == RejectionKind.AGENCY_MISMATCH

    async def test_inactive_agency(self, store):
        contract_id = await store.insert_contract({
            "contract_number": "CTR-GAR-1", "client_id": 1, "agency_id": 4,
            "contract_type": "LOAN", "amount": Decimal("1000"), "status": "ACTIVE",
        })
        with pytest.raises(LedgerRejection) as exc:
            await TransactionValidator(store).validate(request(contract_id=contract_id, agency_id=4))
        assert exc.value.kind == RejectionKind.INACTIVE
        assert exc.value.message == "Agency ID 4 is inactive"

    async def test_missing_agency(self, store):
        contract_id = await store.insert_contract({
            "contract_number": "CTR-GHOST-1", "client_id": 1, "agency_id": 77,
            "contract_type": "LOAN", "amount": Decimal("1000"), "status": "ACTIVE",
        })
        with pytest.raises(LedgerRejection) as exc:
            await TransactionValidator(store).validate(request(contract_id=contract_id, agency_id=77))
        assert exc.value.kind == RejectionKind.NOT_FOUND
        assert exc.value.message == "Agency ID 77 does not exist"

    async def test_type_checked_after_users(self, store):
        with pytest.raises(LedgerRejection) as exc:
            await TransactionValidator(store).validate(request(performed_by=4, transaction_type="GIFT"))
        assert exc.value.kind == RejectionKind.INACTIVE

    async def test_custom_currency_set(self, store):
        validator = TransactionValidator(store, supported_currencies=["XAF"])
        with pytest.raises(LedgerRejection) as exc:
            await validator.validate(request(currency="EUR"))
        assert exc.value.message == "Unsupported currency: EUR"
