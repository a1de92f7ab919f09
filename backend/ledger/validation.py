"""
LEDGER: TRANSACTION VALIDATION PIPELINE

Ordered precondition checks, run before any mutation. The first failing
check raises LedgerRejection; nothing is written until every check passes.

    1. required fields          6. performing user exists / active
    2. contract exists          7. verifying user exists / active
    3. contract DRAFT or ACTIVE 8. transaction type recognised
    4. contract agency matches  9. currency supported
    5. agency exists / active

Storage reads are batched (contract, agency, users) up front; the checks then
run in order against the fetched documents, so the reported error is always
the first one in the list above.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Dict, Any, Iterable
import logging

from ledger.enums import TransactionType, Currency, OPEN_CONTRACT_STATUSES, HOME_CURRENCY
from ledger.errors import LedgerRejection, RejectionKind
from ledger.financial_precision import round_financial, FinancialPrecisionError, ZERO, MAX_AMOUNT

logger = logging.getLogger(__name__)

TRANSACTION_TYPES = frozenset(t.value for t in TransactionType)
SUPPORTED_CURRENCIES = frozenset(c.value for c in Currency)


@dataclass
class TransactionRequest:
    contract_id: Optional[int]
    transaction_type: Optional[str]
    amount: Any
    agency_id: Optional[int]
    performed_by: Optional[int]
    description: Optional[str] = None
    currency: Optional[str] = HOME_CURRENCY
    verified_by: Optional[int] = None


@dataclass
class ValidatedTransaction:
    request: TransactionRequest
    amount: Decimal
    currency: str
    contract: Dict[str, Any]
    agency: Dict[str, Any]
    performer: Dict[str, Any]
    verifier: Optional[Dict[str, Any]] = None

    @property
    def transaction_type(self) -> str:
        return self.request.transaction_type


class TransactionValidator:

    def __init__(self, store, supported_currencies: Iterable[str] = SUPPORTED_CURRENCIES):
        self.store = store
        self.supported_currencies = frozenset(supported_currencies)

    def check_required_fields(self, request: TransactionRequest) -> Decimal:
        """Step 1. No storage access; returns the amount rounded to 2 places."""
        if request.contract_id is None:
            raise LedgerRejection(RejectionKind.MISSING_FIELD, "Contract ID is required")
        if request.transaction_type is None:
            raise LedgerRejection(RejectionKind.MISSING_FIELD, "Transaction type is required")
        if request.amount is None:
            raise LedgerRejection(RejectionKind.MISSING_FIELD, "Transaction amount is required")
        if request.agency_id is None:
            raise LedgerRejection(RejectionKind.MISSING_FIELD, "Agency ID is required")
        if request.performed_by is None:
            raise LedgerRejection(RejectionKind.MISSING_FIELD, "Performed by user is required")

        try:
            amount = round_financial(request.amount)
        except FinancialPrecisionError as e:
            raise LedgerRejection(RejectionKind.INVALID_AMOUNT, str(e))
        if amount == ZERO:
            raise LedgerRejection(RejectionKind.MISSING_FIELD, "Transaction amount cannot be zero")
        if amount < ZERO:
            raise LedgerRejection(
                RejectionKind.INVALID_AMOUNT,
                f"Transaction amount must be positive: {request.amount}"
            )
        if amount > MAX_AMOUNT:
            raise LedgerRejection(
                RejectionKind.INVALID_AMOUNT,
                f"Transaction amount exceeds the maximum of {MAX_AMOUNT}: {request.amount}"
            )
        return amount

    async def validate(
        self,
        request: TransactionRequest,
        session=None,
        lock_contract: bool = False
    ) -> ValidatedTransaction:
        """
        Run the full pipeline.

        With lock_contract=True the contract read also takes the contract's
        write lock, so the balance read later in the same session cannot go
        stale before commit.
        """
        amount = self.check_required_fields(request)

        # Step 2 read doubles as the lock
        if lock_contract:
            contract = await self.store.lock_contract(request.contract_id, session=session)
        else:
            contract = await self.store.get_contract(request.contract_id, session=session)
        if contract is None:
            raise LedgerRejection(
                RejectionKind.NOT_FOUND,
                f"Contract ID {request.contract_id} does not exist"
            )

        agency = await self.store.get_agency(request.agency_id, session=session)
        user_ids = [request.performed_by]
        if request.verified_by is not None:
            user_ids.append(request.verified_by)
        users = await self.store.get_users(user_ids, session=session)

        # 3. Contract status
        if contract.get("status") not in OPEN_CONTRACT_STATUSES:
            raise LedgerRejection(
                RejectionKind.INVALID_STATE,
                f"Contract is not active. Current status: {contract.get('status')}"
            )

        # 4. Contract ownership
        if contract.get("agency_id") != request.agency_id:
            raise LedgerRejection(
                RejectionKind.AGENCY_MISMATCH,
                f"Contract belongs to agency ID {contract.get('agency_id')}, "
                f"not agency ID {request.agency_id}"
            )

        # 5. Agency
        if agency is None:
            raise LedgerRejection(
                RejectionKind.NOT_FOUND,
                f"Agency ID {request.agency_id} does not exist"
            )
        if not agency.get("is_active", False):
            raise LedgerRejection(
                RejectionKind.INACTIVE,
                f"Agency ID {request.agency_id} is inactive"
            )

        # 6. Performer
        performer = self._check_user(users, request.performed_by, "Performing")

        # 7. Verifier
        verifier = None
        if request.verified_by is not None:
            verifier = self._check_user(users, request.verified_by, "Verifying")

        # 8. Type
        if request.transaction_type not in TRANSACTION_TYPES:
            raise LedgerRejection(
                RejectionKind.INVALID_ENUM,
                f"Invalid transaction type: {request.transaction_type}"
            )

        # 9. Currency
        currency = request.currency or HOME_CURRENCY
        if currency not in self.supported_currencies:
            raise LedgerRejection(
                RejectionKind.INVALID_ENUM,
                f"Unsupported currency: {currency}"
            )

        return ValidatedTransaction(
            request=request,
            amount=amount,
            currency=currency,
            contract=contract,
            agency=agency,
            performer=performer,
            verifier=verifier,
        )

    @staticmethod
    def _check_user(users: Dict[int, Dict[str, Any]], user_id: int, label: str) -> Dict[str, Any]:
        user = users.get(user_id)
        if user is None:
            raise LedgerRejection(
                RejectionKind.NOT_FOUND,
                f"{label} user ID {user_id} does not exist"
            )
        if not user.get("is_active", False):
            raise LedgerRejection(
                RejectionKind.INACTIVE,
                f"{label} user ID {user_id} is inactive"
            )
        return user

