"""
LEDGER: TRANSACTION ENGINE

Records one financial transaction against a contract:

    Validating -> BalanceChecking (WITHDRAWAL only) -> Recording -> PostEffects

ALL steps run inside one store transaction:
- the contract is write-locked before the balance is read
- the reference counter is bumped in the same unit as the insert
- DRAFT -> ACTIVE on first PAYMENT commits or rolls back with the insert

Business-rule violations come back as TransactionResult values with id 0.
Unexpected faults roll the unit back and come back as INTERNAL_FAULT.
"""

from datetime import datetime
from typing import Optional, Callable, Dict, Any
import asyncio
import logging

from ledger.atomic_numbering import ReferenceGenerator
from ledger.balance import BalanceCalculator, signed_amount
from ledger.enums import TransactionType, TransactionStatus, ContractStatus, HOME_CURRENCY
from ledger.errors import LedgerRejection, RejectionKind, DuplicateKeyConflict
from ledger.financial_precision import to_float
from ledger.results import TransactionResult, ReceiptResult
from ledger.validation import TransactionValidator, TransactionRequest, ValidatedTransaction

logger = logging.getLogger(__name__)

VERIFIED_NOTE = "Verified transaction"
PENDING_VERIFICATION_NOTE = "Pending verification"


class TransactionEngine:
    """
    Transaction recorder with:
    - Ordered validation
    - Locked balance check for withdrawals
    - Atomic reference numbering
    - Contract activation side effect
    - Optional caller deadline
    """

    MAX_REFERENCE_RETRIES = 3

    def __init__(
        self,
        store,
        audit_service=None,
        default_timeout: Optional[float] = None,
        clock: Callable[[], datetime] = datetime.utcnow
    ):
        self.store = store
        self.audit_service = audit_service
        self.default_timeout = default_timeout
        self.clock = clock
        self.validator = TransactionValidator(store)
        self.balance_calculator = BalanceCalculator(store)
        self.reference_generator = ReferenceGenerator(store, clock=clock)

    # =========================================================================
    # PUBLIC OPERATIONS
    # =========================================================================

    async def add_transaction(
        self,
        contract_id: Optional[int],
        transaction_type: Optional[str],
        amount,
        agency_id: Optional[int],
        performed_by: Optional[int],
        description: Optional[str] = None,
        currency: Optional[str] = HOME_CURRENCY,
        verified_by: Optional[int] = None,
        timeout: Optional[float] = None
    ) -> TransactionResult:
        """
        Validate and record one transaction.

        Never raises for expected problems: a rejected request returns
        transaction_id=0, reference="" and a message.
        """
        request = TransactionRequest(
            contract_id=contract_id,
            transaction_type=transaction_type,
            amount=amount,
            agency_id=agency_id,
            performed_by=performed_by,
            description=description,
            currency=currency,
            verified_by=verified_by,
        )
        outcome = await self._execute(request, TransactionResult, timeout, with_receipt=False)
        if not isinstance(outcome, dict):
            return outcome

        doc = outcome["transaction"]
        return TransactionResult(
            transaction_id=doc["_id"],
            reference=doc["transaction_ref"],
            message=f"Transaction added successfully. Reference: {doc['transaction_ref']}",
            contract_activated=outcome["contract_activated"],
        )

    async def add_transaction_with_receipt(
        self,
        contract_id: Optional[int],
        transaction_type: Optional[str],
        amount,
        agency_id: Optional[int],
        performed_by: Optional[int],
        description: Optional[str] = None,
        currency: Optional[str] = HOME_CURRENCY,
        timeout: Optional[float] = None
    ) -> ReceiptResult:
        """
        Record a transaction and build its customer receipt.

        The receipt number shares the transaction's sequence (RC-<date>-<seq>);
        balances are the contract's completed balance before and after.
        """
        request = TransactionRequest(
            contract_id=contract_id,
            transaction_type=transaction_type,
            amount=amount,
            agency_id=agency_id,
            performed_by=performed_by,
            description=description,
            currency=currency,
        )
        outcome = await self._execute(request, ReceiptResult, timeout, with_receipt=True)
        if not isinstance(outcome, dict):
            return outcome

        doc = outcome["transaction"]
        return ReceiptResult(
            transaction_id=doc["_id"],
            reference=doc["transaction_ref"],
            message=f"Transaction added successfully. Reference: {doc['transaction_ref']}",
            contract_activated=outcome["contract_activated"],
            receipt_number=outcome["receipt"]["receipt_number"],
            receipt_details=outcome["receipt"],
        )

    async def get_contract_balance(self, contract_id: int, agency_id: Optional[int] = None) -> Dict[str, Any]:
        """
        Current completed balance of a contract (recomputed on every call).

        With agency_id set, a contract of another agency is reported exactly
        like a missing one and no balance is computed.
        """
        contract = await self.store.get_contract(contract_id)
        if contract is None or (agency_id is not None and contract.get("agency_id") != agency_id):
            raise LedgerRejection(
                RejectionKind.NOT_FOUND,
                f"Contract ID {contract_id} does not exist"
            )
        balance = await self.balance_calculator.contract_balance(contract_id)
        return {
            "contract_id": contract_id,
            "agency_id": contract.get("agency_id"),
            "contract_number": contract.get("contract_number"),
            "status": contract.get("status"),
            "balance": to_float(balance),
            "currency": HOME_CURRENCY,
        }

    # =========================================================================
    # FAULT BOUNDARY
    # =========================================================================

    async def _execute(self, request: TransactionRequest, result_cls, timeout: Optional[float], with_receipt: bool):
        """
        Run the recording unit and translate every failure into a result.

        Returns the raw outcome dict on success, a result instance otherwise.
        """
        deadline = timeout if timeout is not None else self.default_timeout

        try:
            self.validator.check_required_fields(request)

            for attempt in range(self.MAX_REFERENCE_RETRIES):
                try:
                    unit = self.store.run_in_transaction(
                        lambda session: self._record(request, session, with_receipt)
                    )
                    if deadline is not None:
                        return await asyncio.wait_for(unit, timeout=deadline)
                    return await unit
                except DuplicateKeyConflict as e:
                    if e.field != "transaction_ref" or attempt == self.MAX_REFERENCE_RETRIES - 1:
                        raise
                    logger.warning(f"[TRANSACTION] Reference collision on insert, retry {attempt + 1}: {e}")

        except LedgerRejection as e:
            logger.info(
                f"[TRANSACTION] Rejected ({e.kind.value}) contract={request.contract_id}: {e.message}"
            )
            return result_cls.rejected(e.kind, e.message)
        except asyncio.TimeoutError:
            logger.warning(
                f"[TRANSACTION] Deadline of {deadline}s exceeded for contract={request.contract_id}; rolled back"
            )
            return result_cls.rejected(
                RejectionKind.DEADLINE_EXCEEDED,
                f"Transaction deadline of {deadline}s exceeded; no changes were committed"
            )
        except Exception as e:
            logger.error(f"[TRANSACTION ERROR] contract={request.contract_id}: {str(e)}")
            return result_cls.rejected(
                RejectionKind.INTERNAL_FAULT,
                f"Error adding transaction: {str(e)}"
            )

    # =========================================================================
    # RECORDING UNIT (runs inside one store transaction)
    # =========================================================================

    async def _record(self, request: TransactionRequest, session, with_receipt: bool) -> Dict[str, Any]:
        validated = await self.validator.validate(request, session=session, lock_contract=True)
        contract = validated.contract

        balance_before = None
        if validated.transaction_type == TransactionType.WITHDRAWAL.value:
            balance_before = await self.balance_calculator.check_withdrawal(
                contract["_id"], validated.amount, session=session
            )
        elif with_receipt:
            balance_before = await self.balance_calculator.contract_balance(contract["_id"], session=session)

        reference, sequence = await self.reference_generator.generate(session=session)
        now = self.clock()

        doc = self._build_transaction_doc(validated, reference, sequence, now)
        await self.store.insert_transaction(doc, session=session)

        contract_activated = False
        if (
            validated.transaction_type == TransactionType.PAYMENT.value
            and contract.get("status") == ContractStatus.DRAFT.value
        ):
            contract_activated = await self.store.activate_contract(contract["_id"], now, session=session)
            if contract_activated:
                logger.info(f"[TRANSACTION] Contract {contract['_id']} activated after first payment")

        if self.audit_service is not None:
            await self.audit_service.log_action(
                entity_type="TRANSACTION",
                entity_id=doc["_id"],
                action_type="CREATE",
                user_id=request.performed_by,
                agency_id=request.agency_id,
                new_value={
                    "transaction_ref": reference,
                    "contract_id": contract["_id"],
                    "transaction_type": validated.transaction_type,
                    "amount": to_float(validated.amount),
                    "currency": validated.currency,
                    "contract_activated": contract_activated,
                },
                session=session
            )

        logger.info(
            f"[TRANSACTION] {reference} created for contract {contract['_id']}, "
            f"type={validated.transaction_type}, amount={validated.amount} {validated.currency}"
        )

        outcome = {"transaction": doc, "contract_activated": contract_activated}
        if with_receipt:
            outcome["receipt"] = await self._build_receipt(validated, doc, sequence, balance_before, session)
        return outcome

    def _build_transaction_doc(
        self,
        validated: ValidatedTransaction,
        reference: str,
        sequence: int,
        now: datetime
    ) -> Dict[str, Any]:
        request = validated.request
        return {
            "_id": sequence,
            "transaction_ref": reference,
            "contract_id": validated.contract["_id"],
            "transaction_type": validated.transaction_type,
            "amount": validated.amount,
            "currency": validated.currency,
            "description": request.description,
            "agency_id": request.agency_id,
            "performed_by": request.performed_by,
            "verified_by": request.verified_by,
            "transaction_date": now,
            # Verification workflow is not modelled; rows are final on insert
            "status": TransactionStatus.COMPLETED.value,
            "notes": VERIFIED_NOTE if request.verified_by is not None else PENDING_VERIFICATION_NOTE,
            "created_at": now,
        }

    async def _build_receipt(
        self,
        validated: ValidatedTransaction,
        doc: Dict[str, Any],
        sequence: int,
        balance_before,
        session
    ) -> Dict[str, Any]:
        contract = validated.contract
        client = await self.store.get_client(contract.get("client_id"), session=session) or {}
        balance_after = balance_before + signed_amount(doc["transaction_type"], doc["amount"])
        issued_at = doc["transaction_date"]

        return {
            "receipt_number": self.reference_generator.receipt_number(sequence),
            "transaction_ref": doc["transaction_ref"],
            "date": issued_at.date().isoformat(),
            "time": issued_at.strftime("%H:%M:%S"),
            "client_id": contract.get("client_id"),
            "client_name": client.get("full_name"),
            "contract_number": contract.get("contract_number"),
            "transaction_type": doc["transaction_type"],
            "amount": to_float(doc["amount"]),
            "currency": doc["currency"],
            "agency": validated.agency.get("agency_name"),
            "city": validated.agency.get("city"),
            "performed_by": doc["performed_by"],
            "description": doc["description"],
            "balance_before": to_float(balance_before),
            "balance_after": to_float(balance_after),
        }
