"""
LEDGER: BALANCE CALCULATOR

Contract balances are never stored. They are replayed from the contract's
COMPLETED transactions every time:

- DEPOSIT, PAYMENT       -> +amount
- WITHDRAWAL, FEE        -> -amount
- every other type       -> 0
"""

from decimal import Decimal
from typing import Iterable, Dict, Any
import logging

from ledger.enums import TransactionType, TransactionStatus
from ledger.errors import LedgerRejection, RejectionKind
from ledger.financial_precision import to_decimal, round_financial, ZERO

logger = logging.getLogger(__name__)

CREDIT_TYPES = frozenset({TransactionType.DEPOSIT.value, TransactionType.PAYMENT.value})
DEBIT_TYPES = frozenset({TransactionType.WITHDRAWAL.value, TransactionType.FEE.value})


def signed_amount(transaction_type: str, amount) -> Decimal:
    """Balance contribution of one transaction."""
    if transaction_type in CREDIT_TYPES:
        return to_decimal(amount)
    if transaction_type in DEBIT_TYPES:
        return -to_decimal(amount)
    return ZERO


def compute_balance(transactions: Iterable[Dict[str, Any]]) -> Decimal:
    """Sum of signed amounts over the COMPLETED transactions given."""
    balance = ZERO
    for txn in transactions:
        if txn.get("status") != TransactionStatus.COMPLETED.value:
            continue
        balance += signed_amount(txn.get("transaction_type"), txn.get("amount", 0))
    return balance


class BalanceCalculator:

    def __init__(self, store):
        self.store = store

    async def contract_balance(self, contract_id: int, session=None) -> Decimal:
        """Recompute a contract's balance from storage (no caching)."""
        transactions = await self.store.find_transactions(
            contract_id=contract_id,
            status=TransactionStatus.COMPLETED.value,
            session=session
        )
        return round_financial(compute_balance(transactions))

    async def check_withdrawal(self, contract_id: int, amount: Decimal, session=None) -> Decimal:
        """
        Ensure a withdrawal does not exceed the balance.

        Must run inside the same transaction as the insert, after the contract
        lock is taken. Returns the balance before the withdrawal.
        """
        balance = await self.contract_balance(contract_id, session=session)
        if balance < amount:
            logger.info(
                f"[BALANCE] Withdrawal refused on contract {contract_id}: "
                f"available={balance}, requested={amount}"
            )
            raise LedgerRejection(
                RejectionKind.INSUFFICIENT_BALANCE,
                f"Insufficient balance. Available: {balance}, Requested: {round_financial(amount)}",
                details={"available": balance, "requested": amount}
            )
        return balance
