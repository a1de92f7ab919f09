"""
LEDGER: ATOMIC TRANSACTION REFERENCES

Provides:
1. TXN-<YYYYMMDD>-<000000> references from an atomic counter
2. Sequence assignment inside the write transaction
3. Uniqueness check with collision retry (backed by a unique index)

The counter never decreases, so a reference is never handed out twice even
after rows are removed.
"""

from datetime import datetime
from typing import Callable, Tuple
import asyncio
import logging

from ledger.errors import SequenceCollisionError
from ledger.store.base import TRANSACTIONS

logger = logging.getLogger(__name__)

TRANSACTION_PREFIX = "TXN"
RECEIPT_PREFIX = "RC"
SEQUENCE_WIDTH = 6


def format_reference(prefix: str, on_date: datetime, sequence: int) -> str:
    """e.g. format_reference("TXN", 2024-03-15, 42) -> "TXN-20240315-000042" """
    return f"{prefix}-{on_date.strftime('%Y%m%d')}-{sequence:0{SEQUENCE_WIDTH}d}"


class ReferenceGenerator:
    """
    Transaction reference generator with collision protection.

    The sequence is drawn from the "transactions" counter and doubles as the
    new transaction's id.
    """

    MAX_RETRIES = 5
    RETRY_DELAY_MS = 100  # Base delay in milliseconds

    def __init__(self, store, clock: Callable[[], datetime] = datetime.utcnow, prefix: str = TRANSACTION_PREFIX):
        self.store = store
        self.clock = clock
        self.prefix = prefix

    async def next_sequence(self, session=None) -> int:
        return await self.store.next_sequence(TRANSACTIONS, session=session)

    async def generate(self, session=None) -> Tuple[str, int]:
        """
        Generate a unique transaction reference.

        Returns:
            tuple: (reference, sequence_number)

        Raises:
            SequenceCollisionError: If max retries exceeded
        """
        for attempt in range(self.MAX_RETRIES):
            sequence = await self.next_sequence(session)
            reference = format_reference(self.prefix, self.clock(), sequence)

            # Only a counter reset or a hand-inserted row can trigger this
            if await self.store.reference_exists(reference, session=session):
                logger.warning(f"[NUMBERING] Reference collision: {reference}, retry {attempt + 1}")
                await asyncio.sleep(self.RETRY_DELAY_MS * (attempt + 1) / 1000)
                continue

            logger.debug(f"[NUMBERING] Generated reference: {reference}")
            return reference, sequence

        raise SequenceCollisionError(
            f"Failed to generate unique transaction reference after {self.MAX_RETRIES} attempts"
        )

    def receipt_number(self, sequence: int) -> str:
        return format_reference(RECEIPT_PREFIX, self.clock(), sequence)
