"""
LEDGER: BATCH TRANSACTION PROCESSING

Runs the transaction engine once per item. Every item is its own atomic unit:
a rejected or faulted item never rolls back earlier items and never stops
later ones. Callers must read the per-item outcomes.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Callable, Iterable, Mapping, Any, Union
import logging

from ledger.enums import HOME_CURRENCY
from ledger.errors import RejectionKind
from ledger.results import BatchResult, BatchItemResult, SUCCESS, FAILED

logger = logging.getLogger(__name__)


@dataclass
class BatchItem:
    contract_id: Optional[int]
    transaction_type: Optional[str]
    amount: Any
    description: Optional[str] = None
    currency: Optional[str] = HOME_CURRENCY

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "BatchItem":
        return cls(
            contract_id=data.get("contract_id"),
            transaction_type=data.get("transaction_type"),
            amount=data.get("amount"),
            description=data.get("description"),
            currency=data.get("currency") or HOME_CURRENCY,
        )


class BatchProcessor:

    def __init__(self, engine, clock: Callable[[], datetime] = datetime.utcnow):
        self.engine = engine
        self.clock = clock

    async def add_transaction_batch(
        self,
        items: Iterable[Union[BatchItem, Mapping[str, Any]]],
        agency_id: Optional[int],
        performed_by: Optional[int],
        timeout: Optional[float] = None
    ) -> BatchResult:
        """
        Process items sequentially, in input order.

        Args:
            items: BatchItem instances or dicts with contract_id,
                transaction_type, amount, description, currency
            agency_id: Agency shared by every item
            performed_by: Performing user shared by every item
            timeout: Per-item deadline in seconds

        Returns:
            BatchResult with one entry per item, in input order
        """
        batch = BatchResult()

        for index, raw_item in enumerate(items):
            item = raw_item if isinstance(raw_item, BatchItem) else BatchItem.from_mapping(raw_item)

            try:
                result = await self.engine.add_transaction(
                    contract_id=item.contract_id,
                    transaction_type=item.transaction_type,
                    amount=item.amount,
                    agency_id=agency_id,
                    performed_by=performed_by,
                    description=item.description,
                    currency=item.currency,
                    timeout=timeout,
                )
            except Exception as e:
                # The engine reports failures as values; anything else is still isolated to this item
                logger.error(f"[BATCH] Item {index} (contract {item.contract_id}) raised: {str(e)}")
                entry = BatchItemResult(
                    contract_id=item.contract_id,
                    transaction_id=None,
                    reference=None,
                    outcome=FAILED,
                    message=f"Error adding transaction: {str(e)}",
                    kind=RejectionKind.INTERNAL_FAULT,
                )
            else:
                if result.success:
                    entry = BatchItemResult(
                        contract_id=item.contract_id,
                        transaction_id=result.transaction_id,
                        reference=result.reference,
                        outcome=SUCCESS,
                        message=result.message,
                    )
                else:
                    entry = BatchItemResult(
                        contract_id=item.contract_id,
                        transaction_id=None,
                        reference=None,
                        outcome=FAILED,
                        message=result.message,
                        kind=result.kind,
                    )

            batch.results.append(entry)
            if entry.outcome == SUCCESS:
                batch.success_count += 1
            else:
                batch.failed_count += 1

        batch.total = batch.success_count + batch.failed_count
        batch.processed_at = self.clock()

        logger.info(
            f"[BATCH] Processed {batch.total} items for agency {agency_id}: "
            f"{batch.success_count} succeeded, {batch.failed_count} failed"
        )
        return batch
