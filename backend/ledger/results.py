"""Result values returned across the ledger operation boundary."""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Optional, Dict, Any, List

from ledger.errors import RejectionKind

SUCCESS = "SUCCESS"
FAILED = "FAILED"


@dataclass
class TransactionResult:
    """Outcome of one add-transaction call. Rejections carry id 0 and an empty reference."""
    transaction_id: int = 0
    reference: str = ""
    message: str = ""
    kind: Optional[RejectionKind] = None
    contract_activated: bool = False

    @property
    def success(self) -> bool:
        return self.kind is None

    @classmethod
    def rejected(cls, kind: RejectionKind, message: str) -> "TransactionResult":
        return cls(transaction_id=0, reference="", message=message, kind=kind)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value if self.kind else None
        data["success"] = self.success
        return data


@dataclass
class ReceiptResult(TransactionResult):
    receipt_number: str = ""
    receipt_details: Optional[Dict[str, Any]] = None

    @classmethod
    def rejected(cls, kind: RejectionKind, message: str) -> "ReceiptResult":
        return cls(transaction_id=0, reference="", message=message, kind=kind)


@dataclass
class BatchItemResult:
    contract_id: Optional[int]
    transaction_id: Optional[int]
    reference: Optional[str]
    outcome: str
    message: str
    kind: Optional[RejectionKind] = None


@dataclass
class BatchResult:
    total: int = 0
    success_count: int = 0
    failed_count: int = 0
    results: List[BatchItemResult] = field(default_factory=list)
    processed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "success_count": self.success_count,
            "failed_count": self.failed_count,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
            "results": [
                {
                    "contract_id": r.contract_id,
                    "transaction_id": r.transaction_id,
                    "reference": r.reference,
                    "outcome": r.outcome,
                    "message": r.message,
                    "kind": r.kind.value if r.kind else None,
                }
                for r in self.results
            ],
        }


@dataclass
class ClientResult:
    client_id: int = 0
    message: str = ""
    kind: Optional[RejectionKind] = None

    @property
    def success(self) -> bool:
        return self.kind is None


@dataclass
class ClientPage:
    agency_id: Optional[int]
    clients: List[Dict[str, Any]] = field(default_factory=list)
    limit: int = 0
    offset: int = 0
    message: str = ""
    kind: Optional[RejectionKind] = None

    @property
    def success(self) -> bool:
        return self.kind is None
