"""
Ledger error taxonomy.

Business-rule violations are raised internally as LedgerRejection and
converted into result values at the operation boundary. Store-level
exceptions cover storage conditions the engine has to react to.
"""

from enum import Enum
from typing import Optional, Dict, Any


class RejectionKind(str, Enum):
    MISSING_FIELD = "MISSING_FIELD"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    NOT_FOUND = "NOT_FOUND"
    INACTIVE = "INACTIVE"
    INVALID_STATE = "INVALID_STATE"
    AGENCY_MISMATCH = "AGENCY_MISMATCH"
    INVALID_ENUM = "INVALID_ENUM"
    DUPLICATE = "DUPLICATE"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    INTERNAL_FAULT = "INTERNAL_FAULT"
    DEADLINE_EXCEEDED = "DEADLINE_EXCEEDED"


class LedgerRejection(Exception):
    """Raised when a request violates a business rule"""
    def __init__(self, kind: RejectionKind, message: str, details: Optional[Dict[str, Any]] = None):
        self.kind = kind
        self.message = message
        self.details = details or {}
        super().__init__(message)


class SequenceCollisionError(Exception):
    """Raised when a unique reference cannot be produced after max retries"""
    pass


class DuplicateKeyConflict(Exception):
    """Raised by a store when an insert violates a unique constraint"""
    def __init__(self, collection: str, field: str, value: Any):
        self.collection = collection
        self.field = field
        self.value = value
        super().__init__(f"Duplicate {field} in {collection}: {value}")


class FinancialDeleteBlockedError(Exception):
    """Raised when trying to delete an append-only financial entity"""
    def __init__(self, entity_type: str, entity_id: Any):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Cannot DELETE {entity_type} {entity_id}. Financial entities are append-only."
        )
