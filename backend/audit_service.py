from datetime import datetime
from typing import Optional, Dict, Any, Callable
import logging

from ledger.errors import FinancialDeleteBlockedError

logger = logging.getLogger(__name__)

# ARCHITECTURAL GUARD: Financial entity types that CANNOT be deleted
FINANCIAL_ENTITY_TYPES = [
    "TRANSACTION",
    "CONTRACT",
]


class AuditService:
    """Service for immutable audit logging"""

    def __init__(self, store, clock: Callable[[], datetime] = datetime.utcnow):
        self.store = store
        self.clock = clock

    def enforce_financial_delete_guard(self, entity_type: str, action_type: str, entity_id: Any = None):
        """
        ARCHITECTURAL GUARD: Prevent DELETE operations on financial entities.

        Transactions and contracts are append-only; their history is what the
        balance is derived from.

        Raises FinancialDeleteBlockedError if attempting to delete one.
        """
        if action_type == "DELETE" and entity_type in FINANCIAL_ENTITY_TYPES:
            raise FinancialDeleteBlockedError(entity_type, entity_id)

    async def log_action(
        self,
        entity_type: str,
        entity_id: Any,
        action_type: str,
        user_id: Optional[int],
        agency_id: Optional[int] = None,
        old_value: Optional[Dict[str, Any]] = None,
        new_value: Optional[Dict[str, Any]] = None,
        session=None
    ):
        """
        Log an action to audit trail (INSERT ONLY).

        ENFORCES: Financial entity delete guard.

        Inside a store transaction the audit row commits or rolls back with
        the operation, so write errors propagate. Outside one, a failed audit
        write is logged and the caller carries on.
        """
        # ARCHITECTURAL GUARD: Enforce financial delete protection
        self.enforce_financial_delete_guard(entity_type, action_type, entity_id)

        audit_entry = {
            "agency_id": agency_id,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "action_type": action_type,
            "old_value_json": old_value,
            "new_value_json": new_value,
            "user_id": user_id,
            "timestamp": self.clock()
        }

        if session is not None:
            await self.store.insert_audit_log(audit_entry, session=session)
        else:
            try:
                await self.store.insert_audit_log(audit_entry)
            except Exception as e:
                logger.error(f"Failed to create audit log: {str(e)}")
                return
        logger.info(f"Audit log created: {action_type} on {entity_type}:{entity_id} by user:{user_id}")

    async def get_audit_logs(
        self,
        entity_type: Optional[str] = None,
        entity_id: Optional[Any] = None,
        limit: int = 100
    ):
        """Retrieve audit logs (READ ONLY)"""
        logs = await self.store.find_audit_logs(entity_type=entity_type, entity_id=entity_id, limit=limit)

        for log in logs:
            log["audit_id"] = log.pop("_id")

        return logs
