from dataclasses import dataclass
from typing import Optional
from fastapi import HTTPException, status
import logging

from ledger.enums import UserRole, AGENCY_BOUND_ROLES

logger = logging.getLogger(__name__)

CEO = UserRole.CEO.value
MANAGER = UserRole.AGENCY_MANAGER.value
STAFF = UserRole.AGENCY_STAFF.value
AUDIT = UserRole.AUDIT.value

# Which roles may call which ledger operation
OPERATION_ROLES = {
    "add_transaction": (MANAGER, STAFF),
    "add_transaction_with_receipt": (MANAGER,),
    "add_transaction_batch": (MANAGER,),
    "get_transaction_stats": (CEO, AUDIT, MANAGER),
    "get_transaction_stats_simple": (CEO, AUDIT, MANAGER, STAFF),
    "get_transaction_stats_by_period": (CEO, AUDIT),
    "get_contract_balance": (CEO, AUDIT, MANAGER, STAFF),
    "add_client": (MANAGER, STAFF),
    "list_clients_by_agency": (CEO, MANAGER, STAFF, AUDIT),
    "get_client_stats_by_agency": (CEO, AUDIT),
}


@dataclass
class CallerContext:
    """Authenticated caller plus the agency it is allowed to act on"""
    user_id: int
    role: str
    agency_id: Optional[int]
    full_name: Optional[str] = None

    @property
    def agency_bound(self) -> bool:
        return self.role in AGENCY_BOUND_ROLES


class PermissionChecker:
    """
    Permission enforcement for ledger routes.

    RULES:
    1. User must be authenticated
    2. User must be active
    3. Role must be granted the operation
    4. Agency-bound roles only act on their own agency
    """

    def __init__(self, store):
        self.store = store

    async def get_caller(self, current_user: dict) -> CallerContext:
        """Resolve the token payload into an active user's context"""
        user_id = current_user.get("user_id")

        user = await self.store.get_user(user_id)

        if not user:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="User not found"
            )

        # Check active status
        if not user.get("is_active", False):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="User account is inactive"
            )

        return CallerContext(
            user_id=user["_id"],
            role=user.get("role"),
            agency_id=user.get("agency_id"),
            full_name=user.get("full_name"),
        )

    def check_operation(self, caller: CallerContext, operation: str):
        """Check the caller's role is granted the operation"""
        if caller.role not in OPERATION_ROLES.get(operation, ()):
            logger.warning(f"[PERMISSION] user={caller.user_id} role={caller.role} denied {operation}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role {caller.role} is not allowed to perform {operation}"
            )
        return True

    def resolve_agency(self, caller: CallerContext, requested_agency_id: Optional[int]) -> Optional[int]:
        """
        Agency the operation runs against.

        Agency-bound callers default to, and are restricted to, their own
        agency. Other roles use whatever they asked for (None = all).
        """
        if not caller.agency_bound:
            return requested_agency_id

        if requested_agency_id is not None and requested_agency_id != caller.agency_id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"User does not have access to agency {requested_agency_id}"
            )
        return caller.agency_id

    async def authorize(
        self,
        current_user: dict,
        operation: str,
        requested_agency_id: Optional[int] = None
    ):
        """Full check for one route call. Returns (caller, agency_id)."""
        caller = await self.get_caller(current_user)
        self.check_operation(caller, operation)
        return caller, self.resolve_agency(caller, requested_agency_id)
