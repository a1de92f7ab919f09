# Ledger API Endpoints
#
# Integrated in server.py with:
# from ledger_routes import create_ledger_routes
# ledger_router = create_ledger_routes(engine, batch_processor, stats_service, client_service, permission_checker)
# app.include_router(ledger_router)

from fastapi import APIRouter, HTTPException, status, Depends, Query
from datetime import date
from typing import Optional, List
import logging

from models import (
    TransactionCreate, TransactionResponse, ReceiptResponse,
    BatchTransactionCreate, BatchResponse,
    TransactionStats, SimpleTransactionStats, PeriodStats, ContractBalance,
    ClientCreate, ClientCreateResponse, ClientListResponse, ClientStats
)
from auth import get_current_user
from permissions import PermissionChecker
from ledger.errors import LedgerRejection, RejectionKind
from ledger.results import TransactionResult

logger = logging.getLogger(__name__)

REJECTION_STATUS = {
    RejectionKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    RejectionKind.DUPLICATE: status.HTTP_409_CONFLICT,
    RejectionKind.INTERNAL_FAULT: status.HTTP_500_INTERNAL_SERVER_ERROR,
    RejectionKind.DEADLINE_EXCEEDED: status.HTTP_504_GATEWAY_TIMEOUT,
}


def rejection_status(kind: RejectionKind) -> int:
    return REJECTION_STATUS.get(kind, status.HTTP_400_BAD_REQUEST)


def raise_for_result(result: TransactionResult):
    """Turn a rejected engine result into an HTTP error carrying the result body"""
    if not result.success:
        raise HTTPException(status_code=rejection_status(result.kind), detail=result.to_dict())


def create_ledger_routes(
    engine,
    batch_processor,
    stats_service,
    client_service,
    permission_checker: PermissionChecker
) -> APIRouter:
    """Create the ledger API router"""

    router = APIRouter(prefix="/api/ledger", tags=["Ledger"])

    # ============================================
    # TRANSACTION ENDPOINTS
    # ============================================

    @router.post("/transactions", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
    async def add_transaction(
        data: TransactionCreate,
        current_user: dict = Depends(get_current_user)
    ):
        """Record one transaction (AGENCY_MANAGER, AGENCY_STAFF)"""
        caller, agency_id = await permission_checker.authorize(current_user, "add_transaction", data.agency_id)

        result = await engine.add_transaction(
            contract_id=data.contract_id,
            transaction_type=data.transaction_type,
            amount=data.amount,
            agency_id=agency_id,
            performed_by=caller.user_id,
            description=data.description,
            currency=data.currency,
            verified_by=data.verified_by,
        )
        raise_for_result(result)
        return result.to_dict()

    @router.post("/transactions/receipt", response_model=ReceiptResponse, status_code=status.HTTP_201_CREATED)
    async def add_transaction_with_receipt(
        data: TransactionCreate,
        current_user: dict = Depends(get_current_user)
    ):
        """Record one transaction and return its receipt (AGENCY_MANAGER)"""
        caller, agency_id = await permission_checker.authorize(
            current_user, "add_transaction_with_receipt", data.agency_id
        )

        result = await engine.add_transaction_with_receipt(
            contract_id=data.contract_id,
            transaction_type=data.transaction_type,
            amount=data.amount,
            agency_id=agency_id,
            performed_by=caller.user_id,
            description=data.description,
            currency=data.currency,
        )
        raise_for_result(result)
        return result.to_dict()

    @router.post("/transactions/batch", response_model=BatchResponse)
    async def add_transaction_batch(
        data: BatchTransactionCreate,
        current_user: dict = Depends(get_current_user)
    ):
        """
        Record several transactions (AGENCY_MANAGER).

        Always 200: each item carries its own SUCCESS/FAILED outcome.
        """
        caller, agency_id = await permission_checker.authorize(
            current_user, "add_transaction_batch", data.agency_id
        )

        batch = await batch_processor.add_transaction_batch(
            items=[item.model_dump() for item in data.transactions],
            agency_id=agency_id,
            performed_by=caller.user_id,
        )
        return batch.to_dict()

    # ============================================
    # STATISTICS ENDPOINTS
    # ============================================

    @router.get("/transactions/stats", response_model=TransactionStats)
    async def get_transaction_stats(
        agency_id: Optional[int] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        current_user: dict = Depends(get_current_user)
    ):
        """Aggregate statistics (CEO, AUDIT, AGENCY_MANAGER for own agency)"""
        _, agency_id = await permission_checker.authorize(current_user, "get_transaction_stats", agency_id)

        if start_date and end_date and start_date > end_date:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="start_date must be on or before end_date"
            )

        return await stats_service.get_transaction_stats(
            agency_id=agency_id, start_date=start_date, end_date=end_date
        )

    @router.get("/transactions/stats/simple", response_model=SimpleTransactionStats)
    async def get_transaction_stats_simple(
        current_user: dict = Depends(get_current_user)
    ):
        """Completed totals, overall and today"""
        await permission_checker.authorize(current_user, "get_transaction_stats_simple")
        return await stats_service.get_transaction_stats_simple()

    @router.get("/transactions/stats/by-period", response_model=List[PeriodStats])
    async def get_transaction_stats_by_period(
        period: str = "MONTH",
        current_user: dict = Depends(get_current_user)
    ):
        """Completed totals per DAY, WEEK or MONTH (CEO, AUDIT)"""
        await permission_checker.authorize(current_user, "get_transaction_stats_by_period")
        return await stats_service.get_transaction_stats_by_period(period)

    @router.get("/contracts/{contract_id}/balance", response_model=ContractBalance)
    async def get_contract_balance(
        contract_id: int,
        current_user: dict = Depends(get_current_user)
    ):
        """Derived balance of one contract (agency-bound roles: own agency's contracts only)"""
        _, agency_id = await permission_checker.authorize(current_user, "get_contract_balance")

        try:
            return await engine.get_contract_balance(contract_id, agency_id=agency_id)
        except LedgerRejection as e:
            raise HTTPException(status_code=rejection_status(e.kind), detail=e.message)

    # ============================================
    # CLIENT ENDPOINTS
    # ============================================

    @router.post("/clients", response_model=ClientCreateResponse, status_code=status.HTTP_201_CREATED)
    async def add_client(
        data: ClientCreate,
        current_user: dict = Depends(get_current_user)
    ):
        """Onboard a client (AGENCY_MANAGER, AGENCY_STAFF)"""
        caller, agency_id = await permission_checker.authorize(current_user, "add_client", data.agency_id)

        result = await client_service.add_client(
            national_id=data.national_id,
            full_name=data.full_name,
            agency_id=agency_id,
            email=data.email,
            phone=data.phone,
            address=data.address,
            date_of_birth=data.date_of_birth,
            created_by=caller.user_id,
        )

        body = {
            "client_id": result.client_id,
            "message": result.message,
            "success": result.success,
            "kind": result.kind.value if result.kind else None,
        }
        if not result.success:
            raise HTTPException(status_code=rejection_status(result.kind), detail=body)
        return body

    @router.get("/agencies/{agency_id}/clients", response_model=ClientListResponse)
    async def list_clients_by_agency(
        agency_id: int,
        status_filter: Optional[str] = Query(None, alias="status"),
        search: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
        sort_by: str = "full_name",
        sort_order: str = "ASC",
        current_user: dict = Depends(get_current_user)
    ):
        """Page through an agency's clients (CEO, AGENCY_MANAGER, AGENCY_STAFF, AUDIT)"""
        _, agency_id = await permission_checker.authorize(current_user, "list_clients_by_agency", agency_id)

        if limit < 1 or offset < 0:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="limit must be >= 1 and offset >= 0"
            )

        page = await client_service.list_clients_by_agency(
            agency_id=agency_id,
            status=status_filter,
            search_term=search,
            limit=limit,
            offset=offset,
            sort_by=sort_by,
            sort_order=sort_order,
        )
        if not page.success:
            raise HTTPException(status_code=rejection_status(page.kind), detail=page.message)

        return {
            "agency_id": page.agency_id,
            "clients": page.clients,
            "count": len(page.clients),
            "limit": page.limit,
            "offset": page.offset,
        }

    @router.get("/agencies/{agency_id}/client-stats", response_model=ClientStats)
    async def get_client_stats_by_agency(
        agency_id: int,
        current_user: dict = Depends(get_current_user)
    ):
        """Client counts for one agency (CEO, AUDIT)"""
        await permission_checker.authorize(current_user, "get_client_stats_by_agency", agency_id)

        stats = await client_service.get_client_stats_by_agency(agency_id)
        if stats is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Agency ID {agency_id} does not exist"
            )
        return stats

    return router
