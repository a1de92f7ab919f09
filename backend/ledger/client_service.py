"""
LEDGER: CLIENT ONBOARDING AND LISTING

Provides:
1. add_client - validated insert with normalised identity fields
2. list_clients_by_agency - paged, filtered, whitelisted-sort listing
3. get_client_stats_by_agency - per-agency client counts and ages

Dates (date_of_birth, registration_date) are stored as midnight datetimes and
returned as dates.
"""

from datetime import date, datetime, time, timedelta
from typing import Optional, Dict, Any, Callable
import logging
import re

from ledger.enums import ClientStatus, ClientSortField, SortOrder
from ledger.errors import LedgerRejection, RejectionKind, DuplicateKeyConflict
from ledger.results import ClientResult, ClientPage

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$")
DEFAULT_PAGE_SIZE = 100
RECENT_REGISTRATION_DAYS = 30


def normalize_national_id(value: str) -> str:
    return value.strip().upper()


def normalize_full_name(value: str) -> str:
    return value.strip().title()


def _blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


def _as_datetime(value: Optional[date]) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return datetime.combine(value.date(), time.min)
    return datetime.combine(value, time.min)


def _as_date(value) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    return value


def age_on(birth: Optional[date], today: date) -> Optional[int]:
    """Whole years between birth and today."""
    if birth is None:
        return None
    years = today.year - birth.year
    if (today.month, today.day) < (birth.month, birth.day):
        years -= 1
    return years


class ClientService:

    def __init__(self, store, audit_service=None, clock: Callable[[], datetime] = datetime.utcnow):
        self.store = store
        self.audit_service = audit_service
        self.clock = clock

    # =========================================================================
    # ONBOARDING
    # =========================================================================

    async def add_client(
        self,
        national_id: Optional[str],
        full_name: Optional[str],
        agency_id: Optional[int],
        email: Optional[str] = None,
        phone: Optional[str] = None,
        address: Optional[str] = None,
        date_of_birth: Optional[date] = None,
        created_by: Optional[int] = None
    ) -> ClientResult:
        """
        Create a client.

        Checks, in order: national id, full name, agency id present; national
        id not taken; agency active; creator active (if given); email format;
        email not taken. Returns client_id=0 with a message on rejection.
        """
        try:
            return await self.store.run_in_transaction(
                lambda session: self._insert_client(
                    national_id, full_name, agency_id, email, phone,
                    address, date_of_birth, created_by, session
                )
            )
        except LedgerRejection as e:
            logger.info(f"[CLIENT] Rejected ({e.kind.value}): {e.message}")
            return ClientResult(client_id=0, message=e.message, kind=e.kind)
        except DuplicateKeyConflict as e:
            # Lost a race against a concurrent insert of the same identity
            logger.warning(f"[CLIENT] Unique constraint hit on insert: {e}")
            if e.field == "email":
                message = f"Email {e.value} is already registered"
            else:
                message = f"Client with national ID {e.value} already exists"
            return ClientResult(client_id=0, message=message, kind=RejectionKind.DUPLICATE)
        except Exception as e:
            logger.error(f"[CLIENT ERROR] add_client failed: {str(e)}")
            return ClientResult(
                client_id=0,
                message=f"Error creating client: {str(e)}",
                kind=RejectionKind.INTERNAL_FAULT,
            )

    async def _insert_client(
        self, national_id, full_name, agency_id, email, phone,
        address, date_of_birth, created_by, session
    ) -> ClientResult:
        if _blank(national_id):
            raise LedgerRejection(RejectionKind.MISSING_FIELD, "National ID is required")
        if _blank(full_name):
            raise LedgerRejection(RejectionKind.MISSING_FIELD, "Full name is required")
        if agency_id is None:
            raise LedgerRejection(RejectionKind.MISSING_FIELD, "Agency ID is required")

        normalized_id = normalize_national_id(national_id)
        if await self.store.find_client(national_id=normalized_id, session=session):
            raise LedgerRejection(
                RejectionKind.DUPLICATE,
                f"Client with national ID {national_id} already exists"
            )

        agency = await self.store.get_agency(agency_id, session=session)
        if agency is None or not agency.get("is_active", False):
            raise LedgerRejection(
                RejectionKind.NOT_FOUND if agency is None else RejectionKind.INACTIVE,
                f"Agency ID {agency_id} does not exist or is inactive"
            )

        if created_by is not None:
            creator = await self.store.get_user(created_by, session=session)
            if creator is None or not creator.get("is_active", False):
                raise LedgerRejection(
                    RejectionKind.NOT_FOUND if creator is None else RejectionKind.INACTIVE,
                    f"Creator user ID {created_by} does not exist or is inactive"
                )

        normalized_email = None
        if not _blank(email):
            if not EMAIL_PATTERN.match(email.strip()):
                raise LedgerRejection(RejectionKind.INVALID_ENUM, "Invalid email format")
            normalized_email = email.strip().lower()
            if await self.store.find_client(email=normalized_email, session=session):
                raise LedgerRejection(
                    RejectionKind.DUPLICATE,
                    f"Email {email} is already registered"
                )

        now = self.clock()
        doc = {
            "national_id": normalized_id,
            "full_name": normalize_full_name(full_name),
            "email": normalized_email,
            "phone": phone.strip() if phone else None,
            "address": address.strip() if address else None,
            "date_of_birth": _as_datetime(date_of_birth),
            "agency_id": agency_id,
            "status": ClientStatus.ACTIVE.value,
            "registration_date": _as_datetime(now.date()),
            "created_by": created_by,
            "created_at": now,
        }
        client_id = await self.store.insert_client(doc, session=session)

        if self.audit_service is not None:
            await self.audit_service.log_action(
                entity_type="CLIENT",
                entity_id=client_id,
                action_type="CREATE",
                user_id=created_by,
                agency_id=agency_id,
                new_value={"national_id": normalized_id, "full_name": doc["full_name"]},
                session=session
            )

        logger.info(f"[CLIENT] Client {client_id} created for agency {agency_id}")
        return ClientResult(
            client_id=client_id,
            message=f"Client created successfully with ID: {client_id}",
        )

    # =========================================================================
    # LISTING
    # =========================================================================

    async def list_clients_by_agency(
        self,
        agency_id: int,
        status: Optional[str] = None,
        search_term: Optional[str] = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
        sort_by: Optional[str] = ClientSortField.FULL_NAME.value,
        sort_order: Optional[str] = SortOrder.ASC.value
    ) -> ClientPage:
        """
        Page through one agency's clients.

        Unknown sort_by falls back to full_name; sort_order must be ASC or
        DESC. search_term is a literal case-insensitive substring.
        """
        page = ClientPage(agency_id=agency_id, limit=limit, offset=offset)

        agency = await self.store.get_agency(agency_id)
        if agency is None or not agency.get("is_active", False):
            page.kind = RejectionKind.NOT_FOUND if agency is None else RejectionKind.INACTIVE
            page.message = f"Agency ID {agency_id} does not exist or is inactive"
            return page

        try:
            order = SortOrder(str(sort_order or SortOrder.ASC.value).upper())
        except ValueError:
            page.kind = RejectionKind.INVALID_ENUM
            page.message = "Sort order must be ASC or DESC"
            return page

        sort_field = ClientSortField.resolve(sort_by)
        rows = await self.store.list_clients(
            agency_id=agency_id,
            status=status,
            search_term=search_term if search_term else None,
            sort_field=sort_field.value,
            descending=order == SortOrder.DESC,
            limit=limit,
            offset=offset,
        )

        creators = await self.store.get_users(
            [r["created_by"] for r in rows if r.get("created_by") is not None]
        )
        today = self.clock().date()

        for row in rows:
            birth = _as_date(row.get("date_of_birth"))
            registered = _as_date(row.get("registration_date"))
            creator = creators.get(row.get("created_by"))
            page.clients.append({
                "client_id": row["_id"],
                "national_id": row.get("national_id"),
                "full_name": row.get("full_name"),
                "email": row.get("email"),
                "phone": row.get("phone"),
                "address": row.get("address"),
                "date_of_birth": birth,
                "age": age_on(birth, today),
                "registration_date": registered,
                "status": row.get("status"),
                "agency_name": agency.get("agency_name"),
                "agency_code": agency.get("agency_code"),
                "city": agency.get("city"),
                "days_since_registration": (today - registered).days if registered else None,
                "created_by_user": creator.get("full_name") if creator else None,
            })

        page.message = f"Retrieved {len(page.clients)} clients for agency ID {agency_id}"
        logger.debug(
            f"[CLIENT] Listed agency={agency_id} status={status} search={search_term} "
            f"sort={sort_field.value} {order.value}: {len(page.clients)} rows"
        )
        return page

    # =========================================================================
    # STATISTICS
    # =========================================================================

    async def get_client_stats_by_agency(self, agency_id: int) -> Optional[Dict[str, Any]]:
        """Client counts by status, average age and registration window. None for an unknown agency."""
        agency = await self.store.get_agency(agency_id)
        if agency is None:
            return None

        clients = await self.store.find_clients(agency_id)
        today = self.clock().date()
        recent_cutoff = today - timedelta(days=RECENT_REGISTRATION_DAYS)

        by_status = {s.value: 0 for s in ClientStatus}
        ages = []
        registrations = []
        for client in clients:
            if client.get("status") in by_status:
                by_status[client["status"]] += 1
            birth = _as_date(client.get("date_of_birth"))
            if birth is not None:
                ages.append(age_on(birth, today))
            registered = _as_date(client.get("registration_date"))
            if registered is not None:
                registrations.append(registered)

        return {
            "agency_name": agency.get("agency_name"),
            "total_clients": len(clients),
            "active_clients": by_status[ClientStatus.ACTIVE.value],
            "inactive_clients": by_status[ClientStatus.INACTIVE.value],
            "suspended_clients": by_status[ClientStatus.SUSPENDED.value],
            "avg_client_age": round(sum(ages) / len(ages), 1) if ages else None,
            "oldest_registration": min(registrations) if registrations else None,
            "newest_registration": max(registrations) if registrations else None,
            "clients_last_30_days": sum(1 for r in registrations if r >= recent_cutoff),
        }
