"""
Entity store interface.

Every ledger component talks to storage through this interface. Documents are
plain dicts keyed by "_id" (an integer allocated from a named counter), with
money fields as Decimal and dates as naive UTC datetimes.

Write methods accept the session handed out by run_in_transaction(); a write
without a session is applied on its own.
"""

import abc
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

# Collection names, shared by all backends
AGENCIES = "agencies"
USERS = "users"
CLIENTS = "clients"
CONTRACTS = "contracts"
TRANSACTIONS = "transactions"
AUDIT_LOGS = "audit_logs"
COUNTERS = "counters"

# Fields matched by the client search term
CLIENT_SEARCH_FIELDS = ("national_id", "full_name", "email", "phone")


class EntityStore(abc.ABC):
    """Abstract entity store backend."""

    @abc.abstractmethod
    async def run_in_transaction(self, callback: Callable[[Any], Awaitable[Any]]) -> Any:
        """
        Run callback(session) inside one atomic unit and return its result.

        Any exception raised by the callback (including cancellation) rolls the
        unit back and is re-raised.
        """

    @abc.abstractmethod
    async def next_sequence(self, name: str, session=None) -> int:
        """Atomically increment and return the named counter (first value is 1)."""

    # ------------------------------------------------------------------
    # Agencies / users
    # ------------------------------------------------------------------

    @abc.abstractmethod
    async def insert_agency(self, doc: Dict[str, Any], session=None) -> int:
        ...

    @abc.abstractmethod
    async def get_agency(self, agency_id: int, session=None) -> Optional[Dict[str, Any]]:
        ...

    @abc.abstractmethod
    async def get_agencies(self, agency_ids: Iterable[int], session=None) -> Dict[int, Dict[str, Any]]:
        ...

    @abc.abstractmethod
    async def insert_user(self, doc: Dict[str, Any], session=None) -> int:
        ...

    @abc.abstractmethod
    async def get_users(self, user_ids: Iterable[int], session=None) -> Dict[int, Dict[str, Any]]:
        """Fetch several users in one read, keyed by id."""

    @abc.abstractmethod
    async def find_user_by_username(self, username: str) -> Optional[Dict[str, Any]]:
        ...

    async def get_user(self, user_id: int, session=None) -> Optional[Dict[str, Any]]:
        users = await self.get_users([user_id], session=session)
        return users.get(user_id)

    # ------------------------------------------------------------------
    # Clients
    # ------------------------------------------------------------------

    @abc.abstractmethod
    async def insert_client(self, doc: Dict[str, Any], session=None) -> int:
        ...

    @abc.abstractmethod
    async def get_client(self, client_id: int, session=None) -> Optional[Dict[str, Any]]:
        ...

    @abc.abstractmethod
    async def find_client(
        self,
        national_id: Optional[str] = None,
        email: Optional[str] = None,
        session=None
    ) -> Optional[Dict[str, Any]]:
        """Find a client by exact national id or exact email."""

    @abc.abstractmethod
    async def list_clients(
        self,
        agency_id: int,
        status: Optional[str] = None,
        search_term: Optional[str] = None,
        sort_field: str = "full_name",
        descending: bool = False,
        limit: int = 100,
        offset: int = 0
    ) -> List[Dict[str, Any]]:
        """
        Page through an agency's clients.

        search_term is a literal, case-insensitive substring matched against
        CLIENT_SEARCH_FIELDS. sort_field must be a stored field name.
        """

    @abc.abstractmethod
    async def find_clients(self, agency_id: int) -> List[Dict[str, Any]]:
        ...

    # ------------------------------------------------------------------
    # Contracts
    # ------------------------------------------------------------------

    @abc.abstractmethod
    async def insert_contract(self, doc: Dict[str, Any], session=None) -> int:
        ...

    @abc.abstractmethod
    async def get_contract(self, contract_id: int, session=None) -> Optional[Dict[str, Any]]:
        ...

    @abc.abstractmethod
    async def lock_contract(self, contract_id: int, session=None) -> Optional[Dict[str, Any]]:
        """
        Read a contract and take its write lock for the rest of the session.

        Two sessions locking the same contract cannot both commit.
        """

    @abc.abstractmethod
    async def activate_contract(self, contract_id: int, updated_at: datetime, session=None) -> bool:
        """Flip a DRAFT contract to ACTIVE. Returns False if it was not DRAFT."""

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @abc.abstractmethod
    async def insert_transaction(self, doc: Dict[str, Any], session=None) -> int:
        """Insert a transaction whose "_id" is already allocated."""

    @abc.abstractmethod
    async def reference_exists(self, reference: str, session=None) -> bool:
        ...

    @abc.abstractmethod
    async def find_transactions(
        self,
        contract_id: Optional[int] = None,
        agency_id: Optional[int] = None,
        status: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        session=None
    ) -> List[Dict[str, Any]]:
        """
        Transactions matching every given filter, ordered by id.

        start is inclusive, end is exclusive (both on transaction_date).
        """

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    @abc.abstractmethod
    async def insert_audit_log(self, doc: Dict[str, Any], session=None) -> None:
        ...

    @abc.abstractmethod
    async def find_audit_logs(
        self,
        entity_type: Optional[str] = None,
        entity_id: Optional[Any] = None,
        limit: int = 100
    ) -> List[Dict[str, Any]]:
        """Most recent first."""

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def ensure_indexes(self) -> None:
        """Create unique constraints. No-op for backends that enforce them natively."""

    async def close(self) -> None:
        pass
