from enum import Enum


class TransactionType(str, Enum):
    PAYMENT = "PAYMENT"
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    FEE = "FEE"
    INTEREST = "INTEREST"
    REFUND = "REFUND"
    ADJUSTMENT = "ADJUSTMENT"
    PENALTY = "PENALTY"


class TransactionStatus(str, Enum):
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    PENDING = "PENDING"


class ContractStatus(str, Enum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    COMPLETED = "COMPLETED"
    CLOSED = "CLOSED"
    CANCELLED = "CANCELLED"


# Only these accept new transactions
OPEN_CONTRACT_STATUSES = (ContractStatus.DRAFT.value, ContractStatus.ACTIVE.value)


class ClientStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    SUSPENDED = "SUSPENDED"


class Currency(str, Enum):
    XAF = "XAF"  # Home currency
    EUR = "EUR"
    USD = "USD"


HOME_CURRENCY = Currency.XAF.value


class UserRole(str, Enum):
    CEO = "CEO"
    AGENCY_MANAGER = "AGENCY_MANAGER"
    AGENCY_STAFF = "AGENCY_STAFF"
    AUDIT = "AUDIT"
    REPORT = "REPORT"


# Roles whose data access is bound to their own agency
AGENCY_BOUND_ROLES = (UserRole.AGENCY_MANAGER.value, UserRole.AGENCY_STAFF.value)


class ClientSortField(str, Enum):
    """Sortable client columns; values are the stored field names."""
    FULL_NAME = "full_name"
    REGISTRATION_DATE = "registration_date"
    NATIONAL_ID = "national_id"
    STATUS = "status"
    DATE_OF_BIRTH = "date_of_birth"

    @classmethod
    def resolve(cls, value) -> "ClientSortField":
        """Unrecognised sort fields fall back to full_name."""
        try:
            return cls(value)
        except ValueError:
            return cls.FULL_NAME


class SortOrder(str, Enum):
    ASC = "ASC"
    DESC = "DESC"


class StatsPeriod(str, Enum):
    DAY = "DAY"
    WEEK = "WEEK"
    MONTH = "MONTH"
