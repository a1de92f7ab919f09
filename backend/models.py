from pydantic import BaseModel, Field, EmailStr
from typing import Optional, List, Dict, Any
from datetime import datetime, date
from decimal import Decimal

from ledger.enums import HOME_CURRENCY

# Request fields the engine validates itself are Optional, so a missing value
# comes back as a structured MISSING_FIELD rejection rather than a 422.

# ============================================
# AUTH MODELS
# ============================================
class LoginRequest(BaseModel):
    username: str
    password: str

class UserResponse(BaseModel):
    user_id: int
    username: str
    email: EmailStr
    full_name: str
    role: str
    agency_id: Optional[int] = None
    is_active: bool = True

class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int = 1800  # seconds
    user: UserResponse

# ============================================
# TRANSACTION MODELS
# ============================================
class TransactionCreate(BaseModel):
    contract_id: Optional[int] = None
    transaction_type: Optional[str] = None
    amount: Optional[Decimal] = None
    agency_id: Optional[int] = None  # Defaults to the caller's agency
    description: Optional[str] = None
    currency: str = HOME_CURRENCY
    verified_by: Optional[int] = None

class BatchTransactionItem(BaseModel):
    contract_id: Optional[int] = None
    transaction_type: Optional[str] = None
    amount: Optional[Decimal] = None
    description: Optional[str] = None
    currency: str = HOME_CURRENCY

class BatchTransactionCreate(BaseModel):
    agency_id: Optional[int] = None
    transactions: List[BatchTransactionItem] = Field(default_factory=list)

class TransactionResponse(BaseModel):
    transaction_id: int
    reference: str
    message: str
    success: bool
    kind: Optional[str] = None
    contract_activated: bool = False

class ReceiptResponse(TransactionResponse):
    receipt_number: str = ""
    receipt_details: Optional[Dict[str, Any]] = None

class BatchItemResponse(BaseModel):
    contract_id: Optional[int] = None
    transaction_id: Optional[int] = None
    reference: Optional[str] = None
    outcome: str
    message: str
    kind: Optional[str] = None

class BatchResponse(BaseModel):
    total: int
    success_count: int
    failed_count: int
    processed_at: Optional[datetime] = None
    results: List[BatchItemResponse]

# ============================================
# STATISTICS MODELS
# ============================================
class BreakdownEntry(BaseModel):
    count: int
    total: float

class TransactionStats(BaseModel):
    total_transactions: int
    total_amount: float
    avg_amount: float
    min_amount: float
    max_amount: float
    successful_count: int
    failed_count: int
    pending_count: int
    by_transaction_type: Dict[str, BreakdownEntry]
    by_agency: Dict[str, BreakdownEntry]
    completed_avg_amount: float
    filters: Dict[str, Any]

class SimpleTransactionStats(BaseModel):
    total_transactions: int
    total_amount: float
    today_transactions: int
    today_amount: float

class PeriodStats(BaseModel):
    period: str
    transaction_count: int
    total_amount: float
    avg_amount: float

class ContractBalance(BaseModel):
    contract_id: int
    agency_id: Optional[int] = None
    contract_number: Optional[str] = None
    status: Optional[str] = None
    balance: float
    currency: str

# ============================================
# CLIENT MODELS
# ============================================
class ClientCreate(BaseModel):
    national_id: Optional[str] = None
    full_name: Optional[str] = None
    agency_id: Optional[int] = None  # Defaults to the caller's agency
    # Plain str: the format check and its message belong to the client service
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    date_of_birth: Optional[date] = None

class ClientCreateResponse(BaseModel):
    client_id: int
    message: str
    success: bool
    kind: Optional[str] = None

class ClientRow(BaseModel):
    client_id: int
    national_id: str
    full_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    date_of_birth: Optional[date] = None
    age: Optional[int] = None
    registration_date: Optional[date] = None
    status: str
    agency_name: Optional[str] = None
    agency_code: Optional[str] = None
    city: Optional[str] = None
    days_since_registration: Optional[int] = None
    created_by_user: Optional[str] = None

class ClientListResponse(BaseModel):
    agency_id: int
    clients: List[ClientRow]
    count: int
    limit: int
    offset: int

class ClientStats(BaseModel):
    agency_name: str
    total_clients: int
    active_clients: int
    inactive_clients: int
    suspended_clients: int
    avg_client_age: Optional[float] = None
    oldest_registration: Optional[date] = None
    newest_registration: Optional[date] = None
    clients_last_30_days: int
