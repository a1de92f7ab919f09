"""
Ledger Transaction Engine Modules
"""
from .financial_precision import (
    to_decimal,
    round_financial,
    to_float,
    safe_divide,
    FinancialPrecisionError
)

from .errors import (
    RejectionKind,
    LedgerRejection,
    SequenceCollisionError,
    DuplicateKeyConflict,
    FinancialDeleteBlockedError
)

from .results import (
    TransactionResult,
    ReceiptResult,
    BatchItemResult,
    BatchResult,
    ClientResult,
    ClientPage
)

from .atomic_numbering import ReferenceGenerator, format_reference
from .balance import BalanceCalculator, compute_balance
from .validation import TransactionValidator, TransactionRequest
from .transaction_engine import TransactionEngine
from .batch_processor import BatchProcessor, BatchItem
from .statistics import TransactionStatisticsService
from .client_service import ClientService

__all__ = [
    # Financial Precision
    'to_decimal',
    'round_financial',
    'to_float',
    'safe_divide',
    'FinancialPrecisionError',
    # Errors
    'RejectionKind',
    'LedgerRejection',
    'SequenceCollisionError',
    'DuplicateKeyConflict',
    'FinancialDeleteBlockedError',
    # Results
    'TransactionResult',
    'ReceiptResult',
    'BatchItemResult',
    'BatchResult',
    'ClientResult',
    'ClientPage',
    # Engine
    'ReferenceGenerator',
    'format_reference',
    'BalanceCalculator',
    'compute_balance',
    'TransactionValidator',
    'TransactionRequest',
    'TransactionEngine',
    'BatchProcessor',
    'BatchItem',
    'TransactionStatisticsService',
    'ClientService',
]
