"""KidLedger package: simulated company ledgers and a peer marketplace for children."""

from .api import ApiExporter
from .exceptions import (
    AccountNotFoundError,
    DuplicateAccountError,
    InsufficientFundsError,
    InvalidAmountError,
    InvalidInputError,
    KidLedgerError,
    ListingNotFoundError,
    OutOfStockError,
    PersistenceFailureError,
    ProgressUnavailableError,
    RewardHookError,
    SellerAccountMissingError,
)
from .exchange import ExchangeEngine, ExchangeOutcome, ExchangeResult
from .ledger import LedgerEngine, TransactionLog, generate_statement, record_transaction
from .models import (
    ActivityKind,
    AuditEvent,
    ChildSession,
    CompanyAccount,
    LeaderboardEntry,
    ListingStatus,
    MarketplaceListing,
    PurchaseRecord,
    RewardResult,
    Transaction,
    TransactionKind,
)
from .ops import AuditLog, StructuredLogger
from .rewards import AchievementTracker, RewardHook, RewardQueue
from .service import KidLedger
from .store import InMemoryStore, LedgerStore, PurchaseCommit

__all__ = [
    "AccountNotFoundError",
    "AchievementTracker",
    "ActivityKind",
    "ApiExporter",
    "AuditEvent",
    "AuditLog",
    "ChildSession",
    "CompanyAccount",
    "DuplicateAccountError",
    "ExchangeEngine",
    "ExchangeOutcome",
    "ExchangeResult",
    "InMemoryStore",
    "InsufficientFundsError",
    "InvalidAmountError",
    "InvalidInputError",
    "KidLedger",
    "KidLedgerError",
    "LeaderboardEntry",
    "LedgerEngine",
    "LedgerStore",
    "ListingNotFoundError",
    "ListingStatus",
    "MarketplaceListing",
    "OutOfStockError",
    "PersistenceFailureError",
    "ProgressUnavailableError",
    "PurchaseCommit",
    "PurchaseRecord",
    "RewardHook",
    "RewardHookError",
    "RewardQueue",
    "RewardResult",
    "SellerAccountMissingError",
    "StructuredLogger",
    "Transaction",
    "TransactionKind",
    "TransactionLog",
    "generate_statement",
    "record_transaction",
]
