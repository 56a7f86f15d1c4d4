"""Domain models used by the KidLedger package."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Tuple
from uuid import uuid4

from .money import ZERO, AmountLike, require_positive, to_decimal

DEFAULT_STARTING_CAPITAL = Decimal("4750.00")


def new_id() -> str:
    return str(uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TransactionKind(str, Enum):
    """Enumerates the balance-affecting events of a company ledger."""

    REVENUE = "revenue"
    EXPENSE = "expense"
    SALE = "sale"
    PURCHASE = "purchase"

    @property
    def is_credit(self) -> bool:
        return self in (TransactionKind.REVENUE, TransactionKind.SALE)


class ListingStatus(str, Enum):
    """Lifecycle of a marketplace listing."""

    AVAILABLE = "available"
    SOLD = "sold"
    REMOVED = "removed"


class ActivityKind(str, Enum):
    """Activities reported to the achievement and XP system."""

    MODULE_START = "module_start"
    LESSON_COMPLETE = "lesson_complete"
    QUIZ_ATTEMPT = "quiz_attempt"
    MODULE_COMPLETE = "module_complete"
    SALE = "sale"


@dataclass(frozen=True, slots=True)
class ChildSession:
    """Authenticated child identity handed to every service call."""

    child_id: str
    child_name: str = ""

    @property
    def display_name(self) -> str:
        return self.child_name or "a buyer"


@dataclass(frozen=True, slots=True)
class CompanyAccount:
    """A child's simulated company: balance plus cumulative revenue and expenses."""

    id: str
    owner_id: str
    company_name: str
    balance: Decimal
    total_revenue: Decimal = ZERO
    total_expenses: Decimal = ZERO
    initial_capital: Decimal = DEFAULT_STARTING_CAPITAL
    product_name: Optional[str] = None
    specialty: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        object.__setattr__(self, "balance", to_decimal(self.balance))
        object.__setattr__(self, "total_revenue", to_decimal(self.total_revenue))
        object.__setattr__(self, "total_expenses", to_decimal(self.total_expenses))
        object.__setattr__(self, "initial_capital", to_decimal(self.initial_capital))

    @classmethod
    def open(
        cls,
        owner_id: str,
        company_name: str,
        *,
        starting_capital: AmountLike = DEFAULT_STARTING_CAPITAL,
        product_name: Optional[str] = None,
        specialty: Optional[str] = None,
    ) -> "CompanyAccount":
        """Create a brand new company with its starting capital and zero totals."""

        capital = require_positive(to_decimal(starting_capital), allow_zero=True)
        return cls(
            id=new_id(),
            owner_id=owner_id,
            company_name=company_name,
            balance=capital,
            initial_capital=capital,
            product_name=product_name,
            specialty=specialty,
        )

    @property
    def net_profit(self) -> Decimal:
        return self.total_revenue - self.total_expenses

    def update_profile(
        self,
        *,
        company_name: Optional[str] = None,
        product_name: Optional[str] = None,
        specialty: Optional[str] = None,
    ) -> "CompanyAccount":
        return replace(
            self,
            company_name=company_name if company_name is not None else self.company_name,
            product_name=product_name if product_name is not None else self.product_name,
            specialty=specialty if specialty is not None else self.specialty,
            updated_at=utc_now(),
        )


@dataclass(frozen=True, slots=True)
class Transaction:
    """Represents a single immutable ledger entry for a :class:`CompanyAccount`."""

    company_id: str
    kind: TransactionKind
    amount: Decimal
    balance_after: Decimal
    description: Optional[str] = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", TransactionKind(self.kind))
        object.__setattr__(self, "amount", to_decimal(self.amount))
        object.__setattr__(self, "balance_after", to_decimal(self.balance_after))

    @property
    def signed_amount(self) -> Decimal:
        return self.amount if self.kind.is_credit else -self.amount


@dataclass(frozen=True, slots=True)
class MarketplaceListing:
    """An item a child offers for sale in the peer marketplace."""

    seller_id: str
    name: str
    price: Decimal
    quantity: int = 1
    description: Optional[str] = None
    image_url: Optional[str] = None
    status: ListingStatus = ListingStatus.AVAILABLE
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        object.__setattr__(self, "price", to_decimal(self.price))
        object.__setattr__(self, "status", ListingStatus(self.status))

    @property
    def in_stock(self) -> bool:
        return self.status is ListingStatus.AVAILABLE and self.quantity > 0


@dataclass(frozen=True, slots=True)
class PurchaseRecord:
    """Proof of a single successful marketplace purchase."""

    buyer_account_id: str
    listing_id: str
    transaction_id: Optional[str] = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utc_now)

    def link(self, transaction_id: str) -> "PurchaseRecord":
        """Attach the buyer's transaction. A record is linked exactly once."""

        if self.transaction_id is not None:
            raise ValueError(f"Purchase '{self.id}' is already linked to a transaction.")
        return replace(self, transaction_id=transaction_id)


@dataclass(frozen=True, slots=True)
class RewardResult:
    """Outcome of an achievement/XP award."""

    xp_earned: int = 0
    new_achievements: Tuple[str, ...] = ()
    leveled_up: bool = False
    new_level: Optional[int] = None

    @property
    def is_noteworthy(self) -> bool:
        return bool(self.new_achievements) or self.xp_earned > 0


@dataclass(slots=True)
class AuditEvent:
    """Represents an auditable action on a company or listing."""

    actor: str
    action: str
    target: str
    timestamp: datetime = field(default_factory=utc_now)
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class LeaderboardEntry:
    """One ranked row of a leaderboard; ``value`` is revenue or a sales count."""

    rank: int
    child_id: str
    child_name: str
    value: Decimal | int
    company_name: Optional[str] = None
