"""Persistence and SQLModel definitions for the KidLedger web frontend."""
from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, ContextManager, Dict, Iterator, List, Optional, Tuple

from sqlalchemy import func, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Field, Session, SQLModel, create_engine, select

from ..exceptions import (
    AccountNotFoundError,
    DuplicateAccountError,
    InsufficientFundsError,
    ListingNotFoundError,
    OutOfStockError,
    PersistenceFailureError,
)
from ..models import CompanyAccount, ListingStatus, MarketplaceListing, PurchaseRecord, Transaction, utc_now
from ..money import format_currency, from_cents, to_cents
from ..rewards import AchievementTracker, calculate_level
from ..store import PurchaseCommit
from .config import SQLITE_FILE_NAME

# ---------------------------------------------------------------------------
# Database models
# ---------------------------------------------------------------------------
engine = create_engine(
    f"sqlite:///{SQLITE_FILE_NAME}",
    echo=False,
    connect_args={"check_same_thread": False},
)


class Company(SQLModel, table=True):
    id: str = Field(primary_key=True)
    child_id: str = Field(index=True, unique=True)
    company_name: str
    product_name: Optional[str] = None
    specialty: Optional[str] = None
    initial_capital_cents: int = 0
    current_balance_cents: int = 0
    total_revenue_cents: int = 0
    total_expenses_cents: int = 0
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class CompanyTransaction(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    transaction_id: str = Field(index=True, unique=True)
    company_id: str = Field(index=True)
    transaction_type: str  # revenue|expense|sale|purchase
    amount_cents: int
    balance_after_cents: int
    description: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)


class MarketplaceItem(SQLModel, table=True):
    id: str = Field(primary_key=True)
    seller_child_id: str = Field(index=True)
    item_name: str
    description: Optional[str] = None
    price_cents: int
    quantity: int = 1
    status: str = ListingStatus.AVAILABLE.value  # available|sold|removed
    image_url: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class MarketplacePurchase(SQLModel, table=True):
    id: str = Field(primary_key=True)
    buyer_company_id: str = Field(index=True)
    item_id: str = Field(index=True)
    transaction_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)


class RewardProgress(SQLModel, table=True):
    child_id: str = Field(primary_key=True)
    total_xp: int = 0
    current_level: int = 1
    achievements: str = ""  # comma separated names, in the order earned
    updated_at: datetime = Field(default_factory=utc_now)


def create_db_and_tables(bind: Engine | None = None) -> None:
    SQLModel.metadata.create_all(bind or engine)


@contextmanager
def open_session(bind: Engine | None = None) -> Iterator[Session]:
    """Yield a session, reporting driver failures as :class:`PersistenceFailureError`."""

    try:
        with Session(bind or engine, expire_on_commit=False) as session:
            yield session
    except (SQLAlchemyError, OverflowError) as exc:
        raise PersistenceFailureError(f"Database error: {exc}") from exc


# ---------------------------------------------------------------------------
# Row conversion
# ---------------------------------------------------------------------------
def _aware(value: datetime) -> datetime:
    # SQLite hands timestamps back without their zone; they were written as UTC.
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def _account_from_row(row: Company) -> CompanyAccount:
    return CompanyAccount(
        id=row.id,
        owner_id=row.child_id,
        company_name=row.company_name,
        balance=from_cents(row.current_balance_cents),
        total_revenue=from_cents(row.total_revenue_cents),
        total_expenses=from_cents(row.total_expenses_cents),
        initial_capital=from_cents(row.initial_capital_cents),
        product_name=row.product_name,
        specialty=row.specialty,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def _transaction_from_row(row: CompanyTransaction) -> Transaction:
    return Transaction(
        id=row.transaction_id,
        company_id=row.company_id,
        kind=row.transaction_type,
        amount=from_cents(row.amount_cents),
        balance_after=from_cents(row.balance_after_cents),
        description=row.description,
        created_at=_aware(row.created_at),
    )


def _listing_from_row(row: MarketplaceItem) -> MarketplaceListing:
    return MarketplaceListing(
        id=row.id,
        seller_id=row.seller_child_id,
        name=row.item_name,
        description=row.description,
        price=from_cents(row.price_cents),
        quantity=row.quantity,
        status=row.status,
        image_url=row.image_url,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def _purchase_from_row(row: MarketplacePurchase) -> PurchaseRecord:
    return PurchaseRecord(
        id=row.id,
        buyer_account_id=row.buyer_company_id,
        listing_id=row.item_id,
        transaction_id=row.transaction_id,
        created_at=_aware(row.created_at),
    )


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------
class SqlStore:
    """:class:`~kidledger.store.LedgerStore` backed by SQLModel tables.

    Balances change only through ``UPDATE ... SET col = col + delta`` so two
    writers never overwrite each other's totals. ``commit_purchase`` runs in a
    single database transaction and decrements stock only while the row is
    still available with quantity left.
    """

    def __init__(self, bind: Engine | None = None) -> None:
        self._engine = bind or engine

    @property
    def engine(self) -> Engine:
        return self._engine

    def _session(self) -> ContextManager[Session]:
        return open_session(self._engine)

    # ------------------------------------------------------------------
    # Companies
    # ------------------------------------------------------------------
    def add_account(self, account: CompanyAccount) -> CompanyAccount:
        with self._session() as session:
            existing = session.exec(select(Company).where(Company.child_id == account.owner_id)).first()
            if existing is not None:
                raise DuplicateAccountError(f"Child '{account.owner_id}' already has a company.")
            session.add(
                Company(
                    id=account.id,
                    child_id=account.owner_id,
                    company_name=account.company_name,
                    product_name=account.product_name,
                    specialty=account.specialty,
                    initial_capital_cents=to_cents(account.initial_capital),
                    current_balance_cents=to_cents(account.balance),
                    total_revenue_cents=to_cents(account.total_revenue),
                    total_expenses_cents=to_cents(account.total_expenses),
                    created_at=account.created_at,
                    updated_at=account.updated_at,
                )
            )
            try:
                session.commit()
            except IntegrityError as exc:
                raise DuplicateAccountError(f"Child '{account.owner_id}' already has a company.") from exc
        return account

    def get_account(self, account_id: str) -> CompanyAccount:
        with self._session() as session:
            row = session.get(Company, account_id)
            if row is None:
                raise AccountNotFoundError(f"Company '{account_id}' does not exist.")
            return _account_from_row(row)

    def account_for_owner(self, owner_id: str) -> Optional[CompanyAccount]:
        with self._session() as session:
            row = session.exec(select(Company).where(Company.child_id == owner_id)).first()
            return _account_from_row(row) if row else None

    def accounts(self) -> List[CompanyAccount]:
        with self._session() as session:
            rows = session.exec(select(Company).order_by(Company.created_at)).all()
            return [_account_from_row(row) for row in rows]

    def save_profile(self, account: CompanyAccount) -> CompanyAccount:
        with self._session() as session:
            row = session.get(Company, account.id)
            if row is None:
                raise AccountNotFoundError(f"Company '{account.id}' does not exist.")
            row.company_name = account.company_name
            row.product_name = account.product_name
            row.specialty = account.specialty
            row.updated_at = account.updated_at
            session.add(row)
            session.commit()
            return _account_from_row(row)

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------
    def add_listing(self, listing: MarketplaceListing) -> MarketplaceListing:
        with self._session() as session:
            session.add(
                MarketplaceItem(
                    id=listing.id,
                    seller_child_id=listing.seller_id,
                    item_name=listing.name,
                    description=listing.description,
                    price_cents=to_cents(listing.price),
                    quantity=listing.quantity,
                    status=listing.status.value,
                    image_url=listing.image_url,
                    created_at=listing.created_at,
                    updated_at=listing.updated_at,
                )
            )
            session.commit()
        return listing

    def get_listing(self, listing_id: str) -> MarketplaceListing:
        with self._session() as session:
            row = session.get(MarketplaceItem, listing_id)
            if row is None:
                raise ListingNotFoundError(f"Item '{listing_id}' does not exist.")
            return _listing_from_row(row)

    def save_listing(self, listing: MarketplaceListing) -> MarketplaceListing:
        with self._session() as session:
            row = session.get(MarketplaceItem, listing.id)
            if row is None:
                raise ListingNotFoundError(f"Item '{listing.id}' does not exist.")
            row.item_name = listing.name
            row.description = listing.description
            row.price_cents = to_cents(listing.price)
            row.quantity = listing.quantity
            row.status = listing.status.value
            row.image_url = listing.image_url
            row.updated_at = listing.updated_at
            session.add(row)
            session.commit()
            return _listing_from_row(row)

    def listings(self, *, seller_id: Optional[str] = None) -> List[MarketplaceListing]:
        query = select(MarketplaceItem)
        if seller_id is not None:
            query = query.where(MarketplaceItem.seller_child_id == seller_id)
        with self._session() as session:
            rows = session.exec(query.order_by(MarketplaceItem.created_at)).all()
            return [_listing_from_row(row) for row in rows]

    # ------------------------------------------------------------------
    # Ledger writes
    # ------------------------------------------------------------------
    def _post(self, session: Session, transaction: Transaction) -> Company:
        cents = to_cents(transaction.amount)
        now = utc_now()
        if transaction.kind.is_credit:
            values = {
                "current_balance_cents": Company.current_balance_cents + cents,
                "total_revenue_cents": Company.total_revenue_cents + cents,
                "updated_at": now,
            }
        else:
            values = {
                "current_balance_cents": Company.current_balance_cents - cents,
                "total_expenses_cents": Company.total_expenses_cents + cents,
                "updated_at": now,
            }
        result = session.connection().execute(
            update(Company).where(Company.id == transaction.company_id).values(**values)
        )
        if result.rowcount == 0:
            raise AccountNotFoundError(f"Company '{transaction.company_id}' does not exist.")
        return self._append(session, transaction)

    def _append(self, session: Session, transaction: Transaction) -> Company:
        row = session.get(Company, transaction.company_id, populate_existing=True)
        session.add(
            CompanyTransaction(
                transaction_id=transaction.id,
                company_id=transaction.company_id,
                transaction_type=transaction.kind.value,
                amount_cents=to_cents(transaction.amount),
                balance_after_cents=row.current_balance_cents,
                description=transaction.description,
                created_at=transaction.created_at,
            )
        )
        return row

    def record(self, transaction: Transaction) -> CompanyAccount:
        with self._session() as session:
            row = self._post(session, transaction)
            session.commit()
            return _account_from_row(row)

    def commit_purchase(
        self,
        *,
        purchase: PurchaseRecord,
        buyer_transaction: Transaction,
        seller_transaction: Optional[Transaction],
    ) -> PurchaseCommit:
        price_cents = to_cents(buyer_transaction.amount)
        now = utc_now()
        with self._session() as session:
            if session.get(MarketplaceItem, purchase.listing_id) is None:
                raise ListingNotFoundError(f"Item '{purchase.listing_id}' does not exist.")
            buyer_row = session.get(Company, buyer_transaction.company_id)
            if buyer_row is None:
                raise AccountNotFoundError(f"Company '{buyer_transaction.company_id}' does not exist.")
            connection = session.connection()

            taken = connection.execute(
                update(MarketplaceItem)
                .where(
                    MarketplaceItem.id == purchase.listing_id,
                    MarketplaceItem.quantity > 0,
                    MarketplaceItem.status == ListingStatus.AVAILABLE.value,
                )
                .values(quantity=MarketplaceItem.quantity - 1, updated_at=now)
            )
            if taken.rowcount == 0:
                raise OutOfStockError("This item is no longer available.")
            connection.execute(
                update(MarketplaceItem)
                .where(MarketplaceItem.id == purchase.listing_id, MarketplaceItem.quantity <= 0)
                .values(quantity=0, status=ListingStatus.SOLD.value)
            )

            debited = connection.execute(
                update(Company)
                .where(
                    Company.id == buyer_transaction.company_id,
                    Company.current_balance_cents >= price_cents,
                )
                .values(
                    current_balance_cents=Company.current_balance_cents - price_cents,
                    total_expenses_cents=Company.total_expenses_cents + price_cents,
                    updated_at=now,
                )
            )
            if debited.rowcount == 0:
                available = from_cents(buyer_row.current_balance_cents)
                raise InsufficientFundsError(
                    f"You need {format_currency(buyer_transaction.amount)} but only have {format_currency(available)}.",
                    required=buyer_transaction.amount,
                    available=available,
                )
            buyer_row = self._append(session, buyer_transaction)
            seller_row = self._post(session, seller_transaction) if seller_transaction else None
            session.add(
                MarketplacePurchase(
                    id=purchase.id,
                    buyer_company_id=purchase.buyer_account_id,
                    item_id=purchase.listing_id,
                    transaction_id=purchase.transaction_id,
                    created_at=purchase.created_at,
                )
            )
            session.commit()
            item_row = session.get(MarketplaceItem, purchase.listing_id, populate_existing=True)
            return PurchaseCommit(
                buyer=_account_from_row(buyer_row),
                seller=_account_from_row(seller_row) if seller_row is not None else None,
                listing=_listing_from_row(item_row),
                purchase=purchase,
            )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def transactions(self, company_id: str) -> List[Transaction]:
        query = (
            select(CompanyTransaction)
            .where(CompanyTransaction.company_id == company_id)
            .order_by(CompanyTransaction.id)
        )
        with self._session() as session:
            return [_transaction_from_row(row) for row in session.exec(query).all()]

    def purchases(self, *, buyer_account_id: Optional[str] = None) -> List[PurchaseRecord]:
        query = select(MarketplacePurchase)
        if buyer_account_id is not None:
            query = query.where(MarketplacePurchase.buyer_company_id == buyer_account_id)
        with self._session() as session:
            rows = session.exec(query.order_by(MarketplacePurchase.created_at)).all()
            return [_purchase_from_row(row) for row in rows]

    def sales_by_seller(self) -> Dict[str, int]:
        query = (
            select(MarketplaceItem.seller_child_id, func.count(MarketplacePurchase.id))
            .select_from(MarketplacePurchase)
            .join(MarketplaceItem, MarketplaceItem.id == MarketplacePurchase.item_id)
            .group_by(MarketplaceItem.seller_child_id)
        )
        with self._session() as session:
            return {seller_id: count for seller_id, count in session.exec(query).all()}


# ---------------------------------------------------------------------------
# Rewards
# ---------------------------------------------------------------------------
class SqlAchievementTracker(AchievementTracker):
    """:class:`~kidledger.rewards.AchievementTracker` keeping progress in ``RewardProgress`` rows."""

    def __init__(
        self,
        bind: Engine | None = None,
        *,
        revenue_lookup: Callable[[str], Optional[Decimal]] | None = None,
    ) -> None:
        super().__init__(revenue_lookup)
        self._engine = bind or engine

    def _load(self, child_id: str) -> Tuple[int, Tuple[str, ...]]:
        with open_session(self._engine) as session:
            row = session.get(RewardProgress, child_id)
            if row is None:
                return 0, ()
            return row.total_xp, tuple(name for name in row.achievements.split(",") if name)

    def _save(self, child_id: str, total_xp: int, earned: Tuple[str, ...]) -> None:
        with open_session(self._engine) as session:
            row = session.get(RewardProgress, child_id) or RewardProgress(child_id=child_id)
            row.total_xp = total_xp
            row.current_level = calculate_level(total_xp)
            row.achievements = ",".join(earned)
            row.updated_at = utc_now()
            session.add(row)
            session.commit()


__all__ = [
    "Company",
    "CompanyTransaction",
    "MarketplaceItem",
    "MarketplacePurchase",
    "RewardProgress",
    "SqlAchievementTracker",
    "SqlStore",
    "create_db_and_tables",
    "engine",
    "open_session",
]
