"""High level service coordinating companies, the marketplace and rewards."""

from __future__ import annotations

from decimal import Decimal
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .exceptions import AccountNotFoundError, InvalidInputError, ProgressUnavailableError
from .exchange import ExchangeEngine, ExchangeOutcome, ExchangeResult
from .ledger import LedgerEngine, generate_statement, record_transaction
from .listings import create_listing, discoverable, edit_listing, remove_listing, reprice_listings
from .models import (
    DEFAULT_STARTING_CAPITAL,
    ActivityKind,
    ChildSession,
    CompanyAccount,
    LeaderboardEntry,
    ListingStatus,
    MarketplaceListing,
    PurchaseRecord,
    Transaction,
    TransactionKind,
)
from .money import AmountLike, to_decimal
from .ops import AuditLog, StructuredLogger
from .rewards import (
    AchievementTracker,
    RewardHook,
    RewardQueue,
    progress_percentage,
    xp_for_next_level,
)
from .store import InMemoryStore, LedgerStore

DEFAULT_LAUNCH_COST = Decimal("50.00")

# Activity reported when a manual entry grows revenue.
REVENUE_REWARD_ACTIVITY = ActivityKind.LESSON_COMPLETE

LEADERBOARD_KINDS = ("revenue", "sales")


class KidLedger:
    """Manage children's companies, their ledgers and the peer marketplace."""

    __slots__ = (
        "_store",
        "_ledger",
        "_exchange",
        "_rewards",
        "_reward_hook",
        "_logger",
        "_audit_log",
        "_starting_capital",
        "_launch_cost",
        "_names",
    )

    def __init__(
        self,
        store: LedgerStore | None = None,
        *,
        reward_hook: RewardHook | None = None,
        logger: StructuredLogger | None = None,
        starting_capital: AmountLike = DEFAULT_STARTING_CAPITAL,
        launch_cost: AmountLike = DEFAULT_LAUNCH_COST,
        reward_attempts: int = 3,
    ) -> None:
        self._store: LedgerStore = store if store is not None else InMemoryStore()
        self._logger = logger or StructuredLogger()
        self._audit_log = AuditLog()
        self._ledger = LedgerEngine()
        self._reward_hook: RewardHook = reward_hook or AchievementTracker()
        if isinstance(self._reward_hook, AchievementTracker) and not self._reward_hook.has_revenue_lookup:
            self._reward_hook.bind_revenue_lookup(self._revenue_for_child)
        self._rewards = RewardQueue(self._reward_hook, max_attempts=reward_attempts, logger=self._logger)
        self._exchange = ExchangeEngine(
            self._ledger,
            store=self._store,
            rewards=self._rewards,
            logger=self._logger,
        )
        self._starting_capital = to_decimal(starting_capital)
        self._launch_cost = to_decimal(launch_cost)
        self._names: Dict[str, str] = {}

    @property
    def store(self) -> LedgerStore:
        return self._store

    @property
    def logger(self) -> StructuredLogger:
        return self._logger

    @property
    def audit_log(self) -> AuditLog:
        return self._audit_log

    @property
    def rewards(self) -> RewardQueue:
        return self._rewards

    @property
    def reward_hook(self) -> RewardHook:
        return self._reward_hook

    # ------------------------------------------------------------------
    # Companies
    # ------------------------------------------------------------------
    def create_company(
        self,
        session: ChildSession,
        company_name: str,
        *,
        product_name: Optional[str] = None,
        specialty: Optional[str] = None,
    ) -> CompanyAccount:
        self._remember(session)
        name = (company_name or "").strip()
        if not name:
            raise InvalidInputError("Company name is required.")
        account = CompanyAccount.open(
            session.child_id,
            name,
            starting_capital=self._starting_capital,
            product_name=(product_name or "").strip() or None,
            specialty=(specialty or "").strip() or None,
        )
        account = self._store.add_account(account)
        self._audit_log.record(session.child_id, "create_company", account.id)
        self._logger.log("company_created", child=session.child_id, company=account.id, balance=str(account.balance))
        return account

    def find_company(self, child_id: str) -> Optional[CompanyAccount]:
        return self._store.account_for_owner(child_id)

    def company_for(self, child_id: str) -> CompanyAccount:
        account = self._store.account_for_owner(child_id)
        if account is None:
            raise AccountNotFoundError(f"Child '{child_id}' has not created a company yet.")
        return account

    def update_company(
        self,
        session: ChildSession,
        *,
        company_name: Optional[str] = None,
        product_name: Optional[str] = None,
        specialty: Optional[str] = None,
    ) -> CompanyAccount:
        account = self.company_for(session.child_id)
        if company_name is not None and not company_name.strip():
            raise InvalidInputError("Company name is required.")
        updated = account.update_profile(
            company_name=company_name.strip() if company_name is not None else None,
            product_name=product_name.strip() if product_name is not None else None,
            specialty=specialty.strip() if specialty is not None else None,
        )
        updated = self._store.save_profile(updated)
        self._audit_log.record(session.child_id, "update_company", account.id)
        self._logger.log("company_updated", company=account.id)
        return updated

    # ------------------------------------------------------------------
    # Manual ledger entries
    # ------------------------------------------------------------------
    def record_transaction(
        self,
        session: ChildSession,
        kind: str | TransactionKind,
        amount: AmountLike,
        description: Optional[str] = None,
    ) -> Tuple[CompanyAccount, Transaction]:
        """Dashboard "Add Transaction": validate, apply and persist one entry."""

        account = self.company_for(session.child_id)
        _, transaction = record_transaction(self._ledger, account, kind, amount, description)
        updated = self._store.record(transaction)
        self._audit_log.record(session.child_id, "record_transaction", transaction.id)
        self._logger.log(
            "transaction_recorded",
            company=account.id,
            type=transaction.kind.value,
            amount=str(transaction.amount),
            balance=str(updated.balance),
        )
        if transaction.kind.is_credit and updated.total_revenue > account.total_revenue:
            self._rewards.submit(session.child_id, REVENUE_REWARD_ACTIVITY)
            self._rewards.drain()
        return updated, transaction

    def history(self, child_id: str, count: int = 10) -> Tuple[Transaction, ...]:
        if count < 0:
            raise ValueError("count must not be negative")
        entries = self._store.transactions(self.company_for(child_id).id)
        if count == 0:
            return tuple()
        return tuple(reversed(entries[-count:]))

    def statement(self, child_id: str, *, max_transactions: int = 10) -> str:
        account = self.company_for(child_id)
        return generate_statement(account, self.history(child_id, max_transactions))

    # ------------------------------------------------------------------
    # Marketplace listings
    # ------------------------------------------------------------------
    def list_item(
        self,
        session: ChildSession,
        name: str,
        *,
        price: AmountLike,
        quantity: object = 1,
        description: Optional[str] = None,
        image_url: Optional[str] = None,
    ) -> MarketplaceListing:
        self._remember(session)
        listing = create_listing(
            session.child_id,
            name,
            price=price,
            quantity=quantity,
            description=description,
            image_url=image_url,
        )
        listing = self._store.add_listing(listing)
        self._audit_log.record(session.child_id, "list_item", listing.id)
        self._logger.log(
            "item_listed",
            seller=session.child_id,
            item=listing.id,
            price=str(listing.price),
            quantity=listing.quantity,
        )
        return listing

    def edit_item(self, session: ChildSession, listing_id: str, **changes: object) -> MarketplaceListing:
        listing = self._owned_listing(session, listing_id)
        updated = self._store.save_listing(edit_listing(listing, **changes))  # type: ignore[arg-type]
        self._audit_log.record(session.child_id, "edit_item", listing.id, details={"fields": sorted(changes)})
        self._logger.log("item_edited", item=listing.id, status=updated.status.value, quantity=updated.quantity)
        return updated

    def remove_item(self, session: ChildSession, listing_id: str) -> MarketplaceListing:
        listing = self._owned_listing(session, listing_id)
        updated = self._store.save_listing(remove_listing(listing))
        self._audit_log.record(session.child_id, "remove_item", listing.id)
        self._logger.log("item_removed", item=listing.id)
        return updated

    def reprice_items(
        self,
        session: ChildSession,
        prices: Mapping[str, AmountLike],
    ) -> Tuple[MarketplaceListing, ...]:
        owned = [
            listing
            for listing in self._store.listings(seller_id=session.child_id)
            if listing.status is ListingStatus.AVAILABLE
        ]
        repriced = reprice_listings(owned, prices)
        for listing in repriced:
            self._store.save_listing(listing)
        self._audit_log.record(session.child_id, "reprice_items", session.child_id, details={"count": len(repriced)})
        self._logger.log("items_repriced", seller=session.child_id, items=[listing.id for listing in repriced])
        return repriced

    def marketplace(self, session: ChildSession | None = None) -> Tuple[MarketplaceListing, ...]:
        return discoverable(
            self._store.listings(),
            exclude_seller=session.child_id if session else None,
        )

    def my_items(self, session: ChildSession) -> Tuple[MarketplaceListing, ...]:
        items = [
            listing
            for listing in self._store.listings(seller_id=session.child_id)
            if listing.status is not ListingStatus.REMOVED
        ]
        items.sort(key=lambda listing: listing.created_at, reverse=True)
        return tuple(items)

    def launch_product(
        self,
        session: ChildSession,
        *,
        price: AmountLike,
        quantity: object = 1,
        description: Optional[str] = None,
    ) -> Tuple[MarketplaceListing, Optional[Transaction]]:
        """List the company's product, paying the launch marketing cost if affordable."""

        account = self.company_for(session.child_id)
        product = account.product_name or "Product"
        listing = self.list_item(session, product, price=price, quantity=quantity, description=description)
        marketing: Optional[Transaction] = None
        if account.balance >= self._launch_cost:
            _, marketing = self._ledger.apply(
                account,
                TransactionKind.EXPENSE,
                self._launch_cost,
                f"Product launch marketing: {product}",
            )
            self._store.record(marketing)
        self._audit_log.record(session.child_id, "launch_product", listing.id)
        self._logger.log("product_launched", company=account.id, item=listing.id, marketing_paid=marketing is not None)
        return listing, marketing

    # ------------------------------------------------------------------
    # Purchases
    # ------------------------------------------------------------------
    def purchase(self, session: ChildSession, listing_id: str) -> ExchangeResult:
        self._remember(session)
        buyer = self.find_company(session.child_id)
        if buyer is None:
            return ExchangeResult(
                outcome=ExchangeOutcome.INVALID,
                message="Please create a company first to make purchases.",
            )
        listing = self._store.get_listing(listing_id)
        seller = self.find_company(listing.seller_id)
        result = self._exchange.purchase(
            buyer,
            seller,
            listing,
            session.display_name,
            seller_name=self._names.get(listing.seller_id, ""),
        )
        self._audit_log.record(
            session.child_id,
            "purchase",
            listing.id,
            details={"outcome": result.outcome.value},
        )
        return result

    def purchases(self, child_id: str) -> Sequence[PurchaseRecord]:
        return self._store.purchases(buyer_account_id=self.company_for(child_id).id)

    def leaderboard(self, kind: str = "revenue", limit: int = 10) -> Tuple[LeaderboardEntry, ...]:
        """Rank companies by total revenue, or sellers by completed marketplace sales."""

        if limit < 0:
            raise InvalidInputError("limit must not be negative.")
        board = (kind or "").strip().lower()
        rows: List[Tuple[str, Optional[str], Decimal | int]] = []
        if board == "revenue":
            rows = [
                (account.owner_id, account.company_name, account.total_revenue)
                for account in self._store.accounts()
            ]
        elif board == "sales":
            for seller_id, count in self._store.sales_by_seller().items():
                account = self._store.account_for_owner(seller_id)
                rows.append((seller_id, account.company_name if account else None, count))
        else:
            raise InvalidInputError(f"Leaderboard must be one of: {', '.join(LEADERBOARD_KINDS)}.")
        rows.sort(key=lambda row: (-row[2], row[0]))
        return tuple(
            LeaderboardEntry(
                rank=index,
                child_id=child_id,
                child_name=self._names.get(child_id, "Unknown"),
                value=value,
                company_name=company_name,
            )
            for index, (child_id, company_name, value) in enumerate(rows[:limit], start=1)
        )

    # ------------------------------------------------------------------
    # Rewards
    # ------------------------------------------------------------------
    def progress(self, child_id: str) -> Dict[str, object]:
        """XP, level and achievements for ``child_id`` when rewards are tracked in-process."""

        hook = self._reward_hook
        if not isinstance(hook, AchievementTracker):
            raise ProgressUnavailableError("Reward progress is kept by an external reward service.")
        total = hook.total_xp(child_id)
        level = hook.level(child_id)
        return {
            "total_xp": total,
            "level": level,
            "xp_to_next_level": xp_for_next_level(level, total),
            "progress_percentage": progress_percentage(level, total),
            "achievements": list(hook.earned(child_id)),
        }

    def _revenue_for_child(self, child_id: str) -> Optional[Decimal]:
        account = self._store.account_for_owner(child_id)
        return account.total_revenue if account else None

    def _owned_listing(self, session: ChildSession, listing_id: str) -> MarketplaceListing:
        listing = self._store.get_listing(listing_id)
        if listing.seller_id != session.child_id:
            raise PermissionError("Only the seller may change this item.")
        return listing

    def _remember(self, session: ChildSession) -> None:
        if session.child_name:
            self._names[session.child_id] = session.child_name


__all__ = ["DEFAULT_LAUNCH_COST", "KidLedger", "LEADERBOARD_KINDS", "REVENUE_REWARD_ACTIVITY"]
