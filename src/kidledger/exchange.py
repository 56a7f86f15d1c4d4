"""Marketplace purchases: moving money and stock between two companies."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple

from .exceptions import (
    AccountNotFoundError,
    InsufficientFundsError,
    KidLedgerError,
    ListingNotFoundError,
    OutOfStockError,
    PersistenceFailureError,
    SellerAccountMissingError,
)
from .ledger import LedgerEngine
from .listings import sell_one
from .models import (
    ActivityKind,
    CompanyAccount,
    MarketplaceListing,
    PurchaseRecord,
    Transaction,
    TransactionKind,
)
from .money import format_currency
from .ops import StructuredLogger
from .rewards import RewardQueue
from .store import LedgerStore

PURCHASE_FAILED_MESSAGE = "Purchase failed, please try again."


class ExchangeOutcome(str, Enum):
    SUCCESS = "success"
    OUT_OF_STOCK = "out_of_stock"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    INVALID = "invalid"
    FAILURE = "failure"


@dataclass(frozen=True, slots=True)
class ExchangeResult:
    """What a purchase attempt did, or why it did nothing."""

    outcome: ExchangeOutcome
    message: str
    buyer: Optional[CompanyAccount] = None
    seller: Optional[CompanyAccount] = None
    listing: Optional[MarketplaceListing] = None
    purchase: Optional[PurchaseRecord] = None
    transactions: Tuple[Transaction, ...] = ()
    shortfall: Optional[Decimal] = None
    error: Optional[KidLedgerError] = None

    @property
    def ok(self) -> bool:
        return self.outcome is ExchangeOutcome.SUCCESS


class ExchangeEngine:
    """Run the purchase sequence for one listing.

    Preconditions are checked before anything changes: the listing must be
    available with stock left, then the buyer must be able to afford it. On
    success the buyer is debited, the seller (when they have a company) is
    credited, the purchase record is linked to the buyer's transaction and the
    listing loses one unit. With a ``store`` attached the writes go through
    :meth:`LedgerStore.commit_purchase`, which applies them as one unit.

    Reward requests for the seller go through ``rewards``; their failures are
    logged by the queue and never change the result.
    """

    def __init__(
        self,
        ledger: LedgerEngine | None = None,
        *,
        store: LedgerStore | None = None,
        rewards: RewardQueue | None = None,
        logger: StructuredLogger | None = None,
    ) -> None:
        self._ledger = ledger or LedgerEngine()
        self._store = store
        self._rewards = rewards
        self._logger = logger or StructuredLogger()

    def purchase(
        self,
        buyer: CompanyAccount,
        seller: CompanyAccount | None,
        listing: MarketplaceListing,
        buyer_name: str,
        *,
        seller_name: str = "",
    ) -> ExchangeResult:
        if not listing.in_stock:
            error = OutOfStockError(f"'{listing.name}' is no longer available.")
            return self._out_of_stock(buyer, seller, listing, error)
        if buyer.balance < listing.price:
            return self._insufficient_funds(
                buyer,
                seller,
                listing,
                InsufficientFundsError(
                    f"You need {format_currency(listing.price)} but only have {format_currency(buyer.balance)}.",
                    required=listing.price,
                    available=buyer.balance,
                ),
            )
        if listing.seller_id == buyer.owner_id:
            return ExchangeResult(
                outcome=ExchangeOutcome.INVALID,
                message="You can't buy your own item.",
                buyer=buyer,
                seller=seller,
                listing=listing,
            )

        purchase = PurchaseRecord(buyer_account_id=buyer.id, listing_id=listing.id)
        new_buyer, buyer_txn = self._ledger.apply(
            buyer,
            TransactionKind.PURCHASE,
            listing.price,
            f"Purchased: {listing.name} from {seller_name or 'Unknown'}",
        )
        new_seller: CompanyAccount | None = None
        seller_txn: Transaction | None = None
        if seller is not None:
            new_seller, seller_txn = self._ledger.apply(
                seller,
                TransactionKind.SALE,
                listing.price,
                f"Sold: {listing.name} to {buyer_name or 'a buyer'}",
            )
        else:
            missing = SellerAccountMissingError(f"Seller '{listing.seller_id}' has no company to credit.")
            self._logger.log("seller_company_missing", listing=listing.id, seller=listing.seller_id, error=str(missing))
        purchase = purchase.link(buyer_txn.id)
        new_listing = sell_one(listing)

        if self._store is not None:
            try:
                commit = self._store.commit_purchase(
                    purchase=purchase,
                    buyer_transaction=buyer_txn,
                    seller_transaction=seller_txn,
                )
            except OutOfStockError as exc:
                return self._out_of_stock(buyer, seller, listing, exc)
            except InsufficientFundsError as exc:
                return self._insufficient_funds(buyer, seller, listing, exc)
            except (PersistenceFailureError, AccountNotFoundError, ListingNotFoundError) as exc:
                self._logger.log("purchase_failed", listing=listing.id, buyer=buyer.id, error=str(exc))
                return ExchangeResult(
                    outcome=ExchangeOutcome.FAILURE,
                    message=PURCHASE_FAILED_MESSAGE,
                    buyer=buyer,
                    seller=seller,
                    listing=listing,
                    error=exc,
                )
            new_buyer, new_seller, new_listing = commit.buyer, commit.seller, commit.listing

        transactions = (buyer_txn,) if seller_txn is None else (buyer_txn, seller_txn)
        self._logger.log(
            "purchase_completed",
            listing=listing.id,
            buyer=buyer.id,
            seller=seller.id if seller else None,
            price=str(listing.price),
            remaining=new_listing.quantity,
        )
        if seller is not None and self._rewards is not None:
            self._rewards.submit(listing.seller_id, ActivityKind.SALE)
            self._rewards.drain()
        return ExchangeResult(
            outcome=ExchangeOutcome.SUCCESS,
            message=f"You've purchased {listing.name} for {format_currency(listing.price)}!",
            buyer=new_buyer,
            seller=new_seller,
            listing=new_listing,
            purchase=purchase,
            transactions=transactions,
        )

    def _out_of_stock(
        self,
        buyer: CompanyAccount,
        seller: CompanyAccount | None,
        listing: MarketplaceListing,
        error: OutOfStockError,
    ) -> ExchangeResult:
        self._logger.log("purchase_rejected", reason="out_of_stock", listing=listing.id, buyer=buyer.id)
        return ExchangeResult(
            outcome=ExchangeOutcome.OUT_OF_STOCK,
            message="This item is no longer available.",
            buyer=buyer,
            seller=seller,
            listing=listing,
            error=error,
        )

    def _insufficient_funds(
        self,
        buyer: CompanyAccount,
        seller: CompanyAccount | None,
        listing: MarketplaceListing,
        error: InsufficientFundsError,
    ) -> ExchangeResult:
        self._logger.log(
            "purchase_rejected",
            reason="insufficient_funds",
            listing=listing.id,
            buyer=buyer.id,
            shortfall=str(error.shortfall),
        )
        return ExchangeResult(
            outcome=ExchangeOutcome.INSUFFICIENT_FUNDS,
            message=f"{error} You need {format_currency(error.shortfall)} more.",
            buyer=buyer,
            seller=seller,
            listing=listing,
            shortfall=error.shortfall,
            error=error,
        )


__all__ = ["ExchangeEngine", "ExchangeOutcome", "ExchangeResult", "PURCHASE_FAILED_MESSAGE"]
