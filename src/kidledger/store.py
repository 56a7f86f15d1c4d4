"""Persistence collaborator contract and the in-memory implementation."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, replace
from typing import Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from .exceptions import (
    AccountNotFoundError,
    DuplicateAccountError,
    InsufficientFundsError,
    ListingNotFoundError,
    OutOfStockError,
)
from .ledger import TransactionLog, post
from .listings import sell_one
from .models import CompanyAccount, MarketplaceListing, PurchaseRecord, Transaction
from .money import format_currency


@dataclass(frozen=True, slots=True)
class PurchaseCommit:
    """State of the touched rows after a purchase has been written."""

    buyer: CompanyAccount
    seller: Optional[CompanyAccount]
    listing: MarketplaceListing
    purchase: PurchaseRecord


class LedgerStore(Protocol):
    """Row-level storage for companies, transactions, listings and purchases.

    ``record`` and ``commit_purchase`` apply transactions as deltas against the
    stored rows rather than overwriting them with caller-computed values.
    ``commit_purchase`` must write everything or nothing, and must decrement
    stock only while the stored listing is still available with quantity > 0.
    """

    def add_account(self, account: CompanyAccount) -> CompanyAccount: ...

    def get_account(self, account_id: str) -> CompanyAccount: ...

    def account_for_owner(self, owner_id: str) -> Optional[CompanyAccount]: ...

    def accounts(self) -> Sequence[CompanyAccount]: ...

    def save_profile(self, account: CompanyAccount) -> CompanyAccount: ...

    def add_listing(self, listing: MarketplaceListing) -> MarketplaceListing: ...

    def get_listing(self, listing_id: str) -> MarketplaceListing: ...

    def save_listing(self, listing: MarketplaceListing) -> MarketplaceListing: ...

    def listings(self, *, seller_id: Optional[str] = None) -> Sequence[MarketplaceListing]: ...

    def record(self, transaction: Transaction) -> CompanyAccount: ...

    def commit_purchase(
        self,
        *,
        purchase: PurchaseRecord,
        buyer_transaction: Transaction,
        seller_transaction: Optional[Transaction],
    ) -> PurchaseCommit: ...

    def transactions(self, company_id: str) -> Sequence[Transaction]: ...

    def purchases(self, *, buyer_account_id: Optional[str] = None) -> Sequence[PurchaseRecord]: ...

    def sales_by_seller(self) -> Mapping[str, int]: ...


class InMemoryStore:
    """Dictionary backed :class:`LedgerStore` used by tests and the default service."""

    def __init__(self) -> None:
        self._accounts: Dict[str, CompanyAccount] = {}
        self._owners: Dict[str, str] = {}
        self._listings: Dict[str, MarketplaceListing] = {}
        self._purchases: List[PurchaseRecord] = []
        self._log = TransactionLog()

    @property
    def log(self) -> TransactionLog:
        return self._log

    # ------------------------------------------------------------------
    # Companies
    # ------------------------------------------------------------------
    def add_account(self, account: CompanyAccount) -> CompanyAccount:
        if account.owner_id in self._owners:
            raise DuplicateAccountError(f"Child '{account.owner_id}' already has a company.")
        self._accounts[account.id] = account
        self._owners[account.owner_id] = account.id
        return account

    def get_account(self, account_id: str) -> CompanyAccount:
        try:
            return self._accounts[account_id]
        except KeyError as exc:
            raise AccountNotFoundError(f"Company '{account_id}' does not exist.") from exc

    def account_for_owner(self, owner_id: str) -> Optional[CompanyAccount]:
        account_id = self._owners.get(owner_id)
        return self._accounts.get(account_id) if account_id else None

    def accounts(self) -> Tuple[CompanyAccount, ...]:
        return tuple(self._accounts.values())

    def save_profile(self, account: CompanyAccount) -> CompanyAccount:
        current = self.get_account(account.id)
        updated = replace(
            current,
            company_name=account.company_name,
            product_name=account.product_name,
            specialty=account.specialty,
            updated_at=account.updated_at,
        )
        self._accounts[account.id] = updated
        return updated

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------
    def add_listing(self, listing: MarketplaceListing) -> MarketplaceListing:
        self._listings[listing.id] = listing
        return listing

    def get_listing(self, listing_id: str) -> MarketplaceListing:
        try:
            return self._listings[listing_id]
        except KeyError as exc:
            raise ListingNotFoundError(f"Item '{listing_id}' does not exist.") from exc

    def save_listing(self, listing: MarketplaceListing) -> MarketplaceListing:
        self.get_listing(listing.id)
        self._listings[listing.id] = listing
        return listing

    def listings(self, *, seller_id: Optional[str] = None) -> Tuple[MarketplaceListing, ...]:
        return tuple(
            listing
            for listing in self._listings.values()
            if seller_id is None or listing.seller_id == seller_id
        )

    # ------------------------------------------------------------------
    # Ledger writes
    # ------------------------------------------------------------------
    def record(self, transaction: Transaction) -> CompanyAccount:
        account = post(self.get_account(transaction.company_id), transaction.kind, transaction.amount)
        self._log.append(transaction)
        self._accounts[account.id] = account
        return account

    def commit_purchase(
        self,
        *,
        purchase: PurchaseRecord,
        buyer_transaction: Transaction,
        seller_transaction: Optional[Transaction],
    ) -> PurchaseCommit:
        listing = self.get_listing(purchase.listing_id)
        buyer = self.get_account(buyer_transaction.company_id)
        seller = self.get_account(seller_transaction.company_id) if seller_transaction else None
        if not listing.in_stock:
            raise OutOfStockError(f"'{listing.name}' is no longer available.")
        if buyer.balance < buyer_transaction.amount:
            raise InsufficientFundsError(
                f"You need {format_currency(buyer_transaction.amount)} but only have {format_currency(buyer.balance)}.",
                required=buyer_transaction.amount,
                available=buyer.balance,
            )

        buyer = self.record(buyer_transaction)
        if seller_transaction is not None:
            seller = self.record(seller_transaction)
        listing = sell_one(listing)
        self._listings[listing.id] = listing
        self._purchases.append(purchase)
        return PurchaseCommit(buyer=buyer, seller=seller, listing=listing, purchase=purchase)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def transactions(self, company_id: str) -> Tuple[Transaction, ...]:
        return self._log.for_company(company_id)

    def purchases(self, *, buyer_account_id: Optional[str] = None) -> Tuple[PurchaseRecord, ...]:
        return tuple(
            purchase
            for purchase in self._purchases
            if buyer_account_id is None or purchase.buyer_account_id == buyer_account_id
        )

    def sales_by_seller(self) -> Dict[str, int]:
        """Count completed purchases per seller child id."""

        return dict(Counter(self._listings[purchase.listing_id].seller_id for purchase in self._purchases))


__all__ = ["InMemoryStore", "LedgerStore", "PurchaseCommit"]
