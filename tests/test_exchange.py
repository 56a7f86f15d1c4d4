from decimal import Decimal

from kidledger.exceptions import PersistenceFailureError, RewardHookError
from kidledger.exchange import PURCHASE_FAILED_MESSAGE, ExchangeEngine, ExchangeOutcome
from kidledger.listings import create_listing, remove_listing
from kidledger.models import ActivityKind, CompanyAccount, ListingStatus, RewardResult, TransactionKind
from kidledger.ops import StructuredLogger
from kidledger.rewards import RewardQueue
from kidledger.store import InMemoryStore


class RecordingHook:
    def __init__(self) -> None:
        self.calls = []

    def award_achievements_and_xp(self, child_id: str, activity: ActivityKind) -> RewardResult:
        self.calls.append((child_id, activity))
        return RewardResult(xp_earned=10)


class FailingRewardHook:
    def __init__(self) -> None:
        self.attempts = 0

    def award_achievements_and_xp(self, child_id: str, activity: ActivityKind) -> RewardResult:
        self.attempts += 1
        raise RewardHookError("reward service unavailable")


class BrokenStore(InMemoryStore):
    def commit_purchase(self, **kwargs):  # type: ignore[override]
        raise PersistenceFailureError("connection reset")


def companies(buyer_balance: str = "100", seller_balance: str = "50"):
    buyer = CompanyAccount.open("buyer-kid", "Buyer Co", starting_capital=buyer_balance)
    seller = CompanyAccount.open("seller-kid", "Seller Co", starting_capital=seller_balance)
    return buyer, seller


def test_purchase_moves_money_and_stock() -> None:
    buyer, seller = companies()
    listing = create_listing("seller-kid", "Bracelet", price="20", quantity=2)
    hook = RecordingHook()
    engine = ExchangeEngine(rewards=RewardQueue(hook))

    result = engine.purchase(buyer, seller, listing, "Ava", seller_name="Ben")

    assert result.ok
    assert result.message == "You've purchased Bracelet for RM 20.00!"
    assert result.buyer.balance == Decimal("80.00")
    assert result.seller.balance == Decimal("70.00")
    assert result.listing.quantity == 1
    assert result.listing.status is ListingStatus.AVAILABLE
    buyer_txn, seller_txn = result.transactions
    assert buyer_txn.kind is TransactionKind.PURCHASE
    assert buyer_txn.description == "Purchased: Bracelet from Ben"
    assert seller_txn.kind is TransactionKind.SALE
    assert seller_txn.description == "Sold: Bracelet to Ava"
    assert result.purchase.transaction_id == buyer_txn.id
    assert result.purchase.listing_id == listing.id
    assert hook.calls == [("seller-kid", ActivityKind.SALE)]


def test_insufficient_funds_reports_shortfall_without_mutation() -> None:
    buyer, seller = companies(buyer_balance="10.00")
    listing = create_listing("seller-kid", "Bracelet", price="10.01")
    store = InMemoryStore()
    for account in (buyer, seller):
        store.add_account(account)
    store.add_listing(listing)

    result = ExchangeEngine(store=store).purchase(buyer, seller, listing, "Ava")

    assert result.outcome is ExchangeOutcome.INSUFFICIENT_FUNDS
    assert result.shortfall == Decimal("0.01")
    assert result.message.endswith("You need RM 0.01 more.")
    assert store.get_account(buyer.id).balance == Decimal("10.00")
    assert store.get_account(seller.id).balance == Decimal("50.00")
    assert store.get_listing(listing.id).quantity == 1
    assert store.purchases() == ()


def test_out_of_stock_regardless_of_balance() -> None:
    buyer, seller = companies(buyer_balance="100000")
    listing = create_listing("seller-kid", "Bracelet", price="1", quantity=1)
    sold_out = ExchangeEngine().purchase(buyer, seller, listing, "Ava").listing

    result = ExchangeEngine().purchase(buyer, seller, sold_out, "Ava")

    assert result.outcome is ExchangeOutcome.OUT_OF_STOCK
    assert result.message == "This item is no longer available."
    assert result.transactions == ()


def test_removed_listing_cannot_be_bought() -> None:
    buyer, seller = companies()
    listing = remove_listing(create_listing("seller-kid", "Bracelet", price="1", quantity=5))

    result = ExchangeEngine().purchase(buyer, seller, listing, "Ava")

    assert result.outcome is ExchangeOutcome.OUT_OF_STOCK
    assert listing.status is ListingStatus.REMOVED


def test_cannot_buy_own_item() -> None:
    buyer, _ = companies()
    listing = create_listing("buyer-kid", "Bracelet", price="1")

    result = ExchangeEngine().purchase(buyer, None, listing, "Ava")

    assert result.outcome is ExchangeOutcome.INVALID
    assert result.message == "You can't buy your own item."


def test_own_sold_out_item_reports_out_of_stock_first() -> None:
    buyer, _ = companies()
    listing = remove_listing(create_listing("buyer-kid", "Bracelet", price="1"))

    result = ExchangeEngine().purchase(buyer, None, listing, "Ava")

    assert result.outcome is ExchangeOutcome.OUT_OF_STOCK


def test_own_item_beyond_budget_reports_insufficient_funds_first() -> None:
    buyer, _ = companies(buyer_balance="5")
    listing = create_listing("buyer-kid", "Bracelet", price="8")

    result = ExchangeEngine().purchase(buyer, None, listing, "Ava")

    assert result.outcome is ExchangeOutcome.INSUFFICIENT_FUNDS
    assert result.shortfall == Decimal("3.00")


def test_full_depletion_over_three_purchases() -> None:
    buyer, seller = companies(buyer_balance="100")
    listing = create_listing("seller-kid", "Bracelet", price="20", quantity=3)
    store = InMemoryStore()
    for account in (buyer, seller):
        store.add_account(account)
    store.add_listing(listing)
    engine = ExchangeEngine(store=store)

    statuses = []
    for _ in range(3):
        result = engine.purchase(store.get_account(buyer.id), store.get_account(seller.id), store.get_listing(listing.id), "Ava")
        assert result.ok
        statuses.append((result.listing.quantity, result.listing.status))

    assert statuses == [
        (2, ListingStatus.AVAILABLE),
        (1, ListingStatus.AVAILABLE),
        (0, ListingStatus.SOLD),
    ]
    assert store.get_account(buyer.id).balance == Decimal("40.00")
    assert store.get_account(seller.id).balance == Decimal("110.00")
    assert len(store.purchases(buyer_account_id=buyer.id)) == 3


def test_stale_listing_is_rejected_by_store() -> None:
    buyer, seller = companies(buyer_balance="100")
    other = CompanyAccount.open("other-kid", "Other Co", starting_capital="100")
    listing = create_listing("seller-kid", "Bracelet", price="20", quantity=1)
    store = InMemoryStore()
    for account in (buyer, seller, other):
        store.add_account(account)
    store.add_listing(listing)
    engine = ExchangeEngine(store=store)

    first = engine.purchase(buyer, seller, listing, "Ava")
    second = engine.purchase(other, store.get_account(seller.id), listing, "Cal")

    assert first.ok
    assert second.outcome is ExchangeOutcome.OUT_OF_STOCK
    assert store.get_account(other.id).balance == Decimal("100.00")
    assert store.get_account(seller.id).balance == Decimal("70.00")


def test_missing_seller_still_debits_buyer_and_logs() -> None:
    buyer, _ = companies()
    listing = create_listing("ghost-kid", "Bracelet", price="20")
    logger = StructuredLogger()
    hook = RecordingHook()

    result = ExchangeEngine(logger=logger, rewards=RewardQueue(hook)).purchase(buyer, None, listing, "Ava")

    assert result.ok
    assert result.seller is None
    assert result.buyer.balance == Decimal("80.00")
    assert len(result.transactions) == 1
    assert result.transactions[0].description == "Purchased: Bracelet from Unknown"
    assert logger.events("seller_company_missing")
    assert hook.calls == []


def test_reward_failure_never_fails_the_purchase() -> None:
    buyer, seller = companies()
    listing = create_listing("seller-kid", "Bracelet", price="20")
    hook = FailingRewardHook()
    logger = StructuredLogger()
    queue = RewardQueue(hook, max_attempts=2, logger=logger)

    result = ExchangeEngine(rewards=queue, logger=logger).purchase(buyer, seller, listing, "Ava")

    assert result.ok
    assert result.seller.balance == Decimal("70.00")
    assert hook.attempts == 1
    assert len(queue.pending()) == 1
    assert logger.events("reward_failed")[0]["error"] == "reward service unavailable"


def test_persistence_failure_is_reported_generically() -> None:
    buyer, seller = companies()
    listing = create_listing("seller-kid", "Bracelet", price="20")
    store = BrokenStore()
    for account in (buyer, seller):
        store.add_account(account)
    store.add_listing(listing)
    logger = StructuredLogger()

    result = ExchangeEngine(store=store, logger=logger).purchase(buyer, seller, listing, "Ava")

    assert result.outcome is ExchangeOutcome.FAILURE
    assert result.message == PURCHASE_FAILED_MESSAGE
    assert isinstance(result.error, PersistenceFailureError)
    assert store.get_account(buyer.id).balance == Decimal("100.00")
    assert logger.events("purchase_failed")
