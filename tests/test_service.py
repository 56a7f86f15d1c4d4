from decimal import Decimal

import pytest

from kidledger.exceptions import (
    AccountNotFoundError,
    DuplicateAccountError,
    InvalidAmountError,
    InvalidInputError,
    ListingNotFoundError,
    ProgressUnavailableError,
)
from kidledger.exchange import ExchangeOutcome
from kidledger.models import ActivityKind, ChildSession, ListingStatus, RewardResult, TransactionKind
from kidledger.service import KidLedger

AVA = ChildSession("ava", "Ava")
BEN = ChildSession("ben", "Ben")


class RecordingHook:
    def __init__(self) -> None:
        self.calls = []

    def award_achievements_and_xp(self, child_id: str, activity: ActivityKind) -> RewardResult:
        self.calls.append((child_id, activity))
        return RewardResult()


def test_company_setup_and_profile_updates() -> None:
    ledger = KidLedger()

    company = ledger.create_company(AVA, "  Lemon Co ", product_name="Lemonade")
    assert company.company_name == "Lemon Co"
    assert company.balance == Decimal("4750.00")
    assert company.initial_capital == Decimal("4750.00")

    with pytest.raises(DuplicateAccountError):
        ledger.create_company(AVA, "Second Co")
    with pytest.raises(InvalidInputError):
        ledger.create_company(BEN, "   ")
    with pytest.raises(AccountNotFoundError):
        ledger.company_for("ben")

    updated = ledger.update_company(AVA, specialty="Drinks")
    assert updated.specialty == "Drinks"
    assert updated.product_name == "Lemonade"
    assert ledger.audit_log.entries(action="create_company")[0].actor == "ava"


def test_manual_revenue_triggers_reward_check() -> None:
    hook = RecordingHook()
    ledger = KidLedger(reward_hook=hook)
    ledger.create_company(AVA, "Lemon Co")

    account, transaction = ledger.record_transaction(AVA, "revenue", "75", "Lemonade stand")
    assert account.balance == Decimal("4825.00")
    assert account.total_revenue == Decimal("75.00")
    assert hook.calls == [("ava", ActivityKind.LESSON_COMPLETE)]

    ledger.record_transaction(AVA, "expense", "5000")
    assert ledger.company_for("ava").balance == Decimal("-175.00")
    assert len(hook.calls) == 1

    with pytest.raises(InvalidAmountError):
        ledger.record_transaction(AVA, "revenue", "0")
    assert [entry.kind for entry in ledger.history("ava")] == [TransactionKind.EXPENSE, TransactionKind.REVENUE]
    assert ledger.logger.events("transaction_recorded")


def test_marketplace_purchase_flow() -> None:
    ledger = KidLedger()
    ledger.create_company(AVA, "Lemon Co")
    ledger.create_company(BEN, "Bead Co")
    listing = ledger.list_item(BEN, "Bracelet", price="20", quantity=1)

    assert ledger.marketplace(BEN) == ()
    assert [item.id for item in ledger.marketplace(AVA)] == [listing.id]

    result = ledger.purchase(AVA, listing.id)

    assert result.ok
    assert ledger.company_for("ava").balance == Decimal("4730.00")
    assert ledger.company_for("ben").balance == Decimal("4770.00")
    assert result.transactions[0].description == "Purchased: Bracelet from Ben"
    assert result.transactions[1].description == "Sold: Bracelet to Ava"
    assert ledger.store.get_listing(listing.id).status is ListingStatus.SOLD
    assert ledger.marketplace(AVA) == ()
    assert len(ledger.purchases("ava")) == 1

    progress = ledger.progress("ben")
    assert progress["achievements"] == ["First Sale"]
    assert progress["total_xp"] == 35

    again = ledger.purchase(AVA, listing.id)
    assert again.outcome is ExchangeOutcome.OUT_OF_STOCK


def test_purchase_requires_buyer_company() -> None:
    ledger = KidLedger()
    ledger.create_company(BEN, "Bead Co")
    listing = ledger.list_item(BEN, "Bracelet", price="20")

    result = ledger.purchase(AVA, listing.id)

    assert result.outcome is ExchangeOutcome.INVALID
    assert result.message == "Please create a company first to make purchases."
    ledger.create_company(AVA, "Lemon Co")
    with pytest.raises(ListingNotFoundError):
        ledger.purchase(AVA, "missing")


def test_seller_only_edits_and_removal() -> None:
    ledger = KidLedger()
    listing = ledger.list_item(BEN, "Bracelet", price="20", quantity=2)

    with pytest.raises(PermissionError):
        ledger.edit_item(AVA, listing.id, price="1")

    edited = ledger.edit_item(BEN, listing.id, quantity=0)
    assert edited.status is ListingStatus.SOLD
    assert ledger.my_items(BEN) == (edited,)

    removed = ledger.remove_item(BEN, listing.id)
    assert removed.status is ListingStatus.REMOVED
    assert ledger.my_items(BEN) == ()
    with pytest.raises(InvalidInputError):
        ledger.edit_item(BEN, listing.id, quantity=3)


def test_reprice_items_only_touches_available_listings() -> None:
    ledger = KidLedger()
    bracelet = ledger.list_item(BEN, "Bracelet", price="20")
    keychain = ledger.list_item(BEN, "Keychain", price="5")

    repriced = ledger.reprice_items(BEN, {bracelet.id: "18.50"})
    assert repriced[0].price == Decimal("18.50")
    assert ledger.store.get_listing(keychain.id).price == Decimal("5.00")

    with pytest.raises(InvalidInputError):
        ledger.reprice_items(BEN, {bracelet.id: "free"})
    assert ledger.store.get_listing(bracelet.id).price == Decimal("18.50")


def test_launch_product_charges_marketing_when_affordable() -> None:
    ledger = KidLedger()
    ledger.create_company(BEN, "Bead Co", product_name="Bead Kit")

    listing, marketing = ledger.launch_product(BEN, price="12", quantity=4)
    assert listing.name == "Bead Kit"
    assert marketing is not None
    assert marketing.description == "Product launch marketing: Bead Kit"
    assert ledger.company_for("ben").balance == Decimal("4700.00")

    poor = KidLedger(starting_capital="20")
    poor.create_company(AVA, "Tiny Co")
    listing, marketing = poor.launch_product(AVA, price="3")
    assert listing.name == "Product"
    assert marketing is None
    assert poor.company_for("ava").balance == Decimal("20.00")


def test_statement_and_history_limits() -> None:
    ledger = KidLedger()
    ledger.create_company(AVA, "Lemon Co")
    for amount in ("1", "2", "3"):
        ledger.record_transaction(AVA, "revenue", amount)

    assert [entry.amount for entry in ledger.history("ava", 2)] == [Decimal("3.00"), Decimal("2.00")]
    assert ledger.history("ava", 0) == ()
    statement = ledger.statement("ava")
    assert "Total revenue: RM 6.00" in statement


def test_leaderboards_rank_revenue_and_sales() -> None:
    cal = ChildSession("cal", "Cal")
    ledger = KidLedger()
    for session, name in ((AVA, "Lemon Co"), (BEN, "Bead Co"), (cal, "Kite Co")):
        ledger.create_company(session, name)
    bracelet = ledger.list_item(BEN, "Bracelet", price="15", quantity=4)
    kite = ledger.list_item(cal, "Kite", price="12", quantity=4)
    for _ in range(3):
        assert ledger.purchase(AVA, bracelet.id).ok
    assert ledger.purchase(AVA, kite.id).ok
    ledger.record_transaction(cal, "revenue", "100")

    revenue = ledger.leaderboard()
    assert [(entry.rank, entry.child_id, entry.value) for entry in revenue] == [
        (1, "cal", Decimal("112.00")),
        (2, "ben", Decimal("45.00")),
        (3, "ava", Decimal("0.00")),
    ]
    assert revenue[0].company_name == "Kite Co"
    assert revenue[0].child_name == "Cal"

    sales = ledger.leaderboard(" Sales ", limit=5)
    assert [(entry.child_id, entry.value) for entry in sales] == [("ben", 3), ("cal", 1)]
    assert ledger.leaderboard("sales", limit=0) == ()

    with pytest.raises(InvalidInputError):
        ledger.leaderboard("level")
    with pytest.raises(InvalidInputError):
        ledger.leaderboard("revenue", limit=-1)


def test_progress_unavailable_with_external_reward_hook() -> None:
    ledger = KidLedger(reward_hook=RecordingHook())
    with pytest.raises(ProgressUnavailableError):
        ledger.progress("ava")
