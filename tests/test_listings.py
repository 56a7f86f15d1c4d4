from decimal import Decimal

import pytest

from kidledger.exceptions import InvalidInputError
from kidledger.listings import (
    create_listing,
    discoverable,
    edit_listing,
    remove_listing,
    reprice_listings,
    sell_one,
)
from kidledger.models import ListingStatus


def test_create_listing_validates_price_and_quantity() -> None:
    listing = create_listing("kid-1", "  Bracelet ", price="4.5", quantity="2", description="  ")
    assert listing.name == "Bracelet"
    assert listing.price == Decimal("4.50")
    assert listing.quantity == 2
    assert listing.description is None
    assert listing.status is ListingStatus.AVAILABLE

    for kwargs in ({"price": "0"}, {"price": "abc"}, {"price": "3", "quantity": 0}, {"price": "3", "quantity": "x"}):
        with pytest.raises(InvalidInputError):
            create_listing("kid-1", "Bracelet", **kwargs)
    with pytest.raises(InvalidInputError):
        create_listing("kid-1", "   ", price="3")


def test_edit_recomputes_status_from_quantity() -> None:
    listing = create_listing("kid-1", "Bracelet", price="4", quantity=1)

    sold = edit_listing(listing, quantity=0)
    assert sold.status is ListingStatus.SOLD

    restocked = edit_listing(sold, quantity=5, price="6")
    assert restocked.status is ListingStatus.AVAILABLE
    assert restocked.quantity == 5
    assert restocked.price == Decimal("6.00")

    with pytest.raises(InvalidInputError):
        edit_listing(listing, quantity=-1)


def test_removed_listing_is_terminal() -> None:
    listing = create_listing("kid-1", "Bracelet", price="4", quantity=3)
    removed = remove_listing(listing)

    assert removed.status is ListingStatus.REMOVED
    assert not removed.in_stock
    assert discoverable([removed]) == ()
    with pytest.raises(InvalidInputError):
        edit_listing(removed, quantity=4)


def test_sell_one_flips_to_sold_at_zero() -> None:
    listing = create_listing("kid-1", "Bracelet", price="4", quantity=2)
    once = sell_one(listing)
    twice = sell_one(once)
    assert (once.quantity, once.status) == (1, ListingStatus.AVAILABLE)
    assert (twice.quantity, twice.status) == (0, ListingStatus.SOLD)


def test_reprice_is_all_or_nothing() -> None:
    first = create_listing("kid-1", "Bracelet", price="4")
    second = create_listing("kid-1", "Keychain", price="2")

    with pytest.raises(InvalidInputError, match="Invalid price for Keychain"):
        reprice_listings([first, second], {first.id: "5", second.id: "-1"})

    repriced = reprice_listings([first, second], {first.id: "5", second.id: "2.25"})
    assert [listing.price for listing in repriced] == [Decimal("5.00"), Decimal("2.25")]


def test_discoverable_excludes_viewer_and_empty_stock() -> None:
    mine = create_listing("kid-1", "Bracelet", price="4")
    theirs = create_listing("kid-2", "Keychain", price="2")
    gone = sell_one(create_listing("kid-2", "Sticker", price="1"))

    assert discoverable([mine, theirs, gone], exclude_seller="kid-1") == (theirs,)
    assert set(discoverable([mine, theirs, gone])) == {mine, theirs}
