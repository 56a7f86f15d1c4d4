"""Marketplace listing lifecycle: creation, seller edits, removal and discovery."""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from typing import Iterable, Mapping, Optional, Sequence, Tuple

from .exceptions import InvalidAmountError, InvalidInputError
from .models import ListingStatus, MarketplaceListing, utc_now
from .money import AmountLike, parse_amount


def _validate_price(price: AmountLike) -> Decimal:
    try:
        return parse_amount(price)
    except InvalidAmountError as exc:
        raise InvalidInputError("Please enter a valid price greater than 0.") from exc


def _validate_quantity(quantity: object, *, allow_zero: bool) -> int:
    try:
        value = int(str(quantity).strip())
    except (TypeError, ValueError) as exc:
        raise InvalidInputError("Quantity must be a whole number.") from exc
    if allow_zero and value < 0:
        raise InvalidInputError("Please enter a valid quantity (0 or greater).")
    if not allow_zero and value <= 0:
        raise InvalidInputError("Please enter a valid quantity greater than 0.")
    return value


def _status_for_quantity(quantity: int) -> ListingStatus:
    return ListingStatus.SOLD if quantity <= 0 else ListingStatus.AVAILABLE


def create_listing(
    seller_id: str,
    name: str,
    *,
    price: AmountLike,
    quantity: object = 1,
    description: Optional[str] = None,
    image_url: Optional[str] = None,
) -> MarketplaceListing:
    """Build a new available listing owned by ``seller_id``."""

    clean_name = (name or "").strip()
    if not clean_name:
        raise InvalidInputError("Item name is required.")
    return MarketplaceListing(
        seller_id=seller_id,
        name=clean_name,
        price=_validate_price(price),
        quantity=_validate_quantity(quantity, allow_zero=False),
        description=(description or "").strip() or None,
        image_url=(image_url or "").strip() or None,
        status=ListingStatus.AVAILABLE,
    )


def edit_listing(
    listing: MarketplaceListing,
    *,
    name: Optional[str] = None,
    description: Optional[str] = None,
    price: Optional[AmountLike] = None,
    quantity: Optional[object] = None,
    image_url: Optional[str] = None,
) -> MarketplaceListing:
    """Apply a seller edit; the status follows the resulting quantity.

    Setting the quantity to zero is how a seller marks an item as sold.
    Removed listings stay removed.
    """

    if listing.status is ListingStatus.REMOVED:
        raise InvalidInputError("This item has been removed from the marketplace.")
    new_name = listing.name
    if name is not None:
        new_name = name.strip()
        if not new_name:
            raise InvalidInputError("Item name is required.")
    new_price = listing.price if price is None else _validate_price(price)
    new_quantity = listing.quantity if quantity is None else _validate_quantity(quantity, allow_zero=True)
    return replace(
        listing,
        name=new_name,
        description=listing.description if description is None else (description.strip() or None),
        image_url=listing.image_url if image_url is None else (image_url.strip() or None),
        price=new_price,
        quantity=new_quantity,
        status=_status_for_quantity(new_quantity),
        updated_at=utc_now(),
    )


def remove_listing(listing: MarketplaceListing) -> MarketplaceListing:
    """Take a listing off the marketplace for good, whatever its quantity."""

    return replace(listing, status=ListingStatus.REMOVED, updated_at=utc_now())


def sell_one(listing: MarketplaceListing) -> MarketplaceListing:
    """Return ``listing`` with one unit fewer, flipping to sold at zero."""

    remaining = listing.quantity - 1
    return replace(
        listing,
        quantity=remaining,
        status=_status_for_quantity(remaining),
        updated_at=utc_now(),
    )


def reprice_listings(
    listings: Sequence[MarketplaceListing],
    prices: Mapping[str, AmountLike],
) -> Tuple[MarketplaceListing, ...]:
    """Validate every new price first, then return the repriced listings."""

    by_id = {listing.id: listing for listing in listings}
    validated: dict[str, Decimal] = {}
    for listing_id, raw_price in prices.items():
        listing = by_id.get(listing_id)
        if listing is None:
            raise InvalidInputError(f"Unknown item '{listing_id}'.")
        try:
            validated[listing_id] = parse_amount(raw_price)
        except InvalidAmountError as exc:
            raise InvalidInputError(f"Invalid price for {listing.name}") from exc
    moment = utc_now()
    return tuple(
        replace(by_id[listing_id], price=price, updated_at=moment)
        for listing_id, price in validated.items()
    )


def discoverable(
    listings: Iterable[MarketplaceListing],
    *,
    exclude_seller: Optional[str] = None,
) -> Tuple[MarketplaceListing, ...]:
    """Listings a child can browse: in stock, newest first, not their own."""

    visible = [
        listing
        for listing in listings
        if listing.in_stock and (exclude_seller is None or listing.seller_id != exclude_seller)
    ]
    visible.sort(key=lambda listing: listing.created_at, reverse=True)
    return tuple(visible)


__all__ = [
    "create_listing",
    "discoverable",
    "edit_listing",
    "remove_listing",
    "reprice_listings",
    "sell_one",
]
