"""
listings.py - Listing Manager (fixed-price sales)

Lifecycle:
    list -> (update-price)* -> unlist | buy

A listing is keyed by asset id in the market state. It is only ever created
by the asset's current owner and never while an auction occupies the asset.
buy() settles the sale in a single pending transaction:

    buyer --net-->     seller
    buyer --fee-->     platform
    buyer --royalty--> creator      (omitted when zero or creator == seller)
    seller --asset-->  buyer
    market state: listing removed, revenue counters incremented
"""

from __future__ import annotations
from typing import Any

from .core import (
    LedgerView, PendingTransaction,
    NotOwner, NotForSale, SelfPurchase, AlreadyExists,
    to_amount, market_event,
)
from .assets import owner_of, require_asset
from .market import (
    load_market, listing_from_state, require_caller, require_owner, require_funds,
    next_state, without_key, market_transaction, settle_sale, with_revenue,
)


def compute_list(
    view: LedgerView,
    market: str,
    caller: str,
    asset_id: str,
    price: Any,
) -> PendingTransaction:
    """
    Offer an asset for sale at a fixed price.

    Raises:
        Unauthorized, NotFound, NotOwner, InvalidPrice,
        AlreadyExists: A listing or an auction already occupies the asset
    """
    config, state = load_market(view, market)
    require_caller(view, config, caller)
    require_owner(view, caller, asset_id)
    price = to_amount(price, "price")
    if asset_id in state['listings']:
        raise AlreadyExists(f"Asset {asset_id} is already listed")
    if asset_id in state['auctions']:
        raise AlreadyExists(f"Asset {asset_id} is in an auction")

    listings = {
        **state['listings'],
        asset_id: {'seller': caller, 'price': price, 'listed_at': view.current_block},
    }
    return market_transaction(
        view, market, state, next_state(state, listings=listings), [],
        [market_event("listed", asset_id, seller=caller, price=price)],
        caller, "list",
    )


def _require_seller(view: LedgerView, market: str, caller: str, asset_id: str):
    config, state = load_market(view, market)
    require_caller(view, config, caller)
    listing = listing_from_state(state, asset_id)
    if listing is None:
        raise NotForSale(f"Asset {asset_id} is not listed")
    if listing.seller != caller:
        raise NotOwner(f"{caller} is not the seller of {asset_id}")
    return state, listing


def compute_update_price(
    view: LedgerView,
    market: str,
    caller: str,
    asset_id: str,
    new_price: Any,
) -> PendingTransaction:
    """
    Change the price of an open listing. Only the price changes.

    Raises:
        Unauthorized, NotForSale, NotOwner, InvalidPrice
    """
    state, listing = _require_seller(view, market, caller, asset_id)
    new_price = to_amount(new_price, "price")

    listings = {
        **state['listings'],
        asset_id: {**state['listings'][asset_id], 'price': new_price},
    }
    return market_transaction(
        view, market, state, next_state(state, listings=listings), [],
        [market_event("price-updated", asset_id, seller=caller, old_price=listing.price, price=new_price)],
        caller, "update-price",
    )


def compute_unlist(view: LedgerView, market: str, caller: str, asset_id: str) -> PendingTransaction:
    """
    Withdraw a listing.

    Raises:
        Unauthorized, NotForSale, NotOwner
    """
    state, _ = _require_seller(view, market, caller, asset_id)
    return market_transaction(
        view, market, state,
        next_state(state, listings=without_key(state['listings'], asset_id)), [],
        [market_event("unlisted", asset_id, seller=caller)],
        caller, "unlist",
    )


def compute_buy(view: LedgerView, market: str, caller: str, asset_id: str) -> PendingTransaction:
    """
    Buy a listed asset at its listing price.

    Returns:
        PendingTransaction paying seller, platform and creator from the
        caller, moving the asset to the caller, deleting the listing and
        incrementing the revenue counters.

    Raises:
        Unauthorized
        NotForSale: No listing, or its seller no longer owns the asset
        SelfPurchase: Caller is the seller
        InsufficientFunds: Caller's balance is below the price
    """
    config, state = load_market(view, market)
    require_caller(view, config, caller)
    listing = listing_from_state(state, asset_id)
    if listing is None:
        raise NotForSale(f"Asset {asset_id} is not listed")
    if owner_of(view, asset_id) != listing.seller:
        raise NotForSale(f"Listing for {asset_id} is stale: {listing.seller} no longer owns it")
    if caller == listing.seller:
        raise SelfPurchase(f"{caller} cannot buy their own listing")
    require_funds(view, config, caller, listing.price)

    metadata = require_asset(view, asset_id)
    settlement = settle_sale(
        config, metadata, listing.seller, caller, caller, listing.price, f"buy_{asset_id}",
    )
    new_state = next_state(
        state,
        listings=without_key(state['listings'], asset_id),
        **with_revenue(state, settlement),
    )
    events = [market_event(
        "purchased", asset_id,
        seller=listing.seller, buyer=caller, price=listing.price,
        fee=settlement.split.fee, royalty=settlement.royalty_paid,
        seller_proceeds=settlement.seller_proceeds,
    )]
    return market_transaction(
        view, market, state, new_state, list(settlement.moves), events, caller, "buy",
    )
