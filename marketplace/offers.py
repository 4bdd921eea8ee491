"""
offers.py - Offer Manager (buyer-initiated bids outside the listing flow)

Offers are keyed by (asset id, buyer); a new offer from the same buyer on
the same asset replaces the old one. Funds are not escrowed: the buyer's
balance is checked when the offer is made and checked again when the owner
accepts it, so an offer can be recorded and still fail at acceptance.

Expiry is lazy. An offer past its expires_at block stays in the market state
until its buyer cancels it; accepting it raises OfferExpired.
"""

from __future__ import annotations
from typing import Any

from .core import (
    LedgerView, PendingTransaction,
    NotFound, SelfPurchase, InvalidParameters, AuctionActive, OfferExpired,
    to_amount, market_event,
)
from .assets import owner_of, require_asset
from .market import (
    load_market, offer_from_state, require_caller, require_owner, require_funds,
    next_state, without_key, without_offer, market_transaction, settle_sale,
    with_revenue,
)


def compute_make_offer(
    view: LedgerView,
    market: str,
    caller: str,
    asset_id: str,
    amount: Any,
    expires_at: int,
) -> PendingTransaction:
    """
    Record (or replace) the caller's offer for an asset.

    Args:
        amount: Price the caller is willing to pay
        expires_at: Last block height at which the offer can be accepted

    Raises:
        Unauthorized
        NotFound: Asset unknown
        SelfPurchase: Caller already owns the asset
        InvalidPrice: Amount is not a positive integer
        InvalidParameters: expires_at is not strictly after the current block
        InsufficientFunds: Caller's balance is below amount
    """
    config, state = load_market(view, market)
    require_caller(view, config, caller)
    require_asset(view, asset_id)
    if owner_of(view, asset_id) == caller:
        raise SelfPurchase(f"{caller} already owns {asset_id}")
    amount = to_amount(amount, "amount")
    if isinstance(expires_at, bool) or not isinstance(expires_at, int) or expires_at <= view.current_block:
        raise InvalidParameters(
            f"expires_at must be a block after {view.current_block}, got {expires_at!r}"
        )
    require_funds(view, config, caller, amount)

    offers = state['offers']
    entry = {'amount': amount, 'expires_at': expires_at, 'made_at': view.current_block}
    offers = {**offers, asset_id: {**offers.get(asset_id, {}), caller: entry}}
    return market_transaction(
        view, market, state, next_state(state, offers=offers), [],
        [market_event("offer-made", asset_id, buyer=caller, amount=amount, expires_at=expires_at)],
        caller, "make-offer",
    )


def compute_cancel_offer(view: LedgerView, market: str, caller: str, asset_id: str) -> PendingTransaction:
    """
    Withdraw the caller's offer on an asset. Expired offers can be cancelled.

    Raises:
        Unauthorized, NotFound
    """
    config, state = load_market(view, market)
    require_caller(view, config, caller)
    offer = offer_from_state(state, asset_id, caller)
    if offer is None:
        raise NotFound(f"No offer from {caller} on {asset_id}")

    return market_transaction(
        view, market, state,
        next_state(state, offers=without_offer(state['offers'], asset_id, caller)), [],
        [market_event("offer-cancelled", asset_id, buyer=caller, amount=offer.amount)],
        caller, "cancel-offer",
    )


def compute_accept_offer(
    view: LedgerView,
    market: str,
    caller: str,
    asset_id: str,
    buyer: str,
) -> PendingTransaction:
    """
    Sell an asset to the author of an offer.

    Settlement is the same as buy() with the buyer paying. Any listing on
    the asset is removed with the accepted offer; offers from other buyers
    are kept.

    Raises:
        Unauthorized
        NotFound: Asset or offer missing
        NotOwner: Caller does not own the asset
        SelfPurchase: The offer's buyer is the owner
        OfferExpired: Current block is past the offer's expires_at
        AuctionActive: An auction occupies the asset
        InsufficientFunds: Buyer's balance no longer covers the amount
    """
    config, state = load_market(view, market)
    require_caller(view, config, caller)
    metadata = require_asset(view, asset_id)
    offer = offer_from_state(state, asset_id, buyer)
    if offer is None:
        raise NotFound(f"No offer from {buyer} on {asset_id}")
    require_owner(view, caller, asset_id)
    if buyer == caller:
        raise SelfPurchase(f"{caller} cannot accept their own offer")
    if offer.is_expired(view.current_block):
        raise OfferExpired(
            f"Offer from {buyer} on {asset_id} expired at block {offer.expires_at}"
        )
    if asset_id in state['auctions']:
        raise AuctionActive(f"Asset {asset_id} is in an auction")
    require_funds(view, config, buyer, offer.amount)

    settlement = settle_sale(
        config, metadata, caller, buyer, buyer, offer.amount, f"offer_{asset_id}",
    )
    new_state = next_state(
        state,
        listings=without_key(state['listings'], asset_id),
        offers=without_offer(state['offers'], asset_id, buyer),
        **with_revenue(state, settlement),
    )
    events = [market_event(
        "offer-accepted", asset_id,
        seller=caller, buyer=buyer, price=offer.amount,
        fee=settlement.split.fee, royalty=settlement.royalty_paid,
        seller_proceeds=settlement.seller_proceeds,
    )]
    return market_transaction(
        view, market, state, new_state, list(settlement.moves), events, caller, "accept-offer",
    )
