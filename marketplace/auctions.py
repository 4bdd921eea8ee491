"""
auctions.py - Auction Manager (English auctions with escrowed leading bid)

State machine:
    absent --start--> active --bid--> active ... --finalize--> absent
                        |                                 (won | unsold)
                        +--cancel (no bids)--> absent

The leading bid is held by the market's escrow wallet, never by a bidder.
Each accepted bid refunds the previous leader from escrow and escrows the
new amount in the same transaction, so escrow always equals the sum of the
current bids of the open auctions (see verify_escrow).

Timing (block heights, no anti-snipe extension):
    start:     end_block = now + duration
    bidding:   now <= end_block
    finalize:  now >  end_block, callable by anyone, exactly once
"""

from __future__ import annotations
from decimal import Decimal
from typing import Any, List, Optional

from .core import (
    LedgerView, Move, PendingTransaction, OriginType,
    NotFound, NotOwner, AlreadyExists, InvalidPrice, InvalidParameters,
    SelfPurchase, AuctionActive, AuctionEnded,
    ZERO, to_amount, market_event, empty_pending_transaction,
)
from .assets import metadata_of, owner_of
from .market import (
    Auction, load_market, auction_from_state, auction_to_dict,
    require_caller, require_owner, require_funds,
    next_state, without_key, market_transaction, settle_sale, with_revenue,
)


def _require_auction(state, asset_id: str) -> Auction:
    auction = auction_from_state(state, asset_id)
    if auction is None:
        raise NotFound(f"No auction for {asset_id}")
    return auction


def compute_start_auction(
    view: LedgerView,
    market: str,
    caller: str,
    asset_id: str,
    min_bid: Any,
    duration: int,
    reserve_price: Any = 0,
) -> PendingTransaction:
    """
    Open an auction on an asset the caller owns.

    Args:
        min_bid: Smallest acceptable first bid
        duration: Number of blocks bidding stays open
        reserve_price: Price the seller hopes to reach; 0 means no reserve.
            Only reported through reserve_met, finalize pays out regardless.

    Raises:
        Unauthorized, NotFound, NotOwner,
        InvalidPrice: min_bid is not a positive integer
        InvalidParameters: duration out of range, or bad reserve_price
        AlreadyExists: A listing or an auction already occupies the asset
    """
    config, state = load_market(view, market)
    require_caller(view, config, caller)
    require_owner(view, caller, asset_id)
    min_bid = to_amount(min_bid, "min_bid")
    if (isinstance(duration, bool) or not isinstance(duration, int)
            or not config.min_auction_duration <= duration <= config.max_auction_duration):
        raise InvalidParameters(
            f"duration must be in [{config.min_auction_duration}, "
            f"{config.max_auction_duration}], got {duration!r}"
        )
    if reserve_price in (0, ZERO):
        reserve = ZERO
    else:
        try:
            reserve = to_amount(reserve_price, "reserve_price")
        except InvalidPrice as e:
            raise InvalidParameters(str(e)) from e
    if asset_id in state['auctions']:
        raise AlreadyExists(f"Asset {asset_id} is already in an auction")
    if asset_id in state['listings']:
        raise AlreadyExists(f"Asset {asset_id} is listed")

    now = view.current_block
    auction = Auction(
        asset_id=asset_id,
        seller=caller,
        min_bid=min_bid,
        current_bid=ZERO,
        current_bidder=None,
        start_block=now,
        end_block=now + duration,
        reserve_price=reserve,
        reserve_met=reserve == ZERO,
    )
    auctions = {**state['auctions'], asset_id: auction_to_dict(auction)}
    return market_transaction(
        view, market, state, next_state(state, auctions=auctions), [],
        [market_event(
            "auction-started", asset_id,
            seller=caller, min_bid=min_bid, end_block=auction.end_block, reserve_price=reserve,
        )],
        caller, "start-auction",
    )


def compute_place_bid(
    view: LedgerView,
    market: str,
    caller: str,
    asset_id: str,
    amount: Any,
) -> PendingTransaction:
    """
    Place a bid, refunding the previous leader and escrowing the new bid.

    The leading bidder may raise their own bid; their escrowed bid counts
    towards the funds check and is refunded in the same transaction.

    Raises:
        Unauthorized, NotFound,
        SelfPurchase: Caller is the seller
        AuctionEnded: Current block is past end_block
        InvalidPrice: Below min_bid, or below the minimum raise
        InsufficientFunds: Caller cannot cover the bid
    """
    config, state = load_market(view, market)
    require_caller(view, config, caller)
    auction = _require_auction(state, asset_id)
    if caller == auction.seller:
        raise SelfPurchase(f"{caller} cannot bid on their own auction")
    if auction.has_ended(view.current_block):
        raise AuctionEnded(f"Auction for {asset_id} ended at block {auction.end_block}")
    amount = to_amount(amount, "bid")
    credit = auction.current_bid if caller == auction.current_bidder else ZERO
    require_funds(view, config, caller, amount, credit)
    required = auction.minimum_next_bid
    if amount < required:
        raise InvalidPrice(f"Bid {amount} on {asset_id} is below the minimum {required}")

    cash = config.currency
    moves: List[Move] = []
    if auction.has_bids:
        moves.append(Move(
            auction.current_bid, cash, config.escrow_wallet, auction.current_bidder,
            f"auction_{asset_id}:refund",
        ))
    moves.append(Move(amount, cash, caller, config.escrow_wallet, f"auction_{asset_id}:escrow"))

    raw = {
        **state['auctions'][asset_id],
        'current_bid': amount,
        'current_bidder': caller,
        'reserve_met': auction.reserve_met or amount >= auction.reserve_price,
    }
    events = [market_event(
        "bid-placed", asset_id,
        bidder=caller, amount=amount,
        previous_bidder=auction.current_bidder, refunded=auction.current_bid,
    )]
    return market_transaction(
        view, market, state,
        next_state(state, auctions={**state['auctions'], asset_id: raw}),
        moves, events, caller, "place-bid",
    )


def compute_finalize_auction(
    view: LedgerView,
    market: str,
    asset_id: str,
    caller: Optional[str] = None,
) -> PendingTransaction:
    """
    Close an ended auction. Anyone may call this.

    With a winner the escrowed bid is settled like buy(): proceeds to the
    seller, fee to the platform, royalty to the creator, asset to the
    winner. Without bids nothing moves. If the seller no longer holds the
    asset the winner is refunded and the auction is reported cancelled.
    The auction record is removed in every case.

    Raises:
        NotFound: No auction (including a second finalize)
        AuctionActive: Current block is not past end_block
    """
    config, state = load_market(view, market)
    auction = _require_auction(state, asset_id)
    if not auction.has_ended(view.current_block):
        raise AuctionActive(
            f"Auction for {asset_id} runs until block {auction.end_block}, "
            f"now {view.current_block}"
        )

    source_id = caller or market
    origin_type = OriginType.USER_ACTION if caller else OriginType.CONTRACT
    auctions = without_key(state['auctions'], asset_id)

    if not auction.has_bids:
        return market_transaction(
            view, market, state, next_state(state, auctions=auctions), [],
            [market_event("auction-ended-no-bids", asset_id, seller=auction.seller)],
            source_id, "finalize-auction", origin_type,
        )

    if owner_of(view, asset_id) != auction.seller:
        refund = Move(
            auction.current_bid, config.currency, config.escrow_wallet, auction.current_bidder,
            f"auction_{asset_id}:refund",
        )
        return market_transaction(
            view, market, state, next_state(state, auctions=auctions), [refund],
            [market_event(
                "auction-cancelled", asset_id,
                seller=auction.seller, refunded_bidder=auction.current_bidder,
                refunded=auction.current_bid,
            )],
            source_id, "finalize-auction", origin_type,
        )

    metadata = metadata_of(view, asset_id)
    settlement = settle_sale(
        config, metadata, auction.seller, auction.current_bidder, config.escrow_wallet,
        auction.current_bid, f"auction_{asset_id}",
    )
    new_state = next_state(
        state,
        auctions=auctions,
        **with_revenue(state, settlement),
    )
    events = [market_event(
        "auction-finalized", asset_id,
        seller=auction.seller, winner=auction.current_bidder, price=auction.current_bid,
        fee=settlement.split.fee, royalty=settlement.royalty_paid,
        seller_proceeds=settlement.seller_proceeds, reserve_met=auction.reserve_met,
    )]
    return market_transaction(
        view, market, state, new_state, list(settlement.moves), events,
        source_id, "finalize-auction", origin_type,
    )


def compute_cancel_auction(view: LedgerView, market: str, caller: str, asset_id: str) -> PendingTransaction:
    """
    Withdraw an auction that has no bids.

    Raises:
        Unauthorized, NotFound,
        NotOwner: Caller is not the seller
        AuctionActive: A bid has been placed; its escrow stays until finalize
    """
    config, state = load_market(view, market)
    require_caller(view, config, caller)
    auction = _require_auction(state, asset_id)
    if caller != auction.seller:
        raise NotOwner(f"{caller} is not the seller of {asset_id}")
    if auction.has_bids:
        raise AuctionActive(
            f"Auction for {asset_id} has a bid of {auction.current_bid} and cannot be cancelled"
        )

    return market_transaction(
        view, market, state,
        next_state(state, auctions=without_key(state['auctions'], asset_id)), [],
        [market_event("auction-cancelled", asset_id, seller=caller)],
        caller, "cancel-auction",
    )


def minimum_next_bid(view: LedgerView, market: str, asset_id: str) -> Decimal:
    """
    Smallest bid place_bid() would accept right now.

    Raises:
        NotFound: No auction for the asset
    """
    _, state = load_market(view, market)
    return _require_auction(state, asset_id).minimum_next_bid


def auction_contract(view: LedgerView, symbol: str, block: int) -> PendingTransaction:
    """
    Lifecycle contract for a market unit: finalize ended auctions.

    Returns the finalization of the auction that ended first (ties broken
    by asset id), or an empty transaction when no auction has ended. The
    lifecycle engine polls again until nothing is left to finalize.
    """
    _, state = load_market(view, symbol)
    ended = sorted(
        (raw['end_block'], asset_id)
        for asset_id, raw in state['auctions'].items()
        if block > raw['end_block']
    )
    if not ended:
        return empty_pending_transaction(view)
    return compute_finalize_auction(view, symbol, ended[0][1])
