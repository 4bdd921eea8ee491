"""
market.py - Market unit, Revenue Ledger and shared trade settlement

The market is a unit of type MARKETPLACE that nobody holds. Its state is
the store for everything the trading engine owns:

    listings: {asset_id: {seller, price, listed_at}}
    offers:   {asset_id: {buyer: {amount, expires_at, made_at}}}
    auctions: {asset_id: {seller, min_bid, current_bid, current_bidder,
                          start_block, end_block, reserve_price, reserve_met}}
    total_fees, total_royalties: Revenue Ledger counters
    nonce: incremented by every accepted market operation
    configuration: see MarketConfig

Every trading operation reads this state through a LedgerView and returns a
PendingTransaction holding the currency/asset moves AND the UnitStateChange
of the market state. Ledger.execute() applies both or neither, so maps,
counters, balances and ownership can never disagree. The nonce makes every
operation a distinct intent even when two operations would otherwise have
identical content (list, unlist, list again at the same price).

This module also holds the validation shared by the managers and the
settlement used by buy, accept-offer and finalize-auction.
"""

from __future__ import annotations
from dataclasses import dataclass, asdict
from decimal import Decimal, localcontext
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from .core import (
    LedgerView, Move, PendingTransaction, Unit, UnitStateChange, UnitState,
    TransactionOrigin, OriginType, MarketEvent,
    Unauthorized, InsufficientFunds, InvalidParameters, NotFound, NotOwner,
    AuctionActive,
    SYSTEM_WALLET, PLATFORM_WALLET, ESCROW_WALLET, DEFAULT_CURRENCY,
    DEFAULT_MARKET_SYMBOL, UNIT_TYPE_MARKETPLACE, BPS_DENOMINATOR, FEE_BPS,
    MAX_ROYALTY_BPS, MIN_AUCTION_DURATION, MAX_AUCTION_DURATION,
    BID_INCREMENT_DIVISOR, ZERO, AMOUNT_CONTEXT,
    build_transaction, market_event, _freeze_state,
)
from .assets import AssetMetadata, ONE, owner_of, require_asset
from .pricing import Split, split, worst_case_net_bps


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass(frozen=True, slots=True)
class MarketConfig:
    """
    Immutable market configuration, stored in the market unit at creation.

    Defaults are the published contract constants: 2.5% fee, 10% royalty
    cap, auctions of 144..4320 blocks.
    """
    currency: str = DEFAULT_CURRENCY
    fee_bps: int = FEE_BPS
    max_royalty_bps: int = MAX_ROYALTY_BPS
    min_auction_duration: int = MIN_AUCTION_DURATION
    max_auction_duration: int = MAX_AUCTION_DURATION
    platform_wallet: str = PLATFORM_WALLET
    escrow_wallet: str = ESCROW_WALLET

    def __post_init__(self):
        if not self.currency or not self.currency.strip():
            raise ValueError("currency cannot be empty")
        if self.fee_bps < 0 or self.max_royalty_bps < 0:
            raise ValueError("fee_bps and max_royalty_bps must be non-negative")
        if worst_case_net_bps(self.fee_bps, self.max_royalty_bps) < 0:
            raise ValueError(
                f"fee_bps + max_royalty_bps must not exceed {BPS_DENOMINATOR}, "
                f"got {self.fee_bps} + {self.max_royalty_bps}"
            )
        if not 0 < self.min_auction_duration <= self.max_auction_duration:
            raise ValueError(
                f"auction durations must satisfy 0 < min <= max, "
                f"got [{self.min_auction_duration}, {self.max_auction_duration}]"
            )
        wallets = {self.platform_wallet, self.escrow_wallet, SYSTEM_WALLET}
        if len(wallets) != 3:
            raise ValueError("platform_wallet, escrow_wallet and system wallet must be distinct")

    @property
    def reserved_wallets(self) -> FrozenSet[str]:
        """Wallets that hold market funds and may never trade."""
        return frozenset({SYSTEM_WALLET, self.platform_wallet, self.escrow_wallet})


def create_market_unit(
    config: Optional[MarketConfig] = None,
    symbol: str = DEFAULT_MARKET_SYMBOL,
    name: str = "Marketplace",
) -> Unit:
    """
    Create the market unit with empty maps and zeroed revenue counters.

    Example:
        ledger.register_unit(currency("STX"))
        ledger.register_unit(create_market_unit())
        for wallet in (PLATFORM_WALLET, ESCROW_WALLET):
            ledger.register_wallet(wallet)
    """
    config = config or MarketConfig()
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_MARKETPLACE,
        min_balance=ZERO,
        max_balance=ZERO,
        decimal_places=0,
        _frozen_state=_freeze_state({
            **asdict(config),
            'listings': {},
            'offers': {},
            'auctions': {},
            'total_fees': ZERO,
            'total_royalties': ZERO,
            'nonce': 0,
        }),
    )


def load_config(state: UnitState) -> MarketConfig:
    """Read the MarketConfig back out of a market state dict."""
    return MarketConfig(
        currency=state['currency'],
        fee_bps=state['fee_bps'],
        max_royalty_bps=state['max_royalty_bps'],
        min_auction_duration=state['min_auction_duration'],
        max_auction_duration=state['max_auction_duration'],
        platform_wallet=state['platform_wallet'],
        escrow_wallet=state['escrow_wallet'],
    )


def load_market(view: LedgerView, market: str) -> Tuple[MarketConfig, UnitState]:
    """
    Load a market's configuration and a private copy of its state.

    Raises:
        NotFound: If no market unit with this symbol exists
    """
    if not view.has_unit(market) or view.get_unit(market).unit_type != UNIT_TYPE_MARKETPLACE:
        raise NotFound(f"Market {market} not found")
    state = view.get_unit_state(market)
    return load_config(state), state


# ============================================================================
# TYPED RECORDS
# ============================================================================

@dataclass(frozen=True, slots=True)
class Listing:
    """An open fixed-price sale."""
    asset_id: str
    seller: str
    price: Decimal
    listed_at: int


@dataclass(frozen=True, slots=True)
class Offer:
    """A buyer's standing, unescrowed bid for an asset."""
    asset_id: str
    buyer: str
    amount: Decimal
    expires_at: int
    made_at: int

    def is_expired(self, block: int) -> bool:
        return block > self.expires_at


@dataclass(frozen=True, slots=True)
class Auction:
    """An English auction. current_bid is held by the escrow wallet."""
    asset_id: str
    seller: str
    min_bid: Decimal
    current_bid: Decimal
    current_bidder: Optional[str]
    start_block: int
    end_block: int
    reserve_price: Decimal
    reserve_met: bool

    def has_ended(self, block: int) -> bool:
        return block > self.end_block

    @property
    def has_bids(self) -> bool:
        return self.current_bidder is not None

    @property
    def minimum_next_bid(self) -> Decimal:
        """
        Smallest acceptable next bid.

        The raise is current_bid // BID_INCREMENT_DIVISOR, which truncates to
        zero while current_bid < 20: below that an equal bid is accepted.
        """
        if not self.has_bids:
            return self.min_bid
        with localcontext(AMOUNT_CONTEXT):
            return self.current_bid + self.current_bid // BID_INCREMENT_DIVISOR


@dataclass(frozen=True, slots=True)
class RevenueTotals:
    """Running totals of fees and royalties paid."""
    total_fees: Decimal
    total_royalties: Decimal


def _listing(asset_id: str, raw: Dict[str, Any]) -> Listing:
    return Listing(asset_id=asset_id, seller=raw['seller'], price=raw['price'], listed_at=raw['listed_at'])


def _offer(asset_id: str, buyer: str, raw: Dict[str, Any]) -> Offer:
    return Offer(
        asset_id=asset_id, buyer=buyer, amount=raw['amount'],
        expires_at=raw['expires_at'], made_at=raw['made_at'],
    )


def _auction(asset_id: str, raw: Dict[str, Any]) -> Auction:
    return Auction(asset_id=asset_id, **raw)


def listing_from_state(state: UnitState, asset_id: str) -> Optional[Listing]:
    raw = state['listings'].get(asset_id)
    return _listing(asset_id, raw) if raw is not None else None


def offer_from_state(state: UnitState, asset_id: str, buyer: str) -> Optional[Offer]:
    raw = state['offers'].get(asset_id, {}).get(buyer)
    return _offer(asset_id, buyer, raw) if raw is not None else None


def auction_from_state(state: UnitState, asset_id: str) -> Optional[Auction]:
    raw = state['auctions'].get(asset_id)
    return _auction(asset_id, raw) if raw is not None else None


def auction_to_dict(auction: Auction) -> Dict[str, Any]:
    raw = asdict(auction)
    del raw['asset_id']
    return raw


# ============================================================================
# READ-ONLY QUERIES
# ============================================================================

def get_listing(view: LedgerView, market: str, asset_id: str) -> Optional[Listing]:
    _, state = load_market(view, market)
    return listing_from_state(state, asset_id)


def get_offer(view: LedgerView, market: str, asset_id: str, buyer: str) -> Optional[Offer]:
    """The offer from buyer on asset_id, expired or not."""
    _, state = load_market(view, market)
    return offer_from_state(state, asset_id, buyer)


def get_offers(view: LedgerView, market: str, asset_id: str) -> List[Offer]:
    """All recorded offers on an asset, by buyer."""
    _, state = load_market(view, market)
    return [
        _offer(asset_id, buyer, raw)
        for buyer, raw in sorted(state['offers'].get(asset_id, {}).items())
    ]


def get_auction(view: LedgerView, market: str, asset_id: str) -> Optional[Auction]:
    _, state = load_market(view, market)
    return auction_from_state(state, asset_id)


def get_revenue(view: LedgerView, market: str) -> RevenueTotals:
    _, state = load_market(view, market)
    return RevenueTotals(total_fees=state['total_fees'], total_royalties=state['total_royalties'])


def verify_escrow(view: LedgerView, market: str) -> Dict[str, Any]:
    """
    Reconcile the escrow wallet against the active auctions.

    Returns:
        Dict with keys:
        - 'valid': bool - escrow balance equals the sum of current bids
        - 'escrow_balance': Decimal
        - 'escrowed_bids': Decimal - sum of current_bid over active auctions
        - 'difference': Decimal
    """
    config, state = load_market(view, market)
    balance = view.get_balance(config.escrow_wallet, config.currency)
    with localcontext(AMOUNT_CONTEXT):
        escrowed = sum((raw['current_bid'] for raw in state['auctions'].values()), ZERO)
        difference = balance - escrowed
    return {
        'valid': balance == escrowed,
        'escrow_balance': balance,
        'escrowed_bids': escrowed,
        'difference': difference,
    }


# ============================================================================
# SHARED VALIDATION
# ============================================================================

def require_caller(view: LedgerView, config: MarketConfig, caller: str) -> None:
    """
    Raises:
        Unauthorized: If caller is unregistered or one of the market's reserved wallets
    """
    if caller in config.reserved_wallets:
        raise Unauthorized(f"{caller} is a reserved wallet and cannot trade")
    if caller not in view.list_wallets():
        raise Unauthorized(f"{caller} is not a registered account")


def require_owner(view: LedgerView, caller: str, asset_id: str) -> AssetMetadata:
    """
    Raises:
        NotFound: If the asset does not exist
        NotOwner: If caller does not hold the asset
    """
    metadata = require_asset(view, asset_id)
    if owner_of(view, asset_id) != caller:
        raise NotOwner(f"{caller} does not own {asset_id}")
    return metadata


def require_funds(
    view: LedgerView,
    config: MarketConfig,
    payer: str,
    amount: Decimal,
    credit: Decimal = ZERO,
) -> None:
    """
    Raises:
        InsufficientFunds: If payer's balance plus credit is below amount
    """
    balance = view.get_balance(payer, config.currency)
    with localcontext(AMOUNT_CONTEXT):
        if balance + credit < amount:
            raise InsufficientFunds(
                f"{payer} has {balance} {config.currency}, needs {amount - credit}"
            )


# ============================================================================
# STATE TRANSITIONS
# ============================================================================

def next_state(state: UnitState, **changes: Any) -> UnitState:
    """A new market state with changes applied and the nonce advanced."""
    return {**state, **changes, 'nonce': state['nonce'] + 1}


def without_key(mapping: Dict[str, Any], key: str) -> Dict[str, Any]:
    return {k: v for k, v in mapping.items() if k != key}


def without_offer(offers: Dict[str, Dict[str, Any]], asset_id: str, buyer: str) -> Dict[str, Dict[str, Any]]:
    remaining = without_key(offers.get(asset_id, {}), buyer)
    if remaining:
        return {**offers, asset_id: remaining}
    return without_key(offers, asset_id)


def market_transaction(
    view: LedgerView,
    market: str,
    old_state: UnitState,
    new_state: UnitState,
    moves: List[Move],
    events: List[MarketEvent],
    source_id: str,
    operation: str,
    origin_type: OriginType = OriginType.USER_ACTION,
) -> PendingTransaction:
    """Bundle moves, the market state change and events into one pending transaction."""
    return build_transaction(
        view,
        moves,
        [UnitStateChange(unit=market, old_state=old_state, new_state=new_state)],
        origin=TransactionOrigin(origin_type, source_id, market, operation),
        events=events,
    )


# ============================================================================
# SETTLEMENT
# ============================================================================

@dataclass(frozen=True, slots=True)
class Settlement:
    """Payout of one sale: the split plus what was actually routed where."""
    price: Decimal
    split: Split
    seller_proceeds: Decimal
    royalty_paid: Decimal
    moves: Tuple[Move, ...]


def settle_sale(
    config: MarketConfig,
    metadata: AssetMetadata,
    seller: str,
    buyer: str,
    payer: str,
    price: Decimal,
    contract_id: str,
) -> Settlement:
    """
    Moves for one sale: net to seller, fee to platform, royalty to creator,
    asset token from seller to buyer.

    payer is the buyer for listings and offers and the escrow wallet for
    auctions. The royalty is routed to the seller when the creator is the
    seller, and not moved at all when the creator is the payer. Zero-amount
    legs are omitted.
    """
    parts = split(price, metadata.royalty_bps, config.fee_bps)
    creator = metadata.creator
    royalty_paid = parts.royalty if creator != seller else ZERO
    with localcontext(AMOUNT_CONTEXT):
        seller_proceeds = price - parts.fee - royalty_paid
    cash = config.currency

    moves: List[Move] = []
    if seller_proceeds > ZERO:
        moves.append(Move(seller_proceeds, cash, payer, seller, f"{contract_id}:proceeds"))
    if parts.fee > ZERO:
        moves.append(Move(parts.fee, cash, payer, config.platform_wallet, f"{contract_id}:fee"))
    if royalty_paid > ZERO and creator != payer:
        moves.append(Move(royalty_paid, cash, payer, creator, f"{contract_id}:royalty"))
    moves.append(Move(ONE, metadata.asset_id, seller, buyer, f"{contract_id}:asset"))

    return Settlement(
        price=price,
        split=parts,
        seller_proceeds=seller_proceeds,
        royalty_paid=royalty_paid,
        moves=tuple(moves),
    )


def with_revenue(state: UnitState, settlement: Settlement) -> Dict[str, Decimal]:
    """Revenue Ledger counters after a settlement."""
    with localcontext(AMOUNT_CONTEXT):
        return {
            'total_fees': state['total_fees'] + settlement.split.fee,
            'total_royalties': state['total_royalties'] + settlement.royalty_paid,
        }


# ============================================================================
# SANCTIONED TRANSFER
# ============================================================================

def compute_transfer(
    view: LedgerView,
    market: str,
    caller: str,
    asset_id: str,
    recipient: str,
) -> PendingTransaction:
    """
    Give an asset to another account outside any sale.

    The owner's listing on the asset is purged in the same transaction.
    Offers are left alone; they are re-validated when accepted.

    Raises:
        Unauthorized: Caller may not trade
        NotFound: Asset unknown
        NotOwner: Caller does not hold the asset
        InvalidParameters: Recipient is the caller, unregistered, or reserved
        AuctionActive: An auction occupies the asset
    """
    config, state = load_market(view, market)
    require_caller(view, config, caller)
    require_owner(view, caller, asset_id)
    if recipient == caller:
        raise InvalidParameters("recipient must differ from the owner")
    if recipient in config.reserved_wallets or recipient not in view.list_wallets():
        raise InvalidParameters(f"{recipient} cannot receive assets")
    if asset_id in state['auctions']:
        raise AuctionActive(f"Asset {asset_id} is in an auction")

    new_state = next_state(state, listings=without_key(state['listings'], asset_id))
    moves = [Move(ONE, asset_id, caller, recipient, f"transfer_{asset_id}")]
    events = [market_event("transferred", asset_id, sender=caller, recipient=recipient)]
    return market_transaction(view, market, state, new_state, moves, events, caller, "transfer")
