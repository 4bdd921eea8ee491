"""
engine.py - Trading engine facade

MarketplaceEngine binds one Ledger to one market unit and exposes every
trading operation as a method. Each method builds a single pending
transaction with the matching compute_* function and executes it:

    pending = compute_buy(ledger, market, caller, asset_id)   # validates, may raise
    ledger.execute(pending)                                   # applies all or nothing

Validation failures raise the specific MarketError before anything is
built. A pending transaction the ledger rejects (for example a royalty
routed to a wallet that no longer exists) raises TransactionRejected and
leaves the ledger untouched.
"""

from __future__ import annotations
from decimal import Decimal
from typing import Any, List, Optional
import logging

from .core import (
    PendingTransaction, Transaction, ExecuteResult, TransactionRejected,
    DEFAULT_MARKET_SYMBOL, currency,
)
from .ledger import Ledger
from .assets import AssetMetadata, create_asset_unit, compute_mint, metadata_of, owner_of
from .market import (
    MarketConfig, Listing, Offer, Auction, RevenueTotals,
    create_market_unit, load_market, compute_transfer,
    get_listing, get_offer, get_offers, get_auction, get_revenue, verify_escrow,
)
from .listings import compute_list, compute_update_price, compute_unlist, compute_buy
from .offers import compute_make_offer, compute_cancel_offer, compute_accept_offer
from .auctions import (
    compute_start_auction, compute_place_bid, compute_finalize_auction,
    compute_cancel_auction, minimum_next_bid,
)

log = logging.getLogger(__name__)


class MarketplaceEngine:
    """
    One method per trading operation against a single market.

    Example:
        ledger = Ledger("main")
        engine = MarketplaceEngine.setup(ledger)
        for wallet in ("alice", "bob"):
            ledger.register_wallet(wallet)
        ledger.transfer(5000, "STX", SYSTEM_WALLET, "bob")

        engine.mint("art-1", creator="alice", royalty_bps=500)
        engine.list("alice", "art-1", 1000)
        engine.buy("bob", "art-1")
    """

    def __init__(self, ledger: Ledger, market_symbol: str = DEFAULT_MARKET_SYMBOL):
        self.ledger = ledger
        self.market = market_symbol
        self.config = load_market(ledger, market_symbol)[0]

    @classmethod
    def setup(
        cls,
        ledger: Ledger,
        config: Optional[MarketConfig] = None,
        market_symbol: str = DEFAULT_MARKET_SYMBOL,
    ) -> MarketplaceEngine:
        """
        Register the currency, the market unit and the market's reserved
        wallets on a ledger, then return an engine bound to it.

        Units and wallets that already exist are left as they are.
        """
        config = config or MarketConfig()
        if not ledger.has_unit(config.currency):
            ledger.register_unit(currency(config.currency))
        ledger.register_unit(create_market_unit(config, market_symbol))
        for wallet in (config.platform_wallet, config.escrow_wallet):
            if not ledger.is_registered(wallet):
                ledger.register_wallet(wallet)
        return cls(ledger, market_symbol)

    def _submit(self, pending: PendingTransaction) -> Transaction:
        result = self.ledger.execute(pending)
        if result == ExecuteResult.REJECTED:
            raise TransactionRejected(
                f"{pending.origin.event_type} rejected: {self.ledger.last_rejection}"
            )
        if result == ExecuteResult.ALREADY_APPLIED:
            raise TransactionRejected(
                f"{pending.origin.event_type} already applied (intent {pending.intent_id})"
            )
        tx = self.ledger.transaction_log[-1]
        log.debug("%s by %s -> %s", pending.origin.event_type, pending.origin.source_id, tx.exec_id)
        return tx

    # ========================================================================
    # ASSETS
    # ========================================================================

    def mint(
        self,
        asset_id: str,
        creator: str,
        royalty_bps: int = 0,
        uri: str = "",
    ) -> Transaction:
        """Create an asset and issue it to its creator."""
        unit = create_asset_unit(
            asset_id, creator, royalty_bps, uri, max_royalty_bps=self.config.max_royalty_bps,
        )
        return self._submit(compute_mint(self.ledger, unit))

    def transfer(self, caller: str, asset_id: str, recipient: str) -> Transaction:
        return self._submit(compute_transfer(self.ledger, self.market, caller, asset_id, recipient))

    # ========================================================================
    # LISTINGS
    # ========================================================================

    def list(self, caller: str, asset_id: str, price: Any) -> Transaction:
        return self._submit(compute_list(self.ledger, self.market, caller, asset_id, price))

    def update_price(self, caller: str, asset_id: str, new_price: Any) -> Transaction:
        return self._submit(compute_update_price(self.ledger, self.market, caller, asset_id, new_price))

    def unlist(self, caller: str, asset_id: str) -> Transaction:
        return self._submit(compute_unlist(self.ledger, self.market, caller, asset_id))

    def buy(self, caller: str, asset_id: str) -> Transaction:
        return self._submit(compute_buy(self.ledger, self.market, caller, asset_id))

    # ========================================================================
    # OFFERS
    # ========================================================================

    def make_offer(self, caller: str, asset_id: str, amount: Any, expires_at: int) -> Transaction:
        return self._submit(
            compute_make_offer(self.ledger, self.market, caller, asset_id, amount, expires_at)
        )

    def cancel_offer(self, caller: str, asset_id: str) -> Transaction:
        return self._submit(compute_cancel_offer(self.ledger, self.market, caller, asset_id))

    def accept_offer(self, caller: str, asset_id: str, buyer: str) -> Transaction:
        return self._submit(compute_accept_offer(self.ledger, self.market, caller, asset_id, buyer))

    # ========================================================================
    # AUCTIONS
    # ========================================================================

    def start_auction(
        self,
        caller: str,
        asset_id: str,
        min_bid: Any,
        duration: int,
        reserve_price: Any = 0,
    ) -> Transaction:
        return self._submit(compute_start_auction(
            self.ledger, self.market, caller, asset_id, min_bid, duration, reserve_price,
        ))

    def place_bid(self, caller: str, asset_id: str, amount: Any) -> Transaction:
        return self._submit(compute_place_bid(self.ledger, self.market, caller, asset_id, amount))

    def finalize_auction(self, asset_id: str, caller: Optional[str] = None) -> Transaction:
        return self._submit(compute_finalize_auction(self.ledger, self.market, asset_id, caller))

    def cancel_auction(self, caller: str, asset_id: str) -> Transaction:
        return self._submit(compute_cancel_auction(self.ledger, self.market, caller, asset_id))

    # ========================================================================
    # QUERIES
    # ========================================================================

    def owner_of(self, asset_id: str) -> Optional[str]:
        return owner_of(self.ledger, asset_id)

    def metadata_of(self, asset_id: str) -> Optional[AssetMetadata]:
        return metadata_of(self.ledger, asset_id)

    def balance_of(self, account: str) -> Decimal:
        return self.ledger.balance_of(account, self.config.currency)

    def get_listing(self, asset_id: str) -> Optional[Listing]:
        return get_listing(self.ledger, self.market, asset_id)

    def get_offer(self, asset_id: str, buyer: str) -> Optional[Offer]:
        return get_offer(self.ledger, self.market, asset_id, buyer)

    def get_offers(self, asset_id: str) -> List[Offer]:
        return get_offers(self.ledger, self.market, asset_id)

    def get_auction(self, asset_id: str) -> Optional[Auction]:
        return get_auction(self.ledger, self.market, asset_id)

    def minimum_bid(self, asset_id: str) -> Decimal:
        return minimum_next_bid(self.ledger, self.market, asset_id)

    def get_revenue(self) -> RevenueTotals:
        return get_revenue(self.ledger, self.market)

    def verify_escrow(self) -> dict:
        return verify_escrow(self.ledger, self.market)
