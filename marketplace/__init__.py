"""
marketplace - Marketplace Trading Ledger

Ownership of unique assets and their exchange for currency through
fixed-price listings, offers and English auctions. Every trade moves value
and ownership in one atomic ledger transaction.

Usage:
    from marketplace import Ledger, MarketplaceEngine, SYSTEM_WALLET

    ledger = Ledger("main")
    engine = MarketplaceEngine.setup(ledger)
    ledger.register_wallet("alice")
    ledger.register_wallet("bob")

    # Fund wallets via SYSTEM_WALLET (proper issuance)
    ledger.transfer(5000, "STX", SYSTEM_WALLET, "bob")

    engine.mint("art-1", creator="alice", royalty_bps=500)
    engine.list("alice", "art-1", 1000)
    tx = engine.buy("bob", "art-1")        # 975 to alice (creator and seller), 25 to platform

Pure functions (compute_list, compute_buy, ...) can be used directly with any
LedgerView; they return a PendingTransaction for Ledger.execute().
"""

# Core types
from .core import (
    LedgerView,
    SmartContract,
    Move,
    MarketEvent,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    build_transaction,
    empty_pending_transaction,
    market_event,
    to_amount,
    Unit,
    UnitStateChange,
    ExecuteResult,
    currency,
    # Errors
    LedgerError,
    TransferRuleViolation,
    UnitNotRegistered,
    WalletNotRegistered,
    TransactionRejected,
    MarketError,
    Unauthorized,
    NotFound,
    AlreadyExists,
    InvalidPrice,
    InsufficientFunds,
    NotOwner,
    NotForSale,
    SelfPurchase,
    InvalidParameters,
    AuctionActive,
    AuctionEnded,
    OfferExpired,
    # Constants
    SYSTEM_WALLET,
    PLATFORM_WALLET,
    ESCROW_WALLET,
    DEFAULT_CURRENCY,
    DEFAULT_MARKET_SYMBOL,
    UNIT_TYPE_CURRENCY,
    UNIT_TYPE_ASSET,
    UNIT_TYPE_MARKETPLACE,
    BPS_DENOMINATOR,
    FEE_BPS,
    MAX_ROYALTY_BPS,
    MIN_AUCTION_DURATION,
    MAX_AUCTION_DURATION,
    BID_INCREMENT_DIVISOR,
    MAX_AMOUNT,
)

# Ledger
from .ledger import Ledger

# Pricing
from .pricing import Split, split, bps_share, is_valid_royalty, worst_case_net_bps

# Asset registry
from .assets import (
    AssetMetadata,
    asset_transfer_rule,
    create_asset_unit,
    compute_mint,
    metadata_of,
    owner_of,
)

# Market state, revenue and settlement
from .market import (
    MarketConfig,
    Listing,
    Offer,
    Auction,
    RevenueTotals,
    Settlement,
    create_market_unit,
    load_config,
    settle_sale,
    compute_transfer,
    get_listing,
    get_offer,
    get_offers,
    get_auction,
    get_revenue,
    verify_escrow,
)

# Listings
from .listings import compute_list, compute_update_price, compute_unlist, compute_buy

# Offers
from .offers import compute_make_offer, compute_cancel_offer, compute_accept_offer

# Auctions
from .auctions import (
    compute_start_auction,
    compute_place_bid,
    compute_finalize_auction,
    compute_cancel_auction,
    minimum_next_bid,
    auction_contract,
)

# Engines
from .engine import MarketplaceEngine
from .lifecycle_engine import LifecycleEngine, default_contracts

__version__ = "0.1.0"

__all__ = [
    # Core
    'LedgerView', 'SmartContract', 'Move', 'MarketEvent', 'Transaction',
    'PendingTransaction', 'TransactionOrigin', 'OriginType',
    'build_transaction', 'empty_pending_transaction', 'market_event', 'to_amount',
    'Unit', 'UnitStateChange', 'ExecuteResult', 'currency',
    # Errors
    'LedgerError', 'TransferRuleViolation', 'UnitNotRegistered', 'WalletNotRegistered',
    'TransactionRejected', 'MarketError', 'Unauthorized', 'NotFound', 'AlreadyExists',
    'InvalidPrice', 'InsufficientFunds', 'NotOwner', 'NotForSale', 'SelfPurchase',
    'InvalidParameters', 'AuctionActive', 'AuctionEnded', 'OfferExpired',
    # Constants
    'SYSTEM_WALLET', 'PLATFORM_WALLET', 'ESCROW_WALLET', 'DEFAULT_CURRENCY',
    'DEFAULT_MARKET_SYMBOL', 'UNIT_TYPE_CURRENCY', 'UNIT_TYPE_ASSET', 'UNIT_TYPE_MARKETPLACE',
    'BPS_DENOMINATOR', 'FEE_BPS', 'MAX_ROYALTY_BPS', 'MIN_AUCTION_DURATION',
    'MAX_AUCTION_DURATION', 'BID_INCREMENT_DIVISOR', 'MAX_AMOUNT',
    # Ledger
    'Ledger',
    # Pricing
    'Split', 'split', 'bps_share', 'is_valid_royalty', 'worst_case_net_bps',
    # Assets
    'AssetMetadata', 'asset_transfer_rule', 'create_asset_unit', 'compute_mint',
    'metadata_of', 'owner_of',
    # Market
    'MarketConfig', 'Listing', 'Offer', 'Auction', 'RevenueTotals', 'Settlement',
    'create_market_unit', 'load_config', 'settle_sale', 'compute_transfer',
    'get_listing', 'get_offer', 'get_offers', 'get_auction', 'get_revenue', 'verify_escrow',
    # Trading
    'compute_list', 'compute_update_price', 'compute_unlist', 'compute_buy',
    'compute_make_offer', 'compute_cancel_offer', 'compute_accept_offer',
    'compute_start_auction', 'compute_place_bid', 'compute_finalize_auction',
    'compute_cancel_auction', 'minimum_next_bid', 'auction_contract',
    # Engines
    'MarketplaceEngine', 'LifecycleEngine', 'default_contracts',
]
