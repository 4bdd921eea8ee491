"""
test_marketplace_engine.py - Unit tests for the MarketplaceEngine facade

Tests:
- setup(): currency, market unit and reserved wallets
- one executed transaction per call, returned to the caller
- ledger rejection surfaces as TransactionRejected with nothing applied
- custom MarketConfig flows through every operation
"""

import pytest
from decimal import Decimal

from marketplace import (
    Ledger, MarketplaceEngine, MarketConfig, Transaction,
    create_asset_unit, compute_mint,
    TransactionRejected, NotFound, InvalidParameters,
    PLATFORM_WALLET, ESCROW_WALLET, SYSTEM_WALLET, UNIT_TYPE_MARKETPLACE,
)

from tests.conftest import STARTING_BALANCE, snapshot


class TestSetup:

    def test_setup_registers_everything(self):
        ledger = Ledger("main")
        engine = MarketplaceEngine.setup(ledger)
        assert ledger.has_unit("STX")
        assert ledger.get_unit("MARKET").unit_type == UNIT_TYPE_MARKETPLACE
        assert {PLATFORM_WALLET, ESCROW_WALLET} <= ledger.list_wallets()
        assert engine.config == MarketConfig()

    def test_setup_keeps_existing_registrations(self):
        ledger = Ledger("main")
        ledger.register_wallet(PLATFORM_WALLET)
        MarketplaceEngine.setup(ledger)
        assert ledger.is_registered(ESCROW_WALLET)

    def test_engine_requires_market(self):
        with pytest.raises(NotFound):
            MarketplaceEngine(Ledger("main"))

    def test_revenue_starts_at_zero(self, engine):
        revenue = engine.get_revenue()
        assert (revenue.total_fees, revenue.total_royalties) == (0, 0)


class TestSubmission:

    def test_returns_executed_transaction(self, engine, ledger, art):
        tx = engine.list("alice", art, 100)
        assert isinstance(tx, Transaction)
        assert tx is ledger.transaction_log[-1]
        assert tx.origin.event_type == "list"
        assert tx.origin.source_id == "alice"

    def test_rejection_raises_and_applies_nothing(self, engine, ledger):
        """A royalty owed to a wallet the ledger doesn't know aborts the whole sale."""
        ledger.register_wallet("ghost")
        engine.mint("art-9", creator="ghost", royalty_bps=500)
        engine.transfer("ghost", "art-9", "alice")
        engine.list("alice", "art-9", 1000)
        ledger.registered_wallets.discard("ghost")

        before = snapshot(ledger)
        with pytest.raises(TransactionRejected, match="wallet not registered: ghost"):
            engine.buy("bob", "art-9")
        assert snapshot(ledger) == before
        assert engine.owner_of("art-9") == "alice"
        assert ledger.get_balance("bob", "STX") == STARTING_BALANCE

    def test_already_applied_raises(self, engine, ledger):
        pending = compute_mint(ledger, create_asset_unit("art-9", "alice"))
        ledger.execute(pending)
        with pytest.raises(TransactionRejected, match="already applied"):
            engine._submit(pending)

    def test_balance_of(self, engine):
        assert engine.balance_of("alice") == STARTING_BALANCE
        assert engine.balance_of("nobody") == 0

    def test_metadata_of(self, engine, art):
        metadata = engine.metadata_of(art)
        assert (metadata.creator, metadata.royalty_bps, metadata.uri) == ("carol", 500, "ipfs://art-1")


class TestMarketConfig:

    def test_defaults(self):
        config = MarketConfig()
        assert (config.fee_bps, config.max_royalty_bps) == (250, 1000)
        assert (config.min_auction_duration, config.max_auction_duration) == (144, 4320)
        assert config.reserved_wallets == {SYSTEM_WALLET, PLATFORM_WALLET, ESCROW_WALLET}

    @pytest.mark.parametrize("kwargs", [
        dict(fee_bps=9001, max_royalty_bps=1000),
        dict(fee_bps=-1),
        dict(min_auction_duration=0),
        dict(min_auction_duration=500, max_auction_duration=100),
        dict(escrow_wallet=PLATFORM_WALLET),
        dict(currency=""),
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            MarketConfig(**kwargs)

    def test_custom_config_flows_through(self):
        config = MarketConfig(
            currency="GOLD", fee_bps=500, max_royalty_bps=500,
            min_auction_duration=10, max_auction_duration=20,
            platform_wallet="house", escrow_wallet="vault",
        )
        ledger = Ledger("custom")
        engine = MarketplaceEngine.setup(ledger, config, market_symbol="BAZAAR")
        for wallet in ("alice", "bob"):
            ledger.register_wallet(wallet)
        ledger.transfer(5000, "GOLD", SYSTEM_WALLET, "bob")

        with pytest.raises(InvalidParameters):
            engine.mint("art-1", "alice", royalty_bps=600)
        engine.mint("art-1", "alice", royalty_bps=500)

        with pytest.raises(InvalidParameters):
            engine.start_auction("alice", "art-1", 100, 144)
        engine.start_auction("alice", "art-1", 100, 10)
        engine.place_bid("bob", "art-1", 1000)
        assert ledger.get_balance("vault", "GOLD") == Decimal("1000")

        ledger.advance_block(11)
        engine.finalize_auction("art-1")
        assert ledger.get_balance("house", "GOLD") == Decimal("50")
        assert ledger.get_balance("alice", "GOLD") == Decimal("950")
        assert engine.get_revenue().total_royalties == 0
