"""
test_lifecycle_engine.py - Unit tests for LifecycleEngine

Tests:
- contract registration and defaults
- step(): block advance, polling until stable, max_passes bound
- automatic finalization of ended auctions
- contract misbehaviour surfaces as LedgerError
"""

import pytest
from decimal import Decimal

from marketplace import (
    LifecycleEngine, auction_contract, empty_pending_transaction,
    LedgerError, UNIT_TYPE_MARKETPLACE, ESCROW_WALLET,
)

from tests.conftest import STARTING_BALANCE


class CountingContract:
    """Contract that never has work; counts how often it is polled."""

    def __init__(self):
        self.calls = []

    def __call__(self, view, symbol, block):
        self.calls.append((symbol, block))
        return empty_pending_transaction(view)


class TestLifecycleEngineBasic:

    def test_default_contracts(self, ledger):
        engine = LifecycleEngine(ledger)
        assert engine.contracts == {UNIT_TYPE_MARKETPLACE: auction_contract}

    def test_explicit_empty_contracts(self, ledger):
        assert LifecycleEngine(ledger, contracts={}).contracts == {}

    def test_register(self, ledger):
        engine = LifecycleEngine(ledger, contracts={})
        contract = CountingContract()
        engine.register(UNIT_TYPE_MARKETPLACE, contract)
        engine.step(5)
        assert contract.calls == [("MARKET", 5)]

    def test_step_advances_block(self, ledger):
        LifecycleEngine(ledger).step(42)
        assert ledger.current_block == 42

    def test_step_backwards_raises(self, ledger):
        ledger.advance_block(10)
        with pytest.raises(ValueError):
            LifecycleEngine(ledger).step(5)

    def test_non_pending_return_raises(self, ledger):
        engine = LifecycleEngine(ledger, contracts={UNIT_TYPE_MARKETPLACE: lambda v, s, b: None})
        with pytest.raises(LedgerError, match="must return PendingTransaction"):
            engine.step(1)


class TestAuctionFinalization:

    def test_ended_auctions_finalized(self, engine, ledger, art, plain):
        engine.start_auction("alice", art, 100, 144)
        engine.start_auction("alice", plain, 100, 150)
        engine.place_bid("bob", art, 1000)

        lifecycle = LifecycleEngine(ledger)
        assert lifecycle.step(144) == []

        executed = lifecycle.step(151)
        assert [tx.events[0].name for tx in executed] == ["auction-finalized", "auction-ended-no-bids"]
        assert engine.get_auction(art) is None
        assert engine.get_auction(plain) is None
        assert engine.owner_of(art) == "bob"
        assert ledger.get_balance("alice", "STX") == STARTING_BALANCE + 925
        assert ledger.get_balance(ESCROW_WALLET, "STX") == 0

    def test_only_ended_auctions(self, engine, ledger, art, plain):
        engine.start_auction("alice", art, 100, 144)
        engine.start_auction("alice", plain, 100, 1000)
        executed = LifecycleEngine(ledger).step(145)
        assert len(executed) == 1
        assert engine.get_auction(plain) is not None

    def test_max_passes_bounds_work(self, engine, ledger, art, plain):
        engine.start_auction("alice", art, 100, 144)
        engine.start_auction("alice", plain, 100, 144)
        lifecycle = LifecycleEngine(ledger, max_passes=1)
        assert len(lifecycle.step(145)) == 1
        assert len(lifecycle.step(145)) == 1
        assert lifecycle.step(146) == []

    def test_run(self, engine, ledger, art):
        engine.start_auction("alice", art, 100, 144)
        engine.place_bid("bob", art, Decimal("200"))
        executed = LifecycleEngine(ledger).run(range(100, 200, 25))
        assert len(executed) == 1
        assert executed[0].execution_block == 150
