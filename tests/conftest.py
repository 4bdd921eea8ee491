"""
conftest.py - Shared pytest fixtures for marketplace tests

Provides common fixtures used across unit, functional and conformance tests:
- A ledger with the currency, the market and funded accounts
- An engine bound to that ledger's market
- Minted assets with and without royalties
- Snapshot helpers for all-or-nothing assertions
"""

import pytest
from decimal import Decimal
from typing import Any, Dict

from marketplace import (
    Ledger, MarketplaceEngine,
    SYSTEM_WALLET, DEFAULT_CURRENCY,
)

from tests.fake_view import FakeView


ACCOUNTS = ("alice", "bob", "carol", "dave")
STARTING_BALANCE = Decimal("10000")
STX = DEFAULT_CURRENCY


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def fund(ledger: Ledger, wallet: str, amount) -> None:
    """Issue currency from the system wallet so supply stays conserved."""
    ledger.transfer(amount, STX, SYSTEM_WALLET, wallet, "faucet")


def drain(ledger: Ledger, wallet: str, keep) -> None:
    """Send everything above `keep` back to the system wallet."""
    excess = ledger.get_balance(wallet, STX) - Decimal(str(keep))
    if excess > 0:
        ledger.transfer(excess, STX, wallet, SYSTEM_WALLET, "drain")


def move_outside_market(ledger: Ledger, asset_id: str, holder: str, recipient: str) -> None:
    """Hand an asset token over without going through the market (test mode only)."""
    ledger.set_balance(holder, asset_id, Decimal("0"))
    ledger.set_balance(recipient, asset_id, Decimal("1"))


def balances(ledger: Ledger, *wallets: str) -> Dict[str, Decimal]:
    return {w: ledger.get_balance(w, STX) for w in wallets}


def snapshot(ledger: Ledger) -> Dict[str, Any]:
    """Everything an aborted operation must leave unchanged."""
    return {
        'balances': {
            (w, u): q for w, b in ledger.balances.items() for u, q in b.items() if q != 0
        },
        'states': {s: ledger.get_unit_state(s) for s in ledger.units},
        'units': sorted(ledger.units),
        'transactions': len(ledger.transaction_log),
        'events': len(ledger.event_log),
        'intents': set(ledger.seen_intent_ids),
    }


def make_market_ledger(name: str = "test") -> Ledger:
    """Ledger with STX, the default market and four funded accounts."""
    ledger = Ledger(name, verbose=False, test_mode=True)
    MarketplaceEngine.setup(ledger)
    for wallet in ACCOUNTS:
        ledger.register_wallet(wallet)
        fund(ledger, wallet, STARTING_BALANCE)
    return ledger


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def ledger():
    return make_market_ledger()


@pytest.fixture
def engine(ledger):
    return MarketplaceEngine(ledger)


@pytest.fixture
def art(engine):
    """'art-1': created by carol with a 500 bps royalty, owned by alice."""
    engine.mint("art-1", creator="carol", royalty_bps=500, uri="ipfs://art-1")
    engine.transfer("carol", "art-1", "alice")
    return "art-1"


@pytest.fixture
def plain(engine):
    """'plain-1': created and owned by alice, no royalty."""
    engine.mint("plain-1", creator="alice", royalty_bps=0)
    return "plain-1"


@pytest.fixture
def own_work(engine):
    """'own-1': created and owned by alice with a 1000 bps royalty."""
    engine.mint("own-1", creator="alice", royalty_bps=1000)
    return "own-1"

