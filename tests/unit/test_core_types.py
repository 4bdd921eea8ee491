"""
test_core_types.py - Unit tests for core data structures

Tests:
- to_amount: integral positive amounts, rejection of everything else
- Move: creation, validation, immutability
- MarketEvent: sorted params, dict view
- UnitStateChange: changed_fields
- Transaction: creation, validation, contract_ids
- Unit: rounding, currency factory
"""

import pytest
from dataclasses import FrozenInstanceError
from decimal import Decimal

from marketplace import (
    Move, Transaction, Unit, UnitStateChange, TransactionOrigin, OriginType,
    market_event, to_amount, currency,
    InvalidPrice, MarketError, LedgerError, OfferExpired, AuctionEnded,
    SYSTEM_WALLET, UNIT_TYPE_CURRENCY, MAX_AMOUNT,
)


def _test_origin() -> TransactionOrigin:
    return TransactionOrigin(
        origin_type=OriginType.USER_ACTION,
        source_id="alice",
        unit_symbol="MARKET",
        event_type="buy",
    )


class TestToAmount:

    @pytest.mark.parametrize("value,expected", [
        (1, Decimal("1")),
        ("1000", Decimal("1000")),
        (Decimal("25.000"), Decimal("25")),
        (7.0, Decimal("7")),
    ])
    def test_valid(self, value, expected):
        amount = to_amount(value)
        assert amount == expected
        assert amount.as_tuple().exponent == 0

    @pytest.mark.parametrize("value", [0, -5, "1.5", Decimal("0.1"), "abc", None, True, float("nan"), "Infinity"])
    def test_invalid(self, value):
        with pytest.raises(InvalidPrice):
            to_amount(value)

    def test_message_names_the_field(self):
        with pytest.raises(InvalidPrice, match="price"):
            to_amount(0, "price")

    def test_max_amount_accepted(self):
        assert to_amount(MAX_AMOUNT) == Decimal(MAX_AMOUNT)

    @pytest.mark.parametrize("value", [MAX_AMOUNT + 1, 10**40, str(10**39)])
    def test_above_max_amount_rejected(self, value):
        with pytest.raises(InvalidPrice, match="exceed"):
            to_amount(value)


class TestErrorTaxonomy:

    def test_market_errors_are_ledger_errors(self):
        assert issubclass(InvalidPrice, MarketError)
        assert issubclass(MarketError, LedgerError)

    def test_offer_expired_is_auction_ended(self):
        assert issubclass(OfferExpired, AuctionEnded)


class TestMoveCreation:

    def test_create_valid_move(self):
        move = Move(Decimal("100"), "STX", "alice", "bob", "buy_art-1:proceeds")
        assert (move.source, move.dest, move.unit_symbol) == ("alice", "bob", "STX")
        assert move.contract_id == "buy_art-1:proceeds"

    def test_immutable(self):
        move = Move(Decimal("1"), "art-1", "alice", "bob", "transfer_art-1")
        with pytest.raises(FrozenInstanceError):
            move.quantity = Decimal("2")

    @pytest.mark.parametrize("kwargs", [
        dict(quantity=Decimal("0")),
        dict(quantity=Decimal("-1")),
        dict(quantity=Decimal("NaN")),
        dict(quantity=100),
        dict(source=""),
        dict(dest=" "),
        dict(unit_symbol=""),
        dict(contract_id=""),
        dict(dest="alice"),
    ])
    def test_invalid(self, kwargs):
        fields = dict(quantity=Decimal("1"), unit_symbol="STX", source="alice", dest="bob", contract_id="x")
        fields.update(kwargs)
        with pytest.raises(ValueError):
            Move(**fields)

    def test_repr(self):
        assert "alice→bob" in repr(Move(Decimal("5"), "STX", "alice", "bob", "x"))


class TestMarketEvent:

    def test_params_sorted(self):
        event = market_event("purchased", "art-1", seller="alice", buyer="bob", price=Decimal("1000"))
        assert [k for k, _ in event.params] == ["buyer", "price", "seller"]
        assert event.params_dict['seller'] == "alice"

    def test_hashable(self):
        event = market_event("unlisted", "art-1", seller="alice")
        assert event in {event}


class TestUnitStateChange:

    def test_changed_fields(self):
        change = UnitStateChange("MARKET", {'nonce': 1, 'listings': {}}, {'nonce': 2, 'listings': {}})
        assert change.changed_fields() == {'nonce': (1, 2)}

    def test_changed_fields_from_empty(self):
        change = UnitStateChange("MARKET", None, {'nonce': 0})
        assert change.changed_fields() == {'nonce': (None, 0)}


class TestTransaction:

    def _tx(self, **overrides):
        fields = dict(
            moves=(Move(Decimal("1"), "STX", "alice", "bob", "buy_art-1:proceeds"),),
            state_changes=(),
            origin=_test_origin(),
            block=3,
            intent_id="abc",
            exec_id="exec:test:000000000001:0",
            ledger_name="test",
            execution_block=3,
            sequence_number=1,
        )
        fields.update(overrides)
        return Transaction(**fields)

    def test_contract_ids(self):
        assert self._tx().contract_ids == frozenset({"buy_art-1:proceeds"})

    def test_empty_raises(self):
        with pytest.raises(ValueError):
            self._tx(moves=())

    def test_state_change_only(self):
        tx = self._tx(moves=(), state_changes=(UnitStateChange("MARKET", {}, {'nonce': 1}),))
        assert tx.contract_ids == frozenset()

    def test_repr_shows_origin_and_moves(self):
        text = repr(self._tx())
        assert "Transaction: exec:test:000000000001:0" in text
        assert "Origin(user_action:alice, unit=MARKET, event=buy)" in text
        assert "alice → bob" in text


class TestUnit:

    def test_currency(self):
        unit = currency()
        assert (unit.symbol, unit.unit_type, unit.decimal_places) == ("STX", UNIT_TYPE_CURRENCY, 0)
        assert unit.min_balance == 0
        assert unit.state == {'issuer': SYSTEM_WALLET}

    def test_round(self):
        assert currency().round(Decimal("2.6")) == Decimal("3")
        assert Unit("X", "x", "ASSET").round(Decimal("2.6")) == Decimal("2.6")

    def test_round_keeps_large_balances_exact(self):
        assert currency().round(Decimal(10**37)) == Decimal(10**37)
        assert currency().round(Decimal(2 * MAX_AMOUNT)) == Decimal(2 * MAX_AMOUNT)

    def test_state_is_a_copy(self):
        unit = currency()
        unit.state['issuer'] = "mallory"
        assert unit.state['issuer'] == SYSTEM_WALLET
