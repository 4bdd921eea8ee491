"""
test_pricing.py - Unit tests for the fee / royalty / proceeds split

Tests:
- split(): published examples, truncation, dust retained by the seller
- worst-case seller share under the default constants
- royalty validity bounds
"""

import pytest
from decimal import Decimal
from hypothesis import given, settings
from hypothesis import strategies as st

from marketplace import (
    split, bps_share, is_valid_royalty, worst_case_net_bps,
    FEE_BPS, MAX_ROYALTY_BPS, BPS_DENOMINATOR, MAX_AMOUNT,
)


class TestSplit:

    def test_royalty_500_at_1000(self):
        parts = split(Decimal("1000"), 500)
        assert parts.fee == Decimal("25")
        assert parts.royalty == Decimal("50")
        assert parts.net == Decimal("925")

    def test_no_royalty(self):
        parts = split(Decimal("1000"), 0)
        assert parts.royalty == 0
        assert parts.net == Decimal("975")

    def test_int_price_accepted(self):
        assert split(1000, 500).net == Decimal("925")

    def test_truncation_dust_stays_with_seller(self):
        """39 * 250 / 10000 = 0.975 -> fee 0; 39 * 1000 / 10000 = 3.9 -> royalty 3."""
        parts = split(Decimal("39"), 1000)
        assert parts.fee == 0
        assert parts.royalty == Decimal("3")
        assert parts.net == Decimal("36")

    def test_price_one(self):
        parts = split(Decimal("1"), MAX_ROYALTY_BPS)
        assert (parts.fee, parts.royalty, parts.net) == (0, 0, Decimal("1"))

    def test_custom_fee(self):
        parts = split(Decimal("1000"), 0, fee_bps=100)
        assert parts.fee == Decimal("10")

    def test_total_property(self):
        parts = split(Decimal("777"), 333)
        assert parts.total == Decimal("777")

    def test_bps_share_truncates(self):
        assert bps_share(Decimal("199"), 250) == Decimal("4")

    def test_exact_beyond_default_decimal_precision(self):
        price = 10**28 - 1
        parts = split(Decimal(price), 0)
        assert parts.fee == price * 250 // 10000
        assert parts.net == price - price * 250 // 10000

    def test_exact_at_max_amount(self):
        parts = split(Decimal(MAX_AMOUNT), MAX_ROYALTY_BPS)
        assert parts.fee == MAX_AMOUNT * 250 // 10000
        assert parts.royalty == MAX_AMOUNT * 1000 // 10000
        assert parts.total == MAX_AMOUNT


class TestSplitProperties:

    @given(
        st.integers(min_value=1, max_value=10**15),
        st.integers(min_value=0, max_value=MAX_ROYALTY_BPS),
    )
    @settings(max_examples=200)
    def test_parts_sum_to_price(self, price, royalty_bps):
        parts = split(Decimal(price), royalty_bps)
        assert parts.fee + parts.royalty + parts.net == Decimal(price)
        assert parts.fee >= 0 and parts.royalty >= 0
        assert parts.net >= 0

    @given(
        st.integers(min_value=1, max_value=10**15),
        st.integers(min_value=0, max_value=MAX_ROYALTY_BPS),
    )
    @settings(max_examples=100)
    def test_seller_gets_at_least_worst_case_share(self, price, royalty_bps):
        parts = split(Decimal(price), royalty_bps)
        assert parts.net * BPS_DENOMINATOR >= price * worst_case_net_bps()


class TestRoyaltyValidity:

    def test_default_worst_case_is_87_5_percent(self):
        assert worst_case_net_bps() == 8750
        assert FEE_BPS + MAX_ROYALTY_BPS <= BPS_DENOMINATOR

    @pytest.mark.parametrize("bps", [0, 1, 500, MAX_ROYALTY_BPS])
    def test_in_range(self, bps):
        assert is_valid_royalty(bps)

    @pytest.mark.parametrize("bps", [-1, MAX_ROYALTY_BPS + 1, 1.5, "500", True, None])
    def test_out_of_range_or_wrong_type(self, bps):
        assert not is_valid_royalty(bps)

    def test_custom_cap(self):
        assert is_valid_royalty(2000, max_royalty_bps=2000)
        assert not is_valid_royalty(2001, max_royalty_bps=2000)
