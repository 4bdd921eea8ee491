"""
pricing.py - Fee / royalty / proceeds split

One pure function, split(), used by every trade settlement. Integer
truncating division on each share; the seller's net is computed as the
remainder, so truncation dust always stays with the seller and

    fee + royalty + net == price

holds exactly.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal

from .core import BPS_DENOMINATOR, FEE_BPS, MAX_ROYALTY_BPS


@dataclass(frozen=True, slots=True)
class Split:
    """Result of splitting a sale price."""
    fee: Decimal
    royalty: Decimal
    net: Decimal

    @property
    def total(self) -> Decimal:
        return Decimal(int(self.fee) + int(self.royalty) + int(self.net))


def bps_share(amount: Decimal, bps: int) -> Decimal:
    """amount * bps / 10000, truncated. Done in int so no digits are lost."""
    return Decimal(int(amount) * bps // BPS_DENOMINATOR)


def split(price: Decimal, royalty_bps: int, fee_bps: int = FEE_BPS) -> Split:
    """
    Split a sale price into marketplace fee, creator royalty and seller net.

    Example (royalty 500 bps, price 1000):
        fee = 1000 * 250 // 10000 = 25
        royalty = 1000 * 500 // 10000 = 50
        net = 1000 - 25 - 50 = 925
    """
    if not isinstance(price, Decimal):
        price = Decimal(price)
    fee = bps_share(price, fee_bps)
    royalty = bps_share(price, royalty_bps)
    net = Decimal(int(price) - int(fee) - int(royalty))
    return Split(fee=fee, royalty=royalty, net=net)


def worst_case_net_bps(fee_bps: int = FEE_BPS, max_royalty_bps: int = MAX_ROYALTY_BPS) -> int:
    """Smallest share of a price a seller can receive, in basis points."""
    return BPS_DENOMINATOR - fee_bps - max_royalty_bps


def is_valid_royalty(royalty_bps: int, max_royalty_bps: int = MAX_ROYALTY_BPS) -> bool:
    """True if royalty_bps is an integer in [0, max_royalty_bps]."""
    if isinstance(royalty_bps, bool) or not isinstance(royalty_bps, int):
        return False
    return 0 <= royalty_bps <= max_royalty_bps
