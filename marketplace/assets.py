"""
assets.py - Asset Registry

An asset is a unit with a supply of exactly one token. Whoever holds the
token owns the asset; the unit state carries the immutable metadata the
trading engine reads:

    creator: str       - wallet paid royalties on every resale
    royalty_bps: int   - 0..=MAX_ROYALTY_BPS, fixed at creation
    uri: str           - off-ledger metadata pointer
    minted_at: int     - block height of minting

Pattern:
    Mint (block N):
        Move(source="system", dest=creator, unit=asset_id, quantity=1)

    Any later ownership change is a Move of that single token, executed in
    the same transaction as the payment that pays for it.

The trading engine only reads this registry (owner_of, metadata_of); it
never writes asset metadata.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Optional

from .core import (
    LedgerView, Move, PendingTransaction, Unit, TransactionOrigin, OriginType,
    TransferRuleViolation, AlreadyExists, InvalidParameters, NotFound, Unauthorized,
    SYSTEM_WALLET, UNIT_TYPE_ASSET, MAX_ROYALTY_BPS, ZERO,
    build_transaction, market_event, _freeze_state,
)
from .pricing import is_valid_royalty

ONE = Decimal("1")


@dataclass(frozen=True, slots=True)
class AssetMetadata:
    """Immutable metadata of a registered asset."""
    asset_id: str
    creator: str
    royalty_bps: int
    uri: str
    minted_at: Optional[int]


def asset_transfer_rule(view: LedgerView, move: Move) -> None:
    """
    Asset tokens move whole: every move carries exactly one token.

    Raises:
        TransferRuleViolation: If the quantity is not exactly one.
    """
    if move.quantity != ONE:
        raise TransferRuleViolation(
            f"Asset {move.unit_symbol}: moves must carry exactly 1 token, got {move.quantity}"
        )


def create_asset_unit(
    asset_id: str,
    creator: str,
    royalty_bps: int = 0,
    uri: str = "",
    name: Optional[str] = None,
    max_royalty_bps: int = MAX_ROYALTY_BPS,
) -> Unit:
    """
    Create an asset unit. The token itself is issued by compute_mint().

    Args:
        asset_id: Unique identifier, used as the unit symbol
        creator: Wallet receiving royalties
        royalty_bps: Creator royalty in basis points (0..=max_royalty_bps)
        uri: Off-ledger metadata pointer
        name: Human-readable name (defaults to "Asset <asset_id>")
        max_royalty_bps: Upper bound for royalty_bps

    Raises:
        InvalidParameters: If ids are empty or the royalty is out of range.
            Bounding the royalty here is what keeps fee + royalty <= price.
    """
    if not asset_id or not asset_id.strip():
        raise InvalidParameters("asset_id cannot be empty")
    if not creator or not creator.strip():
        raise InvalidParameters("creator cannot be empty")
    if not is_valid_royalty(royalty_bps, max_royalty_bps):
        raise InvalidParameters(
            f"royalty_bps must be an integer in [0, {max_royalty_bps}], got {royalty_bps!r}"
        )

    return Unit(
        symbol=asset_id,
        name=name or f"Asset {asset_id}",
        unit_type=UNIT_TYPE_ASSET,
        min_balance=ZERO,
        max_balance=ONE,
        decimal_places=0,
        transfer_rule=asset_transfer_rule,
        _frozen_state=_freeze_state({
            'creator': creator,
            'royalty_bps': royalty_bps,
            'uri': uri,
            'minted_at': None,
        }),
    )


def compute_mint(view: LedgerView, asset: Unit) -> PendingTransaction:
    """
    Register an asset unit and issue its single token to the creator.

    Returns:
        PendingTransaction with the unit to create, the issuance move
        (system -> creator) and a "minted" event.

    Raises:
        AlreadyExists: If a unit with this id is already registered
        Unauthorized: If the creator wallet is not registered
    """
    if asset.unit_type != UNIT_TYPE_ASSET:
        raise InvalidParameters(f"{asset.symbol} is not an asset unit")
    if view.has_unit(asset.symbol):
        raise AlreadyExists(f"Asset {asset.symbol} already exists")

    state = asset.state
    creator = state['creator']
    if creator not in view.list_wallets() or creator == SYSTEM_WALLET:
        raise Unauthorized(f"Creator {creator} is not a registered account")

    minted = replace(asset, _frozen_state=_freeze_state({**state, 'minted_at': view.current_block}))
    return build_transaction(
        view,
        [Move(ONE, asset.symbol, SYSTEM_WALLET, creator, f"mint_{asset.symbol}")],
        origin=TransactionOrigin(OriginType.SYSTEM, creator, asset.symbol, "mint"),
        units_to_create=(minted,),
        events=[market_event(
            "minted", asset.symbol,
            creator=creator, royalty_bps=state['royalty_bps'], uri=state['uri'],
        )],
    )


def metadata_of(view: LedgerView, asset_id: str) -> Optional[AssetMetadata]:
    """Metadata of an asset, or None if no such asset is registered."""
    if not view.has_unit(asset_id):
        return None
    if view.get_unit(asset_id).unit_type != UNIT_TYPE_ASSET:
        return None
    state = view.get_unit_state(asset_id)
    return AssetMetadata(
        asset_id=asset_id,
        creator=state['creator'],
        royalty_bps=state['royalty_bps'],
        uri=state.get('uri', ""),
        minted_at=state.get('minted_at'),
    )


def owner_of(view: LedgerView, asset_id: str) -> Optional[str]:
    """Current owner of an asset, or None if unknown or not yet minted."""
    if metadata_of(view, asset_id) is None:
        return None
    for wallet, quantity in sorted(view.get_positions(asset_id).items()):
        if wallet != SYSTEM_WALLET and quantity > ZERO:
            return wallet
    return None


def require_asset(view: LedgerView, asset_id: str) -> AssetMetadata:
    """
    Metadata of a minted asset.

    Raises:
        NotFound: If the asset is unknown or has no owner yet
    """
    metadata = metadata_of(view, asset_id)
    if metadata is None or owner_of(view, asset_id) is None:
        raise NotFound(f"Asset {asset_id} not found")
    return metadata
