"""
Core types and pure functions for the marketplace ledger.

This module provides the foundational data structures and protocols:
1. Protocols: LedgerView for read-only ledger access, SmartContract for lifecycle polling
2. Immutable data structures: Move, MarketEvent, PendingTransaction, Transaction, Unit
3. Exceptions: LedgerError, the ledger-level errors, and the MarketError taxonomy
4. Type aliases: Positions, BalanceMap, UnitState
5. Amount helpers: integral Decimal amounts
6. Unit factories: currency()

All functions in this module are pure and operate on read-only views.
No function can mutate ledger state directly.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from decimal import Context, Decimal, InvalidOperation
from enum import Enum
import copy
import hashlib
from typing import (
    Dict, List, Set, Optional, Callable, Any, Protocol,
    Tuple, FrozenSet, runtime_checkable
)


# ============================================================================
# CONSTANTS
# ============================================================================

# Reserved wallet for issuance (currency faucets, asset minting).
# The system wallet is exempt from balance validation and can hold any balance.
SYSTEM_WALLET = "system"

# Default fee recipient.
PLATFORM_WALLET = "platform"

# Default holder of auction escrow. Never a trading party.
ESCROW_WALLET = "escrow"

DEFAULT_CURRENCY = "STX"
DEFAULT_MARKET_SYMBOL = "MARKET"

UNIT_TYPE_CURRENCY = "CURRENCY"
UNIT_TYPE_ASSET = "ASSET"
UNIT_TYPE_MARKETPLACE = "MARKETPLACE"

# Basis-point arithmetic. FEE_BPS + MAX_ROYALTY_BPS must not exceed BPS_DENOMINATOR.
BPS_DENOMINATOR = 10000
FEE_BPS = 250
MAX_ROYALTY_BPS = 1000

# Auction duration bounds in blocks.
MIN_AUCTION_DURATION = 144
MAX_AUCTION_DURATION = 4320

# A follow-up bid must be at least current_bid + current_bid // BID_INCREMENT_DIVISOR.
BID_INCREMENT_DIVISOR = 20

ZERO = Decimal("0")

# Largest amount any single price, bid or transfer may carry (an unsigned 128-bit value).
MAX_AMOUNT = 2 ** 128 - 1

# Balances and revenue counters are sums of capped amounts; 80 digits keeps them exact.
AMOUNT_CONTEXT = Context(prec=80)


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Mapping from wallet ID to quantity held by that wallet for a specific unit.
Positions = Dict[str, Decimal]

# Mapping from unit symbol to quantity held in a single wallet.
BalanceMap = Dict[str, Decimal]

# Internal state for a unit (asset metadata, market maps, configuration).
UnitState = Dict[str, Any]


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    Read-only interface to ledger state.

    Trading functions, transfer rules and lifecycle contracts receive a
    LedgerView and can only query state through it. The Ledger class
    implements this protocol; tests use FakeView.
    """

    @property
    def current_block(self) -> int:
        """Return the current block height of the ledger."""
        ...

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """Return the balance of a unit in a wallet."""
        ...

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """Return a copy of the unit's internal state."""
        ...

    def get_positions(self, unit_symbol: str) -> Positions:
        """Return all non-zero positions for a unit across all wallets."""
        ...

    def list_wallets(self) -> Set[str]:
        """Return the set of all registered wallet IDs."""
        ...

    def get_unit(self, symbol: str) -> 'Unit':
        """Return the Unit object for a given symbol."""
        ...

    def has_unit(self, symbol: str) -> bool:
        """Return True if a unit with this symbol is registered."""
        ...


class SmartContract(Protocol):
    """
    Protocol for lifecycle-aware contracts.

    Contracts receive a LedgerView, the unit symbol they are registered for
    and the current block, and return a PendingTransaction (empty when there
    is nothing to do).
    """

    def __call__(
        self,
        view: LedgerView,
        symbol: str,
        block: int,
    ) -> 'PendingTransaction':
        ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of a transaction execution attempt.

    APPLIED: Transaction was validated and applied to the ledger.
    ALREADY_APPLIED: Intent ID was previously processed (idempotent behavior).
    REJECTED: Transaction failed validation; nothing was applied.
    """
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    REJECTED = "rejected"


class OriginType(Enum):
    """Classification of where a transaction originated."""
    USER_ACTION = "user_action"           # Caller-initiated trading operation
    CONTRACT = "contract"                 # Unit contract (lifecycle polling)
    SYSTEM = "system"                     # Issuance, minting, initial setup


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all ledger-related errors."""
    pass


class TransferRuleViolation(LedgerError):
    """Raised when a move violates the unit's transfer rule."""
    pass


class UnitNotRegistered(LedgerError):
    """Raised when attempting to operate on a unit that has not been registered with the ledger."""
    pass


class WalletNotRegistered(LedgerError):
    """Raised when attempting to operate on a wallet that has not been registered with the ledger."""
    pass


class TransactionRejected(LedgerError):
    """Raised when the ledger rejects a pending transaction at execution time."""
    pass


class MarketError(LedgerError):
    """Base exception for caller-visible trading failures."""
    pass


class Unauthorized(MarketError):
    """Caller is not allowed to trade (unregistered or a reserved wallet)."""
    pass


class NotFound(MarketError):
    """Asset, offer or auction does not exist."""
    pass


class AlreadyExists(MarketError):
    """A listing or auction already occupies the asset."""
    pass


class InvalidPrice(MarketError):
    """Price, amount or bid is zero, non-integral, or fails the increment rule."""
    pass


class InsufficientFunds(MarketError):
    """Payer's balance is below the amount required."""
    pass


class NotOwner(MarketError):
    """Caller is not the owner of the asset or the seller of the listing/auction."""
    pass


class NotForSale(MarketError):
    """No live listing for the asset."""
    pass


class SelfPurchase(MarketError):
    """Caller would trade with themselves."""
    pass


class InvalidParameters(MarketError):
    """Duration, expiry, royalty or recipient is out of range."""
    pass


class AuctionActive(MarketError):
    """Auction has not ended yet, or has bids that block cancellation."""
    pass


class AuctionEnded(MarketError):
    """Auction is past its end block."""
    pass


class OfferExpired(AuctionEnded):
    """Offer is past its expiry block."""
    pass


# ============================================================================
# AMOUNTS
# ============================================================================

def to_amount(value: Any, what: str = "amount") -> Decimal:
    """
    Convert a caller-supplied amount to an integral, positive Decimal.

    Raises:
        InvalidPrice: If value is not a finite, integral, strictly positive number
            or exceeds MAX_AMOUNT.
    """
    if isinstance(value, bool):
        raise InvalidPrice(f"{what} must be a number, got {value!r}")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidPrice(f"{what} must be a number, got {value!r}")
    if not amount.is_finite():
        raise InvalidPrice(f"{what} must be finite, got {value!r}")
    if amount != amount.to_integral_value():
        raise InvalidPrice(f"{what} must be integral, got {value!r}")
    if amount <= ZERO:
        raise InvalidPrice(f"{what} must be positive, got {value!r}")
    if amount > MAX_AMOUNT:
        raise InvalidPrice(f"{what} must not exceed {MAX_AMOUNT}, got {value!r}")
    return Decimal(int(amount))


# ============================================================================
# TRANSACTION ORIGIN
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Immutable record of a transaction's origin for audit purposes.

    Attributes:
        origin_type: Classification of the origin source
        source_id: Caller wallet, contract name, or "system"
        unit_symbol: Unit that the operation targets (if applicable)
        event_type: Operation name (e.g., "buy", "place-bid")
    """
    origin_type: OriginType
    source_id: str
    unit_symbol: Optional[str] = None
    event_type: Optional[str] = None

    def __repr__(self) -> str:
        parts = [f"{self.origin_type.value}:{self.source_id}"]
        if self.unit_symbol:
            parts.append(f"unit={self.unit_symbol}")
        if self.event_type:
            parts.append(f"event={self.event_type}")
        return f"Origin({', '.join(parts)})"


# ============================================================================
# UNIT STATE CHANGE
# ============================================================================

@dataclass(frozen=True, slots=True)
class UnitStateChange:
    """
    Record of a unit state change with complete before/after snapshots.

    old_state is compared against the unit's current state at execution time;
    a mismatch means the change was computed from a stale view.
    """
    unit: str
    old_state: Any
    new_state: Any

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """Return {field: (old, new)} for fields that differ."""
        old = self.old_state if isinstance(self.old_state, dict) else {}
        new = self.new_state if isinstance(self.new_state, dict) else {}
        changes = {}
        for key in set(old.keys()) | set(new.keys()):
            old_val = old.get(key)
            new_val = new.get(key)
            if old_val != new_val:
                changes[key] = (old_val, new_val)
        return changes


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of value between two wallets.

    Attributes:
        quantity: The amount to transfer (must be finite and positive).
        unit_symbol: The unit being transferred (currency symbol or asset id).
        source: The wallet ID from which value is debited.
        dest: The wallet ID to which value is credited.
        contract_id: Identifier of the operation generating this move.
    """
    quantity: Decimal
    unit_symbol: str
    source: str
    dest: str
    contract_id: str

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.unit_symbol or not self.unit_symbol.strip():
            raise ValueError("Move unit_symbol cannot be empty")
        if not self.contract_id or not self.contract_id.strip():
            raise ValueError("Move contract_id cannot be empty")
        if not isinstance(self.quantity, Decimal):
            raise ValueError(f"Move quantity must be Decimal, got {type(self.quantity)}")
        if not self.quantity.is_finite():
            raise ValueError(f"Move quantity must be finite, got {self.quantity}")
        if self.quantity <= ZERO:
            raise ValueError(f"Move quantity must be positive, got {self.quantity}")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}→{self.dest})"


@dataclass(frozen=True, slots=True)
class MarketEvent:
    """
    Notification emitted by a trading operation for off-engine indexers.

    Events are recorded by the ledger when their transaction is applied and
    are never read back by trading logic.

    Attributes:
        name: Event name (e.g., "listed", "bid-placed")
        asset_id: Asset the event concerns
        params: Parties and amounts as a frozen tuple of (key, value) pairs
    """
    name: str
    asset_id: str
    params: tuple = ()

    @property
    def params_dict(self) -> Dict[str, Any]:
        return dict(self.params)


def market_event(name: str, asset_id: str, **params: Any) -> MarketEvent:
    """Build a MarketEvent with params sorted by key."""
    return MarketEvent(name=name, asset_id=asset_id, params=tuple(sorted(params.items())))


def _normalize_decimal(d: Decimal) -> str:
    """Canonical string for a Decimal: Decimal("1.0") and Decimal("1") agree."""
    normalized = d.normalize(AMOUNT_CONTEXT)
    if normalized == normalized.to_integral_value():
        return str(int(normalized))
    return format(normalized, 'f')


def _canonicalize(value: Any) -> str:
    """
    Produce a canonical string representation of a value for hashing.

    Independent of dict insertion order and Decimal representation.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Decimal):
        return f"D:{_normalize_decimal(value)}"
    if isinstance(value, (int, float)):
        return f"N:{value}"
    if isinstance(value, str):
        return f"S:{value}"
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        serialized = ",".join(f"{_canonicalize(k)}:{_canonicalize(v)}" for k, v in items)
        return f"{{{serialized}}}"
    if isinstance(value, (list, tuple)):
        serialized = ",".join(_canonicalize(item) for item in value)
        return f"[{serialized}]"
    if isinstance(value, (set, frozenset)):
        serialized = ",".join(_canonicalize(item) for item in sorted(value, key=str))
        return f"<{serialized}>"
    return f"R:{repr(value)}"


def _compute_intent_id(
    moves: Tuple[Move, ...],
    state_changes: Tuple[UnitStateChange, ...],
    origin: TransactionOrigin,
    units_to_create: Tuple['Unit', ...] = (),
    events: Tuple[MarketEvent, ...] = (),
) -> str:
    """
    Compute a deterministic content hash for a transaction's intent.

    Based solely on semantic content (moves, state changes, origin, units,
    events), never on block height or ledger-specific data. Used for
    idempotency: the same intent is applied at most once.
    """
    sorted_moves = tuple(sorted(
        moves,
        key=lambda m: (_normalize_decimal(m.quantity), m.unit_symbol, m.source, m.dest, m.contract_id)
    ))

    content_parts = [f"origin:{origin.origin_type.value}:{origin.source_id}"]
    if origin.unit_symbol:
        content_parts.append(f"unit:{origin.unit_symbol}")
    if origin.event_type:
        content_parts.append(f"event:{origin.event_type}")

    for unit in sorted(units_to_create, key=lambda u: u.symbol):
        content_parts.append(f"unit_create:{unit.symbol}|{unit.unit_type}")

    for m in sorted_moves:
        qty = _normalize_decimal(m.quantity)
        content_parts.append(f"move:{qty}|{m.unit_symbol}|{m.source}|{m.dest}|{m.contract_id}")

    for sc in sorted(state_changes, key=lambda s: s.unit):
        content_parts.append(
            f"state_change:{sc.unit}|{_canonicalize(sc.old_state)}|{_canonicalize(sc.new_state)}"
        )

    for ev in events:
        content_parts.append(f"emit:{ev.name}|{ev.asset_id}|{_canonicalize(ev.params)}")

    content = "|".join(content_parts)
    return hashlib.sha256(content.encode()).hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A transaction specification before execution - represents INTENT.

    Built by trading functions and submitted to Ledger.execute(), which
    applies every move, state change, unit creation and event together or
    not at all.

    Attributes:
        moves: Value and ownership transfers between wallets
        state_changes: Unit state changes (old_state and new_state)
        origin: Who/what created this transaction and why
        block: Block height at which the transaction was built
        units_to_create: Units to register before executing moves
        events: Events recorded once the transaction is applied
        intent_id: Content-addressable hash of the intent (auto-computed)
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    block: int
    units_to_create: Tuple['Unit', ...] = ()
    events: Tuple[MarketEvent, ...] = ()
    intent_id: str = field(default="")

    def __post_init__(self):
        if not self.intent_id:
            computed_id = _compute_intent_id(
                self.moves, self.state_changes, self.origin, self.units_to_create, self.events
            )
            object.__setattr__(self, 'intent_id', computed_id)

    def is_empty(self) -> bool:
        """True if there are no moves, no state changes and no units to create."""
        return not self.moves and not self.state_changes and not self.units_to_create

    def __repr__(self) -> str:
        return (f"PendingTransaction({len(self.moves)} moves, {len(self.state_changes)} deltas, "
                f"{len(self.events)} events, {self.origin})")


def build_transaction(
    view: LedgerView,
    moves: List[Move],
    state_changes: Optional[List[UnitStateChange]] = None,
    origin: Optional[TransactionOrigin] = None,
    units_to_create: Optional[Tuple['Unit', ...]] = None,
    events: Optional[List[MarketEvent]] = None,
) -> PendingTransaction:
    """
    Build a PendingTransaction from moves, state changes and events.

    State snapshots are deep-copied so later mutation of the caller's dicts
    cannot alter the recorded intent.

    Example:
        def compute_unlist(view, market, caller, asset_id):
            old_state = view.get_unit_state(market)
            new_state = {**old_state, "listings": {...}}
            changes = [UnitStateChange(market, old_state, new_state)]
            return build_transaction(view, [], changes, events=[...])
    """
    if origin is None:
        origin = TransactionOrigin(
            origin_type=OriginType.CONTRACT,
            source_id="contract",
        )

    copied_changes: Tuple[UnitStateChange, ...] = ()
    if state_changes:
        copied_changes = tuple(
            UnitStateChange(
                unit=sc.unit,
                old_state=copy.deepcopy(sc.old_state),
                new_state=copy.deepcopy(sc.new_state),
            )
            for sc in state_changes
        )

    return PendingTransaction(
        moves=tuple(moves),
        state_changes=copied_changes,
        origin=origin,
        block=view.current_block,
        units_to_create=units_to_create or (),
        events=tuple(events or ()),
    )


def empty_pending_transaction(view: LedgerView) -> PendingTransaction:
    """Create an empty PendingTransaction for contracts with nothing to do."""
    return PendingTransaction(
        moves=(),
        state_changes=(),
        origin=TransactionOrigin(OriginType.CONTRACT, "noop"),
        block=view.current_block,
    )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of ledger state changes - represents FACT.

    Attributes:
        moves: Value and ownership transfers
        state_changes: Unit state changes
        origin: Who/what created this transaction and why
        block: Block height at which the pending transaction was built
        intent_id: Content hash from PendingTransaction (for idempotency)
        exec_id: Unique execution identifier
        ledger_name: Name of the ledger that executed this
        execution_block: Block height at execution
        sequence_number: Monotonic sequence within the ledger
        events: Events emitted by this transaction
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    block: int
    intent_id: str
    exec_id: str
    ledger_name: str
    execution_block: int
    sequence_number: int
    units_to_create: Tuple['Unit', ...] = ()
    events: Tuple[MarketEvent, ...] = ()
    contract_ids: FrozenSet[str] = None

    def __post_init__(self):
        if not self.moves and not self.state_changes and not self.units_to_create:
            raise ValueError("Transaction must have moves, state_changes, or units_to_create")
        if self.contract_ids is None:
            object.__setattr__(
                self, 'contract_ids',
                frozenset(m.contract_id for m in self.moves)
            )

    def __repr__(self) -> str:
        w = 100
        bar = "─" * w

        def pad(text: str) -> str:
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        lines = [
            "",
            f"┌{bar}┐",
            f"│{pad(' Transaction: ' + self.exec_id)}│",
            f"├{bar}┤",
            f"│{pad('   intent_id : ' + self.intent_id)}│",
            f"│{pad('   block     : ' + str(self.block))}│",
            f"│{pad('   sequence  : ' + str(self.sequence_number))}│",
            f"│{pad('   origin    : ' + str(self.origin))}│",
        ]
        if self.units_to_create:
            lines.append(f"├{bar}┤")
            lines.append(f"│{pad(' Units Created (' + str(len(self.units_to_create)) + '):')}│")
            for unit in self.units_to_create:
                lines.append(f"│{pad('   ' + unit.symbol + ' (' + unit.name + ')')}│")
        lines.append(f"├{bar}┤")
        lines.append(f"│{pad(' Moves (' + str(len(self.moves)) + '):')}│")
        for i, move in enumerate(self.moves):
            lines.append(f"│{pad(f'   [{i}] {move.quantity} {move.unit_symbol}: {move.source} → {move.dest}')}│")
        if self.events:
            lines.append(f"├{bar}┤")
            lines.append(f"│{pad(' Events (' + str(len(self.events)) + '):')}│")
            for ev in self.events:
                lines.append(f"│{pad(f'   {ev.name} [{ev.asset_id}] {ev.params_dict}')}│")
        lines.append(f"└{bar}┘")
        return "\n".join(lines)


# Transfer rules validate moves and raise TransferRuleViolation if invalid.
TransferRule = Callable[[LedgerView, Move], None]


def _freeze_state(state: Optional[UnitState]) -> Tuple[Tuple[str, Any], ...]:
    """Convert a state dict to a tuple of (key, value) pairs sorted by key."""
    if not state:
        return ()
    return tuple(sorted(state.items()))


def _thaw_state(frozen_state: Tuple[Tuple[str, Any], ...]) -> UnitState:
    """Convert a frozen state representation back to a dict."""
    return dict(frozen_state)


@dataclass(frozen=True, slots=True)
class Unit:
    """
    Definition of a unit held in wallets: a currency, an asset, or the market.

    Attributes:
        symbol: Identifier (currency code, asset id, market symbol).
        name: Human-readable name.
        unit_type: CURRENCY, ASSET or MARKETPLACE.
        min_balance: Minimum allowed balance in any non-system wallet.
        max_balance: Maximum allowed balance in any non-system wallet.
        decimal_places: Number of decimal places (None = no rounding).
        transfer_rule: Optional function to validate moves of this unit.
        _frozen_state: Internal frozen state representation.
    """
    symbol: str
    name: str
    unit_type: str
    min_balance: Decimal = Decimal("0")
    max_balance: Decimal = Decimal("Infinity")
    decimal_places: Optional[int] = None
    transfer_rule: Optional[TransferRule] = None
    _frozen_state: Tuple[Tuple[str, Any], ...] = field(default_factory=tuple)

    @property
    def state(self) -> UnitState:
        """The unit's state as a new dict."""
        return _thaw_state(self._frozen_state)

    def round(self, value: Decimal) -> Decimal:
        """Quantize a value to this unit's decimal precision."""
        if self.decimal_places is None:
            return value
        quantizer = Decimal(10) ** -self.decimal_places
        return value.quantize(quantizer, context=AMOUNT_CONTEXT)


# ============================================================================
# UNIT FACTORIES
# ============================================================================

def currency(symbol: str = DEFAULT_CURRENCY, name: str = "Stacks Token") -> Unit:
    """
    Create an integral currency unit with no overdraft.

    Returns:
        A Unit with decimal_places=0 and min_balance=0, so a wallet can never
        spend more than it holds. Only SYSTEM_WALLET is exempt (issuance).
    """
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_CURRENCY,
        decimal_places=0,
        min_balance=ZERO,
        _frozen_state=_freeze_state({'issuer': SYSTEM_WALLET}),
    )
