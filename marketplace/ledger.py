"""
ledger.py - Stateful Ledger Accessor for the marketplace

The Ledger class is the central state manager. It is the only module that
mutates state, ensuring controlled and auditable changes.

Key responsibilities:
    - Implements LedgerView protocol for safe read-only access by pure functions
    - Executes pending transactions atomically (all moves, state changes and
      events apply together or none do)
    - Rejects pending transactions computed from a stale view
    - Maintains wallet balances, unit definitions and the block height
    - Records the transaction log and event log, and notifies subscribers
"""

from __future__ import annotations
from collections import defaultdict
from dataclasses import replace
from decimal import Decimal, localcontext
from typing import Callable, Dict, List, Set, Optional, Tuple, Any
import copy
import logging

from .core import (
    # Types
    Move, Transaction, Unit, MarketEvent,
    PendingTransaction, TransactionOrigin, OriginType,
    ExecuteResult,
    Positions, UnitState, BalanceMap,
    # Constants
    SYSTEM_WALLET, ZERO, MAX_AMOUNT, AMOUNT_CONTEXT, UNIT_TYPE_ASSET, UNIT_TYPE_MARKETPLACE,
    # Exceptions
    LedgerError, TransferRuleViolation, UnitNotRegistered, WalletNotRegistered,
    # Helpers
    build_transaction, _freeze_state,
)

log = logging.getLogger(__name__)

EventCallback = Callable[[MarketEvent, Transaction], None]


class Ledger:
    """
    Ledger of currency balances and asset ownership with atomic execution.

    Implements the LedgerView protocol, allowing the ledger to be passed to
    pure trading functions that access only read-only methods.

    Design Principles:
        - Always validates: every pending transaction is checked for registered
          units and wallets, transfer rules, balance limits, block height and
          state freshness.
        - Always logs: every applied transaction is appended to the
          transaction log and its events to the event log.

    Thread Safety:
        Not thread-safe. The host serializes calls against one Ledger.

    Example:
        ledger = Ledger("main")
        ledger.register_unit(currency("STX"))
        ledger.register_wallet("alice")
        ledger.transfer(1000, "STX", SYSTEM_WALLET, "alice")
    """

    def __init__(
        self,
        name: str,
        initial_block: int = 0,
        verbose: bool = False,
        test_mode: bool = False
    ):
        """
        Create a ledger.

        Args:
            name: Ledger identifier
            initial_block: Starting block height (default: 0)
            verbose: Log full transaction receipts at INFO (default: False)
            test_mode: Allow set_balance() calls (default: False)
        """
        self.name = name
        self.balances: Dict[str, Dict[str, Decimal]] = {}
        self.units: Dict[str, Unit] = {}
        self.registered_wallets: Set[str] = set()
        self.seen_intent_ids: Set[str] = set()
        self.transaction_log: List[Transaction] = []
        self.event_log: List[MarketEvent] = []
        self.last_rejection: Optional[str] = None
        self._current_block: int = initial_block
        self._initial_block: int = initial_block
        self.verbose = verbose
        self._test_mode = test_mode
        self._next_sequence: int = 0
        # State each unit had when it was registered, for replay()
        self._registered_states: Dict[str, UnitState] = {}
        self._subscribers: List[EventCallback] = []
        # Inverted index mapping unit -> {wallet -> quantity}
        self._positions_by_unit: Dict[str, Dict[str, Decimal]] = defaultdict(dict)

        self.registered_wallets.add(SYSTEM_WALLET)
        self.balances[SYSTEM_WALLET] = defaultdict(lambda: ZERO)

    # ========================================================================
    # LedgerView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    @property
    def current_block(self) -> int:
        """Current block height."""
        return self._current_block

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """
        Get the balance of a unit in a wallet.

        Raises:
            WalletNotRegistered: If wallet is not registered
            UnitNotRegistered: If unit is not registered
        """
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return self.balances[wallet_id].get(unit_symbol, ZERO)

    def balance_of(self, account: str, unit_symbol: str) -> Decimal:
        """Balance of an account, zero for unknown accounts."""
        if account not in self.registered_wallets:
            return ZERO
        return self.get_balance(account, unit_symbol)

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """
        Get a deep copy of a unit's internal state.

        Raises:
            UnitNotRegistered: If unit is not registered
        """
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return copy.deepcopy(self.units[unit_symbol].state)

    def get_positions(self, unit_symbol: str) -> Positions:
        """All non-zero positions for a unit across all wallets."""
        return dict(self._positions_by_unit.get(unit_symbol, {}))

    def list_wallets(self) -> Set[str]:
        """List all registered wallet IDs."""
        return self.registered_wallets.copy()

    def list_units(self) -> List[str]:
        """List all registered unit symbols."""
        return sorted(self.units.keys())

    def get_unit(self, symbol: str) -> Unit:
        """Return the Unit object for a given symbol."""
        if symbol not in self.units:
            raise UnitNotRegistered(f"Unit {symbol} not registered")
        return self.units[symbol]

    def has_unit(self, symbol: str) -> bool:
        return symbol in self.units

    def get_wallet_balances(self, wallet_id: str) -> BalanceMap:
        """Get all balances for a wallet."""
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        return dict(self.balances[wallet_id])

    def is_registered(self, wallet_id: str) -> bool:
        """Check if a wallet is registered."""
        return wallet_id in self.registered_wallets

    def total_supply(self, unit_symbol: str) -> Decimal:
        """
        Total supply of a unit across all wallets, system wallet included.

        Since the system wallet carries the negative of everything issued,
        this is zero for any unit whose supply only ever changed by moves.
        """
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        with localcontext(AMOUNT_CONTEXT):
            return sum(
                (self.balances[w].get(unit_symbol, ZERO) for w in sorted(self.registered_wallets)),
                ZERO,
            )

    def verify_double_entry(
        self,
        expected_supplies: Optional[Dict[str, Decimal]] = None,
    ) -> Dict[str, Any]:
        """
        Verify that conservation laws hold for all units.

        Returns:
            Dict with keys:
            - 'valid': bool - True if all supplies match expectations
            - 'supplies': Dict[str, Decimal] - current total supply per unit
            - 'discrepancies': List[Dict] - unit, expected, actual, difference

        Example:
            result = ledger.verify_double_entry()
            assert result['valid'], f"Conservation violated: {result['discrepancies']}"
        """
        supplies = {}
        discrepancies = []
        expected_supplies = expected_supplies or {}

        for unit_symbol in sorted(self.units):
            current_supply = self.total_supply(unit_symbol)
            supplies[unit_symbol] = current_supply
            expected = expected_supplies.get(unit_symbol, ZERO)
            if current_supply != expected:
                discrepancies.append({
                    'unit': unit_symbol,
                    'expected': expected,
                    'actual': current_supply,
                    'difference': current_supply - expected,
                })

        for unit_symbol, expected in expected_supplies.items():
            if unit_symbol not in supplies:
                discrepancies.append({
                    'unit': unit_symbol,
                    'expected': expected,
                    'actual': ZERO,
                    'difference': -expected,
                    'error': 'unit not registered',
                })

        return {
            'valid': len(discrepancies) == 0,
            'supplies': supplies,
            'discrepancies': discrepancies,
        }

    # ========================================================================
    # BLOCK HEIGHT
    # ========================================================================

    def advance_block(self, new_block: int) -> None:
        """
        Move the block height forward.

        Raises:
            ValueError: If new_block is below the current block
        """
        if new_block < self._current_block:
            raise ValueError(
                f"Cannot move block height backwards: {new_block} < {self._current_block}"
            )
        self._current_block = new_block

    def mine(self, blocks: int = 1) -> int:
        """Advance by a number of blocks and return the new height."""
        if blocks < 0:
            raise ValueError(f"blocks must be non-negative, got {blocks}")
        self._current_block += blocks
        return self._current_block

    # ========================================================================
    # REGISTRATION (Mutating)
    # ========================================================================

    def register_wallet(self, wallet_id: str) -> str:
        """
        Register a new wallet.

        Raises:
            ValueError: If wallet is already registered or the id is empty
        """
        if not wallet_id or not wallet_id.strip():
            raise ValueError("wallet_id cannot be empty")
        if wallet_id in self.registered_wallets:
            raise ValueError(f"Wallet {wallet_id} already registered")
        self.registered_wallets.add(wallet_id)
        self.balances[wallet_id] = defaultdict(lambda: ZERO)
        return wallet_id

    def register_unit(self, unit: Unit) -> None:
        """
        Register a new unit.

        Raises:
            ValueError: If unit symbol is already registered
        """
        if unit.symbol in self.units:
            raise ValueError(f"Unit {unit.symbol} already registered")
        self.units[unit.symbol] = unit
        self._registered_states[unit.symbol] = copy.deepcopy(unit.state)
        rule_str = f", rule={unit.transfer_rule.__name__}" if unit.transfer_rule else ""
        log.debug("Registered: %s (%s) [%s]%s", unit.symbol, unit.name, unit.unit_type, rule_str)

    def set_balance(self, wallet_id: str, unit_symbol: str, quantity: Decimal) -> None:
        """
        Set a wallet's balance directly. Only available in test mode.

        Raises:
            LedgerError: If called when test_mode is False
        """
        if not self._test_mode:
            raise LedgerError(
                "set_balance() is disabled in production mode. "
                "Use transfer() or execute() to modify balances. "
                "Set test_mode=True when creating Ledger for testing."
            )
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        if not isinstance(quantity, Decimal):
            quantity = Decimal(str(quantity))
        self.balances[wallet_id][unit_symbol] = quantity
        self._update_position_index(wallet_id, unit_symbol, quantity)

    def subscribe(self, callback: EventCallback) -> None:
        """Register a callback invoked with (event, transaction) for every applied event."""
        self._subscribers.append(callback)

    # ========================================================================
    # TRANSACTION EXECUTION (Mutating)
    # ========================================================================

    def _generate_exec_id(self, sequence: int) -> str:
        """Format: exec:{ledger_name}:{sequence:012d}:{block}"""
        return f"exec:{self.name}:{sequence:012d}:{self._current_block}"

    def _reject(self, reason: str) -> ExecuteResult:
        self.last_rejection = reason
        log.warning("REJECTED: %s", reason)
        return ExecuteResult.REJECTED

    def execute(self, pending: PendingTransaction) -> ExecuteResult:
        """
        Execute a PendingTransaction atomically.

        Moves, unit registrations, state changes and events all apply
        together or not at all. A pending transaction with an intent_id that
        was already applied is not applied again.

        Returns:
            ExecuteResult.APPLIED if successful
            ExecuteResult.ALREADY_APPLIED if the intent was already executed
            ExecuteResult.REJECTED if validation failed (see last_rejection)
        """
        self.last_rejection = None

        if pending.is_empty():
            return ExecuteResult.APPLIED

        if pending.intent_id in self.seen_intent_ids:
            log.info("ALREADY_APPLIED: intent_id=%s", pending.intent_id)
            return ExecuteResult.ALREADY_APPLIED

        # Units are registered for validation and rolled back on failure
        newly_registered_units: List[str] = []
        for unit in pending.units_to_create:
            if unit.symbol in self.units:
                self._rollback_units(newly_registered_units)
                return self._reject(f"unit already registered: {unit.symbol}")
            self.units[unit.symbol] = unit
            newly_registered_units.append(unit.symbol)

        with localcontext(AMOUNT_CONTEXT):
            valid, reason = self._validate_pending(pending)
        if not valid:
            self._rollback_units(newly_registered_units)
            return self._reject(reason)

        for symbol in newly_registered_units:
            self._registered_states[symbol] = copy.deepcopy(self.units[symbol].state)

        sequence = self._next_sequence
        self._next_sequence += 1

        tx = Transaction(
            moves=pending.moves,
            state_changes=pending.state_changes,
            origin=pending.origin,
            block=pending.block,
            intent_id=pending.intent_id,
            exec_id=self._generate_exec_id(sequence),
            ledger_name=self.name,
            execution_block=self._current_block,
            sequence_number=sequence,
            units_to_create=pending.units_to_create,
            events=pending.events,
        )

        with localcontext(AMOUNT_CONTEXT):
            self._execute_moves(tx.moves)

        for sc in tx.state_changes:
            new_state = copy.deepcopy(sc.new_state if isinstance(sc.new_state, dict) else {})
            self.units[sc.unit] = replace(self.units[sc.unit], _frozen_state=_freeze_state(new_state))

        self.transaction_log.append(tx)
        self.seen_intent_ids.add(pending.intent_id)
        self.event_log.extend(tx.events)

        if self.verbose:
            log.info("%s\n APPLIED", tx)
        else:
            log.debug("APPLIED %s: %d moves, %d events", tx.exec_id, len(tx.moves), len(tx.events))

        for event in tx.events:
            for callback in self._subscribers:
                callback(event, tx)
        return ExecuteResult.APPLIED

    def _rollback_units(self, symbols: List[str]) -> None:
        for sym in symbols:
            del self.units[sym]

    def _validate_pending(self, pending: PendingTransaction) -> Tuple[bool, str]:
        """
        Validate a pending transaction against all constraints.

        Checks performed:
        1. Block height (a transaction cannot be built in the future)
        2. Unit and wallet registration
        3. Transfer rules
        4. Balance limits (min/max), on the net effect of all moves
        5. State freshness: each old_state must equal the unit's current state

        Returns:
            (True, "") or (False, reason)
        """
        if pending.block > self._current_block:
            return False, f"future block {pending.block} > {self._current_block}"

        for move in pending.moves:
            if move.unit_symbol not in self.units:
                return False, f"unit not registered: {move.unit_symbol}"
            if not self.is_registered(move.source):
                return False, f"wallet not registered: {move.source}"
            if not self.is_registered(move.dest):
                return False, f"wallet not registered: {move.dest}"

            unit = self.units[move.unit_symbol]
            if unit.transfer_rule:
                try:
                    unit.transfer_rule(self, move)
                except TransferRuleViolation as e:
                    return False, str(e)

        net: Dict[Tuple[str, str], Decimal] = {}
        for move in pending.moves:
            unit = self.units[move.unit_symbol]
            key_src = (move.source, move.unit_symbol)
            key_dst = (move.dest, move.unit_symbol)
            net[key_src] = unit.round(net.get(key_src, ZERO) - move.quantity)
            net[key_dst] = unit.round(net.get(key_dst, ZERO) + move.quantity)

        # SYSTEM_WALLET is exempt from balance validation
        for (wallet, unit_sym), delta in sorted(net.items()):
            if wallet == SYSTEM_WALLET:
                continue
            current = self.balances[wallet][unit_sym]
            unit = self.units[unit_sym]
            proposed = unit.round(current + delta)
            if proposed < unit.min_balance:
                return False, f"{wallet} {unit_sym}: {proposed} < min {unit.min_balance}"
            if proposed > unit.max_balance:
                return False, f"{wallet} {unit_sym}: {proposed} > max {unit.max_balance}"

        for sc in pending.state_changes:
            if sc.unit not in self.units:
                return False, f"state change for unregistered unit: {sc.unit}"
            if sc.old_state is None:
                continue
            current_state = self.units[sc.unit].state
            old_state = sc.old_state if isinstance(sc.old_state, dict) else {}
            for key in sorted(set(old_state.keys()) | set(current_state.keys())):
                if old_state.get(key) != current_state.get(key):
                    return False, f"stale state for {sc.unit}.{key}"

        return True, ""

    def _update_position_index(self, wallet_id: str, unit_symbol: str, quantity: Decimal) -> None:
        """Keep the unit -> {wallet -> quantity} index in step with balances; zeros are dropped."""
        if quantity != ZERO:
            self._positions_by_unit[unit_symbol][wallet_id] = quantity
        else:
            self._positions_by_unit[unit_symbol].pop(wallet_id, None)

    def _execute_moves(self, moves) -> None:
        for move in moves:
            unit = self.units[move.unit_symbol]
            new_src_balance = unit.round(
                self.balances[move.source][move.unit_symbol] - move.quantity
            )
            self.balances[move.source][move.unit_symbol] = new_src_balance
            self._update_position_index(move.source, move.unit_symbol, new_src_balance)
            new_dst_balance = unit.round(
                self.balances[move.dest][move.unit_symbol] + move.quantity
            )
            self.balances[move.dest][move.unit_symbol] = new_dst_balance
            self._update_position_index(move.dest, move.unit_symbol, new_dst_balance)

    def transfer(
        self,
        amount: Any,
        unit_symbol: str,
        source: str,
        dest: str,
        contract_id: str = "transfer",
    ) -> ExecuteResult:
        """
        Move an amount of a unit between two wallets as its own transaction.

        Funding from SYSTEM_WALLET is the way to issue currency outside
        test mode. Asset tokens and the platform and escrow wallets of a
        registered market are off limits: those balances only change
        through market transactions, which keep listings, bids and revenue
        counters in step with them.

        Example:
            ledger.transfer(5000, "STX", SYSTEM_WALLET, "alice", "faucet")
        """
        quantity = amount if isinstance(amount, Decimal) else Decimal(str(amount))
        if quantity.is_finite() and quantity > MAX_AMOUNT:
            return self._reject(f"transfer of {quantity} {unit_symbol} exceeds {MAX_AMOUNT}")
        unit = self.units.get(unit_symbol)
        if unit is not None and unit.unit_type == UNIT_TYPE_ASSET:
            return self._reject(f"asset {unit_symbol} can only change hands through the market")
        market_wallets = self._market_wallets()
        for wallet in (source, dest):
            if wallet in market_wallets:
                return self._reject(f"{wallet} holds market funds and cannot be used in a transfer")

        origin_type = OriginType.SYSTEM if source == SYSTEM_WALLET else OriginType.USER_ACTION
        # Sequence keeps repeated identical transfers distinct intents
        pending = build_transaction(
            self,
            [Move(quantity, unit_symbol, source, dest, f"{contract_id}:{self._next_sequence}")],
            origin=TransactionOrigin(origin_type, source, unit_symbol, "transfer"),
        )
        return self.execute(pending)

    def _market_wallets(self) -> Set[str]:
        """Platform and escrow wallets of every registered market unit."""
        wallets: Set[str] = set()
        for unit in self.units.values():
            if unit.unit_type == UNIT_TYPE_MARKETPLACE:
                state = unit.state
                wallets.update((state['platform_wallet'], state['escrow_wallet']))
        return wallets

    # ========================================================================
    # LEDGER OPERATIONS
    # ========================================================================

    def clone(self) -> Ledger:
        """
        Create a fully independent copy of this ledger.

        Cloned state includes units and their state, wallets, balances,
        transaction and event logs, block height and configuration.
        Subscribers are not copied.
        """
        cloned = Ledger.__new__(Ledger)
        cloned.name = self.name
        cloned._current_block = self._current_block
        cloned._initial_block = self._initial_block
        cloned.verbose = self.verbose
        cloned._test_mode = self._test_mode
        cloned.last_rejection = self.last_rejection
        cloned._subscribers = []

        cloned.units = {
            symbol: replace(unit, _frozen_state=_freeze_state(copy.deepcopy(unit.state)))
            for symbol, unit in self.units.items()
        }
        cloned._registered_states = copy.deepcopy(self._registered_states)

        cloned.registered_wallets = self.registered_wallets.copy()
        cloned.seen_intent_ids = self.seen_intent_ids.copy()
        cloned.transaction_log = list(self.transaction_log)
        cloned.event_log = list(self.event_log)
        cloned._next_sequence = self._next_sequence

        cloned.balances = {}
        for wallet, bals in self.balances.items():
            cloned.balances[wallet] = defaultdict(lambda: ZERO, bals)

        cloned._positions_by_unit = defaultdict(dict)
        for unit_symbol, positions in self._positions_by_unit.items():
            cloned._positions_by_unit[unit_symbol] = dict(positions)

        return cloned

    def replay(self, from_tx: int = 0) -> Ledger:
        """
        Create a new ledger by re-executing the transaction log.

        Units that existed before the replayed range are re-registered with
        the state they had at registration; units created by transactions
        are created again by those transactions. Balances set via
        set_balance() are not part of the log and are not replayed.

        Raises:
            LedgerError: If any logged transaction is rejected during replay
        """
        new_ledger = Ledger(
            name=f"{self.name}_replayed",
            initial_block=self._initial_block,
            verbose=self.verbose,
            test_mode=self._test_mode,
        )

        units_created_in_log = set()
        for tx in self.transaction_log[from_tx:]:
            for unit in tx.units_to_create:
                units_created_in_log.add(unit.symbol)

        for symbol in sorted(self.units):
            if symbol in units_created_in_log:
                continue
            unit = self.units[symbol]
            new_ledger.register_unit(replace(
                unit, _frozen_state=_freeze_state(copy.deepcopy(self._registered_states.get(symbol, {})))
            ))

        for wallet in sorted(self.registered_wallets):
            if wallet != SYSTEM_WALLET:
                new_ledger.register_wallet(wallet)

        for tx in self.transaction_log[from_tx:]:
            if tx.execution_block > new_ledger.current_block:
                new_ledger.advance_block(tx.execution_block)

            pending = PendingTransaction(
                moves=tx.moves,
                state_changes=tx.state_changes,
                origin=tx.origin,
                block=tx.block,
                units_to_create=tx.units_to_create,
                events=tx.events,
            )
            result = new_ledger.execute(pending)
            if result == ExecuteResult.REJECTED:
                raise LedgerError(f"Replay failed at tx {tx.exec_id}: {new_ledger.last_rejection}")

        return new_ledger
