"""
lifecycle_engine.py - Lifecycle Engine

Advances the block height and polls unit contracts for work that falls due
with time, such as auctions that have passed their end block.

Execution order each step():
1. Advance the ledger's block height
2. Poll every registered contract for every unit of its type
3. Repeat until a pass produces no transactions (bounded by max_passes)

The transaction log is the audit trail; no separate status tracking.
"""

from __future__ import annotations
from typing import Dict, Iterable, List, Optional
import logging

from .core import (
    PendingTransaction, Transaction,
    ExecuteResult, LedgerError,
    SmartContract, UNIT_TYPE_MARKETPLACE,
)
from .ledger import Ledger
from .auctions import auction_contract

log = logging.getLogger(__name__)


def default_contracts() -> Dict[str, SmartContract]:
    """Contracts registered when none are given: auction finalization for markets."""
    return {UNIT_TYPE_MARKETPLACE: auction_contract}


class LifecycleEngine:
    """
    Polls unit contracts as the block height advances.

    Each pass asks every contract for one pending transaction per unit and
    executes it. A contract that has more work returns it on the next pass,
    so a market with three ended auctions settles in three passes.
    """

    def __init__(
        self,
        ledger: Ledger,
        contracts: Optional[Dict[str, SmartContract]] = None,
        max_passes: int = 100,
    ):
        """
        Args:
            ledger: The ledger to operate on
            contracts: unit_type -> contract (defaults to default_contracts())
            max_passes: Safety limit on polling passes per step
        """
        self.ledger = ledger
        self.contracts: Dict[str, SmartContract] = (
            default_contracts() if contracts is None else dict(contracts)
        )
        self.max_passes = max_passes

    def register(self, unit_type: str, contract: SmartContract) -> None:
        """Register a contract for a unit type, replacing any previous one."""
        self.contracts[unit_type] = contract

    def step(self, block: int) -> List[Transaction]:
        """
        Advance to a block height and run contracts until nothing is left to do.

        Returns:
            Transactions executed during this step, in order

        Raises:
            ValueError: If block is below the current block height
            LedgerError: If a contract returns something other than a
                PendingTransaction, or the ledger rejects its transaction
        """
        self.ledger.advance_block(block)
        executed: List[Transaction] = []

        for pass_num in range(self.max_passes):
            pass_executed = self._process_contracts(block)
            executed.extend(pass_executed)
            if not pass_executed:
                break
        else:
            log.warning("Lifecycle step at block %d stopped after %d passes", block, self.max_passes)

        if executed:
            log.info("Block %d: %d lifecycle transactions", block, len(executed))
        return executed

    def run(self, blocks: Iterable[int]) -> List[Transaction]:
        """Step through a sequence of block heights."""
        all_transactions: List[Transaction] = []
        for block in blocks:
            all_transactions.extend(self.step(block))
        return all_transactions

    def _process_contracts(self, block: int) -> List[Transaction]:
        executed: List[Transaction] = []

        # Sorted for a deterministic execution order
        for symbol in self.ledger.list_units():
            unit = self.ledger.get_unit(symbol)
            contract = self.contracts.get(unit.unit_type)
            if not contract:
                continue

            pending = contract(self.ledger, symbol, block)
            if not isinstance(pending, PendingTransaction):
                raise LedgerError(
                    f"Contract for {symbol} must return PendingTransaction, got {type(pending)}"
                )
            if pending.is_empty():
                continue

            result = self.ledger.execute(pending)
            if result == ExecuteResult.REJECTED:
                raise LedgerError(
                    f"Lifecycle event failed for {symbol}: {self.ledger.last_rejection}"
                )
            if result == ExecuteResult.APPLIED:
                executed.append(self.ledger.transaction_log[-1])

        return executed
