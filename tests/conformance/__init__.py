"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the marketplace ledger.

The tests are organized by invariant:
1. conservation.py - Currency supply, single ownership and escrow reconciliation
2. atomicity.py - All-or-nothing trading operations
3. idempotency.py - Duplicate execution handling
4. determinism.py - Reproducible behavior and replay
5. canonicalization.py - Content-addressable intent identity

These tests use hypothesis for property-based testing over random
trading sequences (see tests/trading_steps.py).
"""
