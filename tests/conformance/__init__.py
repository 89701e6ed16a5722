"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the money market.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. atomicity.py - All-or-nothing message semantics
2. interest_monotonicity.py - Interest index and liabilities never shrink by accrual
3. epoch_gate.py - Epoch operations run at most once per epoch period
4. dynrate_bound.py - Dynamic rate moves are bounded and symmetric

These tests use hypothesis for property-based testing.
"""
