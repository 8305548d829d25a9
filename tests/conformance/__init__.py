"""
Conformance Test Suite

Property-based checks of the lending ledger's invariants, organized by file:
1. test_solvency.py - Solvency and claim-unit conservation over arbitrary
   operation sequences; refused operations change nothing
2. test_accrual_properties.py - Accrual idempotency, monotonic indices and
   conservation of interest
3. test_replay.py - Duplicate execution, pure compute functions and
   reconstruction of past states

These tests use hypothesis for property-based testing.
"""
