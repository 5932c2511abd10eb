"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the option book.

The tests are organized by invariant:
1. test_conservation.py - Escrow custody, double-entry and state monotonicity
2. test_atomicity.py - All-or-nothing operation semantics
"""
