"""
Core modules for Vault Guard.

This package contains vault consumption accounting: capacity checks,
consumption deltas, ledger reconciliation and the numeric mirror bridge.
"""
