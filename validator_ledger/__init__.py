"""
Validator ledger: epoch-indexed reconciliation and incremental cache for a
single Solana validator's finances.
"""

__version__ = "0.1.0"
