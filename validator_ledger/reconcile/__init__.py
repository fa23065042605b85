"""
Reconciliation engine: gap resolution, primary/secondary fallback, per-account
history cursors, transfer de-duplication and classification, run orchestration.
"""
