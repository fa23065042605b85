"""
Ledger persistence: fact models and the SQLite-backed LedgerStore.
"""

from validator_ledger.database.database import (
    LedgerBackend,
    LedgerStore,
    SQLiteBackend,
    get_ledger_store,
)
from validator_ledger.database.models import (
    AccountCursor,
    CacheStats,
    CommissionClaimFact,
    EpochFact,
    FactKind,
    ProductionFeeFact,
    RecordState,
    RewardFact,
    SourceTag,
    TransactionCostFact,
    TransferRecord,
)

__all__ = [
    "LedgerBackend",
    "LedgerStore",
    "SQLiteBackend",
    "get_ledger_store",
    "AccountCursor",
    "CacheStats",
    "CommissionClaimFact",
    "EpochFact",
    "FactKind",
    "ProductionFeeFact",
    "RecordState",
    "RewardFact",
    "SourceTag",
    "TransactionCostFact",
    "TransferRecord",
]
