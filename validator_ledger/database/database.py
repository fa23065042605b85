"""
Ledger Store: persistent cache of per-epoch facts, transfers and scan cursors.

SQLite in WAL mode so the file can be inspected while a run is writing; one
short-lived connection per operation with a busy timeout. Each write call is
a single transaction: it commits whole or rolls back and raises StorageError.
All writes are upserts by natural key, so re-running after a crash is safe.

All access goes through the abstract LedgerBackend; LedgerStore adds the
cache semantics (missing-epoch computation, current-epoch guard, global
transfer de-duplication, monotonic cursors) on top.
"""

from __future__ import annotations

import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator

from validator_ledger.core.exceptions import StorageError
from validator_ledger.database.models import (
    FACT_TYPES,
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
    negative_fact,
)
from validator_ledger.ledger_logging import get_logger

logger = get_logger(__name__)

# -----------------------------------------------------------------------------
# Schema (SQLite). Fact tables: one row per epoch; record_state separates real
# data from confirmed-empty; no row means unchecked.
# -----------------------------------------------------------------------------

SCHEMA_EPOCH_REWARDS = """
CREATE TABLE IF NOT EXISTS epoch_rewards (
    epoch INTEGER PRIMARY KEY,
    amount_lamports INTEGER NOT NULL,
    amount_sol REAL NOT NULL,
    commission INTEGER NOT NULL,
    effective_slot INTEGER NOT NULL,
    date TEXT NOT NULL,
    record_state TEXT NOT NULL CHECK (record_state IN ('observed', 'confirmed_empty')),
    fetched_at TEXT NOT NULL DEFAULT (datetime('now'))
);
"""

SCHEMA_LEADER_FEES = """
CREATE TABLE IF NOT EXISTS leader_fees (
    epoch INTEGER PRIMARY KEY,
    leader_slots INTEGER NOT NULL,
    blocks_produced INTEGER NOT NULL,
    skipped_slots INTEGER NOT NULL,
    total_fees_lamports INTEGER NOT NULL,
    total_fees_sol REAL NOT NULL,
    date TEXT NOT NULL,
    record_state TEXT NOT NULL CHECK (record_state IN ('observed', 'confirmed_empty')),
    fetched_at TEXT NOT NULL DEFAULT (datetime('now')),
    CHECK (skipped_slots = leader_slots - blocks_produced)
);
"""

SCHEMA_MEV_CLAIMS = """
CREATE TABLE IF NOT EXISTS mev_claims (
    epoch INTEGER PRIMARY KEY,
    gross_lamports INTEGER NOT NULL,
    commission_lamports INTEGER NOT NULL,
    commission_sol REAL NOT NULL,
    commission_bps INTEGER NOT NULL,
    date TEXT NOT NULL,
    record_state TEXT NOT NULL CHECK (record_state IN ('observed', 'confirmed_empty')),
    fetched_at TEXT NOT NULL DEFAULT (datetime('now'))
);
"""

SCHEMA_VOTE_COSTS = """
CREATE TABLE IF NOT EXISTS vote_costs (
    epoch INTEGER PRIMARY KEY,
    vote_count INTEGER NOT NULL,
    total_fee_lamports INTEGER NOT NULL,
    total_fee_sol REAL NOT NULL,
    source_tag TEXT NOT NULL CHECK (source_tag IN ('primary', 'secondary', 'estimated')),
    date TEXT NOT NULL,
    record_state TEXT NOT NULL CHECK (record_state IN ('observed', 'confirmed_empty')),
    fetched_at TEXT NOT NULL DEFAULT (datetime('now'))
);
"""

SCHEMA_SOL_TRANSFERS = """
CREATE TABLE IF NOT EXISTS sol_transfers (
    signature TEXT NOT NULL,
    account_tag TEXT NOT NULL,
    slot INTEGER NOT NULL,
    timestamp INTEGER,
    date TEXT,
    from_address TEXT NOT NULL,
    to_address TEXT NOT NULL,
    amount_lamports INTEGER NOT NULL,
    amount_sol REAL NOT NULL,
    from_label TEXT,
    to_label TEXT,
    from_category TEXT,
    to_category TEXT,
    fetched_at TEXT NOT NULL DEFAULT (datetime('now')),
    PRIMARY KEY (signature, account_tag, from_address, to_address, amount_lamports)
);
CREATE INDEX IF NOT EXISTS ix_sol_transfers_account_tag ON sol_transfers(account_tag);
CREATE INDEX IF NOT EXISTS ix_sol_transfers_slot ON sol_transfers(slot);
"""

SCHEMA_ACCOUNT_PROGRESS = """
CREATE TABLE IF NOT EXISTS account_progress (
    account_tag TEXT PRIMARY KEY,
    highest_slot INTEGER NOT NULL,
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);
"""


# -----------------------------------------------------------------------------
# Fact table mapping: column order shared by INSERT and SELECT.
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class _FactTable:
    name: str
    columns: tuple[str, ...]
    to_values: Callable[[Any], tuple]
    from_row: Callable[[sqlite3.Row], EpochFact]


def _reward_values(f: RewardFact) -> tuple:
    return (f.epoch, f.amount_lamports, f.amount_sol, f.commission, f.effective_slot, f.date, f.state.value)


def _reward_from_row(r: sqlite3.Row) -> RewardFact:
    return RewardFact(
        epoch=r["epoch"],
        amount_lamports=r["amount_lamports"],
        commission=r["commission"],
        effective_slot=r["effective_slot"],
        date=r["date"],
        state=RecordState(r["record_state"]),
    )


def _leader_values(f: ProductionFeeFact) -> tuple:
    return (
        f.epoch, f.leader_slots, f.blocks_produced, f.skipped_slots,
        f.total_fees_lamports, f.total_fees_sol, f.date, f.state.value,
    )


def _leader_from_row(r: sqlite3.Row) -> ProductionFeeFact:
    return ProductionFeeFact(
        epoch=r["epoch"],
        leader_slots=r["leader_slots"],
        blocks_produced=r["blocks_produced"],
        total_fees_lamports=r["total_fees_lamports"],
        date=r["date"],
        state=RecordState(r["record_state"]),
    )


def _mev_values(f: CommissionClaimFact) -> tuple:
    return (
        f.epoch, f.gross_lamports, f.commission_lamports, f.commission_sol,
        f.commission_bps, f.date, f.state.value,
    )


def _mev_from_row(r: sqlite3.Row) -> CommissionClaimFact:
    return CommissionClaimFact(
        epoch=r["epoch"],
        gross_lamports=r["gross_lamports"],
        commission_lamports=r["commission_lamports"],
        commission_bps=r["commission_bps"],
        date=r["date"],
        state=RecordState(r["record_state"]),
    )


def _vote_values(f: TransactionCostFact) -> tuple:
    return (
        f.epoch, f.vote_count, f.total_fee_lamports, f.total_fee_sol,
        f.source_tag.value, f.date, f.state.value,
    )


def _vote_from_row(r: sqlite3.Row) -> TransactionCostFact:
    return TransactionCostFact(
        epoch=r["epoch"],
        vote_count=r["vote_count"],
        total_fee_lamports=r["total_fee_lamports"],
        source_tag=SourceTag(r["source_tag"]),
        date=r["date"],
        state=RecordState(r["record_state"]),
    )


FACT_TABLES: dict[FactKind, _FactTable] = {
    FactKind.REWARDS: _FactTable(
        "epoch_rewards",
        ("epoch", "amount_lamports", "amount_sol", "commission", "effective_slot", "date", "record_state"),
        _reward_values,
        _reward_from_row,
    ),
    FactKind.LEADER_FEES: _FactTable(
        "leader_fees",
        ("epoch", "leader_slots", "blocks_produced", "skipped_slots", "total_fees_lamports",
         "total_fees_sol", "date", "record_state"),
        _leader_values,
        _leader_from_row,
    ),
    FactKind.MEV: _FactTable(
        "mev_claims",
        ("epoch", "gross_lamports", "commission_lamports", "commission_sol", "commission_bps",
         "date", "record_state"),
        _mev_values,
        _mev_from_row,
    ),
    FactKind.VOTE_COSTS: _FactTable(
        "vote_costs",
        ("epoch", "vote_count", "total_fee_lamports", "total_fee_sol", "source_tag", "date",
         "record_state"),
        _vote_values,
        _vote_from_row,
    ),
}

_TRANSFER_COLUMNS = (
    "signature", "account_tag", "slot", "timestamp", "date", "from_address", "to_address",
    "amount_lamports", "amount_sol", "from_label", "to_label", "from_category", "to_category",
)


def _transfer_values(tag: str, t: TransferRecord) -> tuple:
    return (
        t.signature, tag, t.slot, t.timestamp, t.date, t.from_address, t.to_address,
        t.amount_lamports, t.amount_sol, t.from_label, t.to_label, t.from_category, t.to_category,
    )


def _transfer_from_row(r: sqlite3.Row) -> TransferRecord:
    return TransferRecord(
        signature=r["signature"],
        slot=r["slot"],
        from_address=r["from_address"],
        to_address=r["to_address"],
        amount_lamports=r["amount_lamports"],
        timestamp=r["timestamp"],
        date=r["date"],
        from_label=r["from_label"] or "",
        to_label=r["to_label"] or "",
        from_category=r["from_category"] or "unknown",
        to_category=r["to_category"] or "unknown",
        account_tag=r["account_tag"],
    )


# -----------------------------------------------------------------------------
# Abstract backend
# -----------------------------------------------------------------------------


class LedgerBackend(ABC):
    """Abstract interface for ledger persistence."""

    @abstractmethod
    def ensure_schema(self) -> None:
        """Create tables and indexes if they do not exist."""
        ...

    @abstractmethod
    def upsert_facts(self, kind: FactKind, facts: list[EpochFact]) -> int:
        """Insert or replace facts by epoch in one transaction. Returns rows written."""
        ...

    @abstractmethod
    def get_facts(self, kind: FactKind, start_epoch: int, end_epoch: int) -> list[EpochFact]:
        """Facts with start_epoch <= epoch <= end_epoch, ascending."""
        ...

    @abstractmethod
    def get_present_epochs(self, kind: FactKind, start_epoch: int, end_epoch: int) -> set[int]:
        """Epochs in range that have any row (observed or confirmed empty)."""
        ...

    @abstractmethod
    def latest_epoch(self, kind: FactKind, *, observed_only: bool = True) -> int | None:
        ...

    @abstractmethod
    def upsert_transfers(self, account_tag: str, transfers: list[TransferRecord]) -> int:
        ...

    @abstractmethod
    def get_transfers(self, account_tag: str | None = None) -> list[TransferRecord]:
        """Stored transfers, newest slot first; all tags when account_tag is None."""
        ...

    @abstractmethod
    def max_transfer_slot(self, account_tag: str) -> int | None:
        ...

    @abstractmethod
    def get_account_progress(self, account_tag: str) -> AccountCursor | None:
        ...

    @abstractmethod
    def advance_account_progress(self, account_tag: str, highest_slot: int) -> int:
        """Set highest_slot to max(stored, highest_slot). Returns the stored value."""
        ...

    @abstractmethod
    def stats(self) -> CacheStats:
        ...


# -----------------------------------------------------------------------------
# SQLite backend
# -----------------------------------------------------------------------------


class SQLiteBackend(LedgerBackend):
    """SQLite implementation; single file, one connection per operation."""

    def __init__(self, path: str | Path, *, timeout_sec: float = 5.0) -> None:
        self._path = Path(path)
        self._timeout_sec = timeout_sec

    @property
    def path(self) -> Path:
        return self._path

    def _connect(self) -> sqlite3.Connection:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self._path), timeout=self._timeout_sec)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute(f"PRAGMA busy_timeout = {int(self._timeout_sec * 1000)}")
        return conn

    @contextmanager
    def _cursor(self) -> Iterator[sqlite3.Cursor]:
        try:
            conn = self._connect()
        except (sqlite3.Error, OSError) as e:
            raise StorageError(f"cannot open {self._path}: {e}") from e
        try:
            cur = conn.cursor()
            yield cur
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageError(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def ensure_schema(self) -> None:
        with self._cursor() as cur:
            for stmt in (
                SCHEMA_EPOCH_REWARDS,
                SCHEMA_LEADER_FEES,
                SCHEMA_MEV_CLAIMS,
                SCHEMA_VOTE_COSTS,
                SCHEMA_SOL_TRANSFERS,
                SCHEMA_ACCOUNT_PROGRESS,
            ):
                cur.executescript(stmt)

    def upsert_facts(self, kind: FactKind, facts: list[EpochFact]) -> int:
        if not facts:
            return 0
        table = FACT_TABLES[kind]
        cols = ", ".join(table.columns)
        marks = ", ".join("?" for _ in table.columns)
        with self._cursor() as cur:
            cur.executemany(
                f"INSERT OR REPLACE INTO {table.name} ({cols}) VALUES ({marks})",
                [table.to_values(f) for f in facts],
            )
        return len(facts)

    def get_facts(self, kind: FactKind, start_epoch: int, end_epoch: int) -> list[EpochFact]:
        table = FACT_TABLES[kind]
        with self._cursor() as cur:
            cur.execute(
                f"SELECT * FROM {table.name} WHERE epoch >= ? AND epoch <= ? ORDER BY epoch",
                (start_epoch, end_epoch),
            )
            rows = cur.fetchall()
        return [table.from_row(r) for r in rows]

    def get_present_epochs(self, kind: FactKind, start_epoch: int, end_epoch: int) -> set[int]:
        table = FACT_TABLES[kind]
        with self._cursor() as cur:
            cur.execute(
                f"SELECT epoch FROM {table.name} WHERE epoch >= ? AND epoch <= ?",
                (start_epoch, end_epoch),
            )
            return {int(r["epoch"]) for r in cur.fetchall()}

    def latest_epoch(self, kind: FactKind, *, observed_only: bool = True) -> int | None:
        table = FACT_TABLES[kind]
        sql = f"SELECT MAX(epoch) AS e FROM {table.name}"
        params: tuple = ()
        if observed_only:
            sql += " WHERE record_state = ?"
            params = (RecordState.OBSERVED.value,)
        with self._cursor() as cur:
            cur.execute(sql, params)
            row = cur.fetchone()
        return int(row["e"]) if row and row["e"] is not None else None

    def upsert_transfers(self, account_tag: str, transfers: list[TransferRecord]) -> int:
        if not transfers:
            return 0
        cols = ", ".join(_TRANSFER_COLUMNS)
        marks = ", ".join("?" for _ in _TRANSFER_COLUMNS)
        with self._cursor() as cur:
            cur.executemany(
                f"INSERT OR REPLACE INTO sol_transfers ({cols}) VALUES ({marks})",
                [_transfer_values(account_tag, t) for t in transfers],
            )
        return len(transfers)

    def get_transfers(self, account_tag: str | None = None) -> list[TransferRecord]:
        sql = "SELECT * FROM sol_transfers"
        params: tuple = ()
        if account_tag is not None:
            sql += " WHERE account_tag = ?"
            params = (account_tag,)
        sql += " ORDER BY slot DESC, signature, account_tag"
        with self._cursor() as cur:
            cur.execute(sql, params)
            rows = cur.fetchall()
        return [_transfer_from_row(r) for r in rows]

    def max_transfer_slot(self, account_tag: str) -> int | None:
        with self._cursor() as cur:
            cur.execute(
                "SELECT MAX(slot) AS s FROM sol_transfers WHERE account_tag = ?",
                (account_tag,),
            )
            row = cur.fetchone()
        return int(row["s"]) if row and row["s"] is not None else None

    def get_account_progress(self, account_tag: str) -> AccountCursor | None:
        with self._cursor() as cur:
            cur.execute(
                "SELECT account_tag, highest_slot, updated_at FROM account_progress WHERE account_tag = ?",
                (account_tag,),
            )
            row = cur.fetchone()
        if row is None:
            return None
        return AccountCursor(
            account_tag=row["account_tag"],
            highest_slot=int(row["highest_slot"]),
            updated_at=row["updated_at"],
        )

    def advance_account_progress(self, account_tag: str, highest_slot: int) -> int:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO account_progress (account_tag, highest_slot, updated_at)
                VALUES (?, ?, datetime('now'))
                ON CONFLICT(account_tag) DO UPDATE SET
                    highest_slot = MAX(highest_slot, excluded.highest_slot),
                    updated_at = excluded.updated_at
                """,
                (account_tag, highest_slot),
            )
            cur.execute(
                "SELECT highest_slot FROM account_progress WHERE account_tag = ?",
                (account_tag,),
            )
            row = cur.fetchone()
        return int(row["highest_slot"])

    def stats(self) -> CacheStats:
        result = CacheStats()
        with self._cursor() as cur:
            for kind, table in FACT_TABLES.items():
                cur.execute(
                    f"SELECT record_state, COUNT(*) AS n FROM {table.name} GROUP BY record_state"
                )
                counts = {r["record_state"]: int(r["n"]) for r in cur.fetchall()}
                result.facts[kind.value] = counts.get(RecordState.OBSERVED.value, 0)
                result.negatives[kind.value] = counts.get(RecordState.CONFIRMED_EMPTY.value, 0)
            cur.execute("SELECT COUNT(*) AS n FROM sol_transfers")
            result.transfers = int(cur.fetchone()["n"])
            cur.execute("SELECT account_tag, highest_slot FROM account_progress ORDER BY account_tag")
            result.cursors = {r["account_tag"]: int(r["highest_slot"]) for r in cur.fetchall()}
        return result


# -----------------------------------------------------------------------------
# Store facade
# -----------------------------------------------------------------------------


class LedgerStore:
    """
    Ledger cache: epoch facts, negative records, transfers and account cursors.

    Uses a LedgerBackend (SQLite). get_missing() returns epochs with no row at
    all; confirmed-empty rows are present and therefore never refetched.
    """

    def __init__(self, backend: LedgerBackend) -> None:
        self._backend = backend

    def ensure_schema(self) -> None:
        """Create tables and indexes if they do not exist."""
        self._backend.ensure_schema()

    # --- Epoch facts ---

    def store_facts(
        self,
        kind: FactKind,
        facts: Iterable[EpochFact],
        *,
        current_epoch: int | None = None,
    ) -> int:
        """
        Upsert facts of one kind atomically. Facts for current_epoch or later are
        dropped (volatile, never cached). Returns rows written.
        """
        expected = FACT_TYPES[kind]
        batch: list[EpochFact] = []
        for fact in facts:
            if not isinstance(fact, expected):
                raise TypeError(f"{kind.value} expects {expected.__name__}, got {type(fact).__name__}")
            if current_epoch is not None and fact.epoch >= current_epoch:
                logger.warning(
                    "volatile_epoch_not_stored",
                    fact_kind=kind.value,
                    epoch=fact.epoch,
                    current_epoch=current_epoch,
                )
                continue
            batch.append(fact)
        return self._backend.upsert_facts(kind, batch)

    def store_fact(self, kind: FactKind, fact: EpochFact, *, current_epoch: int | None = None) -> int:
        return self.store_facts(kind, [fact], current_epoch=current_epoch)

    def store_negative(
        self,
        kind: FactKind,
        epochs: Iterable[int],
        *,
        current_epoch: int | None = None,
    ) -> int:
        """Write confirmed-empty records for epochs. Returns rows written."""
        return self.store_facts(
            kind,
            [negative_fact(kind, e) for e in sorted(set(epochs))],
            current_epoch=current_epoch,
        )

    def get_facts(
        self,
        kind: FactKind,
        start_epoch: int,
        end_epoch: int,
        *,
        include_negative: bool = True,
    ) -> list[EpochFact]:
        if start_epoch > end_epoch:
            return []
        facts = self._backend.get_facts(kind, start_epoch, end_epoch)
        if include_negative:
            return facts
        return [f for f in facts if not f.is_negative]

    def get_missing(self, kind: FactKind, start_epoch: int, end_epoch: int) -> list[int]:
        """Epochs in [start_epoch, end_epoch] with no row at all, ascending."""
        if start_epoch > end_epoch:
            return []
        present = self._backend.get_present_epochs(kind, start_epoch, end_epoch)
        return [e for e in range(start_epoch, end_epoch + 1) if e not in present]

    def latest_epoch(self, kind: FactKind, *, observed_only: bool = True) -> int | None:
        return self._backend.latest_epoch(kind, observed_only=observed_only)

    # --- Transfers ---

    def store_transfers(self, account_tag: str, transfers: Iterable[TransferRecord]) -> int:
        batch = list(transfers)
        for t in batch:
            t.account_tag = account_tag
        return self._backend.upsert_transfers(account_tag, batch)

    def get_transfers(self, account_tag: str | None = None) -> list[TransferRecord]:
        """
        Stored transfers, newest first. With no account_tag, records seen from
        several accounts collapse to one per natural key.
        """
        rows = self._backend.get_transfers(account_tag)
        if account_tag is not None:
            return rows
        seen: set[tuple[str, str, str, int]] = set()
        out: list[TransferRecord] = []
        for t in rows:
            if t.natural_key in seen:
                continue
            seen.add(t.natural_key)
            out.append(t)
        return out

    # --- Cursors ---

    def get_cursor(self, account_tag: str) -> int:
        """
        Highest slot already scanned for account_tag: the larger of the stored
        progress and the newest stored transfer. 0 when never scanned.
        """
        progress = self._backend.get_account_progress(account_tag)
        from_progress = progress.highest_slot if progress else 0
        from_transfers = self._backend.max_transfer_slot(account_tag) or 0
        return max(from_progress, from_transfers)

    def set_cursor(self, account_tag: str, highest_slot: int) -> int:
        """Advance the cursor monotonically. Returns the stored value."""
        return self._backend.advance_account_progress(account_tag, highest_slot)

    def stats(self) -> CacheStats:
        return self._backend.stats()


def get_ledger_store(path: str | Path | None = None) -> LedgerStore:
    """
    Return a LedgerStore backed by SQLite, schema ensured.

    path: SQLite file; default resolves LEDGER_DB_PATH (see config.env).
    """
    if path is None:
        from validator_ledger.config.env import get_db_path

        path = get_db_path()
    store = LedgerStore(SQLiteBackend(path))
    store.ensure_schema()
    return store
