"""
Domain models for ledger entities.

Per-epoch facts (inflation rewards, block production fees, MEV commission,
vote costs), native SOL transfers and per-account scan cursors. No ORM
coupling; the SQLite layer maps rows to these dataclasses.

Every fact carries a RecordState. A row in the store is either OBSERVED (real
data) or CONFIRMED_EMPTY (both sources checked, nothing there; amounts are
zero). An epoch with no row at all has not been checked yet.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Union

from validator_ledger.core.epochs import epoch_to_date, lamports_to_sol


class FactKind(str, Enum):
    """Epoch-keyed fact types; each has its own table."""

    REWARDS = "rewards"
    LEADER_FEES = "leader_fees"
    MEV = "mev"
    VOTE_COSTS = "vote_costs"


class RecordState(str, Enum):
    OBSERVED = "observed"
    CONFIRMED_EMPTY = "confirmed_empty"


class SourceTag(str, Enum):
    """Provenance of a vote cost figure."""

    PRIMARY = "primary"
    SECONDARY = "secondary"
    ESTIMATED = "estimated"


@dataclass
class RewardFact:
    """Inflation (staking) commission earned by the vote account for one epoch."""

    epoch: int
    amount_lamports: int
    commission: int
    """Commission percent in effect when the reward was paid."""
    effective_slot: int
    date: str = ""
    state: RecordState = RecordState.OBSERVED

    def __post_init__(self) -> None:
        if not self.date:
            self.date = epoch_to_date(self.epoch)

    @property
    def amount_sol(self) -> float:
        return lamports_to_sol(self.amount_lamports)

    @property
    def is_negative(self) -> bool:
        return self.state is RecordState.CONFIRMED_EMPTY

    @classmethod
    def negative(cls, epoch: int) -> "RewardFact":
        return cls(epoch=epoch, amount_lamports=0, commission=0, effective_slot=0,
                   state=RecordState.CONFIRMED_EMPTY)


@dataclass
class ProductionFeeFact:
    """Block production fees earned by the identity as leader in one epoch."""

    epoch: int
    leader_slots: int
    """Slots assigned in the leader schedule."""
    blocks_produced: int
    total_fees_lamports: int
    date: str = ""
    state: RecordState = RecordState.OBSERVED

    def __post_init__(self) -> None:
        if not self.date:
            self.date = epoch_to_date(self.epoch)
        if self.blocks_produced > self.leader_slots:
            raise ValueError(
                f"epoch {self.epoch}: blocks_produced {self.blocks_produced} exceeds leader_slots {self.leader_slots}"
            )

    @property
    def skipped_slots(self) -> int:
        return self.leader_slots - self.blocks_produced

    @property
    def total_fees_sol(self) -> float:
        return lamports_to_sol(self.total_fees_lamports)

    @property
    def is_negative(self) -> bool:
        return self.state is RecordState.CONFIRMED_EMPTY

    @classmethod
    def negative(cls, epoch: int) -> "ProductionFeeFact":
        return cls(epoch=epoch, leader_slots=0, blocks_produced=0, total_fees_lamports=0,
                   state=RecordState.CONFIRMED_EMPTY)


@dataclass
class CommissionClaimFact:
    """MEV tips for one epoch and the validator's commission share of them."""

    epoch: int
    gross_lamports: int
    commission_lamports: int
    commission_bps: int = 0
    date: str = ""
    state: RecordState = RecordState.OBSERVED

    def __post_init__(self) -> None:
        if not self.date:
            self.date = epoch_to_date(self.epoch)

    @property
    def commission_sol(self) -> float:
        return lamports_to_sol(self.commission_lamports)

    @property
    def is_negative(self) -> bool:
        return self.state is RecordState.CONFIRMED_EMPTY

    @classmethod
    def negative(cls, epoch: int) -> "CommissionClaimFact":
        return cls(epoch=epoch, gross_lamports=0, commission_lamports=0,
                   state=RecordState.CONFIRMED_EMPTY)


@dataclass
class TransactionCostFact:
    """Vote transaction fees paid by the identity in one epoch."""

    epoch: int
    vote_count: int
    total_fee_lamports: int
    source_tag: SourceTag = SourceTag.SECONDARY
    date: str = ""
    state: RecordState = RecordState.OBSERVED

    def __post_init__(self) -> None:
        if not self.date:
            self.date = epoch_to_date(self.epoch)
        self.source_tag = SourceTag(self.source_tag)

    @property
    def total_fee_sol(self) -> float:
        return lamports_to_sol(self.total_fee_lamports)

    @property
    def is_negative(self) -> bool:
        return self.state is RecordState.CONFIRMED_EMPTY

    @classmethod
    def negative(cls, epoch: int) -> "TransactionCostFact":
        return cls(epoch=epoch, vote_count=0, total_fee_lamports=0,
                   source_tag=SourceTag.SECONDARY, state=RecordState.CONFIRMED_EMPTY)


EpochFact = Union[RewardFact, ProductionFeeFact, CommissionClaimFact, TransactionCostFact]

FACT_TYPES: dict[FactKind, type] = {
    FactKind.REWARDS: RewardFact,
    FactKind.LEADER_FEES: ProductionFeeFact,
    FactKind.MEV: CommissionClaimFact,
    FactKind.VOTE_COSTS: TransactionCostFact,
}


def negative_fact(kind: FactKind, epoch: int) -> EpochFact:
    """Zero-valued confirmed-empty fact of the given kind."""
    return FACT_TYPES[kind].negative(epoch)


@dataclass
class TransferRecord:
    """
    One native SOL balance movement between two addresses.

    A transaction can yield several records. The same record can be seen from
    two tracked accounts' histories (stored once per account_tag); global
    reads collapse them by natural_key.
    """

    signature: str
    slot: int
    from_address: str
    to_address: str
    amount_lamports: int
    timestamp: int | None = None
    date: str | None = None
    from_label: str = ""
    to_label: str = ""
    from_category: str = "unknown"
    to_category: str = "unknown"
    account_tag: str = ""

    @property
    def natural_key(self) -> tuple[str, str, str, int]:
        return (self.signature, self.from_address, self.to_address, self.amount_lamports)

    @property
    def amount_sol(self) -> float:
        return lamports_to_sol(self.amount_lamports)


@dataclass
class AccountCursor:
    account_tag: str
    highest_slot: int
    """Newest slot already scanned for this account (0 = never scanned)."""
    updated_at: str | None = None


@dataclass
class CacheStats:
    """Row counts per table; negatives counted separately."""

    facts: dict[str, int] = field(default_factory=dict)
    negatives: dict[str, int] = field(default_factory=dict)
    transfers: int = 0
    cursors: dict[str, int] = field(default_factory=dict)
