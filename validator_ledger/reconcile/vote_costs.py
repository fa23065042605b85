"""
Vote cost estimation and import.

Vote transactions have no cheap per-epoch primary source, so the secondary
bulk query is their main path. When nothing authoritative exists, an epoch
can be estimated at one vote per slot (minus a little) at the base fee. That
estimate is always tagged ESTIMATED and is persisted only on request, and
then only into epochs that have no row at all.
"""

from __future__ import annotations

import json
from pathlib import Path

from pydantic import BaseModel, Field, TypeAdapter, ValidationError as PydanticValidationError

from validator_ledger.core.constants import ESTIMATED_VOTES_PER_EPOCH, VOTE_FEE_LAMPORTS
from validator_ledger.core.epochs import epoch_to_date, sol_to_lamports
from validator_ledger.core.exceptions import ValidationError
from validator_ledger.database import LedgerStore
from validator_ledger.database.models import FactKind, SourceTag, TransactionCostFact
from validator_ledger.ledger_logging import get_logger

logger = get_logger(__name__)


def estimate_vote_cost(epoch: int) -> TransactionCostFact:
    return TransactionCostFact(
        epoch=epoch,
        vote_count=ESTIMATED_VOTES_PER_EPOCH,
        total_fee_lamports=ESTIMATED_VOTES_PER_EPOCH * VOTE_FEE_LAMPORTS,
        source_tag=SourceTag.ESTIMATED,
        date=epoch_to_date(epoch),
    )


def estimate_vote_costs(
    store: LedgerStore,
    start_epoch: int,
    end_epoch: int,
    *,
    current_epoch: int,
) -> list[TransactionCostFact]:
    """Persist estimates for completed epochs in range that have no row. Returns what was written."""
    completed_end = min(end_epoch, current_epoch - 1)
    missing = store.get_missing(FactKind.VOTE_COSTS, start_epoch, completed_end)
    estimates = [estimate_vote_cost(e) for e in missing]
    store.store_facts(FactKind.VOTE_COSTS, estimates, current_epoch=current_epoch)
    logger.info("vote_costs_estimated", epochs=missing)
    return estimates


class VoteCostExportRow(BaseModel):
    """One row of a vote cost JSON export: [{epoch, vote_count, total_fee_sol}, ...]."""

    epoch: int = Field(..., ge=0)
    vote_count: int = Field(..., ge=0)
    total_fee_sol: float = Field(..., ge=0)


_EXPORT_ADAPTER = TypeAdapter(list[VoteCostExportRow])


def import_vote_costs(
    store: LedgerStore,
    path: str | Path,
    *,
    current_epoch: int,
    source_tag: SourceTag = SourceTag.SECONDARY,
) -> int:
    """
    Load a JSON export into the store (upsert). Returns rows written.

    Rows for current_epoch or later are dropped; an open epoch is never persisted.
    """
    try:
        raw = json.loads(Path(path).read_text())
        rows = _EXPORT_ADAPTER.validate_python(raw)
    except (OSError, json.JSONDecodeError, PydanticValidationError) as e:
        raise ValidationError(f"cannot import vote costs from {path}: {e}") from e
    facts = [
        TransactionCostFact(
            epoch=r.epoch,
            vote_count=r.vote_count,
            total_fee_lamports=sol_to_lamports(r.total_fee_sol),
            source_tag=source_tag,
        )
        for r in rows
    ]
    written = store.store_facts(FactKind.VOTE_COSTS, facts, current_epoch=current_epoch)
    logger.info("vote_costs_imported", path=str(path), rows=written, source_tag=SourceTag(source_tag).value)
    return written
