"""
Fallback Orchestrator: one secondary bulk query for every epoch the primary
pass could not fill.

Outcomes per failed epoch:
- filled: the bulk response has a row for it; written as a normal fact.
- negative-cached: the query succeeded, its date window covers the epoch,
  and it has no row; written as a confirmed-empty record.
- unresolved: no secondary configured, the query failed, or the window
  does not provably cover the epoch; nothing written, retried next run.

The bulk source is queried by date, and epoch dates are extrapolated, so the
window starts one epoch before the earliest failure.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Iterable

from validator_ledger.core.epochs import epoch_to_date
from validator_ledger.core.exceptions import UpstreamError, ValidationError
from validator_ledger.database import LedgerStore
from validator_ledger.database.models import EpochFact, FactKind
from validator_ledger.ledger_logging import get_logger

logger = get_logger(__name__)

# Epochs of slack between the window start and the earliest failed epoch
COVERAGE_MARGIN_EPOCHS = 1

SecondaryQuery = Callable[[str], list[EpochFact]]
"""start_date (YYYY-MM-DD) -> facts for every epoch with data on or after it."""


def secondary_window_start(failed_epochs: Iterable[int]) -> str:
    """Start date of the bulk query covering failed_epochs."""
    return epoch_to_date(max(min(failed_epochs) - COVERAGE_MARGIN_EPOCHS, 0))


def window_covers(window_start_date: str, epoch: int) -> bool:
    """True when an open-ended query from window_start_date includes epoch."""
    return epoch_to_date(epoch) >= window_start_date


@dataclass
class FallbackOutcome:
    failed: list[int] = field(default_factory=list)
    filled: list[int] = field(default_factory=list)
    negative_cached: list[int] = field(default_factory=list)
    unresolved: list[int] = field(default_factory=list)
    secondary_attempted: bool = False
    secondary_error: str | None = None
    window_start_date: str | None = None


class FallbackOrchestrator:
    """Resolves a primary failure set for one fact kind against a secondary source."""

    def __init__(
        self,
        store: LedgerStore,
        kind: FactKind,
        secondary: SecondaryQuery | None,
        *,
        current_epoch: int,
    ) -> None:
        self._store = store
        self._kind = kind
        self._secondary = secondary
        self._current_epoch = current_epoch

    def resolve(self, failed_epochs: Iterable[int]) -> FallbackOutcome:
        failed = sorted(set(failed_epochs))
        outcome = FallbackOutcome(failed=failed)
        if not failed:
            return outcome

        if self._secondary is None:
            outcome.unresolved = failed
            logger.warning(
                "secondary_not_configured",
                fact_kind=self._kind.value,
                unresolved=failed,
            )
            return outcome

        start_date = secondary_window_start(failed)
        outcome.window_start_date = start_date
        outcome.secondary_attempted = True
        logger.info(
            "secondary_query_started",
            fact_kind=self._kind.value,
            failed=failed,
            start_date=start_date,
        )
        try:
            facts = self._secondary(start_date)
        except (UpstreamError, ValidationError) as e:
            outcome.secondary_error = str(e)
            outcome.unresolved = failed
            logger.warning(
                "secondary_query_failed",
                fact_kind=self._kind.value,
                unresolved=failed,
                error=str(e),
            )
            return outcome

        by_epoch = {f.epoch: f for f in facts}
        failed_set = set(failed)
        filled = [by_epoch[e] for e in failed if e in by_epoch]
        # StorageError propagates: the batch rolled back, the caller stops this kind
        self._store.store_facts(self._kind, filled, current_epoch=self._current_epoch)
        outcome.filled = [f.epoch for f in filled if f.epoch < self._current_epoch]

        absent = [e for e in failed if e not in by_epoch]
        provable = [
            e for e in absent
            if window_covers(start_date, e) and e < self._current_epoch
        ]
        outcome.unresolved = [e for e in absent if e not in provable]
        if provable:
            self._store.store_negative(self._kind, provable, current_epoch=self._current_epoch)
            outcome.negative_cached = provable
            logger.info(
                "negative_cached",
                fact_kind=self._kind.value,
                epochs=provable,
                start_date=start_date,
            )
        if outcome.unresolved:
            logger.warning(
                "secondary_window_not_covering",
                fact_kind=self._kind.value,
                epochs=outcome.unresolved,
                start_date=start_date,
            )
        ignored = sorted(set(by_epoch) - failed_set)
        logger.info(
            "secondary_query_applied",
            fact_kind=self._kind.value,
            filled=outcome.filled,
            negative_cached=outcome.negative_cached,
            rows_outside_failure_set=len(ignored),
        )
        return outcome
