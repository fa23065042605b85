"""
Gap Resolver: split a requested epoch range into cached, missing and live.

Epochs below the current epoch are completed and cacheable. The current epoch
is volatile: it is fetched live and never written. Epochs beyond the current
one do not exist yet and are ignored.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from validator_ledger.database import LedgerStore
from validator_ledger.database.models import EpochFact, FactKind


@dataclass
class GapPlan:
    kind: FactKind
    start_epoch: int
    end_epoch: int
    current_epoch: int
    completed_end: int
    """min(end_epoch, current_epoch - 1); last epoch that may be cached."""
    no_cache: bool = False
    cached: list[EpochFact] = field(default_factory=list)
    missing: list[int] = field(default_factory=list)
    live_epoch: int | None = None
    """current_epoch when it falls inside the requested range."""

    @property
    def has_completed_range(self) -> bool:
        return self.start_epoch <= self.completed_end


def resolve_gaps(
    store: LedgerStore,
    kind: FactKind,
    start_epoch: int,
    end_epoch: int,
    current_epoch: int,
    *,
    no_cache: bool = False,
) -> GapPlan:
    """
    Compute what must be fetched for kind over [start_epoch, end_epoch].

    no_cache treats every completed epoch as missing (forced refresh; results
    are still written back). start_epoch > completed_end yields nothing to do.
    """
    completed_end = min(end_epoch, current_epoch - 1)
    plan = GapPlan(
        kind=kind,
        start_epoch=start_epoch,
        end_epoch=end_epoch,
        current_epoch=current_epoch,
        completed_end=completed_end,
        no_cache=no_cache,
        live_epoch=current_epoch if start_epoch <= current_epoch <= end_epoch else None,
    )
    if not plan.has_completed_range:
        return plan
    if no_cache:
        plan.missing = list(range(start_epoch, completed_end + 1))
        return plan
    plan.cached = store.get_facts(kind, start_epoch, completed_end)
    plan.missing = store.get_missing(kind, start_epoch, completed_end)
    return plan
