"""
Per-fact-kind reconciliation: cache check, primary pass, fallback, live epoch.

EpochFactReconciler drives one fact kind through the state machine
pending -> fetched | failed, one epoch at a time in ascending order, each
fetched fact written before the next call. The failure set then goes to the
FallbackOrchestrator. MevReconciler handles the MEV source, which returns
every epoch in one call and is refreshed only when the cache is stale.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable

from validator_ledger.core.constants import MEV_PUBLICATION_LAG_EPOCHS
from validator_ledger.core.exceptions import UpstreamError
from validator_ledger.core.retry import RateLimiter
from validator_ledger.database import LedgerStore
from validator_ledger.database.models import CommissionClaimFact, EpochFact, FactKind
from validator_ledger.ledger_logging import get_logger
from validator_ledger.reconcile.fallback import FallbackOrchestrator, FallbackOutcome, SecondaryQuery
from validator_ledger.reconcile.gaps import resolve_gaps
from validator_ledger.sources.primary import EpochFetcher

logger = get_logger(__name__)

# Malformed provider payloads surface as these; treated like upstream failures
_PAYLOAD_ERRORS = (KeyError, TypeError, ValueError)


@dataclass
class FactReport:
    """Counts for one fact kind in one run, plus the resulting facts."""

    kind: FactKind
    start_epoch: int
    end_epoch: int
    cached: int = 0
    fetched: int = 0
    filled_by_secondary: int = 0
    negative_cached: int = 0
    still_missing: list[int] = field(default_factory=list)
    live_epoch: int | None = None
    live_fact: EpochFact | None = None
    estimated: list[EpochFact] = field(default_factory=list)
    secondary_error: str | None = None
    error: str | None = None
    """Set when a storage failure stopped this kind."""
    facts: list[EpochFact] = field(default_factory=list)
    """Completed-range facts after reconciliation (observed only)."""

    def apply_fallback(self, outcome: FallbackOutcome) -> None:
        self.filled_by_secondary = len(outcome.filled)
        self.negative_cached = len(outcome.negative_cached)
        self.secondary_error = outcome.secondary_error

    def summary(self) -> dict:
        return {
            "fact_kind": self.kind.value,
            "range": [self.start_epoch, self.end_epoch],
            "cached": self.cached,
            "fetched": self.fetched,
            "filled_by_secondary": self.filled_by_secondary,
            "negative_cached": self.negative_cached,
            "still_missing": self.still_missing,
            "live_epoch": self.live_epoch,
            "estimated": len(self.estimated),
            "error": self.error,
        }


class EpochFactReconciler:
    """Reconciles one epoch-keyed fact kind with an optional primary and secondary."""

    def __init__(
        self,
        store: LedgerStore,
        kind: FactKind,
        *,
        primary: EpochFetcher | None,
        secondary: SecondaryQuery | None,
        limiter: RateLimiter | None = None,
    ) -> None:
        self._store = store
        self._kind = kind
        self._primary = primary
        self._secondary = secondary
        self._limiter = limiter or RateLimiter(0.0)

    def _fetch_primary(self, epoch: int) -> EpochFact | None:
        """One primary call under the rate limiter; failures are logged and return None."""
        self._limiter.wait()
        try:
            fact = self._primary.fetch(epoch)
        except (UpstreamError, *_PAYLOAD_ERRORS) as e:
            logger.warning(
                "primary_fetch_failed",
                fact_kind=self._kind.value,
                epoch=epoch,
                error=str(e),
            )
            return None
        if fact is None:
            logger.info("primary_empty", fact_kind=self._kind.value, epoch=epoch)
        return fact

    def reconcile(
        self,
        start_epoch: int,
        end_epoch: int,
        current_epoch: int,
        *,
        no_cache: bool = False,
    ) -> FactReport:
        plan = resolve_gaps(
            self._store, self._kind, start_epoch, end_epoch, current_epoch, no_cache=no_cache
        )
        report = FactReport(
            kind=self._kind,
            start_epoch=start_epoch,
            end_epoch=end_epoch,
            cached=len(plan.cached),
            live_epoch=plan.live_epoch,
        )
        logger.info(
            "fact_reconcile_started",
            fact_kind=self._kind.value,
            start_epoch=start_epoch,
            completed_end=plan.completed_end,
            cached=len(plan.cached),
            missing=len(plan.missing),
            no_cache=no_cache,
        )

        failed: list[int] = []
        if self._primary is None:
            failed = list(plan.missing)
        else:
            for epoch in plan.missing:
                fact = self._fetch_primary(epoch)
                if fact is None:
                    failed.append(epoch)
                    continue
                self._store.store_fact(self._kind, fact, current_epoch=current_epoch)
                report.fetched += 1

        outcome = FallbackOrchestrator(
            self._store, self._kind, self._secondary, current_epoch=current_epoch
        ).resolve(failed)
        report.apply_fallback(outcome)

        if plan.live_epoch is not None and self._primary is not None:
            report.live_fact = self._fetch_primary(plan.live_epoch)

        if plan.has_completed_range:
            report.still_missing = self._store.get_missing(self._kind, start_epoch, plan.completed_end)
            report.facts = self._store.get_facts(
                self._kind, start_epoch, plan.completed_end, include_negative=False
            )
        logger.info("fact_reconcile_finished", **report.summary())
        return report


class MevReconciler:
    """
    MEV commission: the source returns all epochs at once.

    The cache is stale only when it has nothing at or after
    completed_end - MEV_PUBLICATION_LAG_EPOCHS. Old epochs absent from the
    source are gaps in MEV participation, not reasons to refetch.
    """

    kind = FactKind.MEV

    def __init__(
        self,
        store: LedgerStore,
        fetch_all: Callable[[], list[CommissionClaimFact]] | None,
    ) -> None:
        self._store = store
        self._fetch_all = fetch_all

    def needs_refresh(self, start_epoch: int, completed_end: int) -> bool:
        if start_epoch > completed_end:
            return False
        cached = self._store.get_facts(self.kind, start_epoch, completed_end, include_negative=False)
        if not cached:
            return True
        latest = max(f.epoch for f in cached)
        return latest < completed_end - MEV_PUBLICATION_LAG_EPOCHS

    def reconcile(
        self,
        start_epoch: int,
        end_epoch: int,
        current_epoch: int,
        *,
        no_cache: bool = False,
    ) -> FactReport:
        completed_end = min(end_epoch, current_epoch - 1)
        live_epoch = current_epoch if start_epoch <= current_epoch <= end_epoch else None
        report = FactReport(kind=self.kind, start_epoch=start_epoch, end_epoch=end_epoch, live_epoch=live_epoch)
        cached_before = (
            self._store.get_facts(self.kind, start_epoch, completed_end)
            if start_epoch <= completed_end
            else []
        )
        report.cached = 0 if no_cache else len(cached_before)

        refresh = no_cache or self.needs_refresh(start_epoch, completed_end)
        if refresh and self._fetch_all is not None:
            try:
                claims = self._fetch_all()
            except (UpstreamError, *_PAYLOAD_ERRORS) as e:
                logger.warning("mev_fetch_failed", error=str(e))
                claims = []
            else:
                completed = [c for c in claims if c.epoch < current_epoch]
                cached_epochs = {f.epoch for f in cached_before}
                self._store.store_facts(self.kind, completed, current_epoch=current_epoch)
                in_range = [c for c in completed if start_epoch <= c.epoch <= completed_end]
                report.fetched = len(in_range) if no_cache else len(
                    [c for c in in_range if c.epoch not in cached_epochs]
                )
                if live_epoch is not None:
                    report.live_fact = next((c for c in claims if c.epoch == live_epoch), None)
        elif refresh:
            logger.warning("mev_source_not_configured")
        else:
            logger.info("mev_cache_fresh", start_epoch=start_epoch, completed_end=completed_end)

        if start_epoch <= completed_end:
            report.still_missing = self._store.get_missing(self.kind, start_epoch, completed_end)
            report.facts = self._store.get_facts(
                self.kind, start_epoch, completed_end, include_negative=False
            )
        logger.info("fact_reconcile_finished", **report.summary())
        return report
