"""
Tests for gap resolution and the primary -> secondary fallback state machine,
including the 900-903 scenarios and the cache-hit and volatility properties.
"""

from __future__ import annotations

from validator_ledger.core.epochs import epoch_to_date
from validator_ledger.core.exceptions import SecondaryQueryError, StorageError, UpstreamError
from validator_ledger.database import FactKind, ProductionFeeFact, RecordState, RewardFact
from validator_ledger.reconcile.epoch_facts import EpochFactReconciler
from validator_ledger.reconcile.fallback import (
    FallbackOrchestrator,
    secondary_window_start,
    window_covers,
)
from validator_ledger.reconcile.gaps import resolve_gaps

import pytest


def _reward(epoch: int, lamports: int = 1_000_000) -> RewardFact:
    return RewardFact(epoch=epoch, amount_lamports=lamports, commission=5, effective_slot=epoch * 432_000)


def _reconciler(store, primary, secondary, no_wait, kind=FactKind.REWARDS):
    return EpochFactReconciler(store, kind, primary=primary, secondary=secondary, limiter=no_wait)


# --- Gap resolver ---


def test_gap_plan_splits_completed_and_live(store):
    store.store_fact(FactKind.REWARDS, _reward(901))
    plan = resolve_gaps(store, FactKind.REWARDS, 900, 905, current_epoch=904)
    assert plan.completed_end == 903
    assert plan.missing == [900, 902, 903]
    assert [f.epoch for f in plan.cached] == [901]
    assert plan.live_epoch == 904


def test_gap_plan_no_cache_treats_everything_as_missing(store):
    store.store_fact(FactKind.REWARDS, _reward(901))
    plan = resolve_gaps(store, FactKind.REWARDS, 900, 903, current_epoch=904, no_cache=True)
    assert plan.missing == [900, 901, 902, 903]
    assert plan.cached == []
    assert plan.live_epoch is None


def test_gap_plan_empty_when_start_after_completed_end(store):
    """A validator with no completed history yet has nothing to fetch."""
    plan = resolve_gaps(store, FactKind.REWARDS, 904, 904, current_epoch=904)
    assert plan.missing == []
    assert plan.cached == []
    assert plan.live_epoch == 904


# --- Scenarios ---


def test_primary_failure_without_secondary_leaves_epoch_missing(store, fake_fetcher, no_wait):
    """900-903 with 902 erroring and no secondary: three rows, 902 stays missing."""
    primary = fake_fetcher({900: _reward(900), 901: _reward(901), 902: UpstreamError("boom"), 903: _reward(903)})
    report = _reconciler(store, primary, None, no_wait).reconcile(900, 903, current_epoch=904)

    assert [f.epoch for f in store.get_facts(FactKind.REWARDS, 900, 903)] == [900, 901, 903]
    assert store.get_missing(FactKind.REWARDS, 900, 903) == [902]
    assert report.fetched == 3
    assert report.still_missing == [902]
    assert report.negative_cached == 0


def test_secondary_omission_negative_caches_epoch(store, fake_fetcher, fake_secondary, no_wait):
    """Same scenario with a secondary that has no row for 902: 902 becomes confirmed empty."""
    primary = fake_fetcher({900: _reward(900), 901: _reward(901), 902: UpstreamError("boom"), 903: _reward(903)})
    secondary = fake_secondary(facts=[_reward(900, lamports=7)])
    report = _reconciler(store, primary, secondary, no_wait).reconcile(900, 903, current_epoch=904)

    assert store.get_missing(FactKind.REWARDS, 900, 903) == []
    (row,) = store.get_facts(FactKind.REWARDS, 902, 902)
    assert row.state is RecordState.CONFIRMED_EMPTY
    assert row.amount_lamports == 0
    assert report.negative_cached == 1
    assert secondary.start_dates == [secondary_window_start([902])]
    # rows outside the failure set do not overwrite primary data
    assert store.get_facts(FactKind.REWARDS, 900, 900)[0].amount_lamports == 1_000_000


def test_secondary_row_fills_failed_epoch(store, fake_fetcher, fake_secondary, no_wait):
    primary = fake_fetcher({900: None, 901: _reward(901)})
    secondary = fake_secondary(facts=[_reward(900, lamports=42)])
    report = _reconciler(store, primary, secondary, no_wait).reconcile(900, 901, current_epoch=902)
    (row,) = store.get_facts(FactKind.REWARDS, 900, 900)
    assert row.state is RecordState.OBSERVED
    assert row.amount_lamports == 42
    assert report.filled_by_secondary == 1


def test_secondary_failure_never_negative_caches(store, fake_fetcher, fake_secondary, no_wait):
    primary = fake_fetcher({900: UpstreamError("down"), 901: None})
    secondary = fake_secondary(error=SecondaryQueryError("timed out"))
    report = _reconciler(store, primary, secondary, no_wait).reconcile(900, 901, current_epoch=902)

    assert store.get_missing(FactKind.REWARDS, 900, 901) == [900, 901]
    assert report.negative_cached == 0
    assert report.secondary_error == "timed out"


def test_cached_epochs_make_no_upstream_calls(store, fake_fetcher, fake_secondary, no_wait):
    primary = fake_fetcher({e: _reward(e) for e in range(900, 904)})
    secondary = fake_secondary()
    _reconciler(store, primary, secondary, no_wait).reconcile(900, 903, current_epoch=904)
    primary.calls.clear()

    report = _reconciler(store, primary, secondary, no_wait).reconcile(900, 903, current_epoch=904)
    assert primary.calls == []
    assert secondary.start_dates == []
    assert report.cached == 4
    assert report.fetched == 0


def test_negative_cached_epoch_is_not_refetched(store, fake_fetcher, fake_secondary, no_wait):
    primary = fake_fetcher({900: None})
    _reconciler(store, primary, fake_secondary(), no_wait).reconcile(900, 900, current_epoch=901)
    primary.calls.clear()
    _reconciler(store, primary, fake_secondary(), no_wait).reconcile(900, 900, current_epoch=901)
    assert primary.calls == []


def test_current_epoch_fetched_live_but_not_stored(store, fake_fetcher, no_wait):
    primary = fake_fetcher({903: _reward(903), 904: _reward(904, lamports=99)})
    report = _reconciler(store, primary, None, no_wait).reconcile(903, 904, current_epoch=904)
    assert primary.calls == [903, 904]
    assert report.live_fact.amount_lamports == 99
    assert store.get_facts(FactKind.REWARDS, 904, 904) == []


def test_no_cache_refetches_and_writes_back(store, fake_fetcher, no_wait):
    store.store_fact(FactKind.REWARDS, _reward(900, lamports=1))
    primary = fake_fetcher({900: _reward(900, lamports=2)})
    report = _reconciler(store, primary, None, no_wait).reconcile(900, 900, current_epoch=901, no_cache=True)
    assert primary.calls == [900]
    assert report.cached == 0
    assert store.get_facts(FactKind.REWARDS, 900, 900)[0].amount_lamports == 2


def test_epochs_processed_in_ascending_order(store, fake_fetcher, no_wait):
    primary = fake_fetcher({e: _reward(e) for e in range(900, 906)})
    store.store_fact(FactKind.REWARDS, _reward(902))
    _reconciler(store, primary, None, no_wait).reconcile(900, 905, current_epoch=906)
    assert primary.calls == [900, 901, 903, 904, 905]


def test_malformed_primary_payload_counts_as_failure(store, fake_fetcher, no_wait):
    primary = fake_fetcher({900: KeyError("amount")})
    report = _reconciler(store, primary, None, no_wait).reconcile(900, 900, current_epoch=901)
    assert report.still_missing == [900]


def test_leader_fee_invariant_holds_for_secondary_rows(store, fake_fetcher, fake_secondary, no_wait):
    secondary = fake_secondary(
        facts=[ProductionFeeFact(epoch=900, leader_slots=12, blocks_produced=12, total_fees_lamports=10)]
    )
    _reconciler(store, fake_fetcher({}), secondary, no_wait, kind=FactKind.LEADER_FEES).reconcile(
        900, 900, current_epoch=901
    )
    (row,) = store.get_facts(FactKind.LEADER_FEES, 900, 900)
    assert row.skipped_slots == row.leader_slots - row.blocks_produced == 0


def test_vote_costs_without_primary_go_straight_to_secondary(store, fake_secondary, no_wait):
    secondary = fake_secondary()
    report = _reconciler(store, None, secondary, no_wait, kind=FactKind.VOTE_COSTS).reconcile(
        900, 901, current_epoch=902
    )
    assert secondary.start_dates == [epoch_to_date(899)]
    assert report.negative_cached == 2


# --- Fallback orchestrator ---


def test_window_covers_every_later_epoch():
    start = secondary_window_start([902, 905, 910])
    assert start == epoch_to_date(901)
    for epoch in (902, 905, 910):
        assert window_covers(start, epoch)
    assert not window_covers(start, 899)


def test_fallback_with_empty_failure_set_does_nothing(store, fake_secondary):
    secondary = fake_secondary()
    outcome = FallbackOrchestrator(store, FactKind.REWARDS, secondary, current_epoch=904).resolve([])
    assert secondary.start_dates == []
    assert outcome.unresolved == []


def test_fallback_storage_failure_propagates(store, fake_secondary, monkeypatch):
    def broken(*args, **kwargs):
        raise StorageError("disk full")

    monkeypatch.setattr(store, "store_negative", broken)
    orchestrator = FallbackOrchestrator(store, FactKind.REWARDS, fake_secondary(), current_epoch=904)
    with pytest.raises(StorageError):
        orchestrator.resolve([902])
