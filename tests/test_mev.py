"""
Tests for MEV reconciliation: one call returns every epoch, so the cache is
refreshed only when it lacks recent epochs.
"""

from __future__ import annotations

from unittest.mock import MagicMock

from validator_ledger.core.exceptions import UpstreamError
from validator_ledger.database import CommissionClaimFact, FactKind
from validator_ledger.reconcile.epoch_facts import MevReconciler


def _claim(epoch: int, gross: int = 10_000_000_000, bps: int = 800) -> CommissionClaimFact:
    return CommissionClaimFact(
        epoch=epoch, gross_lamports=gross, commission_lamports=gross * bps // 10_000, commission_bps=bps
    )


def test_empty_cache_fetches_and_stores_completed_epochs(store):
    fetch = MagicMock(return_value=[_claim(900), _claim(901), _claim(903), _claim(904)])
    report = MevReconciler(store, fetch).reconcile(900, 904, current_epoch=904)
    fetch.assert_called_once()
    assert [f.epoch for f in store.get_facts(FactKind.MEV, 0, 10_000)] == [900, 901, 903]
    assert report.fetched == 3
    assert report.live_fact.epoch == 904
    # an old epoch absent from the source is a gap, not a failure
    assert report.still_missing == [902]


def test_recent_cache_skips_the_call(store):
    store.store_facts(FactKind.MEV, [_claim(900), _claim(902)])
    fetch = MagicMock(return_value=[])
    report = MevReconciler(store, fetch).reconcile(900, 904, current_epoch=904)
    fetch.assert_not_called()
    assert report.cached == 2


def test_old_gap_does_not_trigger_refetch(store):
    """Missing 901 is not a reason to call again while 903 is cached."""
    store.store_facts(FactKind.MEV, [_claim(900), _claim(903)])
    fetch = MagicMock(return_value=[])
    MevReconciler(store, fetch).reconcile(900, 903, current_epoch=904)
    fetch.assert_not_called()


def test_stale_cache_refetches(store):
    store.store_facts(FactKind.MEV, [_claim(900)])
    fetch = MagicMock(return_value=[_claim(900), _claim(901), _claim(902), _claim(903)])
    report = MevReconciler(store, fetch).reconcile(900, 903, current_epoch=904)
    fetch.assert_called_once()
    assert report.fetched == 3
    assert store.get_missing(FactKind.MEV, 900, 903) == []


def test_no_cache_always_refetches(store):
    store.store_facts(FactKind.MEV, [_claim(903)])
    fetch = MagicMock(return_value=[_claim(903, gross=5)])
    MevReconciler(store, fetch).reconcile(900, 903, current_epoch=904, no_cache=True)
    fetch.assert_called_once()
    assert store.get_facts(FactKind.MEV, 903, 903)[0].gross_lamports == 5


def test_fetch_failure_keeps_cache(store):
    store.store_facts(FactKind.MEV, [_claim(800)])
    fetch = MagicMock(side_effect=UpstreamError("jito down"))
    report = MevReconciler(store, fetch).reconcile(900, 903, current_epoch=904)
    assert report.fetched == 0
    assert report.still_missing == [900, 901, 902, 903]
    assert store.get_facts(FactKind.MEV, 800, 800)
