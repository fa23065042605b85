"""
Tests for transfer parsing, de-duplication, classification and the
transfer reconciler's bulk fallback.
"""

from __future__ import annotations

import pytest

from validator_ledger.core.constants import SFDP_REIMBURSEMENT
from validator_ledger.core.exceptions import SecondaryQueryError
from validator_ledger.database import TransferRecord
from validator_ledger.labels import AddressCategory
from validator_ledger.reconcile.cursor import AccountHistoryScanner
from validator_ledger.reconcile.transfers import (
    TransferClass,
    TransferReconciler,
    categorize_transfers,
    classify_transfer,
    dedupe_transfers,
)
from validator_ledger.sources.parser import TransactionParseError, extract_transfers

from conftest import IDENTITY, PERSONAL, STRANGER, VOTE, WITHDRAW, FakeRpc, make_tx

OWN = {VOTE, IDENTITY, WITHDRAW}
RELEVANT = OWN | {PERSONAL}
SOL = 1_000_000_000
JITO_TIP = "96gYZGLnJYVFmbjzopPSU6QiEV5fGqZNyN9nmNhvrZU5"
COINBASE = "H8sMJSCQxfKiFTCfDR3DUMLPwcRbM61LGFJ8N4dK3WjS"


def _t(sender: str, receiver: str, amount: int = 2 * SOL, sig: str = "sig") -> TransferRecord:
    return TransferRecord(signature=sig, slot=100, from_address=sender, to_address=receiver, amount_lamports=amount)


# --- Parser ---


def test_parser_pairs_relevant_delta_with_counterparty(address_book):
    tx = make_tx(500, [PERSONAL, WITHDRAW, STRANGER], [10 * SOL, 0, 7], [7 * SOL - 5_000, 3 * SOL, 7])
    (transfer,) = extract_transfers(tx, "sig1", {WITHDRAW}, address_book)
    assert transfer.from_address == PERSONAL
    assert transfer.to_address == WITHDRAW
    assert transfer.amount_lamports == 3 * SOL
    assert transfer.slot == 500
    assert transfer.date == "2025-12-24"
    assert transfer.from_category == AddressCategory.PERSONAL_WALLET.value
    assert transfer.to_label == "Withdraw Authority"


def test_parser_reports_movement_between_two_relevant_accounts_once(address_book):
    tx = make_tx(1, [PERSONAL, WITHDRAW], [10 * SOL, 0], [8 * SOL, 2 * SOL])
    assert len(extract_transfers(tx, "s", RELEVANT, address_book)) == 1


def test_parser_ignores_dust_and_failed_transactions(address_book):
    dust = make_tx(1, [STRANGER, WITHDRAW], [SOL, SOL], [SOL - 500_000, SOL + 500_000])
    assert extract_transfers(dust, "d", RELEVANT, address_book) == []
    failed = make_tx(1, [STRANGER, WITHDRAW], [SOL, 0], [0, SOL], err={"InstructionError": [0, "x"]})
    assert extract_transfers(failed, "f", RELEVANT, address_book) == []


def test_parser_labels_unknown_addresses(address_book):
    tx = make_tx(1, [WITHDRAW, STRANGER], [5 * SOL, 0], [3 * SOL, 2 * SOL])
    (transfer,) = extract_transfers(tx, "s", RELEVANT, address_book)
    assert transfer.to_label == f"{STRANGER[:4]}...{STRANGER[-4:]}"
    assert transfer.to_category == "unknown"


def test_parser_includes_loaded_addresses(address_book):
    tx = make_tx(1, [STRANGER], [5 * SOL, 0], [3 * SOL, 2 * SOL])
    tx["meta"]["loadedAddresses"] = {"writable": [WITHDRAW], "readonly": []}
    (transfer,) = extract_transfers(tx, "s", RELEVANT, address_book)
    assert transfer.to_address == WITHDRAW


def test_parser_rejects_unreadable_payload(address_book):
    with pytest.raises(TransactionParseError):
        extract_transfers({"meta": {"err": None}}, "s", RELEVANT, address_book)
    with pytest.raises(TransactionParseError):
        extract_transfers({"meta": None}, "s", RELEVANT, address_book)


def _mangled(field: str, value):
    tx = make_tx(1, [STRANGER, WITHDRAW], [5 * SOL, 0], [3 * SOL, 2 * SOL])
    if field == "transaction":
        tx["transaction"] = value
    else:
        tx["meta"][field] = value
    return tx


@pytest.mark.parametrize(
    "field, value",
    [
        ("transaction", ["AAAA", "base64"]),
        ("preBalances", [None, 0]),
        ("postBalances", ["lots", 2 * SOL]),
        ("preBalances", 7),
        ("loadedAddresses", ["not", "a", "map"]),
    ],
)
def test_parser_wraps_malformed_fields(address_book, field, value):
    with pytest.raises(TransactionParseError):
        extract_transfers(_mangled(field, value), "s", RELEVANT, address_book)


# --- Dedupe ---


def test_same_transfer_from_two_accounts_collapses():
    a = _t(PERSONAL, WITHDRAW, sig="x")
    b = _t(PERSONAL, WITHDRAW, sig="x")
    b.account_tag = "personal_wallet"
    assert len(dedupe_transfers([a, b])) == 1
    assert len(dedupe_transfers([a, _t(PERSONAL, WITHDRAW, amount=3 * SOL, sig="x")])) == 2


# --- Classification table ---


@pytest.mark.parametrize(
    "sender, receiver, expected",
    [
        (PERSONAL, WITHDRAW, TransferClass.SEEDING),
        (SFDP_REIMBURSEMENT, IDENTITY, TransferClass.PROGRAM_REIMBURSEMENT),
        (JITO_TIP, VOTE, TransferClass.INCENTIVE_DEPOSIT),
        (IDENTITY, WITHDRAW, TransferClass.INTERNAL_FUNDING),
        (WITHDRAW, COINBASE, TransferClass.WITHDRAWAL),
        (WITHDRAW, PERSONAL, TransferClass.WITHDRAWAL),
        (STRANGER, WITHDRAW, TransferClass.OTHER),
        (WITHDRAW, STRANGER, TransferClass.OTHER),
        (WITHDRAW, JITO_TIP, TransferClass.OTHER),
        (PERSONAL, COINBASE, TransferClass.OTHER),
    ],
)
def test_classification_policy(address_book, sender, receiver, expected):
    assert classify_transfer(_t(sender, receiver), OWN, address_book) is expected


def test_categorized_set_totals(address_book):
    result = categorize_transfers(
        [_t(PERSONAL, WITHDRAW, sig="a"), _t(PERSONAL, WITHDRAW, sig="a"), _t(WITHDRAW, COINBASE, sig="b")],
        OWN,
        address_book,
    )
    assert len(result) == 2
    assert result.counts()["seeding"] == 1
    assert result.total_lamports(TransferClass.WITHDRAWAL) == 2 * SOL
    assert result.totals_sol()["seeding"] == 2.0


# --- Reconciler ---


def _reconciler(store, rpc, address_book, no_wait, secondary=None):
    scanner = AccountHistoryScanner(rpc, store, RELEVANT, address_book, page_limiter=no_wait, tx_limiter=no_wait)
    return TransferReconciler(store, scanner, address_book, OWN, secondary=secondary)


def test_reconciler_merges_accounts_without_duplicates(store, address_book, no_wait):
    seed = make_tx(900, [PERSONAL, WITHDRAW], [10 * SOL, 0], [8 * SOL, 2 * SOL])
    rpc = FakeRpc(
        pages={WITHDRAW: [[("seed", 900)]], PERSONAL: [[("seed", 900)]]},
        transactions={"seed": seed},
    )
    report = _reconciler(store, rpc, address_book, no_wait).reconcile(
        [("withdraw_authority", WITHDRAW), ("personal_wallet", PERSONAL)]
    )
    assert len(store.get_transfers("withdraw_authority")) == 1
    assert len(store.get_transfers("personal_wallet")) == 1
    assert len(report.transfers) == 1
    assert report.categorized.counts()["seeding"] == 1
    assert report.secondary_attempted is False


def test_reconciler_uses_secondary_when_a_scan_fails(store, address_book, no_wait):
    rpc = FakeRpc(page_error={WITHDRAW: 0})
    bulk = [_t(PERSONAL, WITHDRAW, sig="bulk")]
    report = _reconciler(store, rpc, address_book, no_wait, secondary=lambda: bulk).reconcile(
        [("withdraw_authority", WITHDRAW)]
    )
    assert report.secondary_attempted is True
    assert report.secondary_transfers == 1
    assert [t.account_tag for t in store.get_transfers()] == ["dune"]


def test_reconciler_survives_secondary_failure(store, address_book, no_wait):
    def broken():
        raise SecondaryQueryError("timed out")

    report = _reconciler(store, FakeRpc(), address_book, no_wait, secondary=broken).reconcile(
        [("withdraw_authority", WITHDRAW)]
    )
    assert report.secondary_error == "timed out"
    assert report.transfers == []
