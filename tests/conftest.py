"""
Pytest fixtures for validator ledger tests. Uses a temporary SQLite store and
in-memory fakes for every upstream source; nothing touches the network or sleeps.
"""

from __future__ import annotations

from typing import Any, Callable

import pytest

from validator_ledger.config.settings import LedgerSettings
from validator_ledger.core.exceptions import UpstreamError
from validator_ledger.core.retry import RateLimiter
from validator_ledger.database import get_ledger_store
from validator_ledger.labels import build_address_book
from validator_ledger.sources.models import SignatureInfo

# Valid Solana pubkeys (base58, 32 bytes)
VOTE = "9QCfNuQuxct1Xk9ytFYgxc5fThmTzL4pHQnSjjrVUrka"
IDENTITY = "7F1WzVNQ1Qpurqxxdyv3UrFQR3uoNepULVW9A4bAJ5nZ"
WITHDRAW = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
PERSONAL = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
STRANGER = "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL"


@pytest.fixture
def store(tmp_path):
    """Fresh LedgerStore on a temporary SQLite file."""
    return get_ledger_store(tmp_path / "ledger.db")


@pytest.fixture
def settings(tmp_path):
    return LedgerSettings(
        vote_account=VOTE,
        identity=IDENTITY,
        withdraw_authority=WITHDRAW,
        personal_wallet=PERSONAL,
        commission_percent=5,
        first_reward_epoch=900,
        bootstrap_date="2025-12-01",
        rpc_url="http://rpc.invalid",
        db_path=tmp_path / "ledger.db",
    )


@pytest.fixture
def address_book():
    return build_address_book(
        own_addresses={VOTE: "Vote Account", IDENTITY: "Validator Identity", WITHDRAW: "Withdraw Authority"},
        personal_wallets=[PERSONAL],
    )


@pytest.fixture
def no_wait():
    """Rate limiter that never sleeps."""
    return RateLimiter(0.0, sleep=lambda _s: None)


class FakeFetcher:
    """
    Primary fetcher backed by a dict: epoch -> fact, None (empty) or an
    exception instance (raised). Records every epoch requested.
    """

    def __init__(self, results: dict[int, Any]) -> None:
        self.results = results
        self.calls: list[int] = []

    def fetch(self, epoch: int):
        self.calls.append(epoch)
        value = self.results.get(epoch)
        if isinstance(value, Exception):
            raise value
        return value


class FakeSecondary:
    """Bulk query stand-in: returns facts (or raises) and records start dates."""

    def __init__(self, facts: list[Any] | None = None, error: Exception | None = None) -> None:
        self.facts = facts or []
        self.error = error
        self.start_dates: list[str] = []

    def __call__(self, start_date: str):
        self.start_dates.append(start_date)
        if self.error is not None:
            raise self.error
        return list(self.facts)


class FakeRpc:
    """
    Signature history and transactions for the history scanner.

    pages: address -> list of pages (each a list of (signature, slot) or
    (signature, slot, err)). transactions: signature -> result dict, None, or
    an exception instance.
    """

    def __init__(
        self,
        pages: dict[str, list[list[tuple]]] | None = None,
        transactions: dict[str, Any] | None = None,
        page_error: dict[str, int] | None = None,
    ) -> None:
        self.pages = pages or {}
        self.transactions = transactions or {}
        self.page_error = page_error or {}
        self.signature_calls: list[tuple[str, str | None]] = []
        self.transaction_calls: list[str] = []

    def get_signatures(self, address: str, *, before: str | None = None, limit: int = 100):
        self.signature_calls.append((address, before))
        page_index = sum(1 for a, _ in self.signature_calls if a == address) - 1
        if self.page_error.get(address) == page_index:
            raise UpstreamError("page fetch failed")
        pages = self.pages.get(address, [])
        if page_index >= len(pages):
            return []
        return [
            SignatureInfo(signature=e[0], slot=e[1], err=e[2] if len(e) > 2 else None, block_time=None)
            for e in pages[page_index]
        ]

    def get_transaction(self, signature: str):
        self.transaction_calls.append(signature)
        value = self.transactions.get(signature)
        if isinstance(value, Exception):
            raise value
        return value


def make_tx(
    slot: int,
    keys: list[str],
    pre: list[int],
    post: list[int],
    *,
    block_time: int | None = 1_766_534_400,
    err: Any = None,
) -> dict[str, Any]:
    """Minimal jsonParsed getTransaction result."""
    return {
        "slot": slot,
        "blockTime": block_time,
        "meta": {"err": err, "preBalances": pre, "postBalances": post},
        "transaction": {
            "message": {"accountKeys": [{"pubkey": k, "signer": i == 0} for i, k in enumerate(keys)]}
        },
    }


@pytest.fixture
def fake_fetcher() -> Callable[[dict[int, Any]], FakeFetcher]:
    return FakeFetcher


@pytest.fixture
def fake_secondary() -> Callable[..., FakeSecondary]:
    return FakeSecondary
