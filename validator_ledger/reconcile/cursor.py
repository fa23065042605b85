"""
Account Cursor Tracker and the transaction-history fetch loop.

For each tracked account, signatures are paged backward from the newest.
Paging stops at the first signature at or below the stored cursor (older
history was scanned on an earlier run) or at the per-run signature cap. The
newest slot seen this run becomes the new cursor, whether or not any
transfer came out of it, so long stretches of irrelevant activity are not
rescanned. A transaction that cannot be fetched or parsed is counted and
skipped; a failed page aborts the account without moving its cursor.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Collection

from validator_ledger.core.constants import (
    MAX_SIGNATURES_PER_ACCOUNT,
    SIGNATURE_PAGE_DELAY_SEC,
    SIGNATURE_PAGE_SIZE,
    TRANSACTION_FETCH_DELAY_SEC,
)
from validator_ledger.core.exceptions import UpstreamError
from validator_ledger.core.retry import RateLimiter
from validator_ledger.database import LedgerStore
from validator_ledger.database.models import TransferRecord
from validator_ledger.labels import AddressBook
from validator_ledger.ledger_logging import bind_account
from validator_ledger.sources.models import SignatureInfo
from validator_ledger.sources.parser import TransactionParseError, extract_transfers
from validator_ledger.sources.solana_rpc import SolanaRpcClient


@dataclass
class AccountScanResult:
    account_tag: str
    address: str
    cursor_before: int
    cursor_after: int
    highest_position_seen: int | None = None
    """Slot of the first entry of the first page; None when the history is empty."""
    reached_cursor: bool = False
    pages: int = 0
    signatures_seen: int = 0
    transactions_scanned: int = 0
    parse_failures: int = 0
    fetch_failures: int = 0
    transfers: list[TransferRecord] = field(default_factory=list)
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    def summary(self) -> dict:
        return {
            "account_tag": self.account_tag,
            "pages": self.pages,
            "transactions_scanned": self.transactions_scanned,
            "transfers_found": len(self.transfers),
            "parse_failures": self.parse_failures,
            "fetch_failures": self.fetch_failures,
            "cursor_before": self.cursor_before,
            "cursor_after": self.cursor_after,
            "reached_cursor": self.reached_cursor,
            "error": self.error,
        }


class AccountHistoryScanner:
    """Incremental transfer scan of one account's history, gated by its cursor."""

    def __init__(
        self,
        rpc: SolanaRpcClient,
        store: LedgerStore,
        relevant_addresses: Collection[str],
        address_book: AddressBook,
        *,
        page_size: int = SIGNATURE_PAGE_SIZE,
        max_signatures: int = MAX_SIGNATURES_PER_ACCOUNT,
        page_limiter: RateLimiter | None = None,
        tx_limiter: RateLimiter | None = None,
    ) -> None:
        if not 1 <= page_size <= 1000:
            raise ValueError("page_size must be between 1 and 1000")
        self._rpc = rpc
        self._store = store
        self._relevant = frozenset(relevant_addresses)
        self._book = address_book
        self._page_size = page_size
        self._max_signatures = max_signatures
        self._page_limiter = page_limiter or RateLimiter(SIGNATURE_PAGE_DELAY_SEC)
        self._tx_limiter = tx_limiter or RateLimiter(TRANSACTION_FETCH_DELAY_SEC)

    def _collect_new_signatures(self, address: str, cursor: int, result: AccountScanResult) -> list[SignatureInfo]:
        """Page backward until the cursor, the cap, or the end of history."""
        new: list[SignatureInfo] = []
        before: str | None = None
        while result.signatures_seen < self._max_signatures:
            self._page_limiter.wait()
            page = self._rpc.get_signatures(address, before=before, limit=self._page_size)
            result.pages += 1
            if not page:
                break
            if result.highest_position_seen is None:
                result.highest_position_seen = page[0].slot
            for info in page:
                if info.slot <= cursor:
                    result.reached_cursor = True
                    break
                result.signatures_seen += 1
                if info.err is None:
                    new.append(info)
                if result.signatures_seen >= self._max_signatures:
                    break
            if result.reached_cursor or len(page) < self._page_size:
                break
            before = page[-1].signature
        return new

    def _extract(self, info: SignatureInfo, result: AccountScanResult, log) -> None:
        self._tx_limiter.wait()
        try:
            tx = self._rpc.get_transaction(info.signature)
        except UpstreamError as e:
            result.fetch_failures += 1
            log.warning("transaction_fetch_failed", signature=info.signature, error=str(e))
            return
        if tx is None:
            result.fetch_failures += 1
            log.debug("transaction_not_found", signature=info.signature)
            return
        result.transactions_scanned += 1
        try:
            result.transfers.extend(
                extract_transfers(tx, info.signature, self._relevant, self._book)
            )
        except TransactionParseError as e:
            result.parse_failures += 1
            log.debug("transaction_parse_failed", signature=info.signature, error=str(e))

    def scan(self, account_tag: str, address: str, *, no_cache: bool = False) -> AccountScanResult:
        """
        Scan address for new transfers, store them under account_tag and
        advance the cursor to max(old, newest slot seen).

        no_cache ignores the stored cursor while scanning; the stored cursor
        still only moves forward.
        """
        log = bind_account(account_tag)
        stored = self._store.get_cursor(account_tag)
        cursor = 0 if no_cache else stored
        result = AccountScanResult(
            account_tag=account_tag,
            address=address,
            cursor_before=stored,
            cursor_after=stored,
        )
        log.info("account_scan_started", address=address, cursor=cursor, no_cache=no_cache)
        try:
            signatures = self._collect_new_signatures(address, cursor, result)
        except UpstreamError as e:
            result.error = str(e)
            log.warning("account_scan_failed", pages=result.pages, error=str(e))
            return result

        if not result.reached_cursor and result.signatures_seen >= self._max_signatures:
            # the cursor still advances, so anything older than the cap is skipped
            log.warning(
                "scan_truncated",
                signatures_seen=result.signatures_seen,
                max_signatures=self._max_signatures,
                cursor=cursor,
            )

        for info in signatures:
            self._extract(info, result, log)

        self._store.store_transfers(account_tag, result.transfers)
        if result.highest_position_seen is not None:
            result.cursor_after = self._store.set_cursor(
                account_tag, max(stored, result.highest_position_seen)
            )
        log.info("account_scan_finished", **result.summary())
        return result
