"""
Transfer Reconciler: merge per-account scans, de-duplicate, classify.

The same transfer can be observed from two tracked accounts' histories, or
from both the chain and the bulk source; (signature, from, to, amount)
collapses them. Classification depends only on direction relative to the
validator's own addresses and on the counterparty's label category:

    inbound  from personal wallet          -> seeding
    inbound  from foundation address       -> program_reimbursement
    inbound  from MEV/incentive address    -> incentive_deposit
    inbound  from another own address      -> internal_funding
    outbound to exchange or personal wallet -> withdrawal
    outbound to another own address        -> internal_funding
    anything else                          -> other
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Collection, Iterable

from validator_ledger.core.constants import TAG_SECONDARY
from validator_ledger.core.exceptions import UpstreamError, ValidationError
from validator_ledger.database import LedgerStore
from validator_ledger.database.models import TransferRecord
from validator_ledger.labels import AddressBook, AddressCategory
from validator_ledger.ledger_logging import get_logger
from validator_ledger.reconcile.cursor import AccountHistoryScanner, AccountScanResult

logger = get_logger(__name__)


class TransferClass(str, Enum):
    SEEDING = "seeding"
    PROGRAM_REIMBURSEMENT = "program_reimbursement"
    INCENTIVE_DEPOSIT = "incentive_deposit"
    INTERNAL_FUNDING = "internal_funding"
    WITHDRAWAL = "withdrawal"
    OTHER = "other"


_INBOUND: dict[AddressCategory, TransferClass] = {
    AddressCategory.PERSONAL_WALLET: TransferClass.SEEDING,
    AddressCategory.SOLANA_FOUNDATION: TransferClass.PROGRAM_REIMBURSEMENT,
    AddressCategory.JITO_MEV: TransferClass.INCENTIVE_DEPOSIT,
    AddressCategory.VALIDATOR_SELF: TransferClass.INTERNAL_FUNDING,
}

_OUTBOUND: dict[AddressCategory, TransferClass] = {
    AddressCategory.EXCHANGE: TransferClass.WITHDRAWAL,
    AddressCategory.PERSONAL_WALLET: TransferClass.WITHDRAWAL,
    AddressCategory.VALIDATOR_SELF: TransferClass.INTERNAL_FUNDING,
}


def dedupe_transfers(transfers: Iterable[TransferRecord]) -> list[TransferRecord]:
    """One record per natural key (first occurrence kept), newest slot first."""
    seen: dict[tuple[str, str, str, int], TransferRecord] = {}
    for t in transfers:
        seen.setdefault(t.natural_key, t)
    return sorted(seen.values(), key=lambda t: (-t.slot, t.signature))


def classify_transfer(
    transfer: TransferRecord,
    own_addresses: Collection[str],
    address_book: AddressBook,
) -> TransferClass:
    if transfer.to_address in own_addresses:
        category = address_book.lookup(transfer.from_address).category
        return _INBOUND.get(category, TransferClass.OTHER)
    if transfer.from_address in own_addresses:
        category = address_book.lookup(transfer.to_address).category
        return _OUTBOUND.get(category, TransferClass.OTHER)
    return TransferClass.OTHER


@dataclass
class CategorizedTransferSet:
    """Partition of de-duplicated transfers by TransferClass; derived, never stored."""

    groups: dict[TransferClass, list[TransferRecord]] = field(
        default_factory=lambda: {c: [] for c in TransferClass}
    )

    def __getitem__(self, cls: TransferClass) -> list[TransferRecord]:
        return self.groups[cls]

    def total_lamports(self, cls: TransferClass) -> int:
        return sum(t.amount_lamports for t in self.groups[cls])

    def totals_sol(self) -> dict[str, float]:
        return {c.value: self.total_lamports(c) / 1_000_000_000 for c in TransferClass}

    def counts(self) -> dict[str, int]:
        return {c.value: len(v) for c, v in self.groups.items()}

    def __len__(self) -> int:
        return sum(len(v) for v in self.groups.values())


def categorize_transfers(
    transfers: Iterable[TransferRecord],
    own_addresses: Collection[str],
    address_book: AddressBook,
) -> CategorizedTransferSet:
    result = CategorizedTransferSet()
    for t in dedupe_transfers(transfers):
        result.groups[classify_transfer(t, own_addresses, address_book)].append(t)
    return result


@dataclass
class TransferReport:
    scans: list[AccountScanResult] = field(default_factory=list)
    secondary_attempted: bool = False
    secondary_transfers: int = 0
    secondary_error: str | None = None
    transfers: list[TransferRecord] = field(default_factory=list)
    """All stored transfers after the run, de-duplicated."""
    categorized: CategorizedTransferSet = field(default_factory=CategorizedTransferSet)


class TransferReconciler:
    """Runs the per-account scans, the bulk fallback when needed, then categorizes."""

    def __init__(
        self,
        store: LedgerStore,
        scanner: AccountHistoryScanner,
        address_book: AddressBook,
        own_addresses: Collection[str],
        *,
        secondary: Callable[[], list[TransferRecord]] | None = None,
    ) -> None:
        self._store = store
        self._scanner = scanner
        self._book = address_book
        self._own = frozenset(own_addresses)
        self._secondary = secondary

    def _needs_secondary(self, scans: list[AccountScanResult]) -> bool:
        if any(s.failed or s.fetch_failures for s in scans):
            return True
        return not self._store.get_transfers()

    def reconcile(
        self,
        accounts: Iterable[tuple[str, str]],
        *,
        no_cache: bool = False,
    ) -> TransferReport:
        """accounts: (account_tag, address) pairs to scan."""
        report = TransferReport()
        for tag, address in accounts:
            report.scans.append(self._scanner.scan(tag, address, no_cache=no_cache))

        if self._needs_secondary(report.scans):
            if self._secondary is None:
                logger.warning(
                    "transfer_secondary_not_configured",
                    failed_accounts=[s.account_tag for s in report.scans if s.failed],
                )
            else:
                report.secondary_attempted = True
                try:
                    bulk = self._secondary()
                except (UpstreamError, ValidationError) as e:
                    report.secondary_error = str(e)
                    logger.warning("transfer_secondary_failed", error=str(e))
                else:
                    report.secondary_transfers = self._store.store_transfers(TAG_SECONDARY, bulk)
                    logger.info("transfer_secondary_applied", transfers=report.secondary_transfers)

        report.transfers = dedupe_transfers(self._store.get_transfers())
        report.categorized = categorize_transfers(report.transfers, self._own, self._book)
        logger.info(
            "transfers_categorized",
            total=len(report.transfers),
            **report.categorized.counts(),
        )
        return report
