"""
One reconciliation pass over every fact kind, then transfers.

Fact kinds are independent: a storage failure in one is recorded in its
report and the pass moves on. Transfer categorization runs last, after every
fact kind and account scan has been written.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from validator_ledger.config.settings import LedgerSettings
from validator_ledger.core.constants import (
    EPOCH_REWARD_DELAY_SEC,
    SFDP_REIMBURSEMENT,
    TAG_PERSONAL_WALLET,
    TAG_SFDP_REIMBURSEMENT,
    TAG_WITHDRAW_AUTHORITY,
)
from validator_ledger.core.exceptions import StorageError
from validator_ledger.core.retry import RateLimiter
from validator_ledger.database import LedgerStore
from validator_ledger.database.models import FactKind
from validator_ledger.labels import AddressBook, build_address_book
from validator_ledger.ledger_logging import get_logger
from validator_ledger.reconcile.cursor import AccountHistoryScanner
from validator_ledger.reconcile.epoch_facts import EpochFactReconciler, FactReport, MevReconciler
from validator_ledger.reconcile.transfers import TransferReconciler, TransferReport
from validator_ledger.reconcile.vote_costs import estimate_vote_cost
from validator_ledger.sources.dune import DuneClient
from validator_ledger.sources.jito import JitoClient
from validator_ledger.sources.primary import InflationRewardFetcher, LeaderFeeFetcher
from validator_ledger.sources.solana_rpc import SolanaRpcClient

logger = get_logger(__name__)


@dataclass
class LedgerSources:
    """Upstream clients for one run. dune is None when no secondary is configured."""

    rpc: SolanaRpcClient
    jito: JitoClient | None = None
    dune: DuneClient | None = None

    def close(self) -> None:
        self.rpc.close()
        if self.jito is not None:
            self.jito.close()
        if self.dune is not None:
            self.dune.close()


def build_sources(settings: LedgerSettings) -> LedgerSources:
    return LedgerSources(
        rpc=SolanaRpcClient(settings.rpc_url),
        jito=JitoClient(settings.jito_api_base),
        dune=(
            DuneClient(settings.dune_api_key, api_base=settings.dune_api_base)
            if settings.has_secondary_source
            else None
        ),
    )


def address_book_for(settings: LedgerSettings) -> AddressBook:
    return build_address_book(
        own_addresses={
            settings.vote_account: "Vote Account",
            settings.identity: "Validator Identity",
            settings.withdraw_authority: "Withdraw Authority",
        },
        personal_wallets=[settings.personal_wallet],
    )


def tracked_accounts(settings: LedgerSettings) -> list[tuple[str, str]]:
    return [
        (TAG_WITHDRAW_AUTHORITY, settings.withdraw_authority),
        (TAG_PERSONAL_WALLET, settings.personal_wallet),
        (TAG_SFDP_REIMBURSEMENT, SFDP_REIMBURSEMENT),
    ]


@dataclass
class RunReport:
    current_epoch: int
    start_epoch: int
    end_epoch: int
    facts: dict[FactKind, FactReport] = field(default_factory=dict)
    transfers: TransferReport | None = None
    transfer_error: str | None = None

    def summary(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "current_epoch": self.current_epoch,
            "range": [self.start_epoch, self.end_epoch],
            "facts": {k.value: r.summary() for k, r in self.facts.items()},
        }
        if self.transfers is not None:
            out["accounts"] = [s.summary() for s in self.transfers.scans]
            out["transfers"] = {
                "total": len(self.transfers.transfers),
                "secondary_attempted": self.transfers.secondary_attempted,
                "secondary_error": self.transfers.secondary_error,
                "by_class": self.transfers.categorized.counts(),
            }
        out["transfer_error"] = self.transfer_error
        return out


def _build_fact_reconcilers(
    settings: LedgerSettings,
    store: LedgerStore,
    sources: LedgerSources,
) -> dict[FactKind, EpochFactReconciler | MevReconciler]:
    dune = sources.dune
    return {
        FactKind.REWARDS: EpochFactReconciler(
            store,
            FactKind.REWARDS,
            primary=InflationRewardFetcher(sources.rpc, settings.vote_account),
            secondary=(
                (lambda d: dune.fetch_inflation_rewards(settings.vote_account, d, settings.commission_percent))
                if dune
                else None
            ),
            limiter=RateLimiter(EPOCH_REWARD_DELAY_SEC),
        ),
        FactKind.LEADER_FEES: EpochFactReconciler(
            store,
            FactKind.LEADER_FEES,
            primary=LeaderFeeFetcher(sources.rpc, settings.identity),
            secondary=(lambda d: dune.fetch_leader_fees(settings.identity, d)) if dune else None,
            limiter=RateLimiter(EPOCH_REWARD_DELAY_SEC),
        ),
        FactKind.MEV: MevReconciler(
            store,
            (lambda: sources.jito.fetch_claims(settings.vote_account)) if sources.jito else None,
        ),
        FactKind.VOTE_COSTS: EpochFactReconciler(
            store,
            FactKind.VOTE_COSTS,
            primary=None,
            secondary=(lambda d: dune.fetch_vote_costs(settings.identity, d)) if dune else None,
        ),
    }


def run_reconciliation(
    settings: LedgerSettings,
    store: LedgerStore,
    sources: LedgerSources,
    *,
    start_epoch: int | None = None,
    end_epoch: int | None = None,
    no_cache: bool = False,
    kinds: list[FactKind] | None = None,
    include_transfers: bool = True,
    address_book: AddressBook | None = None,
) -> RunReport:
    """
    Reconcile [start_epoch, end_epoch] (default: first reward epoch through the
    current epoch) for each requested fact kind, then scan transfers.
    """
    current_epoch = sources.rpc.get_current_epoch()
    start = settings.first_reward_epoch if start_epoch is None else start_epoch
    end = current_epoch if end_epoch is None else end_epoch
    report = RunReport(current_epoch=current_epoch, start_epoch=start, end_epoch=end)
    logger.info("run_started", current_epoch=current_epoch, start_epoch=start, end_epoch=end, no_cache=no_cache)

    reconcilers = _build_fact_reconcilers(settings, store, sources)
    for kind in kinds or list(FactKind):
        try:
            fact_report = reconcilers[kind].reconcile(start, end, current_epoch, no_cache=no_cache)
        except StorageError as e:
            logger.error("fact_reconcile_storage_failed", fact_kind=kind.value, error=str(e))
            fact_report = FactReport(kind=kind, start_epoch=start, end_epoch=end, error=str(e))
        if kind is FactKind.VOTE_COSTS:
            fact_report.estimated = [estimate_vote_cost(e) for e in fact_report.still_missing]
        report.facts[kind] = fact_report

    if include_transfers:
        book = address_book or address_book_for(settings)
        dune = sources.dune
        scanner = AccountHistoryScanner(sources.rpc, store, settings.relevant_addresses(), book)
        reconciler = TransferReconciler(
            store,
            scanner,
            book,
            settings.own_addresses(),
            secondary=(
                (lambda: dune.fetch_transfers(settings.relevant_addresses(), settings.bootstrap_date, book))
                if dune
                else None
            ),
        )
        try:
            report.transfers = reconciler.reconcile(tracked_accounts(settings), no_cache=no_cache)
        except StorageError as e:
            report.transfer_error = str(e)
            logger.error("transfer_reconcile_storage_failed", error=str(e))

    logger.info("run_summary", **report.summary())
    return report
