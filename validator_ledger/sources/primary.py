"""
Primary fetchers: one epoch at a time from the chain.

Each fetcher answers fetch(epoch) with a fact, or None when the chain has
nothing for an epoch that should have something (an empty-but-expected
result). Errors propagate; the reconciler turns both into per-epoch
failures and hands them to the fallback.
"""

from __future__ import annotations

from typing import Protocol

from validator_ledger.core.constants import BLOCK_FETCH_DELAY_SEC
from validator_ledger.core.epochs import epoch_start_slot, epoch_to_date
from validator_ledger.core.exceptions import RpcError
from validator_ledger.core.retry import RateLimiter
from validator_ledger.database.models import EpochFact, ProductionFeeFact, RewardFact
from validator_ledger.ledger_logging import get_logger
from validator_ledger.sources.solana_rpc import SolanaRpcClient

logger = get_logger(__name__)


class EpochFetcher(Protocol):
    def fetch(self, epoch: int) -> EpochFact | None: ...


class InflationRewardFetcher:
    """getInflationReward for the vote account."""

    def __init__(self, rpc: SolanaRpcClient, vote_account: str) -> None:
        self._rpc = rpc
        self._vote_account = vote_account

    def fetch(self, epoch: int) -> RewardFact | None:
        reward = self._rpc.get_inflation_reward(self._vote_account, epoch)
        if not reward:
            return None
        return RewardFact(
            epoch=epoch,
            amount_lamports=int(reward.get("amount") or 0),
            commission=int(reward.get("commission") or 0),
            effective_slot=int(reward.get("effectiveSlot") or 0),
            date=epoch_to_date(epoch),
        )


class LeaderFeeFetcher:
    """
    Leader schedule plus one getBlock per assigned slot.

    A slot whose block is missing or unavailable (node error for that slot)
    counts as skipped. Transport failures abort the epoch.
    """

    def __init__(
        self,
        rpc: SolanaRpcClient,
        identity: str,
        *,
        limiter: RateLimiter | None = None,
    ) -> None:
        self._rpc = rpc
        self._identity = identity
        self._limiter = limiter or RateLimiter(BLOCK_FETCH_DELAY_SEC)

    def fetch(self, epoch: int) -> ProductionFeeFact | None:
        slots = self._rpc.get_leader_slots(self._identity, epoch_start_slot(epoch))
        if not slots:
            return None
        produced = 0
        total_fees = 0
        unavailable = 0
        for slot in slots:
            self._limiter.wait()
            try:
                fee = self._rpc.get_block_fee_reward(slot, self._identity)
            except RpcError as e:
                unavailable += 1
                logger.debug("block_unavailable", slot=slot, code=e.code)
                continue
            if fee is not None:
                produced += 1
                total_fees += fee
        logger.info(
            "leader_fees_fetched",
            epoch=epoch,
            leader_slots=len(slots),
            blocks_produced=produced,
            unavailable=unavailable,
            total_fees_lamports=total_fees,
        )
        return ProductionFeeFact(
            epoch=epoch,
            leader_slots=len(slots),
            blocks_produced=produced,
            total_fees_lamports=total_fees,
            date=epoch_to_date(epoch),
        )
