"""
Jito Kobe API client (httpx): per-epoch MEV rewards for a vote account.

One call returns every epoch Jito knows about. 429 responses back off on the
long schedule (30s, 60s, 120s); other failures on the short one.
"""

from __future__ import annotations

import time
from typing import Callable

import httpx
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from validator_ledger.core.epochs import epoch_to_date
from validator_ledger.core.exceptions import RateLimitedError, UpstreamError
from validator_ledger.core.retry import RetryPolicy, call_with_retry, jito_policy
from validator_ledger.database.models import CommissionClaimFact
from validator_ledger.ledger_logging import get_logger

logger = get_logger(__name__)


class JitoEpochReward(BaseModel):
    """One element of GET /validators/{vote_account}."""

    epoch: int = Field(..., ge=0)
    mev_commission_bps: int = Field(0, ge=0, le=10_000, description="Validator MEV commission (1000 = 10%)")
    mev_rewards: int = Field(0, ge=0, description="Total tips for the epoch, lamports")
    priority_fee_commission_bps: int = 0
    priority_fee_rewards: int = 0

    def to_fact(self) -> CommissionClaimFact:
        return CommissionClaimFact(
            epoch=self.epoch,
            gross_lamports=self.mev_rewards,
            commission_lamports=self.mev_rewards * self.mev_commission_bps // 10_000,
            commission_bps=self.mev_commission_bps,
            date=epoch_to_date(self.epoch),
        )


class JitoClient:
    """Fetches every known epoch of MEV data for a vote account."""

    def __init__(
        self,
        api_base: str,
        *,
        client: httpx.Client | None = None,
        timeout_sec: float = 30.0,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._base = api_base.rstrip("/")
        self._client = client or httpx.Client(timeout=timeout_sec)
        self._policy = retry_policy or jito_policy()
        self._sleep = sleep

    def _get_once(self, vote_account: str) -> list[JitoEpochReward]:
        url = f"{self._base}/validators/{vote_account}"
        try:
            resp = self._client.get(url, headers={"Accept": "application/json"})
        except httpx.HTTPError as e:
            raise UpstreamError(f"jito request failed: {e}") from e
        if resp.status_code == 429:
            raise RateLimitedError("jito rate limited (429)")
        if resp.status_code >= 400:
            raise UpstreamError(f"jito returned status {resp.status_code}")
        try:
            payload = resp.json()
        except ValueError as e:
            raise UpstreamError("jito returned invalid JSON") from e
        if not isinstance(payload, list):
            raise UpstreamError("jito response is not a list")
        try:
            return [JitoEpochReward.model_validate(item) for item in payload]
        except PydanticValidationError as e:
            raise UpstreamError(f"jito response malformed: {e.error_count()} errors") from e

    def fetch_claims(self, vote_account: str) -> list[CommissionClaimFact]:
        """All epochs with MEV data for vote_account, ascending."""
        rows = call_with_retry(
            lambda: self._get_once(vote_account),
            self._policy,
            sleep=self._sleep,
            operation="jito_validator_rewards",
        )
        claims = sorted((r.to_fact() for r in rows), key=lambda c: c.epoch)
        logger.info("jito_claims_fetched", epochs=len(claims))
        return claims

    def close(self) -> None:
        self._client.close()
