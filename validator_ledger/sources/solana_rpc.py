"""
Solana JSON-RPC client (requests).

Covers the calls the ledger needs: epoch info, inflation rewards, leader
schedule, block rewards, signature history and parsed transactions. HTTP 429
and transport errors are retried under a RetryPolicy; a JSON-RPC error object
is raised as RpcError without retry, since the node answered.
"""

from __future__ import annotations

import itertools
import time
from typing import Any, Callable

import requests

from validator_ledger.core.exceptions import RateLimitedError, RpcError, UpstreamError
from validator_ledger.core.retry import (
    ErrorClass,
    RetryPolicy,
    call_with_retry,
    classify_error,
    rpc_policy,
    transaction_policy,
)
from validator_ledger.ledger_logging import get_logger
from validator_ledger.sources.models import SignatureInfo

logger = get_logger(__name__)

REQUEST_TIMEOUT = 30


def _classify_rpc_failure(exc: BaseException) -> ErrorClass | None:
    if isinstance(exc, RpcError):
        return None
    return classify_error(exc)


class SolanaRpcClient:
    """Blocking JSON-RPC client; one instance per run."""

    def __init__(
        self,
        rpc_url: str,
        *,
        timeout_sec: float = REQUEST_TIMEOUT,
        session: requests.Session | None = None,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not rpc_url.strip():
            raise ValueError("rpc_url must be non-empty")
        self._url = rpc_url
        self._timeout = timeout_sec
        self._session = session or requests.Session()
        self._policy = retry_policy or rpc_policy()
        self._tx_policy = transaction_policy()
        self._sleep = sleep
        self._ids = itertools.count(1)

    def _post_once(self, method: str, params: list[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            r = self._session.post(self._url, json=payload, timeout=self._timeout)
        except requests.RequestException as e:
            raise UpstreamError(f"{method}: {e}") from e
        if r.status_code == 429:
            raise RateLimitedError(f"{method}: rate limited (429)")
        if r.status_code >= 400:
            raise UpstreamError(f"{method}: HTTP {r.status_code}")
        try:
            data = r.json()
        except ValueError as e:
            raise UpstreamError(f"{method}: invalid JSON response") from e
        err = data.get("error")
        if err:
            raise RpcError(err.get("code"), str(err.get("message", err)))
        return data.get("result")

    def call(self, method: str, params: list[Any], *, policy: RetryPolicy | None = None) -> Any:
        """Perform one JSON-RPC call with retry; return the result field."""
        return call_with_retry(
            lambda: self._post_once(method, params),
            policy or self._policy,
            sleep=self._sleep,
            classify=_classify_rpc_failure,
            operation=method,
        )

    # --- Epoch / rewards ---

    def get_epoch_info(self) -> dict[str, Any]:
        result = self.call("getEpochInfo", [{"commitment": "finalized"}])
        if not isinstance(result, dict) or "epoch" not in result:
            raise UpstreamError("getEpochInfo: malformed result")
        return result

    def get_current_epoch(self) -> int:
        return int(self.get_epoch_info()["epoch"])

    def get_inflation_reward(self, address: str, epoch: int) -> dict[str, Any] | None:
        """Inflation reward for address in epoch: {amount, commission, effectiveSlot, ...} or None."""
        result = self.call("getInflationReward", [[address], {"epoch": epoch}])
        if not isinstance(result, list) or not result:
            return None
        return result[0]

    # --- Leader schedule / blocks ---

    def get_leader_slots(self, identity: str, epoch_start_slot: int) -> list[int]:
        """
        Absolute slots assigned to identity in the epoch starting at epoch_start_slot.
        Empty list when the identity has no leader slots.
        """
        result = self.call("getLeaderSchedule", [epoch_start_slot + 1, {"identity": identity}])
        if not result:
            return []
        offsets = result.get(identity) or []
        return [epoch_start_slot + int(o) for o in offsets]

    def get_block_fee_reward(self, slot: int, identity: str) -> int | None:
        """
        Fee reward (lamports) paid to identity in the block at slot.
        None when the block carries no fee reward for identity.
        """
        block = self.call(
            "getBlock",
            [
                slot,
                {
                    "encoding": "json",
                    "transactionDetails": "none",
                    "rewards": True,
                    "maxSupportedTransactionVersion": 0,
                    "commitment": "finalized",
                },
            ],
        )
        if not block:
            return None
        for reward in block.get("rewards") or []:
            if (
                reward.get("pubkey") == identity
                and reward.get("rewardType") == "Fee"
                and int(reward.get("lamports") or 0) > 0
            ):
                return int(reward["lamports"])
        return None

    # --- History ---

    def get_signatures(
        self,
        address: str,
        *,
        before: str | None = None,
        limit: int = 100,
    ) -> list[SignatureInfo]:
        """One page of getSignaturesForAddress, newest first."""
        opts: dict[str, Any] = {"limit": limit, "commitment": "finalized"}
        if before is not None:
            opts["before"] = before
        result = self.call("getSignaturesForAddress", [address, opts])
        if not isinstance(result, list):
            raise UpstreamError("getSignaturesForAddress: malformed result")
        try:
            return [SignatureInfo.from_rpc_item(item) for item in result]
        except (KeyError, TypeError, ValueError) as e:
            raise UpstreamError(f"getSignaturesForAddress: malformed entry: {e!r}") from e

    def get_transaction(self, signature: str) -> dict[str, Any] | None:
        return self.call(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "jsonParsed",
                    "maxSupportedTransactionVersion": 0,
                    "commitment": "finalized",
                },
            ],
            policy=self._tx_policy,
        )

    def close(self) -> None:
        self._session.close()
