"""
Dune Analytics client (httpx): the secondary bulk source.

Queries are date-bounded SQL over Dune's Solana tables, grouped per epoch
with FLOOR(block_slot / 432000). Execution is asynchronous upstream (submit,
then poll until completed, failed or timed out); callers see one blocking
call that returns rows or raises SecondaryQueryError.

Dates and addresses are validated before they are interpolated into SQL.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Callable, Iterable

import httpx
from pydantic import BaseModel, ValidationError as PydanticValidationError

from validator_ledger.config.settings import validate_address
from validator_ledger.core.constants import (
    DUNE_API_BASE,
    DUNE_INITIAL_DELAY_SEC,
    DUNE_POLL_INTERVAL_SEC,
    DUNE_TIMEOUT_SEC,
    MIN_TRANSFER_LAMPORTS,
    SLOTS_PER_EPOCH,
    WRAPPED_SOL_MINT,
)
from validator_ledger.core.epochs import epoch_to_date, sol_to_lamports, validate_date
from validator_ledger.core.exceptions import SecondaryQueryError
from validator_ledger.database.models import (
    ProductionFeeFact,
    RewardFact,
    SourceTag,
    TransactionCostFact,
    TransferRecord,
)
from validator_ledger.labels import AddressBook
from validator_ledger.ledger_logging import get_logger

logger = get_logger(__name__)

STATE_COMPLETED = "QUERY_STATE_COMPLETED"
STATE_FAILED = "QUERY_STATE_FAILED"


class DuneExecution(BaseModel):
    execution_id: str
    state: str | None = None


class DuneResultSet(BaseModel):
    rows: list[dict[str, Any]] = []


class DuneExecutionResults(BaseModel):
    execution_id: str | None = None
    state: str
    result: DuneResultSet | None = None
    error: Any = None


# -----------------------------------------------------------------------------
# Row helpers: Dune returns numbers as JSON numbers, sometimes as floats.
# -----------------------------------------------------------------------------


def _get_int(row: dict[str, Any], key: str) -> int:
    value = row.get(key)
    if value is None:
        raise SecondaryQueryError(f"missing field {key!r} in row")
    try:
        return max(int(float(value)), 0)
    except (TypeError, ValueError) as e:
        raise SecondaryQueryError(f"invalid {key!r}: {value!r}") from e


def _get_float(row: dict[str, Any], key: str) -> float:
    value = row.get(key)
    if value is None:
        raise SecondaryQueryError(f"missing field {key!r} in row")
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise SecondaryQueryError(f"invalid {key!r}: {value!r}") from e


def _get_str(row: dict[str, Any], key: str) -> str:
    value = row.get(key)
    if not isinstance(value, str) or not value:
        raise SecondaryQueryError(f"missing field {key!r} in row")
    return value


def _parse_timestamp(value: Any) -> int | None:
    """Dune timestamps look like '2025-12-16 00:00:12.000 UTC'."""
    if not isinstance(value, str) or not value:
        return None
    text = value.replace(" UTC", "").strip()
    for fmt in ("%Y-%m-%d %H:%M:%S.%f", "%Y-%m-%d %H:%M:%S", "%Y-%m-%dT%H:%M:%S.%fZ", "%Y-%m-%dT%H:%M:%SZ"):
        try:
            dt = datetime.strptime(text, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
        return int(dt.timestamp())
    return None


class DuneClient:
    """Blocking Dune SQL client with submit-and-poll execution."""

    def __init__(
        self,
        api_key: str,
        *,
        api_base: str = DUNE_API_BASE,
        client: httpx.Client | None = None,
        initial_delay_sec: float = DUNE_INITIAL_DELAY_SEC,
        poll_interval_sec: float = DUNE_POLL_INTERVAL_SEC,
        timeout_sec: float = DUNE_TIMEOUT_SEC,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not api_key.strip():
            raise ValueError("api_key must be non-empty")
        self._base = api_base.rstrip("/")
        self._client = client or httpx.Client(timeout=60.0)
        self._headers = {"X-Dune-Api-Key": api_key, "Content-Type": "application/json"}
        self._initial_delay = initial_delay_sec
        self._poll_interval = poll_interval_sec
        self._timeout = timeout_sec
        self._sleep = sleep
        self._clock = clock

    # --- Execution ---

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            resp = self._client.request(method, f"{self._base}{path}", headers=self._headers, **kwargs)
        except httpx.HTTPError as e:
            raise SecondaryQueryError(f"dune request failed: {e}") from e
        if resp.status_code >= 400:
            raise SecondaryQueryError(f"dune {path} returned status {resp.status_code}: {resp.text[:200]}")
        try:
            return resp.json()
        except ValueError as e:
            raise SecondaryQueryError(f"dune {path} returned invalid JSON") from e

    def execute_query(self, sql: str) -> list[dict[str, Any]]:
        """Submit sql, poll until completion, return result rows."""
        try:
            execution = DuneExecution.model_validate(
                self._request("POST", "/sql/execute", json={"sql": sql, "performance": "medium"})
            )
        except PydanticValidationError as e:
            raise SecondaryQueryError("dune execute response missing execution_id") from e
        logger.info("dune_query_submitted", execution_id=execution.execution_id)

        deadline = self._clock() + self._timeout
        self._sleep(self._initial_delay)
        while True:
            try:
                results = DuneExecutionResults.model_validate(
                    self._request("GET", f"/execution/{execution.execution_id}/results")
                )
            except PydanticValidationError as e:
                raise SecondaryQueryError("dune results response malformed") from e
            if results.state == STATE_COMPLETED:
                rows = results.result.rows if results.result else []
                logger.info("dune_query_completed", execution_id=execution.execution_id, rows=len(rows))
                return rows
            if results.state == STATE_FAILED:
                raise SecondaryQueryError(f"dune query failed: {results.error}")
            if self._clock() >= deadline:
                raise SecondaryQueryError(
                    f"dune query {execution.execution_id} timed out after {self._timeout:.0f}s"
                )
            self._sleep(self._poll_interval)

    # --- Fact queries ---

    def fetch_inflation_rewards(
        self,
        vote_account: str,
        start_date: str,
        commission_percent: int,
    ) -> list[RewardFact]:
        """Voting rewards credited to vote_account since start_date, one fact per epoch."""
        validate_date(start_date)
        validate_address(vote_account)
        sql = f"""
            SELECT
              FLOOR(block_slot / {SLOTS_PER_EPOCH}) AS epoch,
              SUM(lamports) / 1e9 AS reward_sol,
              MIN(block_slot) AS effective_slot
            FROM solana.rewards
            WHERE reward_type = 'Voting'
              AND recipient = '{vote_account}'
              AND block_date >= DATE '{start_date}'
            GROUP BY FLOOR(block_slot / {SLOTS_PER_EPOCH})
            ORDER BY epoch
        """
        facts = []
        for row in self.execute_query(sql):
            epoch = _get_int(row, "epoch")
            facts.append(
                RewardFact(
                    epoch=epoch,
                    amount_lamports=sol_to_lamports(_get_float(row, "reward_sol")),
                    commission=commission_percent,
                    effective_slot=_get_int(row, "effective_slot") if row.get("effective_slot") is not None else 0,
                    date=epoch_to_date(epoch),
                )
            )
        return facts

    def fetch_leader_fees(self, identity: str, start_date: str) -> list[ProductionFeeFact]:
        """
        Fee rewards to identity since start_date. Only produced blocks are
        visible here, so leader_slots = blocks_produced and nothing is skipped.
        """
        validate_date(start_date)
        validate_address(identity)
        sql = f"""
            SELECT
              FLOOR(block_slot / {SLOTS_PER_EPOCH}) AS epoch,
              COUNT(*) AS blocks_produced,
              SUM(lamports) / 1e9 AS total_fees_sol
            FROM solana.rewards
            WHERE reward_type = 'Fee'
              AND recipient = '{identity}'
              AND block_date >= DATE '{start_date}'
            GROUP BY FLOOR(block_slot / {SLOTS_PER_EPOCH})
            ORDER BY epoch
        """
        facts = []
        for row in self.execute_query(sql):
            epoch = _get_int(row, "epoch")
            blocks = _get_int(row, "blocks_produced")
            facts.append(
                ProductionFeeFact(
                    epoch=epoch,
                    leader_slots=blocks,
                    blocks_produced=blocks,
                    total_fees_lamports=sol_to_lamports(_get_float(row, "total_fees_sol")),
                    date=epoch_to_date(epoch),
                )
            )
        return facts

    def fetch_vote_costs(self, identity: str, start_date: str) -> list[TransactionCostFact]:
        """Vote transaction count and fees signed by identity since start_date."""
        validate_date(start_date)
        validate_address(identity)
        sql = f"""
            SELECT
              FLOOR(block_slot / {SLOTS_PER_EPOCH}) AS epoch,
              COUNT(*) AS vote_count,
              SUM(fee) / 1e9 AS total_fee_sol
            FROM solana.vote_transactions
            WHERE signer = '{identity}'
              AND block_date >= DATE '{start_date}'
            GROUP BY FLOOR(block_slot / {SLOTS_PER_EPOCH})
            ORDER BY epoch
        """
        facts = []
        for row in self.execute_query(sql):
            epoch = _get_int(row, "epoch")
            facts.append(
                TransactionCostFact(
                    epoch=epoch,
                    vote_count=_get_int(row, "vote_count"),
                    total_fee_lamports=sol_to_lamports(_get_float(row, "total_fee_sol")),
                    source_tag=SourceTag.SECONDARY,
                    date=epoch_to_date(epoch),
                )
            )
        return facts

    def fetch_transfers(
        self,
        addresses: Iterable[str],
        start_date: str,
        address_book: AddressBook,
    ) -> list[TransferRecord]:
        """Native SOL transfers touching any of addresses since start_date (dust dropped)."""
        validate_date(start_date)
        accounts = sorted({validate_address(a) for a in addresses})
        if not accounts:
            return []
        account_list = ", ".join(f"'{a}'" for a in accounts)
        sql = f"""
            SELECT
              block_date,
              block_slot,
              FLOOR(block_slot / {SLOTS_PER_EPOCH}) AS epoch,
              from_owner,
              to_owner,
              amount_display AS amount_sol,
              tx_id AS signature,
              block_time
            FROM tokens_solana.transfers
            WHERE token_mint_address = '{WRAPPED_SOL_MINT}'
              AND block_date >= DATE '{start_date}'
              AND (
                from_owner IN ({account_list})
                OR to_owner IN ({account_list})
              )
            ORDER BY block_slot DESC
            LIMIT 5000
        """
        transfers = []
        for row in self.execute_query(sql):
            amount = sol_to_lamports(_get_float(row, "amount_sol"))
            if amount < MIN_TRANSFER_LAMPORTS:
                continue
            sender = _get_str(row, "from_owner")
            receiver = _get_str(row, "to_owner")
            from_label = address_book.lookup(sender)
            to_label = address_book.lookup(receiver)
            block_date = row.get("block_date")
            transfers.append(
                TransferRecord(
                    signature=_get_str(row, "signature"),
                    slot=_get_int(row, "block_slot"),
                    from_address=sender,
                    to_address=receiver,
                    amount_lamports=amount,
                    timestamp=_parse_timestamp(row.get("block_time")),
                    date=str(block_date)[:10] if block_date else None,
                    from_label=from_label.name,
                    to_label=to_label.name,
                    from_category=from_label.category.value,
                    to_category=to_label.category.value,
                )
            )
        logger.info("dune_transfers_fetched", count=len(transfers), start_date=start_date)
        return transfers

    def close(self) -> None:
        self._client.close()
