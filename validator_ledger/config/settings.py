"""
Validator settings: addresses, commission, history bounds and provider endpoints.

Built from environment (see env.py) by get_settings(). Every address is checked
with solders before anything uses it, so a typo fails at startup instead of
producing an empty query result that looks like "no data".
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from solders.pubkey import Pubkey

from validator_ledger.config.env import (
    get_db_path,
    get_dune_api_base,
    get_dune_api_key,
    get_jito_api_base,
    get_rpc_url,
    load_ledger_env,
)
from validator_ledger.core.exceptions import ConfigError, ValidationError
from validator_ledger.core.epochs import validate_date


def validate_address(value: str) -> str:
    """Return value if it is a valid base58 public key; raise ValidationError otherwise."""
    candidate = (value or "").strip()
    if not candidate:
        raise ValidationError("address must be non-empty")
    try:
        Pubkey.from_string(candidate)
    except ValueError as e:
        raise ValidationError(f"Invalid Solana address: {candidate!r}") from e
    return candidate


@dataclass
class LedgerSettings:
    """Everything a reconciliation run needs to know about the validator."""

    vote_account: str
    identity: str
    withdraw_authority: str
    personal_wallet: str
    commission_percent: int
    """Inflation commission (0-100); also applied to secondary-source rewards."""
    first_reward_epoch: int
    """Earliest epoch with inflation rewards; requests start here by default."""
    bootstrap_date: str
    """YYYY-MM-DD; secondary transfer history is queried from this date."""
    sfdp_acceptance_date: str | None = None
    rpc_url: str = ""
    dune_api_key: str | None = None
    dune_api_base: str = ""
    jito_api_base: str = ""
    db_path: Path = field(default_factory=get_db_path)

    def __post_init__(self) -> None:
        for name in ("vote_account", "identity", "withdraw_authority", "personal_wallet"):
            try:
                setattr(self, name, validate_address(getattr(self, name)))
            except ValidationError as e:
                raise ConfigError(name, str(e)) from e
        if not 0 <= self.commission_percent <= 100:
            raise ConfigError("commission_percent", "must be between 0 and 100")
        if self.first_reward_epoch < 0:
            raise ConfigError("first_reward_epoch", "must be non-negative")
        for name in ("bootstrap_date", "sfdp_acceptance_date"):
            value = getattr(self, name)
            if value is None:
                continue
            try:
                validate_date(value)
            except ValidationError as e:
                raise ConfigError(name, str(e)) from e

    def own_addresses(self) -> frozenset[str]:
        """Vote account, identity and withdraw authority."""
        return frozenset((self.vote_account, self.identity, self.withdraw_authority))

    def relevant_addresses(self) -> frozenset[str]:
        """Own addresses plus the personal wallet."""
        return self.own_addresses() | {self.personal_wallet}

    def is_our_account(self, address: str) -> bool:
        return address in self.own_addresses()

    def is_relevant_account(self, address: str) -> bool:
        return address in self.relevant_addresses()

    @property
    def has_secondary_source(self) -> bool:
        return bool(self.dune_api_key)


def _require(name: str) -> str:
    value = (os.getenv(name) or "").strip()
    if not value:
        raise ConfigError(name, "is required")
    return value


def _require_int(name: str) -> int:
    raw = _require(name)
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(name, f"must be an integer, got {raw!r}") from e


def get_settings() -> LedgerSettings:
    """
    Build LedgerSettings from the environment (.env loaded first).

    Required: VALIDATOR_VOTE_ACCOUNT, VALIDATOR_IDENTITY, VALIDATOR_WITHDRAW_AUTHORITY,
    VALIDATOR_PERSONAL_WALLET, VALIDATOR_COMMISSION_PERCENT, VALIDATOR_FIRST_REWARD_EPOCH,
    VALIDATOR_BOOTSTRAP_DATE. Optional: VALIDATOR_SFDP_ACCEPTANCE_DATE.
    Raises ConfigError naming the first bad variable.
    """
    load_ledger_env()
    return LedgerSettings(
        vote_account=_require("VALIDATOR_VOTE_ACCOUNT"),
        identity=_require("VALIDATOR_IDENTITY"),
        withdraw_authority=_require("VALIDATOR_WITHDRAW_AUTHORITY"),
        personal_wallet=_require("VALIDATOR_PERSONAL_WALLET"),
        commission_percent=_require_int("VALIDATOR_COMMISSION_PERCENT"),
        first_reward_epoch=_require_int("VALIDATOR_FIRST_REWARD_EPOCH"),
        bootstrap_date=_require("VALIDATOR_BOOTSTRAP_DATE"),
        sfdp_acceptance_date=(os.getenv("VALIDATOR_SFDP_ACCEPTANCE_DATE") or "").strip() or None,
        rpc_url=get_rpc_url(),
        dune_api_key=get_dune_api_key(),
        dune_api_base=get_dune_api_base(),
        jito_api_base=get_jito_api_base(),
        db_path=get_db_path(),
    )
