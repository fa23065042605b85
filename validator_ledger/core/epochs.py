"""
Epoch, slot and calendar-date math plus lamport/SOL conversion.

Dates are approximate: epochs run ~2 days, so epoch_to_date extrapolates from
a fixed calibration point. Bulk queries filter by date, which is why the
fallback widens its window by one epoch.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timezone

from validator_ledger.core.constants import (
    EPOCH_DURATION_SECONDS,
    LAMPORTS_PER_SOL,
    REFERENCE_EPOCH,
    REFERENCE_EPOCH_TIMESTAMP,
    SLOTS_PER_EPOCH,
)
from validator_ledger.core.exceptions import ValidationError

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def epoch_start_timestamp(epoch: int) -> int:
    """Approximate unix timestamp at which an epoch began."""
    return REFERENCE_EPOCH_TIMESTAMP + (epoch - REFERENCE_EPOCH) * EPOCH_DURATION_SECONDS


def epoch_to_date(epoch: int) -> str:
    """Approximate start date of an epoch as YYYY-MM-DD (UTC)."""
    ts = epoch_start_timestamp(epoch)
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d")


def timestamp_to_date(ts: int | None) -> str | None:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d")


def epoch_start_slot(epoch: int) -> int:
    return epoch * SLOTS_PER_EPOCH


def slot_to_epoch(slot: int) -> int:
    return slot // SLOTS_PER_EPOCH


def lamports_to_sol(lamports: int) -> float:
    return lamports / LAMPORTS_PER_SOL


def sol_to_lamports(sol: float) -> int:
    """Convert SOL to lamports, rounding to the nearest lamport."""
    return int(round(sol * LAMPORTS_PER_SOL))


def validate_date(value: str) -> str:
    """
    Return value if it is a real YYYY-MM-DD date.

    Raises ValidationError otherwise. Used before any date reaches SQL text.
    """
    if not isinstance(value, str) or not _DATE_RE.match(value):
        raise ValidationError(f"Invalid date format (expected YYYY-MM-DD): {value!r}")
    try:
        date.fromisoformat(value)
    except ValueError as e:
        raise ValidationError(f"Invalid date: {value!r}") from e
    return value
