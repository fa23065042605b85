"""
structlog setup for the ledger.

Events are snake_case names plus keyword fields, for example

    logger.warning("volatile_epoch_not_stored", fact_kind="rewards", epoch=905)

With LOG_FORMAT=json (the default) each event is written to stderr as one JSON
line whose "event" key is renamed to "event_type"; stdout stays free for the
CLI's own output. Any other LOG_FORMAT switches to structlog's console renderer.

This module must not import from validator_ledger: the config and database
layers log during their own import.
"""

from __future__ import annotations

import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

import structlog

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = os.getenv("LOG_FORMAT", "json").strip().lower()

ACCOUNT_LOGGER = "validator_ledger.accounts"


def _level_value(level: int | str | None) -> int:
    if isinstance(level, int):
        return level
    return getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO)


LOG_LEVEL_VALUE = _level_value(LOG_LEVEL)


def _add_timestamp(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    # caller-supplied timestamps win
    event_dict.setdefault("timestamp", datetime.now(timezone.utc).isoformat())
    return event_dict


def _normalize_event(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """JSON lines carry the event name as event_type."""
    if "event" in event_dict and "event_type" not in event_dict:
        event_dict["event_type"] = event_dict.pop("event")
    return event_dict


def _tail(fmt: str) -> list[Any]:
    if fmt == "json":
        return [_normalize_event, structlog.processors.JSONRenderer()]
    return [structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())]


def configure_structlog(log_format: str | None = None, level: int | str | None = None) -> None:
    """(Re)configure structlog; runs once on import with the environment defaults."""
    fmt = (log_format or LOG_FORMAT).strip().lower()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            _add_timestamp,
            *_tail(fmt),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(_level_value(level)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


if not structlog.is_configured():
    configure_structlog()


def get_logger(name: str) -> structlog.BoundLogger:
    """Module logger; every event carries logger=name."""
    return structlog.get_logger(name).bind(logger=name)


def bind_account(account_tag: str) -> structlog.BoundLogger:
    """
    Logger for one tracked account's history scan.

    account_tag (withdraw_authority, personal_wallet, sfdp_reimbursement) rides
    along on every event so a scan can be followed with a single filter.
    """
    return get_logger(ACCOUNT_LOGGER).bind(account_tag=account_tag)
