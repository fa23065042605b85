"""
Test that ledger_logging can be imported without circular import and logger works.
"""

from __future__ import annotations


def test_logging_import():
    """Import get_logger from ledger_logging and use the logger."""
    from validator_ledger.ledger_logging import get_logger

    logger = get_logger("test")
    assert logger is not None
    for method in ("info", "debug", "warning", "error"):
        assert hasattr(logger, method)
    logger.info("test_message", key="value")


def test_event_renamed_and_timestamped():
    """JSON processors rename event and add a UTC timestamp."""
    from validator_ledger.ledger_logging.logger import _add_timestamp, _normalize_event

    out = _normalize_event(None, "info", _add_timestamp(None, "info", {"event": "run_summary", "epoch": 904}))
    assert out["event_type"] == "run_summary"
    assert "event" not in out
    assert out["timestamp"].endswith("+00:00")
    assert _add_timestamp(None, "info", {"timestamp": "fixed"})["timestamp"] == "fixed"


def test_bind_account_smoke():
    from validator_ledger.ledger_logging import bind_account

    bind_account("withdraw_authority").info("scan_started", cursor=0)


def test_level_value_accepts_names_and_numbers():
    import logging

    from validator_ledger.ledger_logging.logger import _level_value

    assert _level_value("debug") == logging.DEBUG
    assert _level_value(logging.ERROR) == logging.ERROR
    assert _level_value("not-a-level") == logging.INFO


def test_configure_console_format_then_restore():
    from validator_ledger.ledger_logging import configure_structlog, get_logger

    try:
        configure_structlog(log_format="console", level="WARNING")
        get_logger("test").warning("console_event", epoch=904)
    finally:
        configure_structlog()
