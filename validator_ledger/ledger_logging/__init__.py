"""
Structured logging for the validator ledger (structlog).

Import get_logger from here; configuration runs once on first import.
"""

from validator_ledger.ledger_logging.logger import bind_account, configure_structlog, get_logger

__all__ = ["bind_account", "configure_structlog", "get_logger"]
