"""
Configuration: .env loading and typed validator settings.
"""

from validator_ledger.config.settings import LedgerSettings, get_settings

__all__ = ["LedgerSettings", "get_settings"]
