"""
Environment variable loading for the validator ledger.

- SOLANA_RPC_URL: RPC endpoint (takes precedence)
- HELIUS_API_KEY: Helius API key, used to build the mainnet RPC URL when SOLANA_RPC_URL is unset
- DUNE_API_KEY: optional; without it there is no secondary (bulk) source
- JITO_API_BASE: override for the Jito Kobe API base URL
- LEDGER_DB_PATH: SQLite file (default data/validator_ledger.db under the project root)
- Loads .env from project root when available.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

from validator_ledger.core.constants import DUNE_API_BASE, JITO_API_BASE
from validator_ledger.ledger_logging import get_logger

logger = get_logger(__name__)

# Project root: config is validator_ledger/config/, root is 2 levels up
_CONFIG_DIR = Path(__file__).resolve().parent
_PACKAGE_DIR = _CONFIG_DIR.parent
_ROOT = _PACKAGE_DIR.parent
_ENV_PATH = _ROOT / ".env"

MAINNET_RPC_URL = "https://api.mainnet-beta.solana.com"
HELIUS_MAINNET_URL_TEMPLATE = "https://mainnet.helius-rpc.com/?api-key={key}"
DEFAULT_DB_PATH = _ROOT / "data" / "validator_ledger.db"


def load_ledger_env() -> None:
    """Load .env from project root. Existing environment variables win; safe to call repeatedly."""
    load_dotenv(_ENV_PATH, override=False)


def _getenv(name: str) -> str:
    return (os.getenv(name) or "").strip()


def get_rpc_url() -> str:
    """
    Resolve Solana RPC URL from env.
    Order: SOLANA_RPC_URL > HELIUS_API_KEY (mainnet) > public mainnet.
    """
    load_ledger_env()
    url = _getenv("SOLANA_RPC_URL")
    if url:
        return url
    key = _getenv("HELIUS_API_KEY")
    if key:
        return HELIUS_MAINNET_URL_TEMPLATE.format(key=key)
    return MAINNET_RPC_URL


def get_dune_api_key() -> str | None:
    """Return DUNE_API_KEY, or None when no secondary source is configured."""
    load_ledger_env()
    return _getenv("DUNE_API_KEY") or None


def get_dune_api_base() -> str:
    load_ledger_env()
    return (_getenv("DUNE_API_BASE") or DUNE_API_BASE).rstrip("/")


def get_jito_api_base() -> str:
    load_ledger_env()
    return (_getenv("JITO_API_BASE") or JITO_API_BASE).rstrip("/")


def get_db_path() -> Path:
    load_ledger_env()
    raw = _getenv("LEDGER_DB_PATH")
    return Path(raw) if raw else DEFAULT_DB_PATH


def mask_secret_url(url: str) -> str:
    """Hide the api-key query value in a provider URL."""
    if "api-key=" in url:
        return url.split("api-key=")[0] + "api-key=***"
    return url


def print_ledger_startup(script_name: str) -> None:
    """Log resolved endpoints at script start, with secrets masked."""
    logger.info(
        "ledger_startup",
        script=script_name,
        rpc=mask_secret_url(get_rpc_url()),
        jito=get_jito_api_base(),
        secondary_source="dune" if get_dune_api_key() else None,
        db_path=str(get_db_path()),
    )
