"""
Application-level exceptions.

The reconciliation engine sorts every failure into one of four outcomes:
transient upstream failure (retried, then counted against the epoch),
confirmed absence (secondary answered without the epoch), indeterminate
(no secondary, or the secondary failed) and local storage failure. Only the
last one is an exception that stops work, and only for one fact kind.
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for all validator ledger errors."""


class ConfigError(LedgerError):
    """Missing or invalid configuration value."""

    def __init__(self, variable: str, message: str) -> None:
        super().__init__(f"{variable}: {message}")
        self.variable = variable


class ValidationError(LedgerError):
    """Input refused before it reaches a query (bad date, bad address)."""


class StorageError(LedgerError):
    """Local store failure; the in-progress batch was rolled back."""


class UpstreamError(LedgerError):
    """A provider call failed (transport, HTTP status, malformed payload)."""


class RateLimitedError(UpstreamError):
    """Provider answered HTTP 429."""


class RpcError(UpstreamError):
    """JSON-RPC error object in the response body."""

    def __init__(self, code: int | None, message: str) -> None:
        super().__init__(f"RPC error {code}: {message}")
        self.code = code


class SecondaryQueryError(UpstreamError):
    """Bulk query failed, timed out, or finished in a failed state."""
