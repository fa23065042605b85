"""
Read-only address label lookup.

AddressBook is built once at startup from the known-address table plus the
validator's own addresses, then passed to whatever needs labels. It has one
query method, lookup(address), and no side effects.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Mapping

from validator_ledger.core.constants import SFDP_REIMBURSEMENT


class AddressCategory(str, Enum):
    SOLANA_FOUNDATION = "solana_foundation"
    JITO_MEV = "jito_mev"
    EXCHANGE = "exchange"
    VALIDATOR_SELF = "validator_self"
    PERSONAL_WALLET = "personal_wallet"
    SYSTEM_PROGRAM = "system_program"
    STAKE_PROGRAM = "stake_program"
    VOTE_PROGRAM = "vote_program"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class AddressLabel:
    category: AddressCategory
    name: str


# (address, category, display name)
KNOWN_ADDRESSES: tuple[tuple[str, AddressCategory, str], ...] = (
    # Solana Foundation
    ("mpa4abUkjQoAvPzREkh5Mo75hZhPFQ2FSH6w7dWKuQ5", AddressCategory.SOLANA_FOUNDATION, "Solana Foundation"),
    ("7K8DVxtNJGnMtUY1CQJT5jcs8sFGSZTDiG7kowvFpECh", AddressCategory.SOLANA_FOUNDATION, "Solana Foundation Stake Authority"),
    ("DRpbCBMxVnDK7maPM5tGv6MvB3v1sRMC86PZ8okm21hy", AddressCategory.SOLANA_FOUNDATION, "SF Delegation Program"),
    ("4ZJhPQAgUseCsWhKvJLTmmRRUV74fdoTpQLNfKoHtFSP", AddressCategory.SOLANA_FOUNDATION, "Solana Foundation Operations"),
    (SFDP_REIMBURSEMENT, AddressCategory.SOLANA_FOUNDATION, "SFDP Vote Reimbursement"),
    # Jito
    ("T1pyyaTNZsKv2WcRAB8oVnk93mLJw2XzjtVYqCsaHqt", AddressCategory.JITO_MEV, "Jito Tip Payment Program"),
    ("4R3gSG8BpU4t19KYj8CfnbtRpnT8gtk4dvTHxVRwc2r7", AddressCategory.JITO_MEV, "Jito Tip Distribution Program"),
    ("8F4jGUmxF36vQ6yabnsxX6AQVXdKBhs8kGSUuRKSg8Xt", AddressCategory.JITO_MEV, "Jito Merkle Root Upload Authority"),
    ("96gYZGLnJYVFmbjzopPSU6QiEV5fGqZNyN9nmNhvrZU5", AddressCategory.JITO_MEV, "Jito Tip Account 1"),
    ("HFqU5x63VTqvQss8hp11i4wVV8bD44PvwucfZ2bU7gRe", AddressCategory.JITO_MEV, "Jito Tip Account 2"),
    ("Cw8CFyM9FkoMi7K7Crf6HNQqf4uEMzpKw6QNghXLvLkY", AddressCategory.JITO_MEV, "Jito Tip Account 3"),
    ("ADaUMid9yfUytqMBgopwjb2DTLSokTSzL1zt6iGPaS49", AddressCategory.JITO_MEV, "Jito Tip Account 4"),
    ("DfXygSm4jCyNCybVYYK6DwvWqjKee8pbDmJGcLWNDXjh", AddressCategory.JITO_MEV, "Jito Tip Account 5"),
    ("ADuUkR4vqLUMWXxW9gh6D6L8pMSawimctcNZ5pGwDcEt", AddressCategory.JITO_MEV, "Jito Tip Account 6"),
    ("DttWaMuVvTiduZRnguLF7jNxTgiMBZ1hyAumKUiL2KRL", AddressCategory.JITO_MEV, "Jito Tip Account 7"),
    ("3AVi9Tg9Uo68tJfuvoKvqKNWKkC5wPdSSdeBnizKZ6jT", AddressCategory.JITO_MEV, "Jito Tip Account 8"),
    # Exchanges
    ("H8sMJSCQxfKiFTCfDR3DUMLPwcRbM61LGFJ8N4dK3WjS", AddressCategory.EXCHANGE, "Coinbase"),
    ("2AQdpHJ2JpcEgPiATUXjQxA8QmafFegfQwSLWSprPicm", AddressCategory.EXCHANGE, "Binance"),
    ("5tzFkiKscXHK5ZXCGbXZxdw7gTjjD1mBwuoFbhUvuAi9", AddressCategory.EXCHANGE, "Kraken"),
    # Programs
    ("11111111111111111111111111111111", AddressCategory.SYSTEM_PROGRAM, "System Program"),
    ("Stake11111111111111111111111111111111111111", AddressCategory.STAKE_PROGRAM, "Stake Program"),
    ("Vote111111111111111111111111111111111111111", AddressCategory.VOTE_PROGRAM, "Vote Program"),
)


def short_address(address: str) -> str:
    """ABCD...wxyz display form for unlabelled addresses."""
    if len(address) <= 8:
        return address
    return f"{address[:4]}...{address[-4:]}"


class AddressBook:
    """Immutable address -> AddressLabel map with a shortened-address fallback."""

    def __init__(self, entries: Mapping[str, AddressLabel]) -> None:
        self._entries = dict(entries)

    def lookup(self, address: str) -> AddressLabel:
        label = self._entries.get(address)
        if label is not None:
            return label
        return AddressLabel(AddressCategory.UNKNOWN, short_address(address))

    def __contains__(self, address: object) -> bool:
        return address in self._entries

    def __len__(self) -> int:
        return len(self._entries)


def build_address_book(
    own_addresses: Mapping[str, str] | None = None,
    personal_wallets: Iterable[str] = (),
    extra: Iterable[tuple[str, AddressCategory, str]] = (),
) -> AddressBook:
    """
    Build the lookup from KNOWN_ADDRESSES plus the validator's addresses.

    own_addresses: address -> display name (vote account, identity, withdraw
    authority); labelled VALIDATOR_SELF. personal_wallets: labelled
    PERSONAL_WALLET. Validator entries override the static table.
    """
    entries: dict[str, AddressLabel] = {
        addr: AddressLabel(cat, name) for addr, cat, name in KNOWN_ADDRESSES
    }
    for addr, cat, name in extra:
        entries[addr] = AddressLabel(cat, name)
    for addr, name in (own_addresses or {}).items():
        entries[addr] = AddressLabel(AddressCategory.VALIDATOR_SELF, name)
    for addr in personal_wallets:
        entries[addr] = AddressLabel(AddressCategory.PERSONAL_WALLET, "Personal Wallet")
    return AddressBook(entries)
