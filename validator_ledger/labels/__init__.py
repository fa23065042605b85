"""
Address labels: category and display name for on-chain addresses.
"""

from validator_ledger.labels.address_book import (
    AddressBook,
    AddressCategory,
    AddressLabel,
    build_address_book,
)

__all__ = ["AddressBook", "AddressCategory", "AddressLabel", "build_address_book"]
