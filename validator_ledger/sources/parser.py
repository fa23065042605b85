"""
Transaction parser: getTransaction (jsonParsed) payloads to TransferRecords.

Transfers are inferred from balance deltas rather than instructions, so
stake withdrawals, vote account withdrawals and program-driven payouts are
all caught. For each relevant account whose balance moved by at least
MIN_TRANSFER_LAMPORTS, the counterparty is the first other account whose
balance moved the opposite way. Purely structural; no classification here.
"""

from __future__ import annotations

from typing import Any, Collection

from validator_ledger.core.constants import MIN_TRANSFER_LAMPORTS
from validator_ledger.core.epochs import timestamp_to_date
from validator_ledger.database.models import TransferRecord
from validator_ledger.labels import AddressBook


class TransactionParseError(ValueError):
    """Payload shape not understood (missing meta, unresolvable keys, length mismatch)."""


def _get_account_keys(message: dict[str, Any], meta: dict[str, Any]) -> list[str]:
    """
    Resolve accountKeys to base58 strings (json and jsonParsed encodings).
    For versioned transactions, appends meta.loadedAddresses (writable + readonly).
    """
    keys = message.get("accountKeys") or message.get("staticAccountKeys") or []
    out: list[str] = []
    for k in keys:
        if isinstance(k, str):
            out.append(k)
        elif isinstance(k, dict) and k.get("pubkey"):
            out.append(str(k["pubkey"]))
        else:
            raise TransactionParseError(f"unrecognised account key entry: {k!r}")
    loaded = meta.get("loadedAddresses") or {}
    for role in ("writable", "readonly"):
        for addr in loaded.get(role) or []:
            out.append(str(addr))
    return out


def extract_transfers(
    tx: dict[str, Any],
    signature: str,
    relevant_addresses: Collection[str],
    address_book: AddressBook,
) -> list[TransferRecord]:
    """
    Extract SOL transfers touching relevant_addresses from one getTransaction result.

    Returns [] for failed transactions and for transactions with no significant
    movement on a relevant account. Raises TransactionParseError when the
    payload cannot be interpreted.
    """
    if not isinstance(tx, dict):
        raise TransactionParseError("transaction result is not an object")
    meta = tx.get("meta")
    if not isinstance(meta, dict):
        raise TransactionParseError("transaction has no meta")
    if meta.get("err") is not None:
        return []
    body = tx.get("transaction")
    if not isinstance(body, dict):
        # base58/base64 encodings arrive as [data, encoding]
        raise TransactionParseError("transaction body is not jsonParsed")
    message = body.get("message")
    if not isinstance(message, dict):
        raise TransactionParseError("transaction has no message")

    try:
        account_keys = _get_account_keys(message, meta)
        pre = meta.get("preBalances") or []
        post = meta.get("postBalances") or []
        n = min(len(account_keys), len(pre), len(post))
        slot = int(tx.get("slot") or 0)
        timestamp = tx.get("blockTime")
        date = timestamp_to_date(timestamp)
        deltas = [int(post[i]) - int(pre[i]) for i in range(n)]
    except (AttributeError, TypeError, ValueError, OverflowError, OSError) as e:
        raise TransactionParseError(f"malformed transaction payload: {e}") from e
    if n == 0:
        raise TransactionParseError("no balances to compare")

    transfers: list[TransferRecord] = []
    seen: set[tuple[str, str, int]] = set()
    for i in range(n):
        account = account_keys[i]
        diff = deltas[i]
        if account not in relevant_addresses or abs(diff) < MIN_TRANSFER_LAMPORTS:
            continue
        for j in range(n):
            if i == j:
                continue
            other = deltas[j]
            if (diff > 0 and other < 0) or (diff < 0 and other > 0):
                if diff > 0:
                    sender, receiver, amount = account_keys[j], account, diff
                else:
                    sender, receiver, amount = account, account_keys[j], -diff
                # both sides relevant: the same movement is seen from each end
                if (sender, receiver, amount) in seen:
                    break
                seen.add((sender, receiver, amount))
                from_label = address_book.lookup(sender)
                to_label = address_book.lookup(receiver)
                transfers.append(
                    TransferRecord(
                        signature=signature,
                        slot=slot,
                        from_address=sender,
                        to_address=receiver,
                        amount_lamports=amount,
                        timestamp=timestamp,
                        date=date,
                        from_label=from_label.name,
                        to_label=to_label.name,
                        from_category=from_label.category.value,
                        to_category=to_label.category.value,
                    )
                )
                break
    return transfers
