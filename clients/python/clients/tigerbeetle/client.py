import os
import uuid
from typing import Iterable, Tuple
from tigerbeetle import (
    ClientSync,
    Account,
    Transfer,
    AccountFlags,
    CreateAccountResult,
    CreateTransferResult,
)

# Configuration
TIGERBEETLE_CLUSTER_ID = int(os.environ.get("TIGERBEETLE_CLUSTER_ID", "0"))
TIGERBEETLE_ADDRESS = os.environ.get("TIGERBEETLE_ADDRESS", "127.0.0.1:3000")

# Ledger constants
USD_LEDGER = 1

ACCOUNT_CODE_VENDOR_PENDING = 10
ACCOUNT_CODE_VENDOR_AVAILABLE = 11
ACCOUNT_CODE_VENDOR_PAID = 12
ACCOUNT_CODE_PLATFORM_SALES = 20
ACCOUNT_CODE_PLATFORM_FEES = 21

TRANSFER_CODE_SALE = 1             # platform sales -> vendor pending
TRANSFER_CODE_COMMISSION = 2       # platform sales -> platform fees
TRANSFER_CODE_SETTLEMENT = 3       # vendor pending -> vendor available
TRANSFER_CODE_PAYOUT = 4           # vendor available -> vendor paid
TRANSFER_CODE_PAYOUT_REVERSAL = 5  # vendor paid -> vendor available

PLATFORM_SALES_ACCOUNT_ID = 1
PLATFORM_FEES_ACCOUNT_ID = 2

_NAMESPACE = uuid.UUID("6f1c2d1e-3b8a-4d55-9a51-5f0c3c1a9e10")

_client_instance = None


def get_tigerbeetle_client() -> ClientSync:
    """Returns a singleton instance of the TigerBeetle ClientSync."""
    global _client_instance
    if _client_instance is None:
        _client_instance = ClientSync(
            cluster_id=TIGERBEETLE_CLUSTER_ID,
            replica_addresses=TIGERBEETLE_ADDRESS,
        )
    return _client_instance


def deterministic_id(*parts: str) -> int:
    """128-bit id derived from *parts*; replays map to the same id, which
    TigerBeetle reports as EXISTS instead of double-posting."""
    return uuid.uuid5(_NAMESPACE, ":".join(parts)).int


def vendor_account_ids(vendor_id: str) -> Tuple[int, int, int]:
    """(pending, available, paid) account ids for a vendor."""
    return (
        deterministic_id("vendor", vendor_id, "pending"),
        deterministic_id("vendor", vendor_id, "available"),
        deterministic_id("vendor", vendor_id, "paid"),
    )


def ensure_accounts(accounts: Iterable[Tuple[int, int]]) -> None:
    """Create ``(account_id, code)`` accounts (idempotent)."""
    client = get_tigerbeetle_client()
    results = client.create_accounts([
        Account(id=account_id, ledger=USD_LEDGER, code=code, flags=AccountFlags.NONE)
        for account_id, code in accounts
    ])
    for r in results:
        if r.result not in (CreateAccountResult.OK, CreateAccountResult.EXISTS):
            raise RuntimeError(f"Failed to create account: {r.result}")


def ensure_platform_accounts() -> None:
    ensure_accounts([
        (PLATFORM_SALES_ACCOUNT_ID, ACCOUNT_CODE_PLATFORM_SALES),
        (PLATFORM_FEES_ACCOUNT_ID, ACCOUNT_CODE_PLATFORM_FEES),
    ])


def ensure_vendor_accounts(vendor_id: str) -> Tuple[int, int, int]:
    pending_id, available_id, paid_id = vendor_account_ids(vendor_id)
    ensure_accounts([
        (pending_id, ACCOUNT_CODE_VENDOR_PENDING),
        (available_id, ACCOUNT_CODE_VENDOR_AVAILABLE),
        (paid_id, ACCOUNT_CODE_VENDOR_PAID),
    ])
    return pending_id, available_id, paid_id


def create_transfer(transfer_id: int, debit_id: int, credit_id: int, amount_cents: int, code: int) -> int:
    """Create a single transfer with a caller-chosen id. Returns the transfer id."""
    client = get_tigerbeetle_client()
    results = client.create_transfers([
        Transfer(
            id=transfer_id,
            debit_account_id=debit_id,
            credit_account_id=credit_id,
            amount=amount_cents,
            ledger=USD_LEDGER,
            code=code,
        ),
    ])
    for r in results:
        if r.result not in (CreateTransferResult.OK, CreateTransferResult.EXISTS):
            raise RuntimeError(f"Failed to create transfer: {r.result}")
    return transfer_id


def lookup_account_balance(account_id: int) -> dict:
    """Look up an account and return its balance fields."""
    client = get_tigerbeetle_client()
    accounts = client.lookup_accounts([account_id])
    if not accounts:
        return {}
    a = accounts[0]
    return {
        "debits_pending": a.debits_pending,
        "debits_posted": a.debits_posted,
        "credits_pending": a.credits_pending,
        "credits_posted": a.credits_posted,
    }
