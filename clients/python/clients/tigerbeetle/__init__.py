from .client import (
    get_tigerbeetle_client,
    USD_LEDGER,
    ACCOUNT_CODE_VENDOR_PENDING,
    ACCOUNT_CODE_VENDOR_AVAILABLE,
    ACCOUNT_CODE_VENDOR_PAID,
    ACCOUNT_CODE_PLATFORM_SALES,
    ACCOUNT_CODE_PLATFORM_FEES,
    TRANSFER_CODE_SALE,
    TRANSFER_CODE_COMMISSION,
    TRANSFER_CODE_SETTLEMENT,
    TRANSFER_CODE_PAYOUT,
    TRANSFER_CODE_PAYOUT_REVERSAL,
    PLATFORM_SALES_ACCOUNT_ID,
    PLATFORM_FEES_ACCOUNT_ID,
    deterministic_id,
    vendor_account_ids,
    ensure_accounts,
    ensure_platform_accounts,
    ensure_vendor_accounts,
    create_transfer,
    lookup_account_balance,
)

__all__ = [
    "get_tigerbeetle_client",
    "USD_LEDGER",
    "ACCOUNT_CODE_VENDOR_PENDING",
    "ACCOUNT_CODE_VENDOR_AVAILABLE",
    "ACCOUNT_CODE_VENDOR_PAID",
    "ACCOUNT_CODE_PLATFORM_SALES",
    "ACCOUNT_CODE_PLATFORM_FEES",
    "TRANSFER_CODE_SALE",
    "TRANSFER_CODE_COMMISSION",
    "TRANSFER_CODE_SETTLEMENT",
    "TRANSFER_CODE_PAYOUT",
    "TRANSFER_CODE_PAYOUT_REVERSAL",
    "PLATFORM_SALES_ACCOUNT_ID",
    "PLATFORM_FEES_ACCOUNT_ID",
    "deterministic_id",
    "vendor_account_ids",
    "ensure_accounts",
    "ensure_platform_accounts",
    "ensure_vendor_accounts",
    "create_transfer",
    "lookup_account_balance",
]
