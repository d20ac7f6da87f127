"""Exception hierarchy shared by the fund_ledger backend."""
from __future__ import annotations


class FundLedgerError(Exception):
    """Base class for every error raised on purpose by the application."""


class LedgerValidationError(FundLedgerError):
    """Input rejected before it reached the ledger state."""


class TransactionNotFoundError(FundLedgerError):
    """No transaction with the requested identifier exists in the log."""

    def __init__(self, transaction_id: str) -> None:
        super().__init__(f"Transaction {transaction_id!r} does not exist")
        self.transaction_id = transaction_id


class BundleFormatError(FundLedgerError):
    """An imported bundle or workbook does not have the expected shape."""


class SyncError(FundLedgerError):
    """A remote backup operation failed."""


class SyncNotConfiguredError(SyncError):
    """Remote backup was requested without the required credentials."""


__all__ = [
    "FundLedgerError",
    "LedgerValidationError",
    "TransactionNotFoundError",
    "BundleFormatError",
    "SyncError",
    "SyncNotConfiguredError",
]
