"""In-memory ledger state.

:class:`LedgerStore` owns the transaction log, the manual price overrides and
the holdings/summary derived from them.  Every mutation ends with a full call
to :func:`~fund_ledger.calculator.recompute`; derived state is never patched
incrementally and never accepted from outside.
"""
from __future__ import annotations

import logging
import secrets
import time
from types import MappingProxyType
from typing import Mapping, Optional

from .calculator import RecomputeResult, recompute
from .errors import BundleFormatError, LedgerValidationError
from .models import AccountSummary, Holding, LedgerBundle, Transaction, TransactionInput

logger = logging.getLogger(__name__)


class LedgerStore:
    """State container for one user's fund ledger.

    The store is not thread-safe on its own; callers that share it between
    threads serialise access (see :class:`~fund_ledger.services.LedgerService`).
    """

    def __init__(self) -> None:
        self._transactions: list[Transaction] = []
        self._fund_prices: dict[str, float] = {}
        self._derived = RecomputeResult()
        self._last_id_stamp = 0

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------
    @property
    def transactions(self) -> tuple[Transaction, ...]:
        return tuple(self._transactions)

    @property
    def holdings(self) -> tuple[Holding, ...]:
        return self._derived.holdings

    @property
    def summary(self) -> AccountSummary:
        return self._derived.summary

    @property
    def fund_prices(self) -> Mapping[str, float]:
        return MappingProxyType(dict(self._fund_prices))

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        for tx in self._transactions:
            if tx.id == transaction_id:
                return tx
        return None

    def transactions_for_fund(self, fund_code: str) -> tuple[Transaction, ...]:
        return tuple(tx for tx in self._transactions if tx.fund_code == fund_code)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def add_transaction(self, payload: TransactionInput) -> Transaction:
        """Append a new transaction with a freshly generated identifier."""

        transaction = Transaction.create(self._next_id(), payload)
        self._transactions.append(transaction)
        self._recalculate()
        logger.info("Added %s transaction %s for %s", transaction.side.value, transaction.id, transaction.fund_code)
        return transaction

    def delete_transaction(self, transaction_id: str) -> bool:
        """Remove a transaction.  Unknown identifiers are a no-op."""

        before = len(self._transactions)
        self._transactions = [tx for tx in self._transactions if tx.id != transaction_id]
        removed = len(self._transactions) != before
        self._recalculate()
        if removed:
            logger.info("Deleted transaction %s", transaction_id)
        return removed

    def update_fee(self, transaction_id: str, fee: float) -> Optional[Transaction]:
        """Correct the fee of an existing transaction.

        Returns the updated transaction, or ``None`` when the identifier is
        unknown.

        Raises:
            LedgerValidationError: ``fee`` is negative.  The log is unchanged.
        """

        if fee < 0:
            raise LedgerValidationError(f"Fee must not be negative (got {fee})")

        updated: Optional[Transaction] = None
        for index, tx in enumerate(self._transactions):
            if tx.id == transaction_id:
                updated = tx.with_fee(fee)
                self._transactions[index] = updated
                break
        self._recalculate()
        return updated

    def set_price_override(self, fund_code: str, price: float) -> None:
        """Record a manual current price for ``fund_code``.

        The store accepts any value; rejecting non-positive prices is the
        caller's job.
        """

        self._fund_prices[fund_code] = price
        self._recalculate()
        logger.info("Set price override for %s to %s", fund_code, price)

    def import_data(self, bundle: LedgerBundle) -> None:
        """Replace the log and price overrides with the bundle's contents.

        Holdings and summary carried by the bundle are discarded.  Transactions
        without an identifier are assigned one.

        Raises:
            BundleFormatError: the bundle contains a duplicate identifier.
        """

        seen: set[str] = set()
        for tx in bundle.transactions:
            if not tx.id:
                continue
            if tx.id in seen:
                raise BundleFormatError(f"Duplicate transaction id in import: {tx.id}")
            seen.add(tx.id)

        transactions: list[Transaction] = []
        for tx in bundle.transactions:
            if not tx.id:
                tx = Transaction.create(self._next_id(reserved=seen), _as_input(tx))
                seen.add(tx.id)
            transactions.append(tx)

        self._transactions = transactions
        self._fund_prices = dict(bundle.fund_prices)
        self._recalculate()
        logger.info(
            "Imported %d transactions and %d price overrides",
            len(self._transactions),
            len(self._fund_prices),
        )

    def export_data(self) -> LedgerBundle:
        return LedgerBundle(
            transactions=tuple(self._transactions),
            holdings=self._derived.holdings,
            account_summary=self._derived.summary,
            fund_prices=self.fund_prices,
        )

    def clear(self) -> None:
        self.import_data(LedgerBundle())

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _recalculate(self) -> None:
        self._derived = recompute(self._transactions, self._fund_prices)

    def _next_id(self, reserved: Optional[set[str]] = None) -> str:
        """Return a time-ordered identifier unique within this store."""

        taken = {tx.id for tx in self._transactions}
        if reserved:
            taken |= reserved
        while True:
            stamp = max(time.time_ns() // 1000, self._last_id_stamp + 1)
            self._last_id_stamp = stamp
            candidate = f"{stamp:014x}{secrets.token_hex(4)}"
            if candidate not in taken:
                return candidate


def _as_input(tx: Transaction) -> TransactionInput:
    return TransactionInput(
        fund_code=tx.fund_code,
        fund_name=tx.fund_name,
        side=tx.side,
        date=tx.date,
        price=tx.price,
        quantity=tx.quantity,
        fee=tx.fee,
        amount=tx.amount,
    )


__all__ = ["LedgerStore"]
