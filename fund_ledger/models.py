"""Domain models used by the fund_ledger backend.

The classes defined here are plain data containers with no knowledge of
persistence or transport.  Serialisation helpers produce the camelCase keys
used by exported JSON bundles so the same shape travels through files, the
local state blob and the remote backups.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional, Union

BUNDLE_VERSION = 2

DateLike = Union[date, datetime, str, None]


class TradeSide(str, Enum):
    """Direction of a trade."""

    BUY = "BUY"
    SELL = "SELL"

    @property
    def label(self) -> str:
        return _SIDE_LABELS[self]

    @classmethod
    def parse(cls, value: object) -> "TradeSide":
        """Return the side for ``value``, accepting localized labels.

        Raises:
            ValueError: ``value`` names neither side.
        """

        if isinstance(value, TradeSide):
            return value
        text = str(value or "").strip()
        for side, label in _SIDE_LABELS.items():
            if text == label:
                return side
        try:
            return cls(text.upper())
        except ValueError:
            raise ValueError(f"Unknown trade side: {value!r}") from None


_SIDE_LABELS = {TradeSide.BUY: "买入", TradeSide.SELL: "卖出"}


@dataclass(frozen=True, slots=True)
class TransactionInput:
    """Payload for a new transaction before it receives an identifier.

    ``amount`` defaults to ``price * quantity`` when left as ``None``.
    """

    fund_code: str
    fund_name: str
    side: TradeSide
    date: DateLike
    price: float
    quantity: float
    fee: float = 0.0
    amount: Optional[float] = None


@dataclass(frozen=True, slots=True)
class Transaction:
    """One recorded trade.

    Transactions are immutable once created; the only supported change is a
    fee correction which produces a new instance via :meth:`with_fee`.
    """

    id: str
    fund_code: str
    fund_name: str
    side: TradeSide
    date: DateLike
    price: float
    quantity: float
    amount: float
    fee: float = 0.0

    @classmethod
    def create(cls, transaction_id: str, payload: TransactionInput) -> "Transaction":
        amount = payload.amount
        if amount is None:
            amount = payload.price * payload.quantity
        return cls(
            id=transaction_id,
            fund_code=payload.fund_code,
            fund_name=payload.fund_name,
            side=TradeSide.parse(payload.side),
            date=payload.date,
            price=payload.price,
            quantity=payload.quantity,
            amount=amount,
            fee=payload.fee,
        )

    def signed_quantity(self) -> float:
        """Return the share delta this trade applies to its fund."""

        return self.quantity if self.side is TradeSide.BUY else -self.quantity

    def with_fee(self, fee: float) -> "Transaction":
        return replace(self, fee=fee)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "fundCode": self.fund_code,
            "fundName": self.fund_name,
            "type": self.side.value,
            "date": _date_to_iso(self.date),
            "price": self.price,
            "quantity": self.quantity,
            "amount": self.amount,
            "fee": self.fee,
        }


@dataclass(frozen=True, slots=True)
class Holding:
    """Current position in one fund, derived from the transaction log."""

    fund_code: str
    fund_name: str
    total_shares: float
    total_cost: float
    average_cost: float
    current_price: float
    current_value: float
    total_profit: float
    profit_rate: float

    def to_dict(self) -> dict[str, object]:
        return {
            "fundCode": self.fund_code,
            "fundName": self.fund_name,
            "totalShares": self.total_shares,
            "totalCost": self.total_cost,
            "averageCost": self.average_cost,
            "currentPrice": self.current_price,
            "currentValue": self.current_value,
            "totalProfit": self.total_profit,
            "profitRate": self.profit_rate,
        }


@dataclass(frozen=True, slots=True)
class AccountSummary:
    """Account-level aggregation across every holding."""

    total_investment: float = 0.0
    total_value: float = 0.0
    total_fees: float = 0.0
    total_profit: float = 0.0
    total_profit_rate: float = 0.0

    def to_dict(self) -> dict[str, float]:
        return {
            "totalInvestment": self.total_investment,
            "totalValue": self.total_value,
            "totalFees": self.total_fees,
            "totalProfit": self.total_profit,
            "totalProfitRate": self.total_profit_rate,
        }


@dataclass(frozen=True, slots=True)
class LedgerBundle:
    """Everything that is exported, persisted or synced as one unit.

    ``holdings`` and ``account_summary`` are informational: importing a bundle
    always recomputes them from ``transactions`` and ``fund_prices``.
    """

    transactions: tuple[Transaction, ...] = ()
    holdings: tuple[Holding, ...] = ()
    account_summary: AccountSummary = field(default_factory=AccountSummary)
    fund_prices: Mapping[str, float] = field(default_factory=lambda: MappingProxyType({}))
    version: int = BUNDLE_VERSION

    def to_dict(self) -> dict[str, object]:
        return {
            "version": self.version,
            "transactions": [tx.to_dict() for tx in self.transactions],
            "holdings": [holding.to_dict() for holding in self.holdings],
            "accountSummary": self.account_summary.to_dict(),
            "fundPrices": dict(self.fund_prices),
        }


def migrate_legacy_transaction(payload: Mapping[str, object]) -> dict[str, object]:
    """Translate a shares-first record into the price/quantity shape.

    Early exports stored ``shares`` and ``unitPrice`` next to ``amount``.
    Records already in the current shape are returned unchanged (as a copy).
    """

    migrated = dict(payload)
    if "quantity" not in migrated and "shares" in migrated:
        migrated["quantity"] = migrated.pop("shares")
    if "price" not in migrated and "unitPrice" in migrated:
        migrated["price"] = migrated.pop("unitPrice")
    migrated.pop("shares", None)
    migrated.pop("unitPrice", None)
    return migrated


def _date_to_iso(value: DateLike) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat(timespec="seconds")
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


__all__ = [
    "BUNDLE_VERSION",
    "TradeSide",
    "TransactionInput",
    "Transaction",
    "Holding",
    "AccountSummary",
    "LedgerBundle",
    "migrate_legacy_transaction",
]
