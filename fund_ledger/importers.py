"""File codecs for ledger bundles.

Two formats are supported:

* JSON bundles ``{version, transactions, holdings, accountSummary, fundPrices}``
  as produced by :func:`dump_bundle_json`.
* Excel workbooks with one sheet per view.  Only the transactions sheet and
  the optional fund price sheet are read back; holdings and the summary are
  always recomputed.

Every payload coming from outside passes through :func:`parse_bundle` (or the
workbook importer), which raises :class:`~fund_ledger.errors.BundleFormatError`
before anything touches the ledger.
"""
from __future__ import annotations

import io
import json
import math
import zipfile
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Mapping, Optional, Union

import pandas as pd
from dateutil import parser as date_parser

from .errors import BundleFormatError
from .models import (
    BUNDLE_VERSION,
    LedgerBundle,
    TradeSide,
    Transaction,
    migrate_legacy_transaction,
)

EXPORT_BASENAME = "基金投资记录"

TRANSACTIONS_SHEET = "交易记录"
HOLDINGS_SHEET = "持仓详情"
SUMMARY_SHEET = "账户概览"
PRICES_SHEET = "基金净值"

TRANSACTION_COLUMNS = {
    "date": "日期",
    "fund_code": "基金代码",
    "fund_name": "基金名称",
    "side": "交易类型",
    "price": "价格",
    "quantity": "数量",
    "amount": "金额",
    "unit_price": "单位净值",
    "fee": "手续费",
}
REQUIRED_TRANSACTION_COLUMNS = ("date", "fund_code", "fund_name", "side", "quantity")
PRICE_COLUMNS = {"fund_code": "基金代码", "price": "净值"}

_TOP_LEVEL_KEYS = {"version", "transactions", "holdings", "accountSummary", "fundPrices"}
_REQUIRED_KEYS = ("transactions", "fundPrices")
_TRANSACTION_KEYS = {
    "id",
    "fundCode",
    "fundName",
    "type",
    "date",
    "price",
    "quantity",
    "amount",
    "fee",
    "currentPrice",
    # Shares-first records from early exports.
    "shares",
    "unitPrice",
}

WorkbookSource = Union[str, Path, bytes]


# ---------------------------------------------------------------------------
# JSON bundles
# ---------------------------------------------------------------------------

def export_filename(extension: str, today: Optional[date] = None) -> str:
    """Return the download name for an export made on ``today``."""

    today = today or date.today()
    return f"{EXPORT_BASENAME}_{today.isoformat()}.{extension}"


def dump_bundle_json(bundle: LedgerBundle) -> str:
    return json.dumps(bundle.to_dict(), ensure_ascii=False, indent=2)


def load_bundle_json(text: str | bytes) -> LedgerBundle:
    try:
        payload = json.loads(text)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise BundleFormatError(f"File is not valid JSON: {exc}") from exc
    return parse_bundle(payload)


def parse_bundle(payload: object) -> LedgerBundle:
    """Validate a decoded bundle and convert it into a :class:`LedgerBundle`.

    ``holdings`` and ``accountSummary`` may be present but are not read.
    """

    if not isinstance(payload, dict):
        raise BundleFormatError("Bundle must be a JSON object")

    unknown = sorted(set(payload) - _TOP_LEVEL_KEYS)
    if unknown:
        raise BundleFormatError(f"Unknown fields: {', '.join(unknown)}")
    missing = [key for key in _REQUIRED_KEYS if key not in payload]
    if missing:
        raise BundleFormatError(f"Missing required fields: {', '.join(missing)}")

    version = payload.get("version", 1)
    if version not in (1, BUNDLE_VERSION):
        raise BundleFormatError(f"Unsupported bundle version: {version!r}")

    raw_transactions = payload["transactions"]
    if not isinstance(raw_transactions, list):
        raise BundleFormatError("transactions must be an array")
    if "holdings" in payload and not isinstance(payload["holdings"], list):
        raise BundleFormatError("holdings must be an array")

    transactions = tuple(
        parse_transaction(raw, position) for position, raw in enumerate(raw_transactions, start=1)
    )
    return LedgerBundle(
        transactions=transactions,
        fund_prices=parse_fund_prices(payload["fundPrices"]),
    )


def parse_transaction(raw: object, position: int = 1) -> Transaction:
    """Convert one bundle record into a :class:`Transaction`.

    Missing or malformed numeric fields become ``0``; an absent ``amount`` is
    derived from ``price * quantity``.  An empty ``id`` is allowed and is
    replaced by the ledger on import.
    """

    if not isinstance(raw, Mapping):
        raise BundleFormatError(f"Transaction #{position} must be an object")

    unknown = sorted(set(raw) - _TRANSACTION_KEYS)
    if unknown:
        raise BundleFormatError(f"Transaction #{position} has unknown fields: {', '.join(unknown)}")

    record = migrate_legacy_transaction(raw)
    fund_code = _clean_string(record.get("fundCode"))
    if not fund_code:
        raise BundleFormatError(f"Transaction #{position} is missing fundCode")
    if "type" not in record:
        raise BundleFormatError(f"Transaction #{position} is missing type")
    try:
        side = TradeSide.parse(record["type"])
    except ValueError as exc:
        raise BundleFormatError(f"Transaction #{position}: {exc}") from exc

    price = _to_number(record.get("price"))
    quantity = _to_number(record.get("quantity"))
    fee = _to_number(record.get("fee"))
    for field, value in (("price", price), ("quantity", quantity), ("fee", fee)):
        if value < 0:
            raise BundleFormatError(f"Transaction #{position} has a negative {field}")
    amount = _to_number(record["amount"]) if record.get("amount") is not None else price * quantity

    return Transaction(
        id=_clean_string(record.get("id")),
        fund_code=fund_code,
        fund_name=_clean_string(record.get("fundName")),
        side=side,
        date=parse_date(record.get("date")),
        price=price,
        quantity=quantity,
        amount=amount,
        fee=fee,
    )


def parse_fund_prices(raw: object) -> dict[str, float]:
    if not isinstance(raw, Mapping):
        raise BundleFormatError("fundPrices must be an object")
    prices: dict[str, float] = {}
    for code, value in raw.items():
        price = _parse_decimal(value)
        if price is None or price <= 0:
            raise BundleFormatError(f"fundPrices[{code!r}] must be a positive number")
        prices[str(code)] = price
    return prices


# ---------------------------------------------------------------------------
# Excel workbooks
# ---------------------------------------------------------------------------

class WorkbookExporter:
    """Render a bundle as an Excel workbook with one sheet per view."""

    def export(self, bundle: LedgerBundle) -> bytes:
        buffer = io.BytesIO()
        with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
            self._transactions_frame(bundle).to_excel(writer, sheet_name=TRANSACTIONS_SHEET, index=False)
            self._holdings_frame(bundle).to_excel(writer, sheet_name=HOLDINGS_SHEET, index=False)
            self._summary_frame(bundle).to_excel(writer, sheet_name=SUMMARY_SHEET, index=False)
            self._prices_frame(bundle).to_excel(writer, sheet_name=PRICES_SHEET, index=False)
        return buffer.getvalue()

    @staticmethod
    def _transactions_frame(bundle: LedgerBundle) -> pd.DataFrame:
        rows = [
            {
                TRANSACTION_COLUMNS["date"]: tx.to_dict()["date"],
                TRANSACTION_COLUMNS["fund_code"]: tx.fund_code,
                TRANSACTION_COLUMNS["fund_name"]: tx.fund_name,
                TRANSACTION_COLUMNS["side"]: tx.side.label,
                TRANSACTION_COLUMNS["price"]: tx.price,
                TRANSACTION_COLUMNS["quantity"]: tx.quantity,
                TRANSACTION_COLUMNS["amount"]: tx.amount,
                TRANSACTION_COLUMNS["unit_price"]: bundle.fund_prices.get(tx.fund_code, tx.price),
                TRANSACTION_COLUMNS["fee"]: tx.fee,
            }
            for tx in bundle.transactions
        ]
        return pd.DataFrame(rows, columns=list(TRANSACTION_COLUMNS.values()))

    @staticmethod
    def _holdings_frame(bundle: LedgerBundle) -> pd.DataFrame:
        columns = ["基金代码", "基金名称", "持有份额", "总成本", "平均成本", "当前净值", "当前市值", "累计盈亏", "收益率(%)"]
        rows = [
            [
                h.fund_code,
                h.fund_name,
                h.total_shares,
                h.total_cost,
                h.average_cost,
                h.current_price,
                h.current_value,
                h.total_profit,
                h.profit_rate,
            ]
            for h in bundle.holdings
        ]
        return pd.DataFrame(rows, columns=columns)

    @staticmethod
    def _summary_frame(bundle: LedgerBundle) -> pd.DataFrame:
        summary = bundle.account_summary
        return pd.DataFrame(
            [
                ["总投入", summary.total_investment],
                ["当前总市值", summary.total_value],
                ["总手续费", summary.total_fees],
                ["总盈亏", summary.total_profit],
                ["总收益率(%)", summary.total_profit_rate],
            ],
            columns=["项目", "数值"],
        )

    @staticmethod
    def _prices_frame(bundle: LedgerBundle) -> pd.DataFrame:
        rows = [
            {PRICE_COLUMNS["fund_code"]: code, PRICE_COLUMNS["price"]: price}
            for code, price in bundle.fund_prices.items()
        ]
        return pd.DataFrame(rows, columns=list(PRICE_COLUMNS.values()))


class WorkbookImporter:
    """Load transactions and fund prices from an exported workbook.

    The importer reads the transactions sheet (required) and the fund price
    sheet (optional).  Any holdings or summary sheets are ignored.
    """

    def __init__(self, source: WorkbookSource) -> None:
        self.source = source

    def load(self) -> LedgerBundle:
        try:
            workbook = pd.ExcelFile(self._open())
        except (ValueError, OSError, zipfile.BadZipFile) as exc:
            raise BundleFormatError(f"File is not a readable Excel workbook: {exc}") from exc

        with workbook:
            if TRANSACTIONS_SHEET not in workbook.sheet_names:
                raise BundleFormatError(f"Workbook is missing the {TRANSACTIONS_SHEET!r} sheet")
            transactions = self._load_transactions(self._load_sheet(workbook, TRANSACTIONS_SHEET))
            prices: dict[str, float] = {}
            if PRICES_SHEET in workbook.sheet_names:
                prices = self._load_prices(self._load_sheet(workbook, PRICES_SHEET))

        return LedgerBundle(transactions=tuple(transactions), fund_prices=prices)

    def _open(self) -> io.BytesIO | str | Path:
        if isinstance(self.source, bytes):
            return io.BytesIO(self.source)
        return self.source

    @staticmethod
    def _load_sheet(workbook: pd.ExcelFile, sheet_name: str) -> pd.DataFrame:
        """Read a sheet into a :class:`~pandas.DataFrame` of strings."""

        dataframe = workbook.parse(sheet_name=sheet_name, dtype=str)
        dataframe.columns = [str(column).strip() for column in dataframe.columns]
        return dataframe

    def _load_transactions(self, dataframe: pd.DataFrame) -> list[Transaction]:
        columns = TRANSACTION_COLUMNS
        missing = [columns[key] for key in REQUIRED_TRANSACTION_COLUMNS if columns[key] not in dataframe.columns]
        if columns["price"] not in dataframe.columns and columns["unit_price"] not in dataframe.columns:
            missing.append(columns["price"])
        if missing:
            raise BundleFormatError(f"{TRANSACTIONS_SHEET} sheet is missing columns: {', '.join(missing)}")

        transactions: list[Transaction] = []
        for row_number, (_, row) in enumerate(dataframe.iterrows(), start=2):
            fund_code = _clean_string(row.get(columns["fund_code"]))
            if not fund_code:
                continue
            try:
                side = TradeSide.parse(row.get(columns["side"]))
            except ValueError as exc:
                raise BundleFormatError(f"{TRANSACTIONS_SHEET} row {row_number}: {exc}") from exc

            price = _parse_decimal(row.get(columns["price"]))
            if price is None:
                price = _parse_decimal(row.get(columns["unit_price"])) or 0.0
            quantity = _parse_decimal(row.get(columns["quantity"])) or 0.0
            amount = _parse_decimal(row.get(columns["amount"]))
            fee = _parse_decimal(row.get(columns["fee"])) or 0.0
            for field, value in ((columns["price"], price), (columns["quantity"], quantity), (columns["fee"], fee)):
                if value < 0:
                    raise BundleFormatError(f"{TRANSACTIONS_SHEET} row {row_number} has a negative {field}")

            transactions.append(
                Transaction(
                    id="",
                    fund_code=fund_code,
                    fund_name=_clean_string(row.get(columns["fund_name"])),
                    side=side,
                    date=parse_date(row.get(columns["date"])),
                    price=price,
                    quantity=quantity,
                    amount=amount if amount is not None else price * quantity,
                    fee=fee,
                )
            )
        return transactions

    @staticmethod
    def _load_prices(dataframe: pd.DataFrame) -> dict[str, float]:
        missing = [name for name in PRICE_COLUMNS.values() if name not in dataframe.columns]
        if missing:
            raise BundleFormatError(f"{PRICES_SHEET} sheet is missing columns: {', '.join(missing)}")

        prices: dict[str, float] = {}
        for _, row in dataframe.iterrows():
            code = _clean_string(row.get(PRICE_COLUMNS["fund_code"]))
            price = _parse_decimal(row.get(PRICE_COLUMNS["price"]))
            if code and price is not None and price > 0:
                prices[code] = price
        return prices


# ---------------------------------------------------------------------------
# Helper utilities
# ---------------------------------------------------------------------------

def _clean_string(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and math.isnan(value):
        return ""
    return str(value).strip()


def _parse_decimal(value: object) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    stringified = str(value).strip()
    if not stringified or stringified.lower() == "nan":
        return None
    normalised = stringified.replace("'", "").replace(" ", "").replace(",", "")
    try:
        number = float(Decimal(normalised))
    except (InvalidOperation, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


def _to_number(value: object) -> float:
    return _parse_decimal(value) or 0.0


def parse_date(value: object) -> date | datetime | None:
    """Parse a date or date-time, returning ``None`` for anything unreadable."""

    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return value
    stringified = str(value).strip()
    if not stringified or stringified in {"NaT", "nan"}:
        return None
    try:
        parsed = date_parser.parse(stringified)
    except (ValueError, OverflowError):
        return None
    if len(stringified) <= 10 and parsed.time() == datetime.min.time():
        return parsed.date()
    return parsed


__all__ = [
    "EXPORT_BASENAME",
    "TRANSACTIONS_SHEET",
    "HOLDINGS_SHEET",
    "SUMMARY_SHEET",
    "PRICES_SHEET",
    "export_filename",
    "dump_bundle_json",
    "load_bundle_json",
    "parse_bundle",
    "parse_transaction",
    "parse_fund_prices",
    "parse_date",
    "WorkbookExporter",
    "WorkbookImporter",
]
