from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import Optional

import pytest

from fund_ledger.config import AppConfig
from fund_ledger.database import SQLiteRepository
from fund_ledger.models import TradeSide, Transaction
from fund_ledger.services import LedgerService


def make_tx(
    tx_id: str,
    fund_code: str,
    side: TradeSide,
    quantity: float,
    price: float,
    fee: float = 0.0,
    amount: Optional[float] = None,
    fund_name: Optional[str] = None,
    trade_date: date = date(2024, 1, 2),
) -> Transaction:
    return Transaction(
        id=tx_id,
        fund_code=fund_code,
        fund_name=fund_name or f"Fund {fund_code}",
        side=side,
        date=trade_date,
        price=price,
        quantity=quantity,
        amount=price * quantity if amount is None else amount,
        fee=fee,
    )


class StubResponse:
    def __init__(self, status_code: int = 200, payload: object = None) -> None:
        self.status_code = status_code
        self._payload = payload

    def json(self) -> object:
        if self._payload is None:
            raise ValueError("no body")
        return self._payload


class StubSession:
    """Records requests and replays scripted responses in order."""

    def __init__(self, responses: Optional[list[object]] = None) -> None:
        self.responses = list(responses or [])
        self.calls: list[dict[str, object]] = []

    def request(self, method: str, url: str, **kwargs) -> StubResponse:
        self.calls.append({"method": method, "url": url, **kwargs})
        if not self.responses:
            raise AssertionError(f"Unexpected request: {method} {url}")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class MemorySettings:
    def __init__(self, values: Optional[dict[str, str]] = None) -> None:
        self.values = dict(values or {})

    def get_setting(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.values.get(key, default)

    def set_setting(self, key: str, value: str) -> None:
        self.values[key] = value

    def delete_setting(self, key: str) -> None:
        self.values.pop(key, None)


@pytest.fixture
def config(tmp_path: Path) -> AppConfig:
    return AppConfig(
        project_root=tmp_path,
        database_file=tmp_path / "ledger.db",
        log_level="INFO",
        jsonbin_endpoint="https://docs.example.test/v3",
        jsonbin_api_key=None,
        drive_endpoint="https://drive.example.test/drive/v3",
        drive_upload_endpoint="https://drive.example.test/upload/drive/v3",
        drive_access_token=None,
        sync_timeout=5,
    )


@pytest.fixture
def repository(config: AppConfig):
    repo = SQLiteRepository(config.database_file)
    repo.initialise_schema()
    yield repo
    repo.close()


@pytest.fixture
def service(config: AppConfig, repository: SQLiteRepository) -> LedgerService:
    return LedgerService(config, repository)
