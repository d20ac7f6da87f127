"""Pydantic schemas for API payloads."""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .importers import parse_date
from .models import TradeSide, TransactionInput


class TransactionCreate(BaseModel):
    """Body of ``POST /transactions``.  Accepts camelCase or snake_case keys."""

    model_config = ConfigDict(populate_by_name=True)

    fund_code: str = Field(..., alias="fundCode", min_length=1, max_length=32)
    fund_name: str = Field(..., alias="fundName", min_length=1, max_length=255)
    side: TradeSide = Field(..., alias="type")
    date: Optional[str] = None
    price: float = Field(..., ge=0)
    quantity: float = Field(..., gt=0)
    amount: Optional[float] = Field(default=None, ge=0)
    fee: float = Field(default=0.0, ge=0)

    @field_validator("side", mode="before")
    @classmethod
    def _parse_side(cls, value: object) -> TradeSide:
        return TradeSide.parse(value)

    @field_validator("fund_code", "fund_name")
    @classmethod
    def _strip(cls, value: str) -> str:
        return value.strip()

    @field_validator("date")
    @classmethod
    def _check_date(cls, value: Optional[str]) -> Optional[str]:
        if value and value.strip() and parse_date(value) is None:
            raise ValueError(f"Unreadable date: {value!r}")
        return value

    def to_input(self) -> TransactionInput:
        return TransactionInput(
            fund_code=self.fund_code,
            fund_name=self.fund_name,
            side=self.side,
            date=parse_date(self.date),
            price=self.price,
            quantity=self.quantity,
            fee=self.fee,
            amount=self.amount,
        )


class FeeUpdate(BaseModel):
    fee: float


class PriceUpdate(BaseModel):
    price: float = Field(..., gt=0)


class CloudSyncConfigRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    api_key: str = Field(..., alias="apiKey", min_length=1)


class DriveSyncRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    access_token: Optional[str] = Field(default=None, alias="accessToken")
