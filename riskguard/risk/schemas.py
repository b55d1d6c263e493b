"""Pydantic schemas for pre-trade risk validation."""
from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator


class TradeValidationIn(BaseModel):
    account_id: int = Field(default=1)
    symbol: str
    side: Literal["long", "short"]
    quantity: float = Field(gt=0)
    entry_price: float = Field(gt=0)
    stop_loss_price: float | None = Field(default=None, gt=0)
    leverage: float | None = Field(default=None, gt=0)
    strategy_name: str | None = None

    @field_validator("symbol")
    @classmethod
    def _normalise_symbol(cls, value: str) -> str:
        return value.strip().upper()


class RiskCheckOut(BaseModel):
    passed: bool
    error: str | None = None
    failure: Literal["precondition", "limit", "dependency"] | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class RiskLimitsOut(BaseModel):
    account_id: int
    max_loss_per_trade_usd: float
    max_risk_percent_per_trade: float
    max_total_portfolio_risk_percent: float
    max_portfolio_drawdown_percent: float
    max_strategy_drawdown_percent: float
