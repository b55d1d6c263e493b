"""Pydantic schemas for portfolio tracking and the circuit breaker."""
from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, model_validator


class PositionOut(BaseModel):
    symbol: str
    side: str
    size: float
    entry_price: float
    unrealized_pnl: float
    margin: float


class StrategyAllocationInfo(BaseModel):
    strategy_id: str
    strategy_name: str
    category: str
    target_pct: float
    current_equity: float
    position_count: int
    unrealized_pnl: float
    is_active: bool


class PortfolioSummary(BaseModel):
    account_id: int
    equity: float
    available_balance: float
    unrealized_pnl: float
    realized_pnl_today: float
    peak_equity: float
    drawdown_pct: float
    position_count: int
    positions: list[PositionOut]
    strategy_allocations: list[StrategyAllocationInfo]
    last_updated: datetime


class StrategyPerformanceMetrics(BaseModel):
    strategy_id: str
    total_pnl: float
    win_count: int
    loss_count: int
    win_rate: float
    peak_equity: float
    current_equity: float
    max_drawdown: float
    sharpe_ratio: float | None
    current_allocation_pct: float
    is_active: bool
    last_updated: datetime


class AggregatePerformance(BaseModel):
    total_pnl: float
    total_wins: int
    total_losses: int
    win_rate: float
    max_drawdown: float
    strategy_summaries: list[StrategyPerformanceMetrics]


class EquitySnapshotOut(BaseModel):
    account_id: int
    total_equity: float
    unrealized_pnl: float
    realized_pnl_today: float
    peak_equity: float
    drawdown_pct: float
    position_count: int
    strategy_allocations: dict[str, float]
    snapshot_at: datetime


class EquityCurvePoint(BaseModel):
    timestamp: datetime
    equity: float
    drawdown_pct: float


class PerformanceMetrics(BaseModel):
    return_pct: float
    sharpe_ratio: float | None
    max_drawdown: float
    total_pnl: float
    data_points: int
    period_start: datetime | None
    period_end: datetime


class CircuitBreakerConfig(BaseModel):
    portfolio_drawdown_threshold: float = Field(default=25.0, gt=0, le=100)
    strategy_drawdown_threshold: float = Field(default=15.0, gt=0, le=100)
    auto_resume_threshold: float = Field(default=10.0, ge=0, le=100)

    @model_validator(mode="after")
    def _check_hysteresis(self) -> "CircuitBreakerConfig":
        if self.auto_resume_threshold >= self.portfolio_drawdown_threshold:
            raise ValueError("auto_resume_threshold must be below portfolio_drawdown_threshold")
        return self


class CircuitBreakerConfigUpdate(BaseModel):
    portfolio_drawdown_threshold: float | None = Field(default=None, gt=0, le=100)
    strategy_drawdown_threshold: float | None = Field(default=None, gt=0, le=100)
    auto_resume_threshold: float | None = Field(default=None, ge=0, le=100)


class HaltedStrategyInfo(BaseModel):
    strategy_id: str
    drawdown_pct: float
    halted_at: datetime
    reason: Literal["portfolio", "strategy"]


class CircuitBreakerStatus(BaseModel):
    account_id: int
    portfolio_triggered: bool
    portfolio_drawdown_pct: float
    portfolio_threshold: float
    triggered_at: datetime | None
    halted_strategies: list[HaltedStrategyInfo]
    config: CircuitBreakerConfig


class RecordPnlIn(BaseModel):
    account_id: int = Field(default=1)
    strategy_id: str
    pnl: float


class ForceResumeIn(BaseModel):
    account_id: int = Field(default=1)
    strategy_id: str | None = None


class ForceResumeOut(BaseModel):
    resumed: bool
    status: CircuitBreakerStatus
