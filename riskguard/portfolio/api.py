"""Portfolio, performance and circuit breaker endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query

from riskguard.portfolio.schemas import (
    AggregatePerformance,
    CircuitBreakerConfig,
    CircuitBreakerConfigUpdate,
    CircuitBreakerStatus,
    EquityCurvePoint,
    ForceResumeIn,
    ForceResumeOut,
    PerformanceMetrics,
    PortfolioSummary,
    RecordPnlIn,
    StrategyPerformanceMetrics,
)
from riskguard.portfolio.tracker import EquityUnavailableError
from riskguard.services import RiskGuardServices, get_services

router = APIRouter(prefix="/v1/portfolio", tags=["portfolio"])


@router.get("/summary", response_model=PortfolioSummary)
async def portfolio_summary(
    account_id: int = Query(default=1),
    services: RiskGuardServices = Depends(get_services),
) -> PortfolioSummary:
    try:
        return await services.tracker.get_portfolio_summary(account_id)
    except EquityUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.get("/equity-curve", response_model=list[EquityCurvePoint])
async def equity_curve(
    account_id: int = Query(default=1),
    start: datetime | None = Query(default=None),
    end: datetime | None = Query(default=None),
    limit: int | None = Query(default=None, ge=1, le=10000),
    services: RiskGuardServices = Depends(get_services),
) -> list[EquityCurvePoint]:
    return await services.snapshotter.get_equity_curve(account_id, start=start, end=end, limit=limit)


@router.get("/metrics", response_model=PerformanceMetrics)
async def performance_metrics(
    account_id: int = Query(default=1),
    period: Literal["day", "week", "month", "all"] = Query(default="all"),
    start: datetime | None = Query(default=None),
    end: datetime | None = Query(default=None),
    services: RiskGuardServices = Depends(get_services),
) -> PerformanceMetrics:
    return await services.snapshotter.get_performance_metrics(account_id, period=period, start=start, end=end)


@router.get("/performance", response_model=AggregatePerformance)
async def aggregate_performance(
    account_id: int = Query(default=1),
    services: RiskGuardServices = Depends(get_services),
) -> AggregatePerformance:
    return await services.tracker.get_aggregate_performance(account_id)


@router.get("/performance/{strategy_id}", response_model=StrategyPerformanceMetrics)
async def strategy_performance(
    strategy_id: str,
    account_id: int = Query(default=1),
    services: RiskGuardServices = Depends(get_services),
) -> StrategyPerformanceMetrics:
    if services.registry.get(strategy_id) is None:
        raise HTTPException(status_code=404, detail=f"Unknown strategy: {strategy_id}")
    return await services.tracker.get_strategy_performance(account_id, strategy_id)


@router.post("/pnl")
async def record_pnl(
    payload: RecordPnlIn,
    services: RiskGuardServices = Depends(get_services),
) -> dict:
    services.tracker.record_trade_pnl(payload.account_id, payload.strategy_id, payload.pnl)
    return {
        "account_id": payload.account_id,
        "strategy_id": payload.strategy_id,
        "realized_pnl_today": services.tracker.get_realized_pnl_today(payload.account_id),
    }


@router.get("/circuit-breaker", response_model=CircuitBreakerStatus)
async def circuit_breaker_status(
    account_id: int = Query(default=1),
    services: RiskGuardServices = Depends(get_services),
) -> CircuitBreakerStatus:
    return services.circuit_breaker.get_status(account_id)


@router.post("/circuit-breaker/resume", response_model=ForceResumeOut)
async def circuit_breaker_resume(
    payload: ForceResumeIn,
    services: RiskGuardServices = Depends(get_services),
) -> ForceResumeOut:
    resumed = await services.circuit_breaker.force_resume(payload.account_id, payload.strategy_id)
    return ForceResumeOut(resumed=resumed, status=services.circuit_breaker.get_status(payload.account_id))


@router.patch("/circuit-breaker/config", response_model=CircuitBreakerConfig)
async def circuit_breaker_config(
    payload: CircuitBreakerConfigUpdate,
    services: RiskGuardServices = Depends(get_services),
) -> CircuitBreakerConfig:
    try:
        return services.circuit_breaker.update_config(**payload.model_dump(exclude_none=True))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
