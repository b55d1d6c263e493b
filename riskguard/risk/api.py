"""Pre-trade risk endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from riskguard.risk.checks import TradeRiskParams
from riskguard.risk.schemas import RiskCheckOut, RiskLimitsOut, TradeValidationIn
from riskguard.services import RiskGuardServices, get_services

router = APIRouter(prefix="/v1/risk", tags=["risk"])


@router.post("/validate", response_model=RiskCheckOut)
async def validate_trade(
    payload: TradeValidationIn,
    services: RiskGuardServices = Depends(get_services),
) -> RiskCheckOut:
    """Run the pre-trade pipeline. A rejection is a normal 200 response with ``passed`` false."""
    result = await services.risk.validate_trade(TradeRiskParams(**payload.model_dump()))
    return RiskCheckOut(
        passed=result.passed,
        error=result.error,
        failure=result.failure,
        details=result.details,
    )


@router.get("/limits", response_model=RiskLimitsOut)
async def risk_limits(
    account_id: int = Query(default=1),
    services: RiskGuardServices = Depends(get_services),
) -> RiskLimitsOut:
    limits = await services.risk.get_risk_limits(account_id)
    return RiskLimitsOut(account_id=account_id, **limits.as_dict())
