"""Pre-trade risk validation service."""
from __future__ import annotations

import logging
from typing import Sequence

from riskguard.portfolio.tracker import PortfolioTracker
from riskguard.risk.checks import (
    DEFAULT_PIPELINE,
    RiskCheck,
    RiskCheckResult,
    RiskContext,
    TradeRiskParams,
)
from riskguard.risk.limits import RiskLimits
from riskguard.storage.repos import AccountRepo, TradeLedger

logger = logging.getLogger(__name__)


class RiskService:
    """Runs the ordered check pipeline; the first failing check short-circuits.

    ``validate_trade`` never raises: the caller rejects the order with the
    returned message.
    """

    def __init__(
        self,
        tracker: PortfolioTracker,
        ledger: TradeLedger,
        accounts: AccountRepo,
        checks: Sequence[RiskCheck] = DEFAULT_PIPELINE,
    ) -> None:
        self.tracker = tracker
        self.ledger = ledger
        self.accounts = accounts
        self.checks = tuple(checks)

    async def get_risk_limits(self, account_id: int) -> RiskLimits:
        try:
            row = await self.accounts.risk_limit_override(account_id)
        except Exception as e:
            logger.warning(f"Account {account_id}: risk limit overrides unavailable, using defaults: {e}")
            return RiskLimits.defaults()
        return RiskLimits.from_override(row)

    async def validate_trade(self, params: TradeRiskParams) -> RiskCheckResult:
        limits = await self.get_risk_limits(params.account_id)
        ctx = RiskContext(params=params, limits=limits, tracker=self.tracker, ledger=self.ledger)

        passed: dict[str, RiskCheckResult] = {}
        for check in self.checks:
            try:
                result = await check(ctx)
            except Exception as e:
                logger.error(f"Risk check {check.name} raised for account {params.account_id}: {e}", exc_info=True)
                result = RiskCheckResult.dependency(f"Risk check {check.name} failed: {e}")
            if not result.passed:
                logger.info(
                    "Trade rejected for account %s %s %s: %s",
                    params.account_id,
                    params.side,
                    params.symbol,
                    result.error,
                )
                return RiskCheckResult(
                    passed=False,
                    error=result.error,
                    details={"check": check.name, **result.details},
                    failure=result.failure,
                )
            passed[check.name] = result

        equity = ctx.equity
        potential_loss = params.potential_loss
        details = {
            "equity": equity,
            "potential_loss": potential_loss,
            "risk_percent": potential_loss / equity * 100.0 if equity > 0 else 0.0,
            "limits": limits.as_dict(),
        }
        for name, key in (("total_portfolio_risk", "total_risk_pct"), ("portfolio_drawdown", "drawdown_pct")):
            if name in passed and key in passed[name].details:
                details[key] = passed[name].details[key]
        return RiskCheckResult(passed=True, details=details)

    async def check_strategy_drawdown(
        self,
        account_id: int,
        strategy_id: str,
        max_drawdown_pct: float | None = None,
    ) -> RiskCheckResult:
        """Compare a strategy's own peak/current equity with its drawdown limit.

        Passes when the strategy has no performance record yet.
        """
        if max_drawdown_pct is None:
            max_drawdown_pct = (await self.get_risk_limits(account_id)).max_strategy_drawdown_percent

        try:
            dd = await self.tracker.get_strategy_drawdown(account_id, strategy_id)
        except Exception as e:
            return RiskCheckResult.dependency(f"Strategy drawdown check failed: {e}")
        if dd is None:
            return RiskCheckResult.ok(drawdown_pct=None)

        if max_drawdown_pct > 0 and dd > max_drawdown_pct:
            return RiskCheckResult.breach(
                f'Strategy "{strategy_id}" drawdown is {dd:.2f}%, exceeding {max_drawdown_pct:g}% threshold. '
                "Strategy paused.",
                strategy_id=strategy_id,
                drawdown_pct=dd,
            )
        return RiskCheckResult.ok(drawdown_pct=dd)
