"""Composable pre-trade risk checks.

Each check is an object sharing one async signature over a ``RiskContext``
and returns a ``RiskCheckResult``; none of them raises. The pipeline order is
cheapest first so arithmetic on the request fails before any ledger scan.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Literal

from riskguard.portfolio.tracker import EquityUnavailableError, PortfolioTracker, drawdown_pct
from riskguard.risk.limits import RiskLimits
from riskguard.storage.repos import TradeLedger

Side = Literal["long", "short"]
FailureKind = Literal["precondition", "limit", "dependency"]


@dataclass(frozen=True)
class TradeRiskParams:
    account_id: int
    symbol: str
    side: Side
    quantity: float
    entry_price: float
    stop_loss_price: float | None = None
    leverage: float | None = None
    strategy_name: str | None = None

    @property
    def potential_loss(self) -> float:
        """Loss bounded by the stop; zero when the trade has no stop-loss."""
        if self.stop_loss_price is None:
            return 0.0
        return self.quantity * abs(self.entry_price - self.stop_loss_price)

    @property
    def notional(self) -> float:
        return self.quantity * self.entry_price


@dataclass(frozen=True)
class RiskCheckResult:
    passed: bool
    error: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    failure: FailureKind | None = None

    @classmethod
    def ok(cls, **details: Any) -> "RiskCheckResult":
        return cls(passed=True, details=details)

    @classmethod
    def breach(cls, error: str, **details: Any) -> "RiskCheckResult":
        return cls(passed=False, error=error, details=details, failure="limit")

    @classmethod
    def precondition(cls, error: str, **details: Any) -> "RiskCheckResult":
        return cls(passed=False, error=error, details=details, failure="precondition")

    @classmethod
    def dependency(cls, error: str, **details: Any) -> "RiskCheckResult":
        return cls(passed=False, error=error, details=details, failure="dependency")


@dataclass
class RiskContext:
    params: TradeRiskParams
    limits: RiskLimits
    tracker: PortfolioTracker
    ledger: TradeLedger
    # Set by EquityPrecondition; every later check may rely on equity > 0.
    equity: float = 0.0


class RiskCheck(ABC):
    name: str = "check"

    @abstractmethod
    async def __call__(self, ctx: RiskContext) -> RiskCheckResult:
        """Evaluate the check against the context."""


class EquityPrecondition(RiskCheck):
    name = "equity"

    async def __call__(self, ctx: RiskContext) -> RiskCheckResult:
        try:
            equity = await ctx.tracker.get_equity(ctx.params.account_id)
        except EquityUnavailableError as e:
            return RiskCheckResult.precondition(
                "Failed to fetch account equity from exchange", cause=str(e.cause)
            )
        if equity <= 0:
            return RiskCheckResult.precondition("Account equity is zero or negative", equity=equity)
        ctx.equity = equity
        return RiskCheckResult.ok(equity=equity)


class StopLossDirection(RiskCheck):
    name = "stop_loss_direction"

    @staticmethod
    def evaluate(params: TradeRiskParams) -> RiskCheckResult:
        sl = params.stop_loss_price
        if sl is None:
            return RiskCheckResult.ok()
        if params.side == "long" and sl >= params.entry_price:
            return RiskCheckResult.breach(
                f"Invalid stop loss for LONG: SL (${sl:g}) must be below entry (${params.entry_price:g})",
                stop_loss=sl,
                entry_price=params.entry_price,
            )
        if params.side == "short" and sl <= params.entry_price:
            return RiskCheckResult.breach(
                f"Invalid stop loss for SHORT: SL (${sl:g}) must be above entry (${params.entry_price:g})",
                stop_loss=sl,
                entry_price=params.entry_price,
            )
        return RiskCheckResult.ok()

    async def __call__(self, ctx: RiskContext) -> RiskCheckResult:
        return self.evaluate(ctx.params)


class MaxLossPerTrade(RiskCheck):
    name = "max_loss_per_trade"

    @staticmethod
    def evaluate(params: TradeRiskParams, equity: float, limits: RiskLimits) -> RiskCheckResult:
        if params.stop_loss_price is None:
            return RiskCheckResult.ok()

        loss = params.potential_loss
        if loss > equity:
            return RiskCheckResult.breach(
                f"Stop loss risk (${loss:.2f}) exceeds account equity (${equity:.2f})",
                loss=loss,
                equity=equity,
            )
        max_loss = limits.max_loss_per_trade_usd
        if max_loss > 0 and loss > max_loss:
            return RiskCheckResult.breach(
                f"Stop loss risk (${loss:.2f}) exceeds max per trade (${max_loss:g})",
                loss=loss,
                max=max_loss,
            )
        return RiskCheckResult.ok(loss=loss)

    async def __call__(self, ctx: RiskContext) -> RiskCheckResult:
        return self.evaluate(ctx.params, ctx.equity, ctx.limits)


class RiskPercentPerTrade(RiskCheck):
    name = "risk_percent_per_trade"

    @staticmethod
    def evaluate(params: TradeRiskParams, equity: float, limits: RiskLimits) -> RiskCheckResult:
        if params.stop_loss_price is None:
            return RiskCheckResult.ok()

        risk_pct = params.potential_loss / equity * 100.0
        max_pct = limits.max_risk_percent_per_trade
        if max_pct > 0 and risk_pct > max_pct:
            return RiskCheckResult.breach(
                f"Trade risks {risk_pct:.2f}% of equity, max allowed is {max_pct:g}%",
                risk_pct=risk_pct,
                max=max_pct,
            )
        return RiskCheckResult.ok(risk_pct=risk_pct)

    async def __call__(self, ctx: RiskContext) -> RiskCheckResult:
        return self.evaluate(ctx.params, ctx.equity, ctx.limits)


class TotalPortfolioRisk(RiskCheck):
    """Stop-loss risk of every active trade plus this one, as % of equity."""

    name = "total_portfolio_risk"

    async def __call__(self, ctx: RiskContext) -> RiskCheckResult:
        try:
            trades = await ctx.ledger.active_trades(ctx.params.account_id)
        except Exception as e:
            return RiskCheckResult.dependency(f"Portfolio risk check failed: {e}")

        existing_risk = 0.0
        for trade in trades:
            if trade.stop_loss is None or not trade.entry_price:
                continue
            existing_risk += trade.quantity * abs(trade.entry_price - trade.stop_loss)

        new_risk = ctx.params.potential_loss
        total_risk = existing_risk + new_risk
        total_risk_pct = total_risk / ctx.equity * 100.0
        max_pct = ctx.limits.max_total_portfolio_risk_percent

        if max_pct > 0 and total_risk_pct > max_pct:
            return RiskCheckResult.breach(
                f"Total portfolio risk would be {total_risk_pct:.2f}%, max allowed is {max_pct:g}%",
                existing_risk=existing_risk,
                new_risk=new_risk,
                total_risk=total_risk,
                total_risk_pct=total_risk_pct,
            )
        return RiskCheckResult.ok(total_risk_pct=total_risk_pct)


class StrategyAllocationLimit(RiskCheck):
    """Caps a strategy's pending and active notional at its share of equity."""

    name = "strategy_allocation"

    async def __call__(self, ctx: RiskContext) -> RiskCheckResult:
        params = ctx.params
        if not params.strategy_name:
            return RiskCheckResult.ok()

        try:
            allocation_pct = await ctx.tracker.resolve_allocation_pct(params.account_id, params.strategy_name)
            if allocation_pct is None:
                # No cap configured means no cap enforced.
                return RiskCheckResult.ok(allocation_pct=None)
            existing = await ctx.ledger.strategy_exposure(params.account_id, params.strategy_name)
        except Exception as e:
            return RiskCheckResult.dependency(f"Strategy allocation check failed: {e}")

        new_exposure = params.notional
        total_exposure = existing + new_exposure
        max_exposure = ctx.equity * allocation_pct / 100.0

        if total_exposure > max_exposure:
            used_pct = total_exposure / ctx.equity * 100.0
            return RiskCheckResult.breach(
                f'Strategy "{params.strategy_name}" would use ${total_exposure:.2f} ({used_pct:.1f}%), '
                f"max allowed is {allocation_pct:g}% (${max_exposure:.2f})",
                existing_exposure=existing,
                new_exposure=new_exposure,
                total_exposure=total_exposure,
                max_exposure=max_exposure,
            )
        return RiskCheckResult.ok(total_exposure=total_exposure, max_exposure=max_exposure)


class CrossStrategyConflict(RiskCheck):
    """Rejects opening against another strategy's active position on the same symbol."""

    name = "cross_strategy_conflict"

    async def __call__(self, ctx: RiskContext) -> RiskCheckResult:
        params = ctx.params
        if not params.strategy_name:
            return RiskCheckResult.ok()

        try:
            others = await ctx.ledger.other_strategy_trades(params.account_id, params.symbol, params.strategy_name)
        except Exception as e:
            return RiskCheckResult.dependency(f"Conflict check failed: {e}")

        opposing = next((t for t in others if t.side != params.side), None)
        if opposing is not None:
            return RiskCheckResult.breach(
                f'Conflict: strategy "{opposing.strategy_name}" has an active {opposing.side} on {params.symbol}. '
                f'Cannot open {params.side} from "{params.strategy_name}".',
                conflicting_strategy=opposing.strategy_name,
                conflicting_side=opposing.side,
            )
        return RiskCheckResult.ok()


class PortfolioDrawdownLimit(RiskCheck):
    """Blocks every trade while the account is drawn down beyond its limit."""

    name = "portfolio_drawdown"

    async def __call__(self, ctx: RiskContext) -> RiskCheckResult:
        peak = ctx.tracker.get_peak_equity(ctx.params.account_id)
        if peak <= 0:
            # No baseline to compare against.
            return RiskCheckResult.ok()

        current = ctx.equity
        dd = drawdown_pct(peak, current)
        max_dd = ctx.limits.max_portfolio_drawdown_percent
        if max_dd > 0 and dd > max_dd:
            return RiskCheckResult.breach(
                f"CIRCUIT BREAKER: Portfolio drawdown is {dd:.2f}% (peak: ${peak:.2f}, current: ${current:.2f}). "
                f"Max allowed: {max_dd:g}%. All trading halted.",
                peak_equity=peak,
                current_equity=current,
                drawdown_pct=dd,
            )
        return RiskCheckResult.ok(drawdown_pct=dd, peak_equity=peak)


DEFAULT_PIPELINE: tuple[RiskCheck, ...] = (
    EquityPrecondition(),
    StopLossDirection(),
    MaxLossPerTrade(),
    RiskPercentPerTrade(),
    TotalPortfolioRisk(),
    StrategyAllocationLimit(),
    CrossStrategyConflict(),
    PortfolioDrawdownLimit(),
)
