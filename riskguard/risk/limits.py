"""Per-account risk limits."""
from __future__ import annotations

from dataclasses import asdict, dataclass

from riskguard.config import Config
from riskguard.storage.models import RiskLimitOverride


@dataclass(frozen=True)
class RiskLimits:
    """A limit of zero or less disables the corresponding check."""

    max_loss_per_trade_usd: float
    max_risk_percent_per_trade: float
    max_total_portfolio_risk_percent: float
    max_portfolio_drawdown_percent: float
    max_strategy_drawdown_percent: float

    @classmethod
    def defaults(cls) -> "RiskLimits":
        return cls(
            max_loss_per_trade_usd=Config.RISK_MAX_LOSS_PER_TRADE_USD,
            max_risk_percent_per_trade=Config.RISK_MAX_RISK_PERCENT_PER_TRADE,
            max_total_portfolio_risk_percent=Config.RISK_MAX_TOTAL_PORTFOLIO_RISK_PERCENT,
            max_portfolio_drawdown_percent=Config.RISK_MAX_PORTFOLIO_DRAWDOWN_PERCENT,
            max_strategy_drawdown_percent=Config.RISK_MAX_STRATEGY_DRAWDOWN_PERCENT,
        )

    @classmethod
    def from_override(cls, row: RiskLimitOverride | None) -> "RiskLimits":
        base = cls.defaults()
        if row is None:
            return base

        def pick(name: str) -> float:
            value = getattr(row, name)
            return float(value) if value is not None else getattr(base, name)

        return cls(
            max_loss_per_trade_usd=pick("max_loss_per_trade_usd"),
            max_risk_percent_per_trade=pick("max_risk_percent_per_trade"),
            max_total_portfolio_risk_percent=pick("max_total_portfolio_risk_percent"),
            max_portfolio_drawdown_percent=pick("max_portfolio_drawdown_percent"),
            max_strategy_drawdown_percent=pick("max_strategy_drawdown_percent"),
        )

    def as_dict(self) -> dict[str, float]:
        return asdict(self)
