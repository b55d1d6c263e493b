"""Persistence layer: ORM models, engine and repositories."""
from riskguard.storage.models import (
    Base,
    PortfolioSnapshot,
    RiskLimitOverride,
    StrategyAllocationOverride,
    StrategyPerformance,
    Trade,
    TradingAccount,
)

__all__ = [
    "Base",
    "PortfolioSnapshot",
    "RiskLimitOverride",
    "StrategyAllocationOverride",
    "StrategyPerformance",
    "Trade",
    "TradingAccount",
]
