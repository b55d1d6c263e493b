"""Portfolio tracking, equity snapshots and the drawdown circuit breaker."""
from riskguard.portfolio.state import AccountRegistry
from riskguard.portfolio.tracker import EquityUnavailableError, PortfolioTracker, drawdown_pct

__all__ = ["AccountRegistry", "EquityUnavailableError", "PortfolioTracker", "drawdown_pct"]
