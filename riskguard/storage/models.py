"""SQLAlchemy ORM models for accounts, the trade ledger and performance history."""
from sqlalchemy import (
    Boolean, Column, DateTime, Float, ForeignKey, Index, Integer, JSON, String, UniqueConstraint
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


class TradingAccount(Base):
    __tablename__ = "trading_accounts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())


class RiskLimitOverride(Base):
    """Per-account overrides; NULL columns fall back to the configured defaults."""

    __tablename__ = "risk_limits"

    account_id = Column(Integer, ForeignKey("trading_accounts.id", ondelete="CASCADE"), primary_key=True)
    max_loss_per_trade_usd = Column(Float, nullable=True)
    max_risk_percent_per_trade = Column(Float, nullable=True)
    max_total_portfolio_risk_percent = Column(Float, nullable=True)
    max_portfolio_drawdown_percent = Column(Float, nullable=True)
    max_strategy_drawdown_percent = Column(Float, nullable=True)


class StrategyAllocationOverride(Base):
    __tablename__ = "strategy_allocations"
    __table_args__ = (
        UniqueConstraint("account_id", "strategy_id", name="uq_strategy_allocation_account_strategy"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(Integer, ForeignKey("trading_accounts.id", ondelete="CASCADE"), nullable=False)
    strategy_id = Column(String(64), nullable=False)
    allocation_pct = Column(Float, nullable=False)


class Trade(Base):
    __tablename__ = "trades"

    id = Column(Integer, primary_key=True, autoincrement=True)
    trading_account_id = Column(Integer, ForeignKey("trading_accounts.id", ondelete="CASCADE"), nullable=False)
    strategy_name = Column(String(64), nullable=True)
    symbol = Column(String(20), nullable=False)
    side = Column(String(5), nullable=False)  # 'long' or 'short'
    quantity = Column(Float, nullable=False)
    entry_price = Column(Float, nullable=True)
    stop_loss = Column(Float, nullable=True)
    status = Column(String(10), nullable=False, default="pending")  # pending | active | closed
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())


class PortfolioSnapshot(Base):
    __tablename__ = "portfolio_snapshots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    trading_account_id = Column(Integer, ForeignKey("trading_accounts.id", ondelete="CASCADE"), nullable=False)
    total_equity = Column(Float, nullable=False)
    unrealized_pnl = Column(Float, nullable=False, default=0.0)
    realized_pnl_today = Column(Float, nullable=False, default=0.0)
    peak_equity = Column(Float, nullable=False)
    drawdown_pct = Column(Float, nullable=False, default=0.0)
    position_count = Column(Integer, nullable=False, default=0)
    strategy_allocations = Column(JSON, nullable=True)
    snapshot_at = Column(DateTime(timezone=True), nullable=False, default=func.now())


class StrategyPerformance(Base):
    """Append-only; the latest row per (account, strategy) is current."""

    __tablename__ = "strategy_performance"

    id = Column(Integer, primary_key=True, autoincrement=True)
    trading_account_id = Column(Integer, ForeignKey("trading_accounts.id", ondelete="CASCADE"), nullable=False)
    strategy_id = Column(String(64), nullable=False)
    total_pnl = Column(Float, nullable=False, default=0.0)
    win_count = Column(Integer, nullable=False, default=0)
    loss_count = Column(Integer, nullable=False, default=0)
    peak_equity = Column(Float, nullable=False, default=0.0)
    current_equity = Column(Float, nullable=False, default=0.0)
    max_drawdown = Column(Float, nullable=False, default=0.0)
    sharpe_ratio = Column(Float, nullable=True)
    current_allocation_pct = Column(Float, nullable=False, default=0.0)
    is_active = Column(Boolean, nullable=False, default=True)
    snapshot_at = Column(DateTime(timezone=True), nullable=False, default=func.now())


Index("ix_trades_account_status", Trade.trading_account_id, Trade.status)
Index("ix_trades_account_symbol", Trade.trading_account_id, Trade.symbol)
Index("ix_portfolio_snapshots_account_time", PortfolioSnapshot.trading_account_id, PortfolioSnapshot.snapshot_at)
Index(
    "ix_strategy_performance_account_strategy",
    StrategyPerformance.trading_account_id,
    StrategyPerformance.strategy_id,
    StrategyPerformance.id,
)
