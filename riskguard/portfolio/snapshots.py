"""Periodic equity snapshots and time-series performance metrics."""
from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from typing import Callable, Literal, Sequence

from riskguard.config import Config
from riskguard.events import EventBroadcaster
from riskguard.portfolio.scheduler import PeriodicRunner
from riskguard.portfolio.schemas import EquityCurvePoint, EquitySnapshotOut, PerformanceMetrics
from riskguard.portfolio.tracker import PortfolioTracker, utc_now
from riskguard.storage.repos import AccountRepo, PerformanceRepo

logger = logging.getLogger(__name__)

Period = Literal["day", "week", "month", "all"]

PERIOD_LENGTHS: dict[str, timedelta] = {
    "day": timedelta(days=1),
    "week": timedelta(days=7),
    "month": timedelta(days=30),
}

# Five-minute snapshots: 288 per day, 365 days a year
PERIODS_PER_YEAR = 288 * 365
MIN_SHARPE_POINTS = 10
MIN_SHARPE_RETURNS = 5


def sharpe_ratio(equities: Sequence[float]) -> float | None:
    """Annualised Sharpe ratio of snapshot-to-snapshot returns, or None when undefined."""
    if len(equities) < MIN_SHARPE_POINTS:
        return None

    returns = [
        (curr - prev) / prev
        for prev, curr in zip(equities, equities[1:])
        if prev > 0
    ]
    if len(returns) < MIN_SHARPE_RETURNS:
        return None

    mean = sum(returns) / len(returns)
    variance = sum((r - mean) ** 2 for r in returns) / len(returns)
    std_dev = math.sqrt(variance)
    if std_dev == 0:
        return None

    return round(mean / std_dev * math.sqrt(PERIODS_PER_YEAR), 2)


class EquitySnapshotter:
    """Stores portfolio snapshots and derives equity curves from them."""

    def __init__(
        self,
        tracker: PortfolioTracker,
        performance: PerformanceRepo,
        accounts: AccountRepo,
        broadcaster: EventBroadcaster | None = None,
        *,
        interval: float | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.tracker = tracker
        self.performance = performance
        self.accounts = accounts
        self.broadcaster = broadcaster
        self.clock = clock
        self._runner = PeriodicRunner(
            "Equity snapshotter",
            interval if interval is not None else Config.SNAPSHOT_INTERVAL_SECONDS,
            self.snapshot_all_accounts,
            run_immediately=True,
        )

    @property
    def running(self) -> bool:
        return self._runner.running

    def start(self) -> bool:
        return self._runner.start()

    async def stop(self) -> None:
        await self._runner.stop()

    async def snapshot_all_accounts(self) -> None:
        try:
            account_ids = await self.accounts.active_account_ids()
        except Exception as e:
            logger.error(f"Failed to list active accounts for snapshots: {e}")
            return
        for account_id in account_ids:
            await self.take_snapshot(account_id)

    async def take_snapshot(self, account_id: int) -> EquitySnapshotOut | None:
        """Capture and store the current portfolio state. Returns None on failure."""
        try:
            summary = await self.tracker.get_portfolio_summary(account_id)
            allocations = {a.strategy_id: a.target_pct for a in summary.strategy_allocations}
            snapshot = EquitySnapshotOut(
                account_id=account_id,
                total_equity=summary.equity,
                unrealized_pnl=summary.unrealized_pnl,
                realized_pnl_today=summary.realized_pnl_today,
                peak_equity=summary.peak_equity,
                drawdown_pct=summary.drawdown_pct,
                position_count=summary.position_count,
                strategy_allocations=allocations,
                snapshot_at=self.clock(),
            )
            await self.performance.insert_snapshot(
                trading_account_id=account_id,
                total_equity=snapshot.total_equity,
                unrealized_pnl=snapshot.unrealized_pnl,
                realized_pnl_today=snapshot.realized_pnl_today,
                peak_equity=snapshot.peak_equity,
                drawdown_pct=snapshot.drawdown_pct,
                position_count=snapshot.position_count,
                strategy_allocations=snapshot.strategy_allocations,
                snapshot_at=snapshot.snapshot_at,
            )
        except Exception as e:
            logger.error(f"Snapshot failed for account {account_id}: {e}")
            return None

        if self.broadcaster is not None:
            self.broadcaster.broadcast_to_account(
                account_id,
                "portfolio:equity_update",
                {
                    "account_id": account_id,
                    "equity": snapshot.total_equity,
                    "drawdown_pct": snapshot.drawdown_pct,
                    "peak_equity": snapshot.peak_equity,
                    "position_count": snapshot.position_count,
                    "unrealized_pnl": snapshot.unrealized_pnl,
                },
            )
        return snapshot

    async def get_equity_curve(
        self,
        account_id: int,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
    ) -> list[EquityCurvePoint]:
        rows = await self.performance.snapshots(account_id, start=start, end=end, limit=limit)
        return [
            EquityCurvePoint(
                timestamp=row.snapshot_at,
                equity=float(row.total_equity),
                drawdown_pct=float(row.drawdown_pct),
            )
            for row in rows
        ]

    async def get_performance_metrics(
        self,
        account_id: int,
        period: Period = "all",
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> PerformanceMetrics:
        if period not in ("day", "week", "month", "all"):
            raise ValueError(f"Unknown period: {period}")

        now = self.clock()
        end = end or now
        if start is None and period in PERIOD_LENGTHS:
            start = now - PERIOD_LENGTHS[period]

        curve = await self.get_equity_curve(account_id, start=start, end=end)
        if len(curve) < 2:
            return PerformanceMetrics(
                return_pct=0.0,
                sharpe_ratio=None,
                max_drawdown=0.0,
                total_pnl=0.0,
                data_points=len(curve),
                period_start=start,
                period_end=end,
            )

        first = curve[0].equity
        last = curve[-1].equity
        return_pct = (last - first) / first * 100.0 if first > 0 else 0.0

        return PerformanceMetrics(
            return_pct=round(return_pct, 2),
            sharpe_ratio=sharpe_ratio([p.equity for p in curve]),
            max_drawdown=round(max(p.drawdown_pct for p in curve), 2),
            total_pnl=round(last - first, 2),
            data_points=len(curve),
            period_start=start,
            period_end=end,
        )
