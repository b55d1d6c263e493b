"""Repositories over the trade ledger, account configuration and performance history."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, TypeVar

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from riskguard.config import Config
from riskguard.storage.models import (
    PortfolioSnapshot,
    RiskLimitOverride,
    StrategyAllocationOverride,
    StrategyPerformance,
    Trade,
    TradingAccount,
)

T = TypeVar("T")

OPEN_STATUSES = ("pending", "active")


@dataclass(frozen=True)
class LedgerTrade:
    id: int
    strategy_name: str | None
    symbol: str
    side: str
    quantity: float
    entry_price: float | None
    stop_loss: float | None
    status: str


def _to_ledger_trade(row: Trade) -> LedgerTrade:
    return LedgerTrade(
        id=row.id,
        strategy_name=row.strategy_name,
        symbol=row.symbol,
        side=row.side,
        quantity=float(row.quantity),
        entry_price=float(row.entry_price) if row.entry_price is not None else None,
        stop_loss=float(row.stop_loss) if row.stop_loss is not None else None,
        status=row.status,
    )


class _Repo:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], timeout: float | None = None) -> None:
        self.session_factory = session_factory
        self.timeout = timeout if timeout is not None else Config.EXTERNAL_CALL_TIMEOUT_SECONDS

    async def _bounded(self, coro: Awaitable[T]) -> T:
        return await asyncio.wait_for(coro, timeout=self.timeout)


class TradeLedger(_Repo):
    """Read access to pending and active trades."""

    async def active_trades(self, account_id: int, symbol: str | None = None) -> list[LedgerTrade]:
        async def _query() -> list[LedgerTrade]:
            stmt = select(Trade).where(
                Trade.trading_account_id == account_id,
                Trade.status == "active",
            )
            if symbol is not None:
                stmt = stmt.where(Trade.symbol == symbol)
            async with self.session_factory() as session:
                res = await session.execute(stmt.order_by(Trade.id.asc()))
                return [_to_ledger_trade(r) for r in res.scalars().all()]

        return await self._bounded(_query())

    async def strategy_exposure(self, account_id: int, strategy_name: str) -> float:
        """Notional (quantity * entry price) of a strategy's pending and active trades."""
        async def _query() -> float:
            stmt = select(
                func.coalesce(func.sum(Trade.quantity * func.coalesce(Trade.entry_price, 0.0)), 0.0)
            ).where(
                Trade.trading_account_id == account_id,
                Trade.strategy_name == strategy_name,
                Trade.status.in_(OPEN_STATUSES),
            )
            async with self.session_factory() as session:
                res = await session.execute(stmt)
                return float(res.scalar() or 0.0)

        return await self._bounded(_query())

    async def other_strategy_trades(self, account_id: int, symbol: str, strategy_name: str) -> list[LedgerTrade]:
        async def _query() -> list[LedgerTrade]:
            stmt = (
                select(Trade)
                .where(
                    Trade.trading_account_id == account_id,
                    Trade.symbol == symbol,
                    Trade.status == "active",
                    Trade.strategy_name.is_not(None),
                    Trade.strategy_name != strategy_name,
                )
                .order_by(Trade.id.asc())
            )
            async with self.session_factory() as session:
                res = await session.execute(stmt)
                return [_to_ledger_trade(r) for r in res.scalars().all()]

        return await self._bounded(_query())


class AccountRepo(_Repo):
    """Account activity flags and per-account configuration overrides."""

    async def active_account_ids(self) -> list[int]:
        async def _query() -> list[int]:
            async with self.session_factory() as session:
                res = await session.execute(
                    select(TradingAccount.id).where(TradingAccount.is_active.is_(True)).order_by(TradingAccount.id)
                )
                return [int(x) for x in res.scalars().all()]

        return await self._bounded(_query())

    async def risk_limit_override(self, account_id: int) -> RiskLimitOverride | None:
        async def _query() -> RiskLimitOverride | None:
            async with self.session_factory() as session:
                res = await session.execute(select(RiskLimitOverride).where(RiskLimitOverride.account_id == account_id))
                return res.scalar_one_or_none()

        return await self._bounded(_query())

    async def allocation_overrides(self, account_id: int) -> dict[str, float]:
        async def _query() -> dict[str, float]:
            async with self.session_factory() as session:
                res = await session.execute(
                    select(StrategyAllocationOverride).where(StrategyAllocationOverride.account_id == account_id)
                )
                return {r.strategy_id: float(r.allocation_pct) for r in res.scalars().all()}

        return await self._bounded(_query())


class PerformanceRepo(_Repo):
    """Portfolio snapshot history and per-strategy performance rows."""

    async def latest_peak_equity(self, account_id: int) -> float | None:
        """Peak equity carried by the most recent snapshot, or None without snapshots.

        Each snapshot stores the running peak, so the latest one holds the highest
        equity recorded since the last administrative reset.
        """
        async def _query() -> float | None:
            async with self.session_factory() as session:
                res = await session.execute(
                    select(PortfolioSnapshot)
                    .where(PortfolioSnapshot.trading_account_id == account_id)
                    .order_by(PortfolioSnapshot.snapshot_at.desc(), PortfolioSnapshot.id.desc())
                    .limit(1)
                )
                row = res.scalar_one_or_none()
                if row is None:
                    return None
                return max(float(row.peak_equity), float(row.total_equity))

        return await self._bounded(_query())

    async def insert_snapshot(self, **values: Any) -> int:
        async def _query() -> int:
            async with self.session_factory() as session:
                async with session.begin():
                    row = PortfolioSnapshot(**values)
                    session.add(row)
                    await session.flush()
                    return int(row.id)

        return await self._bounded(_query())

    async def snapshots(
        self,
        account_id: int,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
    ) -> list[PortfolioSnapshot]:
        async def _query() -> list[PortfolioSnapshot]:
            stmt = select(PortfolioSnapshot).where(PortfolioSnapshot.trading_account_id == account_id)
            if start is not None:
                stmt = stmt.where(PortfolioSnapshot.snapshot_at >= start)
            if end is not None:
                stmt = stmt.where(PortfolioSnapshot.snapshot_at <= end)
            stmt = stmt.order_by(PortfolioSnapshot.snapshot_at.asc(), PortfolioSnapshot.id.asc())
            if limit:
                stmt = stmt.limit(limit)
            async with self.session_factory() as session:
                res = await session.execute(stmt)
                return list(res.scalars().all())

        return await self._bounded(_query())

    async def latest_strategy_row(self, account_id: int, strategy_id: str) -> StrategyPerformance | None:
        async def _query() -> StrategyPerformance | None:
            async with self.session_factory() as session:
                res = await session.execute(
                    select(StrategyPerformance)
                    .where(
                        StrategyPerformance.trading_account_id == account_id,
                        StrategyPerformance.strategy_id == strategy_id,
                    )
                    .order_by(StrategyPerformance.id.desc())
                    .limit(1)
                )
                return res.scalar_one_or_none()

        return await self._bounded(_query())

    async def append_strategy_row(self, **values: Any) -> int:
        async def _query() -> int:
            async with self.session_factory() as session:
                async with session.begin():
                    row = StrategyPerformance(**values)
                    session.add(row)
                    await session.flush()
                    return int(row.id)

        return await self._bounded(_query())
