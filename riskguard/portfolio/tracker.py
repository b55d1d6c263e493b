"""Equity, peak/drawdown and capital allocation tracking per trading account."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, TypeVar

from riskguard.config import Config
from riskguard.exchange.base import ExchangeAdapter, ExchangePosition
from riskguard.portfolio.schemas import (
    AggregatePerformance,
    PortfolioSummary,
    PositionOut,
    StrategyAllocationInfo,
    StrategyPerformanceMetrics,
)
from riskguard.portfolio.state import AccountRegistry, AccountState
from riskguard.storage.repos import AccountRepo, PerformanceRepo
from riskguard.strategies.executor import StrategyExecutor
from riskguard.strategies.registry import StrategyDefinition, StrategyRegistry

logger = logging.getLogger(__name__)

T = TypeVar("T")

RefreshListener = Callable[[int], None]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def drawdown_pct(peak_equity: float, equity: float) -> float:
    if peak_equity <= 0:
        return 0.0
    return max(0.0, (peak_equity - equity) / peak_equity * 100.0)


class EquityUnavailableError(RuntimeError):
    """The exchange could not report account state; the value is unknown, not zero."""

    def __init__(self, account_id: int, cause: BaseException | str) -> None:
        self.account_id = account_id
        self.cause = cause
        super().__init__(f"Equity unavailable for account {account_id}: {cause}")


class PortfolioTracker:
    """Tracks capital, peak equity, drawdown and daily P&L for every account.

    ``get_equity`` and ``get_portfolio_summary`` are the only calls that refresh
    state from the exchange; everything else reads the last known values.
    """

    def __init__(
        self,
        exchange: ExchangeAdapter,
        performance: PerformanceRepo,
        accounts: AccountRepo,
        registry: StrategyRegistry,
        executor: StrategyExecutor | None = None,
        *,
        timeout: float | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.exchange = exchange
        self.performance = performance
        self.accounts = accounts
        self.registry = registry
        self.executor = executor
        self.timeout = timeout if timeout is not None else Config.EXTERNAL_CALL_TIMEOUT_SECONDS
        self.clock = clock
        self._states: AccountRegistry[AccountState] = AccountRegistry(AccountState)
        self._listeners: list[RefreshListener] = []
        self._pending: set[asyncio.Task] = set()

    # ── Refresh ──────────────────────────────────────────────

    def add_refresh_listener(self, listener: RefreshListener) -> None:
        """Register a callback invoked with the account id after every successful refresh."""
        self._listeners.append(listener)

    async def get_equity(self, account_id: int) -> float:
        """Fetch current equity and fold it into the peak. Raises EquityUnavailableError."""
        state = self._states.get(account_id)
        async with state.lock:
            await self._restore(account_id, state)
            equity = await self._exchange_call(account_id, self.exchange.get_total_equity(account_id))
            self._apply_equity(state, float(equity))
        self._notify(account_id)
        return float(equity)

    async def get_portfolio_summary(self, account_id: int) -> PortfolioSummary:
        """Refresh equity, positions and balance, then build the canonical snapshot."""
        state = self._states.get(account_id)
        async with state.lock:
            await self._restore(account_id, state)
            equity, positions, available = await asyncio.gather(
                self._exchange_call(account_id, self.exchange.get_total_equity(account_id)),
                self._exchange_call(account_id, self.exchange.get_positions(account_id)),
                self._exchange_call(account_id, self.exchange.get_available_balance(account_id)),
            )
            # Nothing is written until every read succeeded.
            self._apply_equity(state, float(equity))
            peak = state.peak_equity
            realized_today = state.realized_pnl_today

        overrides = await self._allocation_overrides_or_empty(account_id)
        allocations = self._build_allocations(account_id, float(equity), positions, overrides)
        self._notify(account_id)

        return PortfolioSummary(
            account_id=account_id,
            equity=float(equity),
            available_balance=float(available),
            unrealized_pnl=sum(p.unrealized_pnl for p in positions),
            realized_pnl_today=realized_today,
            peak_equity=peak,
            drawdown_pct=round(drawdown_pct(peak, float(equity)), 2),
            position_count=len(positions),
            positions=[
                PositionOut(
                    symbol=p.symbol,
                    side=p.side,
                    size=p.size,
                    entry_price=p.entry_price,
                    unrealized_pnl=p.unrealized_pnl,
                    margin=p.margin,
                )
                for p in positions
            ],
            strategy_allocations=allocations,
            last_updated=self.clock(),
        )

    # ── Last known values ────────────────────────────────────

    # Reads never create state for an account that has not been seen.
    def get_peak_equity(self, account_id: int) -> float:
        state = self._states.peek(account_id)
        return state.peak_equity if state is not None else 0.0

    def get_last_equity(self, account_id: int) -> float:
        state = self._states.peek(account_id)
        return state.equity if state is not None else 0.0

    def get_drawdown_pct(self, account_id: int) -> float:
        state = self._states.peek(account_id)
        if state is None:
            return 0.0
        return drawdown_pct(state.peak_equity, state.equity)

    def get_realized_pnl_today(self, account_id: int) -> float:
        state = self._states.peek(account_id)
        if state is None:
            return 0.0
        self._roll_day(state)
        return state.realized_pnl_today

    async def reset_peak(self, account_id: int) -> float:
        """Administrative reset of the peak to the last known equity."""
        state = self._states.get(account_id)
        async with state.lock:
            previous = state.peak_equity
            state.peak_equity = state.equity
        logger.warning(
            "Peak equity reset for account %s: %.2f -> %.2f", account_id, previous, state.peak_equity
        )
        return state.peak_equity

    # ── Allocation ───────────────────────────────────────────

    async def resolve_allocation_pct(self, account_id: int, strategy_id: str) -> float | None:
        """Target share of equity for a strategy, or None when none is configured.

        Datastore errors propagate so callers gating trades can fail closed.
        """
        overrides = await self.accounts.allocation_overrides(account_id)
        if strategy_id in overrides:
            return overrides[strategy_id]
        definition = self.registry.get(strategy_id)
        if definition is None:
            return None
        return overrides.get(definition.id, definition.capital_allocation_pct)

    async def get_allocated_capital(self, account_id: int, strategy_id: str) -> float:
        """Capital allotted to a strategy from the last known equity; 0 when unregistered."""
        pct = await self.resolve_allocation_pct(account_id, strategy_id)
        if pct is None:
            return 0.0
        return self.get_last_equity(account_id) * pct / 100.0

    # ── Realized P&L ─────────────────────────────────────────

    def record_trade_pnl(self, account_id: int, strategy_id: str, pnl: float) -> asyncio.Task | None:
        """Add realized P&L to today's total and persist a performance row in the background.

        The in-memory total is updated before returning and is never rolled back;
        the returned task only covers the historical record.
        """
        state = self._states.get(account_id)
        # No await between the read and the write, so this is atomic on the loop.
        self._roll_day(state)
        state.realized_pnl_today += float(pnl)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(
                "No running event loop; performance row for %s on account %s not persisted", strategy_id, account_id
            )
            return None

        task = loop.create_task(self._persist_strategy_pnl(account_id, strategy_id, float(pnl)))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def wait_for_pending(self) -> None:
        """Wait for background persistence to finish (shutdown and tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ── Strategy performance ─────────────────────────────────

    async def get_strategy_performance(self, account_id: int, strategy_id: str) -> StrategyPerformanceMetrics:
        row = await self.performance.latest_strategy_row(account_id, strategy_id)
        if row is not None:
            total = int(row.win_count) + int(row.loss_count)
            return StrategyPerformanceMetrics(
                strategy_id=strategy_id,
                total_pnl=float(row.total_pnl),
                win_count=int(row.win_count),
                loss_count=int(row.loss_count),
                win_rate=(int(row.win_count) / total * 100.0) if total > 0 else 0.0,
                peak_equity=float(row.peak_equity),
                current_equity=float(row.current_equity),
                max_drawdown=float(row.max_drawdown),
                sharpe_ratio=float(row.sharpe_ratio) if row.sharpe_ratio is not None else None,
                current_allocation_pct=float(row.current_allocation_pct),
                is_active=bool(row.is_active),
                last_updated=row.snapshot_at,
            )

        # No record yet: defaults from the strategy definition
        definition = self.registry.get(strategy_id)
        return StrategyPerformanceMetrics(
            strategy_id=strategy_id,
            total_pnl=0.0,
            win_count=0,
            loss_count=0,
            win_rate=0.0,
            peak_equity=0.0,
            current_equity=0.0,
            max_drawdown=0.0,
            sharpe_ratio=None,
            current_allocation_pct=definition.capital_allocation_pct if definition else 0.0,
            is_active=True,
            last_updated=self.clock(),
        )

    async def get_aggregate_performance(self, account_id: int) -> AggregatePerformance:
        summaries = [
            await self.get_strategy_performance(account_id, definition.id) for definition in self.registry.all()
        ]
        wins = sum(s.win_count for s in summaries)
        losses = sum(s.loss_count for s in summaries)
        total = wins + losses
        return AggregatePerformance(
            total_pnl=sum(s.total_pnl for s in summaries),
            total_wins=wins,
            total_losses=losses,
            win_rate=(wins / total * 100.0) if total > 0 else 0.0,
            max_drawdown=max((s.max_drawdown for s in summaries), default=0.0),
            strategy_summaries=summaries,
        )

    async def get_strategy_drawdown(self, account_id: int, strategy_id: str) -> float | None:
        """Drawdown of the strategy's own equity curve; None when it has no record."""
        row = await self.performance.latest_strategy_row(account_id, strategy_id)
        if row is None:
            return None
        return drawdown_pct(float(row.peak_equity), float(row.current_equity))

    # ── Private ──────────────────────────────────────────────

    async def _exchange_call(self, account_id: int, call: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(call, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise EquityUnavailableError(account_id, f"exchange call timed out after {self.timeout}s") from e
        except EquityUnavailableError:
            raise
        except Exception as e:
            raise EquityUnavailableError(account_id, e) from e

    async def _restore(self, account_id: int, state: AccountState) -> None:
        """Seed the peak from persisted snapshots on first touch (caller holds the lock)."""
        if state.restored:
            return
        try:
            peak = await self.performance.latest_peak_equity(account_id)
        except Exception as e:
            logger.warning(f"Account {account_id}: failed to restore peak equity from snapshots: {e}")
            return
        state.restored = True
        if peak is not None and peak > state.peak_equity:
            state.peak_equity = peak
            logger.info(f"Account {account_id}: restored peak equity ${peak:.2f}")

    def _apply_equity(self, state: AccountState, equity: float) -> None:
        self._roll_day(state)
        state.equity = equity
        if equity > state.peak_equity:
            state.peak_equity = equity

    def _roll_day(self, state: AccountState) -> None:
        today = self.clock().astimezone(timezone.utc).date()
        if state.day != today:
            state.realized_pnl_today = 0.0
            state.day = today

    def _notify(self, account_id: int) -> None:
        for listener in list(self._listeners):
            try:
                listener(account_id)
            except Exception as e:
                logger.warning(f"Equity refresh listener failed for account {account_id}: {e}")

    async def _allocation_overrides_or_empty(self, account_id: int) -> dict[str, float]:
        try:
            return await self.accounts.allocation_overrides(account_id)
        except Exception as e:
            logger.warning(f"Account {account_id}: allocation overrides unavailable, using defaults: {e}")
            return {}

    def _build_allocations(
        self,
        account_id: int,
        equity: float,
        positions: list[ExchangePosition],
        overrides: dict[str, float],
    ) -> list[StrategyAllocationInfo]:
        allocations: list[StrategyAllocationInfo] = []
        for definition in self.registry.all():
            target_pct = overrides.get(definition.id, definition.capital_allocation_pct)
            attributed = [p for p in positions if p.symbol in definition.symbols]
            allocations.append(
                StrategyAllocationInfo(
                    strategy_id=definition.id,
                    strategy_name=definition.name,
                    category=definition.category,
                    target_pct=target_pct,
                    current_equity=equity * target_pct / 100.0,
                    position_count=len(attributed),
                    unrealized_pnl=sum(p.unrealized_pnl for p in attributed),
                    is_active=self._is_active(account_id, definition),
                )
            )
        return allocations

    def _is_active(self, account_id: int, definition: StrategyDefinition) -> bool:
        if self.executor is None:
            return True
        return not self.executor.is_paused(account_id, definition.id)

    async def _persist_strategy_pnl(self, account_id: int, strategy_id: str, pnl: float) -> None:
        state = self._states.get(account_id)
        try:
            async with state.persist_lock:
                prev = await self.performance.latest_strategy_row(account_id, strategy_id)
                target_pct = await self.resolve_allocation_pct(account_id, strategy_id) or 0.0

                if prev is not None:
                    base = float(prev.current_equity)
                    peak = float(prev.peak_equity)
                else:
                    base = state.equity * target_pct / 100.0
                    peak = base

                current = base + pnl
                peak = max(peak, current)
                max_dd = max(float(prev.max_drawdown) if prev is not None else 0.0, drawdown_pct(peak, current))
                # Break-even trades count as neither a win nor a loss
                win = 1 if pnl > 0 else 0
                loss = 1 if pnl < 0 else 0

                await self.performance.append_strategy_row(
                    trading_account_id=account_id,
                    strategy_id=strategy_id,
                    total_pnl=(float(prev.total_pnl) if prev is not None else 0.0) + pnl,
                    win_count=(int(prev.win_count) if prev is not None else 0) + win,
                    loss_count=(int(prev.loss_count) if prev is not None else 0) + loss,
                    peak_equity=peak,
                    current_equity=current,
                    max_drawdown=max_dd,
                    sharpe_ratio=prev.sharpe_ratio if prev is not None else None,
                    current_allocation_pct=target_pct,
                    is_active=not (self.executor is not None and self.executor.is_paused(account_id, strategy_id)),
                    snapshot_at=self.clock(),
                )
        except Exception as e:
            logger.error(
                f"Failed to update performance for account {account_id}, strategy {strategy_id}: {e}",
                exc_info=True,
            )
