"""Service container shared by the API routers and the background ticks."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from fastapi import HTTPException
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from riskguard.events import EventBroadcaster
from riskguard.exchange.base import ExchangeAdapter
from riskguard.exchange.paper import PaperExchange
from riskguard.notifier import Notifier
from riskguard.portfolio.circuit_breaker import CircuitBreaker
from riskguard.portfolio.snapshots import EquitySnapshotter
from riskguard.portfolio.tracker import PortfolioTracker, utc_now
from riskguard.risk.service import RiskService
from riskguard.storage.repos import AccountRepo, PerformanceRepo, TradeLedger
from riskguard.strategies.executor import InMemoryStrategyExecutor, StrategyExecutor
from riskguard.strategies.registry import StrategyRegistry, default_registry

logger = logging.getLogger(__name__)


@dataclass
class RiskGuardServices:
    exchange: ExchangeAdapter
    registry: StrategyRegistry
    executor: StrategyExecutor
    broadcaster: EventBroadcaster
    notifier: Notifier | None
    accounts: AccountRepo
    ledger: TradeLedger
    performance: PerformanceRepo
    tracker: PortfolioTracker
    risk: RiskService
    circuit_breaker: CircuitBreaker
    snapshotter: EquitySnapshotter

    @classmethod
    def build(
        cls,
        session_factory: async_sessionmaker[AsyncSession],
        exchange: ExchangeAdapter | None = None,
        registry: StrategyRegistry | None = None,
        executor: StrategyExecutor | None = None,
        notifier: Notifier | None = None,
        broadcaster: EventBroadcaster | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> "RiskGuardServices":
        exchange = exchange or PaperExchange()
        registry = registry or default_registry()
        executor = executor or InMemoryStrategyExecutor()
        broadcaster = broadcaster or EventBroadcaster()

        accounts = AccountRepo(session_factory)
        ledger = TradeLedger(session_factory)
        performance = PerformanceRepo(session_factory)

        tracker = PortfolioTracker(exchange, performance, accounts, registry, executor, clock=clock)
        risk = RiskService(tracker, ledger, accounts)
        circuit_breaker = CircuitBreaker(
            tracker,
            risk,
            executor,
            broadcaster=broadcaster,
            notifier=notifier,
            accounts=accounts,
            clock=clock,
        )
        snapshotter = EquitySnapshotter(tracker, performance, accounts, broadcaster, clock=clock)

        return cls(
            exchange=exchange,
            registry=registry,
            executor=executor,
            broadcaster=broadcaster,
            notifier=notifier,
            accounts=accounts,
            ledger=ledger,
            performance=performance,
            tracker=tracker,
            risk=risk,
            circuit_breaker=circuit_breaker,
            snapshotter=snapshotter,
        )

    async def register_strategies(self) -> None:
        """Attach every catalogued strategy to each active account on the in-memory executor."""
        if not isinstance(self.executor, InMemoryStrategyExecutor):
            return
        try:
            account_ids = await self.accounts.active_account_ids()
        except Exception as e:
            logger.warning(f"Could not register strategies, active accounts unavailable: {e}")
            return
        for account_id in account_ids:
            for definition in self.registry.all():
                self.executor.register(account_id, definition.id)
        logger.info("Registered %d strategies on %d accounts", len(self.registry.all()), len(account_ids))

    def start(self) -> None:
        self.circuit_breaker.watch(self.tracker)
        self.circuit_breaker.start()
        self.snapshotter.start()

    async def stop(self) -> None:
        await self.circuit_breaker.stop()
        await self.snapshotter.stop()
        await self.tracker.wait_for_pending()


_services: RiskGuardServices | None = None


def set_services(services: RiskGuardServices | None) -> None:
    global _services
    _services = services


def current_services() -> RiskGuardServices | None:
    return _services


def get_services() -> RiskGuardServices:
    """FastAPI dependency returning the running service container."""
    if _services is None:
        raise HTTPException(status_code=503, detail="Risk engine is not initialised")
    return _services
