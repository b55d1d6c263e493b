from datetime import datetime, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from riskguard.events import EventBroadcaster
from riskguard.exchange import PaperExchange
from riskguard.portfolio.circuit_breaker import CircuitBreaker
from riskguard.portfolio.schemas import CircuitBreakerConfig
from riskguard.portfolio.tracker import PortfolioTracker
from riskguard.risk.service import RiskService
from riskguard.storage.models import Base, StrategyPerformance, TradingAccount
from riskguard.storage.repos import AccountRepo, PerformanceRepo, TradeLedger
from riskguard.strategies import InMemoryStrategyExecutor, default_registry

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


class RecordingNotifier:
    def __init__(self) -> None:
        self.alerts = []

    def send_circuit_breaker_alert(self, **kwargs) -> bool:
        self.alerts.append(kwargs)
        return True


class CountingExecutor(InMemoryStrategyExecutor):
    def __init__(self) -> None:
        super().__init__()
        self.pause_calls = []

    def pause(self, account_id: int, strategy_id: str) -> bool:
        self.pause_calls.append(strategy_id)
        return super().pause(account_id, strategy_id)


class BrokenExecutor(InMemoryStrategyExecutor):
    def pause(self, account_id: int, strategy_id: str) -> bool:
        raise RuntimeError("executor unreachable")


class BrokenNotifier:
    def send_circuit_breaker_alert(self, **kwargs) -> bool:
        raise RuntimeError("webhook exploded")


class Harness:
    def __init__(self, session_factory, executor=None, notifier=None) -> None:
        self.exchange = PaperExchange(initial_equity=100000.0)
        self.executor = executor or InMemoryStrategyExecutor()
        for strategy_id in ("trend_following", "mean_reversion"):
            self.executor.register(1, strategy_id)
        self.events = []
        self.broadcaster = EventBroadcaster()
        self.broadcaster.subscribe(lambda account_id, event, data: self.events.append((event, data)))
        self.notifier = notifier if notifier is not None else RecordingNotifier()

        accounts = AccountRepo(session_factory, timeout=5.0)
        self.tracker = PortfolioTracker(
            self.exchange,
            PerformanceRepo(session_factory, timeout=5.0),
            accounts,
            default_registry(),
            self.executor,
            timeout=5.0,
            clock=lambda: NOW,
        )
        risk = RiskService(self.tracker, TradeLedger(session_factory, timeout=5.0), accounts)
        self.breaker = CircuitBreaker(
            self.tracker,
            risk,
            self.executor,
            broadcaster=self.broadcaster,
            notifier=self.notifier,
            accounts=accounts,
            clock=lambda: NOW,
        )

    async def evaluate_at(self, equity: float, account_id: int = 1):
        self.exchange.set_equity(account_id, equity)
        return await self.breaker.evaluate(account_id)

    def event_names(self):
        return [(event, data.get("action")) for event, data in self.events]


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as s:
        s.add(TradingAccount(id=1, name="main"))
        await s.commit()
    yield factory
    await engine.dispose()


async def add_strategy_row(session_factory, strategy_id: str, peak: float, current: float) -> None:
    async with session_factory() as s:
        s.add(
            StrategyPerformance(
                trading_account_id=1,
                strategy_id=strategy_id,
                total_pnl=current - peak,
                peak_equity=peak,
                current_equity=current,
                max_drawdown=(peak - current) / peak * 100.0,
                current_allocation_pct=20.0,
                snapshot_at=NOW,
            )
        )
        await s.commit()


@pytest.mark.asyncio
async def test_hysteresis_sequence(session_factory):
    h = Harness(session_factory)

    first = await h.evaluate_at(100000.0)
    assert first.decided is True
    assert first.portfolio_action is None

    tripped = await h.evaluate_at(70000.0)
    assert tripped.portfolio_action == "triggered"
    assert tripped.drawdown_pct == pytest.approx(30.0)
    assert h.breaker.is_portfolio_triggered(1)
    assert h.executor.is_paused(1, "trend_following")
    assert h.executor.is_paused(1, "mean_reversion")
    status = h.breaker.get_status(1)
    assert status.triggered_at == NOW
    assert {s.reason for s in status.halted_strategies} == {"portfolio"}
    assert ("portfolio:circuit_breaker", "triggered") in h.event_names()
    assert ("portfolio:drawdown_alert", None) in h.event_names()

    events_before = len(h.events)
    dead_zone = await h.evaluate_at(85000.0)
    assert dead_zone.portfolio_action is None
    assert h.breaker.is_portfolio_triggered(1)
    assert h.executor.is_paused(1, "trend_following")
    assert len(h.events) == events_before

    recovered = await h.evaluate_at(95000.0)
    assert recovered.portfolio_action == "released"
    assert not h.breaker.is_portfolio_triggered(1)
    assert not h.executor.is_paused(1, "trend_following")
    assert not h.executor.is_paused(1, "mean_reversion")
    assert h.breaker.get_status(1).halted_strategies == []
    assert h.breaker.get_status(1).triggered_at is None
    assert ("portfolio:circuit_breaker", "released") in h.event_names()

    await h.breaker.wait_for_background()
    assert [a["action"] for a in h.notifier.alerts] == ["triggered", "released"]
    assert h.notifier.alerts[0]["scope"] == "portfolio"


@pytest.mark.asyncio
async def test_threshold_boundaries(session_factory):
    h = Harness(session_factory)
    await h.evaluate_at(100000.0)

    # Exactly at the trigger threshold does not trip
    assert (await h.evaluate_at(75000.0)).portfolio_action is None
    assert (await h.evaluate_at(74990.0)).portfolio_action == "triggered"
    # Exactly at the resume threshold releases
    assert (await h.evaluate_at(90000.0)).portfolio_action == "released"


@pytest.mark.asyncio
async def test_repeated_evaluation_is_idempotent(session_factory):
    executor = CountingExecutor()
    h = Harness(session_factory, executor=executor)
    await h.evaluate_at(100000.0)
    await h.evaluate_at(60000.0)
    await h.evaluate_at(60000.0)
    await h.evaluate_at(65000.0)

    assert sorted(executor.pause_calls) == ["mean_reversion", "trend_following"]
    await h.breaker.wait_for_background()
    assert len(h.notifier.alerts) == 1


@pytest.mark.asyncio
async def test_force_resume_without_halt_is_noop(session_factory):
    h = Harness(session_factory)
    await h.evaluate_at(100000.0)
    before = h.breaker.get_status(1)

    assert await h.breaker.force_resume(1) is False
    assert await h.breaker.force_resume(1, "trend_following") is False
    assert h.breaker.get_status(1) == before
    assert h.events == []


@pytest.mark.asyncio
async def test_force_resume_resets_peak(session_factory):
    h = Harness(session_factory)
    await h.evaluate_at(100000.0)
    await h.evaluate_at(70000.0)

    assert await h.breaker.force_resume(1) is True
    assert not h.breaker.is_portfolio_triggered(1)
    assert not h.executor.is_paused(1, "trend_following")
    assert h.tracker.get_peak_equity(1) == 70000.0
    assert ("portfolio:circuit_breaker", "force_resumed") in h.event_names()

    # Drawdown is measured from the new baseline
    assert (await h.evaluate_at(70000.0)).portfolio_action is None
    assert not h.breaker.is_portfolio_triggered(1)


@pytest.mark.asyncio
async def test_strategy_halt_and_recovery(session_factory):
    h = Harness(session_factory)
    await add_strategy_row(session_factory, "mean_reversion", peak=2000.0, current=1600.0)

    result = await h.evaluate_at(100000.0)
    assert result.halted_strategies == ["mean_reversion"]
    assert h.breaker.is_strategy_halted(1, "mean_reversion")
    assert not h.breaker.is_strategy_halted(1, "trend_following")
    assert h.executor.is_paused(1, "mean_reversion")
    assert not h.executor.is_paused(1, "trend_following")
    halted = h.breaker.get_status(1).halted_strategies
    assert [(s.strategy_id, s.reason) for s in halted] == [("mean_reversion", "strategy")]
    assert ("strategy:state_change", None) in h.event_names()
    assert h.events[-1][1]["new_status"] == "paused"

    # 12% sits between resume and trigger: stays halted
    await add_strategy_row(session_factory, "mean_reversion", peak=2000.0, current=1760.0)
    assert (await h.evaluate_at(100000.0)).released_strategies == []
    assert h.breaker.is_strategy_halted(1, "mean_reversion")

    await add_strategy_row(session_factory, "mean_reversion", peak=2000.0, current=1900.0)
    recovered = await h.evaluate_at(100000.0)
    assert recovered.released_strategies == ["mean_reversion"]
    assert not h.executor.is_paused(1, "mean_reversion")
    assert h.events[-1][1]["new_status"] == "running"

    await h.breaker.wait_for_background()
    assert [(a["scope"], a["action"]) for a in h.notifier.alerts] == [
        ("strategy", "triggered"),
        ("strategy", "released"),
    ]


@pytest.mark.asyncio
async def test_portfolio_halt_retags_strategy_halts(session_factory):
    executor = CountingExecutor()
    h = Harness(session_factory, executor=executor)
    await add_strategy_row(session_factory, "mean_reversion", peak=2000.0, current=1600.0)

    await h.evaluate_at(100000.0)
    assert executor.pause_calls == ["mean_reversion"]

    await h.evaluate_at(70000.0)
    assert sorted(executor.pause_calls) == ["mean_reversion", "trend_following"]
    reasons = {s.strategy_id: s.reason for s in h.breaker.get_status(1).halted_strategies}
    assert reasons == {"mean_reversion": "portfolio", "trend_following": "portfolio"}


@pytest.mark.asyncio
async def test_portfolio_release_keeps_strategy_halt_until_recovered(session_factory):
    h = Harness(session_factory)
    await add_strategy_row(session_factory, "mean_reversion", peak=2000.0, current=1680.0)

    assert (await h.evaluate_at(100000.0)).halted_strategies == ["mean_reversion"]
    assert (await h.evaluate_at(70000.0)).portfolio_action == "triggered"

    # 12% is inside the strategy's own resume band
    await add_strategy_row(session_factory, "mean_reversion", peak=2000.0, current=1760.0)
    result = await h.evaluate_at(95000.0)

    assert result.portfolio_action == "released"
    assert result.released_strategies == []
    assert h.breaker.is_strategy_halted(1, "mean_reversion")
    assert h.executor.is_paused(1, "mean_reversion")
    assert not h.breaker.is_strategy_halted(1, "trend_following")
    assert not h.executor.is_paused(1, "trend_following")
    reasons = {s.strategy_id: s.reason for s in h.breaker.get_status(1).halted_strategies}
    assert reasons == {"mean_reversion": "strategy"}

    await add_strategy_row(session_factory, "mean_reversion", peak=2000.0, current=1900.0)
    recovered = await h.evaluate_at(95000.0)
    assert recovered.released_strategies == ["mean_reversion"]
    assert not h.executor.is_paused(1, "mean_reversion")


@pytest.mark.asyncio
async def test_side_effect_failures_do_not_block_trigger(session_factory):
    h = Harness(session_factory, executor=BrokenExecutor(), notifier=BrokenNotifier())

    def broken_handler(account_id, event, data):
        raise RuntimeError("subscriber crashed")

    h.broadcaster.subscribe(broken_handler)

    await h.evaluate_at(100000.0)
    result = await h.evaluate_at(60000.0)
    await h.breaker.wait_for_background()

    assert result.portfolio_action == "triggered"
    assert h.breaker.is_portfolio_triggered(1)
    assert len(h.breaker.get_status(1).halted_strategies) == 2


@pytest.mark.asyncio
async def test_no_decision_without_equity(session_factory):
    h = Harness(session_factory)
    await h.evaluate_at(100000.0)
    await h.evaluate_at(70000.0)

    h.exchange.set_offline(1)
    result = await h.breaker.evaluate(1)
    assert result.decided is False
    assert result.portfolio_action is None
    assert h.breaker.is_portfolio_triggered(1)

    # A never-seen account without readings makes no decision either
    assert (await h.breaker.evaluate(7, refresh=False)).decided is False


@pytest.mark.asyncio
async def test_watch_evaluates_after_equity_refresh(session_factory):
    h = Harness(session_factory)
    h.breaker.watch()

    h.exchange.set_equity(1, 100000.0)
    await h.tracker.get_equity(1)
    h.exchange.set_equity(1, 70000.0)
    await h.tracker.get_equity(1)
    await h.breaker.wait_for_background()

    assert h.breaker.is_portfolio_triggered(1)


@pytest.mark.asyncio
async def test_update_config(session_factory):
    h = Harness(session_factory)

    updated = h.breaker.update_config(portfolio_drawdown_threshold=30.0)
    assert updated == CircuitBreakerConfig(
        portfolio_drawdown_threshold=30.0, strategy_drawdown_threshold=15.0, auto_resume_threshold=10.0
    )

    with pytest.raises(ValueError):
        h.breaker.update_config(auto_resume_threshold=35.0)
    with pytest.raises(ValueError):
        h.breaker.update_config(unknown_setting=1.0)
    assert h.breaker.config.auto_resume_threshold == 10.0

    await h.evaluate_at(100000.0)
    assert (await h.evaluate_at(72000.0)).portfolio_action is None
    assert h.breaker.get_status(1).portfolio_threshold == 30.0


@pytest.mark.asyncio
async def test_get_status_for_unknown_account(session_factory):
    h = Harness(session_factory)
    status = h.breaker.get_status(42)

    assert status.portfolio_triggered is False
    assert status.halted_strategies == []
    assert status.portfolio_drawdown_pct == 0.0
    assert status.config.portfolio_drawdown_threshold == 25.0
    assert 42 not in h.tracker._states


@pytest.mark.asyncio
async def test_evaluate_all_accounts(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'breaker.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as s:
        s.add_all(
            [
                TradingAccount(id=1, name="main"),
                TradingAccount(id=2, name="alt"),
                TradingAccount(id=3, name="retired", is_active=False),
            ]
        )
        await s.commit()

    try:
        h = Harness(factory)
        h.exchange.set_offline(2)
        results = await h.breaker.evaluate_all_accounts()

        assert [(r.account_id, r.decided) for r in results] == [(1, True), (2, False)]
    finally:
        await engine.dispose()
