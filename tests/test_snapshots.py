from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from riskguard.events import EventBroadcaster
from riskguard.exchange import ExchangePosition, PaperExchange
from riskguard.portfolio.snapshots import EquitySnapshotter, sharpe_ratio
from riskguard.portfolio.tracker import PortfolioTracker
from riskguard.storage.models import Base, PortfolioSnapshot, TradingAccount
from riskguard.storage.repos import AccountRepo, PerformanceRepo
from riskguard.strategies import default_registry

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


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


@pytest.fixture
def exchange():
    return PaperExchange(initial_equity=10000.0)


@pytest.fixture
def events():
    return []


@pytest.fixture
def snapshotter(session_factory, exchange, events):
    performance = PerformanceRepo(session_factory, timeout=5.0)
    accounts = AccountRepo(session_factory, timeout=5.0)
    tracker = PortfolioTracker(exchange, performance, accounts, default_registry(), timeout=5.0, clock=lambda: NOW)
    broadcaster = EventBroadcaster()
    broadcaster.subscribe(lambda account_id, event, data: events.append((account_id, event, data)))
    return EquitySnapshotter(tracker, performance, accounts, broadcaster, clock=lambda: NOW)


async def seed_curve(session_factory, points) -> None:
    async with session_factory() as s:
        for when, equity, dd in points:
            s.add(
                PortfolioSnapshot(
                    trading_account_id=1,
                    total_equity=equity,
                    peak_equity=max(equity, 10000.0),
                    drawdown_pct=dd,
                    snapshot_at=when,
                )
            )
        await s.commit()


def test_sharpe_ratio_needs_enough_points():
    assert sharpe_ratio([100.0, 101.0, 102.0]) is None
    # Constant returns have no volatility
    flat = [100.0] * 12
    assert sharpe_ratio(flat) is None


def test_sharpe_ratio_value():
    equities = [100.0, 101.0, 100.0, 101.0, 100.0, 101.0, 100.0, 101.0, 100.0, 101.0, 100.0]
    value = sharpe_ratio(equities)
    assert value is not None
    assert value == round(value, 2)
    # Mean return is slightly positive for an oscillating curve
    assert value > 0


@pytest.mark.asyncio
async def test_take_snapshot_stores_and_broadcasts(snapshotter, session_factory, exchange, events):
    exchange.set_equity(1, 12000.0)
    exchange.set_positions(
        1, [ExchangePosition(symbol="ETHUSDT", side="long", size=1.0, entry_price=2000.0, unrealized_pnl=80.0)]
    )

    snapshot = await snapshotter.take_snapshot(1)

    assert snapshot is not None
    assert snapshot.total_equity == 12000.0
    assert snapshot.peak_equity == 12000.0
    assert snapshot.position_count == 1
    assert snapshot.unrealized_pnl == 80.0
    assert snapshot.strategy_allocations["trend_following"] == 30.0

    async with session_factory() as s:
        rows = (await s.execute(select(PortfolioSnapshot))).scalars().all()
    assert len(rows) == 1
    assert rows[0].total_equity == 12000.0
    assert rows[0].strategy_allocations["mean_reversion"] == 20.0

    assert events[-1][0] == 1
    assert events[-1][1] == "portfolio:equity_update"
    assert events[-1][2]["equity"] == 12000.0


@pytest.mark.asyncio
async def test_take_snapshot_failure_returns_none(snapshotter, session_factory, exchange, events):
    exchange.set_offline(1)

    assert await snapshotter.take_snapshot(1) is None
    async with session_factory() as s:
        assert (await s.execute(select(PortfolioSnapshot))).scalars().all() == []
    assert events == []


@pytest.mark.asyncio
async def test_snapshot_all_active_accounts(snapshotter, session_factory):
    async with session_factory() as s:
        s.add(TradingAccount(id=2, name="alt"))
        s.add(TradingAccount(id=3, name="retired", is_active=False))
        await s.commit()

    await snapshotter.snapshot_all_accounts()

    async with session_factory() as s:
        rows = (await s.execute(select(PortfolioSnapshot.trading_account_id))).scalars().all()
    assert sorted(rows) == [1, 2]


@pytest.mark.asyncio
async def test_equity_curve_order_and_range(snapshotter, session_factory):
    await seed_curve(
        session_factory,
        [
            (NOW - timedelta(hours=1), 10500.0, 0.0),
            (NOW - timedelta(hours=3), 10000.0, 0.0),
            (NOW - timedelta(hours=2), 9500.0, 5.0),
        ],
    )

    curve = await snapshotter.get_equity_curve(1)
    assert [p.equity for p in curve] == [10000.0, 9500.0, 10500.0]

    limited = await snapshotter.get_equity_curve(1, limit=2)
    assert [p.equity for p in limited] == [10000.0, 9500.0]

    recent = await snapshotter.get_equity_curve(1, start=NOW - timedelta(hours=2, minutes=30))
    assert [p.equity for p in recent] == [9500.0, 10500.0]


@pytest.mark.asyncio
async def test_performance_metrics(snapshotter, session_factory):
    await seed_curve(
        session_factory,
        [
            (NOW - timedelta(days=3), 8000.0, 20.0),
            (NOW - timedelta(hours=3), 10000.0, 0.0),
            (NOW - timedelta(hours=2), 9000.0, 10.0),
            (NOW - timedelta(hours=1), 11000.0, 0.0),
        ],
    )

    day = await snapshotter.get_performance_metrics(1, period="day")
    assert day.data_points == 3
    assert day.return_pct == 10.0
    assert day.total_pnl == 1000.0
    assert day.max_drawdown == 10.0
    assert day.sharpe_ratio is None
    assert day.period_start == NOW - timedelta(days=1)
    assert day.period_end == NOW

    everything = await snapshotter.get_performance_metrics(1, period="all")
    assert everything.data_points == 4
    assert everything.return_pct == 37.5
    assert everything.max_drawdown == 20.0
    assert everything.period_start is None


@pytest.mark.asyncio
async def test_performance_metrics_edge_cases(snapshotter):
    empty = await snapshotter.get_performance_metrics(1, period="week")
    assert empty.data_points == 0
    assert empty.return_pct == 0.0
    assert empty.sharpe_ratio is None

    with pytest.raises(ValueError):
        await snapshotter.get_performance_metrics(1, period="decade")
