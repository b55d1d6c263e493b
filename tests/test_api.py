import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from riskguard.exchange import PaperExchange
from riskguard.main import app
from riskguard.services import RiskGuardServices, get_services
from riskguard.storage.models import Base, TradingAccount
from riskguard.strategies import InMemoryStrategyExecutor


@pytest_asyncio.fixture
async def services():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as s:
        s.add(TradingAccount(id=1, name="main"))
        await s.commit()

    built = RiskGuardServices.build(
        factory,
        exchange=PaperExchange(initial_equity=10000.0),
        executor=InMemoryStrategyExecutor(),
    )
    await built.register_strategies()
    app.dependency_overrides[get_services] = lambda: built
    yield built
    app.dependency_overrides.clear()
    await built.tracker.wait_for_pending()
    await engine.dispose()


@pytest_asyncio.fixture
async def client(services):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"message": "OK"}


@pytest.mark.asyncio
async def test_validate_trade(client):
    resp = await client.post(
        "/v1/risk/validate",
        json={"symbol": "btcusdt", "side": "long", "quantity": 0.1, "entry_price": 50000, "stop_loss_price": 49000},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["passed"] is True
    assert body["details"]["potential_loss"] == pytest.approx(100.0)


@pytest.mark.asyncio
async def test_rejected_trade_is_not_an_http_error(client):
    resp = await client.post(
        "/v1/risk/validate",
        json={"symbol": "BTCUSDT", "side": "long", "quantity": 0.1, "entry_price": 50000, "stop_loss_price": 51000},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["passed"] is False
    assert body["failure"] == "limit"
    assert body["details"]["check"] == "stop_loss_direction"
    assert "LONG" in body["error"]


@pytest.mark.asyncio
async def test_validate_rejects_malformed_request(client):
    resp = await client.post(
        "/v1/risk/validate",
        json={"symbol": "BTCUSDT", "side": "buy", "quantity": 0.1, "entry_price": 50000},
    )
    assert resp.status_code == 422

    resp = await client.post(
        "/v1/risk/validate",
        json={"symbol": "BTCUSDT", "side": "long", "quantity": 0, "entry_price": 50000},
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_risk_limits(client):
    resp = await client.get("/v1/risk/limits", params={"account_id": 1})
    assert resp.status_code == 200
    assert resp.json() == {
        "account_id": 1,
        "max_loss_per_trade_usd": 500.0,
        "max_risk_percent_per_trade": 2.0,
        "max_total_portfolio_risk_percent": 20.0,
        "max_portfolio_drawdown_percent": 15.0,
        "max_strategy_drawdown_percent": 10.0,
    }


@pytest.mark.asyncio
async def test_portfolio_summary(client, services):
    resp = await client.get("/v1/portfolio/summary")
    assert resp.status_code == 200
    body = resp.json()
    assert body["equity"] == 10000.0
    assert len(body["strategy_allocations"]) == 4

    services.exchange.set_offline(1)
    resp = await client.get("/v1/portfolio/summary")
    assert resp.status_code == 503


@pytest.mark.asyncio
async def test_record_pnl_and_performance(client, services):
    for pnl in (100.0, -30.0, 50.0):
        resp = await client.post("/v1/portfolio/pnl", json={"strategy_id": "trend_following", "pnl": pnl})
        assert resp.status_code == 200
    assert resp.json()["realized_pnl_today"] == pytest.approx(120.0)
    await services.tracker.wait_for_pending()

    resp = await client.get("/v1/portfolio/performance/trend_following")
    assert resp.status_code == 200
    assert resp.json()["total_pnl"] == pytest.approx(120.0)

    resp = await client.get("/v1/portfolio/performance")
    assert resp.status_code == 200
    assert resp.json()["total_wins"] == 2

    resp = await client.get("/v1/portfolio/performance/not_a_strategy")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_equity_curve_and_metrics(client, services):
    await services.snapshotter.take_snapshot(1)

    resp = await client.get("/v1/portfolio/equity-curve")
    assert resp.status_code == 200
    assert [p["equity"] for p in resp.json()] == [10000.0]

    resp = await client.get("/v1/portfolio/metrics", params={"period": "all"})
    assert resp.status_code == 200
    assert resp.json()["data_points"] == 1

    resp = await client.get("/v1/portfolio/metrics", params={"period": "decade"})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_circuit_breaker_endpoints(client, services):
    resp = await client.get("/v1/portfolio/circuit-breaker")
    assert resp.status_code == 200
    assert resp.json()["portfolio_triggered"] is False

    resp = await client.post("/v1/portfolio/circuit-breaker/resume", json={"account_id": 1})
    assert resp.status_code == 200
    assert resp.json()["resumed"] is False

    services.exchange.set_equity(1, 100000.0)
    await services.circuit_breaker.evaluate(1)
    services.exchange.set_equity(1, 60000.0)
    await services.circuit_breaker.evaluate(1)

    resp = await client.get("/v1/portfolio/circuit-breaker")
    body = resp.json()
    assert body["portfolio_triggered"] is True
    assert {s["strategy_id"] for s in body["halted_strategies"]} == {
        "trend_following", "mean_reversion", "funding_carry", "cross_momentum"
    }

    resp = await client.post("/v1/portfolio/circuit-breaker/resume", json={"account_id": 1})
    assert resp.json()["resumed"] is True
    assert resp.json()["status"]["portfolio_triggered"] is False


@pytest.mark.asyncio
async def test_circuit_breaker_config(client):
    resp = await client.patch("/v1/portfolio/circuit-breaker/config", json={"portfolio_drawdown_threshold": 30})
    assert resp.status_code == 200
    assert resp.json() == {
        "portfolio_drawdown_threshold": 30.0,
        "strategy_drawdown_threshold": 15.0,
        "auto_resume_threshold": 10.0,
    }

    resp = await client.patch("/v1/portfolio/circuit-breaker/config", json={"auto_resume_threshold": 40})
    assert resp.status_code == 422
