"""Portfolio and per-strategy drawdown circuit breaker.

Every account has its own breaker state. A portfolio halt pauses every
strategy the executor runs on the account; a strategy halt pauses one. Both
release only once drawdown recovers to the auto-resume threshold, which sits
below the trigger threshold so the breaker does not flap around it.

The halted/active state is the authoritative fact. Executor calls,
broadcasts and webhook alerts are best-effort and never block a transition.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Literal

from riskguard.config import Config
from riskguard.events import EventBroadcaster
from riskguard.notifier import Notifier
from riskguard.portfolio.scheduler import PeriodicRunner
from riskguard.portfolio.schemas import (
    CircuitBreakerConfig,
    CircuitBreakerStatus,
    HaltedStrategyInfo,
)
from riskguard.portfolio.state import AccountRegistry, CircuitState, HaltedStrategy
from riskguard.portfolio.tracker import EquityUnavailableError, PortfolioTracker, utc_now
from riskguard.risk.service import RiskService
from riskguard.storage.repos import AccountRepo
from riskguard.strategies.executor import StrategyExecutor

logger = logging.getLogger(__name__)

PortfolioAction = Literal["triggered", "released"]


@dataclass
class EvaluationResult:
    account_id: int
    decided: bool
    drawdown_pct: float | None = None
    portfolio_action: PortfolioAction | None = None
    halted_strategies: list[str] = field(default_factory=list)
    released_strategies: list[str] = field(default_factory=list)
    error: str | None = None


def default_config() -> CircuitBreakerConfig:
    return CircuitBreakerConfig(
        portfolio_drawdown_threshold=Config.CB_PORTFOLIO_DRAWDOWN_THRESHOLD,
        strategy_drawdown_threshold=Config.CB_STRATEGY_DRAWDOWN_THRESHOLD,
        auto_resume_threshold=Config.CB_AUTO_RESUME_THRESHOLD,
    )


class CircuitBreaker:
    def __init__(
        self,
        tracker: PortfolioTracker,
        risk_service: RiskService,
        executor: StrategyExecutor,
        broadcaster: EventBroadcaster | None = None,
        notifier: Notifier | None = None,
        accounts: AccountRepo | None = None,
        config: CircuitBreakerConfig | None = None,
        *,
        interval: float | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.tracker = tracker
        self.risk_service = risk_service
        self.executor = executor
        self.broadcaster = broadcaster
        self.notifier = notifier
        self.accounts = accounts
        self.config = config or default_config()
        self.clock = clock
        self._states: AccountRegistry[CircuitState] = AccountRegistry(CircuitState)
        self._background: set[asyncio.Task] = set()
        self._refreshing: set[int] = set()
        self._runner = PeriodicRunner(
            "Circuit breaker",
            interval if interval is not None else Config.CIRCUIT_BREAKER_INTERVAL_SECONDS,
            self.evaluate_all_accounts,
        )

    # ── Lifecycle ────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._runner.running

    def start(self) -> bool:
        started = self._runner.start()
        if started:
            logger.info(
                "Circuit breaker thresholds: portfolio %s%%, strategy %s%%, auto-resume %s%%",
                self.config.portfolio_drawdown_threshold,
                self.config.strategy_drawdown_threshold,
                self.config.auto_resume_threshold,
            )
        return started

    async def stop(self) -> None:
        await self._runner.stop()
        await self.wait_for_background()

    def watch(self, tracker: PortfolioTracker | None = None) -> None:
        """Re-evaluate an account opportunistically after each equity refresh."""
        (tracker or self.tracker).add_refresh_listener(self._on_refresh)

    async def evaluate_all_accounts(self) -> list[EvaluationResult]:
        if self.accounts is None:
            return []
        try:
            account_ids = await self.accounts.active_account_ids()
        except Exception as e:
            logger.error(f"Circuit breaker could not list active accounts: {e}")
            return []

        results = await asyncio.gather(*(self.evaluate(a) for a in account_ids), return_exceptions=True)
        evaluated: list[EvaluationResult] = []
        for account_id, result in zip(account_ids, results):
            if isinstance(result, BaseException):
                logger.error(f"Circuit breaker evaluation failed for account {account_id}: {result}")
                continue
            evaluated.append(result)
        return evaluated

    # ── Evaluation ───────────────────────────────────────────

    async def evaluate(self, account_id: int, refresh: bool = True) -> EvaluationResult:
        """Apply portfolio and strategy transitions for one account.

        Without a current equity reading nothing changes and ``decided`` is False.
        """
        if refresh:
            self._refreshing.add(account_id)
            try:
                await self.tracker.get_equity(account_id)
            except EquityUnavailableError as e:
                logger.warning(f"Circuit breaker: no decision for account {account_id}: {e}")
                return EvaluationResult(account_id=account_id, decided=False, error=str(e))
            finally:
                self._refreshing.discard(account_id)
        elif self.tracker.get_peak_equity(account_id) <= 0:
            return EvaluationResult(account_id=account_id, decided=False, error="no equity reading yet")

        config = self.config
        state = self._states.get(account_id)
        async with state.lock:
            dd = self.tracker.get_drawdown_pct(account_id)
            result = EvaluationResult(account_id=account_id, decided=True, drawdown_pct=dd)

            if not state.portfolio_triggered and dd > config.portfolio_drawdown_threshold:
                self._trigger_portfolio_halt(account_id, state, dd, config)
                result.portfolio_action = "triggered"
            elif state.portfolio_triggered and dd <= config.auto_resume_threshold:
                self._release_portfolio_halt(account_id, state, dd, config)
                result.portfolio_action = "released"

            if not state.portfolio_triggered:
                await self._evaluate_strategies(account_id, state, config, result)

        return result

    async def force_resume(self, account_id: int, strategy_id: str | None = None) -> bool:
        """Administrative override regardless of drawdown. False when nothing was halted."""
        state = self._states.get(account_id)
        async with state.lock:
            if strategy_id is not None:
                if strategy_id not in state.halted_strategies:
                    return False
                del state.halted_strategies[strategy_id]
                self._resume(account_id, strategy_id)
                logger.info(f"Force-resumed strategy {strategy_id} on account {account_id}")
                self._broadcast_strategy_change(account_id, strategy_id, "released", 0.0)
                return True

            if not state.portfolio_triggered:
                return False

            state.portfolio_triggered = False
            state.triggered_at = None
            for halted_id in self._pop_portfolio_halts(state):
                self._resume(account_id, halted_id)
            # Without a fresh baseline the next tick would halt again.
            await self.tracker.reset_peak(account_id)

        dd = self.tracker.get_drawdown_pct(account_id)
        logger.warning(f"Force-resumed portfolio on account {account_id}")
        self._broadcast(
            account_id,
            "portfolio:circuit_breaker",
            {"type": "portfolio", "account_id": account_id, "action": "force_resumed", "drawdown_pct": dd},
        )
        self._alert(
            scope="portfolio",
            action="released",
            drawdown_pct=dd,
            threshold=self.config.portfolio_drawdown_threshold,
            account_id=account_id,
        )
        return True

    # ── Reads ────────────────────────────────────────────────

    def is_portfolio_triggered(self, account_id: int) -> bool:
        state = self._states.peek(account_id)
        return state is not None and state.portfolio_triggered

    def is_strategy_halted(self, account_id: int, strategy_id: str) -> bool:
        state = self._states.peek(account_id)
        return state is not None and strategy_id in state.halted_strategies

    def get_status(self, account_id: int) -> CircuitBreakerStatus:
        state = self._states.peek(account_id) or CircuitState()
        return CircuitBreakerStatus(
            account_id=account_id,
            portfolio_triggered=state.portfolio_triggered,
            portfolio_drawdown_pct=self.tracker.get_drawdown_pct(account_id),
            portfolio_threshold=self.config.portfolio_drawdown_threshold,
            triggered_at=state.triggered_at,
            halted_strategies=[
                HaltedStrategyInfo(
                    strategy_id=h.strategy_id,
                    drawdown_pct=h.drawdown_pct,
                    halted_at=h.halted_at,
                    reason=h.reason,
                )
                for h in state.halted_strategies.values()
            ],
            config=self.config.model_copy(),
        )

    def update_config(self, **changes: Any) -> CircuitBreakerConfig:
        """Merge threshold changes into the live config. Raises ValueError when invalid."""
        updates = {k: v for k, v in changes.items() if v is not None}
        unknown = set(updates) - set(CircuitBreakerConfig.model_fields)
        if unknown:
            raise ValueError(f"Unknown circuit breaker settings: {', '.join(sorted(unknown))}")
        # Pydantic's ValidationError is a ValueError
        self.config = CircuitBreakerConfig(**{**self.config.model_dump(), **updates})
        logger.info(f"Circuit breaker config updated: {self.config.model_dump()}")
        return self.config

    async def wait_for_background(self) -> None:
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ── Transitions (caller holds the account lock) ──────────

    def _trigger_portfolio_halt(
        self, account_id: int, state: CircuitState, dd: float, config: CircuitBreakerConfig
    ) -> None:
        now = self.clock()
        state.portfolio_triggered = True
        state.triggered_at = now
        threshold = config.portfolio_drawdown_threshold
        logger.error(
            "PORTFOLIO HALT on account %s: drawdown %.1f%% > %s%%", account_id, dd, threshold
        )

        for strategy_id in self._strategy_ids(account_id):
            existing = state.halted_strategies.get(strategy_id)
            if existing is None:
                self._pause(account_id, strategy_id)
            state.halted_strategies[strategy_id] = HaltedStrategy(
                strategy_id=strategy_id,
                drawdown_pct=dd,
                halted_at=now,
                reason="portfolio",
                prior=existing if existing is not None and existing.reason == "strategy" else None,
            )

        self._broadcast(
            account_id,
            "portfolio:circuit_breaker",
            {
                "type": "portfolio",
                "account_id": account_id,
                "action": "triggered",
                "drawdown_pct": dd,
                "threshold": threshold,
            },
        )
        self._broadcast(
            account_id,
            "portfolio:drawdown_alert",
            {
                "level": "critical",
                "account_id": account_id,
                "drawdown_pct": dd,
                "threshold": threshold,
                "message": f"Portfolio drawdown {dd:.1f}% exceeded {threshold:g}% threshold. All strategies halted.",
            },
        )
        self._alert(scope="portfolio", action="triggered", drawdown_pct=dd, threshold=threshold, account_id=account_id)

    def _release_portfolio_halt(
        self, account_id: int, state: CircuitState, dd: float, config: CircuitBreakerConfig
    ) -> None:
        state.portfolio_triggered = False
        state.triggered_at = None
        logger.info(
            "Portfolio recovered on account %s: drawdown %.1f%% <= %s%%",
            account_id,
            dd,
            config.auto_resume_threshold,
        )

        # Strategies halted on their own drawdown stay halted until they recover.
        for strategy_id in self._pop_portfolio_halts(state, restore_strategy_halts=True):
            self._resume(account_id, strategy_id)

        self._broadcast(
            account_id,
            "portfolio:circuit_breaker",
            {
                "type": "portfolio",
                "account_id": account_id,
                "action": "released",
                "drawdown_pct": dd,
                "threshold": config.auto_resume_threshold,
            },
        )
        self._alert(
            scope="portfolio",
            action="released",
            drawdown_pct=dd,
            threshold=config.portfolio_drawdown_threshold,
            account_id=account_id,
        )

    async def _evaluate_strategies(
        self,
        account_id: int,
        state: CircuitState,
        config: CircuitBreakerConfig,
        result: EvaluationResult,
    ) -> None:
        for strategy_id in self._strategy_ids(account_id):
            check = await self.risk_service.check_strategy_drawdown(
                account_id, strategy_id, config.strategy_drawdown_threshold
            )
            if check.failure == "dependency":
                logger.warning(f"Strategy {strategy_id} on account {account_id} not evaluated: {check.error}")
                continue

            dd = check.details.get("drawdown_pct")
            halted = state.halted_strategies.get(strategy_id)

            if halted is None and not check.passed:
                state.halted_strategies[strategy_id] = HaltedStrategy(
                    strategy_id=strategy_id, drawdown_pct=dd, halted_at=self.clock(), reason="strategy"
                )
                self._pause(account_id, strategy_id)
                logger.warning(f"Strategy halted: {strategy_id} on account {account_id}, drawdown {dd:.1f}%")
                self._broadcast_strategy_change(account_id, strategy_id, "triggered", dd)
                self._alert(
                    scope="strategy",
                    action="triggered",
                    drawdown_pct=dd,
                    threshold=config.strategy_drawdown_threshold,
                    account_id=account_id,
                    strategy_id=strategy_id,
                )
                result.halted_strategies.append(strategy_id)

            elif (
                halted is not None
                and halted.reason == "strategy"
                and dd is not None
                and dd <= config.auto_resume_threshold
            ):
                del state.halted_strategies[strategy_id]
                self._resume(account_id, strategy_id)
                logger.info(f"Strategy auto-resumed: {strategy_id} on account {account_id}")
                self._broadcast_strategy_change(account_id, strategy_id, "released", dd)
                self._alert(
                    scope="strategy",
                    action="released",
                    drawdown_pct=dd,
                    threshold=config.strategy_drawdown_threshold,
                    account_id=account_id,
                    strategy_id=strategy_id,
                )
                result.released_strategies.append(strategy_id)

    @staticmethod
    def _pop_portfolio_halts(state: CircuitState, restore_strategy_halts: bool = False) -> list[str]:
        """Drop portfolio-tagged halts and return the ids that should resume."""
        released = []
        for sid, halted in list(state.halted_strategies.items()):
            if halted.reason != "portfolio":
                continue
            if restore_strategy_halts and halted.prior is not None:
                state.halted_strategies[sid] = halted.prior
            else:
                del state.halted_strategies[sid]
                released.append(sid)
        return released

    # ── Best-effort side effects ─────────────────────────────

    def _strategy_ids(self, account_id: int) -> list[str]:
        try:
            return list(self.executor.strategy_ids(account_id))
        except Exception as e:
            logger.error(f"Could not list strategies for account {account_id}: {e}")
            return []

    def _pause(self, account_id: int, strategy_id: str) -> None:
        try:
            if not self.executor.pause(account_id, strategy_id):
                logger.warning(f"Executor has no strategy {strategy_id} to pause on account {account_id}")
        except Exception as e:
            logger.error(f"Failed to pause {strategy_id} on account {account_id}: {e}")

    def _resume(self, account_id: int, strategy_id: str) -> None:
        try:
            if not self.executor.resume(account_id, strategy_id):
                logger.warning(f"Executor has no strategy {strategy_id} to resume on account {account_id}")
        except Exception as e:
            logger.error(f"Failed to resume {strategy_id} on account {account_id}: {e}")

    def _broadcast(self, account_id: int, event: str, data: dict[str, Any]) -> None:
        if self.broadcaster is None:
            return
        try:
            self.broadcaster.broadcast_to_account(account_id, event, data)
        except Exception as e:
            logger.warning(f"Broadcast {event} failed for account {account_id}: {e}")

    def _broadcast_strategy_change(self, account_id: int, strategy_id: str, action: str, dd: float) -> None:
        triggered = action == "triggered"
        self._broadcast(
            account_id,
            "portfolio:circuit_breaker",
            {
                "type": "strategy",
                "account_id": account_id,
                "strategy_id": strategy_id,
                "action": action,
                "drawdown_pct": dd,
            },
        )
        self._broadcast(
            account_id,
            "strategy:state_change",
            {
                "strategy_id": strategy_id,
                "account_id": account_id,
                "new_status": "paused" if triggered else "running",
                "reason": "circuit_breaker" if triggered else "auto_resume",
            },
        )

    def _alert(self, **kwargs: Any) -> None:
        """Send a webhook alert on a worker thread without waiting for it."""
        if self.notifier is None:
            return
        try:
            task = asyncio.get_running_loop().create_task(
                asyncio.to_thread(self.notifier.send_circuit_breaker_alert, **kwargs)
            )
        except Exception as e:
            logger.warning(f"Could not schedule circuit breaker alert: {e}")
            return
        self._background.add(task)
        task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"Circuit breaker alert failed: {task.exception()}")

    def _on_refresh(self, account_id: int) -> None:
        if account_id in self._refreshing:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self.evaluate(account_id, refresh=False))
        self._background.add(task)
        task.add_done_callback(self._on_background_done)
