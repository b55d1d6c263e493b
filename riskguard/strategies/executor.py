"""Strategy executor contract and an in-memory implementation."""
import logging
from typing import Dict, List, Protocol

logger = logging.getLogger(__name__)


class StrategyExecutor(Protocol):
    """Runs strategies per account; the circuit breaker only pauses and resumes them."""

    def strategy_ids(self, account_id: int) -> List[str]:
        ...

    def is_paused(self, account_id: int, strategy_id: str) -> bool:
        ...

    def pause(self, account_id: int, strategy_id: str) -> bool:
        """Pause a running strategy. Returns False when no matching strategy exists."""
        ...

    def resume(self, account_id: int, strategy_id: str) -> bool:
        """Resume a paused strategy. Returns False when no matching strategy exists."""
        ...


class InMemoryStrategyExecutor:
    """Tracks which strategies run on which account and whether they are paused."""

    def __init__(self) -> None:
        self._runners: Dict[int, Dict[str, bool]] = {}

    def register(self, account_id: int, strategy_id: str) -> None:
        self._runners.setdefault(account_id, {}).setdefault(strategy_id, False)

    def unregister(self, account_id: int, strategy_id: str) -> None:
        self._runners.get(account_id, {}).pop(strategy_id, None)

    def strategy_ids(self, account_id: int) -> List[str]:
        return list(self._runners.get(account_id, {}).keys())

    def is_paused(self, account_id: int, strategy_id: str) -> bool:
        return self._runners.get(account_id, {}).get(strategy_id, False)

    def pause(self, account_id: int, strategy_id: str) -> bool:
        runners = self._runners.get(account_id, {})
        if strategy_id not in runners:
            return False
        runners[strategy_id] = True
        logger.info("Strategy %s paused on account %s", strategy_id, account_id)
        return True

    def resume(self, account_id: int, strategy_id: str) -> bool:
        runners = self._runners.get(account_id, {})
        if strategy_id not in runners:
            return False
        runners[strategy_id] = False
        logger.info("Strategy %s resumed on account %s", strategy_id, account_id)
        return True
