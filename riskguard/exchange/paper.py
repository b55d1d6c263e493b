"""In-memory paper exchange."""
import logging
from typing import Dict, List

from riskguard.config import Config
from riskguard.exchange.base import ExchangePosition

logger = logging.getLogger(__name__)


class ExchangeUnavailableError(RuntimeError):
    pass


class PaperExchange:
    """
    Paper exchange holding per-account equity, balance and positions in memory.
    Ready to be replaced with a live exchange adapter.
    """

    def __init__(self, initial_equity: float | None = None) -> None:
        self.initial_equity = float(initial_equity if initial_equity is not None else Config.PAPER_INITIAL_EQUITY)
        self._equity: Dict[int, float] = {}
        self._balance: Dict[int, float] = {}
        self._positions: Dict[int, List[ExchangePosition]] = {}
        self._offline: set[int] = set()
        logger.info(f"Paper exchange initialized with equity: ${self.initial_equity}")

    def set_equity(self, account_id: int, equity: float) -> None:
        self._equity[account_id] = float(equity)

    def set_available_balance(self, account_id: int, balance: float) -> None:
        self._balance[account_id] = float(balance)

    def set_positions(self, account_id: int, positions: List[ExchangePosition]) -> None:
        self._positions[account_id] = list(positions)

    def set_offline(self, account_id: int, offline: bool = True) -> None:
        """Simulate the exchange being unreachable for one account."""
        if offline:
            self._offline.add(account_id)
        else:
            self._offline.discard(account_id)

    def _check_online(self, account_id: int) -> None:
        if account_id in self._offline:
            raise ExchangeUnavailableError(f"Exchange unavailable for account {account_id}")

    async def get_total_equity(self, account_id: int) -> float:
        self._check_online(account_id)
        return self._equity.get(account_id, self.initial_equity)

    async def get_positions(self, account_id: int) -> List[ExchangePosition]:
        self._check_online(account_id)
        return list(self._positions.get(account_id, []))

    async def get_available_balance(self, account_id: int) -> float:
        self._check_online(account_id)
        if account_id in self._balance:
            return self._balance[account_id]
        return self._equity.get(account_id, self.initial_equity)
