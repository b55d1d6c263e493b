"""Exchange adapter abstraction."""
from dataclasses import dataclass
from typing import List, Protocol


@dataclass(frozen=True)
class ExchangePosition:
    """An open position as reported by the exchange."""

    symbol: str
    side: str  # 'long' or 'short'
    size: float
    entry_price: float
    unrealized_pnl: float = 0.0
    margin: float = 0.0


class ExchangeAdapter(Protocol):
    """Protocol for the exchange collaborator providing live account state."""

    async def get_total_equity(self, account_id: int) -> float:
        """
        Return total account equity including unrealized P&L.

        May fail transiently; callers must treat a failure as "unknown", never as zero.
        """
        ...

    async def get_positions(self, account_id: int) -> List[ExchangePosition]:
        """Return currently open positions for the account."""
        ...

    async def get_available_balance(self, account_id: int) -> float:
        """Return free quote-currency balance."""
        ...
