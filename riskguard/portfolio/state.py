"""Per-account state registries."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable, Dict, Generic, Literal, TypeVar

S = TypeVar("S")


class AccountRegistry(Generic[S]):
    """Maps account id to an owned state object created lazily on first access.

    Each state object carries its own lock; holders of that lock own every
    read-modify-write on the account. Different accounts never share a lock.
    """

    def __init__(self, factory: Callable[[], S]) -> None:
        self._factory = factory
        self._states: Dict[int, S] = {}

    def get(self, account_id: int) -> S:
        state = self._states.get(account_id)
        if state is None:
            state = self._factory()
            self._states[account_id] = state
        return state

    def peek(self, account_id: int) -> S | None:
        return self._states.get(account_id)

    def account_ids(self) -> list[int]:
        return list(self._states.keys())

    def __contains__(self, account_id: int) -> bool:
        return account_id in self._states


@dataclass
class AccountState:
    equity: float = 0.0
    peak_equity: float = 0.0
    realized_pnl_today: float = 0.0
    day: date | None = None
    restored: bool = False
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    # Serialises read-then-append of strategy performance rows.
    persist_lock: asyncio.Lock = field(default_factory=asyncio.Lock)


HaltReason = Literal["portfolio", "strategy"]


@dataclass
class HaltedStrategy:
    strategy_id: str
    drawdown_pct: float
    halted_at: datetime
    reason: HaltReason
    # Strategy-reason halt that a portfolio halt took over; restored on release.
    prior: HaltedStrategy | None = None


@dataclass
class CircuitState:
    portfolio_triggered: bool = False
    triggered_at: datetime | None = None
    halted_strategies: Dict[str, HaltedStrategy] = field(default_factory=dict)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
