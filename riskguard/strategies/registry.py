"""Strategy definitions known to the engine."""
from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class StrategyDefinition:
    id: str
    name: str
    category: str
    capital_allocation_pct: float
    symbols: tuple[str, ...] = field(default_factory=tuple)


class StrategyRegistry:
    """Static catalogue of strategies and their default capital allocation."""

    def __init__(self, definitions: list[StrategyDefinition] | None = None) -> None:
        self._definitions: dict[str, StrategyDefinition] = {}
        for definition in definitions or []:
            self.register(definition)

    def register(self, definition: StrategyDefinition) -> None:
        if not 0 <= definition.capital_allocation_pct <= 100:
            raise ValueError(f"capital_allocation_pct must be within 0..100 for {definition.id}")
        self._definitions[definition.id] = definition

    def get(self, strategy_id: str) -> StrategyDefinition | None:
        """Look up by id, falling back to the display name."""
        found = self._definitions.get(strategy_id)
        if found is not None:
            return found
        for definition in self._definitions.values():
            if definition.name == strategy_id:
                return definition
        return None

    def all(self) -> list[StrategyDefinition]:
        return list(self._definitions.values())


def default_registry() -> StrategyRegistry:
    return StrategyRegistry(
        [
            StrategyDefinition(
                id="trend_following",
                name="Multi-TF Trend Following",
                category="trend_following",
                capital_allocation_pct=30.0,
                symbols=(
                    "BTCUSDT", "ETHUSDT", "SOLUSDT", "AVAXUSDT", "LINKUSDT", "DOTUSDT",
                    "ADAUSDT", "NEARUSDT", "INJUSDT", "SUIUSDT", "RENDERUSDT",
                ),
            ),
            StrategyDefinition(
                id="mean_reversion",
                name="Mean Reversion Scalper",
                category="mean_reversion",
                capital_allocation_pct=20.0,
                symbols=("BTCUSDT", "ETHUSDT", "SOLUSDT", "XRPUSDT", "AVAXUSDT", "BNBUSDT"),
            ),
            # Universe for these two is set dynamically by the scanner.
            StrategyDefinition(id="funding_carry", name="Funding Rate Carry", category="carry", capital_allocation_pct=20.0),
            StrategyDefinition(id="cross_momentum", name="Cross-Sectional Momentum", category="momentum", capital_allocation_pct=30.0),
        ]
    )
