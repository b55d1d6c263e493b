"""Strategy catalogue and executor contract."""
from riskguard.strategies.executor import InMemoryStrategyExecutor, StrategyExecutor
from riskguard.strategies.registry import StrategyDefinition, StrategyRegistry, default_registry

__all__ = [
    "InMemoryStrategyExecutor",
    "StrategyDefinition",
    "StrategyExecutor",
    "StrategyRegistry",
    "default_registry",
]
