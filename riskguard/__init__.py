"""Portfolio risk and circuit-breaker engine."""

__version__ = "1.0.0"
