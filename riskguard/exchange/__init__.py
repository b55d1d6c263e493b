"""Exchange collaborator package."""
from riskguard.exchange.base import ExchangeAdapter, ExchangePosition
from riskguard.exchange.paper import ExchangeUnavailableError, PaperExchange

__all__ = ["ExchangeAdapter", "ExchangePosition", "ExchangeUnavailableError", "PaperExchange"]
