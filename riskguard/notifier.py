"""Alert notifications sent to an operator webhook."""
import logging
from datetime import datetime, timezone
from typing import Any, Dict

import requests

from riskguard.config import Config

logger = logging.getLogger(__name__)


class Notifier:
    """Send alerts to a webhook. Never raises exceptions to protect the engine."""

    def __init__(self, webhook_url: str | None = None, timeout: float = 5.0) -> None:
        self.webhook_url = webhook_url if webhook_url is not None else Config.ALERT_WEBHOOK_URL
        self.timeout = timeout
        self.session = requests.Session()

    def send_event(self, event_type: str, data: Dict[str, Any], level: str = "info") -> bool:
        """
        Send event to the alert webhook.

        Args:
            event_type: Type of event (e.g., 'circuit_breaker')
            data: Event payload
            level: 'info', 'warning' or 'critical'

        Returns:
            True if sent successfully, False otherwise
        """
        if not self.webhook_url:
            logger.debug(f"Alert webhook not configured, dropping {event_type}")
            return False

        try:
            payload = {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "event_type": event_type,
                "level": level,
                "service": Config.SERVICE_NAME,
                "data": data,
            }

            response = self.session.post(
                self.webhook_url,
                json=payload,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )

            if response.status_code >= 400:
                logger.warning(
                    f"Webhook returned {response.status_code}: {response.text[:200]}"
                )
                return False

            logger.debug(f"Event sent: {event_type}")
            return True

        except requests.exceptions.Timeout:
            logger.warning(f"Webhook timeout sending {event_type}")
            return False
        except requests.exceptions.ConnectionError:
            logger.warning(f"Webhook connection error sending {event_type}")
            return False
        except Exception as e:
            logger.error(f"Unexpected error sending webhook event: {e}", exc_info=True)
            return False

    def send_circuit_breaker_alert(
        self,
        *,
        scope: str,
        action: str,
        drawdown_pct: float,
        threshold: float,
        account_id: int,
        strategy_id: str | None = None,
    ) -> bool:
        """Circuit breaker transitions: critical on trigger, info otherwise."""
        level = "critical" if action == "triggered" else "info"
        label = "PORTFOLIO" if scope == "portfolio" else f"Strategy {strategy_id}"
        message = (
            f"*Circuit Breaker {action.upper()}*\n"
            f"Account: {account_id} | Scope: {label} | DD: {drawdown_pct:.1f}% | Threshold: {threshold:.1f}%"
        )
        return self.send_event(
            "circuit_breaker",
            {
                "message": message,
                "scope": scope,
                "action": action,
                "account_id": account_id,
                "strategy_id": strategy_id,
                "drawdown_pct": drawdown_pct,
                "threshold": threshold,
            },
            level=level,
        )
