"""Watcher event notifications to the supervisor webhook."""
import logging
from typing import Any, Dict
from datetime import datetime, timezone
import requests
from marketwatcher.config import Config

logger = logging.getLogger(__name__)


class Notifier:
    """Send watcher events to a webhook. Never raises exceptions to protect the watcher."""

    def __init__(self, webhook_url: str) -> None:
        self.webhook_url = webhook_url
        self.session = requests.Session()

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    def send_event(self, event_type: str, data: Dict[str, Any]) -> bool:
        """
        Send event to the webhook.

        Args:
            event_type: Type of event ('started', 'stopped', 'error')
            data: Event payload

        Returns:
            True if sent successfully, False otherwise (or when disabled)
        """
        if not self.enabled:
            return False
        try:
            payload = {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "event_type": event_type,
                "watcher_name": Config.WATCHER_NAME,
                "data": data,
            }

            response = self.session.post(
                self.webhook_url,
                json=payload,
                headers={"Content-Type": "application/json"},
                timeout=5
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

    def send_started(self, series: str) -> bool:
        return self.send_event("started", {"message": f"Watcher started on {series}"})

    def send_stopped(self, series: str, flushed: bool) -> bool:
        return self.send_event("stopped", {"message": f"Watcher stopped on {series}", "flushed": flushed})

    def send_error(self, series: str, error: BaseException) -> bool:
        return self.send_event("error", {"message": f"Watcher failed on {series}: {str(error)[:200]}"})
