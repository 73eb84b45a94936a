"""
Webhook Alert Service
=====================

Delivers user-facing alerts to a chat webhook (Discord-compatible embed
payload). The URL can be changed at runtime from the dashboard; with no URL
configured alerts are silently dropped.

Runs on the alert worker thread behind ``QueuedAlertDispatcher``, so a slow
or unreachable endpoint never blocks a control loop.

Author: Sebastian Gomez
Date: 2024
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any

import requests

from app.domain.exceptions import ExternalServiceError
from app.enums.events import NotificationSeverity

logger = logging.getLogger(__name__)

# Decimal embed colors
SEVERITY_COLORS = {
    NotificationSeverity.INFO.value: 0x57F287,
    NotificationSeverity.WARNING.value: 0xFFA500,
    NotificationSeverity.CRITICAL.value: 0xFF0000,
}
DEFAULT_FOOTER = "GrowBox Automation"


class WebhookAlertSink:
    """Posts one embed per alert to the configured webhook URL."""

    def __init__(
        self,
        url: str | None = None,
        *,
        timeout_seconds: float = 5.0,
        footer: str = DEFAULT_FOOTER,
        session: requests.Session | None = None,
    ):
        self._url = url or None
        self._lock = threading.Lock()
        self.timeout_seconds = timeout_seconds
        self.footer = footer
        self.session = session or requests.Session()

    @property
    def url(self) -> str | None:
        with self._lock:
            return self._url

    def set_url(self, url: str | None) -> None:
        with self._lock:
            self._url = url or None
        logger.info("Alert webhook URL %s", "updated" if url else "cleared")

    def build_payload(self, title: str, message: str, severity: str) -> dict[str, Any]:
        return {
            "embeds": [
                {
                    "title": title,
                    "description": message,
                    "color": SEVERITY_COLORS.get(severity, SEVERITY_COLORS[NotificationSeverity.CRITICAL.value]),
                    "footer": {"text": self.footer},
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                }
            ]
        }

    def send_alert(self, title: str, message: str, severity: str) -> None:
        """
        POST the alert.

        Raises:
            ExternalServiceError: the endpoint was unreachable or rejected the payload
        """
        url = self.url
        if not url:
            logger.debug("No alert webhook configured, dropping alert '%s'", title)
            return
        try:
            response = self.session.post(
                url,
                json=self.build_payload(title, message, severity),
                timeout=self.timeout_seconds,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise ExternalServiceError(f"Webhook delivery failed: {e}") from e
