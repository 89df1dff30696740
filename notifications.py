"""
notifications.py
----------------
RxGuard — Medication Safety Validation Engine — Critical alert delivery
-----------------------------------------------------------------------
Two NotificationService implementations:

    - WebhookNotificationService: POSTs the alert as JSON to a webhook
      (pager, on-call bridge, chat channel). Non-2xx or transport errors
      raise NotificationError.
    - LoggingNotificationService: writes the alert to the log at WARNING.
      Used when no webhook is configured.

Alert payload:
    {"type": "critical_drug_interaction", "patient_id": "...",
     "interactions": [...], "requires_immediate_attention": true}

Project: RxGuard — Medication Safety Validation Engine
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from collaborators import NotificationError
from schemas import CriticalAlert

logger = logging.getLogger(__name__)


class WebhookNotificationService:
    """
    Deliver critical alerts to an HTTP webhook.

    Args:
        webhook_url: Target URL.
        timeout:     Request timeout in seconds.
        transport:   Optional ``httpx`` transport for tests.
    """

    def __init__(
        self,
        webhook_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.webhook_url = webhook_url
        self.timeout = timeout
        self._transport = transport

    async def send_critical_alert(self, alert: CriticalAlert) -> None:
        """
        POST one alert.

        Raises:
            NotificationError: if the webhook is unreachable or rejects the alert.
        """
        payload = alert.model_dump(mode="json")
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(self.webhook_url, json=payload)
        except httpx.HTTPError as exc:
            raise NotificationError(f"Critical alert webhook unreachable: {exc}") from exc

        if resp.status_code not in range(200, 300):
            raise NotificationError(
                f"Critical alert webhook returned {resp.status_code}: {resp.text}",
                status_code=resp.status_code,
            )
        logger.info(
            "WebhookNotificationService: alert delivered for patient %s (%d interaction(s)).",
            alert.patient_id, len(alert.interactions),
        )


class LoggingNotificationService:
    """Write critical alerts to the application log."""

    def __init__(self, logger_name: str = __name__) -> None:
        self._log = logging.getLogger(logger_name)

    async def send_critical_alert(self, alert: CriticalAlert) -> None:
        for rule in alert.interactions:
            self._log.warning(
                "CRITICAL DRUG INTERACTION patient=%s rule=%s severity=%s drugs=%s: %s",
                alert.patient_id, rule.id, rule.severity.value,
                ",".join(rule.drug_ids), rule.clinical_effect,
            )
