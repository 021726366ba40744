"""
Slack incoming-webhook alerter.
"""
from __future__ import annotations

from typing import Any, Optional

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.config import settings
from core.logging_config import get_logger


logger = get_logger(__name__)


class SlackAlerter:
    """Post operator alerts to a Slack incoming webhook.

    Delivery errors are logged and swallowed so alerting never breaks the caller.
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        retry_max: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.webhook_url = webhook_url if webhook_url is not None else settings.alerting.slack_webhook_url
        self.timeout = timeout if timeout is not None else settings.alerting.timeout
        self.retry_max = retry_max if retry_max is not None else settings.alerting.retry_max
        self._transport = transport

    @staticmethod
    def _format(message: str, context: dict[str, Any]) -> dict[str, Any]:
        lines = [f":rotating_light: *{message}*"]
        lines.extend(f"• {key}: `{value}`" for key, value in context.items() if value is not None)
        return {"text": "\n".join(lines)}

    async def notify(self, message: str, **context: Any) -> None:
        if not self.webhook_url:
            logger.warning("alert_not_sent", reason="slack_webhook_url not configured", alert=message, **context)
            return

        payload = self._format(message, context)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                async for attempt in AsyncRetrying(
                    stop=stop_after_attempt(self.retry_max + 1),
                    wait=wait_exponential(multiplier=0.2, min=0.1, max=2.0),
                    retry=retry_if_exception_type((httpx.TimeoutException, httpx.TransportError)),
                    reraise=True,
                ):
                    with attempt:
                        response = await client.post(self.webhook_url, json=payload)
                        response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("alert_delivery_failed", alert=message, error=str(exc))
            return

        logger.info("alert_sent", alert=message)
