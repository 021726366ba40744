"""
Transactional email client for an ESP HTTP API (Resend-compatible).

Runs inside Celery workers, so it uses the synchronous httpx client.
"""
from __future__ import annotations

from typing import Any, Optional

import httpx
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.config import settings
from core.logging_config import get_logger


logger = get_logger(__name__)


# template_id -> (subject, text body); rendered with str.format_map
TEMPLATES: dict[str, tuple[str, str]] = {
    "order_confirmation": (
        "Order {order_number} confirmed",
        "Thank you for your order {order_number}.\nTotal: {total_amount} {currency}",
    ),
    "admin_new_order": (
        "New order {order_number}",
        "Order {order_number} was placed.\nTotal: {total_amount} {currency}",
    ),
    "order_shipped": (
        "Order {order_number} has shipped",
        "Your order {order_number} is on its way.",
    ),
    "order_cancelled": (
        "Order {order_number} cancelled",
        "Your order {order_number} was cancelled. Any payment has been refunded.",
    ),
    "order_refunded": (
        "Order {order_number} refunded",
        "A refund for order {order_number} has been issued.",
    ),
    "refund_request_admin": (
        "Refund requested for {order_number}",
        "Customer requested a {request_type} for order {order_number}.\nReason: {reason}",
    ),
}


class EmailDeliveryError(Exception):
    """Raised when the ESP rejects the message or cannot be reached."""


class _Defaults(dict):
    def __missing__(self, key):
        return ""


def render(template_id: str, data: dict[str, Any]) -> tuple[str, str]:
    try:
        subject, body = TEMPLATES[template_id]
    except KeyError as exc:
        raise ValueError(f"Unknown email template: {template_id}") from exc
    values = _Defaults(data)
    return subject.format_map(values), body.format_map(values)


class EmailClient:
    def __init__(
        self,
        *,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        from_email: Optional[str] = None,
        timeout: Optional[float] = None,
        retry_max: int = 2,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        cfg = settings.notifications
        self.api_url = api_url or cfg.api_url
        self.api_key = api_key if api_key is not None else cfg.api_key
        self.from_email = from_email or cfg.from_email
        self.timeout = timeout if timeout is not None else cfg.timeout
        self.retry_max = retry_max
        self._transport = transport

    def send(self, recipient: str, template_id: str, data: dict[str, Any]) -> Optional[str]:
        """Deliver one message; returns the provider message id, or None when disabled."""
        subject, text = render(template_id, data)
        if not self.api_key:
            logger.warning("email_not_sent", reason="notifications.api_key not configured", template_id=template_id)
            return None

        payload = {"from": self.from_email, "to": [recipient], "subject": subject, "text": text}
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                for attempt in Retrying(
                    stop=stop_after_attempt(self.retry_max + 1),
                    wait=wait_exponential(multiplier=0.5, min=0.5, max=5.0),
                    retry=retry_if_exception_type((httpx.TimeoutException, httpx.TransportError)),
                    reraise=True,
                ):
                    with attempt:
                        response = client.post(self.api_url, json=payload, headers=headers)
                        response.raise_for_status()
        except httpx.HTTPError as exc:
            raise EmailDeliveryError(str(exc)) from exc

        message_id = (response.json() or {}).get("id")
        logger.info("email_sent", template_id=template_id, message_id=message_id)
        return message_id
