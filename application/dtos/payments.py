"""
Payment DTOs (Pydantic v2) used at application boundaries.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


class WebhookEvent(BaseModel):
    """A verified gateway event; `payload` is the full decoded body."""

    id: str
    type: str
    provider: str
    data: dict[str, Any] = Field(default_factory=dict)
    payload: dict[str, Any] = Field(default_factory=dict)
    created: Optional[int] = None


class PaymentConfirmation(BaseModel):
    """Captured payment extracted from a confirmation event."""

    external_id: str
    amount: Decimal
    currency: str
    cart_id: int
    user_id: Optional[str] = None
    email: Optional[str] = None
    shipping_amount: Decimal = Decimal("0")
    tax_amount: Decimal = Decimal("0")
    language: str = "en"
    shipping_address: Optional[dict[str, Any]] = None
    transaction_data: dict[str, Any] = Field(default_factory=dict)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, v: str) -> str:
        u = (v or "").upper()
        if len(u) != 3 or not u.isalpha():
            raise ValueError("currency must be ISO-4217 alpha-3")
        return u


class WebhookAck(BaseModel):
    received: bool = True
    processed: bool = False
    duplicate: bool = False
    giving_up: bool = False
    ignored: bool = False
    order_number: Optional[str] = None


class PaymentIntentResult(BaseModel):
    """A gateway payment intent the storefront confirms with `client_secret`."""

    provider: str
    intent_id: str
    client_secret: Optional[str] = None
    amount: Decimal
    currency: str
    status: Optional[str] = None
