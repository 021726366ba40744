"""
数据传输对象（DTO）- 应用层与表现层之间的数据传输
"""
from pydantic import BaseModel, Field, model_serializer, ConfigDict
from typing import Optional, Any, List, Literal
from datetime import datetime, timezone
from decimal import Decimal

from domain.order.entity import OrderStatus


class DTOBase(BaseModel):
    """Base DTO: unify datetime serialization to UTC-Z for all subclasses."""

    @model_serializer(mode="wrap")
    def _serialize_model(self, handler):  # type: ignore[override]
        data = handler(self)

        def convert(value):
            if isinstance(value, datetime):
                ts = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
                s = ts.astimezone(timezone.utc).isoformat()
                return s.replace("+00:00", "Z")
            if isinstance(value, list):
                return [convert(v) for v in value]
            if isinstance(value, tuple):
                return tuple(convert(v) for v in value)
            if isinstance(value, dict):
                return {k: convert(v) for k, v in value.items()}
            return value

        return convert(data)


# ---------------------------------------------------------------------------
# Cart
# ---------------------------------------------------------------------------

class CartItemAddDTO(DTOBase):
    """加入购物车"""
    variant_id: int = Field(..., gt=0, description="规格ID")
    quantity: int = Field(1, ge=1, le=999, description="数量")


class CartItemUpdateDTO(DTOBase):
    quantity: int = Field(..., ge=1, le=999, description="新数量")


class CartItemDTO(DTOBase):
    variant_id: int
    quantity: int
    added_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class CartDTO(DTOBase):
    id: int
    status: str
    currency: str
    user_id: Optional[str] = None
    anonymous_id: Optional[str] = None
    items: List[CartItemDTO] = Field(default_factory=list)
    item_count: int = 0
    expires_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class CalculatedLineDTO(DTOBase):
    variant_id: int
    sku: str
    name: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal
    currency: str

    model_config = ConfigDict(from_attributes=True)


class CartCalculationDTO(DTOBase):
    currency: str
    items: List[CalculatedLineDTO] = Field(default_factory=list)
    subtotal: Decimal
    item_count: int
    skipped_variant_ids: List[int] = Field(default_factory=list)
    calculated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CheckoutValidationDTO(DTOBase):
    valid: bool
    errors: List[str] = Field(default_factory=list)
    removed_variant_ids: List[int] = Field(default_factory=list)


class CheckoutIntentCreateDTO(DTOBase):
    """发起支付：按购物车金额创建网关支付意图"""
    currency: Optional[str] = Field(None, min_length=3, max_length=3, description="结算币种，默认购物车币种")
    shipping_amount: Decimal = Field(Decimal("0"), ge=0, description="运费")
    tax_amount: Decimal = Field(Decimal("0"), ge=0, description="税费")
    locale: Optional[str] = Field(None, max_length=10, description="通知语言")
    email: Optional[str] = Field(None, max_length=255, description="收据邮箱")


class CheckoutIntentDTO(DTOBase):
    provider: str
    payment_intent_id: str
    client_secret: Optional[str] = None
    status: Optional[str] = None
    cart_id: int
    currency: str
    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    total: Decimal


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------

class OrderItemDTO(DTOBase):
    variant_id: int
    sku: str
    name: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal
    currency: str

    model_config = ConfigDict(from_attributes=True)


class PaymentDTO(DTOBase):
    amount: Decimal
    currency: str
    method: str
    status: str
    external_id: str
    processed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class StatusHistoryDTO(DTOBase):
    status: str
    comment: Optional[str] = None
    created_by: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class OrderDTO(DTOBase):
    order_number: str
    status: str
    currency: str
    subtotal_amount: Decimal
    tax_amount: Decimal
    shipping_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    order_email: Optional[str] = None
    language: str = "en"
    shipping_address: Optional[dict[str, Any]] = None
    items: List[OrderItemDTO] = Field(default_factory=list)
    payments: List[PaymentDTO] = Field(default_factory=list)
    status_history: List[StatusHistoryDTO] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class OrderStatusUpdateDTO(DTOBase):
    """管理端状态变更"""
    status: OrderStatus
    comment: Optional[str] = Field(None, max_length=1000)


class RefundRequestDTO(DTOBase):
    reason: str = Field(..., min_length=3, max_length=1000, description="退款原因")
    type: Literal["REFUND", "CANCELLATION"] = Field("REFUND", description="申请类型")
