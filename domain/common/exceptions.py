"""领域层业务异常定义，供领域与基础设施使用。

核心（core）层仅负责全局映射与异常处理，尽量避免领域层反向依赖核心层。
"""
from __future__ import annotations

from typing import Optional, Sequence
from shared.codes import BusinessCode
from shared.codes.payment_codes import PaymentCode


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        super().__init__(self.message)


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
        )


class UnauthorizedException(BusinessException):
    """未授权异常"""

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(
            code=BusinessCode.UNAUTHORIZED,
            message=message,
            error_type="Unauthorized",
        )


class ForbiddenException(BusinessException):
    def __init__(self, message: str = "Forbidden"):
        super().__init__(
            code=BusinessCode.FORBIDDEN,
            message=message,
            error_type="Forbidden",
        )


class OrderNotFoundException(BusinessException):
    def __init__(self, order_number: Optional[str] = None):
        details = {"order_number": order_number} if order_number else None
        super().__init__(
            code=BusinessCode.ORDER_NOT_FOUND,
            message="Order not found",
            error_type="NotFound",
            details=details,
        )


class CartNotFoundException(BusinessException):
    def __init__(self, cart_id: Optional[int] = None):
        details = {"cart_id": cart_id} if cart_id is not None else None
        super().__init__(
            code=BusinessCode.CART_NOT_FOUND,
            message="Cart not found",
            error_type="NotFound",
            details=details,
        )


class CartItemNotFoundException(BusinessException):
    def __init__(self, variant_id: int):
        super().__init__(
            code=BusinessCode.NOT_FOUND,
            message="Cart item not found",
            error_type="NotFound",
            details={"variant_id": variant_id},
            field="variant_id",
        )


class VariantNotFoundException(BusinessException):
    def __init__(self, variant_id: int):
        super().__init__(
            code=BusinessCode.VARIANT_NOT_FOUND,
            message="Product variant not found or inactive",
            error_type="NotFound",
            details={"variant_id": variant_id},
            field="variant_id",
        )


class InsufficientStockException(BusinessException):
    """库存不足（业务规则违反，不做请求级重试）"""

    def __init__(self, shortages: Sequence[dict]):
        super().__init__(
            code=BusinessCode.INSUFFICIENT_STOCK,
            message="Insufficient stock",
            error_type="InsufficientStock",
            details={"shortages": list(shortages)},
        )
        self.shortages = list(shortages)


class CheckoutValidationException(BusinessException):
    def __init__(self, errors: Sequence[str]):
        super().__init__(
            code=BusinessCode.CHECKOUT_INVALID,
            message="Cart is not eligible for checkout",
            error_type="CheckoutInvalid",
            details={"errors": list(errors)},
        )
        self.errors = list(errors)


class IllegalStateTransitionException(BusinessException):
    """状态机守卫拒绝的状态转换"""

    def __init__(self, current: str, target: str, reason: Optional[str] = None):
        super().__init__(
            code=BusinessCode.ILLEGAL_STATE_TRANSITION,
            message=reason or f"Cannot transition order from {current} to {target}",
            error_type="IllegalStateTransition",
            details={"current": current, "target": target},
            field="status",
        )
        self.current = current
        self.target = target


class OrderIntegrityError(BusinessException):
    """支付已捕获但订单无法完整落库（例如库存短缺），需要人工介入"""

    def __init__(self, message: str, *, details: Optional[dict] = None):
        super().__init__(
            code=BusinessCode.ORDER_INTEGRITY_ERROR,
            message=message,
            error_type="OrderIntegrityError",
            details=details,
        )


class RetryableProcessingError(BusinessException):
    """可重试的处理失败：存储超时、锁竞争等"""

    def __init__(self, message: str, *, details: Optional[dict] = None):
        super().__init__(
            code=BusinessCode.RETRYABLE_PROCESSING,
            message=message,
            error_type="RetryableProcessingError",
            details=details,
        )


class GatewayCompensationFailure(BusinessException):
    """网关退款（补偿动作）失败，状态转换被阻断"""

    def __init__(self, message: str, *, provider: str, provider_code: Optional[str] = None):
        super().__init__(
            code=PaymentCode.COMPENSATION_FAILED,
            message=message,
            error_type="GatewayCompensationFailure",
            details={"provider": provider, "provider_code": provider_code},
        )
        self.provider_code = provider_code
