"""
购物车计价引擎

- 单价严格按请求币种取值，缺失价格的行跳过并记录，不做跨币种替代
- 行金额与小计均使用银行家舍入（ROUND_HALF_EVEN），避免大量交易下的系统性向上偏差
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_EVEN
from typing import Iterable, List, Mapping, Optional, Tuple, Union

from domain.catalog.entity import ProductVariant, VariantPrice
from .entity import Cart


Number = Union[Decimal, int, float, str]


def round_half_even(value: Number, decimals: int = 2) -> Decimal:
    """银行家舍入：round_half_even(2.345) == 2.34，round_half_even(2.355) == 2.36"""
    if isinstance(value, float):
        # 使用字面值，避免二进制浮点误差（2.345 实际存储为 2.34499...）
        value = repr(value)
    quantum = Decimal(1).scaleb(-decimals)
    return Decimal(value).quantize(quantum, rounding=ROUND_HALF_EVEN)


def get_price(prices: Iterable[VariantPrice], currency: str) -> Optional[Decimal]:
    """严格取价：只返回该币种的有效价格，否则 None"""
    wanted = currency.upper()
    for price in prices:
        if price.is_active and price.currency.upper() == wanted:
            return Decimal(price.amount)
    return None


@dataclass(frozen=True)
class CalculatedLine:
    variant_id: int
    sku: str
    name: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal
    currency: str


@dataclass(frozen=True)
class CartCalculation:
    currency: str
    items: Tuple[CalculatedLine, ...]
    subtotal: Decimal
    item_count: int
    # 因缺价或规格不存在而跳过的行
    skipped_variant_ids: Tuple[int, ...] = ()
    calculated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class CartValidationResult:
    valid: bool
    errors: Tuple[str, ...] = ()


def calculate_cart(
    cart: Cart,
    variants: Mapping[int, ProductVariant],
    currency: str,
) -> CartCalculation:
    """计算购物车金额；同一输入多次调用结果一致"""
    currency = currency.upper()
    lines: List[CalculatedLine] = []
    skipped: List[int] = []

    for item in cart.items:
        variant = variants.get(item.variant_id)
        unit_price = get_price(variant.prices, currency) if variant else None
        if variant is None or unit_price is None:
            skipped.append(item.variant_id)
            continue
        lines.append(
            CalculatedLine(
                variant_id=variant.id,
                sku=variant.sku,
                name=variant.display_name,
                quantity=item.quantity,
                unit_price=unit_price,
                line_total=round_half_even(unit_price * item.quantity),
                currency=currency,
            )
        )

    subtotal = round_half_even(sum((line.line_total for line in lines), Decimal("0")))
    return CartCalculation(
        currency=currency,
        items=tuple(lines),
        subtotal=subtotal,
        item_count=sum(line.quantity for line in lines),
        skipped_variant_ids=tuple(skipped),
    )


def validate_cart_for_checkout(
    cart: Cart,
    variants: Mapping[int, ProductVariant],
    currency: str,
) -> CartValidationResult:
    """结账校验：空车、缺价、实物库存不足（且不允许超卖）均不通过。

    下单时必须再次调用，以关闭浏览与支付之间的竞态窗口。
    """
    currency = currency.upper()
    errors: List[str] = []

    if cart.is_empty:
        return CartValidationResult(valid=False, errors=("Cart is empty",))

    for item in cart.items:
        variant = variants.get(item.variant_id)
        if variant is None or not variant.is_active:
            errors.append(f"Variant {item.variant_id} is no longer available")
            continue
        if get_price(variant.prices, currency) is None:
            errors.append(f"No price in {currency} for {variant.display_name}")
        inventory = variant.inventory
        if inventory is None:
            errors.append(f"No inventory record for {variant.display_name}")
        elif not inventory.can_fulfil(item.quantity):
            errors.append(
                f"Insufficient stock for {variant.display_name}: "
                f"available {inventory.stock}, requested {item.quantity}"
            )

    return CartValidationResult(valid=not errors, errors=tuple(errors))
