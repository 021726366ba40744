"""
购物车API路由 - FastAPI表现层
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from api.dependencies import Caller, get_caller, get_cart_service
from application.dto import (
    CartCalculationDTO,
    CartDTO,
    CartItemAddDTO,
    CartItemUpdateDTO,
    CheckoutValidationDTO,
)
from application.services.cart_service import CartApplicationService
from core.response import Response as ApiResponse, success_response

router = APIRouter(
    prefix="/cart",
    tags=["购物车"]
)


@router.get("", summary="获取购物车", response_model=ApiResponse[CartDTO])
async def get_cart(
    caller: Caller = Depends(get_caller),
    service: CartApplicationService = Depends(get_cart_service),
):
    """获取当前调用方的购物车，不存在时自动创建"""
    cart = await service.get_cart(user_id=caller.user_id, anonymous_id=caller.anonymous_id)
    return success_response(data=cart)


@router.post("/items", summary="加入购物车", response_model=ApiResponse[CartDTO])
async def add_item(
    body: CartItemAddDTO,
    caller: Caller = Depends(get_caller),
    service: CartApplicationService = Depends(get_cart_service),
):
    """
    加入商品；已在购物车中的规格累加数量

    库存不足时返回 409，并在 details 中列出缺口
    """
    cart = await service.add_item(
        user_id=caller.user_id,
        anonymous_id=caller.anonymous_id,
        variant_id=body.variant_id,
        quantity=body.quantity,
    )
    return success_response(data=cart, message="Item added")


@router.patch("/items/{variant_id}", summary="修改数量", response_model=ApiResponse[CartDTO])
async def update_item(
    variant_id: int,
    body: CartItemUpdateDTO,
    caller: Caller = Depends(get_caller),
    service: CartApplicationService = Depends(get_cart_service),
):
    cart = await service.update_item(
        user_id=caller.user_id,
        anonymous_id=caller.anonymous_id,
        variant_id=variant_id,
        quantity=body.quantity,
    )
    return success_response(data=cart, message="Item updated")


@router.delete("/items/{variant_id}", summary="移除商品", response_model=ApiResponse[CartDTO])
async def remove_item(
    variant_id: int,
    caller: Caller = Depends(get_caller),
    service: CartApplicationService = Depends(get_cart_service),
):
    cart = await service.remove_item(
        user_id=caller.user_id,
        anonymous_id=caller.anonymous_id,
        variant_id=variant_id,
    )
    return success_response(data=cart, message="Item removed")


@router.post("/merge", summary="合并匿名购物车", response_model=ApiResponse[CartDTO])
async def merge_cart(
    caller: Caller = Depends(get_caller),
    service: CartApplicationService = Depends(get_cart_service),
):
    """登录后将匿名购物车合并到用户购物车，需同时携带两个身份头"""
    cart = await service.merge(user_id=caller.user_id, anonymous_id=caller.anonymous_id)
    return success_response(data=cart, message="Cart merged")


@router.get("/calculate", summary="计价", response_model=ApiResponse[CartCalculationDTO])
async def calculate_cart(
    currency: Optional[str] = Query(default=None, min_length=3, max_length=3),
    caller: Caller = Depends(get_caller),
    service: CartApplicationService = Depends(get_cart_service),
):
    """按指定币种计价；缺少该币种价格的商品不计入小计"""
    calculation = await service.calculate(
        user_id=caller.user_id,
        anonymous_id=caller.anonymous_id,
        currency=currency,
    )
    return success_response(data=calculation)


@router.post("/checkout/validate", summary="结算前校验", response_model=ApiResponse[CheckoutValidationDTO])
async def validate_checkout(
    currency: Optional[str] = Query(default=None, min_length=3, max_length=3),
    clean: bool = Query(default=False, description="先移除失效商品再校验"),
    caller: Caller = Depends(get_caller),
    service: CartApplicationService = Depends(get_cart_service),
):
    result = await service.validate_checkout(
        user_id=caller.user_id,
        anonymous_id=caller.anonymous_id,
        currency=currency,
        clean=clean,
    )
    return success_response(data=result, message="Cart is valid" if result.valid else "Cart is not valid")
