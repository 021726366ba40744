"""
订单API路由 - 顾客侧
"""
from typing import Optional

from fastapi import APIRouter, Body, Depends

from api.dependencies import Caller, get_caller, get_order_service
from application.dto import OrderDTO, RefundRequestDTO
from application.services.order_service import OrderApplicationService
from core.response import Response as ApiResponse, success_response

router = APIRouter(
    prefix="/orders",
    tags=["订单"]
)


@router.get("/{order_number}", summary="查询订单", response_model=ApiResponse[OrderDTO])
async def get_order(
    order_number: str,
    caller: Caller = Depends(get_caller),
    service: OrderApplicationService = Depends(get_order_service),
):
    """仅订单所有者可见，他人订单返回 404"""
    order = await service.get_order(order_number, user_id=caller.user_id, anonymous_id=caller.anonymous_id)
    return success_response(data=order)


@router.post("/{order_number}/cancel", summary="取消订单", response_model=ApiResponse[OrderDTO])
async def cancel_order(
    order_number: str,
    reason: Optional[str] = Body(default=None, embed=True, max_length=1000),
    caller: Caller = Depends(get_caller),
    service: OrderApplicationService = Depends(get_order_service),
):
    """
    发货前取消订单

    - 先在网关退款，成功后释放库存并记录历史
    - 已发货的订单返回 409，请改为申请退款
    """
    order = await service.cancel_order(
        order_number,
        user_id=caller.user_id,
        anonymous_id=caller.anonymous_id,
        reason=reason,
    )
    return success_response(data=order, message="Order cancelled")


@router.post("/{order_number}/refund-request", summary="申请退款", response_model=ApiResponse[OrderDTO])
async def request_refund(
    order_number: str,
    body: RefundRequestDTO,
    caller: Caller = Depends(get_caller),
    service: OrderApplicationService = Depends(get_order_service),
):
    order = await service.request_refund(
        order_number,
        user_id=caller.user_id,
        anonymous_id=caller.anonymous_id,
        reason=body.reason,
        request_type=body.type,
    )
    return success_response(data=order, message="Refund requested")
