"""
管理端API路由 - 需要 X-Admin-Token
"""
from fastapi import APIRouter, Depends

from api.dependencies import get_order_service, require_admin
from application.dto import OrderDTO, OrderStatusUpdateDTO
from application.services.order_service import OrderApplicationService
from core.response import Response as ApiResponse, success_response

router = APIRouter(
    prefix="/admin/orders",
    tags=["管理端"],
    dependencies=[Depends(require_admin)],
)


@router.get("/{order_number}", summary="查询任意订单", response_model=ApiResponse[OrderDTO])
async def get_order(
    order_number: str,
    service: OrderApplicationService = Depends(get_order_service),
):
    order = await service.get_order(order_number, admin=True)
    return success_response(data=order)


@router.patch("/{order_number}/status", summary="变更订单状态", response_model=ApiResponse[OrderDTO])
async def update_order_status(
    order_number: str,
    body: OrderStatusUpdateDTO,
    admin_id: str = Depends(require_admin),
    service: OrderApplicationService = Depends(get_order_service),
):
    """
    按状态机推进订单

    - CANCELLED / REFUNDED 会先在网关退款，失败返回 502 且状态不变
    - 非法转换返回 409
    """
    order = await service.update_status(
        order_number,
        body.status,
        comment=body.comment,
        admin_id=admin_id,
    )
    return success_response(data=order, message="Order status updated")
