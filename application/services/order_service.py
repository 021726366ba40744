"""
Application service for order lookups and status transitions.

Transitions run under the order row lock. When the target state requires a
compensating refund, the gateway is called before the local change; a gateway
failure aborts the transaction so the order keeps its previous status.
"""
from __future__ import annotations

from typing import Callable, Optional

from application.dto import (
    OrderDTO,
    OrderItemDTO,
    PaymentDTO,
    StatusHistoryDTO,
)
from application.ports.notifications import Notifier
from application.utils.events import log_domain_events
from domain.common.exceptions import (
    BusinessException,
    GatewayCompensationFailure,
    OrderNotFoundException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.inventory.service import InventoryReservationManager
from domain.order.entity import Actor, Order, OrderStatus
from domain.order.service import OrderDomainService
from domain.order.state_machine import OrderStateMachine
from domain.services.payment_gateway import RefundGateway, RefundOutcome
from shared.codes.payment_codes import PaymentCode
from core.config import settings
from core.logging_config import get_logger


logger = get_logger(__name__)

# Gateway failures that block a compensating transition
_GATEWAY_FAILURE_CODES = {
    PaymentCode.PROVIDER_ERROR,
    PaymentCode.PROVIDER_RECOVERABLE,
}

_STATUS_TEMPLATES = {
    OrderStatus.SHIPPED: "order_shipped",
    OrderStatus.CANCELLED: "order_cancelled",
    OrderStatus.REFUNDED: "order_refunded",
}


class OrderApplicationService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        gateway: RefundGateway,
        *,
        notifier: Optional[Notifier] = None,
        admin_email: Optional[str] = None,
        low_stock_threshold: Optional[int] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self.gateway = gateway
        self.notifier = notifier
        self.admin_email = admin_email if admin_email is not None else settings.notifications.admin_email
        self.low_stock_threshold = (
            low_stock_threshold
            if low_stock_threshold is not None
            else settings.inventory.default_low_stock_threshold
        )

    @staticmethod
    def _to_dto(order: Order) -> OrderDTO:
        return OrderDTO(
            order_number=order.order_number,
            status=order.status.value,
            currency=order.currency,
            subtotal_amount=order.subtotal_amount,
            tax_amount=order.tax_amount,
            shipping_amount=order.shipping_amount,
            discount_amount=order.discount_amount,
            total_amount=order.total_amount,
            order_email=order.order_email,
            language=order.language,
            shipping_address=order.shipping_address,
            items=[OrderItemDTO.model_validate(i) for i in order.items],
            payments=[
                PaymentDTO(
                    amount=p.amount,
                    currency=p.currency,
                    method=p.method,
                    status=p.status.value,
                    external_id=p.external_id,
                    processed_at=p.processed_at,
                )
                for p in order.payments
            ],
            status_history=[
                StatusHistoryDTO(
                    status=h.status.value,
                    comment=h.comment,
                    created_by=h.created_by,
                    created_at=h.created_at,
                )
                for h in order.status_history
            ],
            created_at=order.created_at,
            updated_at=order.updated_at,
        )

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------
    async def get_order(
        self,
        order_number: str,
        *,
        user_id: Optional[str] = None,
        anonymous_id: Optional[str] = None,
        admin: bool = False,
    ) -> OrderDTO:
        async with self._uow_factory(readonly=True) as uow:
            order = await uow.orders.get_by_number(order_number)
        # 不暴露他人订单是否存在
        if order is None or (not admin and not order.owned_by(user_id=user_id, anonymous_id=anonymous_id)):
            raise OrderNotFoundException(order_number)
        return self._to_dto(order)

    # ------------------------------------------------------------------
    # customer actions
    # ------------------------------------------------------------------
    async def cancel_order(
        self,
        order_number: str,
        *,
        user_id: Optional[str],
        anonymous_id: Optional[str],
        reason: Optional[str] = None,
    ) -> OrderDTO:
        order = await self._transition(
            order_number,
            OrderStatus.CANCELLED,
            actor=Actor.CUSTOMER,
            comment=reason or "Cancelled by customer",
            created_by=user_id or anonymous_id,
            owner={"user_id": user_id, "anonymous_id": anonymous_id},
        )
        return self._to_dto(order)

    async def request_refund(
        self,
        order_number: str,
        *,
        user_id: Optional[str],
        anonymous_id: Optional[str],
        reason: str,
        request_type: str = "REFUND",
    ) -> OrderDTO:
        if request_type.upper() == "CANCELLATION":
            return await self.cancel_order(order_number, user_id=user_id, anonymous_id=anonymous_id, reason=reason)

        order = await self._transition(
            order_number,
            OrderStatus.REFUND_REQUESTED,
            actor=Actor.CUSTOMER,
            comment=reason,
            created_by=user_id or anonymous_id,
            owner={"user_id": user_id, "anonymous_id": anonymous_id},
        )
        if self.admin_email:
            self._notify(
                self.admin_email,
                "refund_request_admin",
                order,
                reason=reason,
                request_type=request_type.upper(),
            )
        return self._to_dto(order)

    # ------------------------------------------------------------------
    # admin actions
    # ------------------------------------------------------------------
    async def update_status(
        self,
        order_number: str,
        target: OrderStatus,
        *,
        comment: Optional[str] = None,
        admin_id: str = "admin",
    ) -> OrderDTO:
        order = await self._transition(
            order_number,
            target,
            actor=Actor.ADMIN,
            comment=comment,
            created_by=admin_id,
        )
        return self._to_dto(order)

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------
    async def _transition(
        self,
        order_number: str,
        target: OrderStatus,
        *,
        actor: Actor,
        comment: Optional[str],
        created_by: Optional[str],
        owner: Optional[dict] = None,
    ) -> Order:
        async with self._uow_factory() as uow:
            order = await uow.orders.get_by_number(order_number, for_update=True)
            if order is None or (owner is not None and not order.owned_by(**owner)):
                raise OrderNotFoundException(order_number)

            check = OrderStateMachine.ensure(order.status, target, actor)
            if check.requires_compensation:
                await self._compensate(order, reason=comment)

            inventory = InventoryReservationManager(uow.inventory, low_stock_threshold=self.low_stock_threshold)
            domain = OrderDomainService(uow.orders, uow.carts, uow.catalog, inventory)
            updated = await domain.apply_transition(
                order,
                check,
                actor=actor,
                comment=comment,
                created_by=created_by,
            )
            await uow.commit()

        log_domain_events(logger, domain.get_domain_events() + inventory.get_domain_events())
        if check.notify:
            self._notify_status(updated)
        return updated

    async def _compensate(self, order: Order, *, reason: Optional[str]) -> None:
        payment = order.refundable_payment()
        if payment is None:
            logger.warning("order_compensation_skipped", order_number=order.order_number, reason="no captured payment")
            return
        try:
            outcome = await self.gateway.create_refund(
                payment.external_id,
                idempotency_key=f"refund-{order.order_number}",
                reason=reason,
            )
        except BusinessException as exc:
            if exc.code not in _GATEWAY_FAILURE_CODES:
                raise
            logger.error(
                "order_compensation_failed",
                order_number=order.order_number,
                external_id=payment.external_id,
                error=exc.message,
            )
            raise GatewayCompensationFailure(
                exc.message,
                provider=getattr(exc, "provider", None) or self.gateway.provider,
                provider_code=getattr(exc, "provider_code", None),
            ) from exc

        if outcome == RefundOutcome.ALREADY_REFUNDED:
            logger.info("order_already_refunded", order_number=order.order_number, external_id=payment.external_id)
        else:
            logger.info("order_refunded", order_number=order.order_number, external_id=payment.external_id)

    def _notify_status(self, order: Order) -> None:
        template = _STATUS_TEMPLATES.get(order.status)
        if template and order.order_email:
            self._notify(order.order_email, template, order)

    def _notify(self, recipient: str, template_id: str, order: Order, **extra) -> None:
        if self.notifier is None:
            return
        data = {
            "order_number": order.order_number,
            "status": order.status.value,
            "total_amount": str(order.total_amount),
            "currency": order.currency,
            "language": order.language,
            **extra,
        }
        try:
            self.notifier.send(recipient, template_id, data)
        except Exception as exc:
            logger.error(
                "order_notification_failed",
                order_number=order.order_number,
                template_id=template_id,
                error=str(exc),
            )
