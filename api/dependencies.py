"""
API依赖项 - 调用方身份、管理端鉴权与应用服务装配
"""
import hmac
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header

from application.services.cart_service import CartApplicationService
from application.services.checkout_service import CheckoutApplicationService
from application.services.order_service import OrderApplicationService
from application.services.webhook_service import WebhookIngestionService
from core.config import settings
from domain.common.exceptions import ForbiddenException, UnauthorizedException
from infrastructure.external.alerting import SlackAlerter
from infrastructure.external.notifications import CeleryNotifier
from infrastructure.external.payments import get_payment_gateway
from infrastructure.tasks.utils.dispatcher import TaskDispatcher
from infrastructure.unit_of_work import build_uow_factory


@dataclass(frozen=True)
class Caller:
    """上游网关透传的调用方身份"""
    user_id: Optional[str] = None
    anonymous_id: Optional[str] = None


async def get_caller(
    x_user_id: Optional[str] = Header(default=None, alias="X-User-ID"),
    x_anonymous_id: Optional[str] = Header(default=None, alias="X-Anonymous-ID"),
) -> Caller:
    """至少需要一个身份头"""
    user_id = (x_user_id or "").strip() or None
    anonymous_id = (x_anonymous_id or "").strip() or None
    if not user_id and not anonymous_id:
        raise UnauthorizedException("X-User-ID or X-Anonymous-ID header is required")
    return Caller(user_id=user_id, anonymous_id=anonymous_id)


async def require_admin(
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
) -> str:
    """校验管理端令牌；未配置令牌时拒绝所有管理请求"""
    if not x_admin_token:
        raise UnauthorizedException("X-Admin-Token header is required")
    expected = settings.ADMIN_API_TOKEN
    if not expected or not hmac.compare_digest(x_admin_token, expected):
        raise ForbiddenException("Invalid admin token")
    return "admin"


def _schedule_replay(source: str, event_id: str) -> None:
    TaskDispatcher().replay_event(source, event_id, countdown=settings.webhook.replay_after_seconds)


async def get_cart_service() -> CartApplicationService:
    return CartApplicationService(build_uow_factory())


async def get_checkout_service() -> CheckoutApplicationService:
    return CheckoutApplicationService(build_uow_factory(), get_payment_gateway())


async def get_order_service() -> OrderApplicationService:
    return OrderApplicationService(
        build_uow_factory(),
        get_payment_gateway(),
        notifier=CeleryNotifier(),
    )


def webhook_service_for(provider: str) -> WebhookIngestionService:
    return WebhookIngestionService(
        build_uow_factory(),
        get_payment_gateway(provider),
        alerter=SlackAlerter(),
        notifier=CeleryNotifier(),
        replay_scheduler=_schedule_replay,
        source=provider.lower(),
    )
