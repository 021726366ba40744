"""
访问日志中间件

按接口分组（webhook / cart / orders / admin）记录请求与响应、耗时；
网关回调体只用于验签，永不落日志。
"""
import json
import time
from typing import Any, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from core.config import settings
from core.logging_config import get_logger


logger = get_logger(__name__)


# (路径前缀, 分组)；按顺序匹配
ROUTE_GROUPS = (
    ("/api/v1/payments/webhooks/", "webhook"),
    ("/api/v1/payments/checkout", "checkout"),
    ("/api/v1/admin/", "admin"),
    ("/api/v1/cart", "cart"),
    ("/api/v1/orders", "orders"),
)

# 订单/购物车请求体里的客户信息
REDACTED_FIELDS = frozenset({
    "email", "order_email", "receipt_email", "phone",
    "address", "shipping_address", "token", "secret", "client_secret", "api_key",
})


def route_group(path: str) -> Optional[str]:
    for prefix, group in ROUTE_GROUPS:
        if path.startswith(prefix):
            return group
    return None


def redact(data: Any) -> Any:
    """递归替换敏感字段的值"""
    if isinstance(data, dict):
        return {k: ("***" if k.lower() in REDACTED_FIELDS else redact(v)) for k, v in data.items()}
    if isinstance(data, list):
        return [redact(v) for v in data]
    return data


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    访问日志中间件

    - 健康检查与文档路径不记录
    - 仅 JSON 请求体会被截断、脱敏后记录，且 webhook 分组始终跳过
    - 响应头附带 X-Process-Time
    """

    SKIP_PATHS = {"/health", "/docs", "/redoc", "/openapi.json"}

    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.log_body: bool = settings.LOG_REQUEST_BODY_ENABLE_BY_DEFAULT and settings.DEBUG
        self.max_body_bytes: int = settings.LOG_REQUEST_BODY_MAX_BYTES

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if path in self.SKIP_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        info = await self._request_info(request, route_group(path))
        logger.info("request_started", **info)

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "request_failed",
                duration=round(time.perf_counter() - started, 4),
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=True,
                **info,
            )
            raise

        duration = time.perf_counter() - started
        self._log_response(response.status_code, duration, info)
        response.headers["X-Process-Time"] = f"{duration:.3f}"
        return response

    async def _request_info(self, request: Request, group: Optional[str]) -> dict:
        info: dict = {
            "method": request.method,
            "path": request.url.path,
            "route_group": group or "other",
        }
        if request.query_params:
            info["query_params"] = dict(request.query_params)
        if group == "admin":
            # 只记录是否携带令牌
            info["admin_token_present"] = bool(request.headers.get("X-Admin-Token"))
        if group == "webhook":
            info["signature_present"] = bool(request.headers.get("Stripe-Signature"))
        elif request.method in ("POST", "PUT", "PATCH") and self.log_body:
            body = await self._json_body(request)
            if body is not None:
                info["body"] = body
        return info

    async def _json_body(self, request: Request) -> Any:
        if "application/json" not in request.headers.get("content-type", "").lower():
            return None
        raw = await request.body()
        if not raw:
            return None
        snippet = raw[: self.max_body_bytes].decode("utf-8", errors="ignore")
        try:
            return redact(json.loads(snippet))
        except ValueError:
            # 截断后不是合法 JSON
            return {"truncated": True, "bytes": len(raw)}

    @staticmethod
    def _log_response(status_code: int, duration: float, info: dict) -> None:
        log_data = {"status_code": status_code, "duration": round(duration, 4), **info}
        if status_code < 400:
            logger.info("request_completed", **log_data)
        elif status_code < 500:
            logger.warning("request_client_error", **log_data)
        else:
            logger.error("request_server_error", **log_data)
