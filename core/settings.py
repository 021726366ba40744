"""
支付网关配置（pydantic-settings v2，嵌套环境变量）

与 core.config.Settings 分开，网关凭据按大小写敏感的键加载
（STRIPE__SECRET_KEY、STRIPE__WEBHOOK_SECRET ...）。
"""
from __future__ import annotations

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field


class PaymentTimeouts(BaseModel):
    # 单次网关调用（退款）的总超时，超时按可重试错误处理
    total: float = 10.0


class PaymentRetry(BaseModel):
    # 限流/网络错误的重试次数，不含首次调用
    max: int = 2
    base_backoff: float = 0.2


class WebhookSignatureSettings(BaseModel):
    # 签名时间戳允许的偏差，防重放
    tolerance_seconds: int = 300


class StripeSettings(BaseModel):
    secret_key: Optional[str] = None
    webhook_secret: Optional[str] = None
    # 为空时使用 SDK 默认版本
    api_version: Optional[str] = None


class PaymentSettings(BaseSettings):
    default_provider: str = Field(default="stripe", validation_alias="PAYMENT__DEFAULT_PROVIDER")
    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    retry: PaymentRetry = Field(default_factory=PaymentRetry)
    webhook: WebhookSignatureSettings = Field(default_factory=WebhookSignatureSettings)

    stripe: StripeSettings = Field(default_factory=StripeSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="allow",
        env_nested_delimiter="__",
    )


payment_settings = PaymentSettings()
