"""领域层业务异常定义，供领域与基础设施使用。

核心（core）层仅负责全局映射与异常处理，尽量避免领域层反向依赖核心层。
"""
from __future__ import annotations

from typing import Optional
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


class PaymentConfigurationError(BusinessException):
    """商户凭证缺失或无效，在任何网络调用之前抛出"""

    def __init__(self, message: str = "Merchant credentials incomplete", *, missing: Optional[list[str]] = None):
        details = {"missing": missing} if missing else None
        super().__init__(
            code=PaymentCode.CONFIGURATION_ERROR,
            message=message,
            error_type="ConfigurationError",
            details=details,
        )


class MerchantNotFoundError(BusinessException):
    """多商户模式下无法根据上下文解析商户"""

    def __init__(self, context_keys: Optional[list[str]] = None):
        # Only key names are recorded; context values may identify tenants.
        details = {"context_keys": sorted(context_keys)} if context_keys else None
        super().__init__(
            code=PaymentCode.MERCHANT_NOT_FOUND,
            message="Merchant not found for the given context",
            error_type="MerchantNotFound",
            details=details,
        )


class InvalidStateTransition(DomainValidationException):
    def __init__(self, current: str, target: str):
        super().__init__(
            f"Cannot transition from {current} to {target}",
            field="state",
            details={"current": current, "target": target},
        )


class WebhookAuthenticationError(BusinessException):
    """回调签名或时间戳校验失败，请求被拒绝且不重试"""

    def __init__(self, reason: str, *, provider: str):
        super().__init__(
            code=PaymentCode.WEBHOOK_AUTH_FAILED,
            message="Invalid signature",
            error_type="AuthenticationError",
            details={"provider": provider, "reason": reason},
        )
