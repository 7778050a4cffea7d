"""
自定义异常映射与全局异常处理器

对外只返回通用错误信息；异常细节（缺失字段、商户上下文键等）仅写入日志，
调试模式下才随响应返回。
"""
from fastapi import FastAPI, Request, HTTPException
from fastapi.exceptions import RequestValidationError
import traceback
import uuid
from starlette import status as http_status

from .response import error_json
from shared.codes import BusinessCode
from shared.codes.payment_codes import PaymentCode
from core.logging_config import get_logger
from domain.common.exceptions import BusinessException


# 对外的通用错误信息，避免泄漏配置或密钥细节
GENERIC_MESSAGES = {
    PaymentCode.CONFIGURATION_ERROR: "Payment gateway is not configured",
    PaymentCode.MERCHANT_NOT_FOUND: "Merchant not found",
    PaymentCode.SIGNATURE_ERROR: "Failed to sign payment request",
    PaymentCode.INVALID_KEY: "Failed to sign payment request",
    PaymentCode.TRANSPORT_ERROR: "Payment gateway unavailable",
    PaymentCode.WEBHOOK_AUTH_FAILED: "Invalid signature",
}

_STATUS_BY_CODE = {
    BusinessCode.PARAM_ERROR: http_status.HTTP_400_BAD_REQUEST,
    BusinessCode.PARAM_MISSING: http_status.HTTP_400_BAD_REQUEST,
    BusinessCode.PARAM_VALIDATION_ERROR: http_status.HTTP_422_UNPROCESSABLE_ENTITY,
    BusinessCode.BUSINESS_ERROR: http_status.HTTP_400_BAD_REQUEST,
    BusinessCode.NOT_FOUND: http_status.HTTP_404_NOT_FOUND,
    BusinessCode.UNAUTHORIZED: http_status.HTTP_401_UNAUTHORIZED,
    BusinessCode.FORBIDDEN: http_status.HTTP_403_FORBIDDEN,
    BusinessCode.SYSTEM_ERROR: http_status.HTTP_500_INTERNAL_SERVER_ERROR,
    BusinessCode.NETWORK_ERROR: http_status.HTTP_500_INTERNAL_SERVER_ERROR,
    BusinessCode.SERVICE_UNAVAILABLE: http_status.HTTP_503_SERVICE_UNAVAILABLE,
    BusinessCode.TOO_MANY_REQUESTS: http_status.HTTP_429_TOO_MANY_REQUESTS,
    # 商户配置与签名问题属于服务端故障，不归咎于调用方
    PaymentCode.CONFIGURATION_ERROR: http_status.HTTP_500_INTERNAL_SERVER_ERROR,
    PaymentCode.MERCHANT_NOT_FOUND: http_status.HTTP_404_NOT_FOUND,
    PaymentCode.SIGNATURE_ERROR: http_status.HTTP_500_INTERNAL_SERVER_ERROR,
    PaymentCode.INVALID_KEY: http_status.HTTP_500_INTERNAL_SERVER_ERROR,
    PaymentCode.TRANSPORT_ERROR: http_status.HTTP_502_BAD_GATEWAY,
    PaymentCode.WEBHOOK_AUTH_FAILED: http_status.HTTP_401_UNAUTHORIZED,
}

_CODE_BY_STATUS = {
    401: BusinessCode.UNAUTHORIZED,
    403: BusinessCode.FORBIDDEN,
    404: BusinessCode.NOT_FOUND,
    429: BusinessCode.TOO_MANY_REQUESTS,
    500: BusinessCode.SYSTEM_ERROR,
    503: BusinessCode.SERVICE_UNAVAILABLE,
}


def business_code_to_http_status(code: int) -> int:
    """根据业务码映射HTTP状态码（默认400）。"""
    return _STATUS_BY_CODE.get(int(code), http_status.HTTP_400_BAD_REQUEST)


def public_message(exc: BusinessException) -> str:
    return GENERIC_MESSAGES.get(int(exc.code), exc.message)


def _request_id(request: Request) -> str:
    return getattr(getattr(request, "state", object()), "request_id", None) or str(uuid.uuid4())


def register_exception_handlers(app: FastAPI):
    """
    注册全局异常处理器

    Args:
        app: FastAPI应用实例
    """

    logger = get_logger(__name__)

    @app.exception_handler(BusinessException)
    async def business_exception_handler(request: Request, exc: BusinessException):
        """处理业务异常：配置错误、商户未找到、签名失败、网关不可达等"""
        request_id = _request_id(request)
        status_code = business_code_to_http_status(exc.code)
        log = logger.error if status_code >= 500 else logger.warning
        log(
            "business_exception",
            request_id=request_id,
            code=int(exc.code),
            error_type=exc.error_type,
            message=exc.message,
            details=exc.details,
            path=request.url.path,
        )
        return error_json(
            status_code,
            exc.code,
            public_message(exc),
            exc.error_type,
            details=exc.details if app.debug else None,
            field=exc.field,
            request_id=request_id,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """处理参数验证异常（金额、发票号等请求体字段）"""
        errors = exc.errors()
        first_error = errors[0] if errors else {}
        field = ".".join(str(loc) for loc in first_error.get("loc", [])[1:])

        return error_json(
            http_status.HTTP_422_UNPROCESSABLE_ENTITY,
            BusinessCode.PARAM_VALIDATION_ERROR,
            f"Validation failed: {first_error.get('msg', 'unknown')}",
            "ValidationError",
            details={"errors": [{"loc": list(e.get("loc", [])), "msg": e.get("msg")} for e in errors]},
            field=field,
            request_id=_request_id(request),
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """处理HTTP异常（功能开关关闭、服务未初始化等）"""
        return error_json(
            exc.status_code,
            _CODE_BY_STATUS.get(exc.status_code, BusinessCode.SYSTEM_ERROR),
            str(exc.detail),
            "HTTPError",
            details={"status_code": exc.status_code},
            request_id=_request_id(request),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """处理所有未捕获的异常"""
        request_id = _request_id(request)
        logger.error(
            "unhandled_exception",
            request_id=request_id,
            error_type=type(exc).__name__,
            error=str(exc),
            exc_info=True,
        )

        details = None
        if app.debug:
            details = {
                "exception": str(exc),
                "traceback": traceback.format_exc()
            }
        return error_json(
            http_status.HTTP_500_INTERNAL_SERVER_ERROR,
            BusinessCode.SYSTEM_ERROR,
            "Internal server error",
            "SystemError",
            details=details,
            request_id=request_id,
        )
