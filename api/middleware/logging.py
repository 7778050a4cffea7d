"""
请求/响应日志中间件
记录所有HTTP请求和响应，包括耗时统计；不记录请求体（回调与下单报文含商户数据）
"""
import time

from typing import Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from core.logging_config import get_logger
from shared.redaction import redact


logger = get_logger(__name__)


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    日志记录中间件

    功能：
    1. 记录请求信息（方法、路径、查询参数，敏感字段脱敏）
    2. 记录响应状态码与耗时
    3. 记录异常信息后交由异常处理器处理
    """

    # 跳过日志的路径
    SKIP_PATHS = {"/health", "/docs", "/redoc", "/openapi.json"}
    # 网关回调路径：额外记录签名头是否存在（不记录值）
    WEBHOOK_SUFFIX = "/webhook"
    SIGNATURE_HEADERS = ("X-Signature", "X-Telebirr-Signature")

    def __init__(self, app, webhook_path: Optional[str] = None):
        super().__init__(app)
        self.webhook_path = webhook_path

    def _is_webhook(self, path: str) -> bool:
        if self.webhook_path:
            return path == self.webhook_path
        return path.endswith(self.WEBHOOK_SUFFIX)

    async def dispatch(self, request: Request, call_next):
        # 检查是否需要跳过日志
        if request.url.path in self.SKIP_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()
        request_info = {
            "method": request.method,
            "path": request.url.path,
            "query_params": redact(dict(request.query_params)),
        }
        user_agent = request.headers.get("User-Agent")
        if user_agent:
            request_info["user_agent"] = user_agent
        if self._is_webhook(request.url.path):
            request_info["webhook"] = True
            request_info["has_signature"] = any(request.headers.get(h) for h in self.SIGNATURE_HEADERS)
            request_info["content_length"] = request.headers.get("Content-Length")

        logger.info("request_started", **request_info)

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "request_failed",
                duration=time.perf_counter() - start_time,
                error=str(exc),
                error_type=type(exc).__name__,
                **request_info,
                exc_info=True
            )
            # 重新抛出异常，让异常处理器处理
            raise

        duration = time.perf_counter() - start_time
        self._log_response(response, duration, request_info)
        response.headers["X-Process-Time"] = f"{duration:.3f}"
        return response

    def _log_response(self, response: Response, duration: float, request_info: dict):
        """根据状态码选择日志级别"""
        status_code = response.status_code
        log_data = {"status_code": status_code, "duration": duration, **request_info}

        if status_code < 400:
            logger.info("request_completed", **log_data)
        elif status_code < 500:
            logger.warning("request_client_error", **log_data)
        else:
            logger.error("request_server_error", **log_data)
