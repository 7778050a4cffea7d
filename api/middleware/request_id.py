"""
Request ID 中间件
生成或透传追踪ID与客户端IP，并通过contextvars传递给日志系统
"""
import uuid
from contextvars import ContextVar
from typing import Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

import structlog


# 请求生命周期内共享的上下文变量
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
client_ip_var: ContextVar[Optional[str]] = ContextVar("client_ip", default=None)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Request ID 追踪中间件

    功能：
    1. 从请求头获取或生成新的request_id，并在响应头中返回
    2. 解析客户端IP（回调IP白名单依赖此值）
    3. 绑定到structlog上下文，后续日志自动携带
    """

    HEADER_NAME = "X-Request-ID"

    def __init__(self, app: ASGIApp, trust_forwarded_for: bool = False):
        super().__init__(app)
        # 仅在部署于可信反向代理之后时才信任转发头，否则IP可被伪造
        self.trust_forwarded_for = trust_forwarded_for

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(self.HEADER_NAME) or str(uuid.uuid4())
        client_ip = self._get_client_ip(request)

        request.state.request_id = request_id
        request.state.client_ip = client_ip
        request_id_var.set(request_id)
        client_ip_var.set(client_ip)

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            client_ip=client_ip,
            method=request.method,
            path=request.url.path,
        )

        response = await call_next(request)
        response.headers[self.HEADER_NAME] = request_id
        return response

    def _get_client_ip(self, request: Request) -> Optional[str]:
        if self.trust_forwarded_for:
            x_forwarded_for = request.headers.get("X-Forwarded-For")
            if x_forwarded_for:
                # 取第一个IP（原始客户端IP）
                return x_forwarded_for.split(",")[0].strip()
            x_real_ip = request.headers.get("X-Real-IP")
            if x_real_ip:
                return x_real_ip.strip()
        return request.client.host if request.client else None


def get_request_id() -> Optional[str]:
    """获取当前请求的request_id，不在请求上下文中时返回None"""
    return request_id_var.get()


def get_client_ip() -> Optional[str]:
    """获取当前请求的客户端IP，不在请求上下文中时返回None"""
    return client_ip_var.get()
