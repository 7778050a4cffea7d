"""
API依赖项 - 从应用状态获取已装配的组件

组件在 main.lifespan 中按配置装配一次，路由通过依赖注入取用，不在请求内构建。
"""
from fastapi import HTTPException, Request, status

from application.services.payment_service import PaymentService
from core.settings import TelebirrSettings


def get_telebirr_settings(request: Request) -> TelebirrSettings:
    return request.app.state.telebirr_settings


def get_payment_service(request: Request) -> PaymentService:
    service = getattr(request.app.state, "payment_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payment service not initialized",
        )
    return service


def require_auth_feature(request: Request) -> None:
    """auth 端点仅在 features.auth 开启时可用"""
    if not get_telebirr_settings(request).features.auth:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")
