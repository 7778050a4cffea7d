"""
Structlog 日志配置模块

所有日志（structlog 与标准库）走同一处理链：上下文变量 → 服务标识 → 敏感字段脱敏 → 渲染。
脱敏在处理链末端统一兜底，即使调用方直接传入凭证字段也不会落盘。
"""
import logging
import json
import structlog
from structlog.processors import TimeStamper, add_log_level, JSONRenderer
from structlog.dev import ConsoleRenderer
from structlog.contextvars import merge_contextvars
from structlog.stdlib import ProcessorFormatter
from structlog.typing import EventDict, WrappedLogger
from typing import Any, List

from core.config import settings
from core.settings import telebirr_settings
from shared.redaction import redact


# 处理链自身写入的字段，不参与脱敏
_RESERVED_KEYS = frozenset({"event", "level", "timestamp", "logger", "service", "environment", "request_id"})


def add_service_context(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """附加服务名与环境，便于多实例日志聚合检索。"""
    event_dict.setdefault("service", settings.PROJECT_NAME)
    event_dict.setdefault("environment", settings.ENVIRONMENT)
    return event_dict


def redact_sensitive_fields(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """屏蔽密钥、令牌、签名等字段；telebirr logging.sensitive_data 开启时跳过（仅限排障）。"""
    if telebirr_settings.logging.sensitive_data:
        return event_dict
    payload = {k: v for k, v in event_dict.items() if k not in _RESERVED_KEYS}
    event_dict.update(redact(payload))
    return event_dict


def get_renderer() -> Any:
    """根据环境选择渲染器 (Console in DEBUG, JSON otherwise)."""
    if settings.DEBUG:
        return ConsoleRenderer(colors=True)

    def _dumps(obj, default=None, **kwargs):
        return json.dumps(obj, ensure_ascii=False, default=default or str, **kwargs)
    return JSONRenderer(serializer=_dumps)


def configure_logging() -> None:
    """配置 structlog 并桥接标准库 logging 到同一处理链。"""
    shared_pre_chain: List[Any] = [
        merge_contextvars,
        add_log_level,
        TimeStamper(fmt="iso", utc=True),
        add_service_context,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        redact_sensitive_fields,
    ]

    structlog.configure(
        processors=[
            *shared_pre_chain,
            ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = ProcessorFormatter(
        foreign_pre_chain=shared_pre_chain,
        processors=[
            ProcessorFormatter.remove_processors_meta,
            get_renderer(),
        ],
    )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    level = settings.LOG_LEVEL or ("DEBUG" if settings.DEBUG else "INFO")
    root.setLevel(level.upper())
    # httpx 每次请求都会打 INFO，网关调用日志由客户端自行记录
    logging.getLogger("httpx").setLevel(logging.WARNING)
    # Celery worker 自带日志配置，保持与 API 一致的渲染
    logging.getLogger("celery").setLevel(level.upper())


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    """获取 structlog logger 实例。"""
    return structlog.get_logger(name)
