"""
结构化日志配置模块

功能:
- 使用 structlog 实现结构化日志
- JSON 格式输出（生产环境）
- 彩色控制台输出（开发环境）
- 自动添加 timestamp、level、logger name
- 敏感信息脱敏：分享 token 拿到即可访问 Build，按密码处理
- run_id 追踪：同一次调用 / 同一次清理任务的日志可以串起来
"""

import logging
import sys
import uuid
from contextvars import ContextVar
from typing import Optional

import structlog
from structlog.types import EventDict, Processor

from hangar.core.config import get_settings

# 当前运行 ID（清理任务、批处理调用）
run_id_var: ContextVar[Optional[str]] = ContextVar("run_id", default=None)


# 敏感字段列表（将被脱敏）
SENSITIVE_FIELDS = {
    # 临时 / 分享链接
    "token",
    "next_token",
    "share_token",
    "share_url",
    "url",
    # 凭证
    "password",
    "secret",
    "api_key",
    "aws_secret_access_key",
    "aws_session_token",
    # 数据库
    "database_url",
    "db_password",
    "connection_string",
}


def mask_sensitive_data(
    logger: logging.Logger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """脱敏敏感数据的处理器"""
    for key in list(event_dict.keys()):
        if key.lower() not in SENSITIVE_FIELDS:
            continue
        value = event_dict[key]
        if isinstance(value, str) and len(value) > 8:
            # 保留前4位和后4位
            event_dict[key] = f"{value[:4]}****{value[-4:]}"
        else:
            event_dict[key] = "****"
    return event_dict


def add_run_id(
    logger: logging.Logger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    run_id = run_id_var.get()
    if run_id and "run_id" not in event_dict:
        event_dict["run_id"] = run_id
    return event_dict


def setup_logging() -> None:
    """配置结构化日志"""
    settings = get_settings()
    is_development = settings.ENVIRONMENT == "development"

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        add_run_id,
        mask_sensitive_data,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if is_development:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    else:
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    # 渲染由 structlog 完成
    handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(handler)

    # SQL 语句日志只在排查时打开
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("boto3").setLevel(logging.WARNING)


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    """获取 structlog logger"""
    return structlog.get_logger(name)


def start_run(run_id: Optional[str] = None) -> str:
    """开始一次运行并返回 run_id（不传则生成）"""
    run_id = run_id or uuid.uuid4().hex[:12]
    run_id_var.set(run_id)
    return run_id


def get_run_id() -> Optional[str]:
    return run_id_var.get()


def end_run() -> None:
    run_id_var.set(None)
