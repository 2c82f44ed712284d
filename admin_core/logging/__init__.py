"""
日志记录包
JSON结构化日志、请求上下文和HTTP请求日志中间件
"""

from .config import setup_logging, get_logger, get_logging_config, AdminJsonFormatter, AUDIT_LOGGER
from .context import LogContext
from .middleware import FastAPILoggingMiddleware

__all__ = [
    'setup_logging',
    'get_logger',
    'get_logging_config',
    'AdminJsonFormatter',
    'AUDIT_LOGGER',
    'LogContext',
    'FastAPILoggingMiddleware'
]
