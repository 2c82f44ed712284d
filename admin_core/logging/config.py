"""
日志配置
JSON格式文件日志、控制台日志以及审计日志记录器
"""

import os
import sys
import socket
import logging
import logging.config
from typing import Dict, Any, Optional
from datetime import datetime, timezone

from pythonjsonlogger.json import JsonFormatter

from ..config.settings import LogSettings
from .context import LogContext

AUDIT_LOGGER = "admin_core.audit"

# 第三方库日志级别
LIBRARY_LEVELS = {
    'pymongo': 'WARNING',
    'redis': 'WARNING',
    'uvicorn.access': 'WARNING',
}


class AdminJsonFormatter(JsonFormatter):
    """JSON格式化器，附加服务标识、调用位置和请求上下文"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]):
        super().add_fields(log_record, record, message_dict)

        log_record['timestamp'] = datetime.now(timezone.utc).isoformat()
        log_record['service'] = os.getenv('SERVICE_NAME', 'admin_api')
        log_record['hostname'] = socket.gethostname()
        log_record['level'] = record.levelname
        log_record['logger'] = record.name
        log_record['location'] = f"{record.module}:{record.funcName}:{record.lineno}"

        # request_id / user_id
        for key, value in LogContext.get_context().items():
            log_record.setdefault(key, value)

        if record.exc_info:
            log_record['exception'] = self.formatException(record.exc_info)


def get_logging_config(
    service_name: str,
    log: Optional[LogSettings] = None,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5
) -> Dict[str, Any]:
    """
    生成dictConfig配置

    控制台输出可读文本；启用文件日志时以JSON写入轮转文件，
    未指定文件路径则写入 LOG_DIR/<service_name>.log。
    审计记录器始终为INFO级别，不受LOG_LEVEL影响。
    """
    log = log or LogSettings()
    level = log.level.upper()

    handlers: Dict[str, Any] = {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'console',
            'stream': 'ext://sys.stdout'
        }
    }

    if log.enable_file:
        log_file = log.file
        if log_file is None:
            log_dir = os.getenv('LOG_DIR', 'logs')
            os.makedirs(log_dir, exist_ok=True)
            log_file = os.path.join(log_dir, f"{service_name}.log")

        handlers['file'] = {
            'class': 'logging.handlers.RotatingFileHandler',
            'formatter': 'json',
            'filename': log_file,
            'maxBytes': max_bytes,
            'backupCount': backup_count,
            'encoding': 'utf8'
        }

    loggers = {name: {'level': lib_level} for name, lib_level in LIBRARY_LEVELS.items()}
    loggers[AUDIT_LOGGER] = {'level': 'INFO'}

    return {
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'json': {
                '()': AdminJsonFormatter,
                'format': '%(timestamp)s %(level)s %(name)s %(message)s'
            },
            'console': {
                'format': '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
            }
        },
        'handlers': handlers,
        'root': {
            'level': level,
            'handlers': list(handlers)
        },
        'loggers': loggers
    }


def setup_logging(service_name: str, log: Optional[LogSettings] = None) -> logging.Logger:
    """应用日志配置并返回服务logger"""
    os.environ['SERVICE_NAME'] = service_name
    config = get_logging_config(service_name, log)
    logging.config.dictConfig(config)

    logger = logging.getLogger(service_name)
    logger.info(
        "日志系统初始化完成",
        extra={'event': 'logging_initialized', 'handlers': config['root']['handlers']}
    )
    return logger


def get_logger(name: str = None) -> logging.Logger:
    """获取logger，未指定名称时使用调用方模块名"""
    if name is None:
        name = sys._getframe(1).f_globals.get('__name__', 'unknown')
    return logging.getLogger(name)
