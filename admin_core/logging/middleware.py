"""
日志中间件模块
为FastAPI提供请求日志和请求ID
"""

import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from .config import get_logger
from .context import LogContext


class FastAPILoggingMiddleware(BaseHTTPMiddleware):
    """
    FastAPI日志中间件
    自动记录HTTP请求和响应信息
    """

    def __init__(self, app, logger_name: str = "admin_core.http"):
        super().__init__(app)
        self.logger = get_logger(logger_name)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get('X-Request-ID') or str(uuid.uuid4())
        start_time = time.time()

        with LogContext(request_id=request_id):
            self.logger.debug("HTTP request started", extra={
                'event': 'http_request_started',
                'method': request.method,
                'path': request.url.path,
                'client_ip': request.client.host if request.client else None,
                'user_agent': request.headers.get('user-agent')
            })

            try:
                response = await call_next(request)
            except Exception as e:
                self.logger.error("HTTP request failed", extra={
                    'event': 'http_request_failed',
                    'method': request.method,
                    'path': request.url.path,
                    'duration_seconds': round(time.time() - start_time, 4),
                    'error_type': type(e).__name__
                }, exc_info=True)
                raise

            self.logger.info("HTTP request completed", extra={
                'event': 'http_request_completed',
                'method': request.method,
                'path': request.url.path,
                'status_code': response.status_code,
                'duration_seconds': round(time.time() - start_time, 4)
            })

            response.headers['X-Request-ID'] = request_id
            return response
