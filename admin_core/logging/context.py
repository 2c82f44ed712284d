"""
日志上下文管理模块
提供请求跟踪和上下文传递功能
"""

import uuid
from typing import Dict, Any, Optional
from contextvars import ContextVar


request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar('user_id', default=None)


class LogContext:
    """
    日志上下文管理器
    用于在请求生命周期内传递上下文信息
    """

    def __init__(self, request_id: str = None, user_id: str = None):
        self.request_id = request_id or str(uuid.uuid4())
        self.user_id = user_id
        self._tokens = []

    def __enter__(self):
        self._tokens.append(request_id_var.set(self.request_id))
        if self.user_id:
            self._tokens.append(user_id_var.set(self.user_id))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        # 按相反顺序恢复
        for token in reversed(self._tokens):
            token.var.reset(token)
        self._tokens.clear()

    @staticmethod
    def get_context() -> Dict[str, Any]:
        """获取当前上下文信息"""
        context = {}

        request_id = request_id_var.get()
        if request_id:
            context['request_id'] = request_id

        user_id = user_id_var.get()
        if user_id:
            context['user_id'] = user_id

        return context

    @staticmethod
    def set_request_id(request_id: str):
        """设置请求ID"""
        request_id_var.set(request_id)

    @staticmethod
    def get_request_id() -> Optional[str]:
        """获取请求ID"""
        return request_id_var.get()

    @staticmethod
    def set_user_id(user_id: str):
        """设置用户ID"""
        user_id_var.set(user_id)

    @staticmethod
    def get_user_id() -> Optional[str]:
        """获取用户ID"""
        return user_id_var.get()
