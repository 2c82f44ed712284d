"""
认证和授权异常类
"""

import functools
import logging
from contextlib import contextmanager

from pymongo.errors import PyMongoError

from ..database.exceptions import DatabaseError

logger = logging.getLogger(__name__)


class AuthError(Exception):
    """认证和授权基础异常类"""

    status_code = 400

    def __init__(self, message: str, error_code: str = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class AuthenticationError(AuthError):
    """身份认证异常"""

    status_code = 401

    def __init__(self, message: str = "身份认证失败", error_code: str = "AUTH_FAILED"):
        super().__init__(message, error_code)


class AuthorizationError(AuthError):
    """权限授权异常"""

    status_code = 403

    def __init__(self, message: str = "权限不足", error_code: str = "PERMISSION_DENIED"):
        super().__init__(message, error_code)


class InvalidCredentialsError(AuthenticationError):
    """无效凭据异常（不区分用户不存在和密码错误）"""

    def __init__(self, message: str = "用户名或密码错误", error_code: str = "INVALID_CREDENTIALS"):
        super().__init__(message, error_code)


class AccountInactiveError(AuthenticationError):
    """账户被禁用异常"""

    def __init__(self, message: str = "账户已被禁用", error_code: str = "ACCOUNT_INACTIVE"):
        super().__init__(message, error_code)


class InvalidTokenError(AuthenticationError):
    """无效令牌异常"""

    def __init__(self, message: str = "令牌无效", error_code: str = "INVALID_TOKEN"):
        super().__init__(message, error_code)


class TokenExpiredError(InvalidTokenError):
    """令牌过期异常"""

    def __init__(self, message: str = "令牌已过期", error_code: str = "TOKEN_EXPIRED"):
        super().__init__(message, error_code)


class TokenRevokedError(AuthenticationError):
    """令牌已被撤销（黑名单）异常"""

    def __init__(self, message: str = "令牌已失效", error_code: str = "TOKEN_REVOKED"):
        super().__init__(message, error_code)


class TooManyLoginAttemptsError(AuthError):
    """登录失败次数过多，窗口期内拒绝继续尝试"""

    status_code = 429

    def __init__(self, retry_after: int, message: str = "登录尝试过于频繁，请稍后再试",
                 error_code: str = "TOO_MANY_LOGIN_ATTEMPTS"):
        super().__init__(message, error_code)
        self.retry_after = retry_after


class RoleNotFoundError(AuthorizationError):
    """角色不存在异常"""

    def __init__(self, message: str = "角色不存在", error_code: str = "ROLE_NOT_FOUND"):
        super().__init__(message, error_code)


class PermissionDeniedError(AuthorizationError):
    """权限不足异常，携带可读的权限名称"""

    def __init__(self, permission_code: str, permission_label: str = None, error_code: str = "PERMISSION_DENIED"):
        self.permission_code = permission_code
        self.permission_label = permission_label or permission_code
        super().__init__(f"缺少权限: {self.permission_label}", error_code)


class NotFoundError(AuthError):
    """资源不存在异常"""

    status_code = 404

    def __init__(self, message: str = "资源不存在", error_code: str = "NOT_FOUND"):
        super().__init__(message, error_code)


class ConflictError(AuthError):
    """唯一性冲突异常"""

    status_code = 409

    def __init__(self, message: str = "资源已存在", error_code: str = "CONFLICT"):
        super().__init__(message, error_code)


class AuthorizationUnavailableError(AuthError):
    """认证依赖的存储不可用"""

    status_code = 503

    def __init__(self, message: str = "认证服务暂不可用", error_code: str = "AUTH_UNAVAILABLE"):
        super().__init__(message, error_code)


@contextmanager
def translate_store_errors(operation: str):
    """
    将存储层异常转换为AuthorizationUnavailableError

    Args:
        operation: 操作名称，用于日志
    """
    try:
        yield
    except (DatabaseError, PyMongoError) as e:
        logger.error("存储访问失败", extra={
            'event': 'auth_store_unavailable',
            'operation': operation,
            'error_type': type(e).__name__,
            'error': str(e)
        })
        raise AuthorizationUnavailableError() from e


def store_operation(operation: str):
    """
    异步方法装饰器，方法内的存储异常按 translate_store_errors 转换

    Args:
        operation: 操作名称，用于日志
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            with translate_store_errors(operation):
                return await func(*args, **kwargs)
        return wrapper

    return decorator
