"""
认证中间件
为FastAPI应用提供Bearer令牌认证、权限依赖和API密钥认证

认证器、鉴权器等组件由服务启动时挂到 app.state 上，这里按请求读取。
"""

from typing import Callable, List, Optional

from fastapi import FastAPI, Request, status
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

from .authenticator import Authenticator
from .models import User, Role
from .exceptions import AuthError, AuthenticationError, AuthorizationError, TooManyLoginAttemptsError
from ..logging import get_logger, LogContext

logger = get_logger(__name__)

DEFAULT_PUBLIC_PATHS = [
    '/docs',
    '/redoc',
    '/openapi.json',
    '/health',
    '/api/auth/login',
    '/api/auth/refresh',
    '/favicon.ico'
]


def auth_error_response(error: AuthError) -> JSONResponse:
    """将认证异常转换为JSON响应"""
    headers = None
    if error.status_code == status.HTTP_401_UNAUTHORIZED:
        headers = {"WWW-Authenticate": "Bearer"}
    elif isinstance(error, TooManyLoginAttemptsError):
        headers = {"Retry-After": str(error.retry_after)}
    return JSONResponse(
        status_code=error.status_code,
        content={
            "error": (error.error_code or "auth_error").lower(),
            "message": error.message,
            "request_id": LogContext.get_request_id()
        },
        headers=headers
    )


def register_exception_handlers(app: FastAPI) -> None:
    """注册AuthError异常处理器"""

    @app.exception_handler(AuthError)
    async def handle_auth_error(request: Request, exc: AuthError):
        return auth_error_response(exc)


class AuthMiddleware(BaseHTTPMiddleware):
    """认证中间件"""

    def __init__(
        self,
        app,
        authenticator: Authenticator = None,
        excluded_paths: List[str] = None
    ):
        """
        初始化认证中间件

        Args:
            app: ASGI应用
            authenticator: 认证器，为None时从 app.state.authenticator 读取
            excluded_paths: 不需要认证的路径前缀
        """
        super().__init__(app)
        self.authenticator = authenticator
        self.excluded_paths = excluded_paths if excluded_paths is not None else list(DEFAULT_PUBLIC_PATHS)

    def _is_public_path(self, path: str) -> bool:
        return any(path == p or path.startswith(p.rstrip('/') + '/') for p in self.excluded_paths)

    def _get_authenticator(self, request: Request) -> Authenticator:
        return self.authenticator or request.app.state.authenticator

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path

        if request.method == "OPTIONS" or self._is_public_path(path):
            return await call_next(request)

        try:
            user = await self._get_authenticator(request).authenticate(request.headers.get("Authorization"))
        except AuthError as e:
            logger.warning("请求认证失败", extra={
                'event': 'authentication_failed',
                'error_code': e.error_code,
                'path': path,
                'method': request.method
            })
            return auth_error_response(e)

        request.state.current_user = user
        LogContext.set_user_id(user.id)

        logger.debug("请求通过认证", extra={
            'event': 'request_authenticated',
            'user_id': user.id,
            'path': path,
            'method': request.method
        })
        return await call_next(request)


# FastAPI依赖函数
def get_current_user(request: Request) -> User:
    """
    FastAPI依赖函数：获取当前认证用户

    Raises:
        AuthenticationError: 用户未认证
    """
    user = getattr(request.state, 'current_user', None)
    if not user:
        raise AuthenticationError("用户未认证", "NOT_AUTHENTICATED")
    return user


def require_permission(permission_code: str):
    """
    权限检查依赖工厂

    每次请求都通过 app.state.rbac 实时解析角色权限，
    鉴权异常交给 register_exception_handlers 注册的处理器输出。
    """

    async def check_permission(request: Request) -> User:
        user = get_current_user(request)
        await request.app.state.rbac.authorize(user, permission_code)
        return user

    return check_permission


def require_roles(*roles: str):
    """角色检查依赖工厂（角色编码不区分大小写）"""

    def check_roles(request: Request) -> User:
        user = get_current_user(request)
        if not request.app.state.rbac.has_role(user, *roles):
            raise AuthorizationError(f"缺少角色权限，需要其中之一: {', '.join(roles)}", "ROLE_REQUIRED")
        return user

    return check_roles


class ApiKeyAuth:
    """API密钥认证依赖，返回密钥所属角色"""

    def __init__(self, key_header: str = "X-API-Key", secret_header: str = "X-API-Secret"):
        self.key_header = key_header
        self.secret_header = secret_header

    async def __call__(self, request: Request) -> Role:
        key: Optional[str] = request.headers.get(self.key_header)
        secret: Optional[str] = request.headers.get(self.secret_header)
        try:
            role = await request.app.state.api_key_manager.verify_api_key(key, secret)
        except AuthError as e:
            logger.warning("API密钥认证失败", extra={
                'event': 'api_key_auth_failed',
                'error_code': e.error_code,
                'path': request.url.path
            })
            raise
        request.state.api_role = role
        return role
