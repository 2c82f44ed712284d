"""
身份认证和访问控制系统
提供JWT认证、会话与令牌撤销、RBAC鉴权、菜单/权限树和API密钥管理
"""

from .jwt_auth import JWTAuthenticator, TokenPair
from .password_manager import PasswordManager
from .session_store import SessionStore
from .user_manager import UserManager
from .roles import RoleManager
from .permissions import PermissionManager
from .menus import MenuManager
from .rbac import RBACAuthorizer
from .api_keys import ApiKeyManager
from .audit import AuditEmitter, AuditEvent, LoggingAuditSink, MongoAuditSink
from .authenticator import Authenticator
from .tree_builder import build_menu_tree, build_role_scoped_menu_tree, build_permission_tree
from .middleware import (
    AuthMiddleware, ApiKeyAuth, get_current_user, require_permission, require_roles,
    register_exception_handlers
)
from .models import User, Role, Permission, Menu, RoleCode, LoginResult
from .exceptions import (
    AuthError, AuthenticationError, AuthorizationError, InvalidCredentialsError,
    AccountInactiveError, InvalidTokenError, TokenExpiredError, TokenRevokedError,
    RoleNotFoundError, PermissionDeniedError, NotFoundError, ConflictError,
    TooManyLoginAttemptsError, AuthorizationUnavailableError
)

__all__ = [
    'JWTAuthenticator',
    'TokenPair',
    'PasswordManager',
    'SessionStore',
    'UserManager',
    'RoleManager',
    'PermissionManager',
    'MenuManager',
    'RBACAuthorizer',
    'ApiKeyManager',
    'AuditEmitter',
    'AuditEvent',
    'LoggingAuditSink',
    'MongoAuditSink',
    'Authenticator',
    'build_menu_tree',
    'build_role_scoped_menu_tree',
    'build_permission_tree',
    'AuthMiddleware',
    'ApiKeyAuth',
    'get_current_user',
    'require_permission',
    'require_roles',
    'register_exception_handlers',
    'User',
    'Role',
    'Permission',
    'Menu',
    'RoleCode',
    'LoginResult',
    'AuthError',
    'AuthenticationError',
    'AuthorizationError',
    'InvalidCredentialsError',
    'AccountInactiveError',
    'InvalidTokenError',
    'TokenExpiredError',
    'TokenRevokedError',
    'TooManyLoginAttemptsError',
    'RoleNotFoundError',
    'PermissionDeniedError',
    'NotFoundError',
    'ConflictError',
    'AuthorizationUnavailableError'
]
