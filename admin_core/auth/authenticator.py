"""
认证器
组合凭据校验、令牌签发和会话存储，完成登录、刷新、登出以及请求令牌认证
"""

import asyncio
import logging
from typing import List, Optional

from ..database.exceptions import CacheUnavailableError
from .audit import AuditEmitter, AuditEvent, STATUS_SUCCESS, STATUS_FAILED
from .exceptions import (
    AuthError, InvalidCredentialsError, AccountInactiveError, InvalidTokenError,
    TokenRevokedError, TooManyLoginAttemptsError, AuthorizationUnavailableError, translate_store_errors
)
from .jwt_auth import JWTAuthenticator, ACCESS_TOKEN, REFRESH_TOKEN
from .models import User, SessionData, LoginResult
from .password_manager import PasswordManager
from .session_store import SessionStore, DEFAULT_SESSION_TTL, DEFAULT_REFRESH_TTL
from .user_manager import UserManager

logger = logging.getLogger(__name__)


class Authenticator:
    """认证器"""

    def __init__(
        self,
        user_manager: UserManager,
        token_issuer: JWTAuthenticator,
        session_store: SessionStore,
        password_manager: PasswordManager = None,
        audit: AuditEmitter = None,
        session_ttl: int = DEFAULT_SESSION_TTL,
        refresh_ttl: int = DEFAULT_REFRESH_TTL,
        default_blacklist_ttl: int = 3600,
        revocation_fail_open: bool = False,
        max_login_attempts: int = 10,
        login_window: int = 60
    ):
        """
        初始化认证器

        Args:
            user_manager: 用户管理器
            token_issuer: JWT签发器
            session_store: 会话与撤销存储
            password_manager: 密码管理器
            audit: 审计事件发射器
            session_ttl: 会话存活时间（秒），与访问令牌有效期一致
            refresh_ttl: 刷新令牌存活时间（秒）
            default_blacklist_ttl: 令牌没有exp声明时的黑名单存活时间（秒）
            revocation_fail_open: 黑名单检查时缓存不可用是否放行
            max_login_attempts: 窗口期内允许的登录失败次数，0表示不限制
            login_window: 登录失败计数窗口（秒）
        """
        self.user_manager = user_manager
        self.token_issuer = token_issuer
        self.session_store = session_store
        self.password_manager = password_manager or user_manager.password_manager
        self.audit = audit
        self.session_ttl = session_ttl
        self.refresh_ttl = refresh_ttl
        self.default_blacklist_ttl = default_blacklist_ttl
        self.revocation_fail_open = revocation_fail_open
        self.max_login_attempts = max_login_attempts
        self.login_window = login_window

    def _emit(self, action: str, status: str, user: Optional[User] = None,
              username: str = None, error: AuthError = None) -> None:
        if self.audit is None:
            return
        self.audit.emit(AuditEvent(
            action=action,
            status=status,
            user_id=user.id if user else None,
            username=user.username if user else username,
            error_message=error.message if error else None
        ))

    @staticmethod
    def _login_scopes(identifier: str, client_ip: Optional[str]) -> List[str]:
        scopes = [f"user:{(identifier or '').strip().lower()}"]
        if client_ip:
            scopes.append(f"ip:{client_ip}")
        return scopes

    async def _ensure_login_allowed(self, identifier: str, scopes: List[str]) -> None:
        """任一维度（账号或来源IP）失败次数达到上限时拒绝登录"""
        if not self.max_login_attempts:
            return

        for scope in scopes:
            if await self.session_store.get_login_failures(scope) < self.max_login_attempts:
                continue

            retry_after = await self.session_store.login_failures_ttl(scope)
            error = TooManyLoginAttemptsError(retry_after if retry_after > 0 else self.login_window)
            logger.warning("登录失败次数过多", extra={
                'event': 'login_throttled',
                'scope': scope,
                'retry_after': error.retry_after
            })
            self._emit('login', STATUS_FAILED, username=identifier, error=error)
            raise error

    async def _record_login_failure(self, scopes: List[str]) -> None:
        if not self.max_login_attempts:
            return
        with translate_store_errors('login'):
            for scope in scopes:
                await self.session_store.record_login_failure(scope, self.login_window)

    async def login(self, identifier: str, password: str, client_ip: Optional[str] = None) -> LoginResult:
        """
        用户登录

        Args:
            identifier: 用户名或邮箱
            password: 密码
            client_ip: 请求来源IP，用于按来源统计失败次数

        Returns:
            登录结果（用户摘要和令牌）

        Raises:
            InvalidCredentialsError: 用户不存在或密码错误（提示相同）
            AccountInactiveError: 账户被禁用
            TooManyLoginAttemptsError: 窗口期内失败次数过多
        """
        scopes = self._login_scopes(identifier, client_ip)

        with translate_store_errors('login'):
            await self._ensure_login_allowed(identifier, scopes)
            user = await self.user_manager.find_by_identifier(identifier)

        if user is None:
            error = InvalidCredentialsError()
            await self._record_login_failure(scopes)
            self._emit('login', STATUS_FAILED, username=identifier, error=error)
            raise error

        if not user.is_active:
            error = AccountInactiveError()
            self._emit('login', STATUS_FAILED, user=user, error=error)
            raise error

        # bcrypt校验耗时较长，放到线程中执行
        verified = await asyncio.to_thread(self.password_manager.verify_password, password, user.password_hash)
        if not verified:
            error = InvalidCredentialsError()
            await self._record_login_failure(scopes)
            self._emit('login', STATUS_FAILED, username=identifier, error=error)
            raise error

        tokens = self.token_issuer.create_token_pair(user)

        with translate_store_errors('login'):
            if self.max_login_attempts:
                await self.session_store.clear_login_failures(scopes[0])
            await self.user_manager.update_last_login(user)
            # 覆盖该用户之前的会话和刷新令牌
            await self.session_store.set_user_session(
                SessionData(user_id=user.id, username=user.username, role=str(user.role)),
                ttl=self.session_ttl
            )
            await self.session_store.set_refresh_token(user.id, tokens.refresh_token, ttl=self.refresh_ttl)

        logger.info("用户登录成功", extra={
            'event': 'login_success',
            'user_id': user.id,
            'username': user.username
        })
        self._emit('login', STATUS_SUCCESS, user=user)

        return LoginResult(
            user=user.summary(),
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            token_type=tokens.token_type
        )

    async def refresh_access_token(self, refresh_token: str) -> str:
        """
        使用刷新令牌换取新的访问令牌（刷新令牌本身不轮换）

        Raises:
            InvalidTokenError: 令牌无效、过期或不是该用户当前的刷新令牌
            AccountInactiveError: 用户不存在或已禁用
        """
        payload = self.token_issuer.verify_token(refresh_token, expected_type=REFRESH_TOKEN)
        user_id = payload['user_id']

        with translate_store_errors('refresh_token'):
            user = await self.user_manager.get_user_by_id(user_id)
            if user is None or not user.is_active:
                error = AccountInactiveError("用户不存在或已被禁用")
                self._emit('refresh_token', STATUS_FAILED, username=payload.get('username'), error=error)
                raise error

            stored_token = await self.session_store.get_refresh_token(user_id)

        if stored_token != refresh_token:
            error = InvalidTokenError("刷新令牌已失效")
            self._emit('refresh_token', STATUS_FAILED, user=user, error=error)
            raise error

        access_token = self.token_issuer.create_access_token(user)
        self._emit('refresh_token', STATUS_SUCCESS, user=user)
        return access_token

    async def validate_access_token(self, token: str) -> User:
        """
        校验访问令牌并加载当前用户（不检查黑名单）

        Raises:
            InvalidTokenError: 令牌无效或过期
            AccountInactiveError: 用户不存在或已禁用
        """
        payload = self.token_issuer.verify_token(token, expected_type=ACCESS_TOKEN)

        with translate_store_errors('validate_token'):
            user = await self.user_manager.get_user_by_id(payload['user_id'])

        if user is None or not user.is_active:
            raise AccountInactiveError("用户不存在或已被禁用")
        return user

    async def ensure_not_revoked(self, token: str) -> None:
        """
        检查令牌黑名单

        Raises:
            TokenRevokedError: 令牌已被撤销
            AuthorizationUnavailableError: 缓存不可用且未开启降级放行
        """
        try:
            revoked = await self.session_store.is_token_blacklisted(token)
        except CacheUnavailableError as e:
            if self.revocation_fail_open:
                logger.warning("黑名单检查不可用，降级放行", extra={
                    'event': 'revocation_check_skipped',
                    'error': str(e)
                })
                return
            logger.error("黑名单检查不可用，拒绝请求", extra={
                'event': 'revocation_check_failed',
                'error': str(e)
            })
            raise AuthorizationUnavailableError() from e

        if revoked:
            raise TokenRevokedError()

    async def authenticate(self, authorization_header: Optional[str]) -> User:
        """
        认证请求携带的Bearer令牌

        Returns:
            当前用户

        Raises:
            InvalidTokenError / TokenExpiredError / TokenRevokedError / AccountInactiveError
        """
        token = self.token_issuer.extract_bearer_token(authorization_header)
        user = await self.validate_access_token(token)
        await self.ensure_not_revoked(token)
        return user

    async def _blacklist(self, access_token: str) -> None:
        try:
            remaining = self.token_issuer.remaining_lifetime(access_token)
        except InvalidTokenError as e:
            logger.warning("登出时令牌签名无效，跳过黑名单", extra={
                'event': 'logout_invalid_token',
                'error': e.message
            })
            return

        if remaining is None:
            remaining = self.default_blacklist_ttl
        elif remaining <= 0:
            return

        await self.session_store.add_to_blacklist(access_token, remaining)

    async def logout(self, user_id: str, access_token: Optional[str] = None) -> None:
        """
        用户登出

        删除会话和刷新令牌；提供访问令牌时将其加入黑名单，存活时间为令牌剩余有效期。
        """
        with translate_store_errors('logout'):
            await self.session_store.delete_user_session(user_id)
            await self.session_store.delete_refresh_token(user_id)

            if access_token:
                await self._blacklist(access_token)
                await self.session_store.cleanup_token_artifacts(access_token)

        logger.info("用户已登出", extra={'event': 'logout', 'user_id': user_id})
        if self.audit is not None:
            self.audit.emit(AuditEvent(action='logout', user_id=user_id))
