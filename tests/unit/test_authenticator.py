"""
认证器单元测试
登录、刷新、登出、黑名单以及存储不可用时的行为
"""

import threading
from datetime import timedelta

import jwt
import pytest

from admin_core.auth import (
    Authenticator, InvalidCredentialsError, AccountInactiveError, InvalidTokenError,
    TokenRevokedError, TooManyLoginAttemptsError, AuthorizationUnavailableError
)
from admin_core.auth.session_store import SESSION_KEY, REFRESH_TOKEN_KEY, BLACKLIST_KEY


@pytest.mark.asyncio
class TestLogin:
    """登录测试"""

    async def test_login_success(self, authenticator, user_manager, session_store, drain_audit):
        user = await user_manager.create_user("alice", "alice@example.com", "secret123", role="ADMIN")

        result = await authenticator.login("alice", "secret123")

        assert result.user['id'] == user.id
        assert result.user['role'] == "ADMIN"
        assert result.token_type == "Bearer"

        session = await session_store.get_user_session(user.id)
        assert session.username == "alice"
        assert session.role == "ADMIN"
        assert await session_store.get_refresh_token(user.id) == result.refresh_token

        reloaded = await user_manager.get_user_by_id(user.id)
        assert reloaded.last_login_at is not None

        events = drain_audit(authenticator.audit)
        assert [(e.action, e.status) for e in events] == [('login', 'success')]

    async def test_login_by_email(self, authenticator, user_manager):
        user = await user_manager.create_user("alice", "alice@example.com", "secret123")

        result = await authenticator.login("alice@example.com", "secret123")
        assert result.user['id'] == user.id

    async def test_login_then_validate_resolves_same_principal(self, authenticator, user_manager):
        """登录返回的访问令牌可以解析出同一用户"""
        user = await user_manager.create_user("alice", "alice@example.com", "secret123")

        result = await authenticator.login("alice", "secret123")
        principal = await authenticator.validate_access_token(result.access_token)

        assert principal.id == user.id

    async def test_unknown_user_and_wrong_password_are_indistinguishable(self, authenticator, user_manager):
        """用户不存在与密码错误返回相同提示"""
        await user_manager.create_user("alice", "alice@example.com", "secret123")

        with pytest.raises(InvalidCredentialsError) as unknown:
            await authenticator.login("nobody", "secret123")
        with pytest.raises(InvalidCredentialsError) as wrong:
            await authenticator.login("alice", "wrong-password")

        assert unknown.value.message == wrong.value.message
        assert unknown.value.error_code == wrong.value.error_code

    async def test_inactive_account(self, authenticator, user_manager, drain_audit):
        """禁用账户返回单独的提示"""
        user = await user_manager.create_user("alice", "alice@example.com", "secret123")
        await user_manager.set_active(user.id, False)

        with pytest.raises(AccountInactiveError) as exc_info:
            await authenticator.login("alice", "secret123")

        assert exc_info.value.message != InvalidCredentialsError().message
        assert drain_audit(authenticator.audit)[-1].status == 'failed'

    async def test_store_unavailable(self, authenticator, fake_db):
        fake_db.users.fail = True

        with pytest.raises(AuthorizationUnavailableError):
            await authenticator.login("alice", "secret123")

    async def test_cache_unavailable_during_login(self, authenticator, user_manager, fake_redis):
        await user_manager.create_user("alice", "alice@example.com", "secret123")
        fake_redis.fail = True

        with pytest.raises(AuthorizationUnavailableError):
            await authenticator.login("alice", "secret123")

    async def test_password_check_runs_off_event_loop(self, authenticator, user_manager, monkeypatch):
        """bcrypt校验不在事件循环线程中执行"""
        await user_manager.create_user("alice", "alice@example.com", "secret123")
        verify = authenticator.password_manager.verify_password
        threads = []

        def recording_verify(password, hashed_password):
            threads.append(threading.get_ident())
            return verify(password, hashed_password)

        monkeypatch.setattr(authenticator.password_manager, 'verify_password', recording_verify)
        await authenticator.login("alice", "secret123")

        assert threads and threads[0] != threading.get_ident()


@pytest.fixture
def throttled(user_manager, token_issuer, session_store, password_manager):
    return Authenticator(
        user_manager=user_manager,
        token_issuer=token_issuer,
        session_store=session_store,
        password_manager=password_manager,
        max_login_attempts=3,
        login_window=60
    )


@pytest.mark.asyncio
class TestLoginThrottle:
    """登录失败次数限制"""

    async def test_blocks_after_max_failures(self, throttled, user_manager):
        await user_manager.create_user("alice", "alice@example.com", "secret123")
        for _ in range(3):
            with pytest.raises(InvalidCredentialsError):
                await throttled.login("alice", "wrong-password")

        # 窗口期内即使密码正确也拒绝
        with pytest.raises(TooManyLoginAttemptsError) as exc_info:
            await throttled.login("Alice", "secret123")

        assert exc_info.value.status_code == 429
        assert 0 < exc_info.value.retry_after <= 60

    async def test_unknown_users_count_per_ip(self, throttled, user_manager):
        await user_manager.create_user("alice", "alice@example.com", "secret123")
        for name in ("bob", "carol", "dave"):
            with pytest.raises(InvalidCredentialsError):
                await throttled.login(name, "guess", client_ip="10.0.0.1")

        with pytest.raises(TooManyLoginAttemptsError):
            await throttled.login("alice", "secret123", client_ip="10.0.0.1")

        result = await throttled.login("alice", "secret123", client_ip="10.0.0.2")
        assert result.user['username'] == "alice"

    async def test_success_clears_account_counter(self, throttled, user_manager, session_store):
        await user_manager.create_user("alice", "alice@example.com", "secret123")
        for _ in range(2):
            with pytest.raises(InvalidCredentialsError):
                await throttled.login("alice", "wrong-password")

        await throttled.login("alice", "secret123")

        assert await session_store.get_login_failures("user:alice") == 0

    async def test_failure_window_has_ttl(self, throttled, session_store):
        with pytest.raises(InvalidCredentialsError):
            await throttled.login("nobody", "guess")

        assert await session_store.get_login_failures("user:nobody") == 1
        assert 0 < await session_store.login_failures_ttl("user:nobody") <= 60

    async def test_disabled(self, user_manager, token_issuer, session_store, password_manager, fake_redis):
        authenticator = Authenticator(
            user_manager=user_manager,
            token_issuer=token_issuer,
            session_store=session_store,
            password_manager=password_manager,
            max_login_attempts=0
        )
        for _ in range(5):
            with pytest.raises(InvalidCredentialsError):
                await authenticator.login("nobody", "guess")

        assert not fake_redis.store


@pytest.mark.asyncio
class TestRefresh:
    """刷新令牌测试"""

    async def test_refresh_issues_new_access_token(self, authenticator, user_manager, token_issuer):
        user = await user_manager.create_user("alice", "alice@example.com", "secret123")
        result = await authenticator.login("alice", "secret123")

        access_token = await authenticator.refresh_access_token(result.refresh_token)

        payload = token_issuer.verify_token(access_token, expected_type='access')
        assert payload['user_id'] == user.id
        assert access_token != result.access_token

    async def test_refresh_token_not_rotated(self, authenticator, user_manager, session_store):
        user = await user_manager.create_user("alice", "alice@example.com", "secret123")
        result = await authenticator.login("alice", "secret123")

        await authenticator.refresh_access_token(result.refresh_token)
        await authenticator.refresh_access_token(result.refresh_token)

        assert await session_store.get_refresh_token(user.id) == result.refresh_token

    async def test_second_login_invalidates_first_refresh_token(self, authenticator, user_manager):
        """第二次登录后，第一次登录的刷新令牌失效"""
        await user_manager.create_user("alice", "alice@example.com", "secret123")

        first = await authenticator.login("alice", "secret123")
        second = await authenticator.login("alice", "secret123")

        with pytest.raises(InvalidTokenError):
            await authenticator.refresh_access_token(first.refresh_token)

        assert await authenticator.refresh_access_token(second.refresh_token)

    async def test_refresh_without_stored_token(self, authenticator, user_manager, token_issuer):
        user = await user_manager.create_user("alice", "alice@example.com", "secret123")
        refresh_token = token_issuer.create_refresh_token(user)

        with pytest.raises(InvalidTokenError):
            await authenticator.refresh_access_token(refresh_token)

    async def test_refresh_with_access_token_rejected(self, authenticator, user_manager):
        await user_manager.create_user("alice", "alice@example.com", "secret123")
        result = await authenticator.login("alice", "secret123")

        with pytest.raises(InvalidTokenError):
            await authenticator.refresh_access_token(result.access_token)

    async def test_refresh_expired(self, authenticator, user_manager, token_issuer):
        user = await user_manager.create_user("alice", "alice@example.com", "secret123")
        expired = token_issuer.create_refresh_token(user, expires_delta=timedelta(seconds=-1))

        with pytest.raises(InvalidTokenError):
            await authenticator.refresh_access_token(expired)

    async def test_refresh_for_disabled_user(self, authenticator, user_manager):
        user = await user_manager.create_user("alice", "alice@example.com", "secret123")
        result = await authenticator.login("alice", "secret123")
        await user_manager.set_active(user.id, False)

        with pytest.raises(AccountInactiveError):
            await authenticator.refresh_access_token(result.refresh_token)

    async def test_refresh_for_deleted_user(self, authenticator, user_manager):
        user = await user_manager.create_user("alice", "alice@example.com", "secret123")
        result = await authenticator.login("alice", "secret123")
        await user_manager.delete_user(user.id)

        with pytest.raises(AccountInactiveError):
            await authenticator.refresh_access_token(result.refresh_token)


@pytest.mark.asyncio
class TestAuthenticate:
    """请求令牌认证测试"""

    async def test_authenticate_header(self, authenticator, user_manager):
        user = await user_manager.create_user("alice", "alice@example.com", "secret123")
        result = await authenticator.login("alice", "secret123")

        principal = await authenticator.authenticate(f"Bearer {result.access_token}")
        assert principal.id == user.id

    async def test_missing_header(self, authenticator):
        with pytest.raises(InvalidTokenError):
            await authenticator.authenticate(None)

    async def test_refresh_token_cannot_authenticate(self, authenticator, user_manager):
        await user_manager.create_user("alice", "alice@example.com", "secret123")
        result = await authenticator.login("alice", "secret123")

        with pytest.raises(InvalidTokenError):
            await authenticator.authenticate(f"Bearer {result.refresh_token}")

    async def test_disabled_user_rejected(self, authenticator, user_manager):
        user = await user_manager.create_user("alice", "alice@example.com", "secret123")
        result = await authenticator.login("alice", "secret123")
        await user_manager.set_active(user.id, False)

        with pytest.raises(AccountInactiveError):
            await authenticator.authenticate(f"Bearer {result.access_token}")

    async def test_revocation_check_fails_closed(self, authenticator, user_manager, fake_redis):
        """缓存不可用时默认拒绝请求"""
        await user_manager.create_user("alice", "alice@example.com", "secret123")
        result = await authenticator.login("alice", "secret123")
        fake_redis.fail = True

        with pytest.raises(AuthorizationUnavailableError):
            await authenticator.authenticate(f"Bearer {result.access_token}")

    async def test_revocation_check_fail_open(self, user_manager, token_issuer, session_store, fake_redis):
        """开启降级放行后，缓存不可用时仍允许已签名的令牌"""
        authenticator = Authenticator(user_manager, token_issuer, session_store, revocation_fail_open=True)
        user = await user_manager.create_user("alice", "alice@example.com", "secret123")
        result = await authenticator.login("alice", "secret123")
        fake_redis.fail = True

        principal = await authenticator.authenticate(f"Bearer {result.access_token}")
        assert principal.id == user.id


@pytest.mark.asyncio
class TestLogout:
    """登出测试"""

    async def test_logout_revokes_access_token(self, authenticator, user_manager):
        """登出后立即使用原访问令牌返回TokenRevoked"""
        user = await user_manager.create_user("alice", "alice@example.com", "secret123")
        result = await authenticator.login("alice", "secret123")

        await authenticator.logout(user.id, result.access_token)

        principal = await authenticator.validate_access_token(result.access_token)
        assert principal.id == user.id
        with pytest.raises(TokenRevokedError):
            await authenticator.ensure_not_revoked(result.access_token)
        with pytest.raises(TokenRevokedError):
            await authenticator.authenticate(f"Bearer {result.access_token}")

    async def test_logout_clears_session_and_refresh_token(self, authenticator, user_manager, session_store):
        user = await user_manager.create_user("alice", "alice@example.com", "secret123")
        result = await authenticator.login("alice", "secret123")

        await authenticator.logout(user.id)

        assert await session_store.get_user_session(user.id) is None
        assert await session_store.get_refresh_token(user.id) is None
        with pytest.raises(InvalidTokenError):
            await authenticator.refresh_access_token(result.refresh_token)

    async def test_blacklist_ttl_matches_remaining_lifetime(self, authenticator, user_manager,
                                                           token_issuer, fake_redis):
        user = await user_manager.create_user("alice", "alice@example.com", "secret123")
        token = token_issuer.create_access_token(user, expires_delta=timedelta(minutes=5))

        await authenticator.logout(user.id, token)

        ttl = await fake_redis.ttl(BLACKLIST_KEY.format(token=token))
        assert 0 < ttl <= 300

    async def test_blacklist_default_ttl_without_exp(self, authenticator, user_manager, fake_redis):
        user = await user_manager.create_user("alice", "alice@example.com", "secret123")
        token = jwt.encode({'user_id': user.id, 'type': 'access'}, "test-secret-key", algorithm="HS256")

        await authenticator.logout(user.id, token)

        ttl = await fake_redis.ttl(BLACKLIST_KEY.format(token=token))
        assert 3500 < ttl <= 3600

    async def test_expired_token_not_blacklisted(self, authenticator, user_manager, token_issuer, fake_redis):
        user = await user_manager.create_user("alice", "alice@example.com", "secret123")
        token = token_issuer.create_access_token(user, expires_delta=timedelta(seconds=-10))

        await authenticator.logout(user.id, token)

        assert not await fake_redis.exists(BLACKLIST_KEY.format(token=token))

    async def test_foreign_token_not_blacklisted(self, authenticator, user_manager, fake_redis):
        user = await user_manager.create_user("alice", "alice@example.com", "secret123")
        token = jwt.encode({'user_id': user.id, 'exp': 4102444800}, "another-secret", algorithm="HS256")

        await authenticator.logout(user.id, token)

        assert not await fake_redis.exists(BLACKLIST_KEY.format(token=token))

    async def test_logout_cleans_legacy_keys(self, authenticator, user_manager, fake_redis):
        user = await user_manager.create_user("alice", "alice@example.com", "secret123")
        result = await authenticator.login("alice", "secret123")
        await fake_redis.set(f"token:{result.access_token}", "1")
        await fake_redis.set(result.access_token, "1")

        await authenticator.logout(user.id, result.access_token)

        assert not await fake_redis.exists(f"token:{result.access_token}")
        assert not await fake_redis.exists(result.access_token)
        assert not await fake_redis.exists(SESSION_KEY.format(user_id=user.id))
        assert not await fake_redis.exists(REFRESH_TOKEN_KEY.format(user_id=user.id))

    async def test_logout_emits_audit_event(self, authenticator, drain_audit):
        await authenticator.logout("64b7f0c2a1b2c3d4e5f60718")

        events = drain_audit(authenticator.audit)
        assert events[-1].action == 'logout'
        assert events[-1].user_id == "64b7f0c2a1b2c3d4e5f60718"
