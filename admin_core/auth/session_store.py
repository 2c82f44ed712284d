"""
会话与撤销存储
基于Redis保存用户会话、当前刷新令牌和令牌黑名单
"""

import logging
from typing import Optional

from ..database.exceptions import CacheUnavailableError
from ..database.redis_client import AsyncRedisClient
from .models import SessionData

logger = logging.getLogger(__name__)

SESSION_KEY = "user:session:{user_id}"
REFRESH_TOKEN_KEY = "user:refresh_token:{user_id}"
BLACKLIST_KEY = "blacklist:token:{token}"
LOGIN_FAILURES_KEY = "login:failures:{scope}"

DEFAULT_SESSION_TTL = 7 * 24 * 60 * 60
DEFAULT_REFRESH_TTL = 30 * 24 * 60 * 60


class SessionStore:
    """
    会话与撤销存储

    所有写入都是对整个键值的替换（SET ... EX），不做字段级更新；
    同一用户并发登录时以最后一次写入为准。
    """

    def __init__(self, redis_client: AsyncRedisClient):
        self.redis = redis_client

    async def set_user_session(self, session: SessionData, ttl: int = DEFAULT_SESSION_TTL) -> None:
        """存储用户会话信息"""
        key = SESSION_KEY.format(user_id=session.user_id)
        await self.redis.set(key, session.to_dict(), ex=ttl)

    async def get_user_session(self, user_id: str) -> Optional[SessionData]:
        """获取用户会话信息"""
        data = await self.redis.get(SESSION_KEY.format(user_id=user_id))
        return SessionData.from_dict(data) if isinstance(data, dict) else None

    async def delete_user_session(self, user_id: str) -> None:
        """删除用户会话"""
        await self.redis.delete(SESSION_KEY.format(user_id=user_id))

    async def set_refresh_token(self, user_id: str, refresh_token: str, ttl: int = DEFAULT_REFRESH_TTL) -> None:
        """存储刷新令牌，覆盖该用户之前的刷新令牌"""
        await self.redis.set(REFRESH_TOKEN_KEY.format(user_id=user_id), refresh_token, ex=ttl)

    async def get_refresh_token(self, user_id: str) -> Optional[str]:
        """获取当前有效的刷新令牌"""
        return await self.redis.get(REFRESH_TOKEN_KEY.format(user_id=user_id))

    async def delete_refresh_token(self, user_id: str) -> None:
        """删除刷新令牌"""
        await self.redis.delete(REFRESH_TOKEN_KEY.format(user_id=user_id))

    async def add_to_blacklist(self, token: str, ttl: int) -> None:
        """将令牌加入黑名单，TTL为令牌剩余有效期"""
        await self.redis.set(BLACKLIST_KEY.format(token=token), "1", ex=max(int(ttl), 1))

    async def is_token_blacklisted(self, token: str) -> bool:
        """检查令牌是否在黑名单中"""
        return await self.redis.exists(BLACKLIST_KEY.format(token=token))

    async def get_login_failures(self, scope: str) -> int:
        """窗口期内的登录失败次数"""
        value = await self.redis.get(LOGIN_FAILURES_KEY.format(scope=scope))
        return int(value) if value else 0

    async def record_login_failure(self, scope: str, window: int) -> int:
        """
        记录一次登录失败

        窗口从第一次失败开始计时，到期后计数自动清零。

        Returns:
            窗口期内的累计失败次数
        """
        key = LOGIN_FAILURES_KEY.format(scope=scope)
        count = await self.redis.incr(key)
        if count == 1:
            await self.redis.expire(key, window)
        return count

    async def login_failures_ttl(self, scope: str) -> int:
        """失败计数剩余的窗口时间（秒）"""
        return await self.redis.ttl(LOGIN_FAILURES_KEY.format(scope=scope))

    async def clear_login_failures(self, scope: str) -> None:
        await self.redis.delete(LOGIN_FAILURES_KEY.format(scope=scope))

    async def cleanup_token_artifacts(self, token: str) -> None:
        """
        清理可能存在的历史/遗留令牌键

        - token:<jwt>
        - <jwt>
        """
        for key in (f"token:{token}", token):
            try:
                await self.redis.delete(key)
            except CacheUnavailableError as e:
                logger.warning("清理历史令牌键失败", extra={
                    'event': 'token_artifact_cleanup_failed',
                    'error': str(e)
                })
