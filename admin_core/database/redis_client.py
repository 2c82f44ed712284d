"""
Redis客户端连接和操作封装
用于会话、刷新令牌和令牌黑名单存储
"""

import json
import logging
from typing import Optional, Any

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from .exceptions import CacheUnavailableError

logger = logging.getLogger(__name__)


class AsyncRedisClient:
    """Redis异步客户端"""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        timeout: float = 5.0,
        decode_responses: bool = True,
        **kwargs
    ):
        self.host = host
        self.port = port
        self.db = db

        # Redis连接配置
        self.connection_params = {
            'host': host,
            'port': port,
            'db': db,
            'password': password,
            'decode_responses': decode_responses,
            'socket_timeout': timeout,
            'socket_connect_timeout': timeout,
            'socket_keepalive': True,
            'health_check_interval': 30,
            **kwargs
        }

        self.client: Optional[aioredis.Redis] = None

    @classmethod
    def from_settings(cls, settings) -> "AsyncRedisClient":
        """根据RedisSettings创建客户端"""
        return cls(
            host=settings.host,
            port=settings.port,
            db=settings.db,
            password=settings.password,
            timeout=settings.timeout
        )

    async def connect(self) -> bool:
        """建立异步Redis连接"""
        try:
            self.client = aioredis.Redis(**self.connection_params)
            await self.client.ping()
            logger.info(f"Successfully connected to Redis (async) at {self.host}:{self.port}")
            return True
        except RedisError as e:
            logger.error(f"Failed to connect to Redis (async): {e}")
            return False

    async def disconnect(self):
        """断开异步Redis连接"""
        if self.client:
            await self.client.aclose()
            self.client = None
        logger.info("Disconnected from Redis (async)")

    def _require_client(self, operation: str):
        if self.client is None:
            raise CacheUnavailableError("Redis未连接", operation)
        return self.client

    async def ping(self) -> bool:
        """检查连接状态"""
        try:
            return bool(await self._require_client('ping').ping())
        except (RedisError, CacheUnavailableError):
            return False

    async def set(self, key: str, value: Any, ex: Optional[int] = None) -> bool:
        """设置键值（整体替换）"""
        client = self._require_client('set')
        try:
            if isinstance(value, (dict, list)):
                value = json.dumps(value, ensure_ascii=False)
            return bool(await client.set(key, value, ex=ex))
        except RedisError as e:
            logger.error(f"Failed to set key {key}: {e}")
            raise CacheUnavailableError(f"Redis SET 操作失败: {e}", 'set') from e

    async def get(self, key: str) -> Optional[Any]:
        """获取键值，JSON值自动解析"""
        client = self._require_client('get')
        try:
            value = await client.get(key)
        except RedisError as e:
            logger.error(f"Failed to get key {key}: {e}")
            raise CacheUnavailableError(f"Redis GET 操作失败: {e}", 'get') from e

        if value is None:
            return None

        try:
            parsed = json.loads(value)
        except (json.JSONDecodeError, TypeError):
            return value
        # 只还原容器类型，标量保持原始字符串
        return parsed if isinstance(parsed, (dict, list)) else value

    async def delete(self, *keys: str) -> int:
        """删除键"""
        client = self._require_client('delete')
        try:
            return await client.delete(*keys)
        except RedisError as e:
            logger.error(f"Failed to delete keys {keys}: {e}")
            raise CacheUnavailableError(f"Redis DEL 操作失败: {e}", 'delete') from e

    async def exists(self, key: str) -> bool:
        """检查键是否存在"""
        client = self._require_client('exists')
        try:
            return bool(await client.exists(key))
        except RedisError as e:
            logger.error(f"Failed to check existence of key {key}: {e}")
            raise CacheUnavailableError(f"Redis EXISTS 操作失败: {e}", 'exists') from e

    async def ttl(self, key: str) -> int:
        """获取键剩余存活时间"""
        client = self._require_client('ttl')
        try:
            return await client.ttl(key)
        except RedisError as e:
            logger.error(f"Failed to get TTL for key {key}: {e}")
            raise CacheUnavailableError(f"Redis TTL 操作失败: {e}", 'ttl') from e

    async def incr(self, key: str) -> int:
        """计数器自增，返回自增后的值"""
        client = self._require_client('incr')
        try:
            return int(await client.incr(key))
        except RedisError as e:
            logger.error(f"Failed to increment key {key}: {e}")
            raise CacheUnavailableError(f"Redis INCR 操作失败: {e}", 'incr') from e

    async def expire(self, key: str, seconds: int) -> bool:
        """设置键的存活时间"""
        client = self._require_client('expire')
        try:
            return bool(await client.expire(key, seconds))
        except RedisError as e:
            logger.error(f"Failed to set expiry for key {key}: {e}")
            raise CacheUnavailableError(f"Redis EXPIRE 操作失败: {e}", 'expire') from e
