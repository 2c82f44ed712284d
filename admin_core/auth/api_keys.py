"""
API密钥管理
为角色签发、列出、启停、吊销和校验机器调用凭据（key/secret）

secret 明文只在生成时返回一次，数据库中仅保存其 SHA-256 摘要。
"""

import hashlib
import hmac
import logging
import secrets
from typing import Any, Dict, List

from motor.motor_asyncio import AsyncIOMotorDatabase

from ..database.mongodb_client import to_object_id
from .models import ApiKeyRecord, Role, utcnow
from .exceptions import (
    ConflictError, NotFoundError, InvalidCredentialsError, translate_store_errors, store_operation
)

logger = logging.getLogger(__name__)


def hash_secret(secret: str) -> str:
    """secret 的单向摘要"""
    return hashlib.sha256(secret.encode('utf-8')).hexdigest()


class ApiKeyManager:
    """API密钥管理器"""

    def __init__(self, database: AsyncIOMotorDatabase, max_attempts: int = 5):
        """
        初始化API密钥管理器

        Args:
            database: MongoDB数据库连接
            max_attempts: 生成不重复key的最大尝试次数
        """
        self.db = database
        self.roles_collection = database.roles
        self.max_attempts = max_attempts

    async def _get_role(self, role_id: str) -> Role:
        object_id = to_object_id(role_id)
        role_data = await self.roles_collection.find_one({'_id': object_id}) if object_id else None
        if not role_data:
            raise NotFoundError("角色不存在")
        return Role.from_document(role_data)

    async def _unique_key(self) -> str:
        for _ in range(self.max_attempts):
            key = secrets.token_hex(16)
            if not await self.roles_collection.find_one({'api_keys.key': key}):
                return key
        raise ConflictError("生成API密钥失败，请重试")

    @store_operation('generate_api_key')
    async def generate_api_key(self, role_id: str, remark: str = "") -> Dict[str, str]:
        """
        为角色生成API密钥

        Args:
            role_id: 角色ID
            remark: 备注

        Returns:
            {'key': ..., 'secret': ...}，secret 之后无法再次获取

        Raises:
            NotFoundError: 角色不存在
            ConflictError: 多次尝试仍生成重复key
        """
        role = await self._get_role(role_id)
        key = await self._unique_key()
        secret = secrets.token_urlsafe(32)

        record = ApiKeyRecord(key=key, secret_hash=hash_secret(secret), remark=remark)
        await self.roles_collection.update_one(
            {'_id': to_object_id(role.id)},
            {'$push': {'api_keys': record.to_document()}}
        )

        logger.info("API密钥已生成", extra={
            'event': 'api_key_generated',
            'role': str(role.code),
            'key': key
        })
        return {'key': key, 'secret': secret}

    @store_operation('list_api_keys')
    async def list_api_keys(self, role_id: str) -> List[Dict[str, Any]]:
        """列出角色的API密钥（不含secret摘要）"""
        role = await self._get_role(role_id)
        return [record.to_public_dict() for record in role.api_keys]

    @store_operation('toggle_api_key')
    async def toggle_api_key(self, role_id: str, key: str, is_active: bool) -> None:
        """
        启用或禁用API密钥

        Raises:
            NotFoundError: 角色上不存在该key
        """
        result = await self.roles_collection.update_one(
            {'_id': to_object_id(role_id), 'api_keys.key': key},
            {'$set': {'api_keys.$.is_active': is_active}}
        )
        if result.matched_count == 0:
            raise NotFoundError("API密钥不存在")

    @store_operation('revoke_api_key')
    async def revoke_api_key(self, role_id: str, key: str) -> bool:
        """
        吊销API密钥

        Returns:
            是否有记录被移除；key不存在时返回False且不修改数据
        """
        object_id = to_object_id(role_id)
        if object_id is None:
            return False
        result = await self.roles_collection.update_one(
            {'_id': object_id},
            {'$pull': {'api_keys': {'key': key}}}
        )
        removed = result.modified_count > 0
        if removed:
            logger.info("API密钥已吊销", extra={'event': 'api_key_revoked', 'role_id': role_id, 'key': key})
        return removed

    async def verify_api_key(self, key: str, secret: str) -> Role:
        """
        校验API key/secret

        Returns:
            key 所属的角色

        Raises:
            InvalidCredentialsError: key不存在、已禁用或secret不匹配
            AuthorizationUnavailableError: 存储不可用
        """
        if not key or not secret:
            raise InvalidCredentialsError("API密钥无效", "INVALID_API_KEY")

        with translate_store_errors('verify_api_key'):
            role_data = await self.roles_collection.find_one({'api_keys.key': key})
            role = Role.from_document(role_data) if role_data else None
            record = role.find_api_key(key) if role else None

            if record is None or not record.is_active:
                raise InvalidCredentialsError("API密钥无效", "INVALID_API_KEY")

            if not hmac.compare_digest(record.secret_hash, hash_secret(secret)):
                raise InvalidCredentialsError("API密钥无效", "INVALID_API_KEY")

            record.last_used_at = utcnow()
            await self.roles_collection.update_one(
                {'_id': role_data['_id'], 'api_keys.key': key},
                {'$set': {'api_keys.$.last_used_at': record.last_used_at}}
            )

        return role
