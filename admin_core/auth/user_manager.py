"""
用户管理器
提供用户查询、创建、删除和登录时间更新
"""

import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from ..database.mongodb_client import to_object_id
from .models import User, RoleCode, utcnow
from .password_manager import PasswordManager
from .exceptions import ConflictError, NotFoundError, AuthorizationError, store_operation

logger = logging.getLogger(__name__)


class UserManager:
    """用户管理器"""

    def __init__(self, database: AsyncIOMotorDatabase, password_manager: PasswordManager = None):
        """
        初始化用户管理器

        Args:
            database: MongoDB数据库连接
            password_manager: 密码管理器
        """
        self.db = database
        self.users_collection = database.users
        self.password_manager = password_manager or PasswordManager()

    @store_operation('create_user')
    async def create_user(
        self,
        username: str,
        email: str,
        password: str,
        role: str = "USER",
        is_active: bool = True,
        avatar: str = ""
    ) -> User:
        """
        创建新用户

        Args:
            username: 用户名
            email: 邮箱
            password: 密码
            role: 角色编码
            is_active: 是否启用
            avatar: 头像地址

        Returns:
            创建的用户对象

        Raises:
            ConflictError: 用户名或邮箱已存在
            ValueError: 参数无效
        """
        if not username or not email:
            raise ValueError("用户名和邮箱不能为空")
        self.password_manager.validate_password(password)

        email = email.strip().lower()
        existing_user = await self.users_collection.find_one({
            '$or': [
                {'username': username},
                {'email': email}
            ]
        })

        if existing_user:
            if existing_user['username'] == username:
                raise ConflictError(f"用户名 '{username}' 已存在")
            else:
                raise ConflictError(f"邮箱 '{email}' 已被使用")

        user = User(
            username=username,
            email=email,
            password_hash=self.password_manager.hash_password(password),
            role=RoleCode(role),
            is_active=is_active,
            avatar=avatar
        )

        result = await self.users_collection.insert_one(user.to_document())
        user.id = str(result.inserted_id)

        logger.info("用户创建成功", extra={
            'event': 'user_created',
            'username': username,
            'role': str(user.role)
        })
        return user

    @store_operation('get_user_by_id')
    async def get_user_by_id(self, user_id: str) -> Optional[User]:
        """根据ID获取用户"""
        object_id = to_object_id(user_id)
        if object_id is None:
            return None
        user_data = await self.users_collection.find_one({'_id': object_id})
        return User.from_document(user_data) if user_data else None

    @store_operation('get_user_by_username')
    async def get_user_by_username(self, username: str) -> Optional[User]:
        """根据用户名获取用户"""
        user_data = await self.users_collection.find_one({'username': username})
        return User.from_document(user_data) if user_data else None

    @store_operation('get_user_by_email')
    async def get_user_by_email(self, email: str) -> Optional[User]:
        """根据邮箱获取用户"""
        user_data = await self.users_collection.find_one({'email': email.strip().lower()})
        return User.from_document(user_data) if user_data else None

    @store_operation('find_by_identifier')
    async def find_by_identifier(self, identifier: str) -> Optional[User]:
        """
        按登录标识查找用户，先匹配用户名再匹配邮箱

        Args:
            identifier: 用户名或邮箱

        Returns:
            用户对象或None
        """
        if not identifier:
            return None
        user = await self.get_user_by_username(identifier)
        if user is None:
            user = await self.get_user_by_email(identifier)
        return user

    @store_operation('update_last_login')
    async def update_last_login(self, user: User) -> None:
        """更新最后登录时间"""
        user.last_login_at = utcnow()
        await self.users_collection.update_one(
            {'_id': to_object_id(user.id)},
            {'$set': {'last_login_at': user.last_login_at, 'updated_at': user.last_login_at}}
        )

    @store_operation('set_active')
    async def set_active(self, user_id: str, is_active: bool) -> User:
        """启用或禁用用户"""
        user = await self.get_user_by_id(user_id)
        if not user:
            raise NotFoundError("用户不存在")

        await self.users_collection.update_one(
            {'_id': to_object_id(user_id)},
            {'$set': {'is_active': is_active, 'updated_at': utcnow()}}
        )
        user.is_active = is_active
        return user

    @store_operation('delete_user')
    async def delete_user(self, user_id: str, acting_user_id: Optional[str] = None) -> bool:
        """
        删除用户

        Args:
            user_id: 待删除的用户ID
            acting_user_id: 执行删除操作的用户ID

        Returns:
            删除是否成功

        Raises:
            AuthorizationError: 尝试删除当前登录用户
        """
        if acting_user_id and str(acting_user_id) == str(user_id):
            raise AuthorizationError("不能删除当前登录用户", "SELF_DELETION_FORBIDDEN")

        object_id = to_object_id(user_id)
        if object_id is None:
            return False
        result = await self.users_collection.delete_one({'_id': object_id})
        return result.deleted_count > 0
