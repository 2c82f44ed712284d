"""
角色管理
角色的增删改查、唯一性校验以及角色权限集合解析
"""

import logging
from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from ..database.mongodb_client import to_object_id
from .models import Role, RoleCode, Permission, utcnow
from .exceptions import ConflictError, NotFoundError, AuthorizationError, store_operation

logger = logging.getLogger(__name__)


class RoleManager:
    """角色管理器"""

    def __init__(self, database: AsyncIOMotorDatabase):
        """
        初始化角色管理器

        Args:
            database: MongoDB数据库连接
        """
        self.db = database
        self.roles_collection = database.roles
        self.permissions_collection = database.permissions

    async def _check_unique(self, name: str, code: RoleCode, exclude_id=None):
        query = {'$or': [{'name': name}, {'code': str(code)}]}
        if exclude_id is not None:
            query['_id'] = {'$ne': exclude_id}

        existing = await self.roles_collection.find_one(query)
        if existing:
            if existing['name'] == name:
                raise ConflictError(f"角色名称 '{name}' 已存在")
            raise ConflictError(f"角色编码 '{code}' 已存在")

    @store_operation('create_role')
    async def create_role(
        self,
        name: str,
        code: str,
        description: str = "",
        permissions: List[str] = None,
        menus: List[str] = None,
        is_system: bool = False
    ) -> Role:
        """
        创建角色

        Args:
            name: 角色名称
            code: 角色编码（统一转为大写）
            description: 角色描述
            permissions: 权限ID列表
            menus: 菜单ID列表
            is_system: 是否系统内置角色

        Returns:
            创建的角色对象
        """
        role = Role(
            name=name,
            code=code,
            description=description,
            permissions=list(permissions or []),
            menus=list(menus or []),
            is_system=is_system
        )
        if not role.code:
            raise ValueError("角色编码不能为空")

        await self._check_unique(role.name, role.code)

        result = await self.roles_collection.insert_one(role.to_document())
        role.id = str(result.inserted_id)

        logger.info("角色创建成功", extra={'event': 'role_created', 'role': str(role.code)})
        return role

    @store_operation('update_role')
    async def update_role(self, role_id: str, **fields) -> Role:
        """
        更新角色

        Args:
            role_id: 角色ID
            **fields: name/code/description/permissions/menus

        Returns:
            更新后的角色对象
        """
        role = await self.get_role(role_id)
        if not role:
            raise NotFoundError("角色不存在")

        for attr in ('name', 'description', 'permissions', 'menus'):
            if fields.get(attr) is not None:
                setattr(role, attr, fields[attr])
        if fields.get('code') is not None:
            role.code = RoleCode(fields['code'])

        await self._check_unique(role.name, role.code, exclude_id=to_object_id(role_id))

        role.updated_at = utcnow()
        document = role.to_document()
        document.pop('created_at')
        document.pop('api_keys')
        await self.roles_collection.update_one({'_id': to_object_id(role_id)}, {'$set': document})
        return role

    @store_operation('delete_role')
    async def delete_role(self, role_id: str) -> bool:
        """
        删除角色，系统内置角色不允许删除

        Returns:
            删除是否成功
        """
        role = await self.get_role(role_id)
        if not role:
            raise NotFoundError("角色不存在")
        if role.is_system:
            raise AuthorizationError("系统内置角色不能删除", "SYSTEM_ROLE_PROTECTED")

        result = await self.roles_collection.delete_one({'_id': to_object_id(role_id)})
        return result.deleted_count > 0

    @store_operation('get_role')
    async def get_role(self, role_id: str) -> Optional[Role]:
        """根据ID获取角色"""
        object_id = to_object_id(role_id)
        if object_id is None:
            return None
        role_data = await self.roles_collection.find_one({'_id': object_id})
        return Role.from_document(role_data) if role_data else None

    @store_operation('get_role_by_code')
    async def get_role_by_code(self, code: str) -> Optional[Role]:
        """根据编码获取角色（编码不区分大小写）"""
        role_data = await self.roles_collection.find_one({'code': str(RoleCode(code))})
        return Role.from_document(role_data) if role_data else None

    @store_operation('list_roles')
    async def list_roles(self) -> List[Role]:
        """获取所有角色"""
        cursor = self.roles_collection.find({}).sort('created_at', 1)
        roles_data = await cursor.to_list(length=None)
        return [Role.from_document(data) for data in roles_data]

    @store_operation('count_roles')
    async def count_roles(self) -> int:
        return await self.roles_collection.count_documents({})

    @store_operation('add_permission_to_role')
    async def add_permission_to_role(self, role_id: str, permission_id: str) -> bool:
        """为角色添加权限（已存在时不重复添加）"""
        result = await self.roles_collection.update_one(
            {'_id': to_object_id(role_id)},
            {
                '$addToSet': {'permissions': to_object_id(permission_id)},
                '$set': {'updated_at': utcnow()}
            }
        )
        if result.matched_count == 0:
            raise NotFoundError("角色不存在")
        return result.modified_count > 0

    @store_operation('remove_permission_from_role')
    async def remove_permission_from_role(self, role_id: str, permission_id: str) -> bool:
        """从角色中移除权限"""
        result = await self.roles_collection.update_one(
            {'_id': to_object_id(role_id)},
            {'$pull': {'permissions': to_object_id(permission_id)}}
        )
        if result.matched_count == 0:
            raise NotFoundError("角色不存在")
        return result.modified_count > 0

    @store_operation('resolve_permissions')
    async def resolve_permissions(self, role: Role) -> List[Permission]:
        """解析角色关联的权限对象，忽略已被删除的权限引用"""
        object_ids = [oid for oid in (to_object_id(p) for p in role.permissions) if oid is not None]
        if not object_ids:
            return []
        cursor = self.permissions_collection.find({'_id': {'$in': object_ids}})
        permissions_data = await cursor.to_list(length=None)
        return [Permission.from_document(data) for data in permissions_data]
