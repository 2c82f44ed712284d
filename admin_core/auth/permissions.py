"""
权限管理
权限的增删改查、唯一性校验、权限树以及权限名称解析
"""

import logging
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from ..database.mongodb_client import to_object_id
from .models import Permission, PermissionType, module_key, utcnow
from .exceptions import ConflictError, NotFoundError, AuthorizationUnavailableError, store_operation
from .tree_builder import build_permission_tree

logger = logging.getLogger(__name__)

# 权限编码的默认中文名称，数据库中没有对应权限记录时使用
PERMISSION_LABELS = {
    'user:view': '查看用户',
    'user:create': '创建用户',
    'user:edit': '编辑用户',
    'user:delete': '删除用户',
    'role:view': '查看角色',
    'role:create': '创建角色',
    'role:edit': '编辑角色',
    'role:delete': '删除角色',
    'menu:view': '查看菜单',
    'menu:create': '创建菜单',
    'menu:edit': '编辑菜单',
    'menu:delete': '删除菜单',
    'permission:view': '查看权限',
    'permission:create': '创建权限',
    'permission:edit': '编辑权限',
    'permission:delete': '删除权限',
    'dashboard:view': '查看仪表盘',
    'operationLog:view': '查看操作日志',
}


class PermissionManager:
    """权限管理器"""

    def __init__(self, database: AsyncIOMotorDatabase):
        self.db = database
        self.permissions_collection = database.permissions

    async def _check_unique(self, name: str, code: str, exclude_id=None):
        query = {'$or': [{'code': code}, {'name': name}]}
        if exclude_id is not None:
            query['_id'] = {'$ne': exclude_id}

        existing = await self.permissions_collection.find_one(query)
        if existing:
            if existing['code'] == code:
                raise ConflictError(f"权限编码 '{code}' 已存在")
            raise ConflictError(f"权限名称 '{name}' 已存在")

    @store_operation('create_permission')
    async def create_permission(
        self,
        name: str,
        code: str,
        description: str = "",
        type: str = PermissionType.ACTION.value
    ) -> Permission:
        """
        创建权限

        Args:
            name: 权限名称
            code: 权限编码，形如 module:action
            description: 权限描述
            type: 权限类型 menu/action/data/system

        Returns:
            创建的权限对象
        """
        permission = Permission(
            name=name,
            code=code,
            description=description,
            type=PermissionType(type)
        )
        await self._check_unique(permission.name, permission.code)

        result = await self.permissions_collection.insert_one(permission.to_document())
        permission.id = str(result.inserted_id)

        logger.info("权限创建成功", extra={'event': 'permission_created', 'code': code})
        return permission

    @store_operation('update_permission')
    async def update_permission(self, permission_id: str, **fields) -> Permission:
        """更新权限，编码和名称变更同样需要满足唯一性"""
        permission = await self.get_permission(permission_id)
        if not permission:
            raise NotFoundError("权限不存在")

        for attr in ('name', 'code', 'description'):
            if fields.get(attr) is not None:
                setattr(permission, attr, fields[attr])
        if fields.get('type') is not None:
            permission.type = PermissionType(fields['type'])
        if fields.get('code') is not None:
            permission.module = module_key(permission.code)

        await self._check_unique(permission.name, permission.code, exclude_id=to_object_id(permission_id))

        permission.updated_at = utcnow()
        document = permission.to_document()
        document.pop('created_at')
        await self.permissions_collection.update_one(
            {'_id': to_object_id(permission_id)},
            {'$set': document}
        )
        return permission

    @store_operation('delete_permission')
    async def delete_permission(self, permission_id: str) -> bool:
        object_id = to_object_id(permission_id)
        if object_id is None:
            return False
        result = await self.permissions_collection.delete_one({'_id': object_id})
        return result.deleted_count > 0

    @store_operation('get_permission')
    async def get_permission(self, permission_id: str) -> Optional[Permission]:
        """根据ID获取权限"""
        object_id = to_object_id(permission_id)
        if object_id is None:
            return None
        data = await self.permissions_collection.find_one({'_id': object_id})
        return Permission.from_document(data) if data else None

    @store_operation('get_permission_by_code')
    async def get_permission_by_code(self, code: str) -> Optional[Permission]:
        """根据编码获取权限"""
        data = await self.permissions_collection.find_one({'code': code})
        return Permission.from_document(data) if data else None

    @store_operation('list_permissions')
    async def list_permissions(self) -> List[Permission]:
        """获取所有权限，按编码排序"""
        cursor = self.permissions_collection.find({}).sort('code', 1)
        permissions_data = await cursor.to_list(length=None)
        return [Permission.from_document(data) for data in permissions_data]

    async def permission_tree(self) -> List[Dict[str, Any]]:
        """按模块分组的权限树"""
        return build_permission_tree(await self.list_permissions())

    async def resolve_permission_label(self, code: str) -> str:
        """
        获取权限的可读名称

        依次尝试：数据库中的权限名称、默认名称表、原始编码。
        查询失败只影响提示文字，不影响鉴权结果。
        """
        try:
            permission = await self.get_permission_by_code(code)
        except AuthorizationUnavailableError as e:
            logger.warning("权限名称查询失败", extra={
                'event': 'permission_label_lookup_failed',
                'code': code,
                'error': str(e)
            })
            permission = None

        if permission and permission.name:
            return permission.name
        return PERMISSION_LABELS.get(code, code)
