"""
菜单管理
菜单的增删改查、菜单树以及按角色裁剪的菜单树
"""

import logging
from typing import List, Optional, Set

from motor.motor_asyncio import AsyncIOMotorDatabase

from ..database.mongodb_client import to_object_id
from .models import Menu, utcnow
from .exceptions import ConflictError, NotFoundError, store_operation
from .roles import RoleManager
from .tree_builder import MenuNode, build_menu_tree, build_role_scoped_menu_tree

logger = logging.getLogger(__name__)


class MenuManager:
    """菜单管理器"""

    def __init__(
        self,
        database: AsyncIOMotorDatabase,
        role_manager: RoleManager = None,
        super_admin_role: str = "SUPER_ADMIN"
    ):
        self.db = database
        self.menus_collection = database.menus
        self.role_manager = role_manager or RoleManager(database)
        self.super_admin_role = super_admin_role

    @store_operation('list_menus')
    async def list_menus(self) -> List[Menu]:
        """获取全部菜单，按 order 升序"""
        cursor = self.menus_collection.find({}).sort('order', 1)
        menus_data = await cursor.to_list(length=None)
        return [Menu.from_document(data) for data in menus_data]

    @store_operation('get_menu')
    async def get_menu(self, menu_id: str) -> Optional[Menu]:
        object_id = to_object_id(menu_id)
        if object_id is None:
            return None
        data = await self.menus_collection.find_one({'_id': object_id})
        return Menu.from_document(data) if data else None

    async def get_menu_tree(self) -> List[MenuNode]:
        """完整菜单树"""
        return build_menu_tree(await self.list_menus())

    @store_operation('get_menu_tree_for_role')
    async def get_menu_tree_for_role(self, role_code: str) -> List[MenuNode]:
        """
        角色可见的菜单树

        角色不存在时返回空列表。
        """
        role = await self.role_manager.get_role_by_code(role_code)
        if role is None:
            logger.warning("角色不存在，返回空菜单", extra={
                'event': 'menu_tree_role_missing',
                'role': role_code
            })
            return []
        return build_role_scoped_menu_tree(role, await self.list_menus(), self.super_admin_role)

    async def _validate_parent(self, menu_id: Optional[str], parent_id: Optional[str]) -> None:
        """父菜单必须存在，且不能是自身或自身的后代"""
        if not parent_id:
            return

        if menu_id and parent_id == menu_id:
            raise ConflictError("菜单不能以自身作为父菜单")

        by_id = {m.id: m for m in await self.list_menus()}
        if parent_id not in by_id:
            raise NotFoundError("父菜单不存在")

        if menu_id is None:
            return

        visited: Set[str] = set()
        current = parent_id
        while current and current not in visited:
            if current == menu_id:
                raise ConflictError("不能将菜单移动到其子菜单下")
            visited.add(current)
            parent = by_id.get(current)
            current = parent.parent_id if parent else None

    @store_operation('create_menu')
    async def create_menu(
        self,
        name: str,
        path: str = "",
        icon: str = "",
        order: int = 0,
        parent_id: Optional[str] = None,
        permissions: List[str] = None,
        is_active: bool = True
    ) -> Menu:
        """创建菜单"""
        await self._validate_parent(None, parent_id)

        menu = Menu(
            name=name,
            path=path,
            icon=icon,
            order=order,
            parent_id=parent_id or None,
            permissions=list(permissions or []),
            is_active=is_active
        )
        result = await self.menus_collection.insert_one(menu.to_document())
        menu.id = str(result.inserted_id)
        return menu

    @store_operation('update_menu')
    async def update_menu(self, menu_id: str, **fields) -> Menu:
        """更新菜单，变更父菜单时检查环"""
        menu = await self.get_menu(menu_id)
        if not menu:
            raise NotFoundError("菜单不存在")

        if 'parent_id' in fields:
            await self._validate_parent(menu_id, fields['parent_id'])
            menu.parent_id = fields['parent_id'] or None

        for attr in ('name', 'path', 'icon', 'order', 'permissions', 'is_active'):
            if fields.get(attr) is not None:
                setattr(menu, attr, fields[attr])

        menu.updated_at = utcnow()
        document = menu.to_document()
        document.pop('created_at')
        await self.menus_collection.update_one({'_id': to_object_id(menu_id)}, {'$set': document})
        return menu

    @store_operation('delete_menu')
    async def delete_menu(self, menu_id: str) -> int:
        """
        删除菜单及其全部子孙菜单

        Returns:
            删除的菜单数量
        """
        menus = await self.list_menus()
        if menu_id not in {m.id for m in menus}:
            raise NotFoundError("菜单不存在")

        children = {}
        for menu in menus:
            if menu.parent_id:
                children.setdefault(menu.parent_id, []).append(menu.id)

        doomed: Set[str] = set()
        stack = [menu_id]
        while stack:
            current = stack.pop()
            if current in doomed:
                continue
            doomed.add(current)
            stack.extend(children.get(current, []))

        result = await self.menus_collection.delete_many(
            {'_id': {'$in': [to_object_id(i) for i in doomed]}}
        )
        logger.info("菜单已删除", extra={
            'event': 'menu_deleted',
            'menu_id': menu_id,
            'count': result.deleted_count
        })
        return result.deleted_count
