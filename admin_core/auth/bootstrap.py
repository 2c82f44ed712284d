"""
初始化数据
首次启动时创建默认权限、系统内置角色和默认管理员
"""

import logging
from typing import Dict

from .exceptions import ConflictError
from .models import PermissionType, User
from .permissions import PermissionManager, PERMISSION_LABELS
from .roles import RoleManager
from .user_manager import UserManager

logger = logging.getLogger(__name__)

DEFAULT_ROLES = [
    {
        'name': '超级管理员',
        'code': 'SUPER_ADMIN',
        'description': '拥有系统所有权限',
    },
    {
        'name': '管理员',
        'code': 'ADMIN',
        'description': '管理用户、角色、菜单和权限',
    },
    {
        'name': '普通用户',
        'code': 'USER',
        'description': '仅能访问仪表盘',
    },
]

USER_DEFAULT_PERMISSIONS = ('dashboard:view',)


async def initialize_default_permissions(permission_manager: PermissionManager) -> Dict[str, str]:
    """
    权限集合为空时写入默认权限

    Returns:
        权限编码到ID的映射
    """
    existing = await permission_manager.list_permissions()
    if not existing:
        for code, name in PERMISSION_LABELS.items():
            await permission_manager.create_permission(
                name=name,
                code=code,
                type=PermissionType.MENU.value if code.endswith(':view') else PermissionType.ACTION.value
            )
        existing = await permission_manager.list_permissions()
        logger.info("默认权限初始化完成", extra={
            'event': 'default_permissions_created',
            'count': len(existing)
        })
    return {p.code: p.id for p in existing}


async def initialize_default_roles(role_manager: RoleManager, permission_manager: PermissionManager) -> None:
    """角色集合为空时创建系统内置角色"""
    if await role_manager.count_roles() > 0:
        return

    permission_ids = await initialize_default_permissions(permission_manager)
    grants = {
        'SUPER_ADMIN': [],
        'ADMIN': list(permission_ids.values()),
        'USER': [permission_ids[c] for c in USER_DEFAULT_PERMISSIONS if c in permission_ids],
    }

    for role_data in DEFAULT_ROLES:
        await role_manager.create_role(
            name=role_data['name'],
            code=role_data['code'],
            description=role_data['description'],
            permissions=grants[role_data['code']],
            is_system=True
        )

    logger.info("默认角色初始化完成", extra={'event': 'default_roles_created'})


async def create_default_admin(user_manager: UserManager, username: str, email: str,
                               password: str, role: str = "SUPER_ADMIN") -> User:
    """创建默认管理员用户，已存在时直接返回"""
    existing_user = await user_manager.get_user_by_username(username)
    if existing_user:
        logger.info("默认管理员用户已存在", extra={
            'event': 'default_admin_exists',
            'username': username
        })
        return existing_user

    try:
        admin_user = await user_manager.create_user(
            username=username,
            email=email,
            password=password,
            role=role
        )
    except ConflictError:
        logger.warning("默认管理员邮箱已被占用", extra={
            'event': 'default_admin_conflict',
            'username': username,
            'email': email
        })
        raise

    logger.info("创建默认管理员用户成功", extra={
        'event': 'default_admin_created',
        'username': username,
        'email': email
    })
    return admin_user
