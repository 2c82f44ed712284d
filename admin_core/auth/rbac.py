"""
RBAC 鉴权
根据主体的角色实时解析权限集合并校验所需权限

不做跨请求缓存：撤销角色上的权限后，所有已登录会话的下一次请求立即生效。
"""

import logging
from typing import Iterable, Set, Union

from .models import User, RoleCode
from .roles import RoleManager
from .permissions import PermissionManager
from .audit import AuditEmitter, AuditEvent, STATUS_FAILED
from .exceptions import RoleNotFoundError, PermissionDeniedError, translate_store_errors

logger = logging.getLogger(__name__)


class RBACAuthorizer:
    """基于角色的访问控制"""

    def __init__(
        self,
        role_manager: RoleManager,
        permission_manager: PermissionManager,
        audit: AuditEmitter = None,
        super_admin_role: str = "SUPER_ADMIN"
    ):
        self.role_manager = role_manager
        self.permission_manager = permission_manager
        self.audit = audit
        self.super_admin_role = RoleCode(super_admin_role)

    def is_super_admin(self, principal: User) -> bool:
        return RoleCode(principal.role) == self.super_admin_role

    @staticmethod
    def has_role(principal: User, *allowed_roles: Union[str, Iterable[str]]) -> bool:
        """
        检查主体是否属于任一指定角色

        角色编码统一规范化后按值比较，'admin' 与 'ADMIN' 等价。
        """
        allowed: Set[RoleCode] = set()
        for role in allowed_roles:
            if isinstance(role, str):
                allowed.add(RoleCode(role))
            else:
                allowed.update(RoleCode(r) for r in role)
        return RoleCode(principal.role) in allowed

    async def get_permission_codes(self, principal: User) -> Set[str]:
        """
        解析主体角色当前拥有的权限编码集合

        Raises:
            RoleNotFoundError: 角色记录不存在
            AuthorizationUnavailableError: 存储不可用
        """
        with translate_store_errors('resolve_permissions'):
            role = await self.role_manager.get_role_by_code(principal.role)
            if role is None:
                logger.warning("主体引用的角色不存在", extra={
                    'event': 'role_not_found',
                    'user_id': principal.id,
                    'role': str(principal.role)
                })
                raise RoleNotFoundError(f"角色 '{principal.role}' 不存在")
            permissions = await self.role_manager.resolve_permissions(role)
        return {p.code for p in permissions}

    async def has_permission(self, principal: User, required_code: str) -> bool:
        """
        检查主体是否拥有指定权限

        超级管理员对任意编码（包括不存在的编码）都返回True。
        """
        if self.is_super_admin(principal):
            return True
        return required_code in await self.get_permission_codes(principal)

    async def authorize(self, principal: User, required_code: str) -> None:
        """
        鉴权，失败时抛出带可读权限名称的PermissionDeniedError

        Raises:
            PermissionDeniedError: 权限不足
            RoleNotFoundError: 角色记录不存在
        """
        try:
            allowed = await self.has_permission(principal, required_code)
        except RoleNotFoundError as e:
            self._emit_denied(principal, required_code, e.message)
            raise

        if allowed:
            return

        label = await self.permission_manager.resolve_permission_label(required_code)
        error = PermissionDeniedError(required_code, label)
        logger.info("权限不足", extra={
            'event': 'permission_denied',
            'user_id': principal.id,
            'role': str(principal.role),
            'permission': required_code
        })
        self._emit_denied(principal, required_code, error.message)
        raise error

    def _emit_denied(self, principal: User, required_code: str, message: str) -> None:
        if self.audit is None:
            return
        self.audit.emit(AuditEvent(
            action='permission_denied',
            status=STATUS_FAILED,
            user_id=principal.id,
            username=principal.username,
            resource=required_code,
            error_message=message
        ))
