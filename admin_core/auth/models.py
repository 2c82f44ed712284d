"""
用户认证相关数据模型
"""

from datetime import datetime, timezone
from typing import List, Optional, Dict, Any
from dataclasses import dataclass, field
from enum import Enum

from ..database.mongodb_client import to_object_id


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _id_str(value: Any) -> Optional[str]:
    return str(value) if value is not None else None


def _ids_to_documents(values: List[str]) -> list:
    return [to_object_id(v) or v for v in values]


class RoleCode(str):
    """
    角色编码

    构造时去除首尾空白并统一转为大写，按值比较，
    因此 'admin'、'Admin '、'ADMIN' 视为同一角色。
    """

    def __new__(cls, value: Any) -> "RoleCode":
        return super().__new__(cls, str(value or "").strip().upper())


class PermissionType(Enum):
    """权限类型枚举"""
    MENU = "menu"
    ACTION = "action"
    DATA = "data"
    SYSTEM = "system"


def module_key(code: str) -> str:
    """权限编码中第一个冒号之前的模块前缀"""
    return str(code).split(':', 1)[0] or 'other'


@dataclass
class Permission:
    """权限模型"""
    name: str
    code: str
    description: str = ""
    type: PermissionType = PermissionType.ACTION
    module: str = ""
    id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        if not self.module:
            self.module = module_key(self.code)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'code': self.code,
            'description': self.description,
            'type': self.type.value,
            'module': self.module,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat()
        }

    def to_document(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'code': self.code,
            'description': self.description,
            'type': self.type.value,
            'module': self.module,
            'created_at': self.created_at,
            'updated_at': self.updated_at
        }

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> 'Permission':
        return cls(
            id=_id_str(data.get('_id')),
            name=data['name'],
            code=data['code'],
            description=data.get('description', ''),
            type=PermissionType(data.get('type', PermissionType.ACTION.value)),
            module=data.get('module', ''),
            created_at=data.get('created_at') or utcnow(),
            updated_at=data.get('updated_at') or utcnow()
        )


@dataclass
class Menu:
    """菜单模型（parent_id 自引用构成森林）"""
    name: str
    path: str = ""
    icon: str = ""
    order: int = 0
    parent_id: Optional[str] = None
    permissions: List[str] = field(default_factory=list)
    is_active: bool = True
    id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'path': self.path,
            'icon': self.icon,
            'order': self.order,
            'parent_id': self.parent_id,
            'permissions': list(self.permissions),
            'is_active': self.is_active
        }

    def to_document(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'path': self.path,
            'icon': self.icon,
            'order': self.order,
            'parent_id': to_object_id(self.parent_id) if self.parent_id else None,
            'permissions': _ids_to_documents(self.permissions),
            'is_active': self.is_active,
            'created_at': self.created_at,
            'updated_at': self.updated_at
        }

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> 'Menu':
        return cls(
            id=_id_str(data.get('_id')),
            name=data['name'],
            path=data.get('path', ''),
            icon=data.get('icon', ''),
            order=data.get('order', 0),
            parent_id=_id_str(data.get('parent_id')),
            permissions=[str(p) for p in data.get('permissions', [])],
            is_active=data.get('is_active', True),
            created_at=data.get('created_at') or utcnow(),
            updated_at=data.get('updated_at') or utcnow()
        )


@dataclass
class ApiKeyRecord:
    """API密钥记录（内嵌于角色，仅保存secret的哈希）"""
    key: str
    secret_hash: str
    remark: str = ""
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)
    last_used_at: Optional[datetime] = None

    def to_public_dict(self) -> Dict[str, Any]:
        """对外展示的字段，不含secret哈希"""
        return {
            'key': self.key,
            'remark': self.remark,
            'is_active': self.is_active,
            'created_at': self.created_at.isoformat(),
            'last_used_at': self.last_used_at.isoformat() if self.last_used_at else None
        }

    def to_document(self) -> Dict[str, Any]:
        return {
            'key': self.key,
            'secret_hash': self.secret_hash,
            'remark': self.remark,
            'is_active': self.is_active,
            'created_at': self.created_at,
            'last_used_at': self.last_used_at
        }

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> 'ApiKeyRecord':
        return cls(
            key=data['key'],
            secret_hash=data['secret_hash'],
            remark=data.get('remark', ''),
            is_active=data.get('is_active', True),
            created_at=data.get('created_at') or utcnow(),
            last_used_at=data.get('last_used_at')
        )


@dataclass
class Role:
    """角色模型"""
    name: str
    code: RoleCode
    description: str = ""
    permissions: List[str] = field(default_factory=list)
    menus: List[str] = field(default_factory=list)
    is_system: bool = False
    api_keys: List[ApiKeyRecord] = field(default_factory=list)
    id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        self.code = RoleCode(self.code)

    def find_api_key(self, key: str) -> Optional[ApiKeyRecord]:
        return next((record for record in self.api_keys if record.key == key), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'code': str(self.code),
            'description': self.description,
            'permissions': list(self.permissions),
            'menus': list(self.menus),
            'is_system': self.is_system,
            'api_keys': [record.to_public_dict() for record in self.api_keys],
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat()
        }

    def to_document(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'code': str(self.code),
            'description': self.description,
            'permissions': _ids_to_documents(self.permissions),
            'menus': _ids_to_documents(self.menus),
            'is_system': self.is_system,
            'api_keys': [record.to_document() for record in self.api_keys],
            'created_at': self.created_at,
            'updated_at': self.updated_at
        }

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> 'Role':
        return cls(
            id=_id_str(data.get('_id')),
            name=data['name'],
            code=RoleCode(data['code']),
            description=data.get('description', ''),
            permissions=[str(p) for p in data.get('permissions', [])],
            menus=[str(m) for m in data.get('menus', [])],
            is_system=data.get('is_system', False),
            api_keys=[ApiKeyRecord.from_document(k) for k in data.get('api_keys', [])],
            created_at=data.get('created_at') or utcnow(),
            updated_at=data.get('updated_at') or utcnow()
        )


@dataclass
class User:
    """用户模型"""
    username: str
    email: str
    password_hash: str = ""
    role: RoleCode = RoleCode("USER")
    is_active: bool = True
    avatar: str = ""
    last_login_at: Optional[datetime] = None
    id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        self.role = RoleCode(self.role)
        self.email = self.email.strip().lower()

    def summary(self) -> Dict[str, Any]:
        """登录返回的用户摘要"""
        data = {
            'id': self.id,
            'username': self.username,
            'email': self.email,
            'role': str(self.role)
        }
        if self.avatar:
            data['avatar'] = self.avatar
        return data

    def to_dict(self, include_sensitive: bool = False) -> Dict[str, Any]:
        """转换为字典"""
        data = {
            'id': self.id,
            'username': self.username,
            'email': self.email,
            'role': str(self.role),
            'avatar': self.avatar,
            'is_active': self.is_active,
            'last_login_at': self.last_login_at.isoformat() if self.last_login_at else None,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat()
        }

        if include_sensitive:
            data['password_hash'] = self.password_hash

        return data

    def to_document(self) -> Dict[str, Any]:
        return {
            'username': self.username,
            'email': self.email,
            'password_hash': self.password_hash,
            'role': str(self.role),
            'is_active': self.is_active,
            'avatar': self.avatar,
            'last_login_at': self.last_login_at,
            'created_at': self.created_at,
            'updated_at': self.updated_at
        }

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> 'User':
        """从数据库文档创建用户"""
        return cls(
            id=_id_str(data.get('_id')),
            username=data['username'],
            email=data['email'],
            password_hash=data.get('password_hash', ''),
            role=RoleCode(data.get('role', 'USER')),
            is_active=data.get('is_active', True),
            avatar=data.get('avatar', ''),
            last_login_at=data.get('last_login_at'),
            created_at=data.get('created_at') or utcnow(),
            updated_at=data.get('updated_at') or utcnow()
        )


@dataclass
class SessionData:
    """用户会话（存放于Redis，整体替换写入）"""
    user_id: str
    username: str
    role: str
    login_time: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'user_id': self.user_id,
            'username': self.username,
            'role': self.role,
            'login_time': self.login_time.isoformat()
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SessionData':
        return cls(
            user_id=data['user_id'],
            username=data['username'],
            role=data['role'],
            login_time=datetime.fromisoformat(data['login_time'])
        )


@dataclass
class LoginResult:
    """登录结果"""
    user: Dict[str, Any]
    access_token: str
    refresh_token: str
    token_type: str = "Bearer"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'user': self.user,
            'access_token': self.access_token,
            'refresh_token': self.refresh_token,
            'token_type': self.token_type
        }
