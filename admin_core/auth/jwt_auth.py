"""
JWT令牌签发器
提供访问令牌和刷新令牌的生成、验证功能
"""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Dict, Any, Optional
from dataclasses import dataclass

import jwt

from .exceptions import TokenExpiredError, InvalidTokenError
from .models import User

ACCESS_TOKEN = 'access'
REFRESH_TOKEN = 'refresh'


@dataclass
class TokenPair:
    """令牌对"""
    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int = 7 * 24 * 3600  # 秒

    def to_dict(self) -> Dict[str, Any]:
        return {
            'access_token': self.access_token,
            'refresh_token': self.refresh_token,
            'token_type': self.token_type,
            'expires_in': self.expires_in
        }


class JWTAuthenticator:
    """JWT令牌签发与校验"""

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        access_token_expire_minutes: int = 7 * 24 * 60,
        refresh_token_expire_days: int = 30,
        issuer: str = "admin-system"
    ):
        """
        初始化JWT认证器

        Args:
            secret_key: JWT签名密钥（进程级）
            algorithm: 签名算法
            access_token_expire_minutes: 访问令牌过期时间（分钟）
            refresh_token_expire_days: 刷新令牌过期时间（天）
            issuer: 令牌发行者
        """
        if not secret_key:
            raise ValueError("JWT签名密钥不能为空")

        self.secret_key = secret_key
        self.algorithm = algorithm
        self.access_token_expire_minutes = access_token_expire_minutes
        self.refresh_token_expire_days = refresh_token_expire_days
        self.issuer = issuer

    @classmethod
    def from_settings(cls, settings) -> "JWTAuthenticator":
        """根据JWTSettings创建签发器"""
        return cls(
            secret_key=settings.secret,
            algorithm=settings.algorithm,
            access_token_expire_minutes=settings.access_token_expire_minutes,
            refresh_token_expire_days=settings.refresh_token_expire_days,
            issuer=settings.issuer
        )

    def _encode(self, user: User, token_type: str, expires_delta: timedelta) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            'sub': user.id,
            'user_id': user.id,
            'username': user.username,
            'role': str(user.role),
            'type': token_type,
            # 同一秒内的两次签发也得到不同的令牌
            'jti': secrets.token_hex(16),
            'iat': now,
            'exp': now + expires_delta,
            'iss': self.issuer
        }
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def create_access_token(self, user: User, expires_delta: Optional[timedelta] = None) -> str:
        """
        创建访问令牌

        Args:
            user: 用户对象
            expires_delta: 过期时间增量

        Returns:
            JWT访问令牌
        """
        if expires_delta is None:
            expires_delta = timedelta(minutes=self.access_token_expire_minutes)
        return self._encode(user, ACCESS_TOKEN, expires_delta)

    def create_refresh_token(self, user: User, expires_delta: Optional[timedelta] = None) -> str:
        """
        创建刷新令牌

        Args:
            user: 用户对象
            expires_delta: 过期时间增量

        Returns:
            JWT刷新令牌
        """
        if expires_delta is None:
            expires_delta = timedelta(days=self.refresh_token_expire_days)
        return self._encode(user, REFRESH_TOKEN, expires_delta)

    def create_token_pair(self, user: User) -> TokenPair:
        """创建令牌对"""
        return TokenPair(
            access_token=self.create_access_token(user),
            refresh_token=self.create_refresh_token(user),
            expires_in=self.access_token_expire_minutes * 60
        )

    def verify_token(self, token: str, expected_type: Optional[str] = None) -> Dict[str, Any]:
        """
        验证JWT令牌

        Args:
            token: JWT令牌
            expected_type: 期望的令牌类型（access/refresh）

        Returns:
            解码后的payload

        Raises:
            TokenExpiredError: 令牌过期
            InvalidTokenError: 签名不匹配、载荷格式错误、发行者或类型不符
        """
        if not token:
            raise InvalidTokenError("缺少令牌")

        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                issuer=self.issuer,
                options={'require': ['exp', 'iat', 'iss']}
            )
        except jwt.ExpiredSignatureError:
            raise TokenExpiredError()
        except jwt.InvalidTokenError as e:
            raise InvalidTokenError(f"令牌无效: {e}")

        if not payload.get('user_id') or payload.get('type') not in (ACCESS_TOKEN, REFRESH_TOKEN):
            raise InvalidTokenError("令牌载荷无效")

        if expected_type and payload['type'] != expected_type:
            raise InvalidTokenError("无效的令牌类型")

        return payload

    def remaining_lifetime(self, token: str) -> Optional[int]:
        """
        获取令牌剩余有效秒数（校验签名，不校验过期）

        Returns:
            剩余秒数，令牌没有exp声明时返回None

        Raises:
            InvalidTokenError: 签名无效
        """
        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                options={'verify_exp': False, 'verify_iss': False}
            )
        except jwt.InvalidTokenError as e:
            raise InvalidTokenError(f"令牌无效: {e}")

        exp = payload.get('exp')
        if exp is None:
            return None
        return int(exp - datetime.now(timezone.utc).timestamp())

    @staticmethod
    def extract_bearer_token(authorization_header: Optional[str]) -> str:
        """
        从Authorization头中提取Bearer令牌

        Raises:
            InvalidTokenError: 头缺失或格式无效
        """
        if not authorization_header:
            raise InvalidTokenError("请提供访问令牌")

        parts = authorization_header.split()
        if len(parts) != 2 or parts[0].lower() != 'bearer':
            raise InvalidTokenError("Authorization头格式无效")

        return parts[1]
