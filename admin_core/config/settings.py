"""
系统配置管理
"""
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_JWT_SECRET = "your-super-secret-jwt-key-change-this-in-production"


class EnvSettings(BaseSettings):
    """各配置类的基类，除环境变量外同时读取 .env 文件"""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


class MongoSettings(EnvSettings):
    """MongoDB配置"""
    url: str = "mongodb://localhost:27017"
    database: str = "admin_system"
    server_selection_timeout_ms: int = 5000
    socket_timeout_ms: int = 5000
    max_pool_size: int = 50

    model_config = SettingsConfigDict(env_prefix="MONGO_")


class RedisSettings(EnvSettings):
    """Redis配置"""
    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    timeout: float = 5.0

    model_config = SettingsConfigDict(env_prefix="REDIS_")


class JWTSettings(EnvSettings):
    """JWT令牌配置"""
    secret: str = DEFAULT_JWT_SECRET
    algorithm: str = "HS256"
    issuer: str = "admin-system"
    access_token_expire_minutes: int = 7 * 24 * 60  # 7天
    refresh_token_expire_days: int = 30

    model_config = SettingsConfigDict(env_prefix="JWT_")

    @property
    def access_token_expire_seconds(self) -> int:
        return self.access_token_expire_minutes * 60

    @property
    def refresh_token_expire_seconds(self) -> int:
        return self.refresh_token_expire_days * 24 * 60 * 60


class SecuritySettings(EnvSettings):
    """安全配置"""
    bcrypt_rounds: int = 12
    super_admin_role: str = "SUPER_ADMIN"
    default_blacklist_ttl: int = 3600  # 秒，令牌缺少exp声明时使用
    api_key_max_attempts: int = 5
    # 登录失败限制：窗口期内按账号和来源IP分别计数
    login_max_attempts: int = 10
    login_window_seconds: int = 60
    api_key_header: str = "X-API-Key"
    api_secret_header: str = "X-API-Secret"
    # 黑名单检查时缓存不可用：False拒绝请求，True降级放行
    revocation_fail_open: bool = False

    model_config = SettingsConfigDict(env_prefix="SECURITY_")


class AuditSettings(EnvSettings):
    """审计事件配置"""
    enabled: bool = True
    queue_size: int = 1000

    model_config = SettingsConfigDict(env_prefix="AUDIT_")


class LogSettings(EnvSettings):
    """日志配置"""
    level: str = "INFO"
    file: Optional[str] = None
    enable_file: bool = False

    model_config = SettingsConfigDict(env_prefix="LOG_")


class WebSettings(EnvSettings):
    """Web服务配置"""
    host: str = "0.0.0.0"
    port: int = 3000
    cors_origins: List[str] = ["http://localhost:8899"]

    model_config = SettingsConfigDict(env_prefix="WEB_")


class BootstrapSettings(EnvSettings):
    """初始化数据配置"""
    admin_username: str = "admin"
    admin_email: str = "admin@example.com"
    admin_password: str = "Admin@123456"

    model_config = SettingsConfigDict(env_prefix="DEFAULT_")


class Settings(EnvSettings):
    """主配置类"""
    # 环境
    environment: str = "development"
    debug: bool = False

    # 服务名称
    service_name: str = "admin_api"

    # 子配置
    mongo: MongoSettings = Field(default_factory=MongoSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    jwt: JWTSettings = Field(default_factory=JWTSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    audit: AuditSettings = Field(default_factory=AuditSettings)
    log: LogSettings = Field(default_factory=LogSettings)
    web: WebSettings = Field(default_factory=WebSettings)
    bootstrap: BootstrapSettings = Field(default_factory=BootstrapSettings)

    @model_validator(mode="after")
    def check_jwt_secret(self) -> "Settings":
        """非开发环境不允许使用默认签名密钥"""
        if self.environment != "development" and self.jwt.secret == DEFAULT_JWT_SECRET:
            raise ValueError("非开发环境必须通过 JWT_SECRET 设置令牌签名密钥")
        return self


@lru_cache()
def get_settings() -> Settings:
    """获取配置实例"""
    return Settings()


def reload_settings() -> Settings:
    """重新加载配置"""
    get_settings.cache_clear()
    return get_settings()
