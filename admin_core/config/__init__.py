"""
共享配置模块
"""

from .database import get_database_url, mask_url
from .settings import (
    Settings, MongoSettings, RedisSettings, JWTSettings, SecuritySettings,
    AuditSettings, LogSettings, get_settings, reload_settings
)

__all__ = [
    'get_database_url', 'mask_url',
    'Settings', 'MongoSettings', 'RedisSettings', 'JWTSettings',
    'SecuritySettings', 'AuditSettings', 'LogSettings',
    'get_settings', 'reload_settings'
]
