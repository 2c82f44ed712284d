"""
数据库配置模块
提供数据库连接字符串
"""

from typing import Optional

from .settings import MongoSettings, get_settings


def get_database_url(mongo: Optional[MongoSettings] = None) -> str:
    """
    获取MongoDB连接URL

    Args:
        mongo: MongoDB配置，默认读取全局配置

    Returns:
        MongoDB连接字符串
    """
    mongo = mongo or get_settings().mongo
    return mongo.url


def mask_url(url: str) -> str:
    """隐藏连接字符串中的认证信息"""
    if '@' not in url:
        return url
    scheme, _, rest = url.partition('://')
    return f"{scheme}://***@{rest.split('@', 1)[1]}"
