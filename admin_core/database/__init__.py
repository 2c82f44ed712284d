"""
数据库客户端包
"""

from .exceptions import DatabaseError, StoreUnavailableError, CacheUnavailableError
from .mongodb_client import AsyncMongoDBClient, to_object_id
from .redis_client import AsyncRedisClient

__all__ = [
    'DatabaseError',
    'StoreUnavailableError',
    'CacheUnavailableError',
    'AsyncMongoDBClient',
    'AsyncRedisClient',
    'to_object_id'
]
