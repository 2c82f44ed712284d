"""
MongoDB客户端连接和操作封装
针对后台管理系统的数据存储需求
"""

import logging
from typing import Optional, Any

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError

from .exceptions import StoreUnavailableError
from ..config.database import get_database_url

logger = logging.getLogger(__name__)


def to_object_id(value: Any) -> Optional[ObjectId]:
    """
    转换为ObjectId

    Returns:
        ObjectId，无法转换时返回None
    """
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


class AsyncMongoDBClient:
    """MongoDB异步客户端"""

    def __init__(
        self,
        url: str = "mongodb://localhost:27017",
        database: str = "admin_system",
        **kwargs
    ):
        self.url = url
        self.database_name = database

        self.client_options = {
            'serverSelectionTimeoutMS': 5000,
            'connectTimeoutMS': 5000,
            'socketTimeoutMS': 5000,
            'maxPoolSize': 50,
            'tz_aware': True,
            **kwargs
        }

        self.client: Optional[AsyncIOMotorClient] = None
        self.db: Optional[AsyncIOMotorDatabase] = None

    @classmethod
    def from_settings(cls, settings) -> "AsyncMongoDBClient":
        """根据MongoSettings创建客户端"""
        return cls(
            url=get_database_url(settings),
            database=settings.database,
            serverSelectionTimeoutMS=settings.server_selection_timeout_ms,
            socketTimeoutMS=settings.socket_timeout_ms,
            maxPoolSize=settings.max_pool_size
        )

    async def connect(self) -> bool:
        """建立异步数据库连接"""
        try:
            self.client = AsyncIOMotorClient(self.url, **self.client_options)
            await self.client.admin.command('ping')
            self.db = self.client[self.database_name]
            logger.info(f"Successfully connected to MongoDB (async), database {self.database_name}")
            return True
        except PyMongoError as e:
            logger.error(f"Failed to connect to MongoDB (async): {e}")
            return False

    def disconnect(self):
        """断开异步数据库连接"""
        if self.client:
            self.client.close()
            self.client = None
            self.db = None
            logger.info("Disconnected from MongoDB (async)")

    @property
    def database(self) -> AsyncIOMotorDatabase:
        if self.db is None:
            raise StoreUnavailableError("MongoDB未连接", 'database')
        return self.db

    async def ensure_indexes(self):
        """创建唯一索引和查询索引"""
        db = self.database
        try:
            await db.users.create_index([("username", ASCENDING)], unique=True)
            await db.users.create_index([("email", ASCENDING)], unique=True)
            await db.users.create_index([("role", ASCENDING)])

            await db.roles.create_index([("code", ASCENDING)], unique=True)
            await db.roles.create_index([("name", ASCENDING)], unique=True)
            # apikey全局唯一（数组子文档，稀疏索引）
            await db.roles.create_index([("api_keys.key", ASCENDING)], unique=True, sparse=True)

            await db.permissions.create_index([("code", ASCENDING)], unique=True)
            await db.permissions.create_index([("name", ASCENDING)], unique=True)

            await db.menus.create_index([("parent_id", ASCENDING), ("order", ASCENDING)])
            await db.menus.create_index([("path", ASCENDING)])

            await db.operation_logs.create_index([("created_at", DESCENDING)])
            await db.operation_logs.create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])

            logger.info("Database indexes created successfully")
        except PyMongoError as e:
            logger.error(f"Failed to create indexes: {e}")
            raise StoreUnavailableError(f"创建索引失败: {e}", 'ensure_indexes') from e
