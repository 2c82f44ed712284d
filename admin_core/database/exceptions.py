"""
数据存储异常类
"""


class DatabaseError(Exception):
    """存储层基础异常类"""

    def __init__(self, message: str, operation: str = None):
        super().__init__(message)
        self.message = message
        self.operation = operation


class StoreUnavailableError(DatabaseError):
    """持久化存储（MongoDB）不可用"""


class CacheUnavailableError(DatabaseError):
    """会话缓存（Redis）不可用"""
