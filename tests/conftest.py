"""
pytest配置文件
提供内存版MongoDB/Redis替身和通用fixtures
"""
import copy
import os
import sys
import time
from types import SimpleNamespace

import pytest
from bson import ObjectId
from pymongo.errors import ServerSelectionTimeoutError
from redis.exceptions import ConnectionError as RedisConnectionError

# 添加项目路径
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from admin_core.database import AsyncRedisClient
from admin_core.auth import (
    PasswordManager, JWTAuthenticator, SessionStore, UserManager, RoleManager,
    PermissionManager, MenuManager, RBACAuthorizer, ApiKeyManager, Authenticator,
    AuditEmitter
)


# ---------------------------------------------------------------------------
# MongoDB 替身
# ---------------------------------------------------------------------------

def _resolve(value, parts):
    """按点号路径取值，遇到数组时展开"""
    if not parts:
        return [value]
    if isinstance(value, list):
        resolved = []
        for item in value:
            resolved.extend(_resolve(item, parts))
        return resolved
    if isinstance(value, dict) and parts[0] in value:
        return _resolve(value[parts[0]], parts[1:])
    return []


def _equals(values, expected):
    if not values:
        return expected is None
    for value in values:
        if value == expected:
            return True
        if isinstance(value, list) and expected in value:
            return True
    return False


def matches(document, query):
    for key, condition in query.items():
        if key == '$or':
            if not any(matches(document, sub) for sub in condition):
                return False
            continue

        values = _resolve(document, key.split('.'))
        if isinstance(condition, dict) and any(k.startswith('$') for k in condition):
            for op, operand in condition.items():
                if op == '$in':
                    if not any(_equals(values, item) for item in operand):
                        return False
                elif op == '$ne':
                    if _equals(values, operand):
                        return False
                else:
                    raise NotImplementedError(op)
        elif not _equals(values, condition):
            return False
    return True


class FakeCursor:
    def __init__(self, documents):
        self.documents = documents

    def sort(self, key, direction=1):
        self.documents.sort(
            key=lambda d: (d.get(key) is None, d.get(key) if d.get(key) is not None else 0),
            reverse=direction == -1
        )
        return self

    def skip(self, count):
        self.documents = self.documents[count:]
        return self

    def limit(self, count):
        if count:
            self.documents = self.documents[:count]
        return self

    async def to_list(self, length=None):
        return copy.deepcopy(self.documents if length is None else self.documents[:length])

    def __aiter__(self):
        self._iter = iter(copy.deepcopy(self.documents))
        return self

    async def __anext__(self):
        try:
            return next(self._iter)
        except StopIteration:
            raise StopAsyncIteration


class FakeCollection:
    """内存集合，支持本项目用到的查询和更新操作符"""

    def __init__(self, name):
        self.name = name
        self.documents = []
        self.fail = False

    def _check(self):
        if self.fail:
            raise ServerSelectionTimeoutError(f"{self.name} unavailable")

    def _first(self, query):
        return next((d for d in self.documents if matches(d, query)), None)

    async def find_one(self, query=None):
        self._check()
        document = self._first(query or {})
        return copy.deepcopy(document) if document else None

    def find(self, query=None):
        self._check()
        return FakeCursor([d for d in self.documents if matches(d, query or {})])

    async def insert_one(self, document):
        self._check()
        document = copy.deepcopy(document)
        document.setdefault('_id', ObjectId())
        self.documents.append(document)
        return SimpleNamespace(inserted_id=document['_id'])

    async def count_documents(self, query):
        self._check()
        return sum(1 for d in self.documents if matches(d, query))

    async def delete_one(self, query):
        self._check()
        document = self._first(query)
        if document is None:
            return SimpleNamespace(deleted_count=0)
        self.documents.remove(document)
        return SimpleNamespace(deleted_count=1)

    async def delete_many(self, query):
        self._check()
        doomed = [d for d in self.documents if matches(d, query)]
        for document in doomed:
            self.documents.remove(document)
        return SimpleNamespace(deleted_count=len(doomed))

    async def create_index(self, *args, **kwargs):
        return 'index'

    @staticmethod
    def _positional_index(document, query, array_field):
        prefix = array_field + '.'
        sub_query = {k[len(prefix):]: v for k, v in query.items() if k.startswith(prefix)}
        for index, item in enumerate(document.get(array_field, [])):
            if matches(item, sub_query):
                return index
        raise ValueError("positional operator did not find the match")

    def _apply(self, document, query, update):
        for op, fields in update.items():
            for key, value in fields.items():
                if op == '$set':
                    if '.$.' in key:
                        array_field, sub_field = key.split('.$.', 1)
                        index = self._positional_index(document, query, array_field)
                        document[array_field][index][sub_field] = value
                    else:
                        document[key] = value
                elif op == '$push':
                    document.setdefault(key, []).append(value)
                elif op == '$addToSet':
                    items = document.setdefault(key, [])
                    if value not in items:
                        items.append(value)
                elif op == '$pull':
                    items = document.get(key, [])
                    if isinstance(value, dict):
                        document[key] = [i for i in items if not matches(i, value)]
                    else:
                        document[key] = [i for i in items if i != value]
                else:
                    raise NotImplementedError(op)

    async def update_one(self, query, update):
        self._check()
        document = self._first(query)
        if document is None:
            return SimpleNamespace(matched_count=0, modified_count=0)
        before = copy.deepcopy(document)
        self._apply(document, query, update)
        return SimpleNamespace(matched_count=1, modified_count=int(before != document))


class FakeDatabase:
    """按属性名惰性创建集合"""

    def __init__(self):
        self._collections = {}

    def __getattr__(self, name):
        if name.startswith('_'):
            raise AttributeError(name)
        return self[name]

    def __getitem__(self, name):
        if name not in self._collections:
            self._collections[name] = FakeCollection(name)
        return self._collections[name]


# ---------------------------------------------------------------------------
# Redis 替身
# ---------------------------------------------------------------------------

class FakeRedis:
    """redis.asyncio.Redis 的内存替身（decode_responses=True）"""

    def __init__(self):
        self.store = {}
        self.fail = False

    def _check(self):
        if self.fail:
            raise RedisConnectionError("redis unavailable")

    def _alive(self, key):
        entry = self.store.get(key)
        if entry is None:
            return None
        value, expire_at = entry
        if expire_at is not None and expire_at <= time.monotonic():
            del self.store[key]
            return None
        return entry

    async def ping(self):
        self._check()
        return True

    async def set(self, key, value, ex=None):
        self._check()
        self.store[key] = (str(value), time.monotonic() + ex if ex else None)
        return True

    async def get(self, key):
        self._check()
        entry = self._alive(key)
        return entry[0] if entry else None

    async def delete(self, *keys):
        self._check()
        return sum(1 for key in keys if self._alive(key) and self.store.pop(key))

    async def exists(self, key):
        self._check()
        return 1 if self._alive(key) else 0

    async def ttl(self, key):
        self._check()
        entry = self._alive(key)
        if entry is None:
            return -2
        if entry[1] is None:
            return -1
        return int(entry[1] - time.monotonic())

    async def incr(self, key):
        self._check()
        entry = self._alive(key)
        value = int(entry[0]) + 1 if entry else 1
        self.store[key] = (str(value), entry[1] if entry else None)
        return value

    async def expire(self, key, seconds):
        self._check()
        entry = self._alive(key)
        if entry is None:
            return False
        self.store[key] = (entry[0], time.monotonic() + seconds)
        return True

    async def aclose(self):
        return None


# ---------------------------------------------------------------------------
# fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def fake_db():
    return FakeDatabase()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def redis_client(fake_redis):
    client = AsyncRedisClient()
    client.client = fake_redis
    return client


@pytest.fixture
def password_manager():
    # 测试中降低bcrypt轮数
    return PasswordManager(rounds=4)


@pytest.fixture
def token_issuer():
    return JWTAuthenticator(secret_key="test-secret-key", issuer="admin-system")


@pytest.fixture
def session_store(redis_client):
    return SessionStore(redis_client)


@pytest.fixture
def audit():
    return AuditEmitter(queue_size=100)


@pytest.fixture
def user_manager(fake_db, password_manager):
    return UserManager(fake_db, password_manager)


@pytest.fixture
def role_manager(fake_db):
    return RoleManager(fake_db)


@pytest.fixture
def permission_manager(fake_db):
    return PermissionManager(fake_db)


@pytest.fixture
def menu_manager(fake_db, role_manager):
    return MenuManager(fake_db, role_manager)


@pytest.fixture
def rbac(role_manager, permission_manager, audit):
    return RBACAuthorizer(role_manager, permission_manager, audit)


@pytest.fixture
def api_key_manager(fake_db):
    return ApiKeyManager(fake_db)


@pytest.fixture
def authenticator(user_manager, token_issuer, session_store, password_manager, audit):
    return Authenticator(
        user_manager=user_manager,
        token_issuer=token_issuer,
        session_store=session_store,
        password_manager=password_manager,
        audit=audit
    )


def _drain(emitter):
    events = []
    while not emitter.queue.empty():
        events.append(emitter.queue.get_nowait())
        emitter.queue.task_done()
    return events


@pytest.fixture
def drain_audit():
    """取出审计队列中尚未写入的事件"""
    return _drain
