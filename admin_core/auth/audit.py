"""
审计事件
认证与授权操作产生结构化事件，由后台任务异步写入日志或操作日志集合

事件投递不会阻塞也不会影响主流程：队列满时丢弃新事件，
写入失败只记录日志。
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from ..logging.config import AUDIT_LOGGER
from .models import utcnow

logger = logging.getLogger(__name__)

STATUS_SUCCESS = 'success'
STATUS_FAILED = 'failed'


@dataclass
class AuditEvent:
    """审计事件"""
    action: str
    status: str = STATUS_SUCCESS
    user_id: Optional[str] = None
    username: Optional[str] = None
    resource: str = "auth"
    error_message: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)

    def to_document(self) -> Dict[str, Any]:
        return {
            'user_id': self.user_id,
            'username': self.username,
            'action': self.action,
            'resource': self.resource,
            'status': self.status,
            'error_message': self.error_message,
            'details': dict(self.extra),
            'created_at': self.created_at
        }


class LoggingAuditSink:
    """写入应用日志"""

    def __init__(self, logger_name: str = AUDIT_LOGGER):
        self.logger = logging.getLogger(logger_name)

    async def write(self, event: AuditEvent) -> None:
        self.logger.info(event.action, extra={
            'event': 'audit',
            'action': event.action,
            'status': event.status,
            'user_id': event.user_id,
            'username': event.username,
            'resource': event.resource,
            'error_message': event.error_message,
            **event.extra
        })


class MongoAuditSink:
    """写入 operation_logs 集合"""

    def __init__(self, database: AsyncIOMotorDatabase):
        self.collection = database.operation_logs

    async def write(self, event: AuditEvent) -> None:
        await self.collection.insert_one(event.to_document())


class AuditEmitter:
    """
    审计事件发射器

    emit() 只做 put_nowait，不等待写入；后台 worker 从有界队列中取出事件交给 sink。
    未调用 start() 时事件留在队列中，stop() 会先尽量写完队列中剩余的事件。
    """

    def __init__(self, sink=None, queue_size: int = 1000, enabled: bool = True):
        self.sink = sink or LoggingAuditSink()
        self.enabled = enabled
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self.dropped = 0
        self._worker: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def start(self) -> None:
        """启动后台写入任务"""
        if not self.running:
            self._worker = asyncio.create_task(self._run(), name="audit-worker")

    async def stop(self) -> None:
        """写完剩余事件后停止后台任务"""
        if not self.running:
            return
        await self.queue.join()
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None

    def emit(self, event: AuditEvent) -> bool:
        """
        投递事件

        Returns:
            是否成功入队
        """
        if not self.enabled:
            return False
        try:
            self.queue.put_nowait(event)
            return True
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("审计队列已满，事件被丢弃", extra={
                'event': 'audit_event_dropped',
                'action': event.action,
                'dropped': self.dropped
            })
            return False

    async def _run(self) -> None:
        while True:
            event = await self.queue.get()
            try:
                await self.sink.write(event)
            except Exception as e:
                logger.error("审计事件写入失败", extra={
                    'event': 'audit_write_failed',
                    'action': event.action,
                    'error': str(e)
                })
            finally:
                self.queue.task_done()
