"""
Background processing queue.

Uploads and reprocess requests hand document ids to a ``TaskQueue``. In a
single process that is an ``AsyncioTaskQueue`` (bounded queue, fixed number
of worker tasks); with ``USE_CELERY`` the ids are sent to Celery workers
instead. Either way the work is ``DocumentService.process_document``.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, List, Optional

import structlog

from voxe_kb.core.config import settings

logger = structlog.get_logger(__name__)

Handler = Callable[[int], Awaitable[Any]]


class TaskQueue(ABC):
    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass

    @abstractmethod
    async def enqueue(self, document_id: int) -> bool:
        """Queue a document for processing. False when it could not be queued."""


class AsyncioTaskQueue(TaskQueue):
    def __init__(
        self,
        handler: Handler,
        workers: int = 2,
        maxsize: int = 100,
        enqueue_timeout: float = 5.0,
    ):
        self.handler = handler
        self.workers = max(workers, 1)
        self.enqueue_timeout = enqueue_timeout
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._tasks: List[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    async def start(self) -> None:
        if self.running:
            return
        for i in range(self.workers):
            self._tasks.append(asyncio.create_task(self._worker(i), name=f"kb-worker-{i}"))
        logger.info("Processing queue started", workers=self.workers, maxsize=self._queue.maxsize)

    async def _worker(self, worker_id: int) -> None:
        while True:
            document_id = await self._queue.get()
            try:
                await self.handler(document_id)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    "Processing task failed",
                    worker=worker_id,
                    document_id=document_id,
                    error=str(e),
                    exc_info=True,
                )
            finally:
                self._queue.task_done()

    async def enqueue(self, document_id: int) -> bool:
        try:
            await asyncio.wait_for(self._queue.put(document_id), timeout=self.enqueue_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Processing queue full",
                document_id=document_id,
                waited=self.enqueue_timeout,
                size=self._queue.qsize(),
            )
            return False
        logger.info("Document queued", document_id=document_id, size=self._queue.qsize())
        return True

    async def join(self) -> None:
        """Wait until every queued document has been handled."""
        await self._queue.join()

    async def stop(self, drain: bool = True) -> None:
        if drain and self._tasks:
            await self.join()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Processing queue stopped")


class CeleryTaskQueue(TaskQueue):
    """Hands document ids to Celery workers."""

    def __init__(self, send_timeout: float = 5.0):
        self.send_timeout = send_timeout

    async def enqueue(self, document_id: int) -> bool:
        from voxe_kb.tasks.document_tasks import process_document_task

        try:
            await asyncio.wait_for(
                asyncio.to_thread(process_document_task.delay, document_id),
                timeout=self.send_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Celery broker did not accept task in time", document_id=document_id)
            return False
        except Exception as e:
            # kombu raises several unrelated types when the broker is down
            logger.error("Failed to send Celery task", document_id=document_id, error=str(e))
            return False
        logger.info("Document sent to Celery", document_id=document_id)
        return True


def build_task_queue(handler: Handler) -> TaskQueue:
    if settings.USE_CELERY:
        return CeleryTaskQueue(send_timeout=settings.PROCESSING_ENQUEUE_TIMEOUT)
    return AsyncioTaskQueue(
        handler,
        workers=settings.PROCESSING_WORKERS,
        maxsize=settings.PROCESSING_QUEUE_SIZE,
        enqueue_timeout=settings.PROCESSING_ENQUEUE_TIMEOUT,
    )


_task_queue: Optional[TaskQueue] = None


def set_task_queue(queue: Optional[TaskQueue]) -> None:
    global _task_queue
    _task_queue = queue


def get_task_queue() -> TaskQueue:
    if _task_queue is None:
        raise RuntimeError("Processing queue is not initialised")
    return _task_queue
