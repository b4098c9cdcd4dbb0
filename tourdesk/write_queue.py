"""
EntityWriteQueue — serialises remote writes per entity id.

This is a pure asyncio concurrency primitive with no network dependencies.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from .const import WRITE_DELAY

_LOGGER = logging.getLogger(__name__)


class EntityWriteQueue:
    """
    Serialises writes for each entity.

    Writes for different entities run fully in parallel; writes for the same
    entity are queued and executed one at a time, in submission order, with
    write_delay seconds between them. A worker lives only while its entity
    has queued work, so idle entities hold no queue and no task.
    """

    def __init__(self, write_delay: float = WRITE_DELAY) -> None:
        self.write_delay = write_delay
        # entity_id → asyncio.Queue of (job_type, coro_factory, Future) triples
        self._queues: dict[str, asyncio.Queue] = {}
        # entity_id → worker Task
        self._workers: dict[str, asyncio.Task] = {}

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    async def enqueue(self, entity_id: str, job_type: str, coro_factory: Callable[[], Any]) -> asyncio.Future:
        """
        Schedule coro_factory() on the queue for entity_id.

        The returned Future resolves with the job's result or exception.
        """
        fut: asyncio.Future = asyncio.get_running_loop().create_future()
        self._queue_for(entity_id).put_nowait((job_type, coro_factory, fut))
        return fut

    async def submit(self, entity_id: str, job_type: str, coro_factory: Callable[[], Any]) -> Any:
        """Enqueue and wait for the result (exceptions propagate)."""
        fut = await self.enqueue(entity_id, job_type, coro_factory)
        return await fut

    def active(self) -> list[str]:
        """Entity ids that currently have a worker."""
        return list(self._workers)

    async def shutdown(self) -> None:
        """Cancel all worker tasks and drain queues; waiting futures are cancelled."""
        for task in self._workers.values():
            task.cancel()
        results = await asyncio.gather(*self._workers.values(), return_exceptions=True)
        for result in results:
            if isinstance(result, Exception) and not isinstance(result, asyncio.CancelledError):
                _LOGGER.debug("EntityWriteQueue worker error during shutdown: %s", result)
        for queue in self._queues.values():
            while not queue.empty():
                _, _, fut = queue.get_nowait()
                if not fut.done():
                    fut.cancel()
        self._workers.clear()
        self._queues.clear()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _queue_for(self, entity_id: str) -> asyncio.Queue:
        """Queue for entity_id, with a live worker serving it."""
        queue = self._queues.get(entity_id)
        if queue is None:
            queue = self._queues[entity_id] = asyncio.Queue()
        worker = self._workers.get(entity_id)
        if worker is None or worker.done():
            self._workers[entity_id] = asyncio.ensure_future(self._worker(entity_id, queue))
        return queue

    def _release(self, entity_id: str, queue: asyncio.Queue) -> None:
        if self._queues.get(entity_id) is queue:
            del self._queues[entity_id]
            self._workers.pop(entity_id, None)

    async def _worker(self, entity_id: str, queue: asyncio.Queue) -> None:
        """Consume jobs from this entity's queue until it runs dry."""
        while not queue.empty():
            job_type, coro_factory, fut = queue.get_nowait()
            try:
                result = await coro_factory()
                if not fut.done():
                    fut.set_result(result)
            except Exception as exc:  # noqa: BLE001
                _LOGGER.debug("%s job for %s failed: %s", job_type, entity_id, exc)
                if not fut.done():
                    # waiter must not hold this worker's frame through the traceback
                    fut.set_exception(exc.with_traceback(None))
            finally:
                queue.task_done()
            if self.write_delay:
                await asyncio.sleep(self.write_delay)
        self._release(entity_id, queue)
