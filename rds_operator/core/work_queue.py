"""
Keyed work queue for reconciliations.

Every Database has its own FIFO of pending work items so that events for
one resource are handled strictly in arrival order and never concurrently,
while distinct resources are reconciled in parallel by a bounded pool of
workers. A slow provisioning call therefore only delays its own resource.

Usage:
    >>> queue = KeyedWorkQueue(max_workers=4)
    >>> queue.start()
    >>> queue.add("default/db1", lambda: engine.handle_create(db), "create")
    >>> await queue.join()
    >>> await queue.stop()
"""
import asyncio
from collections import deque
from typing import Awaitable, Callable, Deque, Dict, List, Optional, Set, Tuple

import structlog

from rds_operator.services import metrics

logger = structlog.get_logger(__name__)

Job = Callable[[], Awaitable[None]]


class KeyedWorkQueue:
    """
    Per-key serialized, cross-key parallel work queue.

    A key is in the ready queue at most once; the worker that picks it up
    drains that key's FIFO before releasing it, including items appended
    while it was busy.
    """

    def __init__(self, max_workers: int = 1):
        """
        Initialize the work queue.

        Args:
            max_workers: Number of keys processed concurrently (1 = single in-order worker)
        """
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.max_workers = max_workers
        self.running = False
        self._pending: Dict[str, Deque[Tuple[str, Job]]] = {}
        self._scheduled: Set[str] = set()
        self._active: Set[str] = set()
        self._ready: asyncio.Queue = asyncio.Queue()
        self._workers: List[asyncio.Task] = []

    def add(self, key: str, job: Job, description: str = "") -> None:
        """Append a work item to the FIFO of ``key``."""
        self._pending.setdefault(key, deque()).append((description, job))
        metrics.queue_depth.inc()
        if key not in self._scheduled:
            self._scheduled.add(key)
            self._ready.put_nowait(key)
        logger.debug("work_item_enqueued", key=key, item=description, pending=self.pending_count(key))

    def pending_count(self, key: Optional[str] = None) -> int:
        if key is not None:
            return len(self._pending.get(key, ()))
        return sum(len(items) for items in self._pending.values())

    def is_active(self, key: str) -> bool:
        return key in self._active

    def start(self) -> None:
        """Start the worker pool."""
        if self.running:
            return
        self.running = True
        self._workers = [
            asyncio.create_task(self._worker(worker_id), name=f"reconcile-worker-{worker_id}")
            for worker_id in range(1, self.max_workers + 1)
        ]
        logger.info("work_queue_started", workers=self.max_workers)

    async def join(self) -> None:
        """Wait until every queued item has been processed."""
        await self._ready.join()

    async def stop(self) -> None:
        """Stop workers; items still pending are dropped."""
        if not self.running:
            return
        self.running = False
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("work_queue_stopped", dropped=self.pending_count())

    async def _worker(self, worker_id: int) -> None:
        while True:
            key = await self._ready.get()
            self._active.add(key)
            metrics.queue_processing.inc()
            try:
                items = self._pending.get(key, deque())
                while items:
                    description, job = items.popleft()
                    metrics.queue_depth.dec()
                    try:
                        await job()
                    except asyncio.CancelledError:
                        raise
                    except Exception as e:
                        logger.error(
                            "work_item_failed",
                            worker_id=worker_id,
                            key=key,
                            item=description,
                            error=str(e),
                            exc_info=True,
                        )
                self._pending.pop(key, None)
            finally:
                self._active.discard(key)
                self._scheduled.discard(key)
                metrics.queue_processing.dec()
                self._ready.task_done()
