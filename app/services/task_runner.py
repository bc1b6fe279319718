"""Owner of detached batch tasks.

Batch execute endpoints return as soon as the batch row is persisted; the
actual fan-out runs in a task registered here. Tasks are tracked by batch id
so tests can await a batch and the app lifespan can drain them on exit.
"""

import asyncio
from typing import Awaitable, Dict, Optional

from app.core.config import settings
from app.utils.logging import get_logger

LOGGER = get_logger(__name__)


class BatchTaskRunner:
    """Keeps references to running batch tasks until they finish."""

    def __init__(self):
        self._tasks: Dict[str, asyncio.Task] = {}

    def submit(self, batch_id: str, coro: Awaitable[None]) -> asyncio.Task:
        """Schedule ``coro`` on the running loop under ``batch_id``."""
        task = asyncio.ensure_future(coro)
        self._tasks[batch_id] = task
        task.add_done_callback(lambda t: self._on_done(batch_id, t))
        LOGGER.info(f"Batch task submitted: {batch_id}", extra={"active_batches": len(self._tasks)})
        return task

    def _on_done(self, batch_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(batch_id) is task:
            del self._tasks[batch_id]
        if task.cancelled():
            LOGGER.warning(f"Batch task cancelled: {batch_id}")
            return
        error = task.exception()
        if error is not None:
            LOGGER.error(f"Batch task crashed: {batch_id}: {error}", exc_info=error)

    @property
    def active(self) -> int:
        return len(self._tasks)

    def get(self, batch_id: str) -> Optional[asyncio.Task]:
        return self._tasks.get(batch_id)

    async def wait(self, batch_id: str) -> None:
        """Wait for one batch; returns immediately when it is unknown or done."""
        task = self._tasks.get(batch_id)
        if task is not None:
            await asyncio.wait({task})

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        """Wait for outstanding batches, then cancel whatever is left."""
        if not self._tasks:
            return

        timeout = settings.workflow.batch_shutdown_timeout if timeout is None else timeout
        pending = set(self._tasks.values())
        LOGGER.info(f"Waiting for {len(pending)} batch task(s) to finish", extra={"timeout": timeout})

        _, still_running = await asyncio.wait(pending, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            LOGGER.warning(f"Cancelled {len(still_running)} unfinished batch task(s)")
            await asyncio.wait(still_running)


# Global runner used by the batch services
batch_task_runner = BatchTaskRunner()


def get_batch_task_runner() -> BatchTaskRunner:
    return batch_task_runner
