"""Background worker.

An :class:`AutomationWorker` repeatedly claims due instances and runs them,
and periodically releases claims abandoned by dead workers. Any number of
workers may share one instance store.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import TYPE_CHECKING
from uuid import uuid4

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID

    from litestar_automations.engine.executor import AutomationEngine

__all__ = ["AutomationWorker"]

logger = logging.getLogger(__name__)


class AutomationWorker:
    """Poll-and-run loop over the scheduler's ready set.

    Attributes:
        engine: The engine running claimed instances.
        worker_id: Identifier recorded as the owner of claimed instances.
        poll_interval: Seconds to wait when a poll found nothing to do.
        sweep_interval: Seconds between two stale-claim sweeps.

    Example:
        >>> worker = AutomationWorker(engine, worker_id="worker-1")
        >>> worker.start()
        >>> ...
        >>> await worker.stop()
    """

    def __init__(
        self,
        engine: AutomationEngine,
        worker_id: str | None = None,
        poll_interval: float = 1.0,
        sweep_interval: float = 60.0,
    ) -> None:
        self.engine = engine
        self.worker_id = worker_id or f"worker-{uuid4().hex[:8]}"
        self.poll_interval = poll_interval
        self.sweep_interval = sweep_interval
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self, now: datetime | None = None) -> int:
        """Claim the currently due instances and run each of them.

        A failure while running one instance is logged and does not stop the
        others; the engine has already failed an instance it cannot run.

        Args:
            now: Reference time for the poll; defaults to the engine's clock.

        Returns:
            Number of instances claimed.
        """
        claimed = await self.engine.scheduler.poll_ready(now, self.worker_id)
        for instance_id in claimed:
            try:
                await self.engine.run_instance(instance_id, self.worker_id)
            except Exception:
                logger.exception("Worker %s failed to run instance %s", self.worker_id, instance_id)
        return len(claimed)

    async def sweep(self, now: datetime | None = None) -> list[UUID]:
        """Release stale claims so their instances can be picked up again."""
        return await self.engine.scheduler.requeue_stale(now)

    def start(self) -> None:
        """Start the loop as a background task on the running event loop."""
        if self.is_running:
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self._run(), name=f"automation-worker:{self.worker_id}")
        logger.info("Automation worker %s started", self.worker_id)

    async def stop(self) -> None:
        """Stop the loop and wait for the current iteration to finish."""
        if self._task is None:
            return
        self._stopping.set()
        await self._task
        self._task = None
        logger.info("Automation worker %s stopped", self.worker_id)

    async def _run(self) -> None:
        last_sweep = 0.0
        while not self._stopping.is_set():
            processed = 0
            try:
                if time.monotonic() - last_sweep >= self.sweep_interval:
                    await self.sweep()
                    last_sweep = time.monotonic()
                processed = await self.run_once()
            except Exception:
                logger.exception("Automation worker %s iteration failed", self.worker_id)
            if processed == 0:
                with contextlib.suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval)
