"""Background persistence of usage counter deltas.

Recording an attempt must never wait on, or fail because of, the external
counter store. :meth:`UsagePersistenceWorker.submit` therefore only puts the
delta on a bounded queue; a single ``asyncio.Task`` drains it, writes to the
store in a worker thread, and then re-runs the budget check for that provider
so spend from other writers is picked up. Admission itself does not wait on
this worker: the ledger checks its own running totals as each record lands.

When the queue is full new deltas are dropped and counted, never blocked on.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable
from dataclasses import dataclass

from switchyard.logging import get_logger
from switchyard.usage.store import UsageStore

log = get_logger("switchyard.usage.persistence")

# Graceful shutdown: max seconds to wait for pending deltas before force-stop.
_DRAIN_TIMEOUT_SECONDS = 10


@dataclass(frozen=True)
class CostDelta:
    """A pending increment for one provider's usage counter."""

    provider: str
    amount: float


class UsagePersistenceWorker:
    """Drains cost deltas into the usage store off the request path."""

    def __init__(
        self,
        store: UsageStore,
        on_persisted: Callable[[str], object] | None = None,
        max_queue_size: int = 1000,
    ) -> None:
        """Initialize the worker.

        Args:
            store: External usage counter store.
            on_persisted: Called with the provider name after each successful
                write (the ledger's budget check).
            max_queue_size: Pending deltas kept before new ones are dropped.
        """
        self._store = store
        self._on_persisted = on_persisted
        self._queue: asyncio.Queue[CostDelta] = asyncio.Queue(maxsize=max_queue_size)
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self.persisted = 0
        self.dropped = 0
        self.failed = 0

    @property
    def is_running(self) -> bool:
        """Whether the drain task is running."""
        return self._running

    @property
    def pending(self) -> int:
        """Number of deltas waiting to be written."""
        return self._queue.qsize()

    def set_on_persisted(self, callback: Callable[[str], object] | None) -> None:
        """Replace the post-write callback."""
        self._on_persisted = callback

    def submit(self, provider: str, amount: float) -> bool:
        """Queue a cost delta without blocking.

        Returns:
            False if the queue was full and the delta was dropped.
        """
        try:
            self._queue.put_nowait(CostDelta(provider=provider, amount=amount))
        except asyncio.QueueFull:
            self.dropped += 1
            log.warning(
                "usage_delta_dropped",
                provider=provider,
                amount=amount,
                dropped_total=self.dropped,
            )
            return False
        return True

    async def start(self) -> None:
        """Spawn the drain task."""
        if self._running:
            log.warning("persistence_worker_already_running")
            return
        self._running = True
        self._task = asyncio.create_task(self._drain_loop())
        log.info("persistence_worker_started")

    async def stop(self) -> None:
        """Write pending deltas (bounded wait) and stop the drain task."""
        if not self._running:
            return

        log.info("persistence_worker_stopping", pending=self.pending)
        try:
            await asyncio.wait_for(self._queue.join(), timeout=_DRAIN_TIMEOUT_SECONDS)
        except TimeoutError:
            log.warning("persistence_drain_timeout", pending=self.pending)

        self._running = False
        task = self._task
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            self._task = None
        log.info("persistence_worker_stopped", persisted=self.persisted, dropped=self.dropped)

    async def flush(self) -> None:
        """Wait until every queued delta has been processed."""
        if not self._running:
            await self.process_pending()
            return
        await self._queue.join()

    async def process_pending(self) -> int:
        """Process queued deltas inline (used when the drain task is not running).

        Returns:
            Number of deltas processed.
        """
        count = 0
        while not self._queue.empty():
            delta = self._queue.get_nowait()
            try:
                await self._persist(delta)
            finally:
                self._queue.task_done()
            count += 1
        return count

    async def _drain_loop(self) -> None:
        while self._running:
            try:
                delta = await self._queue.get()
            except asyncio.CancelledError:
                break
            try:
                await self._persist(delta)
            finally:
                self._queue.task_done()

    async def _persist(self, delta: CostDelta) -> None:
        try:
            await asyncio.to_thread(self._store.increment_usage, delta.provider, delta.amount)
        except Exception as e:
            self.failed += 1
            log.error(
                "usage_persist_failed",
                provider=delta.provider,
                amount=delta.amount,
                error=str(e),
            )
            return

        self.persisted += 1
        if self._on_persisted is None:
            return
        try:
            await asyncio.to_thread(self._on_persisted, delta.provider)
        except Exception:
            log.exception("usage_post_persist_failed", provider=delta.provider)
