"""In-process change feed for job records.

The job store publishes a fresh snapshot after every successful mutation;
progress clients may subscribe to a job id to learn about updates sooner
than their next poll. Delivery is best effort: a slow subscriber loses its
oldest queued snapshot rather than blocking the writer.
"""

import asyncio
import logging
from collections import defaultdict
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from uuid import UUID

from interview_research.schemas.job import JobSnapshot

logger = logging.getLogger(__name__)


class SubscriptionClosed(Exception):
    """Raised by Subscription.get after the subscription was closed."""


class Subscription:
    """Queue of snapshots for one job id."""

    def __init__(self, job_id: UUID, maxsize: int = 16):
        self.job_id = job_id
        self._queue: asyncio.Queue[JobSnapshot | None] = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    def offer(self, snapshot: JobSnapshot) -> None:
        if self.closed:
            return
        if self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(snapshot)

    async def get(self) -> JobSnapshot:
        """Wait for the next snapshot.

        Raises:
            SubscriptionClosed: If the subscription was closed
        """
        if self.closed and self._queue.empty():
            raise SubscriptionClosed(f"Subscription for {self.job_id} is closed")
        snapshot = await self._queue.get()
        if snapshot is None:
            raise SubscriptionClosed(f"Subscription for {self.job_id} is closed")
        return snapshot

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._queue.full():
            self._queue.get_nowait()
        # Wake a pending get()
        self._queue.put_nowait(None)


class JobEventBus:
    """Publish/subscribe of job snapshots keyed by job id."""

    def __init__(self) -> None:
        self._subscribers: dict[UUID, set[Subscription]] = defaultdict(set)

    def publish(self, snapshot: JobSnapshot) -> None:
        for subscription in list(self._subscribers.get(snapshot.id, ())):
            subscription.offer(snapshot)

    @asynccontextmanager
    async def subscribe(self, job_id: UUID) -> AsyncIterator[Subscription]:
        """Subscribe to updates for one job for the duration of the block."""
        subscription = Subscription(job_id)
        self._subscribers[job_id].add(subscription)
        logger.debug(f"Subscribed to job {job_id}")
        try:
            yield subscription
        finally:
            subscription.close()
            subscribers = self._subscribers.get(job_id)
            if subscribers is not None:
                subscribers.discard(subscription)
                if not subscribers:
                    del self._subscribers[job_id]
            logger.debug(f"Unsubscribed from job {job_id}")

    def subscriber_count(self, job_id: UUID) -> int:
        return len(self._subscribers.get(job_id, ()))
