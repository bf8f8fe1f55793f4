"""Client-side job progress tracking.

ProgressClient.track() polls a job until it reaches a terminal status,
yielding one ProgressUpdate per read. Polling backs off as the job ages
(fast while a quick finish is likely, slower for long-tail jobs) and each
update carries stall indicators derived from the record's updated_at.

An optional change-feed subscription lets an update arrive before the next
poll tick; the poll is still what produces the emitted snapshot, so a
broken subscription only costs latency. Cancelling the stream (the cancel
event, or closing the generator) stops polling and never writes to the job.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import AsyncExitStack
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

import httpx

from interview_research.config import Settings, settings
from interview_research.schemas.job import JobSnapshot
from interview_research.services.events import JobEventBus, Subscription
from interview_research.services.job_store import JobStore
from interview_research.services.resilience import with_retry
from interview_research.utils.time import utcnow

logger = logging.getLogger(__name__)

MAX_ESTIMATE_SECONDS = 60.0


@dataclass(frozen=True)
class PollingPolicy:
    """Polling cadence and stall thresholds, in seconds."""

    fast_interval: float = 2.0
    medium_interval: float = 5.0
    slow_interval: float = 10.0
    fast_window: float = 30.0
    medium_window: float = 60.0
    stall_threshold: float = 30.0
    retry_threshold: float = 45.0
    fetch_attempts: int = 3
    fetch_base_delay: float = 1.0
    fetch_max_delay: float = 8.0

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "PollingPolicy":
        return cls(
            fast_interval=config.poll_fast_interval,
            medium_interval=config.poll_medium_interval,
            slow_interval=config.poll_slow_interval,
            fast_window=config.poll_fast_window,
            medium_window=config.poll_medium_window,
            stall_threshold=config.stall_threshold,
            retry_threshold=config.stall_retry_threshold,
            fetch_attempts=config.retry_max_attempts,
            fetch_base_delay=config.retry_base_delay,
            fetch_max_delay=config.retry_max_delay,
        )


@dataclass(frozen=True)
class StallStatus:
    is_stalled: bool
    stalled_seconds: float
    seconds_since_update: float
    retry_available: bool


@dataclass(frozen=True)
class ProgressUpdate:
    """One emission of the progress stream."""

    snapshot: JobSnapshot
    stall: StallStatus
    next_poll_in: float | None
    estimated_seconds_remaining: float | None

    @property
    def is_terminal(self) -> bool:
        return self.snapshot.is_terminal


def poll_interval_for(
    snapshot: JobSnapshot, now: datetime, policy: PollingPolicy
) -> float | None:
    """Delay before the next poll, or None once the job is terminal.

    Keyed on time since started_at: under fast_window → fast interval,
    under medium_window → medium interval, otherwise slow interval. Jobs
    that have not started yet are polled at the fast interval.
    """
    if snapshot.is_terminal:
        return None
    if snapshot.started_at is None:
        return policy.fast_interval
    elapsed = (now - snapshot.started_at).total_seconds()
    if elapsed < policy.fast_window:
        return policy.fast_interval
    if elapsed < policy.medium_window:
        return policy.medium_interval
    return policy.slow_interval


def detect_stall(
    snapshot: JobSnapshot, now: datetime, policy: PollingPolicy
) -> StallStatus:
    """Stall indicators for a snapshot read at ``now``.

    Only processing jobs can stall. stalled_seconds counts from the moment
    the stall threshold was crossed, not from the last update.
    """
    since_update = max(0.0, (now - snapshot.updated_at).total_seconds())
    if snapshot.status != "processing" or since_update <= policy.stall_threshold:
        return StallStatus(
            is_stalled=False,
            stalled_seconds=0.0,
            seconds_since_update=since_update,
            retry_available=False,
        )
    return StallStatus(
        is_stalled=True,
        stalled_seconds=since_update - policy.stall_threshold,
        seconds_since_update=since_update,
        retry_available=since_update >= policy.retry_threshold,
    )


def estimate_completion(snapshot: JobSnapshot, now: datetime) -> float | None:
    """Seconds remaining, extrapolated from percentage and elapsed time.

    Returns None when there is nothing to extrapolate from, 0 once the job
    is terminal. Capped at MAX_ESTIMATE_SECONDS.
    """
    if snapshot.is_terminal:
        return 0.0
    if snapshot.started_at is None or snapshot.progress_percentage <= 0:
        return None
    elapsed = max(0.0, (now - snapshot.started_at).total_seconds())
    rate = snapshot.progress_percentage / elapsed if elapsed else 0.0
    if rate <= 0:
        return None
    remaining = (100 - snapshot.progress_percentage) / rate
    return round(min(remaining, MAX_ESTIMATE_SECONDS), 1)


class SnapshotSource(Protocol):
    async def fetch(self, job_id: UUID) -> JobSnapshot: ...


class StoreSnapshotSource:
    """Reads snapshots straight from the job store (in-process consumers)."""

    def __init__(self, store: JobStore):
        self.store = store

    async def fetch(self, job_id: UUID) -> JobSnapshot:
        return await self.store.get(job_id)


class HttpSnapshotSource:
    """Reads snapshots from the HTTP API (remote consumers).

    One httpx client is kept for the lifetime of the source so successive
    polls reuse connections. Pass ``client`` to share an existing one; a
    client created here is closed by aclose() or on leaving ``async with``.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url, transport=self._transport, timeout=self.timeout
            )
            self._owns_client = True
        return self._client

    async def fetch(self, job_id: UUID) -> JobSnapshot:
        response = await self.client.get(f"{self.base_url}/api/v1/research/{job_id}")
        response.raise_for_status()
        return JobSnapshot.model_validate(response.json())

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> "HttpSnapshotSource":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()


class ProgressClient:
    """Tracks jobs through polling, optionally accelerated by push updates."""

    def __init__(
        self,
        source: SnapshotSource,
        policy: PollingPolicy | None = None,
        events: JobEventBus | None = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        subscription_timeout: float | None = None,
    ):
        """Initialize the client.

        Args:
            source: Where snapshots are read from
            policy: Polling cadence and stall thresholds. Defaults to settings
            events: Optional change feed used to cut poll waits short
            clock: Current time provider (injectable for tests)
            sleep: Sleep function used for fetch retry backoff
            subscription_timeout: Give up on the subscription after this many
                seconds without a push (None keeps it for the whole stream)
        """
        self.source = source
        self.policy = policy or PollingPolicy.from_settings()
        self.events = events
        self.clock = clock
        self.sleep = sleep
        self.subscription_timeout = subscription_timeout

    def describe(self, snapshot: JobSnapshot, now: datetime | None = None) -> ProgressUpdate:
        """Derive polling/stall/estimate hints for a snapshot."""
        now = now or self.clock()
        return ProgressUpdate(
            snapshot=snapshot,
            stall=detect_stall(snapshot, now, self.policy),
            next_poll_in=poll_interval_for(snapshot, now, self.policy),
            estimated_seconds_remaining=estimate_completion(snapshot, now),
        )

    async def fetch(self, job_id: UUID) -> JobSnapshot:
        """Read one snapshot, retrying transient failures with backoff."""
        return await with_retry(
            lambda: self.source.fetch(job_id),
            label=f"Progress fetch for job {job_id}",
            max_attempts=self.policy.fetch_attempts,
            base_delay=self.policy.fetch_base_delay,
            max_delay=self.policy.fetch_max_delay,
            sleep=self.sleep,
        )

    async def track(
        self, job_id: UUID, cancel: asyncio.Event | None = None
    ) -> AsyncIterator[ProgressUpdate]:
        """Stream progress updates until the job is terminal or cancelled.

        Args:
            job_id: Job to track
            cancel: Optional event; setting it ends the stream

        Yields:
            ProgressUpdate per poll; the last one is terminal unless the
            stream was cancelled
        """
        cancel = cancel or asyncio.Event()
        async with AsyncExitStack() as stack:
            subscription: Subscription | None = None
            if self.events is not None:
                subscription = await stack.enter_async_context(
                    self.events.subscribe(job_id)
                )

            while not cancel.is_set():
                snapshot = await self.fetch(job_id)
                update = self.describe(snapshot)
                yield update
                if update.next_poll_in is None:
                    logger.debug(f"Job {job_id} reached {snapshot.status}; tracking stopped")
                    return
                subscription = await self._wait(update.next_poll_in, subscription, cancel)

    async def _wait(
        self,
        interval: float,
        subscription: Subscription | None,
        cancel: asyncio.Event,
    ) -> Subscription | None:
        """Wait for the poll interval, a push update, or cancellation.

        Returns the subscription to keep using; None once it has failed, so
        later waits fall back to plain polling.
        """
        waiters: dict[asyncio.Task, str] = {
            asyncio.ensure_future(asyncio.sleep(interval)): "tick",
            asyncio.ensure_future(cancel.wait()): "cancel",
        }
        if subscription is not None:
            waiters[asyncio.ensure_future(self._next_push(subscription))] = "push"

        try:
            done, _ = await asyncio.wait(
                waiters.keys(), return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for task in waiters:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*waiters.keys(), return_exceptions=True)

        for task in done:
            if waiters[task] == "push" and task.exception() is not None:
                error = task.exception()
                logger.warning(
                    f"Progress subscription failed ({type(error).__name__}: {error}); "
                    f"falling back to polling"
                )
                return None
        return subscription

    async def _next_push(self, subscription: Subscription) -> JobSnapshot:
        if self.subscription_timeout is None:
            return await subscription.get()
        async with asyncio.timeout(self.subscription_timeout):
            return await subscription.get()
