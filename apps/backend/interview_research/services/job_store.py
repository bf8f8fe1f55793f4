"""Job record store with atomic progress updates.

Every mutation of a job row is a single UPDATE statement: status, step,
percentage, timestamps and error fields change together or not at all, so
concurrent pollers never see a torn record. The statement's WHERE clause
doubles as the transition guard (e.g. only a pending job can be started),
which is what makes a job id a single-writer resource across processes.
"""

import logging
from datetime import timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from interview_research.models import ResearchJob
from interview_research.models.research_job import (
    JOB_COMPLETED,
    JOB_FAILED,
    JOB_PENDING,
    JOB_PROCESSING,
    TERMINAL_STATUSES,
)
from interview_research.schemas.job import JobSnapshot, ResearchRequest
from interview_research.services.errors import (
    InvalidTransitionError,
    JobNotFoundError,
)
from interview_research.services.events import JobEventBus
from interview_research.utils.time import utcnow

logger = logging.getLogger(__name__)

QUEUED_STEP = "QUEUED"

# Legal source states for each requested status. Progress-only updates
# (status=None) are accepted while processing.
TRANSITION_SOURCES: dict[str | None, tuple[str, ...]] = {
    None: (JOB_PROCESSING,),
    JOB_PROCESSING: (JOB_PENDING, JOB_PROCESSING),
    JOB_COMPLETED: (JOB_PROCESSING,),
    JOB_FAILED: (JOB_PROCESSING,),
}


class JobStore:
    """Persistence and state transitions for ResearchJob rows."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        events: JobEventBus | None = None,
    ):
        self._session_factory = session_factory
        self.events = events or JobEventBus()

    async def create(self, request: ResearchRequest) -> JobSnapshot:
        """Create a pending job record."""
        job = ResearchJob(
            company=request.company,
            role=request.role,
            country=request.country,
            role_links=list(request.role_links),
            cv_text=request.cv_text,
            target_seniority=request.target_seniority,
            status=JOB_PENDING,
            progress_step=QUEUED_STEP,
            progress_percentage=0,
        )
        async with self._session_factory() as session:
            session.add(job)
            await session.commit()
            snapshot = JobSnapshot.model_validate(job)

        logger.info(f"Created research job {snapshot.id} for {request.company}")
        self.events.publish(snapshot)
        return snapshot

    async def get(self, job_id: UUID) -> JobSnapshot:
        """Read the current snapshot of a job.

        Raises:
            JobNotFoundError: If no such job exists
        """
        async with self._session_factory() as session:
            return await self._load(session, job_id)

    async def get_request(self, job_id: UUID) -> ResearchRequest:
        """Read the submission inputs stored on a job."""
        async with self._session_factory() as session:
            job = await session.get(ResearchJob, job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            return ResearchRequest.model_validate(job)

    async def update_progress(
        self,
        job_id: UUID,
        *,
        status: str | None = None,
        step: str | None = None,
        percentage: int | None = None,
        error_message: str | None = None,
        error_kind: str | None = None,
        error_traceback: str | None = None,
        allowed_from: tuple[str, ...] | None = None,
    ) -> JobSnapshot:
        """Apply a progress/status change atomically.

        Args:
            job_id: Job to update
            status: New status (processing/completed/failed), or None to
                update progress only
            step: Progress step label
            percentage: Progress percentage; lower values than the stored
                one are ignored so progress never goes backwards
            error_message / error_kind / error_traceback: Failure details,
                applied only when status is failed
            allowed_from: Override the legal source states for this change

        Returns:
            The snapshot after the update

        Raises:
            JobNotFoundError: If no such job exists
            InvalidTransitionError: If the job is not in a legal source state
        """
        if status == JOB_PENDING:
            raise ValueError("Jobs return to pending only through reset_for_retry")
        if status not in TRANSITION_SOURCES:
            raise ValueError(f"Unknown job status '{status}'")
        if percentage is not None and not 0 <= percentage <= 100:
            raise ValueError(f"Progress percentage out of range: {percentage}")

        now = utcnow()
        values: dict[str, Any] = {"updated_at": now}

        if status is not None:
            values["status"] = status
            if status == JOB_PROCESSING:
                values["started_at"] = func.coalesce(ResearchJob.started_at, now)
            else:
                values["completed_at"] = now
            if status == JOB_FAILED:
                values["error_message"] = error_message or "Unknown error"
                values["error_kind"] = error_kind
                values["error_traceback"] = error_traceback
            else:
                values["error_message"] = None
                values["error_kind"] = None
                values["error_traceback"] = None

        if step is not None:
            values["progress_step"] = step

        if percentage is not None:
            values["progress_percentage"] = case(
                (
                    ResearchJob.progress_percentage > percentage,
                    ResearchJob.progress_percentage,
                ),
                else_=percentage,
            )

        sources = allowed_from or TRANSITION_SOURCES[status]
        stmt = (
            update(ResearchJob)
            .where(ResearchJob.id == job_id, ResearchJob.status.in_(sources))
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            if result.rowcount == 0:
                await session.rollback()
                current = await session.scalar(
                    select(ResearchJob.status).where(ResearchJob.id == job_id)
                )
                if current is None:
                    raise JobNotFoundError(job_id)
                raise InvalidTransitionError(
                    job_id, current, status or "progress update"
                )
            await session.commit()
            snapshot = await self._load(session, job_id)

        self.events.publish(snapshot)
        return snapshot

    async def start(self, job_id: UUID, step: str, percentage: int) -> JobSnapshot:
        """Claim a pending job for a run (pending → processing only)."""
        return await self.update_progress(
            job_id,
            status=JOB_PROCESSING,
            step=step,
            percentage=percentage,
            allowed_from=(JOB_PENDING,),
        )

    async def advance(self, job_id: UUID, step: str, percentage: int) -> JobSnapshot:
        return await self.update_progress(job_id, step=step, percentage=percentage)

    async def complete(self, job_id: UUID, step: str = "COMPLETED") -> JobSnapshot:
        return await self.update_progress(
            job_id, status=JOB_COMPLETED, step=step, percentage=100
        )

    async def fail(
        self,
        job_id: UUID,
        message: str,
        kind: str | None = None,
        traceback_text: str | None = None,
        step: str = "FAILED",
    ) -> JobSnapshot:
        return await self.update_progress(
            job_id,
            status=JOB_FAILED,
            step=step,
            error_message=message,
            error_kind=kind,
            error_traceback=traceback_text,
        )

    async def reset_for_retry(self, job_id: UUID) -> JobSnapshot:
        """Return a terminal job to pending for a brand-new run.

        Raises:
            JobNotFoundError: If no such job exists
            InvalidTransitionError: If the job is not completed or failed
        """
        stmt = (
            update(ResearchJob)
            .where(
                ResearchJob.id == job_id,
                ResearchJob.status.in_(tuple(TERMINAL_STATUSES)),
            )
            .values(
                status=JOB_PENDING,
                progress_step=QUEUED_STEP,
                progress_percentage=0,
                error_message=None,
                error_kind=None,
                error_traceback=None,
                started_at=None,
                completed_at=None,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            if result.rowcount == 0:
                await session.rollback()
                current = await session.scalar(
                    select(ResearchJob.status).where(ResearchJob.id == job_id)
                )
                if current is None:
                    raise JobNotFoundError(job_id)
                raise InvalidTransitionError(job_id, current, JOB_PENDING)
            await session.commit()
            snapshot = await self._load(session, job_id)

        logger.info(f"Job {job_id} reset to pending for retry")
        self.events.publish(snapshot)
        return snapshot

    async def find_stalled(
        self, threshold_seconds: float, limit: int = 100
    ) -> list[JobSnapshot]:
        """Processing jobs whose record has not changed within the threshold."""
        cutoff = utcnow() - timedelta(seconds=threshold_seconds)
        async with self._session_factory() as session:
            result = await session.execute(
                select(ResearchJob)
                .where(
                    ResearchJob.status == JOB_PROCESSING,
                    ResearchJob.updated_at < cutoff,
                )
                .order_by(ResearchJob.updated_at)
                .limit(limit)
            )
            return [JobSnapshot.model_validate(job) for job in result.scalars()]

    async def _load(self, session: AsyncSession, job_id: UUID) -> JobSnapshot:
        result = await session.execute(
            select(ResearchJob)
            .where(ResearchJob.id == job_id)
            .execution_options(populate_existing=True)
        )
        job = result.scalar_one_or_none()
        if job is None:
            raise JobNotFoundError(job_id)
        return JobSnapshot.model_validate(job)
