"""Research job endpoints.

Submission returns 202 as soon as the job record exists; all pipeline work
happens in the background and is observed through the progress endpoints.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status

from interview_research.dependencies import Services, get_services
from interview_research.schemas.job import (
    JobProgressResponse,
    JobSnapshot,
    JobSubmitResponse,
    ResearchRequest,
    StallStatusResponse,
)
from interview_research.schemas.results import ArtifactResponse, ResearchResultsResponse
from interview_research.services.errors import (
    InvalidTransitionError,
    JobAlreadyRunningError,
    JobNotFoundError,
)
from interview_research.services.progress import step_message

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/research", tags=["research"])


def _not_found(job_id: UUID) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Research job {job_id} not found",
    )


@router.post(
    "",
    response_model=JobSubmitResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def submit_research(
    request: ResearchRequest,
    services: Services = Depends(get_services),
) -> JobSubmitResponse:
    """Submit a research job.

    Creates the job in pending state and schedules the pipeline in the
    background. Returns before any research starts.

    Args:
        request: Target identifiers and candidate materials
        services: Application services

    Returns:
        Job id and initial status

    Raises:
        HTTPException 500: Job record could not be created
    """
    try:
        job_id = await services.orchestrator.submit(request)
        return JobSubmitResponse(
            job_id=job_id,
            status="pending",
            message="Research job accepted",
        )
    except Exception as e:
        logger.error(f"Failed to submit research job: {type(e).__name__}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to submit research job: {str(e)}",
        )


@router.get("/stalled", response_model=list[JobSnapshot])
async def list_stalled_jobs(
    services: Services = Depends(get_services),
) -> list[JobSnapshot]:
    """List processing jobs whose record has not changed recently."""
    try:
        return await services.store.find_stalled(
            services.progress.policy.stall_threshold
        )
    except Exception as e:
        logger.error(f"Failed to list stalled jobs: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to list stalled jobs: {str(e)}",
        )


@router.get("/{job_id}", response_model=JobSnapshot)
async def get_research_job(
    job_id: UUID,
    services: Services = Depends(get_services),
) -> JobSnapshot:
    """Read the current snapshot of a job."""
    try:
        return await services.store.get(job_id)
    except JobNotFoundError:
        raise _not_found(job_id)
    except Exception as e:
        logger.error(f"Failed to read job {job_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to read research job: {str(e)}",
        )


@router.get("/{job_id}/progress", response_model=JobProgressResponse)
async def get_research_progress(
    job_id: UUID,
    services: Services = Depends(get_services),
) -> JobProgressResponse:
    """Read a job snapshot with polling and stall hints.

    next_poll_seconds follows the adaptive cadence (2s / 5s / 10s as the
    job ages) and is null once the job is terminal.
    """
    try:
        snapshot = await services.store.get(job_id)
        update = services.progress.describe(snapshot)
        return JobProgressResponse(
            job=snapshot,
            step_message=step_message(snapshot.progress_step),
            stall=StallStatusResponse(
                is_stalled=update.stall.is_stalled,
                stalled_seconds=round(update.stall.stalled_seconds, 1),
                seconds_since_update=round(update.stall.seconds_since_update, 1),
                retry_available=update.stall.retry_available,
            ),
            next_poll_seconds=update.next_poll_in,
            estimated_seconds_remaining=update.estimated_seconds_remaining,
        )
    except JobNotFoundError:
        raise _not_found(job_id)
    except Exception as e:
        logger.error(f"Failed to read progress for job {job_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to read research progress: {str(e)}",
        )


@router.get("/{job_id}/results", response_model=ResearchResultsResponse)
async def get_research_results(
    job_id: UUID,
    services: Services = Depends(get_services),
) -> ResearchResultsResponse:
    """Return stages, questions and comparison of a completed job.

    Raises:
        HTTPException 404: Job not found
        HTTPException 409: Job has not completed
    """
    try:
        snapshot = await services.store.get(job_id)
        if snapshot.status != "completed":
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Research job is {snapshot.status}; results are not available",
            )
        return await services.artifacts.load_results(job_id)
    except HTTPException:
        raise
    except JobNotFoundError:
        raise _not_found(job_id)
    except Exception as e:
        logger.error(f"Failed to load results for job {job_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to load research results: {str(e)}",
        )


@router.get("/{job_id}/artifact", response_model=ArtifactResponse)
async def get_research_artifact(
    job_id: UUID,
    services: Services = Depends(get_services),
) -> ArtifactResponse:
    """Return the raw gather-phase artifact, available even for failed jobs."""
    try:
        artifact = await services.artifacts.get_artifact(job_id)
        if artifact is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"No raw artifact for research job {job_id}",
            )
        return artifact
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to load artifact for job {job_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to load research artifact: {str(e)}",
        )


@router.post(
    "/{job_id}/retry",
    response_model=JobSubmitResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def retry_research(
    job_id: UUID,
    services: Services = Depends(get_services),
) -> JobSubmitResponse:
    """Re-run a completed or failed job from the beginning.

    Raises:
        HTTPException 404: Job not found
        HTTPException 409: Job is still pending or processing
    """
    try:
        await services.orchestrator.retry(job_id)
        return JobSubmitResponse(
            job_id=job_id,
            status="pending",
            message="Research job re-queued",
        )
    except JobNotFoundError:
        raise _not_found(job_id)
    except (InvalidTransitionError, JobAlreadyRunningError) as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to retry job {job_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to retry research job: {str(e)}",
        )
