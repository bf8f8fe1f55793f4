"""Research job orchestration.

submit() records a pending job and schedules its run as a background task,
returning before any gathering starts. The run moves the job through

    INITIALIZING → gather (parallel) → raw artifact → SYNTHESIZING
    → persist → COMPLETED

and every failure, expected or not, ends with the job marked failed.

Failure semantics:
    - individual gatherer timeout/error/empty payload: degrade and continue
    - all gatherers failed: GatherTotalFailure, no synthesis
    - synthesis timeout / malformed output: fatal, nothing persisted
    - any persistence sub-write failure: fatal, raw artifact kept
"""

import asyncio
import logging
import traceback
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from uuid import UUID

from interview_research.config import Settings, settings
from interview_research.logging_config import job_id_var
from interview_research.schemas.job import ResearchRequest
from interview_research.schemas.synthesis import SynthesisInput, SynthesisOutput
from interview_research.services.errors import (
    RUN_CANCELLED,
    GatherTotalFailureError,
    InvalidTransitionError,
    JobAlreadyRunningError,
    JobNotFoundError,
    ResearchError,
    SynthesisError,
    SynthesisTimeoutError,
    error_kind,
)
from interview_research.services.gathering import (
    COMPANY_RESEARCH,
    CV_ANALYSIS,
    JOB_ANALYSIS,
    Gatherers,
    GatherResults,
    GatherTimeouts,
    gather_all,
)
from interview_research.services.job_store import JobStore
from interview_research.services.persistence import ArtifactStore
from interview_research.services.progress import ProgressReporter
from interview_research.services.resilience import with_timeout

logger = logging.getLogger(__name__)

Synthesizer = Callable[[SynthesisInput], Awaitable[SynthesisOutput]]


@dataclass
class PipelineTimeouts:
    """Deadlines (seconds) for every external call of a run."""

    company_research: float = 20.0
    job_analysis: float = 20.0
    cv_analysis: float = 15.0
    synthesis: float = 45.0
    db_write: float = 10.0

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "PipelineTimeouts":
        return cls(
            company_research=config.company_research_timeout,
            job_analysis=config.job_analysis_timeout,
            cv_analysis=config.cv_analysis_timeout,
            synthesis=config.synthesis_timeout,
            db_write=config.db_write_timeout,
        )

    @property
    def gather(self) -> GatherTimeouts:
        return GatherTimeouts(
            company_research=self.company_research,
            job_analysis=self.job_analysis,
            cv_analysis=self.cv_analysis,
        )


class ResearchOrchestrator:
    """Runs research jobs in the background and owns their transitions."""

    def __init__(
        self,
        store: JobStore,
        artifacts: ArtifactStore,
        gatherers: Gatherers,
        synthesizer: Synthesizer,
        timeouts: PipelineTimeouts | None = None,
    ):
        """Initialize the orchestrator.

        Args:
            store: Job record store
            artifacts: Raw artifact and result persistence
            gatherers: Company, job and CV gatherers
            synthesizer: Async callable SynthesisInput -> SynthesisOutput
            timeouts: Per-call deadlines. Defaults to settings
        """
        self.store = store
        self.artifacts = artifacts
        self.gatherers = gatherers
        self.synthesizer = synthesizer
        self.timeouts = timeouts or PipelineTimeouts.from_settings()
        self._active: dict[UUID, asyncio.Task] = {}

    async def submit(self, request: ResearchRequest) -> UUID:
        """Create a pending job and schedule its run without awaiting it."""
        snapshot = await self.store.create(request)
        self.schedule(snapshot.id)
        return snapshot.id

    async def retry(self, job_id: UUID) -> UUID:
        """Re-run a completed or failed job from scratch.

        Raises:
            JobNotFoundError: If no such job exists
            InvalidTransitionError: If the job is pending or processing
        """
        if job_id in self._active:
            raise JobAlreadyRunningError(job_id)
        await self.store.reset_for_retry(job_id)
        self.schedule(job_id)
        return job_id

    def schedule(self, job_id: UUID) -> asyncio.Task:
        """Start the background run for a pending job.

        Raises:
            JobAlreadyRunningError: If this process already runs the job
        """
        if job_id in self._active:
            raise JobAlreadyRunningError(job_id)
        task = asyncio.create_task(self.run(job_id), name=f"research-{job_id}")
        self._active[job_id] = task
        task.add_done_callback(lambda _: self._active.pop(job_id, None))
        return task

    def is_running(self, job_id: UUID) -> bool:
        return job_id in self._active

    async def wait(self, job_id: UUID) -> None:
        """Wait for an active run to finish (no-op if none is active)."""
        task = self._active.get(job_id)
        if task is not None:
            await asyncio.shield(task)

    async def shutdown(self) -> None:
        """Cancel active runs; each marks its job failed before exiting."""
        tasks = list(self._active.values())
        if not tasks:
            return
        logger.info(f"Cancelling {len(tasks)} active research run(s)")
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def run(self, job_id: UUID) -> None:
        """Execute one job end to end. Never raises for pipeline failures."""
        token = job_id_var.set(str(job_id))
        reporter = ProgressReporter(self.store, job_id, self.timeouts.db_write)
        try:
            try:
                await reporter.start()
            except (InvalidTransitionError, JobNotFoundError) as e:
                # Another writer owns the job or it is gone; nothing to mark
                logger.warning(f"Not starting research run for job {job_id}: {e}")
                return

            logger.info(f"Starting research run for job {job_id}")
            await self._execute(job_id, reporter)
            logger.info(f"Research run completed for job {job_id}")
        except asyncio.CancelledError:
            logger.warning(f"Research run for job {job_id} was cancelled")
            await self._fail(job_id, "Research run was interrupted", RUN_CANCELLED, None)
            raise
        except ResearchError as e:
            logger.error(f"Research run failed for job {job_id}: [{e.kind}] {e}")
            await self._fail(job_id, str(e), e.kind, None)
        except Exception as e:
            error_msg = f"{type(e).__name__}: {str(e)}"
            logger.exception(f"Unexpected error in research run for job {job_id}")
            await self._fail(job_id, error_msg, error_kind(e), traceback.format_exc())
        finally:
            job_id_var.reset(token)

    async def _execute(self, job_id: UUID, reporter: ProgressReporter) -> None:
        request = await self.store.get_request(job_id)
        await self.artifacts.clear_results(job_id)

        gathered = await self._gather(request, reporter)
        await self.artifacts.save_raw(job_id, gathered)
        if gathered.all_failed:
            raise GatherTotalFailureError(gathered.failures())
        await reporter.advance("RAW_DATA_SAVED")

        output = await self._synthesize(request, gathered, reporter)

        await reporter.advance("FINALIZING")
        await self.artifacts.persist_synthesis(
            job_id, output, missing_inputs=gathered.missing_sections
        )
        await reporter.complete()

    async def _gather(
        self, request: ResearchRequest, reporter: ProgressReporter
    ) -> GatherResults:
        await reporter.advance("GATHERING")
        gathered = await gather_all(request, self.gatherers, self.timeouts.gather)
        for section, detail in gathered.failures().items():
            logger.warning(f"Gatherer {section} degraded: {detail}")
        if not gathered.all_failed:
            await reporter.advance(
                "GATHER_PARTIAL" if gathered.missing_sections else "GATHER_COMPLETE"
            )
        return gathered

    async def _synthesize(
        self,
        request: ResearchRequest,
        gathered: GatherResults,
        reporter: ProgressReporter,
    ) -> SynthesisOutput:
        await reporter.advance("SYNTHESIZING")
        synthesis_input = SynthesisInput(
            company=request.company,
            role=request.role,
            country=request.country,
            target_seniority=request.target_seniority,
            company_insights=gathered.value(COMPANY_RESEARCH),
            job_requirements=gathered.value(JOB_ANALYSIS),
            cv_analysis=gathered.value(CV_ANALYSIS),
            missing_sections=gathered.missing_sections,
        )
        outcome = await with_timeout(
            lambda: self.synthesizer(synthesis_input),
            self.timeouts.synthesis,
            "synthesis",
        )
        if not outcome.ok:
            if outcome.reason == "timeout":
                raise SynthesisTimeoutError(self.timeouts.synthesis)
            if isinstance(outcome.error, ResearchError):
                raise outcome.error
            raise SynthesisError(f"Synthesis failed: {outcome.detail}") from outcome.error
        await reporter.advance("SYNTHESIS_COMPLETE")
        return outcome.value

    async def _fail(
        self,
        job_id: UUID,
        message: str,
        kind: str,
        traceback_text: str | None,
    ) -> None:
        """Mark the job (and its artifact, if any) failed.

        The job transition is attempted even if the artifact update fails.
        A job that never left pending (e.g. lost the start race) is left alone.
        """
        try:
            await self.artifacts.mark_failed(job_id, message)
        except ResearchError as e:
            logger.error(f"Could not record failure on artifact for job {job_id}: {e}")

        outcome = await with_timeout(
            lambda: self.store.fail(job_id, message, kind, traceback_text),
            self.timeouts.db_write,
            "mark failed",
        )
        if not outcome.ok:
            logger.error(
                f"Could not mark job {job_id} failed ({outcome.detail}); "
                f"original error: {message}"
            )
