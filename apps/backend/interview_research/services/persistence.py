"""Artifact and synthesis-output persistence.

Writes are grouped into named sub-writes. Each sub-write runs in its own
transaction under its own deadline, and a failure surfaces as
PersistenceWriteError naming it. Sub-writes that already committed are
kept; the raw artifact written after the gather phase is never touched by
the synthesis writes.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar
from uuid import UUID, uuid4

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from interview_research.models import (
    CvJobComparison,
    InterviewQuestion,
    InterviewStage,
    SearchArtifact,
)
from interview_research.models.artifact import (
    ARTIFACT_COMPLETE,
    ARTIFACT_FAILED,
    ARTIFACT_RAW_SAVED,
)
from interview_research.schemas.results import (
    ArtifactResponse,
    ComparisonResponse,
    ResearchResultsResponse,
    StageResponse,
)
from interview_research.schemas.synthesis import StageDraft, SynthesisOutput
from interview_research.services.errors import PersistenceWriteError
from interview_research.services.gathering import (
    COMPANY_RESEARCH,
    CV_ANALYSIS,
    JOB_ANALYSIS,
    GatherResults,
)
from interview_research.services.resilience import with_timeout
from interview_research.utils.time import utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Question categories attach to the stage where they are most likely asked
CATEGORY_STAGE_ORDER = {
    "behavioral": 1,
    "cultural_fit": 1,
    "technical": 2,
    "role_specific": 2,
    "situational": 3,
    "experience_based": 3,
}
DEFAULT_STAGE_ORDER = 4


def stage_for_category(category: str, stages: list[tuple[UUID, StageDraft]]) -> UUID:
    """Pick the stage a question category belongs to.

    Stages are matched by position (1-based, in order_index order); when the
    preferred position does not exist the first stage is used.
    """
    ordered = sorted(stages, key=lambda item: item[1].order_index)
    position = CATEGORY_STAGE_ORDER.get(category, DEFAULT_STAGE_ORDER)
    if position <= len(ordered):
        return ordered[position - 1][0]
    return ordered[0][0]


def _dump(value: Any) -> dict[str, Any] | None:
    return value.model_dump(mode="json") if value is not None else None


class ArtifactStore:
    """Persistence for raw artifacts and synthesized results of a job."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        write_timeout: float,
    ):
        self._session_factory = session_factory
        self.write_timeout = write_timeout

    async def _bounded(
        self, sub_write: str, operation: Callable[[], Awaitable[T]]
    ) -> T:
        outcome = await with_timeout(operation, self.write_timeout, sub_write)
        if not outcome.ok:
            raise PersistenceWriteError(sub_write, outcome.detail or "unknown error") from outcome.error
        return outcome.value

    async def save_raw(self, job_id: UUID, gathered: GatherResults) -> None:
        """Upsert the raw gather-phase artifact for a job."""

        async def write() -> None:
            values = {
                "company_research_raw": _dump(gathered.value(COMPANY_RESEARCH)),
                "job_analysis_raw": _dump(gathered.value(JOB_ANALYSIS)),
                "cv_analysis_raw": _dump(gathered.value(CV_ANALYSIS)),
                "gather_outcomes": gathered.as_records(),
                "processing_status": ARTIFACT_RAW_SAVED,
                "raw_saved_at": utcnow(),
                "synthesis_metadata": None,
                "preparation_guidance": None,
                "processing_error": None,
            }
            async with self._session_factory() as session:
                artifact = await session.scalar(
                    select(SearchArtifact).where(SearchArtifact.job_id == job_id)
                )
                if artifact is None:
                    session.add(SearchArtifact(job_id=job_id, **values))
                else:
                    for key, value in values.items():
                        setattr(artifact, key, value)
                await session.commit()

        await self._bounded("raw artifact", write)
        logger.info(f"Saved raw artifact for job {job_id}")

    async def persist_synthesis(
        self,
        job_id: UUID,
        output: SynthesisOutput,
        missing_inputs: list[str],
    ) -> None:
        """Write stages, questions, comparison and artifact synthesis fields.

        Raises:
            PersistenceWriteError: Naming the first sub-write that failed
        """
        stages = [(uuid4(), draft) for draft in output.interview_stages]

        async def write_stages() -> None:
            async with self._session_factory() as session:
                session.add_all(
                    InterviewStage(id=stage_id, job_id=job_id, **draft.model_dump())
                    for stage_id, draft in stages
                )
                await session.commit()

        async def write_questions() -> None:
            async with self._session_factory() as session:
                session.add_all(
                    InterviewQuestion(
                        job_id=job_id,
                        stage_id=stage_for_category(category, stages),
                        category=category,
                        question_type="synthesized",
                        **draft.model_dump(),
                    )
                    for category, draft in output.interview_questions.by_category()
                )
                await session.commit()

        async def write_comparison() -> None:
            comparison = output.comparison_analysis
            async with self._session_factory() as session:
                session.add(
                    CvJobComparison(
                        job_id=job_id,
                        skill_gap_analysis=comparison.skill_gap_analysis,
                        experience_gap_analysis=comparison.experience_gap_analysis,
                        personalized_story_bank=comparison.personalized_story_bank,
                        interview_prep_strategy=comparison.interview_prep_strategy,
                        preparation_priorities=list(
                            output.preparation_guidance.preparation_priorities
                        ),
                        overall_fit_score=comparison.overall_fit_score,
                        missing_inputs=list(missing_inputs),
                    )
                )
                await session.commit()

        async def write_artifact() -> None:
            async with self._session_factory() as session:
                await session.execute(
                    update(SearchArtifact)
                    .where(SearchArtifact.job_id == job_id)
                    .values(
                        synthesis_metadata=_dump(output.synthesis_metadata),
                        preparation_guidance=_dump(output.preparation_guidance),
                        processing_status=ARTIFACT_COMPLETE,
                        processing_error=None,
                        updated_at=utcnow(),
                    )
                    .execution_options(synchronize_session=False)
                )
                await session.commit()

        await self._bounded("interview stages", write_stages)
        await self._bounded("interview questions", write_questions)
        await self._bounded("comparison analysis", write_comparison)
        await self._bounded("synthesis artifact", write_artifact)
        logger.info(
            f"Persisted {len(stages)} stages and {output.question_count} questions "
            f"for job {job_id}"
        )

    async def clear_results(self, job_id: UUID) -> None:
        """Delete synthesized output left by an earlier run of the job.

        Raw gather data is kept; only stages, questions, the comparison and
        the artifact's synthesis fields are removed.
        """

        async def write() -> None:
            async with self._session_factory() as session:
                await session.execute(
                    delete(InterviewQuestion).where(InterviewQuestion.job_id == job_id)
                )
                await session.execute(
                    delete(InterviewStage).where(InterviewStage.job_id == job_id)
                )
                await session.execute(
                    delete(CvJobComparison).where(CvJobComparison.job_id == job_id)
                )
                await session.execute(
                    update(SearchArtifact)
                    .where(SearchArtifact.job_id == job_id)
                    .values(synthesis_metadata=None, preparation_guidance=None)
                    .execution_options(synchronize_session=False)
                )
                await session.commit()

        await self._bounded("clear previous results", write)

    async def mark_failed(self, job_id: UUID, message: str) -> None:
        """Record a failure on the artifact row, leaving raw data intact."""

        async def write() -> None:
            async with self._session_factory() as session:
                await session.execute(
                    update(SearchArtifact)
                    .where(SearchArtifact.job_id == job_id)
                    .values(
                        processing_status=ARTIFACT_FAILED,
                        processing_error=message,
                        updated_at=utcnow(),
                    )
                    .execution_options(synchronize_session=False)
                )
                await session.commit()

        await self._bounded("artifact failure status", write)

    async def get_artifact(self, job_id: UUID) -> ArtifactResponse | None:
        async with self._session_factory() as session:
            artifact = await session.scalar(
                select(SearchArtifact).where(SearchArtifact.job_id == job_id)
            )
            if artifact is None:
                return None
            return ArtifactResponse.model_validate(artifact)

    async def load_results(self, job_id: UUID) -> ResearchResultsResponse:
        """Load the synthesized output of a job, stages in order."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(InterviewStage)
                .where(InterviewStage.job_id == job_id)
                .options(selectinload(InterviewStage.questions))
                .order_by(InterviewStage.order_index)
            )
            stages = [StageResponse.model_validate(stage) for stage in result.scalars()]

            comparison = await session.scalar(
                select(CvJobComparison).where(CvJobComparison.job_id == job_id)
            )
            guidance = await session.scalar(
                select(SearchArtifact.preparation_guidance).where(
                    SearchArtifact.job_id == job_id
                )
            )

        return ResearchResultsResponse(
            job_id=job_id,
            stages=stages,
            comparison=(
                ComparisonResponse.model_validate(comparison) if comparison else None
            ),
            preparation_guidance=guidance,
            total_questions=sum(len(stage.questions) for stage in stages),
        )
