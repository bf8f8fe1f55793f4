import asyncio

import pytest
from sqlalchemy import func, select

from factories import (
    FakeLLM,
    FakeSynthesizer,
    company_insights,
    cv_analysis,
    healthy_gatherers,
    raising,
    research_request,
    returning,
)
from interview_research.models import InterviewStage, ResearchJob
from interview_research.schemas.research import JobRequirements
from interview_research.services.errors import (
    InvalidTransitionError,
    JobAlreadyRunningError,
    SynthesisMalformedError,
)
from interview_research.services.gathering import Gatherers
from interview_research.services.orchestrator import PipelineTimeouts
from interview_research.services.persistence import ArtifactStore
from interview_research.services.synthesis import InterviewSynthesizer

LEGAL_NEXT = {
    "pending": {"pending", "processing"},
    "processing": {"processing", "completed", "failed"},
    "completed": {"completed"},
    "failed": {"failed"},
}


async def _run_to_end(orchestrator, request=None):
    job_id = await orchestrator.submit(request or research_request())
    await orchestrator.wait(job_id)
    return job_id


async def _stage_count(session_factory, job_id) -> int:
    async with session_factory() as session:
        return await session.scalar(
            select(func.count()).select_from(InterviewStage).where(InterviewStage.job_id == job_id)
        )


@pytest.mark.asyncio
async def test_submit_returns_before_gathering_finishes(make_orchestrator, store):
    release = asyncio.Event()

    async def blocked_company(request):
        await release.wait()
        return company_insights()

    orchestrator = make_orchestrator(
        gatherers=healthy_gatherers(company_research=blocked_company),
        timeouts=PipelineTimeouts(
            company_research=5.0, job_analysis=5.0, cv_analysis=5.0,
            synthesis=5.0, db_write=5.0,
        ),
    )

    job_id = await orchestrator.submit(research_request())

    snapshot = await store.get(job_id)
    assert snapshot.status in ("pending", "processing")
    assert orchestrator.is_running(job_id)

    release.set()
    await orchestrator.wait(job_id)
    assert (await store.get(job_id)).status == "completed"


@pytest.mark.asyncio
async def test_successful_run_completes_with_results(make_orchestrator, store, artifacts):
    orchestrator = make_orchestrator()

    job_id = await _run_to_end(orchestrator)

    job = await store.get(job_id)
    assert job.status == "completed"
    assert job.progress_percentage == 100
    assert job.progress_step == "COMPLETED"
    assert job.started_at is not None
    assert job.completed_at is not None
    assert job.error_message is None

    results = await artifacts.load_results(job_id)
    assert len(results.stages) >= 1
    assert results.total_questions >= 1
    assert [stage.order_index for stage in results.stages] == [1, 2]
    assert results.comparison.missing_inputs == []
    assert results.preparation_guidance["preparation_priorities"] == [
        "System design",
        "Incident stories",
    ]

    artifact = await artifacts.get_artifact(job_id)
    assert artifact.processing_status == "complete"
    assert artifact.company_research_raw["industry"] == "Industrial automation"
    assert artifact.cv_analysis_raw["current_role"] == "Senior Python Engineer"


@pytest.mark.asyncio
async def test_observed_transitions_are_legal_and_monotonic(make_orchestrator, store, events):
    job = await store.create(research_request())
    orchestrator = make_orchestrator()

    seen = []
    async with events.subscribe(job.id) as subscription:
        orchestrator.schedule(job.id)
        while True:
            snapshot = await asyncio.wait_for(subscription.get(), timeout=5.0)
            seen.append(snapshot)
            if snapshot.is_terminal:
                break

    statuses = ["pending"] + [s.status for s in seen]
    for current, following in zip(statuses, statuses[1:]):
        assert following in LEGAL_NEXT[current]
    assert statuses[-1] == "completed"

    percentages = [s.progress_percentage for s in seen]
    assert percentages == sorted(percentages)

    for s in seen:
        assert (s.completed_at is not None) == s.is_terminal


@pytest.mark.asyncio
async def test_cv_gatherer_timeout_degrades_but_completes(make_orchestrator, store, artifacts):
    synthesizer = FakeSynthesizer()
    orchestrator = make_orchestrator(
        gatherers=healthy_gatherers(cv_analysis=returning(cv_analysis(), delay=2.0)),
        synthesizer=synthesizer,
    )

    job_id = await _run_to_end(orchestrator)

    assert (await store.get(job_id)).status == "completed"

    [synthesis_input] = synthesizer.calls
    assert synthesis_input.cv_analysis is None
    assert synthesis_input.company_insights is not None
    assert synthesis_input.missing_sections == ["cv_analysis"]

    results = await artifacts.load_results(job_id)
    assert results.comparison.missing_inputs == ["cv_analysis"]

    artifact = await artifacts.get_artifact(job_id)
    assert artifact.cv_analysis_raw is None
    assert artifact.gather_outcomes["cv_analysis"]["reason"] == "timeout"
    assert artifact.gather_outcomes["company_research"] == {"ok": True}


@pytest.mark.asyncio
async def test_empty_gather_payload_counts_as_failure(make_orchestrator, artifacts):
    synthesizer = FakeSynthesizer()
    orchestrator = make_orchestrator(
        gatherers=healthy_gatherers(job_analysis=returning(JobRequirements())),
        synthesizer=synthesizer,
    )

    job_id = await _run_to_end(orchestrator)

    assert synthesizer.calls[0].job_requirements is None
    assert synthesizer.calls[0].missing_sections == ["job_analysis"]
    artifact = await artifacts.get_artifact(job_id)
    assert artifact.gather_outcomes["job_analysis"]["ok"] is False
    assert "no usable data" in artifact.gather_outcomes["job_analysis"]["detail"]


@pytest.mark.asyncio
async def test_all_gatherers_failing_fails_the_job(make_orchestrator, store, artifacts, session_factory):
    synthesizer = FakeSynthesizer()
    orchestrator = make_orchestrator(
        gatherers=Gatherers(
            company_research=raising(RuntimeError("search quota exceeded")),
            job_analysis=returning(None),
            cv_analysis=returning(cv_analysis(), delay=2.0),
        ),
        synthesizer=synthesizer,
    )

    job_id = await _run_to_end(orchestrator)

    job = await store.get(job_id)
    assert job.status == "failed"
    assert job.error_kind == "GatherTotalFailure"
    assert "All data gatherers failed" in job.error_message
    assert job.completed_at is not None
    assert synthesizer.calls == []
    assert await _stage_count(session_factory, job_id) == 0

    artifact = await artifacts.get_artifact(job_id)
    assert artifact.processing_status == "failed"
    assert artifact.company_research_raw is None


@pytest.mark.asyncio
async def test_malformed_synthesis_fails_and_keeps_raw_artifact(make_orchestrator, store, artifacts, session_factory):
    llm = FakeLLM("Sure! Here is your interview plan: stage one, then stage two.")
    orchestrator = make_orchestrator(synthesizer=InterviewSynthesizer(llm))

    job_id = await _run_to_end(orchestrator)

    job = await store.get(job_id)
    assert job.status == "failed"
    assert job.error_kind == "SynthesisMalformed"
    assert await _stage_count(session_factory, job_id) == 0

    artifact = await artifacts.get_artifact(job_id)
    assert artifact is not None
    assert artifact.company_research_raw["name"] == "Acme Robotics"
    assert artifact.job_analysis_raw["experience_level"] == "Senior"


@pytest.mark.asyncio
async def test_synthesis_schema_violation_is_malformed(make_orchestrator, store):
    orchestrator = make_orchestrator(
        synthesizer=FakeSynthesizer(error=SynthesisMalformedError("no stages")),
    )

    job_id = await _run_to_end(orchestrator)

    job = await store.get(job_id)
    assert job.error_kind == "SynthesisMalformed"
    assert job.error_message == "no stages"


@pytest.mark.asyncio
async def test_synthesis_timeout_fails_the_job(make_orchestrator, store, artifacts):
    orchestrator = make_orchestrator(synthesizer=FakeSynthesizer(delay=3.0))

    job_id = await _run_to_end(orchestrator)

    job = await store.get(job_id)
    assert job.status == "failed"
    assert job.error_kind == "SynthesisTimeout"
    assert await artifacts.get_artifact(job_id) is not None


@pytest.mark.asyncio
async def test_unexpected_synthesis_error_is_classified(make_orchestrator, store):
    orchestrator = make_orchestrator(
        synthesizer=FakeSynthesizer(error=ConnectionResetError("peer reset")),
    )

    job_id = await _run_to_end(orchestrator)

    job = await store.get(job_id)
    assert job.status == "failed"
    assert job.error_kind == "SynthesisError"
    assert "peer reset" in job.error_message


class FailingQuestionsStore(ArtifactStore):
    """Artifact store whose question write always fails."""

    async def _bounded(self, sub_write, operation):
        if sub_write == "interview questions":

            async def broken():
                raise RuntimeError("disk full")

            return await super()._bounded(sub_write, broken)
        return await super()._bounded(sub_write, operation)


@pytest.mark.asyncio
async def test_persistence_failure_names_sub_write(make_orchestrator, store, artifacts, session_factory):
    failing = FailingQuestionsStore(session_factory, write_timeout=5.0)
    orchestrator = make_orchestrator(artifact_store=failing)

    job_id = await _run_to_end(orchestrator)

    job = await store.get(job_id)
    assert job.status == "failed"
    assert job.error_kind == "PersistenceWriteFailure"
    assert "interview questions" in job.error_message

    # Earlier sub-writes are kept, raw artifact untouched
    assert await _stage_count(session_factory, job_id) == 2
    artifact = await artifacts.get_artifact(job_id)
    assert artifact.processing_status == "failed"
    assert artifact.company_research_raw is not None


class ExplodingArtifactStore(ArtifactStore):
    async def save_raw(self, job_id, gathered):
        raise KeyError("company_research_raw")


@pytest.mark.asyncio
async def test_unhandled_exception_marks_job_failed(make_orchestrator, store, session_factory):
    orchestrator = make_orchestrator(
        artifact_store=ExplodingArtifactStore(session_factory, write_timeout=5.0)
    )

    job_id = await _run_to_end(orchestrator)

    job = await store.get(job_id)
    assert job.status == "failed"
    assert job.error_kind == "UnhandledException"
    assert job.error_message.startswith("KeyError")

    async with session_factory() as session:
        row = await session.get(ResearchJob, job_id)
        assert "Traceback" in row.error_traceback


@pytest.mark.asyncio
async def test_schedule_rejects_second_run_in_process(make_orchestrator, store):
    release = asyncio.Event()

    async def blocked(request):
        await release.wait()
        return company_insights()

    orchestrator = make_orchestrator(
        gatherers=healthy_gatherers(company_research=blocked),
        timeouts=PipelineTimeouts(
            company_research=5.0, job_analysis=5.0, cv_analysis=5.0,
            synthesis=5.0, db_write=5.0,
        ),
    )
    job = await store.create(research_request())
    orchestrator.schedule(job.id)

    with pytest.raises(JobAlreadyRunningError):
        orchestrator.schedule(job.id)

    release.set()
    await orchestrator.wait(job.id)


@pytest.mark.asyncio
async def test_run_leaves_job_owned_by_another_writer_alone(make_orchestrator, store):
    calls = []

    async def tracking_gatherer(request):
        calls.append(request)
        return company_insights()

    orchestrator = make_orchestrator(
        gatherers=healthy_gatherers(company_research=tracking_gatherer)
    )
    job = await store.create(research_request())
    claimed = await store.start(job.id, "INITIALIZING", 5)

    await orchestrator.run(job.id)

    after = await store.get(job.id)
    assert after.status == "processing"
    assert after.updated_at == claimed.updated_at
    assert calls == []


@pytest.mark.asyncio
async def test_retry_reruns_failed_job_from_scratch(make_orchestrator, store, artifacts, session_factory):
    failing = make_orchestrator(synthesizer=FakeSynthesizer(error=SynthesisMalformedError("bad")))
    job_id = await _run_to_end(failing)
    assert (await store.get(job_id)).status == "failed"

    healthy = make_orchestrator()
    await healthy.retry(job_id)
    await healthy.wait(job_id)

    job = await store.get(job_id)
    assert job.status == "completed"
    assert job.error_message is None
    assert await _stage_count(session_factory, job_id) == 2

    # A second successful run supersedes rather than duplicates results
    await healthy.retry(job_id)
    await healthy.wait(job_id)
    assert await _stage_count(session_factory, job_id) == 2


@pytest.mark.asyncio
async def test_failed_retry_leaves_no_output_from_earlier_run(make_orchestrator, store, session_factory):
    orchestrator = make_orchestrator()
    job_id = await _run_to_end(orchestrator)
    assert await _stage_count(session_factory, job_id) == 2

    orchestrator.gatherers = Gatherers(
        company_research=raising(RuntimeError("search down")),
        job_analysis=returning(None),
        cv_analysis=raising(ValueError("No CV provided")),
    )
    await orchestrator.retry(job_id)
    await orchestrator.wait(job_id)

    job = await store.get(job_id)
    assert job.status == "failed"
    assert job.error_kind == "GatherTotalFailure"
    assert await _stage_count(session_factory, job_id) == 0


@pytest.mark.asyncio
async def test_retry_rejects_active_job(make_orchestrator, store):
    orchestrator = make_orchestrator()
    job = await store.create(research_request())
    await store.start(job.id, "INITIALIZING", 5)

    with pytest.raises(InvalidTransitionError):
        await orchestrator.retry(job.id)


@pytest.mark.asyncio
async def test_shutdown_marks_active_runs_failed(make_orchestrator, store):
    never = asyncio.Event()

    async def hanging(request):
        await never.wait()

    orchestrator = make_orchestrator(
        gatherers=healthy_gatherers(company_research=hanging),
        timeouts=PipelineTimeouts(
            company_research=30.0, job_analysis=30.0, cv_analysis=30.0,
            synthesis=30.0, db_write=5.0,
        ),
    )
    job_id = await orchestrator.submit(research_request())
    await asyncio.sleep(0.2)

    await orchestrator.shutdown()

    job = await store.get(job_id)
    assert job.status == "failed"
    assert job.error_kind == "RunCancelled"
    assert not orchestrator.is_running(job_id)
