from datetime import timedelta
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import update

from factories import FAST_TIMEOUTS, FakeSynthesizer, healthy_gatherers, research_request
from interview_research.dependencies import build_services
from interview_research.models import ResearchJob
from interview_research.utils.time import utcnow
from main import app


@pytest.fixture
def services(session_factory):
    services = build_services(
        session_factory,
        gatherers=healthy_gatherers(),
        synthesizer=FakeSynthesizer(),
        timeouts=FAST_TIMEOUTS,
    )
    app.state.services = services
    yield services
    del app.state.services


@pytest_asyncio.fixture
async def client(services):
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as client:
        yield client
    await services.orchestrator.shutdown()


SUBMISSION = {
    "company": "Acme Robotics",
    "role": "Backend Engineer",
    "country": "Germany",
    "role_links": ["https://jobs.example.com/acme/backend", "  "],
    "cv_text": "Senior Python engineer, 6 years.",
    "target_seniority": "senior",
}


@pytest.mark.asyncio
async def test_submit_returns_before_work_and_job_completes(client, services):
    response = await client.post("/api/v1/research", json=SUBMISSION)

    assert response.status_code == 202
    body = response.json()
    assert body["status"] == "pending"
    job_id = body["job_id"]

    await services.orchestrator.wait(UUID(job_id))

    snapshot = (await client.get(f"/api/v1/research/{job_id}")).json()
    assert snapshot["status"] == "completed"
    assert snapshot["progress_percentage"] == 100

    results = await client.get(f"/api/v1/research/{job_id}/results")
    assert results.status_code == 200
    assert results.json()["total_questions"] == 4

    artifact = await client.get(f"/api/v1/research/{job_id}/artifact")
    assert artifact.status_code == 200
    assert artifact.json()["processing_status"] == "complete"


@pytest.mark.asyncio
async def test_submission_is_validated(client):
    response = await client.post("/api/v1/research", json={"company": ""})

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_progress_includes_polling_hints(client, services):
    job = await services.store.create(research_request())
    await services.store.start(job.id, "GATHERING", 15)

    response = await client.get(f"/api/v1/research/{job.id}/progress")

    assert response.status_code == 200
    body = response.json()
    assert body["job"]["progress_step"] == "GATHERING"
    assert body["step_message"]
    assert body["next_poll_seconds"] == 2
    assert body["stall"]["is_stalled"] is False


@pytest.mark.asyncio
async def test_terminal_progress_has_no_next_poll(client, services):
    job = await services.store.create(research_request())
    await services.store.start(job.id, "INITIALIZING", 5)
    await services.store.fail(job.id, "All data gathering failed", kind="GatherTotalFailure")

    body = (await client.get(f"/api/v1/research/{job.id}/progress")).json()

    assert body["job"]["status"] == "failed"
    assert body["job"]["error_kind"] == "GatherTotalFailure"
    assert body["next_poll_seconds"] is None


@pytest.mark.asyncio
async def test_unknown_job_is_404(client):
    job_id = uuid4()

    for path in ("", "/progress", "/results", "/artifact"):
        response = await client.get(f"/api/v1/research/{job_id}{path}")
        assert response.status_code == 404, path

    response = await client.post(f"/api/v1/research/{job_id}/retry")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_results_of_unfinished_job_are_409(client, services):
    job = await services.store.create(research_request())

    response = await client.get(f"/api/v1/research/{job.id}/results")

    assert response.status_code == 409


@pytest.mark.asyncio
async def test_retry_rejects_pending_job(client, services):
    job = await services.store.create(research_request())

    response = await client.post(f"/api/v1/research/{job.id}/retry")

    assert response.status_code == 409


@pytest.mark.asyncio
async def test_retry_reruns_failed_job(client, services):
    job = await services.store.create(research_request())
    await services.store.start(job.id, "INITIALIZING", 5)
    await services.store.fail(job.id, "Synthesis timed out", kind="SynthesisTimeout")

    response = await client.post(f"/api/v1/research/{job.id}/retry")
    assert response.status_code == 202

    await services.orchestrator.wait(job.id)
    snapshot = await services.store.get(job.id)
    assert snapshot.status == "completed"
    assert snapshot.error_message is None


@pytest.mark.asyncio
async def test_failed_job_keeps_raw_artifact(session_factory):
    services = build_services(
        session_factory,
        gatherers=healthy_gatherers(),
        synthesizer=FakeSynthesizer(error=RuntimeError("model crashed")),
        timeouts=FAST_TIMEOUTS,
    )
    app.state.services = services
    try:
        async with AsyncClient(
            transport=ASGITransport(app=app), base_url="http://test"
        ) as client:
            job_id = (await client.post("/api/v1/research", json=SUBMISSION)).json()["job_id"]
            await services.orchestrator.wait(UUID(job_id))

            body = (await client.get(f"/api/v1/research/{job_id}")).json()
            assert body["status"] == "failed"
            assert body["error_kind"] == "SynthesisError"

            artifact = (await client.get(f"/api/v1/research/{job_id}/artifact")).json()
            assert artifact["processing_status"] == "failed"
            assert artifact["company_research_raw"]["name"] == "Acme Robotics"
    finally:
        del app.state.services


@pytest.mark.asyncio
async def test_stalled_endpoint_lists_quiet_processing_jobs(client, services, session_factory):
    quiet = await services.store.create(research_request(company="Quiet Corp"))
    await services.store.start(quiet.id, "SYNTHESIZING", 60)
    async with session_factory() as session:
        await session.execute(
            update(ResearchJob)
            .where(ResearchJob.id == quiet.id)
            .values(updated_at=utcnow() - timedelta(seconds=90))
        )
        await session.commit()

    response = await client.get("/api/v1/research/stalled")

    assert response.status_code == 200
    assert [job["id"] for job in response.json()] == [str(quiet.id)]


@pytest.mark.asyncio
async def test_root_banner(client):
    response = await client.get("/")

    assert response.status_code == 200
    assert "Interview Research" in response.json()["message"]
