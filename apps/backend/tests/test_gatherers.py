import asyncio
import json

import httpx
import pytest

from factories import FakeLLM, company_insights, job_requirements, raising, research_request, returning
from interview_research.schemas.research import CompanyInsights, CvAnalysis
from interview_research.services.company_research import CompanyResearcher, build_search_queries
from interview_research.services.cv_analysis import CvAnalyzer
from interview_research.services.gathering import (
    Gatherers,
    GatherTimeouts,
    gather_all,
    has_meaningful_data,
)
from interview_research.services.job_analysis import JobAnalyzer
from interview_research.services.llm import OllamaClient, extract_json_from_response
from interview_research.services.search_client import TavilyClient

TIMEOUTS = GatherTimeouts(company_research=0.5, job_analysis=0.5, cv_analysis=0.2)


@pytest.mark.parametrize(
    "value, expected",
    [
        (None, False),
        ({}, False),
        ([], False),
        ("   ", False),
        ({"skills": {"technical": [], "soft": []}, "projects": []}, False),
        (CvAnalysis(), False),
        (CompanyInsights(industry="Robotics"), True),
        ({"experience_years": 0}, True),
        ([{"name": "x"}], True),
    ],
)
def test_has_meaningful_data(value, expected):
    assert has_meaningful_data(value) is expected


@pytest.mark.asyncio
async def test_gather_all_validates_each_outcome():
    gatherers = Gatherers(
        company_research=returning(company_insights()),
        job_analysis=returning(CvAnalysis()),
        cv_analysis=raising(ValueError("No CV provided")),
    )

    results = await gather_all(research_request(), gatherers, TIMEOUTS)

    assert results.company_research.ok
    assert not results.job_analysis.ok
    assert results.job_analysis.reason == "error"
    assert results.cv_analysis.detail == "ValueError: No CV provided"
    assert results.missing_sections == ["job_analysis", "cv_analysis"]
    assert not results.all_failed


@pytest.mark.asyncio
async def test_gatherers_run_concurrently_and_slow_one_times_out():
    gatherers = Gatherers(
        company_research=returning(company_insights(), delay=0.15),
        job_analysis=returning(job_requirements(), delay=0.15),
        cv_analysis=returning(CvAnalysis(current_role="Engineer"), delay=5.0),
    )
    loop = asyncio.get_running_loop()

    started = loop.time()
    results = await gather_all(research_request(), gatherers, TIMEOUTS)
    elapsed = loop.time() - started

    assert results.company_research.ok and results.job_analysis.ok
    assert results.cv_analysis.reason == "timeout"
    # Bounded by the slowest deadline, not the sum of durations
    assert elapsed < 0.45


@pytest.mark.asyncio
async def test_all_failed_is_reported():
    gatherers = Gatherers(
        company_research=returning(None),
        job_analysis=returning({}),
        cv_analysis=raising(RuntimeError("down")),
    )

    results = await gather_all(research_request(), gatherers, TIMEOUTS)

    assert results.all_failed
    assert set(results.failures()) == {"company_research", "job_analysis", "cv_analysis"}


def test_search_queries_collapse_missing_fields():
    queries = build_search_queries(research_request(role=None, country=None))

    assert queries[0] == "Acme Robotics interview questions"
    assert all("  " not in query for query in queries)


def _tavily(handler) -> TavilyClient:
    return TavilyClient(
        api_key="tvly-test",
        base_url="https://tavily.test",
        max_attempts=3,
        base_delay=0.0,
        max_delay=0.0,
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_search_client_retries_server_errors():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(503)
        return httpx.Response(
            200,
            json={"results": [{"title": "Acme interview", "url": "https://x", "content": "Q: why?"}]},
        )

    hits = await _tavily(handler).search("Acme interview")

    assert len(calls) == 2
    assert hits[0].content == "Q: why?"
    assert json.loads(calls[0].content)["query"] == "Acme interview"


@pytest.mark.asyncio
async def test_search_client_does_not_retry_client_errors():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(401)

    with pytest.raises(httpx.HTTPStatusError):
        await _tavily(handler).search("Acme interview")

    assert len(calls) == 1


@pytest.mark.asyncio
async def test_company_researcher_folds_search_hits_into_prompt():
    def handler(request: httpx.Request) -> httpx.Response:
        query = json.loads(request.content)["query"]
        return httpx.Response(
            200,
            json={"results": [{"title": query, "url": f"https://search.test/{query}", "content": f"snippet for {query}"}]},
        )

    llm = FakeLLM(json.dumps({"industry": "Robotics", "values": ["Ownership"]}))
    researcher = CompanyResearcher(llm, _tavily(handler))

    insights = await researcher(research_request())

    assert insights.industry == "Robotics"
    assert len(insights.sources) == 3
    assert "snippet for Acme Robotics Backend Engineer interview questions" in llm.prompts[0]


@pytest.mark.asyncio
async def test_company_researcher_survives_failed_queries():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400)

    llm = FakeLLM('{"industry": "Robotics"}')
    researcher = CompanyResearcher(llm, _tavily(handler))

    insights = await researcher(research_request())

    assert insights.industry == "Robotics"
    assert "No search results available" in llm.prompts[0]


@pytest.mark.asyncio
async def test_job_analyzer_requires_role_links():
    analyzer = JobAnalyzer(FakeLLM("{}"), _tavily(lambda r: httpx.Response(200, json={})))

    with pytest.raises(ValueError, match="No role links"):
        await analyzer(research_request(role_links=[]))


@pytest.mark.asyncio
async def test_job_analyzer_extracts_postings():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/extract"
        return httpx.Response(
            200,
            json={
                "results": [
                    {"url": "https://jobs.example.com/acme/backend", "raw_content": "We need Python and Postgres."}
                ]
            },
        )

    llm = FakeLLM(json.dumps({"technical_skills": ["Python", "PostgreSQL"]}))
    analyzer = JobAnalyzer(llm, _tavily(handler))

    requirements = await analyzer(research_request())

    assert requirements.technical_skills == ["Python", "PostgreSQL"]
    assert "We need Python and Postgres." in llm.prompts[0]


@pytest.mark.asyncio
async def test_cv_analyzer_requires_cv():
    with pytest.raises(ValueError, match="No CV provided"):
        await CvAnalyzer(FakeLLM("{}"))(research_request(cv_text="  "))


@pytest.mark.asyncio
async def test_cv_analyzer_parses_model_output():
    llm = FakeLLM(
        "```json\n"
        + json.dumps({"current_role": "Engineer", "experience_years": 6, "skills": {"technical": ["Python"]}})
        + "\n```"
    )

    analysis = await CvAnalyzer(llm)(research_request())

    assert analysis.current_role == "Engineer"
    assert analysis.skills.technical == ["Python"]
    assert "Senior Python engineer" in llm.prompts[0]


@pytest.mark.asyncio
async def test_ollama_client_requests_json_format():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(json.loads(request.content))
        return httpx.Response(200, json={"response": '{"answer": 42}'})

    client = OllamaClient(
        base_url="http://ollama.test",
        model="llama3",
        timeout=5.0,
        transport=httpx.MockTransport(handler),
    )

    result = await client.generate_json("Answer?", system="Be brief")

    assert result == {"answer": 42}
    assert seen["format"] == "json"
    assert seen["system"] == "Be brief"
    assert seen["stream"] is False


def test_extract_json_strategies():
    assert extract_json_from_response('{"a": 1}') == {"a": 1}
    assert extract_json_from_response('```json\n{"a": 2}\n```') == {"a": 2}
    assert extract_json_from_response('Sure! {"a": 3} Hope this helps.') == {"a": 3}
    with pytest.raises(ValueError):
        extract_json_from_response("no json here")
    with pytest.raises(ValueError):
        extract_json_from_response("[1, 2, 3]")


def _one_hit(request: httpx.Request) -> httpx.Response:
    return httpx.Response(
        200,
        json={"results": [{"title": "Acme", "url": "https://search.test/acme", "content": "Acme builds robots."}]},
    )


@pytest.mark.asyncio
@pytest.mark.parametrize("reply", ["{}", '{"name": "Acme Robotics", "values": [], "culture": ""}'])
async def test_company_researcher_rejects_empty_model_output(reply):
    researcher = CompanyResearcher(FakeLLM(reply), _tavily(_one_hit))

    with pytest.raises(ValueError, match="no insights"):
        await researcher(research_request())


@pytest.mark.asyncio
async def test_empty_company_research_counts_as_failed_gather():
    researcher = CompanyResearcher(FakeLLM("{}"), _tavily(_one_hit))
    gatherers = Gatherers(
        company_research=researcher,
        job_analysis=returning(job_requirements()),
        cv_analysis=returning(CvAnalysis(current_role="Engineer")),
    )

    results = await gather_all(research_request(), gatherers, TIMEOUTS)

    assert not results.company_research.ok
    assert results.missing_sections == ["company_research"]


@pytest.mark.asyncio
async def test_search_client_applies_configured_timeout():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.extensions["timeout"])
        return httpx.Response(200, json={"results": []})

    client = TavilyClient(
        api_key="tvly-test",
        base_url="https://tavily.test",
        timeout=3.5,
        transport=httpx.MockTransport(handler),
    )

    await client.search("Acme interview")

    assert seen[0]["read"] == 3.5
