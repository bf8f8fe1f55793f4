"""Company research gatherer.

Collects interview-related snippets through search, then asks the LLM to
condense them into CompanyInsights.
"""

import asyncio
import json
import logging

from pydantic import ValidationError

from interview_research.schemas.job import ResearchRequest
from interview_research.schemas.research import CompanyInsights
from interview_research.services.gathering import has_meaningful_data
from interview_research.services.llm import OllamaClient
from interview_research.services.search_client import SearchHit, TavilyClient

logger = logging.getLogger(__name__)

QUERY_TEMPLATES = (
    "{company} {role} interview questions",
    "{company} interview process {role} {country}",
    "{company} company culture values hiring",
)

MAX_SNIPPET_CHARS = 1200
IDENTITY_FIELDS = {"name", "sources"}


def build_search_queries(request: ResearchRequest) -> list[str]:
    """Fill the query templates, collapsing gaps left by missing fields."""
    queries = []
    for template in QUERY_TEMPLATES:
        query = template.format(
            company=request.company,
            role=request.role or "",
            country=request.country or "",
        )
        queries.append(" ".join(query.split()))
    return queries


def build_company_prompt(request: ResearchRequest, hits: list[SearchHit]) -> str:
    if hits:
        research = "\n\n".join(
            f"SOURCE: {hit.title} ({hit.url})\n{hit.content[:MAX_SNIPPET_CHARS]}"
            for hit in hits
        )
    else:
        research = "No search results available. Use well-established public knowledge only."

    return f"""You are an interview research analyst. Analyze the research below about
{request.company} and return ONLY a JSON object.

Target role: {request.role or "not specified"}
Location: {request.country or "not specified"}

RESEARCH:
{research}

Required JSON structure:
{{
  "name": "{request.company}",
  "industry": "string",
  "culture": "string",
  "values": ["string"],
  "interview_philosophy": "string",
  "recent_hiring_trends": "string",
  "interview_stages": [
    {{
      "name": "string",
      "order_index": 1,
      "duration": "string",
      "interviewer": "string",
      "content": "string",
      "common_questions": ["string"],
      "success_tips": ["string"],
      "difficulty_level": "string"
    }}
  ],
  "interview_questions_bank": {{
    "behavioral": ["string"],
    "technical": ["string"],
    "situational": ["string"],
    "company_specific": ["string"]
  }},
  "hiring_manager_insights": {{}}
}}

Only include questions and stages supported by the research. Use empty lists when unknown."""


class CompanyResearcher:
    """Gatherer producing CompanyInsights for a request."""

    def __init__(self, llm: OllamaClient, search: TavilyClient):
        self.llm = llm
        self.search = search

    async def __call__(self, request: ResearchRequest) -> CompanyInsights:
        hits: list[SearchHit] = []
        if self.search.enabled:
            queries = build_search_queries(request)
            results = await asyncio.gather(
                *(self.search.search(query) for query in queries),
                return_exceptions=True,
            )
            for query, result in zip(queries, results):
                if isinstance(result, Exception):
                    logger.warning(f"Search query failed: {query}: {result}")
                    continue
                hits.extend(result)
            logger.info(f"Company research collected {len(hits)} search hits")
        else:
            logger.info("Search disabled; company research uses the model only")

        hits = _dedupe(hits)
        prompt = build_company_prompt(request, hits)
        data = await self.llm.generate_json(prompt)
        try:
            insights = CompanyInsights.model_validate(data)
        except ValidationError as e:
            raise ValueError(
                f"Company research output failed validation: {e.error_count()} errors; "
                f"preview: {json.dumps(data)[:200]}"
            ) from e

        # Emptiness is judged without the echoed name and the attached sources
        if not has_meaningful_data(insights.model_dump(exclude=IDENTITY_FIELDS)):
            raise ValueError(f"Company research returned no insights for {request.company}")
        if not insights.sources:
            insights.sources = [hit.url for hit in hits if hit.url]
        return insights


def _dedupe(hits: list[SearchHit]) -> list[SearchHit]:
    seen: set[str] = set()
    unique = []
    for hit in hits:
        if hit.url in seen:
            continue
        seen.add(hit.url)
        unique.append(hit)
    return unique
