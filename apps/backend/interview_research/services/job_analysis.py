"""Job analysis gatherer: posting text → JobRequirements."""

import logging

from pydantic import ValidationError

from interview_research.schemas.job import ResearchRequest
from interview_research.schemas.research import JobRequirements
from interview_research.services.llm import OllamaClient
from interview_research.services.search_client import TavilyClient

logger = logging.getLogger(__name__)

MAX_LINKS = 5
MAX_POSTING_CHARS = 6000


class JobAnalyzer:
    """Gatherer producing JobRequirements from the supplied role links."""

    def __init__(self, llm: OllamaClient, search: TavilyClient):
        self.llm = llm
        self.search = search

    async def __call__(self, request: ResearchRequest) -> JobRequirements:
        if not request.role_links:
            raise ValueError("No role links provided")
        if not self.search.enabled:
            raise ValueError("Job posting extraction requires a search API key")

        links = request.role_links[:MAX_LINKS]
        pages = await self.search.extract(links)
        if not pages:
            raise ValueError(f"Could not extract any of {len(links)} job posting(s)")
        logger.info(f"Extracted {len(pages)}/{len(links)} job posting(s)")

        postings = "\n\n---\n\n".join(
            f"POSTING: {url}\n{text[:MAX_POSTING_CHARS]}" for url, text in pages.items()
        )
        prompt = f"""You are a job description analyst. Extract the requirements for the
{request.role or "advertised"} role at {request.company} and return ONLY a JSON object.

{postings}

Required JSON structure:
{{
  "technical_skills": ["string"],
  "soft_skills": ["string"],
  "experience_level": "string",
  "responsibilities": ["string"],
  "qualifications": ["string"],
  "nice_to_have": ["string"],
  "interview_process_hints": ["string"]
}}"""

        data = await self.llm.generate_json(prompt)
        try:
            return JobRequirements.model_validate(data)
        except ValidationError as e:
            raise ValueError(
                f"Job analysis output failed validation: {e.error_count()} errors"
            ) from e
