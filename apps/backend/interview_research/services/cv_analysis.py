"""CV analysis gatherer: CV text → CvAnalysis."""

from pydantic import ValidationError

from interview_research.schemas.job import ResearchRequest
from interview_research.schemas.research import CvAnalysis
from interview_research.services.llm import OllamaClient

MAX_CV_CHARS = 12000


class CvAnalyzer:
    """Gatherer producing CvAnalysis from the candidate's CV."""

    def __init__(self, llm: OllamaClient):
        self.llm = llm

    async def __call__(self, request: ResearchRequest) -> CvAnalysis:
        if not request.cv_text or not request.cv_text.strip():
            raise ValueError("No CV provided")

        prompt = f"""You are a CV analyst. Extract structured information from the CV below
and return ONLY a JSON object.

CV:
{request.cv_text[:MAX_CV_CHARS]}

Required JSON structure:
{{
  "current_role": "string",
  "experience_years": 0,
  "skills": {{
    "technical": ["string"],
    "soft": ["string"],
    "certifications": ["string"]
  }},
  "education": [{{"degree": "string", "institution": "string", "year": "string"}}],
  "experience": [
    {{
      "company": "string",
      "role": "string",
      "duration": "string",
      "achievements": ["string"]
    }}
  ],
  "projects": [{{"name": "string", "description": "string", "technologies": ["string"]}}],
  "key_achievements": ["string"]
}}"""

        data = await self.llm.generate_json(prompt)
        try:
            return CvAnalysis.model_validate(data)
        except ValidationError as e:
            raise ValueError(
                f"CV analysis output failed validation: {e.error_count()} errors"
            ) from e
