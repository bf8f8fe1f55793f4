"""Interview synthesis: one LLM call turning gathered data into a prep plan.

The call is not retried; the orchestrator bounds it with its own deadline.
Output is accepted only as a complete, schema-valid SynthesisOutput.
"""

import json
import logging

from pydantic import BaseModel, ValidationError

from interview_research.schemas.synthesis import (
    QUESTION_CATEGORIES,
    SynthesisInput,
    SynthesisMetadata,
    SynthesisOutput,
)
from interview_research.services.errors import SynthesisMalformedError
from interview_research.services.llm import OllamaClient, extract_json_from_response
from interview_research.utils.time import utcnow

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an expert interview coach. You combine company research, job "
    "requirements and a candidate profile into a precise, personalized "
    "interview preparation plan. You respond with a single JSON object only."
)

SECTION_TITLES = {
    "company_research": "COMPANY RESEARCH",
    "job_analysis": "JOB REQUIREMENTS",
    "cv_analysis": "CANDIDATE PROFILE",
}

OUTPUT_SCHEMA = """{
  "interview_stages": [
    {
      "name": "string",
      "order_index": 1,
      "duration": "string",
      "interviewer": "string",
      "content": "string",
      "guidance": "string",
      "preparation_tips": ["string"],
      "common_questions": ["string"],
      "red_flags_to_avoid": ["string"]
    }
  ],
  "interview_questions": {
    "<category>": [
      {
        "question": "string",
        "difficulty": "Easy|Medium|Hard",
        "rationale": "string",
        "suggested_answer_approach": "string",
        "evaluation_criteria": ["string"],
        "follow_up_questions": ["string"],
        "star_story_fit": true,
        "company_context": "string",
        "confidence_score": 0.8
      }
    ]
  },
  "comparison_analysis": {
    "skill_gap_analysis": {"matching_skills": [], "missing_skills": [], "transferable_skills": []},
    "experience_gap_analysis": {"relevant_experience": [], "missing_experience": []},
    "personalized_story_bank": {"stories": []},
    "interview_prep_strategy": {"strengths_to_highlight": [], "areas_to_address": []},
    "overall_fit_score": 0
  },
  "preparation_guidance": {
    "preparation_timeline": {},
    "preparation_priorities": ["string"],
    "personalized_guidance": {}
  }
}"""


def _section(title: str, payload: BaseModel | None) -> str:
    if payload is None:
        return f"{title}:\nNOT AVAILABLE (this input could not be gathered)"
    return f"{title}:\n{json.dumps(payload.model_dump(exclude_none=True), indent=2)}"


def build_synthesis_prompt(data: SynthesisInput) -> str:
    """Assemble the synthesis prompt from whichever sections were gathered."""
    real_questions = []
    if data.company_insights is not None:
        bank = data.company_insights.interview_questions_bank
        for category, questions in bank.model_dump().items():
            real_questions.extend(f"- [{category}] {q}" for q in questions)

    parts = [
        f"Create an interview preparation plan for the {data.role or 'target'} role "
        f"at {data.company}"
        + (f" ({data.country})" if data.country else "")
        + (f", candidate seniority: {data.target_seniority}" if data.target_seniority else "")
        + ".",
        "REAL INTERVIEW QUESTIONS REPORTED BY CANDIDATES:\n"
        + ("\n".join(real_questions) if real_questions else "None found."),
        _section(SECTION_TITLES["company_research"], data.company_insights),
        _section(SECTION_TITLES["job_analysis"], data.job_requirements),
        _section(SECTION_TITLES["cv_analysis"], data.cv_analysis),
    ]

    requirements = [
        "REQUIREMENTS:",
        "- Produce 4-6 interview stages ordered by order_index starting at 1.",
        f"- Group questions under these categories: {', '.join(QUESTION_CATEGORIES)}.",
        "- Prefer real reported questions; adapt them to the role and candidate.",
        "- Every question needs a rationale and a suggested answer approach.",
    ]
    if data.missing_sections:
        missing = ", ".join(SECTION_TITLES.get(s, s) for s in data.missing_sections)
        requirements.append(
            f"- These inputs are unavailable: {missing}. Do not invent them; say so "
            "in the comparison analysis and base the plan on the remaining inputs."
        )
    if data.cv_analysis is None:
        requirements.append(
            "- Without a candidate profile, leave candidate-specific gap fields empty "
            "and set overall_fit_score to null."
        )
    parts.append("\n".join(requirements))
    parts.append(f"Return ONLY a JSON object with this structure:\n{OUTPUT_SCHEMA}")
    return "\n\n".join(parts)


def parse_synthesis_output(raw: str) -> SynthesisOutput:
    """Validate raw model text as a complete synthesis document.

    Raises:
        SynthesisMalformedError: On unparseable JSON or schema violations
    """
    try:
        data = extract_json_from_response(raw)
    except ValueError as e:
        raise SynthesisMalformedError(str(e)) from e

    try:
        return SynthesisOutput.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first["loc"]) or "document"
        raise SynthesisMalformedError(
            f"Synthesis output failed validation ({e.error_count()} errors; "
            f"first at {location}: {first['msg']})"
        ) from e


class InterviewSynthesizer:
    """Synthesis collaborator backed by the LLM client."""

    def __init__(self, llm: OllamaClient):
        self.llm = llm

    async def __call__(self, data: SynthesisInput) -> SynthesisOutput:
        prompt = build_synthesis_prompt(data)
        logger.info(
            f"Synthesizing plan for {data.company} "
            f"(missing: {', '.join(data.missing_sections) or 'none'})"
        )
        raw = await self.llm.generate(prompt, system=SYSTEM_PROMPT, json_mode=True)
        output = parse_synthesis_output(raw)
        output.synthesis_metadata = SynthesisMetadata(
            model=self.llm.model,
            generated_at=utcnow(),
            missing_sections=list(data.missing_sections),
        )
        logger.info(
            f"Synthesis produced {len(output.interview_stages)} stages and "
            f"{output.question_count} questions"
        )
        return output
