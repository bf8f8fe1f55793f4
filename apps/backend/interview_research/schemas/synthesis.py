"""Synthesis document schemas.

SynthesisOutput is validated as one document: a generation that does not
satisfy these models is rejected whole and nothing from it is persisted.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from .research import CompanyInsights, CvAnalysis, JobRequirements

QUESTION_CATEGORIES = (
    "behavioral",
    "technical",
    "situational",
    "company_specific",
    "role_specific",
    "experience_based",
    "cultural_fit",
)

DIFFICULTY_LEVELS = ("Easy", "Medium", "Hard")


class SynthesisInput(BaseModel):
    """Everything synthesis needs for one job.

    A gathered section is None when its gatherer failed or returned nothing;
    missing_sections names those sections for the prompt and the comparison.
    """

    company: str
    role: str | None = None
    country: str | None = None
    target_seniority: str | None = None
    company_insights: CompanyInsights | None = None
    job_requirements: JobRequirements | None = None
    cv_analysis: CvAnalysis | None = None
    missing_sections: list[str] = Field(default_factory=list)


class StageDraft(BaseModel):
    name: str = Field(..., min_length=1)
    order_index: int = Field(..., ge=1)
    duration: str | None = None
    interviewer: str | None = None
    content: str | None = None
    guidance: str | None = None
    preparation_tips: list[str] = Field(default_factory=list)
    common_questions: list[str] = Field(default_factory=list)
    red_flags_to_avoid: list[str] = Field(default_factory=list)


class QuestionDraft(BaseModel):
    question: str = Field(..., min_length=1)
    difficulty: str = "Medium"
    rationale: str | None = None
    suggested_answer_approach: str | None = None
    evaluation_criteria: list[str] = Field(default_factory=list)
    follow_up_questions: list[str] = Field(default_factory=list)
    star_story_fit: bool | None = None
    company_context: str | None = None
    confidence_score: float = Field(0.8, ge=0.0, le=1.0)

    @field_validator("difficulty", mode="before")
    @classmethod
    def normalize_difficulty(cls, value: Any) -> str:
        if isinstance(value, str):
            candidate = value.strip().capitalize()
            if candidate in DIFFICULTY_LEVELS:
                return candidate
        return "Medium"


class InterviewQuestionSet(BaseModel):
    """Questions grouped by category."""

    behavioral: list[QuestionDraft] = Field(default_factory=list)
    technical: list[QuestionDraft] = Field(default_factory=list)
    situational: list[QuestionDraft] = Field(default_factory=list)
    company_specific: list[QuestionDraft] = Field(default_factory=list)
    role_specific: list[QuestionDraft] = Field(default_factory=list)
    experience_based: list[QuestionDraft] = Field(default_factory=list)
    cultural_fit: list[QuestionDraft] = Field(default_factory=list)

    def by_category(self) -> list[tuple[str, QuestionDraft]]:
        """Flatten to (category, question) pairs in category order."""
        return [
            (category, question)
            for category in QUESTION_CATEGORIES
            for question in getattr(self, category)
        ]


class ComparisonAnalysis(BaseModel):
    skill_gap_analysis: dict[str, Any] = Field(default_factory=dict)
    experience_gap_analysis: dict[str, Any] = Field(default_factory=dict)
    personalized_story_bank: dict[str, Any] = Field(default_factory=dict)
    interview_prep_strategy: dict[str, Any] = Field(default_factory=dict)
    overall_fit_score: float | None = Field(None, ge=0.0, le=100.0)


class PreparationGuidance(BaseModel):
    preparation_timeline: dict[str, Any] = Field(default_factory=dict)
    preparation_priorities: list[str] = Field(default_factory=list)
    personalized_guidance: dict[str, Any] = Field(default_factory=dict)


class SynthesisMetadata(BaseModel):
    model: str
    generated_at: datetime
    missing_sections: list[str] = Field(default_factory=list)


class SynthesisOutput(BaseModel):
    """Complete synthesized document for one job."""

    interview_stages: list[StageDraft] = Field(..., min_length=1)
    interview_questions: InterviewQuestionSet
    comparison_analysis: ComparisonAnalysis = Field(default_factory=ComparisonAnalysis)
    preparation_guidance: PreparationGuidance = Field(
        default_factory=PreparationGuidance
    )
    synthesis_metadata: SynthesisMetadata | None = None

    @model_validator(mode="after")
    def require_questions(self) -> "SynthesisOutput":
        if not self.interview_questions.by_category():
            raise ValueError("interview_questions must contain at least one question")
        return self

    @property
    def question_count(self) -> int:
        return len(self.interview_questions.by_category())
