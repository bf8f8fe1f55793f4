"""Read models for persisted research output."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class QuestionResponse(BaseModel):
    id: UUID
    question: str
    category: str
    difficulty: str
    rationale: str | None = None
    suggested_answer_approach: str | None = None
    evaluation_criteria: list[Any] = Field(default_factory=list)
    follow_up_questions: list[Any] = Field(default_factory=list)
    star_story_fit: bool | None = None
    company_context: str | None = None
    confidence_score: float

    class Config:
        from_attributes = True


class StageResponse(BaseModel):
    id: UUID
    name: str
    order_index: int
    duration: str | None = None
    interviewer: str | None = None
    content: str | None = None
    guidance: str | None = None
    preparation_tips: list[Any] = Field(default_factory=list)
    common_questions: list[Any] = Field(default_factory=list)
    red_flags_to_avoid: list[Any] = Field(default_factory=list)
    questions: list[QuestionResponse] = Field(default_factory=list)

    class Config:
        from_attributes = True


class ComparisonResponse(BaseModel):
    skill_gap_analysis: dict[str, Any]
    experience_gap_analysis: dict[str, Any]
    personalized_story_bank: dict[str, Any]
    interview_prep_strategy: dict[str, Any]
    preparation_priorities: list[Any] = Field(default_factory=list)
    overall_fit_score: float | None = None
    missing_inputs: list[Any] = Field(default_factory=list)

    class Config:
        from_attributes = True


class ResearchResultsResponse(BaseModel):
    """Synthesized results of a completed job."""

    job_id: UUID
    stages: list[StageResponse]
    comparison: ComparisonResponse | None = None
    preparation_guidance: dict[str, Any] | None = None
    total_questions: int


class ArtifactResponse(BaseModel):
    """Raw gather-phase artifact."""

    job_id: UUID
    processing_status: str
    company_research_raw: dict[str, Any] | None = None
    job_analysis_raw: dict[str, Any] | None = None
    cv_analysis_raw: dict[str, Any] | None = None
    gather_outcomes: dict[str, Any] = Field(default_factory=dict)
    raw_saved_at: datetime | None = None
    processing_error: str | None = None

    class Config:
        from_attributes = True
