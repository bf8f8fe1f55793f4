"""Structured outputs of the three data gatherers.

Fields default to empty values because LLM output frequently omits keys;
emptiness is judged afterwards by the gather phase, not by these models.
"""

from typing import Any

from pydantic import BaseModel, Field


class CompanyInterviewStage(BaseModel):
    """Interview stage as reported by company research."""

    name: str
    order_index: int = 0
    duration: str | None = None
    interviewer: str | None = None
    content: str | None = None
    common_questions: list[str] = Field(default_factory=list)
    success_tips: list[str] = Field(default_factory=list)
    difficulty_level: str | None = None


class InterviewQuestionsBank(BaseModel):
    """Real interview questions found during company research."""

    behavioral: list[str] = Field(default_factory=list)
    technical: list[str] = Field(default_factory=list)
    situational: list[str] = Field(default_factory=list)
    company_specific: list[str] = Field(default_factory=list)


class CompanyInsights(BaseModel):
    """Company research output."""

    name: str | None = None
    industry: str | None = None
    culture: str | None = None
    values: list[str] = Field(default_factory=list)
    interview_philosophy: str | None = None
    recent_hiring_trends: str | None = None
    interview_stages: list[CompanyInterviewStage] = Field(default_factory=list)
    interview_questions_bank: InterviewQuestionsBank = Field(
        default_factory=InterviewQuestionsBank
    )
    hiring_manager_insights: dict[str, Any] = Field(default_factory=dict)
    sources: list[str] = Field(default_factory=list)


class JobRequirements(BaseModel):
    """Job analysis output."""

    technical_skills: list[str] = Field(default_factory=list)
    soft_skills: list[str] = Field(default_factory=list)
    experience_level: str | None = None
    responsibilities: list[str] = Field(default_factory=list)
    qualifications: list[str] = Field(default_factory=list)
    nice_to_have: list[str] = Field(default_factory=list)
    interview_process_hints: list[str] = Field(default_factory=list)


class CvSkills(BaseModel):
    technical: list[str] = Field(default_factory=list)
    soft: list[str] = Field(default_factory=list)
    certifications: list[str] = Field(default_factory=list)


class CvExperience(BaseModel):
    company: str | None = None
    role: str | None = None
    duration: str | None = None
    achievements: list[str] = Field(default_factory=list)


class CvAnalysis(BaseModel):
    """CV analysis output."""

    current_role: str | None = None
    experience_years: int | None = Field(None, ge=0)
    skills: CvSkills = Field(default_factory=CvSkills)
    education: list[dict[str, Any]] = Field(default_factory=list)
    experience: list[CvExperience] = Field(default_factory=list)
    projects: list[dict[str, Any]] = Field(default_factory=list)
    key_achievements: list[str] = Field(default_factory=list)
