"""Research job request and snapshot schemas.

JobSnapshot is the read-only view exposed to progress consumers; it is
what both the HTTP progress endpoints and the in-process change feed carry.
"""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from interview_research.utils.time import as_utc


class ResearchRequest(BaseModel):
    """Submission payload: target identifiers plus candidate materials."""

    company: str = Field(..., min_length=1, max_length=255)
    role: str | None = Field(None, max_length=255)
    country: str | None = Field(None, max_length=100)
    role_links: list[str] = Field(
        default_factory=list,
        max_length=10,
        description="Job posting URLs used by job analysis",
    )
    cv_text: str | None = Field(None, description="Raw CV text used by CV analysis")
    target_seniority: Literal["junior", "mid", "senior"] | None = None

    @field_validator("role_links")
    @classmethod
    def strip_blank_links(cls, links: list[str]) -> list[str]:
        return [link.strip() for link in links if link and link.strip()]

    class Config:
        from_attributes = True


class JobSubmitResponse(BaseModel):
    """Acknowledgment returned before any gathering begins."""

    job_id: UUID
    status: str
    message: str


class JobSnapshot(BaseModel):
    """Point-in-time view of a job record."""

    id: UUID
    company: str
    role: str | None = None
    status: Literal["pending", "processing", "completed", "failed"]
    progress_step: str | None = None
    progress_percentage: int = Field(..., ge=0, le=100)
    error_message: str | None = None
    error_kind: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    @field_validator("started_at", "completed_at", "created_at", "updated_at")
    @classmethod
    def normalize_timezone(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)

    @property
    def is_terminal(self) -> bool:
        return self.status in ("completed", "failed")

    class Config:
        from_attributes = True


class StallStatusResponse(BaseModel):
    """Stall indicators derived from time since the last update."""

    is_stalled: bool
    stalled_seconds: float
    seconds_since_update: float
    retry_available: bool


class JobProgressResponse(BaseModel):
    """Snapshot plus client-side hints for the progress UI."""

    job: JobSnapshot
    step_message: str | None = None
    stall: StallStatusResponse
    next_poll_seconds: float | None = Field(
        None, description="Suggested delay before the next poll; null once terminal"
    )
    estimated_seconds_remaining: float | None = None
