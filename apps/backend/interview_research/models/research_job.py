"""ResearchJob model: the single source of truth for job state.

Status Flow:
    pending → processing → completed (success)
                         → failed (error)
    completed / failed → pending (explicit retry only)
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin

JOB_PENDING = "pending"
JOB_PROCESSING = "processing"
JOB_COMPLETED = "completed"
JOB_FAILED = "failed"

TERMINAL_STATUSES = frozenset({JOB_COMPLETED, JOB_FAILED})


class ResearchJob(Base, TimestampMixin):
    """One end-to-end research and synthesis run for a submission.

    Attributes:
        id: Primary key UUID, immutable
        company / role / country: Target identifiers
        role_links: Job posting URLs supplied by the candidate
        cv_text: Raw CV text (optional)
        target_seniority: junior / mid / senior (optional)
        status: pending / processing / completed / failed
        progress_step: Advisory label of the current pipeline phase
        progress_percentage: 0-100, never decreases within a run
        error_message: Set only while status=failed
        error_kind: Error taxonomy name (e.g. SynthesisMalformed)
        error_traceback: Full traceback for unexpected failures
        started_at: Set on the first transition into processing
        completed_at: Set on the transition into completed or failed
    """

    __tablename__ = "research_jobs"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)

    # Target identifiers
    company: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    country: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Candidate materials
    role_links: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)
    cv_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    target_seniority: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    # Status tracking
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=JOB_PENDING
    )
    progress_step: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    progress_percentage: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )

    # Error handling
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error_kind: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    error_traceback: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        Index("idx_research_jobs_status", "status"),
        Index("idx_research_jobs_status_updated", "status", "updated_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<ResearchJob(id={self.id}, company='{self.company}', "
            f"status={self.status}, progress={self.progress_percentage}%)>"
        )
