"""CvJobComparison model: gap analysis between candidate and role."""

from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Float, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


class CvJobComparison(Base, TimestampMixin):
    """Comparison/gap analysis produced by synthesis, one per job.

    missing_inputs lists the gather sections that were unavailable when the
    analysis was produced (e.g. ["cv_analysis"] when no CV data could be
    gathered), so consumers can tell a degraded analysis from a full one.
    """

    __tablename__ = "cv_job_comparisons"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    job_id: Mapped[UUID] = mapped_column(
        ForeignKey("research_jobs.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )

    skill_gap_analysis: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, default=dict
    )
    experience_gap_analysis: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, default=dict
    )
    personalized_story_bank: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, default=dict
    )
    interview_prep_strategy: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, default=dict
    )
    preparation_priorities: Mapped[list[Any]] = mapped_column(
        JSON, nullable=False, default=list
    )
    overall_fit_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    missing_inputs: Mapped[list[Any]] = mapped_column(
        JSON, nullable=False, default=list
    )

    def __repr__(self) -> str:
        return (
            f"<CvJobComparison(job_id={self.job_id}, "
            f"fit={self.overall_fit_score}, missing={self.missing_inputs})>"
        )
