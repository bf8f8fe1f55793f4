"""SearchArtifact model: durable raw output of the gather phase.

The raw columns are written before synthesis is attempted, so a synthesis
or persistence failure never loses gathered data. Synthesis-level fields
are filled in later by the persist phase.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin

ARTIFACT_RAW_SAVED = "raw_data_saved"
ARTIFACT_COMPLETE = "complete"
ARTIFACT_FAILED = "failed"


class SearchArtifact(Base, TimestampMixin):
    """One row per job holding the three gatherer outputs."""

    __tablename__ = "search_artifacts"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    job_id: Mapped[UUID] = mapped_column(
        ForeignKey("research_jobs.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )

    # Raw gatherer outputs (null when that gatherer failed)
    company_research_raw: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSON, nullable=True
    )
    job_analysis_raw: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSON, nullable=True
    )
    cv_analysis_raw: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSON, nullable=True
    )
    # {"company_research": {"ok": false, "reason": "timeout", "detail": ...}, ...}
    gather_outcomes: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, default=dict
    )

    processing_status: Mapped[str] = mapped_column(
        String(30), nullable=False, default=ARTIFACT_RAW_SAVED
    )
    raw_saved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Synthesis-level fields
    synthesis_metadata: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSON, nullable=True
    )
    preparation_guidance: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSON, nullable=True
    )
    processing_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<SearchArtifact(job_id={self.job_id}, "
            f"status={self.processing_status})>"
        )
