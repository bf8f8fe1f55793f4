"""Interview stage and question models (synthesized output)."""

from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin


class InterviewStage(Base, TimestampMixin):
    """One stage of the predicted interview process."""

    __tablename__ = "interview_stages"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    job_id: Mapped[UUID] = mapped_column(
        ForeignKey("research_jobs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    order_index: Mapped[int] = mapped_column(Integer, nullable=False)
    duration: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    interviewer: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    guidance: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    preparation_tips: Mapped[list[Any]] = mapped_column(
        JSON, nullable=False, default=list
    )
    common_questions: Mapped[list[Any]] = mapped_column(
        JSON, nullable=False, default=list
    )
    red_flags_to_avoid: Mapped[list[Any]] = mapped_column(
        JSON, nullable=False, default=list
    )

    questions: Mapped[list["InterviewQuestion"]] = relationship(
        back_populates="stage",
        cascade="all, delete-orphan",
        order_by="InterviewQuestion.category",
    )

    def __repr__(self) -> str:
        return f"<InterviewStage(order={self.order_index}, name='{self.name}')>"


class InterviewQuestion(Base, TimestampMixin):
    """A synthesized practice question attached to a stage."""

    __tablename__ = "interview_questions"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    job_id: Mapped[UUID] = mapped_column(
        ForeignKey("research_jobs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    stage_id: Mapped[UUID] = mapped_column(
        ForeignKey("interview_stages.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    question: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    question_type: Mapped[str] = mapped_column(
        String(30), nullable=False, default="synthesized"
    )
    difficulty: Mapped[str] = mapped_column(String(10), nullable=False, default="Medium")
    rationale: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    suggested_answer_approach: Mapped[Optional[str]] = mapped_column(
        Text, nullable=True
    )
    evaluation_criteria: Mapped[list[Any]] = mapped_column(
        JSON, nullable=False, default=list
    )
    follow_up_questions: Mapped[list[Any]] = mapped_column(
        JSON, nullable=False, default=list
    )
    star_story_fit: Mapped[Optional[bool]] = mapped_column(nullable=True)
    company_context: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    confidence_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.8)

    stage: Mapped[InterviewStage] = relationship(back_populates="questions")

    def __repr__(self) -> str:
        return f"<InterviewQuestion(category={self.category}, difficulty={self.difficulty})>"
