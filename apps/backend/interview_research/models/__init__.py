"""Database models for interview research."""

from .artifact import SearchArtifact
from .base import Base
from .comparison import CvJobComparison
from .interview import InterviewQuestion, InterviewStage
from .research_job import ResearchJob

__all__ = [
    "Base",
    "ResearchJob",
    "SearchArtifact",
    "InterviewStage",
    "InterviewQuestion",
    "CvJobComparison",
]
