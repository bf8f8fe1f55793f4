"""Service wiring and FastAPI dependencies.

The orchestrator and stores are built once at startup and kept on
app.state; route handlers reach them through the dependencies below.
"""

from dataclasses import dataclass

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from interview_research.config import Settings, settings
from interview_research.services.company_research import CompanyResearcher
from interview_research.services.cv_analysis import CvAnalyzer
from interview_research.services.events import JobEventBus
from interview_research.services.gathering import Gatherers
from interview_research.services.job_analysis import JobAnalyzer
from interview_research.services.job_store import JobStore
from interview_research.services.llm import OllamaClient
from interview_research.services.orchestrator import (
    PipelineTimeouts,
    ResearchOrchestrator,
)
from interview_research.services.persistence import ArtifactStore
from interview_research.services.progress_client import (
    PollingPolicy,
    ProgressClient,
    StoreSnapshotSource,
)
from interview_research.services.search_client import TavilyClient
from interview_research.services.synthesis import InterviewSynthesizer


@dataclass
class Services:
    """Long-lived service objects shared by all requests."""

    store: JobStore
    artifacts: ArtifactStore
    orchestrator: ResearchOrchestrator
    progress: ProgressClient


def build_services(
    session_factory: async_sessionmaker[AsyncSession],
    config: Settings = settings,
    gatherers: Gatherers | None = None,
    synthesizer=None,
    timeouts: PipelineTimeouts | None = None,
) -> Services:
    """Wire stores, collaborators and the orchestrator.

    Args:
        session_factory: Session factory for all persistence
        config: Settings to read endpoints and bounds from
        gatherers: Override the default LLM/search gatherers
        synthesizer: Override the default LLM synthesizer
        timeouts: Override the configured deadlines
    """
    events = JobEventBus()
    timeouts = timeouts or PipelineTimeouts.from_settings(config)
    store = JobStore(session_factory, events)
    artifacts = ArtifactStore(session_factory, write_timeout=timeouts.db_write)

    if gatherers is None or synthesizer is None:
        llm = OllamaClient(
            base_url=config.ollama_base_url,
            model=config.ollama_model,
            timeout=config.ollama_timeout,
        )
        search = TavilyClient(
            api_key=config.tavily_api_key,
            base_url=config.tavily_base_url,
            max_results=config.tavily_max_results,
            timeout=config.tavily_timeout,
            max_attempts=config.retry_max_attempts,
            base_delay=config.retry_base_delay,
            max_delay=config.retry_max_delay,
        )
        gatherers = gatherers or Gatherers(
            company_research=CompanyResearcher(llm, search),
            job_analysis=JobAnalyzer(llm, search),
            cv_analysis=CvAnalyzer(llm),
        )
        synthesizer = synthesizer or InterviewSynthesizer(llm)

    orchestrator = ResearchOrchestrator(
        store, artifacts, gatherers, synthesizer, timeouts=timeouts
    )
    progress = ProgressClient(
        StoreSnapshotSource(store),
        policy=PollingPolicy.from_settings(config),
        events=events,
    )
    return Services(
        store=store, artifacts=artifacts, orchestrator=orchestrator, progress=progress
    )


def get_services(request: Request) -> Services:
    """FastAPI dependency returning the application's services."""
    return request.app.state.services
