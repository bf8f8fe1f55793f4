"""Gather phase: run the three data gatherers concurrently.

Each gatherer is bounded by its own deadline and the join waits for all of
them, so one slow or failing gatherer never cancels the others. A gatherer
that "succeeds" with an empty payload is treated as a failure: only data
that would actually inform synthesis counts as gathered.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from interview_research.schemas.job import ResearchRequest
from interview_research.services.resilience import Outcome, with_timeout

logger = logging.getLogger(__name__)

COMPANY_RESEARCH = "company_research"
JOB_ANALYSIS = "job_analysis"
CV_ANALYSIS = "cv_analysis"

SECTIONS = (COMPANY_RESEARCH, JOB_ANALYSIS, CV_ANALYSIS)

Gatherer = Callable[[ResearchRequest], Awaitable[BaseModel | None]]


@dataclass
class Gatherers:
    """The three gather collaborators, keyed by section."""

    company_research: Gatherer
    job_analysis: Gatherer
    cv_analysis: Gatherer


@dataclass
class GatherTimeouts:
    company_research: float
    job_analysis: float
    cv_analysis: float


@dataclass
class GatherResults:
    """Validated outcomes of one gather phase."""

    company_research: Outcome
    job_analysis: Outcome
    cv_analysis: Outcome

    def items(self) -> list[tuple[str, Outcome]]:
        return [(section, getattr(self, section)) for section in SECTIONS]

    @property
    def all_failed(self) -> bool:
        return not any(outcome.ok for _, outcome in self.items())

    @property
    def missing_sections(self) -> list[str]:
        return [section for section, outcome in self.items() if not outcome.ok]

    def failures(self) -> dict[str, str]:
        return {
            section: f"{outcome.reason}: {outcome.detail}"
            for section, outcome in self.items()
            if not outcome.ok
        }

    def value(self, section: str) -> Any:
        outcome = getattr(self, section)
        return outcome.value if outcome.ok else None

    def as_records(self) -> dict[str, dict[str, Any]]:
        return {section: outcome.as_record() for section, outcome in self.items()}


def has_meaningful_data(value: Any) -> bool:
    """Whether a gathered payload carries any non-empty field.

    None, blank strings, empty containers and models whose every field is
    empty all count as no data.
    """
    if value is None:
        return False
    if isinstance(value, BaseModel):
        return has_meaningful_data(value.model_dump(exclude_none=True))
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, dict):
        return any(has_meaningful_data(item) for item in value.values())
    if isinstance(value, (list, tuple, set)):
        return any(has_meaningful_data(item) for item in value)
    # Numbers and booleans are data in their own right
    return True


def validate_outcome(section: str, outcome: Outcome) -> Outcome:
    """Downgrade a successful but empty gather to a failure."""
    if outcome.ok and not has_meaningful_data(outcome.value):
        logger.warning(f"{section} returned an empty payload; treating as failed")
        return Outcome.failure("error", f"{section} returned no usable data")
    return outcome


async def gather_all(
    request: ResearchRequest,
    gatherers: Gatherers,
    timeouts: GatherTimeouts,
) -> GatherResults:
    """Run all gatherers concurrently and validate their results.

    Never raises for gatherer failures; inspect the returned outcomes.
    """
    outcomes = await asyncio.gather(
        *(
            with_timeout(
                lambda gatherer=getattr(gatherers, section): gatherer(request),
                getattr(timeouts, section),
                section,
            )
            for section in SECTIONS
        )
    )
    validated = {
        section: validate_outcome(section, outcome)
        for section, outcome in zip(SECTIONS, outcomes)
    }
    results = GatherResults(**validated)

    succeeded = [section for section, outcome in results.items() if outcome.ok]
    logger.info(
        f"Gather phase finished: {len(succeeded)}/{len(SECTIONS)} succeeded "
        f"({', '.join(succeeded) or 'none'})"
    )
    return results
