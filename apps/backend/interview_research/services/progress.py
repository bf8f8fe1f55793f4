"""Progress checkpoints for a research run.

A ProgressReporter is created per run and handed to each phase, which
reports by step name; the label/percentage table lives here so phases never
hard-code percentages.
"""

import logging
from dataclasses import dataclass
from uuid import UUID

from interview_research.services.errors import (
    InvalidTransitionError,
    JobNotFoundError,
    PersistenceWriteError,
)
from interview_research.services.job_store import JobStore
from interview_research.services.resilience import with_timeout

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressStep:
    label: str
    percentage: int
    message: str


PROGRESS_STEPS: dict[str, ProgressStep] = {
    step.label: step
    for step in (
        ProgressStep("QUEUED", 0, "Waiting to start"),
        ProgressStep("INITIALIZING", 5, "Starting research"),
        ProgressStep("GATHERING", 15, "Researching company, role and CV"),
        ProgressStep("GATHER_PARTIAL", 45, "Research finished with some sources unavailable"),
        ProgressStep("GATHER_COMPLETE", 50, "Research complete"),
        ProgressStep("RAW_DATA_SAVED", 55, "Research saved"),
        ProgressStep("SYNTHESIZING", 60, "Generating interview stages and questions"),
        ProgressStep("SYNTHESIS_COMPLETE", 80, "Interview plan generated"),
        ProgressStep("FINALIZING", 90, "Saving interview plan"),
        ProgressStep("COMPLETED", 100, "Interview preparation ready"),
        ProgressStep("FAILED", 0, "Research failed"),
    )
}


def step_message(label: str | None) -> str | None:
    """Human-readable message for a stored step label."""
    if label is None:
        return None
    step = PROGRESS_STEPS.get(label)
    return step.message if step else label


class ProgressReporter:
    """Reports checkpoints of one run to the job store.

    Each write is bounded by ``write_timeout``; a write that fails or times
    out raises PersistenceWriteError naming the checkpoint.
    """

    def __init__(self, store: JobStore, job_id: UUID, write_timeout: float):
        self.store = store
        self.job_id = job_id
        self.write_timeout = write_timeout
        self.last_step: str | None = None

    async def start(self) -> None:
        """Claim the job for this run (pending → processing).

        Raises:
            InvalidTransitionError: If the job is not pending
            JobNotFoundError: If the job does not exist
            PersistenceWriteError: If the write fails or times out
        """
        step = PROGRESS_STEPS["INITIALIZING"]
        outcome = await with_timeout(
            lambda: self.store.start(self.job_id, step.label, step.percentage),
            self.write_timeout,
            "start run",
        )
        if not outcome.ok:
            if isinstance(outcome.error, (InvalidTransitionError, JobNotFoundError)):
                raise outcome.error
            raise PersistenceWriteError("job start", outcome.detail or "")
        self.last_step = step.label

    async def advance(self, label: str) -> None:
        step = PROGRESS_STEPS[label]
        outcome = await with_timeout(
            lambda: self.store.advance(self.job_id, step.label, step.percentage),
            self.write_timeout,
            f"progress update {step.label}",
        )
        if not outcome.ok:
            raise PersistenceWriteError(f"progress {step.label}", outcome.detail or "")
        self.last_step = step.label
        logger.info(f"Progress: {step.label} ({step.percentage}%)")

    async def complete(self) -> None:
        outcome = await with_timeout(
            lambda: self.store.complete(self.job_id),
            self.write_timeout,
            "mark completed",
        )
        if not outcome.ok:
            raise PersistenceWriteError("job completion", outcome.detail or "")
        self.last_step = "COMPLETED"
