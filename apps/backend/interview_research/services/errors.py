"""Error taxonomy for research job runs.

Each fatal error carries a ``kind`` that is written to the job record next
to the message, so progress consumers can distinguish failure classes
without parsing text. Individual gather failures are not exceptions; they
are reported as failed Outcomes by the resilience wrappers.
"""

from uuid import UUID

UNHANDLED_EXCEPTION = "UnhandledException"
RUN_CANCELLED = "RunCancelled"


class ResearchError(Exception):
    """Base class for errors that fail a research job."""

    kind = "ResearchError"


class GatherTotalFailureError(ResearchError):
    """All data gatherers failed or returned nothing usable."""

    kind = "GatherTotalFailure"

    def __init__(self, failures: dict[str, str]):
        self.failures = failures
        summary = "; ".join(f"{name}: {detail}" for name, detail in failures.items())
        super().__init__(f"All data gatherers failed ({summary})")


class SynthesisError(ResearchError):
    """Synthesis call failed for a reason other than timeout or bad output."""

    kind = "SynthesisError"


class SynthesisTimeoutError(SynthesisError):
    kind = "SynthesisTimeout"

    def __init__(self, seconds: float):
        self.seconds = seconds
        super().__init__(f"Synthesis timed out after {seconds}s")


class SynthesisMalformedError(SynthesisError):
    """Synthesis returned output that is not a valid document."""

    kind = "SynthesisMalformed"


class PersistenceWriteError(ResearchError):
    """A single bounded write in the persistence layer failed."""

    kind = "PersistenceWriteFailure"

    def __init__(self, sub_write: str, detail: str):
        self.sub_write = sub_write
        self.detail = detail
        super().__init__(f"Persistence write '{sub_write}' failed: {detail}")


class JobNotFoundError(LookupError):
    def __init__(self, job_id: UUID):
        self.job_id = job_id
        super().__init__(f"Research job {job_id} not found")


class InvalidTransitionError(ResearchError):
    """A status change was rejected by the store's transition guard."""

    kind = "InvalidTransition"

    def __init__(self, job_id: UUID, current: str, requested: str):
        self.job_id = job_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Job {job_id} cannot move from '{current}' to '{requested}'"
        )


class JobAlreadyRunningError(ResearchError):
    kind = "JobAlreadyRunning"

    def __init__(self, job_id: UUID):
        self.job_id = job_id
        super().__init__(f"Job {job_id} already has an active run")


def error_kind(exc: BaseException) -> str:
    """Taxonomy name for an exception escaping a run."""
    if isinstance(exc, ResearchError):
        return exc.kind
    return UNHANDLED_EXCEPTION
