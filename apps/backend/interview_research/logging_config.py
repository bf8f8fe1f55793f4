"""Logging setup with per-job context.

Background runs set the current job id in a context variable so that every
log line emitted by gatherers, synthesis and persistence carries it, even
though those modules never receive the id explicitly.
"""

import logging
import sys
from contextvars import ContextVar

job_id_var: ContextVar[str | None] = ContextVar("job_id", default=None)

LOG_FORMAT = "%(asctime)s %(levelname)-8s [job=%(job_id)s] %(name)s: %(message)s"


class JobContextFilter(logging.Filter):
    """Filter to inject the current job id into log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        job_id = job_id_var.get()
        record.job_id = job_id if job_id else "-"
        return True


def configure_logging(level: str = "INFO") -> None:
    """Install a console handler on the root logger.

    Safe to call more than once; an existing handler installed by this
    function is replaced rather than duplicated.

    Args:
        level: Root log level name (e.g. "INFO", "DEBUG")
    """
    root = logging.getLogger()
    root.setLevel(level.upper())

    for handler in list(root.handlers):
        if getattr(handler, "_interview_research", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(JobContextFilter())
    handler._interview_research = True  # type: ignore[attr-defined]
    root.addHandler(handler)

    # Quiet noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if level.upper() == "DEBUG" else logging.WARNING
    )
