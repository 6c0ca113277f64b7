"""Job queue: tracked background work with a compare-and-set status state machine."""

from .export import transactions_to_csv  # noqa: F401
from .handlers import register_default_handlers, validate_job_payload  # noqa: F401
from .queue import TERMINAL_STATUSES, JobQueue, can_transition  # noqa: F401
from .registry import JobHandlerRegistry  # noqa: F401
from .runner import JobContext, JobRunner  # noqa: F401
