"""Job handler registry.

Maps each job type to the function that executes it. Handlers receive the job and a progress context and return the
JSON-serializable result stored on the completed job.
"""

from collections.abc import Callable
from typing import TYPE_CHECKING, Any, ClassVar

from finance_intake.core.errors import UnknownJobTypeError
from finance_intake.core.models import Job, JobType

if TYPE_CHECKING:
    from .runner import JobContext

JobHandler = Callable[[Job, "JobContext"], dict[str, Any]]


class JobHandlerRegistry:
    """Registry for job handlers."""

    _registry: ClassVar[dict[JobType, JobHandler]] = {}

    @classmethod
    def register(cls, job_type: JobType, handler: JobHandler) -> None:
        """Register the handler for a job type, replacing any previous one."""
        cls._registry[JobType(job_type)] = handler

    @classmethod
    def get(cls, job_type: JobType | str) -> JobHandler:
        """Retrieve the handler for a job type."""
        try:
            return cls._registry[JobType(job_type)]
        except (KeyError, ValueError) as exc:
            msg = f"No handler registered for job type: {job_type}"
            raise UnknownJobTypeError(msg) from exc

    @classmethod
    def available(cls) -> list[str]:
        """List all job types with a registered handler."""
        return [str(job_type) for job_type in cls._registry]
