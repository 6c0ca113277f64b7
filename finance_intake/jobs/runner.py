"""Background job execution."""

from collections.abc import Callable

from sqlalchemy.orm import Session

from finance_intake.core.db import SessionLocal
from finance_intake.core.errors import JobCancelledError
from finance_intake.core.models import Job, JobStatus
from finance_intake.core.settings import get_settings
from finance_intake.core.utils import get_logger

from .queue import JobQueue
from .registry import JobHandlerRegistry

logger = get_logger("finance-intake.worker")


class JobContext:
    """Progress reporting handle passed to job handlers."""

    def __init__(self, queue: JobQueue, job: Job, progress_every: int) -> None:
        """Bind the context to a running job."""
        self.queue = queue
        self.job = job
        self.progress_every = max(1, progress_every)

    @property
    def session_factory(self) -> Callable[[], Session]:
        """Session factory of the underlying queue, for handlers that touch other tables."""
        return self.queue.session_factory

    def report(self, processed: int, total: int | None = None) -> None:
        """Record progress; raises JobCancelledError once the job is no longer RUNNING."""
        if not self.queue.update_progress(self.job.id, processed, total):
            msg = f"Job {self.job.id} stopped running (cancelled) at {processed} items"
            raise JobCancelledError(msg)


class JobRunner:
    """JobRunner claims PENDING jobs and executes them through the handler registry."""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal) -> None:
        """Initialize JobRunner with its job queue."""
        self.queue = JobQueue(session_factory)
        self.progress_every = get_settings().job_progress_every

    def process_job(self, job_id: str) -> Job | None:
        """Run one PENDING job to completion; returns its final state, or None if it does not exist."""
        job = self.queue.load(job_id)
        if job is None:
            logger.error(f"Job not found: {job_id}")
            return None
        if job.status != JobStatus.PENDING:
            logger.info(f"Job {job_id} is not pending (status: {job.status}), skipping")
            return job
        if not self.queue.mark_started(job_id):
            logger.info(f"Job {job_id} was claimed or cancelled before it started")
            return self.queue.load(job_id)

        logger.info(f"Starting job: {job_id}, type: {job.type}, user: {job.user_id}")
        context = JobContext(self.queue, job, self.progress_every)
        try:
            handler = JobHandlerRegistry.get(job.type)
            result = handler(job, context)
        except JobCancelledError:
            logger.info(f"Job {job_id} was cancelled while running")
        except Exception as exc:
            logger.exception(f"Error processing job {job_id}")
            self.queue.mark_failed(job_id, str(exc) or exc.__class__.__name__)
        else:
            if self.queue.mark_completed(job_id, result):
                logger.info(f"Job {job_id} completed")
            else:
                logger.info(f"Job {job_id} finished but was cancelled before completion was recorded")
        return self.queue.load(job_id)

    def process_pending_jobs(self, limit: int | None = None) -> list[Job]:
        """Run the oldest PENDING jobs one after another."""
        pending = self.queue.list_pending(limit)
        logger.info(f"Processing {len(pending)} pending jobs")
        return [job for job in (self.process_job(pending_job.id) for pending_job in pending) if job is not None]
