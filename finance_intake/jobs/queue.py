"""Job tracking: persistence and the job status state machine.

Every status change is a compare-and-set ``UPDATE ... WHERE id = :id AND status IN (:allowed)``. When another writer
got there first (a worker completing a job the user just cancelled, say) the update matches no row and the method
returns False instead of overwriting the newer state.
"""

import uuid
from collections.abc import Callable
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from finance_intake.core.db import JobRecord, SessionLocal
from finance_intake.core.errors import UnknownJobTypeError
from finance_intake.core.models import Job, JobPage, JobStatus, JobType
from finance_intake.core.settings import get_settings
from finance_intake.core.utils import get_logger, utcnow_iso

logger = get_logger("finance-intake.jobs")

TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.RUNNING, JobStatus.CANCELLED}),
    JobStatus.RUNNING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}
TERMINAL_STATUSES = frozenset(status for status, targets in TRANSITIONS.items() if not targets)


def can_transition(current: JobStatus | str, target: JobStatus | str) -> bool:
    """Return True if a job in ``current`` may move to ``target``."""
    return JobStatus(target) in TRANSITIONS[JobStatus(current)]


def allowed_sources(target: JobStatus) -> list[str]:
    """Statuses from which ``target`` can be reached."""
    return [str(status) for status in TRANSITIONS if can_transition(status, target)]


def coerce_job_type(job_type: JobType | str) -> JobType:
    """Validate a job type against the fixed set of known types."""
    try:
        return JobType(job_type)
    except ValueError as exc:
        msg = f"Invalid job type: {job_type}"
        raise UnknownJobTypeError(msg) from exc


def progress_percent(processed: int, total: int | None) -> int:
    """Whole-number completion percentage, capped at 100; 0 when the total is unknown."""
    if not total or total <= 0:
        return 0
    return min(100, processed * 100 // total)


class JobQueue:
    """Create, query and transition job records."""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal) -> None:
        """Initialize with a session factory (defaults to the application's)."""
        self.session_factory = session_factory

    def create_job(
        self,
        user_id: str,
        job_type: JobType | str,
        payload: dict[str, Any] | None = None,
        total: int | None = None,
    ) -> Job:
        """Persist a new PENDING job and return it."""
        job_type = coerce_job_type(job_type)
        now = utcnow_iso()
        record = JobRecord(
            id=str(uuid.uuid4()),
            user_id=user_id,
            type=str(job_type),
            status=str(JobStatus.PENDING),
            payload=payload or {},
            processed=0,
            total=total,
            progress=0,
            created_at=now,
            updated_at=now,
        )
        with self.session_factory() as session:
            session.add(record)
            session.commit()
            job = Job.model_validate(record)
        logger.info(f"Created job {job.id} type={job.type} user={user_id} total={total}")
        return job

    def get_job(self, job_id: str, user_id: str) -> Job | None:
        """Return the job if it exists and belongs to ``user_id``; None otherwise."""
        stmt = select(JobRecord).where(JobRecord.id == job_id, JobRecord.user_id == user_id)
        with self.session_factory() as session:
            record = session.scalars(stmt).first()
            return Job.model_validate(record) if record else None

    def load(self, job_id: str) -> Job | None:
        """Return a job by id regardless of owner (worker side)."""
        with self.session_factory() as session:
            record = session.get(JobRecord, job_id)
            return Job.model_validate(record) if record else None

    def list_jobs(
        self,
        user_id: str,
        status: JobStatus | str | None = None,
        job_type: JobType | str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> JobPage:
        """List a user's jobs newest first, with optional status and type filters."""
        limit = limit if limit is not None else get_settings().job_list_limit
        conditions = [JobRecord.user_id == user_id]
        if status:
            conditions.append(JobRecord.status == str(JobStatus(status)))
        if job_type:
            conditions.append(JobRecord.type == str(coerce_job_type(job_type)))
        stmt = select(JobRecord).where(*conditions).order_by(JobRecord.created_at.desc()).limit(limit).offset(offset)
        count_stmt = select(func.count()).select_from(JobRecord).where(*conditions)
        with self.session_factory() as session:
            jobs = [Job.model_validate(record) for record in session.scalars(stmt)]
            total = session.scalar(count_stmt) or 0
        return JobPage(jobs=jobs, total=total)

    def list_pending(self, limit: int | None = None) -> list[Job]:
        """Oldest PENDING jobs across all users."""
        limit = limit if limit is not None else get_settings().job_process_limit
        stmt = (
            select(JobRecord)
            .where(JobRecord.status == str(JobStatus.PENDING))
            .order_by(JobRecord.created_at)
            .limit(limit)
        )
        with self.session_factory() as session:
            return [Job.model_validate(record) for record in session.scalars(stmt)]

    def _transition(self, job_id: str, target: JobStatus, *conditions: Any, **values: Any) -> bool:
        now = utcnow_iso()
        stmt = (
            update(JobRecord)
            .where(JobRecord.id == job_id, JobRecord.status.in_(allowed_sources(target)), *conditions)
            .values(status=str(target), updated_at=now, **values)
            .execution_options(synchronize_session=False)
        )
        with self.session_factory() as session:
            updated = session.execute(stmt).rowcount
            session.commit()
        if updated != 1:
            logger.info(f"Rejected transition of job {job_id} to {target}")
            return False
        logger.info(f"Job {job_id} -> {target}")
        return True

    def cancel_job(self, job_id: str, user_id: str) -> bool:
        """Cancel a PENDING or RUNNING job owned by ``user_id``.

        Returns False when the job is missing, not owned, or already terminal.
        """
        return self._transition(job_id, JobStatus.CANCELLED, JobRecord.user_id == user_id, completed_at=utcnow_iso())

    def mark_started(self, job_id: str) -> bool:
        """Claim a PENDING job for execution."""
        return self._transition(job_id, JobStatus.RUNNING, started_at=utcnow_iso())

    def mark_completed(self, job_id: str, result: dict[str, Any] | None = None) -> bool:
        """Finish a RUNNING job successfully, storing its result."""
        return self._transition(
            job_id,
            JobStatus.COMPLETED,
            result=result,
            progress=100,
            processed=func.coalesce(JobRecord.total, JobRecord.processed),
            completed_at=utcnow_iso(),
        )

    def mark_failed(self, job_id: str, error: str) -> bool:
        """Finish a RUNNING job with an error message."""
        return self._transition(job_id, JobStatus.FAILED, error=error, completed_at=utcnow_iso())

    def update_progress(self, job_id: str, processed: int, total: int | None = None) -> bool:
        """Record progress for a RUNNING job.

        Progress only moves forward; a write that would lower ``processed``, or that targets a job which is no longer
        RUNNING, is rejected and returns False.
        """
        with self.session_factory() as session:
            record = session.get(JobRecord, job_id)
            if record is None:
                return False
            effective_total = total if total is not None else record.total
            stmt = (
                update(JobRecord)
                .where(
                    JobRecord.id == job_id,
                    JobRecord.status == str(JobStatus.RUNNING),
                    JobRecord.processed <= processed,
                )
                .values(
                    processed=processed,
                    total=effective_total,
                    progress=progress_percent(processed, effective_total),
                    updated_at=utcnow_iso(),
                )
                .execution_options(synchronize_session=False)
            )
            updated = session.execute(stmt).rowcount
            session.commit()
        return updated == 1
