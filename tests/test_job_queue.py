"""Tests for job persistence and the job status state machine."""

import pytest

from finance_intake.core.errors import UnknownJobTypeError
from finance_intake.core.models import JobStatus, JobType
from finance_intake.jobs import TERMINAL_STATUSES, JobQueue, can_transition
from finance_intake.jobs.queue import progress_percent

USER = "user-1"
OTHER_USER = "user-2"


def test_create_job_starts_pending() -> None:
    """New jobs are PENDING with zero progress and keep their payload."""
    queue = JobQueue()
    job = queue.create_job(USER, "IMPORT_TRANSACTIONS", {"format": "csv", "content": "x"}, total=10)
    expected = (JobType.IMPORT_TRANSACTIONS, JobStatus.PENDING, 0, 0, 10)
    if (job.type, job.status, job.processed, job.progress, job.total) != expected:
        msg = f"Unexpected new job: {job}"
        raise AssertionError(msg)
    if job.payload != {"format": "csv", "content": "x"} or job.result is not None:
        msg = f"Unexpected payload/result: {job.payload} {job.result}"
        raise AssertionError(msg)


def test_create_job_rejects_unknown_type() -> None:
    """Only the fixed job types are accepted."""
    with pytest.raises(UnknownJobTypeError, match="Invalid job type: EXPORT_EVERYTHING"):
        JobQueue().create_job(USER, "EXPORT_EVERYTHING")


def test_jobs_are_scoped_to_their_owner() -> None:
    """Another user can neither see nor cancel a job."""
    queue = JobQueue()
    job = queue.create_job(USER, JobType.MERCHANT_NORMALIZE_BATCH, {"merchants": ["Shell"]})
    if queue.get_job(job.id, OTHER_USER) is not None:
        msg = "Another user's job must not be visible"
        raise AssertionError(msg)
    if queue.cancel_job(job.id, OTHER_USER):
        msg = "Another user must not be able to cancel the job"
        raise AssertionError(msg)
    if queue.get_job(job.id, USER).status != JobStatus.PENDING:
        msg = "Job should still be pending"
        raise AssertionError(msg)


def test_cancel_pending_job() -> None:
    """A PENDING job can be cancelled, and cancelling is not repeatable."""
    queue = JobQueue()
    job = queue.create_job(USER, JobType.MERCHANT_NORMALIZE_BATCH)
    if not queue.cancel_job(job.id, USER):
        msg = "Expected cancel of a pending job to succeed"
        raise AssertionError(msg)
    cancelled = queue.get_job(job.id, USER)
    if cancelled.status != JobStatus.CANCELLED or cancelled.completed_at is None:
        msg = f"Unexpected cancelled job: {cancelled}"
        raise AssertionError(msg)
    if queue.cancel_job(job.id, USER):
        msg = "A cancelled job cannot be cancelled again"
        raise AssertionError(msg)


def test_terminal_jobs_do_not_change() -> None:
    """COMPLETED jobs reject cancellation, failure and progress writes."""
    queue = JobQueue()
    job = queue.create_job(USER, JobType.MERCHANT_NORMALIZE_BATCH, total=4)
    queue.mark_started(job.id)
    queue.mark_completed(job.id, {"ok": True})
    rejected = [
        queue.cancel_job(job.id, USER),
        queue.mark_failed(job.id, "late failure"),
        queue.mark_started(job.id),
        queue.update_progress(job.id, 4),
    ]
    if any(rejected):
        msg = f"Terminal job accepted a write: {rejected}"
        raise AssertionError(msg)
    final = queue.load(job.id)
    expected = (JobStatus.COMPLETED, {"ok": True}, None, 100, 4)
    if (final.status, final.result, final.error, final.progress, final.processed) != expected:
        msg = f"Unexpected completed job: {final}"
        raise AssertionError(msg)


def test_completed_cannot_follow_pending() -> None:
    """A job must be claimed before it can complete or fail."""
    queue = JobQueue()
    job = queue.create_job(USER, JobType.MERCHANT_NORMALIZE_BATCH)
    if queue.mark_completed(job.id, {}) or queue.mark_failed(job.id, "boom"):
        msg = "PENDING jobs must not jump to a terminal success/failure state"
        raise AssertionError(msg)


def test_update_progress_rules() -> None:
    """Progress is written only while RUNNING and never moves backwards."""
    queue = JobQueue()
    job = queue.create_job(USER, JobType.MERCHANT_NORMALIZE_BATCH)
    if queue.update_progress(job.id, 1, 4):
        msg = "Progress on a PENDING job must be rejected"
        raise AssertionError(msg)
    queue.mark_started(job.id)
    if not queue.update_progress(job.id, 3, 4):
        msg = "Expected progress update on a running job to succeed"
        raise AssertionError(msg)
    if queue.update_progress(job.id, 2):
        msg = "Progress must not move backwards"
        raise AssertionError(msg)
    running = queue.load(job.id)
    if (running.processed, running.total, running.progress) != (3, 4, 75):
        msg = f"Unexpected progress: {running.processed}/{running.total} ({running.progress}%)"
        raise AssertionError(msg)
    if queue.update_progress("missing-job", 1):
        msg = "Progress on a missing job must be rejected"
        raise AssertionError(msg)


def test_list_jobs_filters_and_pagination() -> None:
    """Listing is per user, newest first, filterable and paginated with an unpaginated count."""
    queue = JobQueue()
    first = queue.create_job(USER, JobType.IMPORT_TRANSACTIONS)
    second = queue.create_job(USER, JobType.MERCHANT_NORMALIZE_BATCH)
    third = queue.create_job(USER, JobType.MERCHANT_NORMALIZE_BATCH)
    queue.create_job(OTHER_USER, JobType.MERCHANT_NORMALIZE_BATCH)
    queue.cancel_job(second.id, USER)

    page = queue.list_jobs(USER)
    if [job.id for job in page.jobs] != [third.id, second.id, first.id] or page.total != 3:
        msg = f"Expected newest-first listing of 3 jobs, got {page}"
        raise AssertionError(msg)
    batch_jobs = queue.list_jobs(USER, job_type="MERCHANT_NORMALIZE_BATCH")
    if {job.id for job in batch_jobs.jobs} != {second.id, third.id}:
        msg = f"Unexpected type filter result: {batch_jobs}"
        raise AssertionError(msg)
    cancelled = queue.list_jobs(USER, status=JobStatus.CANCELLED)
    if [job.id for job in cancelled.jobs] != [second.id]:
        msg = f"Unexpected status filter result: {cancelled}"
        raise AssertionError(msg)
    paged = queue.list_jobs(USER, limit=1, offset=1)
    if [job.id for job in paged.jobs] != [second.id] or paged.total != 3:
        msg = f"Unexpected page: {paged}"
        raise AssertionError(msg)


def test_list_pending_is_oldest_first() -> None:
    """Workers see pending jobs from every user, oldest first."""
    queue = JobQueue()
    first = queue.create_job(USER, JobType.MERCHANT_NORMALIZE_BATCH)
    second = queue.create_job(OTHER_USER, JobType.MERCHANT_NORMALIZE_BATCH)
    third = queue.create_job(USER, JobType.MERCHANT_NORMALIZE_BATCH)
    queue.cancel_job(third.id, USER)
    pending = queue.list_pending(limit=10)
    if [job.id for job in pending] != [first.id, second.id]:
        msg = f"Unexpected pending order: {[job.id for job in pending]}"
        raise AssertionError(msg)


@pytest.mark.parametrize(
    ("current", "target", "allowed"),
    [
        (JobStatus.PENDING, JobStatus.RUNNING, True),
        (JobStatus.PENDING, JobStatus.CANCELLED, True),
        (JobStatus.PENDING, JobStatus.COMPLETED, False),
        (JobStatus.RUNNING, JobStatus.COMPLETED, True),
        (JobStatus.RUNNING, JobStatus.FAILED, True),
        (JobStatus.RUNNING, JobStatus.CANCELLED, True),
        (JobStatus.RUNNING, JobStatus.PENDING, False),
        (JobStatus.COMPLETED, JobStatus.CANCELLED, False),
        (JobStatus.CANCELLED, JobStatus.RUNNING, False),
    ],
)
def test_can_transition(current: JobStatus, target: JobStatus, allowed: bool) -> None:  # noqa: FBT001
    """The status state machine only moves forward."""
    if can_transition(current, target) != allowed:
        msg = f"can_transition({current}, {target}) should be {allowed}"
        raise AssertionError(msg)


def test_terminal_statuses() -> None:
    """COMPLETED, FAILED and CANCELLED have no outgoing transitions."""
    if {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED} != TERMINAL_STATUSES:
        msg = f"Unexpected terminal statuses: {TERMINAL_STATUSES}"
        raise AssertionError(msg)


def test_progress_percent() -> None:
    """Progress is a floored percentage capped at 100."""
    cases = [((0, None), 0), ((1, 3), 33), ((2, 3), 66), ((5, 4), 100), ((3, 0), 0)]
    for (processed, total), expected in cases:
        if progress_percent(processed, total) != expected:
            msg = f"progress_percent({processed}, {total}) != {expected}"
            raise AssertionError(msg)
