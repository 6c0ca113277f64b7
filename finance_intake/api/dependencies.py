"""FastAPI dependencies for DI (caller identity, job queue, runner, knowledge base).

This module provides dependency injection helpers so endpoints can be exercised against test doubles through
``app.dependency_overrides``.
"""

from fastapi import Depends, Header, HTTPException

from finance_intake.core.settings import get_settings
from finance_intake.jobs import JobQueue, JobRunner
from finance_intake.normalizer import SqlKnowledgeBase


def get_current_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """Identify the caller from the ``X-User-Id`` header."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(401, "Missing X-User-Id header")
    return x_user_id.strip()


def require_admin(user_id: str = Depends(get_current_user_id)) -> str:
    """Allow only callers listed in ``ADMIN_USER_IDS``."""
    if user_id not in get_settings().admin_user_ids:
        raise HTTPException(403, "Admin access required")
    return user_id


def get_job_queue() -> JobQueue:
    """Provide a JobQueue instance for dependency injection."""
    return JobQueue()


def get_job_runner() -> JobRunner:
    """Provide a JobRunner instance for dependency injection."""
    return JobRunner()


def get_knowledge_base() -> SqlKnowledgeBase:
    """Provide the merchant knowledge base for dependency injection."""
    return SqlKnowledgeBase()
