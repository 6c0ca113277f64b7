"""Core package: provides models, database helpers, settings, errors, and shared utilities."""

from .db import SessionLocal, init_db  # noqa: F401
from .errors import FinanceIntakeError, KnowledgeBaseError, StatementImportError  # noqa: F401
from .models import ImportResult, Job, JobStatus, NormalizationResult, ParsedTransaction  # noqa: F401
from .settings import Settings, get_settings  # noqa: F401
from .utils import get_logger  # noqa: F401
