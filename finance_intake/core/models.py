"""Pydantic models for Finance Intake.

This module defines the data shapes shared by the statement importer, the merchant normalizer and the job queue:
parsed transactions and import results, normalization results, and tracked background jobs.
"""

import datetime as dt
from decimal import Decimal
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class TransactionType(StrEnum):
    """Direction of money movement for a parsed transaction."""

    DEBIT = "DEBIT"
    CREDIT = "CREDIT"


class StatementFormat(StrEnum):
    """Statement layouts the importer knows how to read."""

    CSV_3COL = "CSV_3COL"
    CSV_4COL = "CSV_4COL"
    CSV_5COL = "CSV_5COL"
    OFX = "OFX"


class ParsedTransaction(BaseModel):
    """A single statement line after parsing. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    date: dt.date
    amount: Decimal
    description: str
    raw_merchant: str
    type: TransactionType
    source_row_index: int
    posted_date: dt.date | None = None
    balance: Decimal | None = None
    account_number: str | None = None
    category: str | None = None
    fitid: str | None = None


class RowError(BaseModel):
    """A row that could not be turned into a transaction."""

    row: int
    reason: str


class AccountInfo(BaseModel):
    """Account identifier block of an OFX statement."""

    bank_id: str | None = None
    account_id: str | None = None
    account_type: str | None = None


class StatementBalance(BaseModel):
    """Ending (ledger) balance reported by a statement."""

    amount: Decimal
    as_of: dt.date | None = None


class ImportResult(BaseModel):
    """Outcome of parsing one uploaded statement."""

    success: bool
    format: StatementFormat
    total_rows: int
    valid_rows: int
    transactions: list[ParsedTransaction] = Field(default_factory=list)
    errors: list[RowError] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    layout: str | None = None
    delimiter: str | None = None
    account_info: AccountInfo | None = None
    balance: StatementBalance | None = None


class FileValidation(BaseModel):
    """Result of the cheap pre-parse checks on an upload."""

    valid: bool
    error: str | None = None


class NormalizationSource(StrEnum):
    """Pipeline stage that produced a canonical merchant name."""

    PREPROCESSING = "preprocessing"
    CANONICAL_MAP = "canonical_map"
    FUZZY_MATCH = "fuzzy_match"
    KNOWLEDGE_BASE = "knowledge_base"


class NormalizationResult(BaseModel):
    """Canonical merchant name for one raw merchant string."""

    input: str
    preprocessed: str
    canonical_name: str
    confidence: float = Field(ge=0.0, le=1.0)
    source: NormalizationSource
    matched_from: str | None = None


class NormalizationStats(BaseModel):
    """Aggregate figures for a normalized batch."""

    total: int
    by_source: dict[str, int]
    average_confidence: float


class KnowledgeEntry(BaseModel):
    """A learned association between a preprocessed merchant and a canonical name."""

    model_config = ConfigDict(from_attributes=True)

    merchant_name: str
    canonical_name: str
    votes: int
    source: str


class KnowledgeStats(BaseModel):
    """Size of the merchant knowledge base."""

    entries: int
    merchants: int
    total_votes: int


class JobType(StrEnum):
    """Kinds of background work a user can submit."""

    IMPORT_TRANSACTIONS = "IMPORT_TRANSACTIONS"
    MERCHANT_NORMALIZE_BATCH = "MERCHANT_NORMALIZE_BATCH"
    KNOWLEDGE_BASE_TRAINING = "KNOWLEDGE_BASE_TRAINING"


class JobStatus(StrEnum):
    """Lifecycle states of a background job."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class Job(BaseModel):
    """Pydantic model representing a tracked background job."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    type: JobType
    status: JobStatus
    processed: int = 0
    total: int | None = None
    progress: int = 0
    payload: dict[str, Any] = Field(default_factory=dict)
    result: dict[str, Any] | None = None
    error: str | None = None
    created_at: str
    updated_at: str
    started_at: str | None = None
    completed_at: str | None = None


class JobPage(BaseModel):
    """One page of a user's jobs plus the unpaginated count."""

    jobs: list[Job]
    total: int
