"""Handlers for the registered job types.

Each handler validates its payload with a pydantic model, reports progress every ``progress_every`` items through the
job context, and returns a JSON-serializable result.
"""

from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from finance_intake.core.models import Job, JobType, NormalizationResult
from finance_intake.core.settings import get_settings
from finance_intake.core.utils import get_logger
from finance_intake.importers import parse_csv, parse_ofx
from finance_intake.importers.validation import MEGABYTE
from finance_intake.normalizer.knowledge import SqlKnowledgeBase
from finance_intake.normalizer.pipeline import (
    build_lookups,
    run_pipeline,
    summarize_results,
    validate_merchant_batch,
)

from .registry import JobHandlerRegistry
from .runner import JobContext

logger = get_logger("finance-intake.worker.handlers")


class ImportPayload(BaseModel):
    """Payload of an IMPORT_TRANSACTIONS job."""

    format: Literal["csv", "ofx"]
    content: str
    filename: str | None = None
    normalize: bool = True
    use_database: bool = True

    @field_validator("content")
    @classmethod
    def check_content_size(cls, content: str) -> str:
        """Apply the same empty and size limits as statement uploads."""
        limit = get_settings().max_upload_bytes
        if not content.strip():
            msg = "File is empty"
            raise ValueError(msg)
        if len(content.encode("utf-8")) > limit:
            msg = f"File size must be less than {limit // MEGABYTE}MB"
            raise ValueError(msg)
        return content


class MerchantBatchPayload(BaseModel):
    """Payload of a MERCHANT_NORMALIZE_BATCH job."""

    merchants: list[str]
    use_database: bool = True


class Correction(BaseModel):
    """A user-confirmed merchant name."""

    merchant_name: str = Field(min_length=1)
    canonical_name: str = Field(min_length=1)
    source: str = "user"


class TrainingPayload(BaseModel):
    """Payload of a KNOWLEDGE_BASE_TRAINING job."""

    corrections: list[Correction] = Field(min_length=1)


def _chunks(size: int, step: int) -> list[tuple[int, int]]:
    return [(start, min(start + step, size)) for start in range(0, size, step)]


def run_import_job(job: Job, context: JobContext) -> dict[str, Any]:
    """Parse an uploaded statement and optionally attach canonical merchant names to each transaction."""
    payload = ImportPayload.model_validate(job.payload)
    parser = parse_csv if payload.format == "csv" else parse_ofx
    result = parser(payload.content)
    transactions = [transaction.model_dump(mode="json") for transaction in result.transactions]
    total = len(transactions)
    context.report(0, total)

    if payload.normalize and transactions:
        lookups = build_lookups(payload.use_database)
        for start, end in _chunks(total, context.progress_every):
            for transaction in transactions[start:end]:
                normalized = run_pipeline(transaction["raw_merchant"], lookups)
                transaction["canonical_merchant"] = normalized.canonical_name
                transaction["merchant_confidence"] = normalized.confidence
                transaction["merchant_source"] = str(normalized.source)
            context.report(end, total)
    else:
        context.report(total, total)

    summary = result.model_dump(mode="json", exclude={"transactions"})
    summary["filename"] = payload.filename
    summary["transactions"] = transactions
    logger.info(f"Import job {job.id}: {result.valid_rows}/{result.total_rows} rows, normalized={payload.normalize}")
    return summary


def run_merchant_batch_job(job: Job, context: JobContext) -> dict[str, Any]:
    """Normalize a batch of merchant strings."""
    payload = MerchantBatchPayload.model_validate(job.payload)
    merchants = validate_merchant_batch(payload.merchants)
    total = len(merchants)
    context.report(0, total)
    lookups = build_lookups(payload.use_database)
    results: list[NormalizationResult] = []
    for start, end in _chunks(total, context.progress_every):
        results.extend(run_pipeline(merchant, lookups) for merchant in merchants[start:end])
        context.report(end, total)
    return {
        "results": [result.model_dump(mode="json") for result in results],
        "stats": summarize_results(results).model_dump(mode="json"),
    }


def run_training_job(job: Job, context: JobContext) -> dict[str, Any]:
    """Record user corrections into the merchant knowledge base."""
    payload = TrainingPayload.model_validate(job.payload)
    knowledge_base = SqlKnowledgeBase(context.session_factory)
    total = len(payload.corrections)
    context.report(0, total)
    recorded = 0
    skipped: list[str] = []
    for start, end in _chunks(total, context.progress_every):
        for correction in payload.corrections[start:end]:
            entry = knowledge_base.record(correction.merchant_name, correction.canonical_name, correction.source)
            if entry is None:
                skipped.append(correction.merchant_name)
            else:
                recorded += 1
        context.report(end, total)
    return {"recorded": recorded, "skipped": skipped, "stats": knowledge_base.stats().model_dump()}


PAYLOAD_MODELS: dict[JobType, type[BaseModel]] = {
    JobType.IMPORT_TRANSACTIONS: ImportPayload,
    JobType.MERCHANT_NORMALIZE_BATCH: MerchantBatchPayload,
    JobType.KNOWLEDGE_BASE_TRAINING: TrainingPayload,
}


def validate_job_payload(job_type: JobType, payload: dict[str, Any]) -> dict[str, Any]:
    """Check a payload when the job is submitted, so a job that cannot run is never queued.

    Raises:
        pydantic.ValidationError: the payload does not fit the job type's model.
        MerchantBatchError: a merchant batch is empty, too large, or holds non-strings.

    """
    model = PAYLOAD_MODELS[job_type].model_validate(payload)
    if isinstance(model, MerchantBatchPayload):
        validate_merchant_batch(model.merchants)
    return model.model_dump()


def register_default_handlers() -> None:
    """Register the built-in handler for every job type."""
    JobHandlerRegistry.register(JobType.IMPORT_TRANSACTIONS, run_import_job)
    JobHandlerRegistry.register(JobType.MERCHANT_NORMALIZE_BATCH, run_merchant_batch_job)
    JobHandlerRegistry.register(JobType.KNOWLEDGE_BASE_TRAINING, run_training_job)


register_default_handlers()
