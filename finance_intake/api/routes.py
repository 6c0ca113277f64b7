"""FastAPI endpoints for the Finance Intake API.

This module defines the API routes for parsing uploaded statements, normalizing merchant names, training the merchant
knowledge base, submitting and tracking background jobs, downloading import results, and health checks.
"""

import io
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, UploadFile
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field, ValidationError

from finance_intake.api.dependencies import (
    get_current_user_id,
    get_job_queue,
    get_job_runner,
    get_knowledge_base,
    require_admin,
)
from finance_intake.core.errors import KnowledgeBaseError, MerchantBatchError, StatementImportError, UnknownJobTypeError
from finance_intake.core.models import (
    FileValidation,
    ImportResult,
    Job,
    JobPage,
    JobStatus,
    JobType,
    KnowledgeEntry,
)
from finance_intake.core.utils import get_logger
from finance_intake.importers import decode_statement, parse_csv, parse_ofx, validate_csv_file, validate_ofx_file
from finance_intake.jobs import JobQueue, JobRunner, transactions_to_csv, validate_job_payload
from finance_intake.jobs.queue import coerce_job_type
from finance_intake.normalizer import SqlKnowledgeBase, get_canonical_map, normalize_merchant_name, normalize_merchants
from finance_intake.normalizer.pipeline import summarize_results

router = APIRouter()
logger = get_logger("finance-intake.api")

JOB_NOT_FOUND = "Job not found"


class NormalizeRequest(BaseModel):
    """Body of ``POST /merchants/normalize``: either one merchant or a batch."""

    merchant: str | None = None
    merchants: list[Any] | None = None
    use_database: bool = True


class KnowledgeRequest(BaseModel):
    """Body of ``POST /merchants/knowledge``."""

    merchant_name: str = Field(min_length=1)
    canonical_name: str = Field(min_length=1)
    source: str = "user"


class CreateJobRequest(BaseModel):
    """Body of ``POST /jobs``."""

    type: str
    payload: dict[str, Any] = Field(default_factory=dict)
    total: int | None = Field(default=None, ge=0)


def _validation_detail(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"]) or "payload"
        parts.append(f"{location}: {error['msg']}")
    return "; ".join(parts)


def _decode_upload(raw: bytes, filename: str | None, validation: FileValidation) -> str:
    if not validation.valid:
        logger.warning(f"Rejected upload {filename}: {validation.error}")
        raise HTTPException(400, validation.error)
    return decode_statement(raw)


def _import_response(result: ImportResult, file: UploadFile, size: int) -> dict[str, Any]:
    return {**result.model_dump(mode="json"), "filename": file.filename, "file_size": size}


@router.post(
    "/import/parse-csv",
    summary="Parse a CSV bank statement",
    description=(
        "Upload a CSV bank statement export. The delimiter and column layout are detected from the header row "
        "(or, for headerless exports, from the column count), and each row is parsed independently.\n\n"
        "**Request:**\n"
        "- Content-Type: multipart/form-data\n"
        "- Form field: `file` (CSV file, at most 10MB)\n\n"
        "**Response:**\n"
        "- 200 OK: the import result (`format`, `total_rows`, `valid_rows`, `transactions`, per-row `errors`).\n"
        "- 400 Bad Request: wrong extension, empty or oversized file.\n"
        "- 422 Unprocessable Entity: the file has no recognisable layout or no data rows."
    ),
    response_description="Parsed transactions and per-row errors.",
    responses={
        400: {
            "description": "File rejected before parsing.",
            "content": {"application/json": {"example": {"detail": "File must be a CSV file"}}},
        },
        422: {
            "description": "Structural parse failure.",
            "content": {
                "application/json": {
                    "example": {"detail": {"error": "Failed to parse CSV file", "details": "File is empty"}}
                }
            },
        },
    },
)
async def parse_csv_upload(file: UploadFile, user_id: str = Depends(get_current_user_id)) -> dict[str, Any]:
    """Parse an uploaded CSV statement."""
    raw = await file.read()
    logger.info(f"Received CSV upload from {user_id}: filename={file.filename}, size={len(raw)}")
    try:
        text = _decode_upload(raw, file.filename, validate_csv_file(file.filename, len(raw)))
        result = parse_csv(text)
    except StatementImportError as exc:
        logger.warning(f"CSV import failed for {file.filename}: {exc}")
        raise HTTPException(422, {"error": "Failed to parse CSV file", "details": str(exc)}) from exc
    return _import_response(result, file, len(raw))


@router.post(
    "/import/parse-ofx",
    summary="Parse an OFX/QFX bank statement",
    description=(
        "Upload an OFX 1.x (SGML) or OFX 2.x (XML) statement, including Quicken `.qfx` exports. Bank and credit-card "
        "statements are supported; the response also carries the account identifier block and the ledger balance.\n\n"
        "**Response:**\n"
        "- 200 OK: the import result plus `account_info` and `balance`.\n"
        "- 400 Bad Request: wrong extension, empty, oversized or missing OFX signature.\n"
        "- 422 Unprocessable Entity: no `<OFX>` envelope or statement block."
    ),
    response_description="Parsed transactions, account info and balance.",
)
async def parse_ofx_upload(file: UploadFile, user_id: str = Depends(get_current_user_id)) -> dict[str, Any]:
    """Parse an uploaded OFX/QFX statement."""
    raw = await file.read()
    logger.info(f"Received OFX upload from {user_id}: filename={file.filename}, size={len(raw)}")
    try:
        text = _decode_upload(raw, file.filename, validate_ofx_file(file.filename, len(raw), head=raw))
        result = parse_ofx(text)
    except StatementImportError as exc:
        logger.warning(f"OFX import failed for {file.filename}: {exc}")
        raise HTTPException(422, {"error": "Failed to parse OFX file", "details": str(exc)}) from exc
    return _import_response(result, file, len(raw))


@router.post(
    "/merchants/normalize",
    summary="Normalize merchant names",
    description=(
        "Normalize a single merchant (`merchant`) or a batch (`merchants`, at most 1000 strings). Each result "
        "reports the canonical name, a confidence in [0, 1] and the stage that produced it "
        "(`preprocessing`, `canonical_map`, `fuzzy_match` or `knowledge_base`). Set `use_database` to false to skip "
        "the knowledge base stage."
    ),
    responses={
        400: {
            "description": "Invalid batch.",
            "content": {"application/json": {"example": {"detail": "Merchants array cannot be empty"}}},
        },
    },
)
async def normalize(
    request: NormalizeRequest,
    user_id: str = Depends(get_current_user_id),
    knowledge_base: SqlKnowledgeBase = Depends(get_knowledge_base),
) -> dict[str, Any]:
    """Normalize one merchant or a batch of merchants."""
    if request.merchants is not None:
        try:
            results = normalize_merchants(request.merchants, request.use_database, knowledge_base=knowledge_base)
        except MerchantBatchError as exc:
            raise HTTPException(400, str(exc)) from exc
        logger.info(f"Normalized batch of {len(results)} merchants for {user_id}")
        return {"success": True, "results": results, "stats": summarize_results(results)}
    if request.merchant is not None:
        result = normalize_merchant_name(request.merchant, request.use_database, knowledge_base=knowledge_base)
        return {"success": True, "result": result}
    raise HTTPException(400, "Provide either merchant or merchants")


@router.get("/merchants/stats", summary="Merchant normalization statistics")
async def merchant_stats(
    _user_id: str = Depends(get_current_user_id),
    knowledge_base: SqlKnowledgeBase = Depends(get_knowledge_base),
) -> dict[str, Any]:
    """Return the knowledge base size and the number of canonical map keys."""
    try:
        stats = knowledge_base.stats()
    except KnowledgeBaseError as exc:
        raise HTTPException(503, "Knowledge base unavailable") from exc
    return {"knowledge_base": stats, "canonical_map_keys": len(get_canonical_map())}


@router.post(
    "/merchants/knowledge",
    status_code=201,
    response_model=KnowledgeEntry,
    summary="Record a merchant correction",
    description="Add one vote for a merchant -> canonical name association in the knowledge base.",
)
async def record_knowledge(
    request: KnowledgeRequest,
    user_id: str = Depends(get_current_user_id),
    knowledge_base: SqlKnowledgeBase = Depends(get_knowledge_base),
) -> KnowledgeEntry:
    """Record a user-confirmed merchant name."""
    try:
        entry = knowledge_base.record(request.merchant_name, request.canonical_name, request.source)
    except ValueError as exc:
        raise HTTPException(400, str(exc)) from exc
    except KnowledgeBaseError as exc:
        raise HTTPException(503, "Knowledge base unavailable") from exc
    if entry is None:
        raise HTTPException(400, "Merchant name has no usable text")
    logger.info(f"User {user_id} recorded {request.merchant_name!r} -> {entry.canonical_name!r}")
    return entry


@router.get("/jobs", response_model=JobPage, summary="List your jobs")
async def list_jobs(
    status: JobStatus | None = None,
    job_type: JobType | None = Query(default=None, alias="type"),
    limit: int | None = Query(default=None, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    user_id: str = Depends(get_current_user_id),
    queue: JobQueue = Depends(get_job_queue),
) -> JobPage:
    """List the caller's jobs, newest first."""
    return queue.list_jobs(user_id, status=status, job_type=job_type, limit=limit, offset=offset)


@router.post(
    "/jobs",
    status_code=201,
    response_model=Job,
    summary="Submit a background job",
    description=(
        "Create a PENDING job of one of the registered types:\n\n"
        "- `IMPORT_TRANSACTIONS`: `{format: csv|ofx, content, normalize, use_database}`\n"
        "- `MERCHANT_NORMALIZE_BATCH`: `{merchants, use_database}`\n"
        "- `KNOWLEDGE_BASE_TRAINING`: `{corrections: [{merchant_name, canonical_name}]}`\n\n"
        "Jobs are executed by `POST /jobs/process`; poll `GET /jobs/{job_id}` for status and progress."
    ),
    responses={
        400: {
            "description": "Unknown job type, or a payload that does not fit the job type.",
            "content": {"application/json": {"example": {"detail": "Invalid job type: FOO"}}},
        },
    },
)
async def create_job(
    request: CreateJobRequest,
    user_id: str = Depends(get_current_user_id),
    queue: JobQueue = Depends(get_job_queue),
) -> Job:
    """Submit a job for background processing."""
    try:
        job_type = coerce_job_type(request.type)
        payload = validate_job_payload(job_type, request.payload)
    except ValidationError as exc:
        raise HTTPException(400, _validation_detail(exc)) from exc
    except (UnknownJobTypeError, MerchantBatchError) as exc:
        raise HTTPException(400, str(exc)) from exc
    return queue.create_job(user_id, job_type, payload, request.total)


@router.post(
    "/jobs/process",
    status_code=202,
    summary="Process pending jobs (admin)",
    description="Run up to `limit` of the oldest PENDING jobs in a background task. Restricted to admin user ids.",
)
async def process_jobs(
    background_tasks: BackgroundTasks,
    limit: int = Query(default=5, ge=1, le=100),
    user_id: str = Depends(require_admin),
    runner: JobRunner = Depends(get_job_runner),
) -> dict[str, Any]:
    """Schedule processing of pending jobs."""
    background_tasks.add_task(runner.process_pending_jobs, limit)
    logger.info(f"Admin {user_id} scheduled processing of up to {limit} jobs")
    return {"status": "accepted", "limit": limit}


@router.get(
    "/jobs/{job_id}",
    response_model=Job,
    summary="Get job status",
    description=(
        "Check the status and progress of one of your jobs.\n\n"
        "**Response:**\n"
        "- 200 OK: the job, including `status`, `processed`/`total`, `progress` (percent), `result` and `error`.\n"
        "- 404 Not Found: the job does not exist or belongs to another user."
    ),
    responses={
        404: {
            "description": "Job not found.",
            "content": {"application/json": {"example": {"detail": JOB_NOT_FOUND}}},
        },
    },
)
async def get_job(
    job_id: str,
    user_id: str = Depends(get_current_user_id),
    queue: JobQueue = Depends(get_job_queue),
) -> Job:
    """Get one of the caller's jobs."""
    job = queue.get_job(job_id, user_id)
    if job is None:
        raise HTTPException(404, JOB_NOT_FOUND)
    return job


@router.delete(
    "/jobs/{job_id}",
    summary="Cancel a job",
    responses={
        404: {"description": "Job not found."},
        409: {
            "description": "Job already finished.",
            "content": {"application/json": {"example": {"detail": "Job cannot be cancelled"}}},
        },
    },
)
async def cancel_job(
    job_id: str,
    user_id: str = Depends(get_current_user_id),
    queue: JobQueue = Depends(get_job_queue),
) -> dict[str, Any]:
    """Cancel one of the caller's PENDING or RUNNING jobs."""
    if queue.cancel_job(job_id, user_id):
        return {"success": True, "job": queue.get_job(job_id, user_id)}
    if queue.get_job(job_id, user_id) is None:
        raise HTTPException(404, JOB_NOT_FOUND)
    raise HTTPException(409, "Job cannot be cancelled")


@router.get(
    "/jobs/{job_id}/download",
    summary="Download an import job's transactions as CSV",
    responses={
        200: {"description": "CSV file download."},
        404: {"description": "Job not found."},
        409: {"description": "Job is not a completed import."},
    },
)
async def download(
    job_id: str,
    user_id: str = Depends(get_current_user_id),
    queue: JobQueue = Depends(get_job_queue),
) -> StreamingResponse:
    """Download the transactions produced by a completed IMPORT_TRANSACTIONS job."""
    job = queue.get_job(job_id, user_id)
    if job is None:
        raise HTTPException(404, JOB_NOT_FOUND)
    if job.type != JobType.IMPORT_TRANSACTIONS or job.status != JobStatus.COMPLETED:
        raise HTTPException(409, "Job result not available for download")
    data = transactions_to_csv(job.result).encode("utf-8")
    return StreamingResponse(
        io.BytesIO(data),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename=transactions_{job_id}.csv"},
    )


@router.get(
    "/health",
    summary="Health check",
    description="Simple health check endpoint. Returns status ok.",
    response_description="Status ok.",
    responses={200: {"description": "API is healthy.", "content": {"application/json": {"example": {"status": "ok"}}}}},
)
async def health() -> dict:
    """Health check endpoint."""
    return {"status": "ok"}
