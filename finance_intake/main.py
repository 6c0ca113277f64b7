"""Main entrypoint and application factory for the Finance Intake API.

This module initializes the FastAPI application, configures logging, creates the database tables, and exposes the
Scalar API reference endpoint for interactive OpenAPI documentation. It also includes the main entrypoint for running
the app with Uvicorn.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.responses import HTMLResponse
from scalar_fastapi import get_scalar_api_reference
from sqlalchemy.exc import SQLAlchemyError

from finance_intake import __version__
from finance_intake.api.routes import router
from finance_intake.core.db import init_db
from finance_intake.core.settings import get_settings
from finance_intake.core.utils import ROOT_LOGGER, ensure_dir, get_logger

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


# --- Logging Setup ---
def setup_logging() -> None:
    """Configure the package logger hierarchy to write to the log file as well as the console."""
    settings = get_settings()
    ensure_dir(settings.log_dir)
    logger = get_logger(ROOT_LOGGER)
    logger.setLevel(logging.INFO)
    # Add file handler for persistent logs (not colorized)
    if not any(isinstance(h, logging.FileHandler) for h in logger.handlers):
        file_handler = logging.FileHandler(Path(settings.log_dir) / settings.log_file)
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(file_handler)
    logger.propagate = False


setup_logging()
logger = get_logger("finance-intake.app")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Lifespan event handler to create the jobs and merchant knowledge tables."""
    _ = app  # Silence unused argument warning
    try:
        init_db()
    except SQLAlchemyError:
        logger.exception("Failed to create database tables")
        raise
    logger.info("Database ready")
    yield


app = FastAPI(
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    title="Finance Intake API",
    description="""
    The Finance Intake API imports bank statements, normalizes merchant names, and tracks background jobs.

    **Endpoints:**
    - `POST /import/parse-csv`, `POST /import/parse-ofx`: Parse an uploaded statement.
    - `POST /merchants/normalize`: Normalize one merchant name or a batch.
    - `GET /merchants/stats`, `POST /merchants/knowledge`: Inspect and train the merchant knowledge base.
    - `GET /jobs`, `POST /jobs`, `GET /jobs/{{job_id}}`, `DELETE /jobs/{{job_id}}`: Submit, track and cancel jobs.
    - `GET /jobs/{{job_id}}/download`: Download an import job's transactions as CSV.
    - `GET /health`: Health check endpoint.
    - `GET /scalar`: Interactive Scalar OpenAPI documentation.

    Callers identify themselves with the `X-User-Id` header.
    """,
    version=__version__,
)
app.include_router(router)


@app.get("/scalar", include_in_schema=False)
async def scalar_docs() -> HTMLResponse:
    """Return Scalar API reference."""
    return get_scalar_api_reference(openapi_url=app.openapi_url, title=app.title)


def run() -> None:
    """Run the API with Uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run("finance_intake.main:app", host=settings.server_host, port=settings.server_port)


if __name__ == "__main__":
    run()
