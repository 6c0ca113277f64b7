"""Shared pytest configuration: an isolated SQLite database and log directory per test session."""

import os
import tempfile
from collections.abc import Iterator
from pathlib import Path

_TMP_DIR = Path(tempfile.mkdtemp(prefix="finance-intake-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP_DIR / 'finance_intake.db'}"
os.environ["LOG_DIR"] = str(_TMP_DIR / "logs")
os.environ["ADMIN_USER_IDS"] = '["admin-user"]'

import pytest  # noqa: E402

from finance_intake.core.db import Base, engine  # noqa: E402

FIXTURES_DIR = Path(__file__).parent / "fixtures"


@pytest.fixture(autouse=True)
def clean_database() -> Iterator[None]:
    """Give every test empty jobs and merchant knowledge tables."""
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    yield


@pytest.fixture
def fixtures_dir() -> Path:
    """Directory holding sample statements."""
    return FIXTURES_DIR
