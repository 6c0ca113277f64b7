"""DB engine, ORM tables and session helpers for Finance Intake."""

from pathlib import Path

from sqlalchemy import JSON, Column, Integer, String, Text, UniqueConstraint, create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()


class JobRecord(Base):
    """A background job row; status changes go through the job queue's compare-and-set updates."""

    __tablename__ = "jobs"
    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    type = Column(String, nullable=False)
    status = Column(String, nullable=False, index=True)
    payload = Column(JSON, nullable=False, default=dict)
    result = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)
    processed = Column(Integer, nullable=False, default=0)
    total = Column(Integer, nullable=True)
    progress = Column(Integer, nullable=False, default=0)
    created_at = Column(String, nullable=False)
    updated_at = Column(String, nullable=False)
    started_at = Column(String, nullable=True)
    completed_at = Column(String, nullable=True)


class MerchantKnowledge(Base):
    """One vote count for a (preprocessed merchant, canonical name) association."""

    __tablename__ = "merchant_knowledge"
    __table_args__ = (UniqueConstraint("merchant_name", "canonical_name", name="uq_merchant_canonical"),)
    id = Column(Integer, primary_key=True)
    merchant_name = Column(String, nullable=False, index=True)
    canonical_name = Column(String, nullable=False)
    votes = Column(Integer, nullable=False, default=1)
    source = Column(String, nullable=False, default="user")
    created_at = Column(String, nullable=False)
    updated_at = Column(String, nullable=False)


def get_engine(database_url: str | None = None) -> Engine:
    """Create a SQLAlchemy engine using the configured database URL."""
    from finance_intake.core.settings import get_settings

    url = make_url(database_url or get_settings().database_url)
    connect_args = {}
    if url.get_backend_name() == "sqlite":
        connect_args["check_same_thread"] = False
        if url.database and url.database != ":memory:":
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)
    return create_engine(url, connect_args=connect_args)


engine = get_engine()
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind: Engine | None = None) -> None:
    """Create the jobs and merchant knowledge tables if they do not exist."""
    Base.metadata.create_all(bind or engine)
