"""Merchant knowledge base: user-confirmed merchant -> canonical name associations with vote counts."""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from finance_intake.core.db import MerchantKnowledge, SessionLocal
from finance_intake.core.errors import KnowledgeBaseError
from finance_intake.core.models import KnowledgeEntry, KnowledgeStats
from finance_intake.core.utils import get_logger, utcnow_iso

from .preprocess import UNKNOWN_MERCHANT, preprocess_merchant_name

logger = get_logger("finance-intake.normalizer.knowledge")


@dataclass(frozen=True)
class KnowledgeMatch:
    """Winning canonical name for a key, with the votes behind it."""

    merchant_name: str
    canonical_name: str
    votes: int
    total_votes: int


class KnowledgeBase(Protocol):
    """Lookup side of the knowledge base, as seen by the normalization pipeline."""

    def lookup(self, key: str) -> KnowledgeMatch | None:
        """Return the most-voted canonical name for a preprocessed merchant key."""
        ...


class SqlKnowledgeBase:
    """Knowledge base stored in the ``merchant_knowledge`` table."""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal) -> None:
        """Initialize with a session factory (defaults to the application's)."""
        self.session_factory = session_factory

    def lookup(self, key: str) -> KnowledgeMatch | None:
        """Return the canonical name with the most votes for ``key``; ties go to the most recently confirmed."""
        stmt = (
            select(MerchantKnowledge)
            .where(MerchantKnowledge.merchant_name == key)
            .order_by(MerchantKnowledge.votes.desc(), MerchantKnowledge.updated_at.desc(), MerchantKnowledge.id)
        )
        try:
            with self.session_factory() as session:
                rows = session.scalars(stmt).all()
        except SQLAlchemyError as exc:
            msg = f"Knowledge base lookup failed for {key!r}"
            raise KnowledgeBaseError(msg) from exc
        if not rows:
            return None
        winner = rows[0]
        return KnowledgeMatch(
            merchant_name=key,
            canonical_name=winner.canonical_name,
            votes=winner.votes,
            total_votes=sum(row.votes for row in rows),
        )

    def record(self, merchant_name: str, canonical_name: str, source: str = "user") -> KnowledgeEntry | None:
        """Add one vote for ``merchant_name`` -> ``canonical_name``.

        The merchant is stored under its preprocessed form, the same key the pipeline looks up. Returns None when the
        merchant preprocesses to nothing usable.
        """
        canonical_name = " ".join(canonical_name.split())
        if not canonical_name:
            msg = "Canonical name cannot be empty"
            raise ValueError(msg)
        key = preprocess_merchant_name(merchant_name)
        if key == UNKNOWN_MERCHANT:
            logger.warning(f"Skipping knowledge base entry with no usable merchant text: {merchant_name!r}")
            return None

        try:
            with self.session_factory() as session:
                if not self._add_vote(session, key, canonical_name):
                    try:
                        now = utcnow_iso()
                        session.add(
                            MerchantKnowledge(
                                merchant_name=key,
                                canonical_name=canonical_name,
                                votes=1,
                                source=source,
                                created_at=now,
                                updated_at=now,
                            )
                        )
                        session.commit()
                    except IntegrityError:
                        # A concurrent writer inserted the same pair first.
                        session.rollback()
                        self._add_vote(session, key, canonical_name)
                row = session.scalars(
                    select(MerchantKnowledge).where(
                        MerchantKnowledge.merchant_name == key,
                        MerchantKnowledge.canonical_name == canonical_name,
                    )
                ).one()
                entry = KnowledgeEntry.model_validate(row)
        except SQLAlchemyError as exc:
            msg = f"Failed to record knowledge base entry for {key!r}"
            raise KnowledgeBaseError(msg) from exc
        logger.info(f"Knowledge base: {key!r} -> {canonical_name!r} ({entry.votes} votes)")
        return entry

    @staticmethod
    def _add_vote(session: Session, key: str, canonical_name: str) -> bool:
        stmt = (
            update(MerchantKnowledge)
            .where(MerchantKnowledge.merchant_name == key, MerchantKnowledge.canonical_name == canonical_name)
            .values(votes=MerchantKnowledge.votes + 1, updated_at=utcnow_iso())
            .execution_options(synchronize_session=False)
        )
        updated = session.execute(stmt).rowcount
        session.commit()
        return updated == 1

    def stats(self) -> KnowledgeStats:
        """Count entries, distinct merchants and votes."""
        stmt = select(
            func.count(MerchantKnowledge.id),
            func.count(func.distinct(MerchantKnowledge.merchant_name)),
            func.coalesce(func.sum(MerchantKnowledge.votes), 0),
        )
        try:
            with self.session_factory() as session:
                entries, merchants, total_votes = session.execute(stmt).one()
        except SQLAlchemyError as exc:
            msg = "Knowledge base statistics query failed"
            raise KnowledgeBaseError(msg) from exc
        return KnowledgeStats(entries=entries, merchants=merchants, total_votes=total_votes)
