"""Staged merchant-name normalization.

Preprocessing always runs first; its output is then offered to each matching stage in order (canonical map, fuzzy
match, knowledge base) and the first stage to return a match wins. When no stage matches, the preprocessed text is
title-cased and returned with low confidence.
"""

from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass

from rapidfuzz import fuzz, process

from finance_intake.core.errors import KnowledgeBaseError, MerchantBatchError
from finance_intake.core.models import NormalizationResult, NormalizationSource, NormalizationStats
from finance_intake.core.settings import get_settings
from finance_intake.core.utils import get_logger

from .canonical import CanonicalMap, get_canonical_map
from .knowledge import KnowledgeBase, SqlKnowledgeBase
from .preprocess import UNKNOWN_MERCHANT, capitalize_words, preprocess_merchant_name

logger = get_logger("finance-intake.normalizer")

MIN_FUZZY_LENGTH = 4
FUZZY_CONFIDENCE_SCALE = 0.95
KNOWLEDGE_CONFIDENCE_SCALE = 0.9
FALLBACK_CONFIDENCE = 0.5


@dataclass(frozen=True)
class StageMatch:
    """A hit from one pipeline stage."""

    canonical_name: str
    confidence: float
    source: NormalizationSource
    matched_from: str | None = None


@dataclass(frozen=True)
class Lookups:
    """External state the matching stages read from."""

    canonical_map: CanonicalMap
    knowledge_base: KnowledgeBase | None = None
    fuzzy_threshold: float = 0.85


def match_canonical(text: str, lookups: Lookups) -> StageMatch | None:
    """Exact lookup of the preprocessed text in the canonical map."""
    canonical = lookups.canonical_map.get(text)
    if canonical is None:
        return None
    return StageMatch(canonical, 1.0, NormalizationSource.CANONICAL_MAP, matched_from=text)


def match_fuzzy(text: str, lookups: Lookups) -> StageMatch | None:
    """Best token-sort similarity against canonical map keys, accepted at or above the threshold."""
    if len(text) < MIN_FUZZY_LENGTH:
        return None
    candidates = [key for key in lookups.canonical_map.keys() if len(key) >= MIN_FUZZY_LENGTH]
    best = process.extractOne(
        text,
        candidates,
        scorer=fuzz.token_sort_ratio,
        score_cutoff=lookups.fuzzy_threshold * 100,
    )
    if best is None:
        return None
    key, score, _ = best
    canonical = lookups.canonical_map.get(key)
    if canonical is None:
        return None
    return StageMatch(canonical, round(score / 100 * FUZZY_CONFIDENCE_SCALE, 4), NormalizationSource.FUZZY_MATCH, key)


def match_knowledge_base(text: str, lookups: Lookups) -> StageMatch | None:
    """Most-voted user-confirmed association for the preprocessed text."""
    if lookups.knowledge_base is None:
        return None
    try:
        match = lookups.knowledge_base.lookup(text)
    except KnowledgeBaseError:
        logger.warning(f"Knowledge base lookup failed for {text!r}; treating as no match", exc_info=True)
        return None
    if match is None or match.total_votes <= 0:
        return None
    confidence = round(match.votes / match.total_votes * KNOWLEDGE_CONFIDENCE_SCALE, 4)
    return StageMatch(match.canonical_name, confidence, NormalizationSource.KNOWLEDGE_BASE, match.merchant_name)


Stage = Callable[[str, Lookups], StageMatch | None]
STAGES: tuple[Stage, ...] = (match_canonical, match_fuzzy, match_knowledge_base)


def run_pipeline(raw: str, lookups: Lookups) -> NormalizationResult:
    """Normalize one merchant string against the given lookups."""
    preprocessed = preprocess_merchant_name(raw)
    if preprocessed != UNKNOWN_MERCHANT:
        for stage in STAGES:
            match = stage(preprocessed, lookups)
            if match is not None:
                return NormalizationResult(
                    input=raw,
                    preprocessed=preprocessed,
                    canonical_name=match.canonical_name,
                    confidence=match.confidence,
                    source=match.source,
                    matched_from=match.matched_from,
                )
    return NormalizationResult(
        input=raw,
        preprocessed=preprocessed,
        canonical_name=capitalize_words(preprocessed),
        confidence=0.0 if preprocessed == UNKNOWN_MERCHANT else FALLBACK_CONFIDENCE,
        source=NormalizationSource.PREPROCESSING,
    )


def build_lookups(
    use_database: bool = True,
    canonical_map: CanonicalMap | None = None,
    knowledge_base: KnowledgeBase | None = None,
) -> Lookups:
    """Assemble pipeline lookups; the knowledge base is only attached when ``use_database`` is set."""
    if use_database and knowledge_base is None:
        knowledge_base = SqlKnowledgeBase()
    return Lookups(
        canonical_map=canonical_map if canonical_map is not None else get_canonical_map(),
        knowledge_base=knowledge_base if use_database else None,
        fuzzy_threshold=get_settings().fuzzy_threshold,
    )


def normalize_merchant_name(
    raw: str,
    use_database: bool = True,
    *,
    canonical_map: CanonicalMap | None = None,
    knowledge_base: KnowledgeBase | None = None,
) -> NormalizationResult:
    """Normalize a single merchant string. ``use_database=False`` skips the knowledge base stage."""
    return run_pipeline(raw, build_lookups(use_database, canonical_map, knowledge_base))


def validate_merchant_batch(merchants: object, max_items: int | None = None) -> list[str]:
    """Reject an unusable batch before any normalization work starts."""
    limit = max_items if max_items is not None else get_settings().max_merchant_batch
    if not isinstance(merchants, list) or not merchants:
        msg = "Merchants array cannot be empty"
        raise MerchantBatchError(msg)
    if len(merchants) > limit:
        msg = f"Maximum {limit} merchants per request"
        raise MerchantBatchError(msg)
    if not all(isinstance(merchant, str) for merchant in merchants):
        msg = "All merchants must be strings"
        raise MerchantBatchError(msg)
    return merchants


def normalize_merchants(
    merchants: list[str],
    use_database: bool = True,
    *,
    canonical_map: CanonicalMap | None = None,
    knowledge_base: KnowledgeBase | None = None,
) -> list[NormalizationResult]:
    """Normalize a batch, preserving input order; each item is normalized independently.

    Raises:
        MerchantBatchError: the batch is empty, too large, or contains non-strings.

    """
    merchants = validate_merchant_batch(merchants)
    lookups = build_lookups(use_database, canonical_map, knowledge_base)
    results = [run_pipeline(merchant, lookups) for merchant in merchants]
    logger.info(f"Normalized {len(results)} merchants (use_database={use_database})")
    return results


def summarize_results(results: list[NormalizationResult]) -> NormalizationStats:
    """Count results by source and average their confidence."""
    by_source = Counter(str(result.source) for result in results)
    average = sum(result.confidence for result in results) / len(results) if results else 0.0
    return NormalizationStats(total=len(results), by_source=dict(by_source), average_confidence=round(average, 4))
