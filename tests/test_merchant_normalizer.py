"""Tests for merchant preprocessing, the staged normalization pipeline and the knowledge base."""

import pytest

from finance_intake.core.errors import KnowledgeBaseError, MerchantBatchError
from finance_intake.core.models import NormalizationSource
from finance_intake.normalizer import (
    UNKNOWN_MERCHANT,
    KnowledgeMatch,
    SqlKnowledgeBase,
    StaticCanonicalMap,
    normalize_merchant_name,
    normalize_merchants,
    preprocess_merchant_name,
    summarize_results,
)

JOES = "SQ *JOE'S COFFEE #221 TORONTO ON"
UNMAPPED = "Zanzibar Noodle House"


class FakeKnowledgeBase:
    """In-memory knowledge base keyed by preprocessed merchant text."""

    def __init__(self, matches: dict[str, KnowledgeMatch]) -> None:
        """Store canned matches."""
        self.matches = matches
        self.lookups: list[str] = []

    def lookup(self, key: str) -> KnowledgeMatch | None:
        """Return the canned match for a key."""
        self.lookups.append(key)
        return self.matches.get(key)


class FailingKnowledgeBase:
    """Knowledge base whose store is unavailable."""

    def lookup(self, key: str) -> KnowledgeMatch | None:
        """Always fail."""
        msg = f"database unavailable for {key}"
        raise KnowledgeBaseError(msg)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (JOES, "joe's coffee"),
        ("TST* STARBUCKS STORE 1234 - TORONTO", "starbucks"),
        ("Amazon.ca ref#88321 2024-01-15", "amazon ca"),
        ("WALMART SUPERCENTER, MISSISSAUGA, ON", "walmart supercenter"),
        ("TIM HORTONS 0412 OAKVILLE ON", "tim hortons"),
        ("POS PURCHASE SHELL 4021 416-555-0199", "shell"),
        ("BURGER KING ON", "burger king"),
        ("Netflix.com help@netflix.com", "netflix com"),
        ("Uber - Eats", "uber eats"),
        ("COSTCO WHOLESALE - OTTAWA, ON", "costco wholesale"),
    ],
)
def test_preprocess_strips_point_of_sale_noise(raw: str, expected: str) -> None:
    """Prefixes, ids, store numbers, phone numbers and locations are removed."""
    if preprocess_merchant_name(raw) != expected:
        msg = f"preprocess({raw!r}) returned {preprocess_merchant_name(raw)!r}, expected {expected!r}"
        raise AssertionError(msg)


@pytest.mark.parametrize("raw", ["", "   ", "#1234", "x", "SQ *"])
def test_preprocess_empty_results_are_unknown(raw: str) -> None:
    """Nothing meaningful left means Unknown Merchant."""
    if preprocess_merchant_name(raw) != UNKNOWN_MERCHANT:
        msg = f"Expected {UNKNOWN_MERCHANT!r} for {raw!r}, got {preprocess_merchant_name(raw)!r}"
        raise AssertionError(msg)


def test_point_of_sale_example_resolves_to_canonical_name() -> None:
    """The Square coffee-shop example resolves to Joe's Coffee with high confidence."""
    result = normalize_merchant_name(JOES, use_database=False)
    if result.canonical_name != "Joe's Coffee":
        msg = f"Expected Joe's Coffee, got {result.canonical_name}"
        raise AssertionError(msg)
    if result.source not in (NormalizationSource.CANONICAL_MAP, NormalizationSource.FUZZY_MATCH):
        msg = f"Unexpected source: {result.source}"
        raise AssertionError(msg)
    if result.confidence <= 0.8:
        msg = f"Expected confidence > 0.8, got {result.confidence}"
        raise AssertionError(msg)


def test_fuzzy_match_scales_confidence() -> None:
    """A misspelled chain name is matched approximately with confidence below 1."""
    result = normalize_merchant_name("STARBUKCS COFFEE", use_database=False)
    if result.source != NormalizationSource.FUZZY_MATCH or result.canonical_name != "Starbucks":
        msg = f"Expected a fuzzy Starbucks match, got {result}"
        raise AssertionError(msg)
    if not 0.8 < result.confidence < 1.0:
        msg = f"Unexpected fuzzy confidence: {result.confidence}"
        raise AssertionError(msg)


@pytest.mark.parametrize("raw", [JOES, "STARBUKCS COFFEE", "PETRO-CANADA 4411", "amzn mktp ca", "A & W #12"])
def test_canonical_names_are_stable(raw: str) -> None:
    """Normalizing a canonical name again returns the same canonical name."""
    first = normalize_merchant_name(raw, use_database=False)
    second = normalize_merchant_name(first.canonical_name, use_database=False)
    if second.canonical_name != first.canonical_name:
        msg = f"{raw!r}: {first.canonical_name!r} re-normalized to {second.canonical_name!r}"
        raise AssertionError(msg)


def test_fallback_title_cases_preprocessed_text() -> None:
    """Unknown merchants fall back to the cleaned text with low confidence."""
    result = normalize_merchant_name(f"{UNMAPPED} #88", use_database=False)
    expected = ("Zanzibar Noodle House", NormalizationSource.PREPROCESSING, 0.5)
    if (result.canonical_name, result.source, result.confidence) != expected:
        msg = f"Expected {expected}, got {result}"
        raise AssertionError(msg)
    unknown = normalize_merchant_name("", use_database=False)
    if unknown.canonical_name != UNKNOWN_MERCHANT or unknown.confidence != 0.0:
        msg = f"Expected Unknown Merchant with zero confidence, got {unknown}"
        raise AssertionError(msg)


def test_knowledge_base_stage_uses_vote_share() -> None:
    """The knowledge base is consulted last, with confidence from the winner's share of votes."""
    knowledge_base = FakeKnowledgeBase(
        {"zanzibar noodle house": KnowledgeMatch("zanzibar noodle house", "Zanzibar Noodles", votes=3, total_votes=4)}
    )
    result = normalize_merchant_name(UNMAPPED, knowledge_base=knowledge_base)
    if (result.canonical_name, result.source) != ("Zanzibar Noodles", NormalizationSource.KNOWLEDGE_BASE):
        msg = f"Expected a knowledge base hit, got {result}"
        raise AssertionError(msg)
    if result.confidence != 0.675:
        msg = f"Expected confidence 0.675, got {result.confidence}"
        raise AssertionError(msg)
    mapped = normalize_merchant_name(JOES, knowledge_base=knowledge_base)
    if mapped.source != NormalizationSource.CANONICAL_MAP or knowledge_base.lookups != ["zanzibar noodle house"]:
        msg = "Canonical map hits must short-circuit before the knowledge base"
        raise AssertionError(msg)


def test_use_database_false_skips_knowledge_base() -> None:
    """With use_database=False the knowledge base is never queried."""
    knowledge_base = FakeKnowledgeBase({})
    normalize_merchant_name(UNMAPPED, use_database=False, knowledge_base=knowledge_base)
    if knowledge_base.lookups:
        msg = f"Knowledge base should not be queried, got {knowledge_base.lookups}"
        raise AssertionError(msg)


def test_knowledge_base_failure_is_a_miss() -> None:
    """A failing knowledge base does not fail the item or the batch."""
    results = normalize_merchants([UNMAPPED, JOES], knowledge_base=FailingKnowledgeBase())
    sources = [result.source for result in results]
    if sources != [NormalizationSource.PREPROCESSING, NormalizationSource.CANONICAL_MAP]:
        msg = f"Unexpected sources: {sources}"
        raise AssertionError(msg)


def test_batch_equals_elementwise_normalization() -> None:
    """Batch results match single-item results in order."""
    merchants = [JOES, UNMAPPED, "STARBUKCS COFFEE", "", "LOBLAWS 1012 TORONTO ON"]
    batch = normalize_merchants(merchants, use_database=False)
    single = [normalize_merchant_name(merchant, use_database=False) for merchant in merchants]
    if batch != single:
        msg = "Batch normalization differs from element-wise normalization"
        raise AssertionError(msg)
    if [result.input for result in batch] != merchants:
        msg = "Batch order not preserved"
        raise AssertionError(msg)


@pytest.mark.parametrize(
    ("merchants", "message"),
    [
        ([], "Merchants array cannot be empty"),
        (["Shell"] * 1001, "Maximum 1000 merchants per request"),
        (["Shell", 42], "All merchants must be strings"),
    ],
)
def test_batch_validation(merchants: list, message: str) -> None:
    """Invalid batches are rejected before any work."""
    with pytest.raises(MerchantBatchError, match=message):
        normalize_merchants(merchants, use_database=False)


def test_summarize_results() -> None:
    """Stats count results by source and average confidence."""
    results = normalize_merchants([JOES, UNMAPPED], use_database=False)
    stats = summarize_results(results)
    if stats.total != 2 or stats.by_source != {"canonical_map": 1, "preprocessing": 1}:
        msg = f"Unexpected stats: {stats}"
        raise AssertionError(msg)
    if stats.average_confidence != 0.75:
        msg = f"Expected mean confidence 0.75, got {stats.average_confidence}"
        raise AssertionError(msg)


def test_custom_canonical_map() -> None:
    """Callers can supply their own canonical map."""
    canonical_map = StaticCanonicalMap({"Zanzibar Noodles": ("zanzibar noodle house", "zanzibar noodles")})
    result = normalize_merchant_name(UNMAPPED, use_database=False, canonical_map=canonical_map)
    if result.canonical_name != "Zanzibar Noodles" or result.confidence != 1.0:
        msg = f"Expected a canonical map hit, got {result}"
        raise AssertionError(msg)


def test_sql_knowledge_base_votes() -> None:
    """Recorded corrections accumulate votes and drive the knowledge base stage."""
    knowledge_base = SqlKnowledgeBase()
    first = knowledge_base.record("SQ *ZANZIBAR NOODLE HOUSE #12", "Zanzibar Noodles")
    knowledge_base.record("Zanzibar Noodle House", "Zanzibar Noodles")
    knowledge_base.record("ZANZIBAR NOODLE HOUSE TORONTO ON", "Zanzibar Noodle Bar")
    if first is None or first.merchant_name != "zanzibar noodle house" or first.votes != 1:
        msg = f"Unexpected first entry: {first}"
        raise AssertionError(msg)
    match = knowledge_base.lookup("zanzibar noodle house")
    if match is None or (match.canonical_name, match.votes, match.total_votes) != ("Zanzibar Noodles", 2, 3):
        msg = f"Unexpected lookup result: {match}"
        raise AssertionError(msg)
    result = normalize_merchant_name(UNMAPPED, knowledge_base=knowledge_base)
    if result.source != NormalizationSource.KNOWLEDGE_BASE or result.confidence != 0.6:
        msg = f"Expected a knowledge base hit with confidence 0.6, got {result}"
        raise AssertionError(msg)
    stats = knowledge_base.stats()
    if (stats.entries, stats.merchants, stats.total_votes) != (2, 1, 3):
        msg = f"Unexpected stats: {stats}"
        raise AssertionError(msg)


def test_sql_knowledge_base_skips_unusable_names() -> None:
    """Merchant text that preprocesses to nothing is not recorded."""
    knowledge_base = SqlKnowledgeBase()
    if knowledge_base.record("#1234", "Something") is not None:
        msg = "Expected no entry for unusable merchant text"
        raise AssertionError(msg)
    if knowledge_base.stats().entries != 0:
        msg = "Knowledge base should be empty"
        raise AssertionError(msg)
