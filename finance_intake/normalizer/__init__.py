"""Merchant normalizer: map noisy statement merchant text to canonical merchant names."""

from .canonical import CanonicalMap, StaticCanonicalMap, get_canonical_map  # noqa: F401
from .knowledge import KnowledgeBase, KnowledgeMatch, SqlKnowledgeBase  # noqa: F401
from .pipeline import normalize_merchant_name, normalize_merchants, summarize_results  # noqa: F401
from .preprocess import UNKNOWN_MERCHANT, preprocess_merchant_name  # noqa: F401
