"""Stage 1 of merchant normalization: strip point-of-sale noise from raw statement text.

Each rule is a (pattern, replacement) pair applied in order to the lower-cased text. Rules that rely on punctuation
(comma-separated locations, ``#`` store numbers) run before punctuation is removed; rules that look at the trailing
tokens (city plus province/state) run after whitespace has been collapsed.
"""

import re

UNKNOWN_MERCHANT = "Unknown Merchant"
MIN_MERCHANT_LENGTH = 2

PROVINCE_CODES = ("ab", "bc", "mb", "nb", "nl", "nt", "ns", "nu", "on", "pe", "qc", "sk", "yt")
STATE_CODES = (
    "al", "ak", "az", "ar", "ca", "co", "ct", "de", "dc", "fl", "ga", "hi", "id", "il", "in", "ia", "ks", "ky", "la",
    "me", "md", "ma", "mi", "mn", "ms", "mo", "mt", "ne", "nv", "nh", "nj", "nm", "ny", "nc", "nd", "oh", "ok", "or",
    "pa", "ri", "sc", "sd", "tn", "tx", "ut", "vt", "va", "wa", "wv", "wi", "wy",
)  # fmt: skip
KNOWN_CITIES = (
    "toronto", "north york", "scarborough", "etobicoke", "mississauga", "brampton", "markham", "vaughan",
    "richmond hill", "oakville", "burlington", "hamilton", "oshawa", "ajax", "pickering", "whitby", "barrie", "guelph",
    "kitchener", "waterloo", "cambridge", "london", "windsor", "kingston", "ottawa", "nepean", "sudbury",
    "thunder bay", "st catharines", "niagara falls", "montreal", "laval", "gatineau", "quebec", "sherbrooke",
    "vancouver", "burnaby", "surrey", "richmond", "victoria", "kelowna", "calgary", "edmonton", "red deer", "regina",
    "saskatoon", "winnipeg", "halifax", "moncton", "fredericton", "st john's", "charlottetown", "whitehorse",
    "yellowknife", "new york", "brooklyn", "buffalo", "boston", "chicago", "detroit", "seattle", "portland",
    "san francisco", "san jose", "los angeles", "san diego", "las vegas", "phoenix", "denver", "dallas", "houston",
    "austin", "san antonio", "atlanta", "miami", "orlando", "nashville", "philadelphia", "washington",
)  # fmt: skip

_REGION_CODES = "|".join(PROVINCE_CODES + STATE_CODES)
_CITIES = "|".join(re.escape(city) for city in sorted(KNOWN_CITIES, key=len, reverse=True))

POS_PREFIX = re.compile(
    r"^(?:"
    r"(?:sq|tst|sp|pp|paypal|pypl|sumup|iz|zettle|clv|pos)\s*\*+\s*"
    r"|sp\s+"
    r"|(?:pos|interac|idp)(?:\s+(?:purchase|debit|payment|retail))*\s+"
    r"|debit\s+(?:purchase|payment)\s+"
    r")"
)

# Applied before punctuation is removed.
RAW_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"[‘’`]"), "'"),
    (re.compile(r"https?://\S+"), " "),
    (re.compile(r"www\.\S+"), " "),
    (re.compile(r"[a-z0-9._%+-]+@[a-z0-9.-]+\.[a-z]{2,}"), " "),
    (re.compile(r"\b(?:ref|trans|transaction|txn|id|no|num|auth|conf)(?:\s*(?:id|no|num|#))?\s*[:#-]?\s*\d+\w*"), " "),
    (re.compile(r"\b\d{1,4}[/-]\d{1,2}[/-]\d{1,4}\b"), " "),
    (re.compile(r"\b\d{1,2}:\d{2}(?::\d{2})?\b"), " "),
    (re.compile(r"\(?\b\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}\b"), " "),
    (re.compile(r"\b\d{6,}\b"), " "),
    (re.compile(r"\b[a-z]\d[a-z]\s*\d[a-z]\d\b"), " "),
    (re.compile(r"\b(?:store|location|loc|branch|unit|str)\s*#?\s*\d+\b"), " "),
    (re.compile(r"#\s*\d+"), " "),
    (re.compile(rf",\s*[^,]+,\s*(?:{_REGION_CODES})\s*$"), ""),
    (re.compile(rf",\s*(?:{_REGION_CODES})\s*$"), ""),
    (re.compile(rf"\s+-\s+(?:(?:{_CITIES})(?:[\s,]+(?:{_REGION_CODES}))?|(?:{_REGION_CODES}))\s*$"), ""),
    (re.compile(r"[^\w\s&']|_"), " "),
    (re.compile(r"\s+"), " "),
)

# Applied to the collapsed, punctuation-free text.
TRAILING_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(rf"^(?P<name>.*\S)\s+(?:{_CITIES})\s+(?:{_REGION_CODES})$"), r"\g<name>"),
    (re.compile(rf"^(?P<name>\S+\s+.*\S)\s+(?:{'|'.join(PROVINCE_CODES)})$"), r"\g<name>"),
    (re.compile(r"(?:\s+\d+)+$"), ""),
)


def strip_pos_prefix(text: str) -> str:
    """Remove stacked payment-processor prefixes such as ``pos purchase sq *``."""
    while True:
        stripped = POS_PREFIX.sub("", text, count=1)
        if stripped == text:
            return text
        text = stripped


def preprocess_merchant_name(raw: str | None) -> str:
    """Clean a raw merchant string; returns ``Unknown Merchant`` when nothing meaningful is left."""
    if not raw or not raw.strip():
        return UNKNOWN_MERCHANT
    text = strip_pos_prefix(raw.lower().strip())
    for pattern, replacement in RAW_RULES:
        text = pattern.sub(replacement, text)
    text = text.strip()
    for pattern, replacement in TRAILING_RULES:
        text = pattern.sub(replacement, text)
    text = " ".join(text.split()).strip(" '&")
    if len(text) < MIN_MERCHANT_LENGTH:
        return UNKNOWN_MERCHANT
    return text


def capitalize_words(text: str) -> str:
    """Upper-case the first letter of each word, leaving the rest untouched (``joe's`` -> ``Joe's``)."""
    return " ".join(word[:1].upper() + word[1:] for word in text.split())
