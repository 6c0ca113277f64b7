"""Field-level parsers shared by the CSV and OFX statement importers.

Every parser raises ``ValueError`` with a short, row-reportable reason when a value cannot be read, so callers can
record the failure against the offending row and keep going.
"""

import codecs
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

from finance_intake.core.errors import StatementImportError
from finance_intake.core.models import TransactionType

DATE_FORMATS = (
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%d/%m/%Y",
    "%Y/%m/%d",
    "%m/%d/%y",
    "%d-%m-%Y",
    "%d %b %Y",
    "%b %d, %Y",
    "%b %d %Y",
    "%Y%m%d",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
)

CURRENCY_PATTERN = re.compile(r"(?<![A-Z])(?:CAD|USD|EUR|GBP|AUD)(?![A-Z])|[$€£¥]", re.IGNORECASE)
DIRECTION_SUFFIX = re.compile(r"\s*(?<![A-Z])(CR|DR)\.?$", re.IGNORECASE)
NUMBER_PATTERN = re.compile(r"-?(?:\d+(?:\.\d*)?|\.\d+)")
DECIMAL_COMMA = re.compile(r"-?\d*,\d{1,2}")

DEBIT_HINTS = frozenset({"debit", "dr", "withdrawal", "withdraw", "payment", "purchase", "check", "fee", "atm", "pos"})
CREDIT_HINTS = frozenset({"credit", "cr", "deposit", "dep", "refund", "interest", "dividend", "directdep", "return"})

TEXT_ENCODINGS = ("utf-8-sig", "cp1252")


def parse_date(text: str | None) -> date:
    """Parse a statement date, trying each accepted format in turn."""
    cleaned = (text or "").strip()
    if not cleaned:
        msg = "Missing date"
        raise ValueError(msg)
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(cleaned, fmt).date()  # noqa: DTZ007
        except ValueError:
            continue
    msg = f"Invalid date: {cleaned!r}"
    raise ValueError(msg)


def _normalize_separators(number: str) -> str:
    """Rewrite ``1.234,56`` and ``-3,50`` with a decimal point; otherwise commas are thousands separators."""
    last_comma, last_dot = number.rfind(","), number.rfind(".")
    if last_comma > last_dot and (last_dot >= 0 or DECIMAL_COMMA.fullmatch(number)):
        return number.replace(".", "").replace(",", ".")
    return number.replace(",", "")


def parse_amount(text: str | None) -> Decimal | None:
    """Parse a money amount, returning None for a blank cell.

    Tolerates currency symbols and codes, thousands separators, decimal commas, accounting parentheses, a trailing
    minus, and a ``CR``/``DR`` suffix (``DR`` makes the amount negative).
    """
    cleaned = (text or "").strip()
    if not cleaned:
        return None
    negative = False
    suffix = DIRECTION_SUFFIX.search(cleaned)
    if suffix:
        negative = suffix.group(1).upper() == "DR"
        cleaned = cleaned[: suffix.start()]
    cleaned = CURRENCY_PATTERN.sub("", cleaned)
    cleaned = re.sub(r"\s", "", cleaned)
    if cleaned.startswith("(") and cleaned.endswith(")"):
        negative = True
        cleaned = cleaned[1:-1]
    if cleaned.endswith("-"):
        negative = True
        cleaned = cleaned[:-1]
    cleaned = _normalize_separators(cleaned.removeprefix("+"))
    if not NUMBER_PATTERN.fullmatch(cleaned):
        msg = f"Invalid amount: {text.strip()!r}"
        raise ValueError(msg)
    try:
        amount = Decimal(cleaned)
    except InvalidOperation as exc:
        msg = f"Invalid amount: {text.strip()!r}"
        raise ValueError(msg) from exc
    return -abs(amount) if negative else amount


def hint_type(hint: str | None) -> TransactionType | None:
    """Map an explicit type column or OFX TRNTYPE value to a transaction type."""
    cleaned = re.sub(r"[^a-z]", "", (hint or "").lower())
    if cleaned in DEBIT_HINTS:
        return TransactionType.DEBIT
    if cleaned in CREDIT_HINTS:
        return TransactionType.CREDIT
    return None


def classify_type(amount: Decimal, hint: str | None = None) -> tuple[TransactionType, Decimal]:
    """Classify a row as DEBIT or CREDIT and return the correctly signed amount.

    An explicit hint wins and fixes the sign; without one the sign of the amount decides, with zero counted as CREDIT.
    """
    explicit = hint_type(hint)
    if explicit is TransactionType.DEBIT:
        return explicit, -abs(amount)
    if explicit is TransactionType.CREDIT:
        return explicit, abs(amount)
    if amount < 0:
        return TransactionType.DEBIT, amount
    return TransactionType.CREDIT, amount


def decode_statement(raw: bytes) -> str:
    """Decode uploaded statement bytes into text."""
    if raw.startswith((codecs.BOM_UTF16_LE, codecs.BOM_UTF16_BE)):
        encodings: tuple[str, ...] = ("utf-16",)
    else:
        encodings = TEXT_ENCODINGS
    for encoding in encodings:
        try:
            text = raw.decode(encoding)
        except UnicodeDecodeError:
            continue
        if "\x00" in text:
            break
        return text
    msg = "Unable to decode file: expected UTF-8 or Windows-1252 text"
    raise StatementImportError(msg)
