"""CSV statement importer.

Bank CSV exports disagree on delimiter, column order, header wording and whether debits and credits share a column.
The importer maps each header cell to a column role, picks the best-fitting known layout for the roles it found, and
then parses every data row independently: a bad row is reported in ``ImportResult.errors`` and never aborts the file.
"""

import csv
from dataclasses import dataclass
from decimal import Decimal
from enum import StrEnum

from finance_intake.core.errors import StatementImportError
from finance_intake.core.models import ImportResult, ParsedTransaction, RowError, StatementFormat
from finance_intake.core.utils import get_logger

from .fields import classify_type, parse_amount, parse_date

logger = get_logger("finance-intake.importer.csv")

SNIFF_DELIMITERS = ",;\t|"
SNIFF_LINES = 10


class ColumnRole(StrEnum):
    """Meaning of a statement column."""

    DATE = "date"
    POSTED_DATE = "posted_date"
    DESCRIPTION = "description"
    AMOUNT = "amount"
    DEBIT = "debit"
    CREDIT = "credit"
    TYPE = "type"
    ACCOUNT = "account"
    BALANCE = "balance"
    CATEGORY = "category"


# Checked in order; the first role whose synonym appears in a header wins.
ROLE_SYNONYMS: tuple[tuple[ColumnRole, tuple[str, ...]], ...] = (
    (ColumnRole.POSTED_DATE, ("posted date", "post date", "posting date", "date posted")),
    (ColumnRole.DATE, ("transaction date", "trans date", "txn date", "date")),
    (ColumnRole.TYPE, ("transaction type", "debit/credit", "credit/debit", "dr/cr", "type")),
    (ColumnRole.DEBIT, ("debit", "withdrawal", "money out", "paid out")),
    (ColumnRole.CREDIT, ("credit", "deposit", "money in", "paid in")),
    (ColumnRole.AMOUNT, ("amount", "amt", "value")),
    (ColumnRole.BALANCE, ("balance",)),
    (ColumnRole.ACCOUNT, ("account", "acct", "card number")),
    (ColumnRole.CATEGORY, ("category",)),
    (ColumnRole.DESCRIPTION, ("description", "merchant", "payee", "details", "narrative", "name", "memo")),
)


@dataclass(frozen=True)
class CsvLayout:
    """A known statement layout: the roles that must all be present for it to apply."""

    name: str
    format: StatementFormat
    roles: tuple[ColumnRole, ...]


R = ColumnRole
KNOWN_LAYOUTS: tuple[CsvLayout, ...] = (
    CsvLayout("account-balance", StatementFormat.CSV_5COL, (R.ACCOUNT, R.DATE, R.DESCRIPTION, R.AMOUNT, R.BALANCE)),
    CsvLayout("typed-balance", StatementFormat.CSV_5COL, (R.DATE, R.DESCRIPTION, R.AMOUNT, R.TYPE, R.BALANCE)),
    CsvLayout("typed-category", StatementFormat.CSV_5COL, (R.DATE, R.DESCRIPTION, R.AMOUNT, R.TYPE, R.CATEGORY)),
    CsvLayout("split-balance", StatementFormat.CSV_5COL, (R.DATE, R.DESCRIPTION, R.DEBIT, R.CREDIT, R.BALANCE)),
    CsvLayout("posted-category", StatementFormat.CSV_5COL, (R.DATE, R.POSTED_DATE, R.DESCRIPTION, R.AMOUNT, R.CATEGORY)),
    CsvLayout("split", StatementFormat.CSV_4COL, (R.DATE, R.DESCRIPTION, R.DEBIT, R.CREDIT)),
    CsvLayout("typed", StatementFormat.CSV_4COL, (R.DATE, R.DESCRIPTION, R.AMOUNT, R.TYPE)),
    CsvLayout("account", StatementFormat.CSV_4COL, (R.ACCOUNT, R.DATE, R.DESCRIPTION, R.AMOUNT)),
    CsvLayout("posted", StatementFormat.CSV_4COL, (R.DATE, R.POSTED_DATE, R.DESCRIPTION, R.AMOUNT)),
    CsvLayout("simple", StatementFormat.CSV_3COL, (R.DATE, R.DESCRIPTION, R.AMOUNT)),
)

# Files without a header row are read by position.
POSITIONAL_LAYOUTS: dict[int, CsvLayout] = {
    3: CsvLayout("headerless-3col", StatementFormat.CSV_3COL, (R.DATE, R.DESCRIPTION, R.AMOUNT)),
    4: CsvLayout("headerless-4col", StatementFormat.CSV_4COL, (R.DATE, R.DESCRIPTION, R.DEBIT, R.CREDIT)),
    5: CsvLayout("headerless-5col", StatementFormat.CSV_5COL, (R.DATE, R.DESCRIPTION, R.DEBIT, R.CREDIT, R.ACCOUNT)),
}
del R


def _clean_header(header: str) -> str:
    return " ".join(header.replace("_", " ").lower().split())


def map_header_roles(headers: list[str]) -> dict[ColumnRole, int]:
    """Assign a role to each recognised header cell, keeping the first column found for each role."""
    columns: dict[ColumnRole, int] = {}
    cleaned = [_clean_header(header) for header in headers]
    # Exact matches first so that e.g. "Debit" does not lose to a later "Debit Amount".
    for exact in (True, False):
        for index, header in enumerate(cleaned):
            if index in columns.values():
                continue
            for role, synonyms in ROLE_SYNONYMS:
                if role in columns:
                    continue
                hit = header in synonyms if exact else any(synonym in header for synonym in synonyms)
                if hit:
                    columns[role] = index
                    break
    return columns


def detect_layout(roles: set[ColumnRole]) -> CsvLayout | None:
    """Pick the known layout that uses the most of the detected roles."""
    candidates = [layout for layout in KNOWN_LAYOUTS if set(layout.roles) <= roles]
    if not candidates:
        return None
    return max(candidates, key=lambda layout: len(layout.roles))


def sniff_delimiter(text: str) -> str:
    """Guess the field delimiter from the first lines, defaulting to a comma."""
    sample = "\n".join(text.splitlines()[:SNIFF_LINES])
    try:
        return csv.Sniffer().sniff(sample, delimiters=SNIFF_DELIMITERS).delimiter
    except csv.Error:
        return ","


def read_rows(text: str, delimiter: str) -> list[list[str]]:
    """Split the text into non-blank rows, one physical line per row.

    Each line is read on its own, so ``\\r``, ``\\n`` and ``\\r\\n`` endings all work and an unbalanced quote only
    damages its own row.
    """
    rows = []
    for line_number, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        try:
            row = next(csv.reader([line], delimiter=delimiter), [])
        except csv.Error as exc:
            msg = f"Unreadable CSV line {line_number}: {exc}"
            raise StatementImportError(msg) from exc
        if any(cell.strip() for cell in row):
            rows.append(row)
    return rows


def _looks_like_date(cell: str) -> bool:
    try:
        parse_date(cell)
    except ValueError:
        return False
    return True


def _resolve_layout(header: list[str]) -> tuple[CsvLayout, dict[ColumnRole, int], bool] | None:
    """Return (layout, column map, has_header) for the first row of a file."""
    columns = map_header_roles(header)
    layout = detect_layout(set(columns))
    if layout is not None:
        return layout, columns, True
    positional = POSITIONAL_LAYOUTS.get(len(header))
    if positional is not None and header and _looks_like_date(header[0]):
        return positional, {role: index for index, role in enumerate(positional.roles)}, False
    return None


def _optional_amount(text: str) -> Decimal | None:
    try:
        return parse_amount(text)
    except ValueError:
        return None


def _parse_row(row: list[str], columns: dict[ColumnRole, int], width: int, row_number: int) -> ParsedTransaction:
    if len(row) > width and not any(cell.strip() for cell in row[width:]):
        row = row[:width]
    if len(row) != width:
        msg = f"Expected {width} columns, found {len(row)}"
        raise ValueError(msg)

    def cell(role: ColumnRole) -> str:
        return row[columns[role]].strip() if role in columns else ""

    txn_date = parse_date(cell(ColumnRole.DATE))
    description = " ".join(cell(ColumnRole.DESCRIPTION).split())
    if not description:
        msg = "Missing description"
        raise ValueError(msg)

    hint = cell(ColumnRole.TYPE) or None
    if ColumnRole.AMOUNT in columns:
        amount = parse_amount(cell(ColumnRole.AMOUNT))
        if amount is None:
            msg = "Missing amount"
            raise ValueError(msg)
    else:
        credit = parse_amount(cell(ColumnRole.CREDIT))
        debit = parse_amount(cell(ColumnRole.DEBIT))
        if credit:
            amount, hint = abs(credit), "credit"
        elif debit:
            amount, hint = -abs(debit), "debit"
        elif credit is not None or debit is not None:
            amount = Decimal(0)
        else:
            msg = "Missing debit and credit amounts"
            raise ValueError(msg)
    txn_type, amount = classify_type(amount, hint)

    posted_date = None
    if cell(ColumnRole.POSTED_DATE):
        try:
            posted_date = parse_date(cell(ColumnRole.POSTED_DATE))
        except ValueError:
            posted_date = None

    return ParsedTransaction(
        date=txn_date,
        amount=amount,
        description=description,
        raw_merchant=description,
        type=txn_type,
        source_row_index=row_number,
        posted_date=posted_date,
        balance=_optional_amount(cell(ColumnRole.BALANCE)),
        account_number=cell(ColumnRole.ACCOUNT) or None,
        category=cell(ColumnRole.CATEGORY) or None,
    )


def parse_csv(text: str) -> ImportResult:
    """Parse a delimiter-separated bank statement into transactions plus per-row errors.

    Raises:
        StatementImportError: the file is empty, has no data rows, or matches no known layout.

    """
    if not text or not text.strip():
        msg = "File is empty"
        raise StatementImportError(msg)
    delimiter = sniff_delimiter(text)
    rows = read_rows(text, delimiter)
    if not rows:
        msg = "File is empty"
        raise StatementImportError(msg)

    header = [cell.strip() for cell in rows[0]]
    resolved = _resolve_layout(header)
    if resolved is None:
        logger.warning(f"No CSV layout matches header: {header}")
        msg = "Unable to detect CSV format. Please ensure the file has headers like: Date, Description, Amount"
        raise StatementImportError(msg)
    layout, columns, has_header = resolved
    data_rows = rows[1:] if has_header else rows
    if not data_rows:
        msg = "CSV file contains a header but no transactions"
        raise StatementImportError(msg)

    width = len(header)
    transactions: list[ParsedTransaction] = []
    errors: list[RowError] = []
    for row_number, row in enumerate(data_rows, start=1):
        try:
            transactions.append(_parse_row(row, columns, width, row_number))
        except ValueError as exc:
            errors.append(RowError(row=row_number, reason=str(exc)))

    logger.info(
        f"Parsed CSV ({layout.format}/{layout.name}, delimiter={delimiter!r}): "
        f"{len(transactions)}/{len(data_rows)} rows valid, {len(errors)} errors"
    )
    return ImportResult(
        success=bool(transactions),
        format=layout.format,
        layout=layout.name,
        delimiter=delimiter,
        total_rows=len(data_rows),
        valid_rows=len(transactions),
        transactions=transactions,
        errors=errors,
    )
