"""OFX/QFX statement importer.

OFX 1.x is SGML where leaf tags are usually left unclosed (``<TRNAMT>-12.50``); OFX 2.x is XML. Both are tokenised
into an ``ElementTree`` at the parse boundary, so downstream code always sees transaction records as a list and never
has to special-case a statement that carries a single ``STMTTRN``.
"""

import html
import re
import xml.etree.ElementTree as ET
from datetime import date
from decimal import Decimal

from finance_intake.core.errors import StatementImportError
from finance_intake.core.models import (
    AccountInfo,
    ImportResult,
    ParsedTransaction,
    RowError,
    StatementBalance,
    StatementFormat,
    TransactionType,
)
from finance_intake.core.utils import get_logger

from .fields import hint_type

logger = get_logger("finance-intake.importer.ofx")

TOKEN_PATTERN = re.compile(r"<(/?)([A-Za-z0-9_.]+)>([^<]*)")
OFX_DATE_PATTERN = re.compile(
    r"^(?P<year>\d{4})(?P<month>\d{2})(?P<day>\d{2})"
    r"(?:\d{2}(?:\d{2}(?:\d{2})?)?)?"
    r"(?:\.\d{1,6})?"
    r"(?:\s*\[[^\]]*\])?$"
)
OFX_AMOUNT_PATTERN = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)")
UNKNOWN_MERCHANT = "Unknown Merchant"
UNKNOWN_TRANSACTION = "Unknown Transaction"


def build_tree(text: str) -> ET.Element:
    """Tokenise an OFX document (SGML or XML) into an element tree rooted at ``<OFX>``."""
    start = text.upper().find("<OFX>")
    if start == -1:
        msg = "Invalid OFX file: <OFX> envelope not found"
        raise StatementImportError(msg)

    document = ET.Element("DOCUMENT")
    stack = [document]
    for closing, raw_tag, raw_value in TOKEN_PATTERN.findall(text[start:]):
        tag = raw_tag.upper()
        if closing:
            # Closing tags for leaves (XML style) are not on the stack and are ignored.
            if any(element.tag == tag for element in stack[1:]):
                while stack[-1].tag != tag:
                    stack.pop()
                stack.pop()
            continue
        element = ET.SubElement(stack[-1], tag)
        value = html.unescape(raw_value).strip()
        if value:
            element.text = value
        else:
            stack.append(element)

    root = document.find("OFX")
    if root is None:
        msg = "Invalid OFX file: <OFX> envelope not found"
        raise StatementImportError(msg)
    return root


def parse_ofx_date(text: str | None) -> date:
    """Parse an OFX ``YYYYMMDD[HHMMSS[.XXX]][TZ]`` timestamp into its calendar date."""
    cleaned = (text or "").strip()
    if not cleaned:
        msg = "Missing date"
        raise ValueError(msg)
    match = OFX_DATE_PATTERN.match(cleaned)
    if not match:
        msg = f"Invalid OFX date: {cleaned!r}"
        raise ValueError(msg)
    try:
        return date(int(match["year"]), int(match["month"]), int(match["day"]))
    except ValueError as exc:
        msg = f"Invalid OFX date: {cleaned!r}"
        raise ValueError(msg) from exc


def parse_ofx_amount(text: str | None) -> Decimal:
    """Parse a sign-significant OFX amount; a comma decimal separator is accepted."""
    cleaned = (text or "").strip().replace(" ", "")
    if not cleaned:
        msg = "Missing amount"
        raise ValueError(msg)
    if "," in cleaned and "." not in cleaned:
        cleaned = cleaned.replace(",", ".")
    if not OFX_AMOUNT_PATTERN.fullmatch(cleaned):
        msg = f"Invalid amount: {text.strip()!r}"
        raise ValueError(msg)
    return Decimal(cleaned)


def merchant_text(name: str | None, memo: str | None) -> str:
    """Combine NAME (often truncated to 32 chars) and MEMO into the fullest merchant string."""
    name = (name or "").strip()
    memo = (memo or "").strip()
    if name and memo and name != memo:
        if memo.lower().startswith(name.lower()):
            merged = memo
        elif name.lower().startswith(memo.lower()):
            merged = name
        else:
            merged = f"{name} {memo}"
    else:
        merged = memo or name
    return " ".join(merged.split()) or UNKNOWN_MERCHANT


def _text(element: ET.Element | None, path: str) -> str | None:
    if element is None:
        return None
    found = element.find(f".//{path}")
    if found is None or found.text is None:
        return None
    return found.text.strip()


def _find_statement(root: ET.Element) -> ET.Element:
    for path in (".//STMTRS", ".//CCSTMTRS"):
        statement = root.find(path)
        if statement is not None:
            return statement
    msg = "No statement found in OFX file (STMTRS/CCSTMTRS missing)"
    raise StatementImportError(msg)


def _account_info(statement: ET.Element) -> AccountInfo | None:
    account = statement.find(".//BANKACCTFROM")
    if account is None:
        account = statement.find(".//CCACCTFROM")
    if account is None:
        return None
    return AccountInfo(
        bank_id=_text(account, "BANKID"),
        account_id=_text(account, "ACCTID"),
        account_type=_text(account, "ACCTTYPE") or ("CREDITCARD" if account.tag == "CCACCTFROM" else None),
    )


def _balance(statement: ET.Element) -> StatementBalance | None:
    ledger = statement.find(".//LEDGERBAL")
    if ledger is None:
        return None
    try:
        amount = parse_ofx_amount(_text(ledger, "BALAMT"))
    except ValueError:
        logger.warning("Ignoring unreadable LEDGERBAL amount")
        return None
    try:
        as_of = parse_ofx_date(_text(ledger, "DTASOF"))
    except ValueError:
        as_of = None
    return StatementBalance(amount=amount, as_of=as_of)


def _parse_record(record: ET.Element, row_number: int, account_id: str | None) -> ParsedTransaction:
    posted = parse_ofx_date(_text(record, "DTPOSTED"))
    user_date = _text(record, "DTUSER")
    txn_date = posted
    if user_date:
        try:
            txn_date = parse_ofx_date(user_date)
        except ValueError:
            txn_date = posted
    amount = parse_ofx_amount(_text(record, "TRNAMT"))
    if amount < 0:
        txn_type = TransactionType.DEBIT
    elif amount > 0:
        txn_type = TransactionType.CREDIT
    else:
        txn_type = hint_type(_text(record, "TRNTYPE")) or TransactionType.CREDIT
    name = _text(record, "NAME")
    memo = _text(record, "MEMO")
    return ParsedTransaction(
        date=txn_date,
        amount=amount,
        description=" ".join((memo or name or UNKNOWN_TRANSACTION).split()),
        raw_merchant=merchant_text(name, memo),
        type=txn_type,
        source_row_index=row_number,
        posted_date=posted,
        account_number=account_id,
        fitid=_text(record, "FITID"),
    )


def parse_ofx(text: str) -> ImportResult:
    """Parse an OFX/QFX bank or credit-card statement.

    Raises:
        StatementImportError: the text is empty, lacks the ``<OFX>`` envelope, or has no statement block.

    """
    if not text or not text.strip():
        msg = "File is empty"
        raise StatementImportError(msg)
    root = build_tree(text)
    statement = _find_statement(root)
    account_info = _account_info(statement)
    balance = _balance(statement)
    account_id = account_info.account_id if account_info else None

    warnings: list[str] = []
    transaction_list = statement.find(".//BANKTRANLIST")
    records = list(transaction_list.iter("STMTTRN")) if transaction_list is not None else []
    if transaction_list is None:
        warnings.append("No transaction list found in OFX file (BANKTRANLIST missing)")

    transactions: list[ParsedTransaction] = []
    errors: list[RowError] = []
    for row_number, record in enumerate(records, start=1):
        try:
            transactions.append(_parse_record(record, row_number, account_id))
        except ValueError as exc:
            fitid = _text(record, "FITID")
            reason = f"{exc} (FITID {fitid})" if fitid else str(exc)
            errors.append(RowError(row=row_number, reason=reason))

    logger.info(f"Parsed OFX statement: {len(transactions)}/{len(records)} transactions valid, {len(errors)} errors")
    return ImportResult(
        success=bool(transactions),
        format=StatementFormat.OFX,
        total_rows=len(records),
        valid_rows=len(transactions),
        transactions=transactions,
        errors=errors,
        warnings=warnings,
        account_info=account_info,
        balance=balance,
    )
