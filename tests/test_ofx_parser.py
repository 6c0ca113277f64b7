"""Tests for OFX/QFX statement parsing."""

from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from finance_intake.core.errors import StatementImportError
from finance_intake.core.models import StatementFormat, TransactionType
from finance_intake.importers import parse_ofx
from finance_intake.importers.ofx_parser import merchant_text, parse_ofx_date


def test_single_record_statement(fixtures_dir: Path) -> None:
    """A statement with one STMTTRN yields a one-element transaction list plus account and balance."""
    result = parse_ofx((fixtures_dir / "statement_single.ofx").read_text())
    if result.format != StatementFormat.OFX or result.total_rows != 1 or result.valid_rows != 1:
        msg = f"Unexpected summary: {result.format} {result.total_rows}/{result.valid_rows}"
        raise AssertionError(msg)
    txn = result.transactions[0]
    expected = {
        "date": date(2024, 1, 15),
        "amount": Decimal("-4.50"),
        "type": TransactionType.DEBIT,
        "raw_merchant": "SQ *JOE'S COFFEE #221 TORONTO ON",
        "fitid": "2024011501",
        "account_number": "123456789",
    }
    actual = {key: getattr(txn, key) for key in expected}
    if actual != expected:
        msg = f"Expected {expected}, got {actual}"
        raise AssertionError(msg)
    if result.account_info is None or result.account_info.bank_id != "001":
        msg = f"Unexpected account info: {result.account_info}"
        raise AssertionError(msg)
    if result.balance is None or result.balance.amount != Decimal("1234.56"):
        msg = f"Unexpected balance: {result.balance}"
        raise AssertionError(msg)


def test_single_and_multi_record_statements_have_same_shape(fixtures_dir: Path) -> None:
    """Single- and multi-record statements produce identically shaped transactions."""
    single = parse_ofx((fixtures_dir / "statement_single.ofx").read_text())
    multi = parse_ofx((fixtures_dir / "statement_multi.ofx").read_text())
    if not isinstance(single.transactions, list) or not isinstance(multi.transactions, list):
        msg = "Transactions must always be a list"
        raise AssertionError(msg)
    shapes = {tuple(sorted(txn.model_dump())) for txn in single.transactions + multi.transactions}
    if len(shapes) != 1:
        msg = f"Expected one transaction shape, got {shapes}"
        raise AssertionError(msg)


def test_multi_record_statement_isolates_bad_records(fixtures_dir: Path) -> None:
    """A bad TRNAMT becomes a row error naming the FITID; the other records survive."""
    result = parse_ofx((fixtures_dir / "statement_multi.ofx").read_text())
    if (result.total_rows, result.valid_rows) != (4, 3):
        msg = f"Expected 3 of 4 valid records, got {result.valid_rows} of {result.total_rows}"
        raise AssertionError(msg)
    if len(result.errors) != 1 or result.errors[0].row != 3 or "FITID 3" not in result.errors[0].reason:
        msg = f"Unexpected errors: {result.errors}"
        raise AssertionError(msg)


def test_record_dates_amounts_and_types(fixtures_dir: Path) -> None:
    """DTUSER wins over DTPOSTED, comma decimals parse, and TRNTYPE settles zero amounts."""
    result = parse_ofx((fixtures_dir / "statement_multi.ofx").read_text())
    payroll = next(txn for txn in result.transactions if txn.fitid == "2")
    if (payroll.date, payroll.posted_date) != (date(2024, 1, 15), date(2024, 1, 16)):
        msg = f"Unexpected payroll dates: {payroll.date} / {payroll.posted_date}"
        raise AssertionError(msg)
    if (payroll.type, payroll.amount) != (TransactionType.CREDIT, Decimal("2500.00")):
        msg = f"Unexpected payroll amount: {payroll.type} {payroll.amount}"
        raise AssertionError(msg)
    fee = next(txn for txn in result.transactions if txn.fitid == "4")
    if (fee.type, fee.amount) != (TransactionType.DEBIT, Decimal("0.00")):
        msg = f"Expected a zero-amount FEE to be a debit, got {fee.type} {fee.amount}"
        raise AssertionError(msg)


def test_xml_credit_card_statement(fixtures_dir: Path) -> None:
    """OFX 2.x XML with a credit-card statement block parses."""
    result = parse_ofx((fixtures_dir / "credit_card.qfx").read_text())
    if result.valid_rows != 1 or result.transactions[0].raw_merchant != "AMZN Mktp US":
        msg = f"Unexpected transactions: {result.transactions}"
        raise AssertionError(msg)
    if result.account_info is None or result.account_info.account_type != "CREDITCARD":
        msg = f"Unexpected account info: {result.account_info}"
        raise AssertionError(msg)
    if result.balance is None or result.balance.as_of != date(2024, 2, 29):
        msg = f"Unexpected balance: {result.balance}"
        raise AssertionError(msg)


def test_missing_transaction_list_is_a_warning() -> None:
    """A statement without BANKTRANLIST parses with a warning and no rows."""
    text = "<OFX><BANKMSGSRSV1><STMTTRNRS><STMTRS><CURDEF>CAD</STMTRS></STMTTRNRS></BANKMSGSRSV1></OFX>"
    result = parse_ofx(text)
    if result.total_rows != 0 or result.success or not result.warnings:
        msg = f"Expected an empty result with a warning, got {result}"
        raise AssertionError(msg)


@pytest.mark.parametrize(
    ("text", "message"),
    [
        ("", "File is empty"),
        ("Date,Description,Amount\n2024-01-01,Coffee,-1.00", "envelope not found"),
        ("<OFX><SIGNONMSGSRSV1><SONRS></SONRS></SIGNONMSGSRSV1></OFX>", "No statement found"),
    ],
)
def test_structural_failures(text: str, message: str) -> None:
    """Missing envelope or statement block fails the whole parse."""
    with pytest.raises(StatementImportError, match=message):
        parse_ofx(text)


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("20240115", date(2024, 1, 15)),
        ("20240115120000", date(2024, 1, 15)),
        ("20240115120000.123", date(2024, 1, 15)),
        ("20240115120000.123[-5:EST]", date(2024, 1, 15)),
    ],
)
def test_parse_ofx_date(text: str, expected: date) -> None:
    """OFX timestamps keep only their calendar date."""
    if parse_ofx_date(text) != expected:
        msg = f"Expected {expected} for {text!r}"
        raise AssertionError(msg)


def test_parse_ofx_date_rejects_bad_values() -> None:
    """Impossible or malformed dates raise ValueError."""
    for text in ("2024-01-15", "20241345", ""):
        with pytest.raises(ValueError, match="date"):
            parse_ofx_date(text)


def test_merchant_text_combines_name_and_memo() -> None:
    """NAME and MEMO are merged without duplication."""
    cases = [
        (("SQ *JOE'S COFFEE", "SQ *JOE'S COFFEE #221 TORONTO ON"), "SQ *JOE'S COFFEE #221 TORONTO ON"),
        (("NETFLIX.COM", "Monthly plan"), "NETFLIX.COM Monthly plan"),
        (("SHELL", None), "SHELL"),
        ((None, None), "Unknown Merchant"),
    ]
    for (name, memo), expected in cases:
        if merchant_text(name, memo) != expected:
            msg = f"merchant_text({name!r}, {memo!r}) != {expected!r}"
            raise AssertionError(msg)
