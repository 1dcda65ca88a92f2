"""
OFX Statement Parser

Turns the text of an OFX export into a ParsedStatement. Both OFX 1.x
(SGML tag soup, no closing tags) and OFX 2.x (XML) are supported; the
dialect is sniffed once per file and decides which FieldExtractor reads
every field.

This parser is TOLERANT by design of the input, not of the output:
- A transaction missing its id, amount or posting date is dropped and
  counted, never allowed to fail the whole file.
- Missing optional data (balances, date range, currency) is simply absent.
- The result is always a well-formed ParsedStatement. Whether the file is
  good enough to import is decided by the validator, so a partially broken
  file can still be previewed.

StatementParseError is raised only when the input is not an OFX document.
"""

import html
import re
from datetime import date
from typing import Optional

import structlog

from statement_ledger.models.money import parse_decimal
from statement_ledger.models.statement import (
    AccountIdentity,
    AccountKind,
    BalanceSnapshot,
    DateRange,
    ParsedStatement,
    RawTransaction,
    TransactionType,
)
from statement_ledger.parsing.extractors import FieldExtractor, extractor_for

logger = structlog.get_logger(__name__)


class StatementParseError(Exception):
    """The input is not a statement this parser understands."""
    pass


_ACCOUNT_KINDS = {
    "CHECKING": AccountKind.CHECKING,
    "SAVINGS": AccountKind.SAVINGS,
    "CREDITLINE": AccountKind.CREDIT_LINE,
    "MONEYMRKT": AccountKind.MONEY_MARKET,
    "CREDITCARD": AccountKind.CREDIT_CARD,
}

_TRANSACTION_BLOCK = re.compile(
    r"<STMTTRN>(.*?)(?=<STMTTRN>|</BANKTRANLIST>|\Z)",
    re.IGNORECASE | re.DOTALL,
)

_OFX_MARKER = re.compile(r"<OFX>|OFXHEADER", re.IGNORECASE)

_DATE_PREFIX = re.compile(r"^(\d{4})(\d{2})(\d{2})")

DEFAULT_CURRENCY = "USD"


def decode_statement(data: bytes) -> str:
    """
    Decode raw statement bytes.

    UTF-8 first (OFX 2.x and most modern exports), then Windows-1252, which
    is what OFX 1.x headers declare as CHARSET:1252.
    """
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError:
        return data.decode("cp1252", errors="replace")


def parse_ofx_date(value: Optional[str]) -> Optional[date]:
    """
    Parse an OFX date to a calendar date.

    Accepts YYYYMMDD, YYYYMMDDHHMMSS, YYYYMMDDHHMMSS.XXX and any of those
    followed by a timezone suffix such as [0:GMT] or [-5:EST]. The suffix is
    stripped, not applied: banking dates are local calendar dates.
    """
    if not value:
        return None
    cleaned = value.split("[", 1)[0].strip()
    match = _DATE_PREFIX.match(cleaned)
    if match is None:
        return None
    year, month, day = (int(part) for part in match.groups())
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _text(extractor: FieldExtractor, content: str, tag: str) -> Optional[str]:
    value = extractor.value(content, tag)
    return html.unescape(value) if value else None


def _parse_account(
    content: str,
    extractor: FieldExtractor,
    currency: str,
) -> tuple[AccountIdentity, bool]:
    """
    Locate the account block: bank account first, then credit card.

    Returns the identity and whether this is a credit card statement.
    """
    bank_block = extractor.block(content, "BANKACCTFROM")
    if bank_block is not None and extractor.value(bank_block, "ACCTID"):
        kind_raw = (extractor.value(bank_block, "ACCTTYPE") or "").upper()
        account = AccountIdentity(
            bank_id=extractor.value(bank_block, "BANKID") or "",
            account_number=extractor.value(bank_block, "ACCTID") or "",
            account_kind=_ACCOUNT_KINDS.get(kind_raw, AccountKind.CHECKING),
            currency_code=currency,
        )
        return account, False

    card_block = extractor.block(content, "CCACCTFROM")
    if card_block is not None:
        account = AccountIdentity(
            bank_id=extractor.value(card_block, "BANKID") or "",
            account_number=extractor.value(card_block, "ACCTID") or "",
            account_kind=AccountKind.CREDIT_CARD,
            currency_code=currency,
        )
        return account, True

    # Neither block carries an account id; keep whatever the bank block had
    fallback = bank_block or ""
    return AccountIdentity(
        bank_id=extractor.value(fallback, "BANKID") or "",
        account_number="",
        currency_code=currency,
    ), False


def _parse_balance(
    content: str,
    extractor: FieldExtractor,
    tag: str,
    errors: list[str],
) -> Optional[BalanceSnapshot]:
    block = extractor.block(content, tag)
    if block is None:
        return None
    raw_amount = extractor.value(block, "BALAMT")
    if raw_amount is None:
        return None
    amount = parse_decimal(raw_amount)
    if amount is None:
        errors.append(f"{tag}: invalid balance amount '{raw_amount}'")
        return None
    return BalanceSnapshot(
        amount=amount,
        as_of=parse_ofx_date(extractor.value(block, "DTASOF")),
    )


def _parse_transaction(
    block: str,
    extractor: FieldExtractor,
    index: int,
    errors: list[str],
) -> Optional[RawTransaction]:
    """Parse one STMTTRN block, or record why it was dropped."""
    external_id = _text(extractor, block, "FITID")
    raw_amount = extractor.value(block, "TRNAMT")
    raw_date = extractor.value(block, "DTPOSTED")

    missing = [
        name
        for name, value in (
            ("FITID", external_id),
            ("TRNAMT", raw_amount),
            ("DTPOSTED", raw_date),
        )
        if not value
    ]
    if missing:
        errors.append(f"Transaction #{index + 1}: missing {', '.join(missing)}")
        return None

    amount = parse_decimal(raw_amount)
    if amount is None:
        errors.append(f"Transaction #{index + 1} ({external_id}): invalid amount '{raw_amount}'")
        return None

    posted = parse_ofx_date(raw_date)
    if posted is None:
        errors.append(f"Transaction #{index + 1} ({external_id}): invalid date '{raw_date}'")
        return None

    return RawTransaction(
        external_id=external_id,
        type=TransactionType.normalize(extractor.value(block, "TRNTYPE")),
        amount=amount,
        posted_date=posted,
        payee_name=_text(extractor, block, "NAME") or "Unknown",
        memo=_text(extractor, block, "MEMO"),
        check_number=extractor.value(block, "CHECKNUM"),
        reference_number=extractor.value(block, "REFNUM"),
    )


def _resolve_date_range(
    tran_list: str,
    extractor: FieldExtractor,
    transactions: list[RawTransaction],
    errors: list[str],
) -> Optional[DateRange]:
    """
    Declared DTSTART/DTEND win over the span of the listed transactions;
    a statement may declare a wider period than it has activity for.
    """
    declared_start = parse_ofx_date(extractor.value(tran_list, "DTSTART"))
    declared_end = parse_ofx_date(extractor.value(tran_list, "DTEND"))

    posted = [tx.posted_date for tx in transactions]
    start = declared_start or (min(posted) if posted else None)
    end = declared_end or (max(posted) if posted else None)

    if start is None or end is None:
        return None
    if end < start:
        errors.append(f"Statement period ends ({end}) before it starts ({start})")
        return None
    return DateRange(start=start, end=end)


def parse_statement(
    content: str,
    default_currency: str = DEFAULT_CURRENCY,
) -> ParsedStatement:
    """
    Parse OFX statement text.

    Args:
        content: Full text of the statement file
        default_currency: Currency to assume when CURDEF is absent

    Returns:
        ParsedStatement, possibly with errors and dropped transactions

    Raises:
        StatementParseError: If the text is not an OFX document at all
    """
    if not content or not content.strip():
        raise StatementParseError("Statement file is empty")
    if _OFX_MARKER.search(content) is None:
        raise StatementParseError("Not an OFX statement: no <OFX> element or OFX header found")

    extractor = extractor_for(content)
    errors: list[str] = []

    statement_block = (
        extractor.block(content, "STMTRS")
        or extractor.block(content, "CCSTMTRS")
        or content
    )
    currency = (extractor.value(statement_block, "CURDEF") or default_currency).upper()

    account, is_credit_card = _parse_account(content, extractor, currency)
    if not account.account_number:
        errors.append("Missing account id (ACCTID)")

    balance = _parse_balance(content, extractor, "LEDGERBAL", errors)
    available = _parse_balance(content, extractor, "AVAILBAL", errors)

    tran_list = extractor.block(content, "BANKTRANLIST") or content
    transactions: list[RawTransaction] = []
    dropped = 0
    for index, match in enumerate(_TRANSACTION_BLOCK.finditer(tran_list)):
        tx = _parse_transaction(match.group(1), extractor, index, errors)
        if tx is None:
            dropped += 1
            continue
        transactions.append(tx)

    date_range = _resolve_date_range(tran_list, extractor, transactions, errors)

    if dropped:
        logger.info(
            "statement_transactions_dropped",
            dialect=extractor.dialect.value,
            kept=len(transactions),
            dropped=dropped,
        )

    return ParsedStatement(
        dialect=extractor.dialect,
        account=account,
        is_credit_card_statement=is_credit_card,
        balance=balance,
        available_balance=available,
        date_range=date_range,
        transactions=transactions,
        dropped_transactions=dropped,
        errors=errors,
    )
