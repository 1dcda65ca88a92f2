"""
Shared fixtures.

Everything runs against InMemoryStorage; no files are written except by
the JSON storage tests, which use tmp_path.
"""

from datetime import date
from decimal import Decimal
from typing import Optional

import pytest

from statement_ledger.audit import AuditLogger
from statement_ledger.ledger import Ledger
from statement_ledger.models.ledger import BankAccount
from statement_ledger.models.statement import AccountKind, RawTransaction, hash_account
from statement_ledger.orchestrator import CategorizationFlow, StatementImportFlow
from statement_ledger.services.storage import InMemoryStorage


# =============================================================================
# STATEMENT BUILDERS
# =============================================================================

def tag_soup_statement(
    account_number: str = "123456789",
    bank_id: str = "021000021",
    account_type: str = "CHECKING",
    transactions: list[tuple[str, str, str, str]] = (),
    currency: str = "USD",
    start: str = "20240101",
    end: str = "20240131",
    balance: str = "1000.00",
) -> str:
    """OFX 1.x text. Transactions are (fitid, date, amount, name)."""
    body = "".join(
        "<STMTTRN>\n"
        f"<TRNTYPE>{'CREDIT' if not amount.startswith('-') else 'DEBIT'}\n"
        f"<DTPOSTED>{posted}120000[-5:EST]\n"
        f"<TRNAMT>{amount}\n"
        f"<FITID>{fitid}\n"
        f"<NAME>{name}\n"
        "</STMTTRN>\n"
        for fitid, posted, amount, name in transactions
    )
    return (
        "OFXHEADER:100\n"
        "DATA:OFXSGML\n"
        "VERSION:102\n"
        "CHARSET:1252\n"
        "\n"
        "<OFX>\n"
        "<BANKMSGSRSV1>\n"
        "<STMTTRNRS>\n"
        "<STMTRS>\n"
        f"<CURDEF>{currency}\n"
        "<BANKACCTFROM>\n"
        f"<BANKID>{bank_id}\n"
        f"<ACCTID>{account_number}\n"
        f"<ACCTTYPE>{account_type}\n"
        "</BANKACCTFROM>\n"
        "<BANKTRANLIST>\n"
        f"<DTSTART>{start}\n"
        f"<DTEND>{end}\n"
        f"{body}"
        "</BANKTRANLIST>\n"
        "<LEDGERBAL>\n"
        f"<BALAMT>{balance}\n"
        f"<DTASOF>{end}\n"
        "</LEDGERBAL>\n"
        "</STMTRS>\n"
        "</STMTTRNRS>\n"
        "</BANKMSGSRSV1>\n"
        "</OFX>\n"
    )


def well_formed_card_statement(
    account_number: str = "4111111111111111",
    transactions: list[tuple[str, str, str, str]] = (),
    currency: str = "USD",
    balance: str = "-250.00",
) -> str:
    """OFX 2.x credit card statement. Transactions are (fitid, date, amount, name)."""
    body = "".join(
        "<STMTTRN>"
        "<TRNTYPE>DEBIT</TRNTYPE>"
        f"<DTPOSTED>{posted}</DTPOSTED>"
        f"<TRNAMT>{amount}</TRNAMT>"
        f"<FITID>{fitid}</FITID>"
        f"<NAME>{name}</NAME>"
        "</STMTTRN>\n"
        for fitid, posted, amount, name in transactions
    )
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        '<?OFX OFXHEADER="200" VERSION="220"?>\n'
        "<OFX><CREDITCARDMSGSRSV1><CCSTMTTRNRS><CCSTMTRS>"
        f"<CURDEF>{currency}</CURDEF>"
        f"<CCACCTFROM><ACCTID>{account_number}</ACCTID></CCACCTFROM>\n"
        "<BANKTRANLIST>"
        "<DTSTART>20240101</DTSTART><DTEND>20240131</DTEND>\n"
        f"{body}"
        "</BANKTRANLIST>"
        f"<LEDGERBAL><BALAMT>{balance}</BALAMT><DTASOF>20240131</DTASOF></LEDGERBAL>"
        "</CCSTMTRS></CCSTMTTRNRS></CREDITCARDMSGSRSV1></OFX>\n"
    )


def raw_transaction(
    name: str = "COFFEE SHOP",
    amount: str = "-4.50",
    fitid: str = "T1",
    posted: date = date(2024, 1, 15),
    memo: Optional[str] = None,
) -> RawTransaction:
    return RawTransaction(
        external_id=fitid,
        amount=Decimal(amount),
        posted_date=posted,
        payee_name=name,
        memo=memo,
    )


@pytest.fixture
def checking_ofx() -> str:
    return tag_soup_statement(transactions=[
        ("C1", "20240105", "2500.00", "ACME PAYROLL"),
        ("C2", "20240110", "-4.50", "COFFEE SHOP #12"),
        ("C3", "20240112", "-1200.00", "RENT PAYMENT"),
    ])


@pytest.fixture
def card_ofx() -> str:
    return well_formed_card_statement(transactions=[
        ("V1", "20240108", "45.20", "GROCERY MART"),
        ("V2", "20240120", "-300.00", "PAYMENT THANK YOU"),
    ])


# =============================================================================
# SERVICES
# =============================================================================

@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def audit_logger(storage) -> AuditLogger:
    return AuditLogger(storage)


@pytest.fixture
def ledger(storage, audit_logger) -> Ledger:
    return Ledger(
        accounts=storage,
        journal=storage,
        transactions=storage,
        rules=storage,
        audit_logger=audit_logger,
    )


@pytest.fixture
async def seeded_ledger(ledger) -> Ledger:
    await ledger.chart.seed_defaults()
    return ledger


@pytest.fixture
async def checking_account(storage, seeded_ledger) -> BankAccount:
    """A stored checking account with its ledger account under Cash & Bank."""
    bank = BankAccount(
        name="Checking 6789",
        bank_id="021000021",
        masked_account_number="****6789",
        account_hash=hash_account("021000021", "123456789"),
        account_kind=AccountKind.CHECKING,
    )
    chart_account = await seeded_ledger.chart.ensure_bank_chart_account(bank)
    bank.chart_account_ref = chart_account.id
    return await storage.save_bank_account(bank)


@pytest.fixture
async def card_account(storage, seeded_ledger) -> BankAccount:
    """A stored credit card with its ledger account under Credit Cards."""
    bank = BankAccount(
        name="Credit Card 1111",
        masked_account_number="****1111",
        account_hash=hash_account("", "4111111111111111"),
        account_kind=AccountKind.CREDIT_CARD,
    )
    chart_account = await seeded_ledger.chart.ensure_bank_chart_account(bank)
    bank.chart_account_ref = chart_account.id
    return await storage.save_bank_account(bank)


@pytest.fixture
def import_flow(storage, seeded_ledger, audit_logger) -> StatementImportFlow:
    return StatementImportFlow(
        accounts=storage,
        transactions=storage,
        rules=storage,
        ledger=seeded_ledger,
        audit_logger=audit_logger,
    )


@pytest.fixture
def categorization_flow(storage, seeded_ledger, audit_logger) -> CategorizationFlow:
    return CategorizationFlow(
        transactions=storage,
        rules=storage,
        ledger=seeded_ledger,
        audit_logger=audit_logger,
    )
