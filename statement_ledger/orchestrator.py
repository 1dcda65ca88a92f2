"""
Main Orchestrator for Statement Ledger

This module ties together all the components and defines the
end-to-end flows for:
1. Statement Import (upload → validate → classify → review → commit)
2. Categorization maintenance (recategorize, re-apply rules)

DESIGN DECISION: The orchestrator enforces the boundaries:
- Nothing is persisted before commit; everything up to review is a proposal
- Re-importing a statement is a no-op (dedup on bank account + FITID)
- A failing transaction is reported, never allowed to undo the ones
  already written
- Every step is audited

Import state machine:

    uploaded -> (validated | rejected) -> classified -> reviewed -> committed

Committing a committed session again is allowed: everything already
written is skipped as a duplicate, so this retries just the failures.
"""

import asyncio
from datetime import datetime
from typing import Iterable, Optional, Sequence, Union
from uuid import UUID

import structlog

from statement_ledger.audit import AuditLogger
from statement_ledger.config import get_settings
from statement_ledger.ledger import EntryNotFoundError, Ledger, LedgerError
from statement_ledger.models.imports import (
    CommitResult,
    FileCommitResult,
    ImportSession,
    ImportState,
    ProposedTransaction,
    ReviewEdit,
    StatementImport,
    TransactionFailure,
)
from statement_ledger.models.ledger import BankAccount, ChartAccount, JournalEntry, Transaction
from statement_ledger.models.rules import (
    CategorizationRule,
    CategoryState,
    CategoryStateKind,
    Classification,
    ClassificationOutcome,
)
from statement_ledger.models.statement import ParsedStatement, RawTransaction
from statement_ledger.parsing import StatementParseError, decode_statement, parse_statement
from statement_ledger.rules import category_state_for, compile_rules
from statement_ledger.services.storage import (
    AccountStorageInterface,
    InMemoryStorage,
    RuleStorageInterface,
    StorageError,
    TransactionStorageInterface,
    create_storage,
)
from statement_ledger.transfers import detect_transfers, summarize_transfers
from statement_ledger.validation import StatementValidator

logger = structlog.get_logger(__name__)

StatementFile = tuple[str, Union[str, bytes]]


class ImportFlowError(Exception):
    """Base exception for import flow operations."""
    pass


class InvalidStateTransitionError(ImportFlowError):
    """The session is not in a state that allows the requested step."""

    def __init__(self, action: str, state: ImportState, allowed: Iterable[ImportState]):
        self.action = action
        self.state = state
        allowed_names = ", ".join(s.value for s in allowed)
        super().__init__(f"Cannot {action} a session in state '{state.value}' (needs {allowed_names})")


def _require_state(session: ImportSession, action: str, *allowed: ImportState) -> None:
    if session.state not in allowed:
        raise InvalidStateTransitionError(action, session.state, allowed)


def _bank_account_name(statement: ParsedStatement) -> str:
    kind = statement.account.account_kind.value.replace("_", " ").title()
    return f"{kind} {statement.account.masked_number}"


def _as_raw(transaction: Transaction) -> RawTransaction:
    return RawTransaction(
        external_id=transaction.external_id,
        type=transaction.type,
        amount=transaction.amount,
        posted_date=transaction.posted_date,
        payee_name=transaction.payee_name,
        memo=transaction.memo,
        check_number=transaction.check_number,
        reference_number=transaction.reference_number,
    )


class StatementImportFlow:
    """
    Orchestrates the statement import flow.

    Flow:
    1. Upload → Decode and parse each file
    2. Validate → File-level validation; bad files are rejected alone
    3. Classify → Rule engine, then transfer detection across files
    4. Review → Edits, new rules and new accounts (PAUSE - nothing saved yet)
    5. Commit → Persist transactions and journal entries

    Files are independent until transfer detection joins them.
    """

    def __init__(
        self,
        accounts: AccountStorageInterface,
        transactions: TransactionStorageInterface,
        rules: RuleStorageInterface,
        ledger: Ledger,
        validator: Optional[StatementValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._accounts = accounts
        self._transactions = transactions
        self._rules = rules
        self._ledger = ledger
        self._validator = validator or StatementValidator()
        self._audit_logger = audit_logger or AuditLogger()
        self._settings = get_settings()

    # =========================================================================
    # UPLOAD
    # =========================================================================

    async def upload(
        self,
        files: Sequence[StatementFile],
        session: Optional[ImportSession] = None,
    ) -> ImportSession:
        """
        Start a session from (filename, content) pairs.

        Content may be text or raw bytes. A file that is too large or is
        not an OFX statement is rejected on its own; the rest proceed.
        """
        session = session or ImportSession()
        _require_state(session, "upload to", ImportState.UPLOADED)
        import_settings = self._settings.imports

        for filename, content in files:
            raw = content.encode("utf-8") if isinstance(content, str) else content
            statement_import = StatementImport(filename=filename)
            session.files.append(statement_import)

            await self._audit_logger.log_statement_uploaded(
                file_id=statement_import.file_id,
                filename=filename,
                size=len(raw),
                correlation_id=session.session_id,
            )

            if len(raw) > import_settings.max_file_size_bytes:
                await self._reject(
                    session,
                    statement_import,
                    [f"File is larger than {import_settings.max_file_size_mb} MB"],
                )
                continue

            text = content if isinstance(content, str) else decode_statement(content)
            try:
                statement = parse_statement(text, default_currency=import_settings.default_currency)
            except StatementParseError as e:
                await self._reject(session, statement_import, [str(e)])
                continue

            statement_import.statement = statement
            await self._audit_logger.log_statement_parsed(
                file_id=statement_import.file_id,
                dialect=statement.dialect.value,
                transaction_count=len(statement.transactions),
                dropped_count=statement.dropped_transactions,
                correlation_id=session.session_id,
            )

        return session

    async def _reject(
        self,
        session: ImportSession,
        statement_import: StatementImport,
        reasons: list[str],
    ) -> None:
        statement_import.state = ImportState.REJECTED
        statement_import.errors.extend(reasons)
        await self._audit_logger.log_statement_rejected(
            file_id=statement_import.file_id,
            reasons=reasons,
            correlation_id=session.session_id,
        )

    # =========================================================================
    # VALIDATE
    # =========================================================================

    async def validate(self, session: ImportSession) -> ImportSession:
        """
        File-level validation.

        Files failing validation are rejected; the session is rejected only
        when no file is left to import.
        """
        _require_state(session, "validate", ImportState.UPLOADED)

        for statement_import in session.files:
            if statement_import.state == ImportState.REJECTED:
                continue

            result = self._validator.validate(statement_import.statement)
            statement_import.validation = result
            if not result.is_valid:
                await self._reject(session, statement_import, result.errors)
                continue

            statement_import.state = ImportState.VALIDATED
            existing = await self._accounts.get_bank_account_by_hash(
                statement_import.statement.account_hash
            )
            if existing is not None:
                statement_import.bank_account_ref = existing.id

            await self._audit_logger.log_statement_validated(
                file_id=statement_import.file_id,
                warnings=result.warnings,
                correlation_id=session.session_id,
            )

        session.state = ImportState.VALIDATED if session.importable_files else ImportState.REJECTED
        return session

    # =========================================================================
    # CLASSIFY
    # =========================================================================

    async def classify(
        self,
        session: ImportSession,
        exchange_rates: Optional[dict] = None,
    ) -> ImportSession:
        """
        Propose a classification for every transaction.

        Stored rules run first. Detected transfers then override the rule
        result for both transactions of each pair. Unmatched transactions
        stay uncategorized and are only counted.
        """
        _require_state(session, "classify", ImportState.VALIDATED)

        compiled = compile_rules(await self._rules.list_rules())
        files = session.importable_files

        for statement_import in files:
            statement_import.proposals = [
                ProposedTransaction(
                    raw=tx,
                    classification=compiled.classify(tx, account_ref=statement_import.bank_account_ref),
                )
                for tx in statement_import.statement.transactions
            ]
            statement_import.state = ImportState.CLASSIFIED

        transfers = detect_transfers(
            [f.statement for f in files],
            exchange_rates=exchange_rates,
            settings=self._settings.transfers,
        )
        for transfer in transfers:
            for leg, counter in ((transfer.source, transfer.target), (transfer.target, transfer.source)):
                for proposal in files[leg.statement_index].proposals:
                    if proposal.raw.external_id == leg.transaction.external_id and proposal.counter_account_hash is None:
                        proposal.classification = Classification.transfer(transfer_id=transfer.id)
                        proposal.counter_account_hash = counter.account_hash
                        break
        session.transfers = transfers
        session.state = ImportState.CLASSIFIED

        await self._audit_logger.log_classification_completed(
            matched=session.matched_count,
            unmatched=session.unmatched_count,
            ignored=session.ignored_count,
            correlation_id=session.session_id,
        )
        if transfers:
            await self._audit_logger.log_transfers_detected(
                summary=summarize_transfers(transfers),
                correlation_id=session.session_id,
            )
        return session

    # =========================================================================
    # REVIEW
    # =========================================================================

    async def review(
        self,
        session: ImportSession,
        edits: Sequence[ReviewEdit] = (),
        new_rules: Sequence[CategorizationRule] = (),
        new_accounts: Sequence[ChartAccount] = (),
        reapply_rules: bool = False,
    ) -> ImportSession:
        """
        Apply user (or policy) changes to the proposals.

        New rules without an explicit priority are placed above every
        existing rule. With `reapply_rules`, proposals that were neither
        edited nor matched as detected transfers are classified again with
        the stored rules plus the new ones.

        Nothing is persisted here. Review may be repeated until commit.
        """
        _require_state(session, "review", ImportState.CLASSIFIED, ImportState.REVIEWED)

        session.new_accounts.extend(new_accounts)

        if new_rules:
            stored_rules = await self._rules.list_rules()
            top = max((r.priority for r in stored_rules + session.new_rules), default=0)
            for rule in new_rules:
                if "priority" not in rule.model_fields_set:
                    top += 1
                    rule = rule.model_copy(update={"priority": top})
                session.new_rules.append(rule)

        for edit in edits:
            proposal = session.find_proposal(edit.proposal_id)
            if proposal is None:
                raise ImportFlowError(f"Unknown proposal: {edit.proposal_id}")
            if edit.classification is not None:
                proposal.classification = edit.classification
                proposal.counter_account_hash = None
                proposal.edited = True
            proposal.excluded = edit.exclude

        if reapply_rules:
            compiled = compile_rules(await self._rules.list_rules() + session.new_rules)
            for statement_import in session.importable_files:
                for proposal in statement_import.proposals:
                    if proposal.edited or proposal.classification.transfer_id:
                        continue
                    proposal.classification = compiled.classify(
                        proposal.raw, account_ref=statement_import.bank_account_ref
                    )

        for statement_import in session.importable_files:
            statement_import.state = ImportState.REVIEWED
        session.state = ImportState.REVIEWED

        await self._audit_logger.log_review_applied(
            edit_count=len(edits),
            new_rule_count=len(new_rules),
            new_account_count=len(new_accounts),
            correlation_id=session.session_id,
        )
        return session

    # =========================================================================
    # COMMIT
    # =========================================================================

    async def _persist_review_additions(self, session: ImportSession) -> None:
        """New chart accounts, then new rules. Re-running is a no-op."""
        for account in session.new_accounts:
            if await self._ledger.chart.find(account.id) is not None:
                continue
            try:
                await self._ledger.chart.add_account(account, correlation_id=session.session_id)
            except LedgerError as e:
                raise ImportFlowError(f"Cannot create account {account.code}: {e}") from e

        for rule in session.new_rules:
            if await self._rules.get_rule(rule.id) is not None:
                continue
            saved = await self._rules.save_rule(rule)
            await self._audit_logger.log_rule_created(
                rule_id=saved.id,
                pattern=saved.pattern,
                priority=saved.priority,
                correlation_id=session.session_id,
            )

    async def _resolve_bank_account(
        self,
        statement: ParsedStatement,
        correlation_id: UUID,
    ) -> BankAccount:
        """Stored bank account for a statement, created with its ledger account on first import."""
        async with self._ledger.locks.hold([f"bank-hash:{statement.account_hash}"]):
            bank = await self._accounts.get_bank_account_by_hash(statement.account_hash)
            if bank is None:
                bank = BankAccount(
                    name=_bank_account_name(statement),
                    bank_id=statement.account.bank_id,
                    masked_account_number=statement.account.masked_number,
                    account_hash=statement.account_hash,
                    account_kind=statement.account.account_kind,
                    currency_code=statement.currency_code,
                )
            chart_account = await self._ledger.chart.ensure_bank_chart_account(
                bank, correlation_id=correlation_id
            )
            if bank.chart_account_ref != chart_account.id:
                bank.chart_account_ref = chart_account.id
                bank = await self._accounts.save_bank_account(bank)
            return bank

    async def _commit_transaction(
        self,
        session: ImportSession,
        proposal: ProposedTransaction,
        bank: BankAccount,
        banks_by_hash: dict[str, str],
        file_result: FileCommitResult,
    ) -> None:
        """
        Write one transaction and its journal entry.

        The pair is written under the bank account's lock. If either write
        fails, the transaction and any entry pointing at it are removed
        again, so a failure leaves nothing behind and can simply be retried.
        """
        raw = proposal.raw
        async with self._ledger.locks.hold([f"bank:{bank.id}"]):
            if await self._transactions.find_transaction(bank.id, raw.external_id) is not None:
                file_result.duplicates_skipped += 1
                await self._audit_logger.log_duplicate_skipped(
                    account_ref=bank.id,
                    external_id=raw.external_id,
                    correlation_id=session.session_id,
                )
                return

            counter_ref = banks_by_hash.get(proposal.counter_account_hash or "")
            state = category_state_for(proposal.classification, counter_account_ref=counter_ref)
            transaction = Transaction(
                account_ref=bank.id,
                external_id=raw.external_id,
                type=raw.type,
                amount=raw.amount,
                posted_date=raw.posted_date,
                payee_name=raw.payee_name,
                memo=raw.memo,
                check_number=raw.check_number,
                reference_number=raw.reference_number,
                category_state=state,
                rule_ref=proposal.classification.rule_id,
                import_batch_id=str(session.session_id),
            )
            try:
                saved = await self._transactions.save_transaction(transaction)
                if state.produces_journal_entry and raw.amount != 0:
                    entry = await self._ledger.create_entry_from_transaction(
                        saved, state.ref, bank.id, correlation_id=session.session_id
                    )
                    saved.linked_journal_entry_ref = entry.id
                    saved = await self._transactions.save_transaction(saved)
                    file_result.journal_entries_created += 1
            except (LedgerError, StorageError):
                await self._undo_transaction(transaction.id, session.session_id)
                raise

        file_result.new_transactions += 1
        await self._audit_logger.log_transaction_imported(
            transaction_id=saved.id,
            external_id=raw.external_id,
            category_state=state.kind.value,
            correlation_id=session.session_id,
        )

    async def _undo_transaction(self, transaction_id: str, correlation_id: UUID) -> None:
        """Remove a partly written transaction and any entry that points at it."""
        for entry in await self._ledger.entries_for_transaction(transaction_id):
            await self._ledger.retract_entry(
                entry.id, reason="transaction commit failed", correlation_id=correlation_id,
            )
        await self._transactions.delete_transaction(transaction_id)

    async def commit(
        self,
        session: ImportSession,
        cancel: Optional[asyncio.Event] = None,
    ) -> CommitResult:
        """
        Persist the reviewed session.

        Args:
            session: A reviewed (or previously committed) session
            cancel: Checked between transactions; once set, the remaining
                    transactions are left unprocessed and counted

        Returns:
            CommitResult with per-file counts and per-transaction failures
        """
        _require_state(session, "commit", ImportState.REVIEWED, ImportState.COMMITTED)
        await self._persist_review_additions(session)

        result = CommitResult(
            session_id=session.session_id,
            rejected_files=[f.filename for f in session.rejected_files],
        )

        files = session.importable_files
        banks: dict[str, BankAccount] = {}
        for statement_import in files:
            statement = statement_import.statement
            if statement.account_hash not in banks:
                banks[statement.account_hash] = await self._resolve_bank_account(
                    statement, session.session_id
                )
            statement_import.bank_account_ref = banks[statement.account_hash].id
        banks_by_hash = {account_hash: bank.id for account_hash, bank in banks.items()}

        for statement_import in files:
            bank = banks[statement_import.statement.account_hash]
            file_result = FileCommitResult(
                file_id=statement_import.file_id,
                filename=statement_import.filename,
                bank_account_ref=bank.id,
            )
            result.files.append(file_result)

            for proposal in statement_import.proposals:
                if cancel is not None and cancel.is_set():
                    result.cancelled = True
                    file_result.not_processed += 1
                    continue
                if proposal.excluded:
                    continue
                try:
                    await self._commit_transaction(
                        session, proposal, bank, banks_by_hash, file_result
                    )
                except (LedgerError, StorageError, ValueError) as e:
                    file_result.failures.append(TransactionFailure(
                        file_id=statement_import.file_id,
                        proposal_id=proposal.proposal_id,
                        external_id=proposal.raw.external_id,
                        reason=str(e),
                    ))
                    await self._audit_logger.log_transaction_failed(
                        external_id=proposal.raw.external_id,
                        reason=str(e),
                        correlation_id=session.session_id,
                    )

            if file_result.new_transactions:
                bank.last_import_at = datetime.utcnow()
                banks[bank.account_hash] = await self._accounts.save_bank_account(bank)
            statement_import.state = ImportState.COMMITTED

        if result.cancelled:
            await self._audit_logger.log_import_cancelled(
                remaining=sum(f.not_processed for f in result.files),
                correlation_id=session.session_id,
            )
        session.state = ImportState.COMMITTED

        await self._audit_logger.log_import_committed(
            new_transactions=result.new_transactions,
            duplicates=result.duplicates_skipped,
            failures=len(result.failures),
            correlation_id=session.session_id,
        )
        logger.info(
            "import_committed",
            session_id=str(session.session_id),
            new=result.new_transactions,
            duplicates=result.duplicates_skipped,
            failures=len(result.failures),
            cancelled=result.cancelled,
        )
        return result

    async def import_statements(
        self,
        files: Sequence[StatementFile],
        edits: Sequence[ReviewEdit] = (),
        new_rules: Sequence[CategorizationRule] = (),
        new_accounts: Sequence[ChartAccount] = (),
        exchange_rates: Optional[dict] = None,
    ) -> tuple[ImportSession, CommitResult]:
        """
        Run the whole flow with an automated review.

        Returns the session and the commit result. When every file is
        rejected nothing is committed and the result only lists them.
        """
        session = await self.upload(files)
        session = await self.validate(session)
        if session.state == ImportState.REJECTED:
            return session, CommitResult(
                session_id=session.session_id,
                rejected_files=[f.filename for f in session.rejected_files],
            )
        session = await self.classify(session, exchange_rates=exchange_rates)
        session = await self.review(
            session, edits=edits, new_rules=new_rules, new_accounts=new_accounts
        )
        return session, await self.commit(session)


class CategorizationFlow:
    """
    Changes to the categorization of stored transactions.

    The linked journal entry always follows the category: a new entry is
    posted before the old one is retracted, so a failure leaves the
    transaction and its entry as they were.
    """

    def __init__(
        self,
        transactions: TransactionStorageInterface,
        rules: RuleStorageInterface,
        ledger: Ledger,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._transactions = transactions
        self._rules = rules
        self._ledger = ledger
        self._audit_logger = audit_logger or AuditLogger()

    async def recategorize(
        self,
        transaction_id: str,
        new_state: CategoryState,
        rule_ref: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Set a transaction's category state and regenerate its journal entry.

        Raises:
            EntryNotFoundError: Unknown transaction
            LedgerError: The new entry could not be posted (nothing changed)
            StorageError: A write failed (nothing changed)
        """
        transaction = await self._transactions.get_transaction(transaction_id)
        if transaction is None:
            raise EntryNotFoundError(f"Transaction not found: {transaction_id}")
        if transaction.category_state == new_state:
            return transaction

        original = transaction.model_copy(deep=True)
        old_state = transaction.category_state
        async with self._ledger.locks.hold([f"bank:{transaction.account_ref}"]):
            new_entry: Optional[JournalEntry] = None
            if new_state.produces_journal_entry and transaction.amount != 0:
                new_entry = await self._ledger.create_entry_from_transaction(
                    transaction, new_state.ref, transaction.account_ref,
                    correlation_id=correlation_id,
                )

            transaction.category_state = new_state
            transaction.linked_journal_entry_ref = new_entry.id if new_entry else None
            transaction.rule_ref = rule_ref
            transaction.updated_at = datetime.utcnow()
            try:
                transaction = await self._transactions.save_transaction(transaction)
                if original.linked_journal_entry_ref:
                    await self._ledger.retract_entry(
                        original.linked_journal_entry_ref,
                        reason="transaction recategorized",
                        correlation_id=correlation_id,
                    )
            except (LedgerError, StorageError):
                if new_entry is not None:
                    await self._ledger.retract_entry(
                        new_entry.id,
                        reason="transaction recategorize failed",
                        correlation_id=correlation_id,
                    )
                await self._transactions.save_transaction(original)
                raise

        await self._audit_logger.log_transaction_recategorized(
            transaction_id=transaction.id,
            old_state=old_state.kind.value,
            new_state=new_state.kind.value,
            correlation_id=correlation_id,
        )
        return transaction

    async def apply_rules_to_uncategorized(
        self,
        account_ref: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> dict[str, int]:
        """
        Run the stored rules over uncategorized transactions.

        Returns:
            {"updated": n, "unmatched": n, "failed": n}
        """
        compiled = compile_rules(await self._rules.list_rules())
        counts = {"updated": 0, "unmatched": 0, "failed": 0}

        for transaction in await self._transactions.list_transactions(
            account_ref=account_ref,
            category_kind=CategoryStateKind.UNCATEGORIZED,
        ):
            classification = compiled.classify(_as_raw(transaction), account_ref=transaction.account_ref)
            if classification.outcome == ClassificationOutcome.UNMATCHED:
                counts["unmatched"] += 1
                continue
            try:
                await self.recategorize(
                    transaction.id,
                    category_state_for(classification),
                    rule_ref=classification.rule_id,
                    correlation_id=correlation_id,
                )
            except (LedgerError, StorageError) as e:
                counts["failed"] += 1
                await self._audit_logger.log_error(
                    error_type=type(e).__name__,
                    error_message=str(e),
                    details={"transaction_id": transaction.id},
                    correlation_id=correlation_id,
                )
                continue
            counts["updated"] += 1

        return counts


async def create_app_components(
    storage: Optional[InMemoryStorage] = None,
) -> tuple[StatementImportFlow, CategorizationFlow, Ledger]:
    """
    Factory function to create all application components.

    Args:
        storage: Backend implementing every storage interface. Defaults to
                 the configured backend.

    Returns:
        (import_flow, categorization_flow, ledger)
    """
    storage = storage or create_storage()
    audit_logger = AuditLogger(storage)

    ledger = Ledger(
        accounts=storage,
        journal=storage,
        transactions=storage,
        rules=storage,
        audit_logger=audit_logger,
    )
    if get_settings().ledger.seed_default_chart:
        await ledger.chart.seed_defaults()

    import_flow = StatementImportFlow(
        accounts=storage,
        transactions=storage,
        rules=storage,
        ledger=ledger,
        audit_logger=audit_logger,
    )
    categorization_flow = CategorizationFlow(
        transactions=storage,
        rules=storage,
        ledger=ledger,
        audit_logger=audit_logger,
    )
    return import_flow, categorization_flow, ledger
