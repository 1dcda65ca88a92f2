"""
Tests for the storage backends.

The same contract tests run against InMemoryStorage and JsonFileStorage.
"""

import json
import os
import pytest
from datetime import date
from decimal import Decimal

from statement_ledger.config import StorageSettings
from statement_ledger.models.audit import AuditEventBuilder
from statement_ledger.models.ledger import (
    AccountType,
    BankAccount,
    ChartAccount,
    JournalEntry,
    JournalLine,
    Transaction,
)
from statement_ledger.models.rules import (
    CategorizationRule,
    CategoryState,
    CategoryStateKind,
    RuleCategory,
)
from statement_ledger.models.statement import AccountKind, hash_account
from statement_ledger.services.storage import (
    ConnectionError,
    DuplicateError,
    InMemoryStorage,
    JsonFileStorage,
    StorageError,
    create_storage,
)
from statement_ledger.services.storage import json_file


@pytest.fixture(params=["memory", "json"])
def backend(request, tmp_path):
    if request.param == "memory":
        return InMemoryStorage()
    return JsonFileStorage(path=str(tmp_path / "ledger.json"), write_retry_attempts=1)


def make_transaction(external_id="T1", account_ref="bank-1", kind_state=None, day=10):
    return Transaction(
        account_ref=account_ref,
        external_id=external_id,
        amount=Decimal("-4.50"),
        posted_date=date(2024, 1, day),
        category_state=kind_state or CategoryState.uncategorized(),
    )


def make_bank(number="123456789"):
    return BankAccount(
        name="Checking",
        account_hash=hash_account("021000021", number),
        account_kind=AccountKind.CHECKING,
    )


def make_entry(day=10):
    return JournalEntry(
        entry_date=date(2024, 1, day),
        lines=[JournalLine.debit("5200", Decimal("4.50")), JournalLine.credit("1110", Decimal("4.50"))],
    )


class TestStorageContract:
    """Behaviour shared by every backend."""

    async def test_chart_account_codes_are_unique(self, backend):
        await backend.save_chart_account(ChartAccount(code="5200", name="Food", type=AccountType.EXPENSE))
        with pytest.raises(DuplicateError):
            await backend.save_chart_account(
                ChartAccount(id="food-2", code="5200", name="Food", type=AccountType.EXPENSE)
            )

    async def test_bank_account_lookup_by_hash(self, backend):
        bank = await backend.save_bank_account(make_bank())
        found = await backend.get_bank_account_by_hash(hash_account("021000021", "123456789"))
        assert found.id == bank.id
        with pytest.raises(DuplicateError):
            await backend.save_bank_account(make_bank())

    async def test_transaction_dedup_key(self, backend):
        """Test that (account, external id) is unique."""
        saved = await backend.save_transaction(make_transaction())
        assert (await backend.find_transaction("bank-1", "T1")).id == saved.id
        assert await backend.find_transaction("bank-2", "T1") is None
        with pytest.raises(DuplicateError):
            await backend.save_transaction(make_transaction())

    async def test_transaction_update_and_delete(self, backend):
        saved = await backend.save_transaction(make_transaction())
        saved.category_state = CategoryState.category("5200")
        await backend.save_transaction(saved)
        assert (await backend.get_transaction(saved.id)).category_state.ref == "5200"

        assert await backend.delete_transaction(saved.id)
        assert await backend.find_transaction("bank-1", "T1") is None
        assert not await backend.delete_transaction(saved.id)

    async def test_transaction_filters(self, backend):
        await backend.save_transaction(make_transaction("A", day=5))
        await backend.save_transaction(make_transaction("B", day=15, kind_state=CategoryState.ignored()))
        await backend.save_transaction(make_transaction("C", account_ref="bank-2", day=20))

        assert [t.external_id for t in await backend.list_transactions(account_ref="bank-1")] == ["A", "B"]
        ignored = await backend.list_transactions(category_kind=CategoryStateKind.IGNORED)
        assert [t.external_id for t in ignored] == ["B"]
        ranged = await backend.list_transactions(date_from=date(2024, 1, 10), date_to=date(2024, 1, 31))
        assert [t.external_id for t in ranged] == ["B", "C"]

    async def test_returned_models_are_copies(self, backend):
        saved = await backend.save_transaction(make_transaction())
        saved.payee_name = "CHANGED"
        assert (await backend.get_transaction(saved.id)).payee_name == "Unknown"

    async def test_journal_sequence_kept_on_replace(self, backend):
        first = await backend.save_journal_entry(make_entry(day=10))
        second = await backend.save_journal_entry(make_entry(day=10))
        assert (first.sequence, second.sequence) == (1, 2)

        first.description = "edited"
        replaced = await backend.save_journal_entry(first)
        assert replaced.sequence == 1
        listed = await backend.list_journal_entries(account_ref="5200")
        assert [e.id for e in listed] == [first.id, second.id]

    async def test_journal_date_filter(self, backend):
        await backend.save_journal_entry(make_entry(day=5))
        await backend.save_journal_entry(make_entry(day=25))
        assert len(await backend.list_journal_entries(date_to=date(2024, 1, 10))) == 1
        assert len(await backend.list_journal_entries(account_ref="9999")) == 0

    async def test_rules_keep_insertion_order(self, backend):
        for pattern in ("b", "a", "c"):
            await backend.save_rule(CategorizationRule(
                pattern=pattern, target_category=RuleCategory.IGNORE,
            ))
        assert [r.pattern for r in await backend.list_rules()] == ["b", "a", "c"]
        assert [r.sequence for r in await backend.list_rules()] == [1, 2, 3]

    async def test_audit_queries(self, backend):
        event = AuditEventBuilder.account_created(account_id="5210", code="5210", name="Coffee")
        await backend.append_event(event)
        assert len(await backend.get_events_by_entity("chart_account", "5210")) == 1
        assert (await backend.get_recent_events(limit=1))[0].event_id == event.event_id


class TestJsonFileStorage:
    """Tests specific to the JSON document backend."""

    async def test_reload_restores_everything(self, tmp_path):
        path = str(tmp_path / "ledger.json")
        storage = JsonFileStorage(path=path)
        bank = await storage.save_bank_account(make_bank())
        tx = await storage.save_transaction(make_transaction(account_ref=bank.id))
        await storage.save_journal_entry(make_entry())
        await storage.save_rule(CategorizationRule(pattern="x", target_category=RuleCategory.IGNORE))

        reloaded = JsonFileStorage(path=path)

        assert (await reloaded.get_bank_account_by_hash(bank.account_hash)).id == bank.id
        assert (await reloaded.find_transaction(bank.id, "T1")).amount == Decimal("-4.50")
        assert (await reloaded.get_transaction(tx.id)).posted_date == date(2024, 1, 10)
        assert (await reloaded.save_journal_entry(make_entry())).sequence == 2
        assert (await reloaded.save_rule(
            CategorizationRule(pattern="y", target_category=RuleCategory.IGNORE)
        )).sequence == 2

    async def test_amounts_are_stored_as_strings(self, tmp_path):
        path = tmp_path / "ledger.json"
        storage = JsonFileStorage(path=str(path))
        await storage.save_transaction(make_transaction())
        document = json.loads(path.read_text(encoding="utf-8"))
        assert document["version"] == 1
        assert document["transactions"][0]["amount"] == "-4.50"

    def test_invalid_json_raises(self, tmp_path):
        path = tmp_path / "ledger.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(StorageError):
            JsonFileStorage(path=str(path))

    def test_unreadable_path_raises_connection_error(self, tmp_path):
        with pytest.raises(ConnectionError):
            JsonFileStorage(path=str(tmp_path))

    async def test_transient_write_error_is_retried(self, tmp_path, monkeypatch):
        path = tmp_path / "ledger.json"
        storage = JsonFileStorage(path=str(path), write_retry_attempts=3)
        real_replace = os.replace
        calls = {"n": 0}

        def flaky_replace(src, dst):
            calls["n"] += 1
            if calls["n"] == 1:
                raise OSError("disk busy")
            return real_replace(src, dst)

        monkeypatch.setattr(json_file.os, "replace", flaky_replace)
        await storage.save_transaction(make_transaction())

        assert calls["n"] == 2
        assert path.exists()
        assert not [p for p in tmp_path.iterdir() if p.name.startswith(".statement_ledger.")]

    async def test_persistent_write_error_raises(self, tmp_path, monkeypatch):
        storage = JsonFileStorage(path=str(tmp_path / "ledger.json"), write_retry_attempts=2)

        def broken_replace(src, dst):
            raise OSError("read-only file system")

        monkeypatch.setattr(json_file.os, "replace", broken_replace)
        with pytest.raises(StorageError):
            await storage.save_transaction(make_transaction())

    async def test_failed_write_rolls_back_memory(self, tmp_path, monkeypatch):
        """Test that a write which never reaches disk is not visible either."""
        storage = JsonFileStorage(path=str(tmp_path / "ledger.json"), write_retry_attempts=1)
        kept = await storage.save_journal_entry(make_entry(day=5))
        tx = await storage.save_transaction(make_transaction())
        real_replace = os.replace

        def broken_replace(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr(json_file.os, "replace", broken_replace)
        with pytest.raises(StorageError):
            await storage.save_journal_entry(make_entry(day=6))
        with pytest.raises(StorageError):
            await storage.save_transaction(make_transaction("T2"))
        with pytest.raises(StorageError):
            await storage.delete_transaction(tx.id)

        assert [e.id for e in await storage.list_journal_entries()] == [kept.id]
        assert await storage.find_transaction("bank-1", "T2") is None
        assert await storage.find_transaction("bank-1", "T1") is not None

        monkeypatch.setattr(json_file.os, "replace", real_replace)
        assert (await storage.save_journal_entry(make_entry(day=7))).sequence == 2


class TestCreateStorage:
    """Tests for backend selection."""

    def test_memory_backend(self):
        assert type(create_storage(StorageSettings(backend="memory"))) is InMemoryStorage

    def test_json_backend(self, tmp_path):
        storage = create_storage(StorageSettings(backend="json", json_path=str(tmp_path / "s.json")))
        assert isinstance(storage, JsonFileStorage)
        assert storage.path == tmp_path / "s.json"
