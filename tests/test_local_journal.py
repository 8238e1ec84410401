from __future__ import annotations

import json

import pytest

from tradelog.errors import PartialMigrationFailure, TransientStoreError
from tradelog.local.journal import LocalJournal, LocalJournalError
from tradelog.local.migrator import LocalMigrator
from tradelog.schema import EntityKind
from tradelog.sync.ids import id_pattern
from tradelog.sync.service import SyncService


@pytest.fixture
def journal(settings) -> LocalJournal:
    return LocalJournal.from_settings(settings)


def test_files_use_local_storage_key_names(journal):
    assert journal.path_for(EntityKind.TRADE).name == "velox_trades.json"
    assert journal.path_for("profile").name == "velox_user.json"
    assert journal.path_for("settings").name == "velox_settings.json"


def test_missing_file_loads_empty(journal):
    assert journal.load(EntityKind.TAG) == []
    assert journal.load_document(EntityKind.PROFILE) is None


def test_save_load_remove(journal):
    journal.save("tags", [{"id": "tag_1", "label": "A"}, {"id": "tag_2", "label": "B"}])
    assert [r["id"] for r in journal.load("tags")] == ["tag_1", "tag_2"]
    assert journal.remove("tags", ["tag_1", "tag_unknown"]) == 1
    assert journal.load("tags") == [{"id": "tag_2", "label": "B"}]
    assert journal.remove("tags", []) == 0


def test_assign_missing_ids_persists_them(journal):
    journal.save("trades", [{"symbol": "EURUSD"}, {"id": "trade_1", "symbol": "GBPUSD"}])
    assert journal.assign_missing_ids("trades") == 1
    first = journal.load("trades")
    assert id_pattern(EntityKind.TRADE).match(first[0]["id"])
    assert first[1]["id"] == "trade_1"
    assert journal.assign_missing_ids("trades") == 0
    assert journal.load("trades") == first


def test_no_temp_files_left_behind(journal):
    journal.save("tags", [{"id": "tag_1"}])
    journal.save_document("settings", {"theme": "dark"})
    assert sorted(p.name for p in journal.directory.iterdir()) == ["velox_settings.json", "velox_tags.json"]


def test_corrupt_file_raises(journal):
    path = journal.path_for("tags")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(LocalJournalError):
        journal.load("tags")


def test_wrong_shape_raises(journal):
    path = journal.path_for("trades")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps({"id": "trade_1"}), encoding="utf-8")
    with pytest.raises(LocalJournalError):
        journal.load("trades")


@pytest.mark.asyncio
async def test_migrator_uploads_everything_and_empties_the_journal(service, store, journal):
    journal.save("tags", [{"id": "tag_1", "label": "FOMO"}])
    journal.save("strategies", [{"title": "Breakout"}])
    journal.save("accounts", [{"id": "acc_1", "name": "Main"}])
    journal.save("trades", [{"symbol": "EURUSD", "tags": ["tag_1"], "accountId": "acc_1"}])
    journal.save_document("profile", {"name": "Alex"})
    journal.save_document("settings", {"theme": "dark"})

    report = await LocalMigrator(service, journal).run("u1")

    assert report.migrated == {"tags": 1, "strategies": 1, "accounts": 1, "trades": 1}
    assert report.total == 4
    assert report.documents == ["settings", "profile"]
    assert report.operation_id

    assert store.get("users/u1/tags/tag_1").data["label"] == "FOMO"
    assert store.get("users/u1/profile/main").data["name"] == "Alex"
    assert store.get("users/u1/settings/main").data["theme"] == "dark"
    [trade] = store.list_collection("users/u1/trades")
    assert trade.data["accountId"] == "acc_1"

    for kind in ("tags", "strategies", "accounts", "trades"):
        assert journal.load(kind) == []
    assert journal.load_document("profile") is None


@pytest.mark.asyncio
async def test_migrator_resumes_after_partial_failure(store, journal, settings):
    service = SyncService(store, settings=settings.model_copy(update={"migration_batch_size": 2}))
    journal.save("trades", [{"symbol": f"S{i}"} for i in range(5)])
    store.inject_failure("commit_batch", TransientStoreError("unavailable"), after=1)

    with pytest.raises(PartialMigrationFailure):
        await LocalMigrator(service, journal).run("u1")

    left = journal.load("trades")
    assert len(left) == 3
    assert all(r.get("id") for r in left)
    assert len(store.list_collection("users/u1/trades")) == 2

    report = await LocalMigrator(service, journal).run("u1")
    assert report.migrated["trades"] == 3
    assert journal.load("trades") == []
    assert len(store.list_collection("users/u1/trades")) == 5


@pytest.mark.asyncio
async def test_migrator_with_empty_journal_writes_nothing(service, store, journal):
    report = await LocalMigrator(service, journal).run("u1")
    assert report.total == 0
    assert report.documents == []
    assert store.write_count == 0


def test_whitespace_ids_count_as_missing(journal):
    journal.save("tags", [{"id": "   ", "label": "A"}])
    assert journal.assign_missing_ids("tags") == 1
    [record] = journal.load("tags")
    assert id_pattern(EntityKind.TAG).match(record["id"])


@pytest.mark.asyncio
async def test_migrator_empties_records_saved_with_blank_ids(service, store, journal):
    journal.save("tags", [{"id": "  ", "label": "FOMO"}, {"id": "", "label": "Tilt"}])

    report = await LocalMigrator(service, journal).run("u1")

    assert report.migrated["tags"] == 2
    assert journal.load("tags") == []
    stored = store.list_collection("users/u1/tags")
    assert sorted(d.data["label"] for d in stored) == ["FOMO", "Tilt"]
    assert all(id_pattern(EntityKind.TAG).match(d.id) for d in stored)

    again = await LocalMigrator(service, journal).run("u1")
    assert again.total == 0
    assert len(store.list_collection("users/u1/tags")) == 2
