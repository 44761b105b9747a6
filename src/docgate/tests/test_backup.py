"""
Tests for backup and restore.
"""

from datetime import datetime

import pytest
from bson import ObjectId

from docgate.runtime import backup as backup_codec
from docgate.runtime.backup import BackupRestoreEngine
from docgate.runtime.errors import NotFoundError, ValidationError
from docgate.specs.backup import BackupSet, CollectionBackup

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def engine(db_manager, cache) -> BackupRestoreEngine:
    return BackupRestoreEngine(db_manager, cache)


@pytest.fixture
def seeded(db_manager):
    users = db_manager.collection("users")
    users.create_index([("email", 1)], unique=True, name="email_1")
    users.insert_many(
        [
            {"_id": ObjectId(), "email": "a@example.com", "joined": datetime(2024, 1, 2, 3, 4, 5)},
            {"_id": ObjectId(), "email": "b@example.com", "joined": datetime(2024, 2, 3, 4, 5, 6)},
        ]
    )
    db_manager.collection("logs").insert_one({"_id": ObjectId(), "line": "started"})
    return {"users": list(users.find()), "logs": list(db_manager.collection("logs").find())}


# =============================================================================
# Export
# =============================================================================


class TestExport:
    """Tests for exporting collections."""

    def test_export_all(self, engine, seeded, db_manager):
        backup = engine.export()

        assert backup.database == db_manager.database_name
        assert set(backup.collections) == {"users", "logs"}
        users = backup.collections["users"]
        assert users.document_count == 2
        assert users.size > 0
        assert {ix["name"] for ix in users.indexes} == {"_id_", "email_1"}
        assert users.data == seeded["users"]

    def test_export_selected_without_data(self, engine, seeded):
        backup = engine.export(["logs"], include_data=False)

        assert list(backup.collections) == ["logs"]
        assert backup.collections["logs"].document_count == 1
        assert backup.collections["logs"].data == []

    def test_export_missing_collection(self, engine, seeded):
        with pytest.raises(NotFoundError) as exc_info:
            engine.export(["users", "ghosts"])
        assert "ghosts" in exc_info.value.message


# =============================================================================
# Restore
# =============================================================================


class TestRestore:
    """Tests for restoring collections."""

    def test_round_trip_through_file_format(self, engine, seeded, db_manager):
        text = backup_codec.dumps(engine.export())
        db_manager.collection("users").delete_many({})
        db_manager.collection("users").drop_index("email_1")
        db_manager.collection("users").insert_one({"email": "stray@example.com"})

        report = engine.restore(backup_codec.loads(text))

        assert report.completed
        assert {r.collection for r in report.results} == {"users", "logs"}
        users = db_manager.collection("users")
        assert sorted(users.find(), key=lambda d: d["email"]) == sorted(
            seeded["users"], key=lambda d: d["email"]
        )
        assert "email_1" in users.index_information()

        restored = next(r for r in report.results if r.collection == "users")
        assert restored.documents_restored == 2
        assert restored.indexes_restored == 1
        assert restored.index_errors == []

    def test_restore_selected(self, engine, seeded, db_manager):
        backup = engine.export()
        db_manager.collection("logs").delete_many({})
        db_manager.collection("users").delete_many({})

        report = engine.restore(backup, ["logs", "absent"])

        assert [r.collection for r in report.results] == ["logs"]
        assert db_manager.collection("logs").count_documents({}) == 1
        assert db_manager.collection("users").count_documents({}) == 0

    def test_restore_stops_at_failure(self, engine, db_manager):
        """Duplicate ids in one collection stop the run; later ones are untouched."""
        oid = ObjectId()
        backup = BackupSet(
            database="x",
            timestamp=datetime(2024, 1, 1),
            collections={
                "first": CollectionBackup(name="first", data=[{"_id": ObjectId(), "n": 1}]),
                "broken": CollectionBackup(name="broken", data=[{"_id": oid}, {"_id": oid}]),
                "last": CollectionBackup(name="last", data=[{"_id": ObjectId(), "n": 3}]),
            },
        )

        report = engine.restore(backup)

        assert report.completed is False
        assert [r.collection for r in report.results] == ["first", "broken"]
        assert report.results[0].error is None
        assert report.results[1].error
        assert db_manager.collection("last").count_documents({}) == 0

    def test_partial_insert_reported(self, engine, db_manager):
        """Documents written before a failing insert are counted."""
        oid = ObjectId()
        backup = BackupSet(
            database="x",
            timestamp=datetime(2024, 1, 1),
            collections={
                "broken": CollectionBackup(
                    name="broken",
                    data=[{"_id": ObjectId(), "n": 1}, {"_id": oid}, {"_id": oid}, {"_id": ObjectId()}],
                ),
            },
        )

        report = engine.restore(backup)

        result = report.results[0]
        assert report.completed is False
        assert result.error
        assert result.documents_restored == 2
        assert db_manager.collection("broken").count_documents({}) == 2

    def test_invalid_index_recorded(self, engine, db_manager):
        backup = BackupSet(
            database="x",
            timestamp=datetime(2024, 1, 1),
            collections={
                "things": CollectionBackup(
                    name="things",
                    indexes=[{"name": "_id_", "key": {"_id": 1}}, {"name": "empty", "key": {}}],
                    data=[{"_id": ObjectId(), "n": 1}],
                )
            },
        )

        report = engine.restore(backup)

        assert report.completed
        assert report.results[0].indexes_restored == 0
        assert len(report.results[0].index_errors) == 1
        assert report.results[0].documents_restored == 1

    def test_restore_invalidates_cache(self, engine, seeded, cache):
        cache.get_or_compile("users")
        engine.restore(engine.export(["users"]))
        assert "users" not in cache


class TestBackupCodec:
    """Tests for the backup file format."""

    def test_file_preserves_bson_types(self, engine, seeded):
        loaded = backup_codec.loads(backup_codec.dumps(engine.export(["users"])))
        doc = loaded.collections["users"].data[0]

        assert isinstance(doc["_id"], ObjectId)
        assert isinstance(doc["joined"], datetime)

    def test_invalid_json(self):
        with pytest.raises(ValidationError) as exc_info:
            backup_codec.loads("{not json")
        assert exc_info.value.fields == ["backup"]

    def test_invalid_structure(self):
        with pytest.raises(ValidationError) as exc_info:
            backup_codec.parse_backup({"collections": {}})
        assert "backup.database" in exc_info.value.fields
