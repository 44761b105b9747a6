"""
Backup and restore of whole collections (documents + index definitions).

Backups are point-in-time per collection, not across collections. Restore
is destructive and not atomic: each collection is emptied, its indexes are
recreated and its documents re-inserted, and the report says how far the
run got.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

import bson
from pydantic import ValidationError as PydanticValidationError
from pymongo.errors import BulkWriteError, PyMongoError

from docgate.runtime import serialization
from docgate.runtime.database import DatabaseManager, index_descriptors
from docgate.runtime.errors import DocgateError, NotFoundError, ValidationError
from docgate.runtime.model_cache import ModelCache
from docgate.runtime.serialization import utc_now
from docgate.specs.backup import (
    BackupSet,
    CollectionBackup,
    CollectionRestoreResult,
    RestoreReport,
)

logger = logging.getLogger(__name__)

# Descriptor keys that are not create_index options.
_NON_OPTION_KEYS = frozenset({"key", "v", "ns"})


def dumps(backup: BackupSet, indent: int | None = 2) -> str:
    """Serialize a backup set to relaxed Extended JSON."""
    return serialization.dumps(backup.to_document(), indent=indent)


def loads(text: str | bytes) -> BackupSet:
    """
    Parse a backup set from Extended JSON.

    Raises:
        ValidationError: If the text is not a valid backup set
    """
    try:
        data = serialization.loads(text)
    except ValueError as e:
        raise ValidationError.for_field("backup", f"Invalid backup file: {e}") from e
    return parse_backup(data)


def parse_backup(data: Any) -> BackupSet:
    """Validate already-decoded backup data."""
    if isinstance(data, BackupSet):
        return data
    try:
        return BackupSet.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e, "Invalid backup data", prefix="backup") from e


class BackupRestoreEngine:
    """
    Exports and restores collections.

    Works on raw collections and bypasses schema validation, so that data
    written under an older schema round-trips unchanged.
    """

    def __init__(self, db_manager: DatabaseManager, cache: ModelCache | None = None):
        self.db_manager = db_manager
        self.cache = cache

    def export(self, names: Iterable[str] | None = None, include_data: bool = True) -> BackupSet:
        """
        Snapshot collections.

        Args:
            names: Collections to export; empty or None means every collection
            include_data: Capture documents as well as metadata

        Raises:
            NotFoundError: If a named collection does not exist
        """
        available = self.db_manager.list_collection_names()
        selected = list(names) if names else available
        missing = [n for n in selected if n not in available]
        if missing:
            raise NotFoundError(f"Collections not found: {', '.join(missing)}")

        backup = BackupSet(
            database=self.db_manager.database_name,
            timestamp=utc_now(),
        )
        for name in selected:
            backup.collections[name] = self._export_collection(name, include_data)

        logger.info(
            f"Exported {len(selected)} collections "
            f"({'with' if include_data else 'without'} data)"
        )
        return backup

    def _export_collection(self, name: str, include_data: bool) -> CollectionBackup:
        collection = self.db_manager.collection(name)
        with self.db_manager.guard(f"exporting collection '{name}'"):
            count = collection.count_documents({})
            indexes = index_descriptors(collection.index_information())
            data = list(collection.find()) if include_data else []

        stats = self.db_manager.collection_stats(name)
        size = stats.get("size")
        if size is None:
            size = sum(len(bson.encode(doc)) for doc in data)

        return CollectionBackup(
            name=name,
            document_count=count,
            size=size,
            indexes=indexes,
            data=data,
        )

    def restore(
        self, backup: BackupSet | dict[str, Any], names: Iterable[str] | None = None
    ) -> RestoreReport:
        """
        Restore collections from a backup set.

        For each selected collection present in the backup: delete every
        document, recreate every index except ``_id_`` (individual failures
        are recorded, not raised), then insert the documents. The run stops
        at the first collection that fails.

        Args:
            backup: Backup set (or its decoded data)
            names: Collections to restore; empty or None means all in the backup
        """
        backup = parse_backup(backup)
        wanted = list(names) if names else list(backup.collections)

        report = RestoreReport()
        for name in wanted:
            snapshot = backup.collections.get(name)
            if snapshot is None:
                logger.warning(f"Collection '{name}' is not in the backup; skipping")
                continue

            result = CollectionRestoreResult(collection=name)
            report.results.append(result)
            try:
                self._restore_collection(name, snapshot, result)
            except (DocgateError, PyMongoError) as e:
                result.error = getattr(e, "message", None) or str(e)
                report.completed = False
                logger.error(f"Restore of '{name}' failed: {result.error}")
                break
            finally:
                if self.cache is not None:
                    self.cache.invalidate(name)

        restored = sum(r.documents_restored for r in report.results)
        logger.info(
            f"Restored {restored} documents into {len(report.results)} collections"
            + ("" if report.completed else " (stopped at failure)")
        )
        return report

    def _restore_collection(
        self, name: str, snapshot: CollectionBackup, result: CollectionRestoreResult
    ) -> None:
        collection = self.db_manager.collection(name)
        collection.delete_many({})

        for descriptor in snapshot.restorable_indexes():
            keys = list(dict(descriptor.get("key", {})).items())
            options = {k: v for k, v in descriptor.items() if k not in _NON_OPTION_KEYS}
            if not keys:
                result.index_errors.append(f"{descriptor.get('name')}: index has no key fields")
                continue
            try:
                collection.create_index(keys, **options)
                result.indexes_restored += 1
            except PyMongoError as e:
                result.index_errors.append(f"{descriptor.get('name', keys)}: {e}")

        if snapshot.data:
            try:
                collection.insert_many(snapshot.data)
            except BulkWriteError as e:
                # Ordered insert: everything before the failing document is in place.
                result.documents_restored = e.details.get("nInserted", 0)
                raise
            result.documents_restored = len(snapshot.data)
