"""
Document store - schema-aware CRUD and bulk operations on any collection.

Every operation validates through the collection's CompiledModel before
touching the database, and stamps ``createdAt``/``updatedAt`` on writes.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Any

import bson
from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.collection import Collection
from pymongo.errors import BulkWriteError, PyMongoError, WriteError

from docgate.runtime.database import DatabaseManager, parse_object_id
from docgate.runtime.errors import NotFoundError, StoreError, ValidationError
from docgate.runtime.model_cache import ModelCache
from docgate.runtime.model_compiler import SYSTEM_FIELDS, CompiledModel
from docgate.runtime.serialization import utc_now
from docgate.specs.documents import (
    BulkItemResult,
    BulkItemStatus,
    BulkOperation,
    BulkResult,
    DocumentPage,
)
from docgate.specs.query import ParsedQuery

logger = logging.getLogger(__name__)

DEFAULT_STATS_SAMPLE = 1000
TOP_FIELDS = 10


def _describe_errors(error: ValidationError) -> str:
    if not error.errors:
        return error.message
    return "; ".join(f"{e['field']}: {e['message']}" for e in error.errors)


class DocumentStore:
    """
    CRUD, bulk and statistics over arbitrary collections.

    Example:
        store = DocumentStore(db_manager, cache)
        doc = store.create("orders", {"customer": "A", "total": 10})
        page = store.list("orders", QueryTranslator().translate({"total": ">5"}))
    """

    def __init__(self, db_manager: DatabaseManager, cache: ModelCache):
        self.db_manager = db_manager
        self.cache = cache

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _prepare(self, collection_name: str) -> tuple[Collection, CompiledModel]:
        """Resolve the collection and its model; ensure indexes on first use."""
        if collection_name == self.cache.registry.collection_name:
            raise ValidationError.for_field(
                "collection", "The schema registry is not a document collection", collection_name
            )
        collection = self.db_manager.collection(collection_name)
        compiled = self.cache.get_or_compile(collection_name)
        # Case variants of a name are distinct collections sharing one model.
        if collection.name not in compiled.indexed_collections:
            self._ensure_indexes(collection, compiled)
        return collection, compiled

    def _ensure_indexes(self, collection: Collection, compiled: CompiledModel) -> None:
        for index in compiled.indexes:
            try:
                collection.create_index(index.key_spec(), **index.index_options())
            except PyMongoError as e:
                logger.warning(
                    f"Could not create index {index.fields} on '{collection.name}': {e}"
                )
        compiled.indexed_collections.add(collection.name)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def list(self, collection_name: str, query: ParsedQuery) -> DocumentPage:
        """
        One page of documents matching the query.

        ``_id`` is appended to the sort so pages never overlap when sort keys
        tie.
        """
        collection, _ = self._prepare(collection_name)

        sort = query.sort_spec
        if not any(name == "_id" for name, _ in sort):
            sort.append(("_id", sort[-1][1] if sort else -1))

        with self.db_manager.guard("listing documents"):
            total = collection.count_documents(query.filter)
            cursor = (
                collection.find(query.filter, query.projection_spec)
                .sort(sort)
                .skip(query.skip)
                .limit(query.limit)
            )
            items = list(cursor)

        return DocumentPage(items=items, total=total, page=query.page, limit=query.limit)

    def get_by_id(self, collection_name: str, document_id: Any) -> dict[str, Any]:
        """
        Fetch one document.

        Raises:
            ValidationError: If the id is malformed
            NotFoundError: If no document has this id
        """
        oid = parse_object_id(document_id)
        collection, _ = self._prepare(collection_name)
        with self.db_manager.guard("fetching document"):
            doc = collection.find_one({"_id": oid})
        if doc is None:
            raise NotFoundError("Document not found")
        return doc

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def create(self, collection_name: str, body: dict[str, Any]) -> dict[str, Any]:
        """Validate and insert a document; returns it with ``_id`` and timestamps."""
        collection, compiled = self._prepare(collection_name)
        cleaned = compiled.validate(_require_object(body, "body"))

        now = utc_now()
        doc = {**cleaned, "createdAt": now, "updatedAt": now}
        with self.db_manager.guard("creating document"):
            result = collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        return doc

    def replace(
        self, collection_name: str, document_id: Any, body: dict[str, Any]
    ) -> dict[str, Any]:
        """
        Replace a document with a fully validated body.

        ``createdAt`` is preserved and ``updatedAt`` refreshed.
        """
        oid = parse_object_id(document_id)
        collection, compiled = self._prepare(collection_name)
        cleaned = compiled.validate(_require_object(body, "body"))

        with self.db_manager.guard("replacing document"):
            existing = collection.find_one({"_id": oid}, {"createdAt": 1})
            if existing is None:
                raise NotFoundError("Document not found")
            now = utc_now()
            doc = {**cleaned, "createdAt": existing.get("createdAt", now), "updatedAt": now}
            updated = collection.find_one_and_replace(
                {"_id": oid}, doc, return_document=ReturnDocument.AFTER
            )
        if updated is None:
            raise NotFoundError("Document not found")
        return updated

    def patch(
        self, collection_name: str, document_id: Any, partial: dict[str, Any]
    ) -> dict[str, Any]:
        """
        Merge ``partial`` onto the stored document.

        The merged document is validated as a whole; only the supplied keys
        are written.
        """
        oid = parse_object_id(document_id)
        collection, compiled = self._prepare(collection_name)
        partial = _require_object(partial, "body")

        with self.db_manager.guard("fetching document"):
            existing = collection.find_one({"_id": oid})
        if existing is None:
            raise NotFoundError("Document not found")

        changes = _merged_changes(compiled, existing, partial)
        with self.db_manager.guard("updating document"):
            updated = collection.find_one_and_update(
                {"_id": oid}, {"$set": changes}, return_document=ReturnDocument.AFTER
            )
        if updated is None:
            raise NotFoundError("Document not found")
        return updated

    def delete(self, collection_name: str, document_id: Any) -> dict[str, Any]:
        """
        Delete one document and return it.

        Raises:
            NotFoundError: If nothing was deleted
        """
        oid = parse_object_id(document_id)
        collection, _ = self._prepare(collection_name)
        with self.db_manager.guard("deleting document"):
            deleted = collection.find_one_and_delete({"_id": oid})
        if deleted is None:
            raise NotFoundError("Document not found")
        return deleted

    # -------------------------------------------------------------------------
    # Bulk
    # -------------------------------------------------------------------------

    def bulk(self, collection_name: str, operation: str, items: list[Any]) -> BulkResult:
        """
        Apply a bulk insert, update or delete.

        Not transactional: the result itemizes what happened to each input.

        Raises:
            ValidationError: For an unknown operation, an empty item list or
                (insert only) any invalid item
        """
        try:
            op = BulkOperation(operation)
        except ValueError:
            raise ValidationError.for_field(
                "operation", "Operation must be one of: insert, update, delete", operation
            ) from None
        if not isinstance(items, list) or not items:
            raise ValidationError.for_field("data", "Data must be a non-empty array", items)

        collection, compiled = self._prepare(collection_name)
        if op == BulkOperation.INSERT:
            result = self._bulk_insert(collection, compiled, items)
        elif op == BulkOperation.UPDATE:
            result = self._bulk_update(collection, compiled, items)
        else:
            result = self._bulk_delete(collection, items)

        logger.info(
            f"Bulk {op} on '{collection_name}': {result.succeeded}/{result.requested} succeeded"
        )
        return result

    def _bulk_insert(
        self, collection: Collection, compiled: CompiledModel, items: list[Any]
    ) -> BulkResult:
        errors: list[dict[str, Any]] = []
        docs: list[dict[str, Any]] = []
        now = utc_now()

        for i, item in enumerate(items):
            if not isinstance(item, dict):
                errors.append({"field": f"items.{i}", "message": "must be an object", "value": item})
                continue
            try:
                cleaned = compiled.validate(item)
            except ValidationError as e:
                errors.extend({**err, "field": f"items.{i}.{err['field']}"} for err in e.errors)
                continue
            docs.append({"_id": ObjectId(), **cleaned, "createdAt": now, "updatedAt": now})

        if errors:
            raise ValidationError("Bulk insert validation failed", errors=errors)

        failures: dict[int, str] = {}
        try:
            collection.insert_many(docs, ordered=False)
        except BulkWriteError as e:
            for write_error in e.details.get("writeErrors", []):
                failures[write_error["index"]] = write_error.get("errmsg", "Write failed")
        except PyMongoError as e:
            raise StoreError(f"Error inserting documents: {e}") from e

        result = BulkResult(operation=BulkOperation.INSERT, requested=len(items))
        for i, doc in enumerate(docs):
            if i in failures:
                result.items.append(
                    BulkItemResult(index=i, status=BulkItemStatus.FAILED, error=failures[i])
                )
            else:
                result.items.append(
                    BulkItemResult(index=i, id=str(doc["_id"]), status=BulkItemStatus.INSERTED)
                )
        result.succeeded = len(docs) - len(failures)
        return result

    def _bulk_update(
        self, collection: Collection, compiled: CompiledModel, items: list[Any]
    ) -> BulkResult:
        """Patch each item's document; the merged result must satisfy the full model."""
        result = BulkResult(operation=BulkOperation.UPDATE, requested=len(items))

        for i, item in enumerate(items):
            raw_id = item.get("_id") if isinstance(item, dict) else None
            try:
                oid = parse_object_id(raw_id, field="_id")
            except ValidationError as e:
                result.items.append(
                    BulkItemResult(
                        index=i,
                        id=str(raw_id) if raw_id is not None else None,
                        status=BulkItemStatus.FAILED,
                        error=_describe_errors(e),
                    )
                )
                continue

            with self.db_manager.guard("fetching document"):
                existing = collection.find_one({"_id": oid})
            if existing is None:
                result.items.append(
                    BulkItemResult(index=i, id=str(oid), status=BulkItemStatus.NOT_FOUND)
                )
                continue

            try:
                changes = _merged_changes(compiled, existing, item)
            except ValidationError as e:
                result.items.append(
                    BulkItemResult(
                        index=i, id=str(oid), status=BulkItemStatus.FAILED, error=_describe_errors(e)
                    )
                )
                continue

            try:
                outcome = collection.update_one({"_id": oid}, {"$set": changes})
            except WriteError as e:
                result.items.append(
                    BulkItemResult(index=i, id=str(oid), status=BulkItemStatus.FAILED, error=str(e))
                )
                continue
            except PyMongoError as e:
                raise StoreError(f"Error updating documents: {e}") from e

            if outcome.matched_count == 0:
                # Deleted between the read and the write.
                result.items.append(
                    BulkItemResult(index=i, id=str(oid), status=BulkItemStatus.NOT_FOUND)
                )
            else:
                result.items.append(
                    BulkItemResult(index=i, id=str(oid), status=BulkItemStatus.UPDATED)
                )
                result.succeeded += 1

        return result

    def _bulk_delete(self, collection: Collection, items: list[Any]) -> BulkResult:
        result = BulkResult(operation=BulkOperation.DELETE, requested=len(items))

        parsed: dict[int, ObjectId] = {}
        for i, item in enumerate(items):
            raw_id = item.get("_id") if isinstance(item, dict) else item
            try:
                parsed[i] = parse_object_id(raw_id, field="_id")
            except ValidationError as e:
                result.items.append(
                    BulkItemResult(
                        index=i, id=str(raw_id), status=BulkItemStatus.FAILED, error=_describe_errors(e)
                    )
                )

        ids = list(dict.fromkeys(parsed.values()))
        with self.db_manager.guard("deleting documents"):
            existing = {doc["_id"] for doc in collection.find({"_id": {"$in": ids}}, {"_id": 1})}
            outcome = collection.delete_many({"_id": {"$in": list(existing)}}) if existing else None

        for i, oid in parsed.items():
            status = BulkItemStatus.DELETED if oid in existing else BulkItemStatus.NOT_FOUND
            result.items.append(BulkItemResult(index=i, id=str(oid), status=status))
        result.items.sort(key=lambda item: item.index)
        result.succeeded = outcome.deleted_count if outcome is not None else 0
        return result

    # -------------------------------------------------------------------------
    # Statistics
    # -------------------------------------------------------------------------

    def stats(self, collection_name: str, sample_size: int = DEFAULT_STATS_SAMPLE) -> dict[str, Any]:
        """Document count, average BSON size and most frequent fields over a sample."""
        collection, _ = self._prepare(collection_name)
        with self.db_manager.guard("computing collection statistics"):
            total = collection.count_documents({})
            sample = list(collection.find().limit(sample_size))

        sizes = [len(bson.encode(doc)) for doc in sample]
        field_counts = Counter(key for doc in sample for key in doc)
        return {
            "collection": collection_name,
            "count": total,
            "sampleSize": len(sample),
            "avgDocumentSize": round(sum(sizes) / len(sizes)) if sizes else 0,
            "topFields": [
                {"field": name, "count": count}
                for name, count in field_counts.most_common(TOP_FIELDS)
            ],
        }


def _require_object(body: Any, field: str) -> dict[str, Any]:
    if not isinstance(body, dict):
        raise ValidationError.for_field(field, "Request body must be a JSON object", body)
    return body


def _merged_changes(
    compiled: CompiledModel, existing: dict[str, Any], partial: dict[str, Any]
) -> dict[str, Any]:
    """Validate ``partial`` merged onto ``existing``; the ``$set`` for the supplied keys."""
    cleaned = compiled.validate({**existing, **partial})
    changes = {k: cleaned[k] for k in partial if k in cleaned and k not in SYSTEM_FIELDS}
    changes["updatedAt"] = utc_now()
    return changes
