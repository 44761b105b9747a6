"""
Collection administration: listing, inspection, field analysis and index
management for the collections of the connected database.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from pymongo.errors import CollectionInvalid, OperationFailure, PyMongoError

from docgate.runtime.database import DatabaseManager, index_descriptors, validate_collection_name
from docgate.runtime.errors import ConflictError, NotFoundError, StoreError, ValidationError
from docgate.runtime.model_cache import ModelCache
from docgate.runtime.schema_registry import SchemaRegistry
from docgate.specs.field_types import bson_type_name
from docgate.specs.query import QueryOperation
from docgate.specs.schema import IndexDefinition

logger = logging.getLogger(__name__)

DESCRIBE_SAMPLE_SIZE = 100
ANALYZE_SAMPLE_SIZE = 1000
SAMPLE_DOCUMENTS = 3
SAMPLE_VALUES = 5

# Options each raw query operation passes through to the driver.
QUERY_OPTIONS: dict[QueryOperation, frozenset[str]] = {
    QueryOperation.FIND: frozenset({"projection", "sort", "skip", "limit"}),
    QueryOperation.FIND_ONE: frozenset({"projection", "sort", "skip"}),
    QueryOperation.COUNT: frozenset({"skip", "limit"}),
    QueryOperation.DISTINCT: frozenset(),
    QueryOperation.AGGREGATE: frozenset({"allowDiskUse", "maxTimeMS"}),
}
WRITE_STAGES = frozenset({"$out", "$merge"})


class CollectionManager:
    """
    Database-level operations over collections.

    Schema-aware where it matters: listings show each collection's active
    schema, and dropping a collection invalidates its cached model.
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        registry: SchemaRegistry,
        cache: ModelCache | None = None,
    ):
        self.db_manager = db_manager
        self.registry = registry
        self.cache = cache

    def _require_existing(self, name: str) -> None:
        if not self.db_manager.collection_exists(name):
            raise NotFoundError(f"Collection '{name}' not found")

    def indexes(self, name: str) -> list[dict[str, Any]]:
        """Index descriptors of a collection."""
        with self.db_manager.guard("reading indexes"):
            info = self.db_manager.collection(name).index_information()
        return index_descriptors(info)

    # -------------------------------------------------------------------------
    # Listing and inspection
    # -------------------------------------------------------------------------

    def list_collections(self) -> dict[str, Any]:
        """Every user collection with counts, sizes and its active schema."""
        schemas = {s.collection_name: s for s in self.registry.list_active()}
        collections = []
        for name in self.db_manager.list_collection_names():
            if name == self.registry.collection_name:
                continue
            stats = self.db_manager.collection_stats(name)
            with self.db_manager.guard("counting documents"):
                count = self.db_manager.collection(name).estimated_document_count()
            schema = schemas.get(name)
            collections.append(
                {
                    "name": name,
                    "documentCount": count,
                    "size": stats.get("size", 0),
                    "indexCount": stats.get("nindexes", len(self.indexes(name))),
                    "hasSchema": schema is not None,
                    "schema": schema.to_export() if schema else None,
                }
            )

        with_schema = sum(1 for c in collections if c["hasSchema"])
        return {
            "collections": collections,
            "total": len(collections),
            "withSchema": with_schema,
            "withoutSchema": len(collections) - with_schema,
        }

    def describe(self, name: str) -> dict[str, Any]:
        """
        Counts, indexes, schema, sample documents and field analysis.

        Raises:
            NotFoundError: If the collection does not exist
        """
        self._require_existing(name)
        collection = self.db_manager.collection(name)

        with self.db_manager.guard("describing collection"):
            count = collection.count_documents({})
            sample = list(collection.find().limit(DESCRIBE_SAMPLE_SIZE))

        field_types: dict[str, set[str]] = defaultdict(set)
        field_counts: dict[str, int] = defaultdict(int)
        for doc in sample:
            for field, value in doc.items():
                field_counts[field] += 1
                field_types[field].add(bson_type_name(value))

        schema = self.registry.get_by_collection_name(name)
        stats = self.db_manager.collection_stats(name)
        return {
            "name": name,
            "documentCount": count,
            "size": stats.get("size", 0),
            "indexes": self.indexes(name),
            "schema": schema.to_export() if schema else None,
            "sampleDocuments": sample[:SAMPLE_DOCUMENTS],
            "fieldAnalysis": [
                {"field": field, "count": field_counts[field], "types": sorted(field_types[field])}
                for field in sorted(field_counts)
            ],
        }

    def analyze(self, name: str, sample_size: int = ANALYZE_SAMPLE_SIZE) -> dict[str, Any]:
        """
        Per-field statistics over a bounded sample.

        Raises:
            NotFoundError: If the collection does not exist
        """
        self._require_existing(name)
        with self.db_manager.guard("analyzing collection"):
            sample = list(self.db_manager.collection(name).find().limit(sample_size))

        counts: dict[str, int] = defaultdict(int)
        types: dict[str, set[str]] = defaultdict(set)
        distinct: dict[str, set[str]] = defaultdict(set)
        samples: dict[str, list[Any]] = defaultdict(list)

        for doc in sample:
            for field, value in doc.items():
                counts[field] += 1
                types[field].add(bson_type_name(value))
                marker = repr(value)
                if marker not in distinct[field]:
                    distinct[field].add(marker)
                    if len(samples[field]) < SAMPLE_VALUES:
                        samples[field].append(value)

        return {
            "collection": name,
            "sampleSize": len(sample),
            "fields": [
                {
                    "field": field,
                    "count": counts[field],
                    "types": sorted(types[field]),
                    "uniqueValues": len(distinct[field]),
                    "sampleValues": samples[field],
                }
                for field in sorted(counts)
            ],
        }

    def database_info(self) -> dict[str, Any]:
        """Database-level statistics, best effort."""
        stats = self.db_manager.database_stats()
        return {
            "database": self.db_manager.database_name,
            "collections": len(self.db_manager.list_collection_names()),
            "objects": stats.get("objects", 0),
            "dataSize": stats.get("dataSize", 0),
            "storageSize": stats.get("storageSize", 0),
            "indexes": stats.get("indexes", 0),
            "indexSize": stats.get("indexSize", 0),
        }

    def schema_collection(self, schema_id: Any) -> dict[str, Any]:
        """
        A schema together with the statistics of the collection it governs.

        The collection need not exist yet; its figures are then zero.

        Raises:
            ValidationError: If the id is malformed
            NotFoundError: If no schema has this id
        """
        schema = self.registry.get(schema_id)
        name = schema.collection_name
        exists = self.db_manager.collection_exists(name)
        stats = self.db_manager.collection_stats(name) if exists else {}
        count = 0
        if exists:
            with self.db_manager.guard("counting documents"):
                count = self.db_manager.collection(name).count_documents({})
        return {
            "schema": schema.model_dump(by_alias=True),
            "collection": {
                "name": name,
                "documentCount": count,
                "size": stats.get("size", 0),
                "avgObjSize": stats.get("avgObjSize", 0),
                "indexes": stats.get("nindexes", len(self.indexes(name)) if exists else 0),
            },
        }

    # -------------------------------------------------------------------------
    # Raw queries
    # -------------------------------------------------------------------------

    def run_query(
        self,
        name: str,
        operation: str,
        query: dict[str, Any] | None = None,
        options: dict[str, Any] | None = None,
    ) -> Any:
        """
        Run a read-only query against a collection.

        ``query`` is the filter for find, findOne and count. For distinct it
        is ``{"field": ..., "query": {...}}`` and for aggregate
        ``{"pipeline": [...]}``. Pipelines may not contain ``$out`` or
        ``$merge`` stages.

        Raises:
            ValidationError: For an unknown operation, a malformed query or
                an option the operation does not take
            StoreError: If the server rejects the query
        """
        try:
            op = QueryOperation(operation)
        except ValueError:
            allowed = ", ".join(o.value for o in QueryOperation)
            raise ValidationError.for_field(
                "operation", f"Operation must be one of: {allowed}", operation
            ) from None
        query = {} if query is None else query
        options = {} if options is None else options
        if not isinstance(query, dict):
            raise ValidationError.for_field("query", "Query must be an object", query)
        if not isinstance(options, dict):
            raise ValidationError.for_field("options", "Options must be an object", options)
        unsupported = sorted(set(options) - QUERY_OPTIONS[op])
        if unsupported:
            raise ValidationError.for_field(
                "options", f"Unsupported options for {op}: {', '.join(unsupported)}", options
            )

        collection = self.db_manager.collection(name)
        kwargs = _query_kwargs(options)
        with self.db_manager.guard(f"running {op} query"):
            if op == QueryOperation.FIND:
                return list(collection.find(query, **kwargs))
            if op == QueryOperation.FIND_ONE:
                return collection.find_one(query, **kwargs)
            if op == QueryOperation.COUNT:
                return collection.count_documents(query, **kwargs)
            if op == QueryOperation.DISTINCT:
                field, filter_ = _distinct_args(query)
                return collection.distinct(field, filter_)
            return list(collection.aggregate(_pipeline(query), **kwargs))

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def create_collection(self, name: str, options: dict[str, Any] | None = None) -> dict[str, Any]:
        """
        Create an empty collection.

        Raises:
            ConflictError: If the collection already exists
        """
        validate_collection_name(name)
        try:
            self.db_manager.db.create_collection(name, **(options or {}))
        except CollectionInvalid as e:
            raise ConflictError(f"Collection '{name}' already exists", field="name") from e
        except PyMongoError as e:
            raise StoreError(f"Error creating collection: {e}") from e
        logger.info(f"Created collection '{name}'")
        return {"name": name}

    def drop_collection(self, name: str) -> None:
        """
        Drop a collection and forget its compiled model.

        Raises:
            NotFoundError: If the collection does not exist
        """
        self._require_existing(name)
        with self.db_manager.guard("dropping collection"):
            self.db_manager.db.drop_collection(name)
        if self.cache is not None:
            self.cache.invalidate(name)
        logger.info(f"Dropped collection '{name}'")

    def create_index(
        self,
        name: str,
        keys: dict[str, Any],
        options: dict[str, Any] | None = None,
    ) -> str:
        """
        Create an index; returns its name.

        Raises:
            ValidationError: If the key specification is malformed
        """
        try:
            index = IndexDefinition.model_validate({"fields": keys, **(options or {})})
        except PydanticValidationError as e:
            raise ValidationError.from_pydantic(e, "Invalid index definition") from e

        collection = self.db_manager.collection(name)
        with self.db_manager.guard("creating index"):
            index_name = collection.create_index(index.key_spec(), **index.index_options())
        logger.info(f"Created index '{index_name}' on '{name}'")
        return index_name

    def drop_index(self, name: str, index_name: str) -> None:
        """
        Drop an index by name.

        Raises:
            ValidationError: For the primary ``_id_`` index
            NotFoundError: If the index does not exist
        """
        if index_name == "_id_":
            raise ValidationError.for_field("index", "Cannot drop the _id index", index_name)
        collection = self.db_manager.collection(name)
        with self.db_manager.guard("reading indexes"):
            existing = collection.index_information()
        if index_name not in existing:
            raise NotFoundError(f"Index '{index_name}' not found on '{name}'")
        try:
            collection.drop_index(index_name)
        except OperationFailure as e:
            raise StoreError(f"Error dropping index: {e}") from e
        logger.info(f"Dropped index '{index_name}' on '{name}'")


def _query_kwargs(options: dict[str, Any]) -> dict[str, Any]:
    kwargs = dict(options)
    sort = kwargs.get("sort")
    if isinstance(sort, dict):
        kwargs["sort"] = list(sort.items())
    return kwargs


def _distinct_args(query: dict[str, Any]) -> tuple[str, dict[str, Any]]:
    field = query.get("field")
    if not isinstance(field, str) or not field:
        raise ValidationError.for_field("query.field", "Distinct requires a field name", field)
    filter_ = query.get("query") or {}
    if not isinstance(filter_, dict):
        raise ValidationError.for_field("query.query", "Query must be an object", filter_)
    return field, filter_


def _pipeline(query: dict[str, Any]) -> list[dict[str, Any]]:
    pipeline = query.get("pipeline") or []
    if not isinstance(pipeline, list) or not all(isinstance(s, dict) for s in pipeline):
        raise ValidationError.for_field(
            "query.pipeline", "Pipeline must be an array of stages", pipeline
        )
    for i, stage in enumerate(pipeline):
        if WRITE_STAGES & set(stage):
            raise ValidationError.for_field(
                f"query.pipeline.{i}", "Pipelines cannot write ($out, $merge)", stage
            )
    return pipeline
