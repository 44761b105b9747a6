"""
Schema registry.

Persists SchemaDefinitions in a dedicated collection and enforces that at
most one active definition exists per collection name. Mutations are
announced to subscribers so that compiled models can be invalidated.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from pymongo import ReturnDocument

from docgate.runtime.database import DatabaseManager, parse_object_id
from docgate.runtime.errors import ConflictError, NotFoundError, StoreError, ValidationError
from docgate.runtime.serialization import utc_now
from docgate.specs.schema import (
    SchemaCreate,
    SchemaDefinition,
    SchemaUpdate,
    normalize_collection_name,
)

logger = logging.getLogger(__name__)

DEFAULT_SCHEMA_COLLECTION = "schemas"

# At most one active definition per collection name.
ACTIVE_NAME_INDEX = "collectionName_active_unique"

SchemaListener = Callable[[str], None]

# Newest first; _id breaks ties between definitions created in the same ms.
_NEWEST_FIRST = [("createdAt", -1), ("_id", -1)]


class SchemaRegistry:
    """
    CRUD over schema definitions.

    Example:
        registry = SchemaRegistry(db_manager)
        schema = registry.create({"collectionName": "orders", "displayName": "Orders"})
        registry.get_by_collection_name("ORDERS ")  # -> schema
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        collection_name: str = DEFAULT_SCHEMA_COLLECTION,
    ):
        self.db_manager = db_manager
        self.collection_name = collection_name
        self._listeners: list[SchemaListener] = []
        self._indexes_ready = False

    @property
    def collection(self):
        return self.db_manager.collection(self.collection_name)

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    def subscribe(self, listener: SchemaListener) -> None:
        """Register a callback invoked with the collection name after each mutation."""
        self._listeners.append(listener)

    def _notify(self, collection_name: str) -> None:
        for listener in self._listeners:
            listener(collection_name)

    def ensure_indexes(self) -> None:
        """
        Create the unique partial index on ``collectionName`` over active rows.

        It serves get_by_collection_name and makes concurrent registrations
        of the same collection fail with a duplicate key instead of both
        succeeding.
        """
        with self.db_manager.guard("creating schema registry index"):
            self.collection.create_index(
                [("collectionName", 1)],
                name=ACTIVE_NAME_INDEX,
                unique=True,
                partialFilterExpression={"isActive": True},
            )
        self._indexes_ready = True

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def create(self, definition: SchemaCreate | dict[str, Any]) -> SchemaDefinition:
        """
        Register a new schema.

        Raises:
            ValidationError: If the definition is malformed
            ConflictError: If an active schema already exists for the collection
        """
        create = _parse(SchemaCreate, definition)
        if not self._indexes_ready:
            self.ensure_indexes()

        conflict = f"Schema for collection '{create.collection_name}' already exists"
        if self.get_by_collection_name(create.collection_name) is not None:
            raise ConflictError(conflict, field="collectionName")

        now = utc_now()
        schema = SchemaDefinition(
            **create.model_dump(),
            is_active=True,
            created_at=now,
            updated_at=now,
        )
        try:
            with self.db_manager.guard("creating schema"):
                result = self.collection.insert_one(schema.to_document())
        except ConflictError as e:
            # Lost a race with a concurrent registration.
            raise ConflictError(conflict, field="collectionName") from e
        schema.id = result.inserted_id

        logger.info(f"Registered schema for collection '{schema.collection_name}'")
        self._notify(schema.collection_name)
        return schema

    def get(self, schema_id: Any) -> SchemaDefinition:
        """
        Fetch a schema by id, including soft-deleted ones.

        Raises:
            ValidationError: If the id is malformed
            NotFoundError: If no schema has this id
        """
        oid = parse_object_id(schema_id)
        with self.db_manager.guard("fetching schema"):
            doc = self.collection.find_one({"_id": oid})
        if doc is None:
            raise NotFoundError("Schema not found")
        return _load(doc)

    def get_by_collection_name(self, name: str) -> SchemaDefinition | None:
        """Active schema for a collection (name is trimmed and lowercased), or None."""
        with self.db_manager.guard("fetching schema"):
            doc = self.collection.find_one(
                {"collectionName": normalize_collection_name(name), "isActive": True}
            )
        return _load(doc) if doc else None

    def list_active(self) -> list[SchemaDefinition]:
        """All active schemas, newest first."""
        with self.db_manager.guard("listing schemas"):
            docs = list(self.collection.find({"isActive": True}).sort(_NEWEST_FIRST))
        return [_load(doc) for doc in docs]

    def update(self, schema_id: Any, partial: SchemaUpdate | dict[str, Any]) -> SchemaDefinition:
        """
        Apply a partial update.

        Only supplied keys change; ``collectionName`` and ``isActive`` are
        ignored; ``updatedAt`` is always refreshed. The merged definition is
        validated before anything is written.

        Raises:
            ValidationError: If the id, the payload or the merged definition
                is malformed
            NotFoundError: If no schema has this id
        """
        oid = parse_object_id(schema_id)
        update = _parse(SchemaUpdate, partial)

        changes = update.to_set_document()
        changes["updatedAt"] = utc_now()

        with self.db_manager.guard("fetching schema"):
            current = self.collection.find_one({"_id": oid})
        if current is None:
            raise NotFoundError("Schema not found")
        try:
            SchemaDefinition.from_document({**current, **changes})
        except PydanticValidationError as e:
            raise ValidationError.from_pydantic(e, "Invalid schema definition") from e

        with self.db_manager.guard("updating schema"):
            doc = self.collection.find_one_and_update(
                {"_id": oid},
                {"$set": changes},
                return_document=ReturnDocument.AFTER,
            )
        if doc is None:
            raise NotFoundError("Schema not found")

        schema = _load(doc)
        logger.info(f"Updated schema for collection '{schema.collection_name}'")
        self._notify(schema.collection_name)
        return schema

    def soft_delete(self, schema_id: Any) -> SchemaDefinition:
        """
        Mark a schema inactive. Deleting an already inactive schema succeeds.

        Raises:
            ValidationError: If the id is malformed
            NotFoundError: If no schema has this id
        """
        oid = parse_object_id(schema_id)
        with self.db_manager.guard("deleting schema"):
            doc = self.collection.find_one_and_update(
                {"_id": oid},
                {"$set": {"isActive": False, "updatedAt": utc_now()}},
                return_document=ReturnDocument.AFTER,
            )
        if doc is None:
            raise NotFoundError("Schema not found")

        schema = _load(doc)
        logger.info(f"Deactivated schema for collection '{schema.collection_name}'")
        self._notify(schema.collection_name)
        return schema

    def export(self, schema_id: Any) -> dict[str, Any]:
        """Portable form of a schema, suitable for re-registration elsewhere."""
        return self.get(schema_id).to_export()


def _parse(model: type, data: Any) -> Any:
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e, "Invalid schema definition") from e


def _load(doc: dict[str, Any]) -> SchemaDefinition:
    try:
        return SchemaDefinition.from_document(doc)
    except PydanticValidationError as e:
        raise StoreError(f"Stored schema {doc.get('_id')} is unreadable: {e}") from e
