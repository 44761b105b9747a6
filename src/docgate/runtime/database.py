"""
MongoDB connection management for docgate.

Owns the process-wide MongoClient, hands out collections by validated name,
and translates driver exceptions into the docgate error taxonomy in one
place (:meth:`DatabaseManager.guard`).
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from bson import ObjectId
from pymongo import MongoClient
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, OperationFailure, PyMongoError

from docgate.runtime.errors import ConflictError, StoreError, ValidationError
from docgate.runtime.logging import get_store_logger
from docgate.specs.field_types import coerce_object_id

logger = get_store_logger()

DEFAULT_URI = "mongodb://localhost:27017/docgate"
DEFAULT_DATABASE = "docgate"
DEFAULT_SERVER_TIMEOUT_MS = 5000

_RESERVED_PREFIX = "system."


# =============================================================================
# Collection names
# =============================================================================


def validate_collection_name(name: str) -> str:
    """
    Check that a collection name can be used as a MongoDB namespace.

    Raises:
        ValidationError: If the name is empty, contains ``$`` or NUL, or
            addresses a ``system.`` collection
    """
    if not isinstance(name, str) or not name.strip():
        raise ValidationError.for_field("collection", "Collection name is required", name)
    if "$" in name or "\x00" in name:
        raise ValidationError.for_field(
            "collection", "Collection name cannot contain '$' or NUL characters", name
        )
    if name.startswith(_RESERVED_PREFIX):
        raise ValidationError.for_field(
            "collection", "System collections cannot be accessed", name
        )
    return name


def parse_object_id(value: Any, field: str = "id") -> ObjectId:
    """
    Parse a document or schema identifier.

    Raises:
        ValidationError: If ``value`` is not a 24-character hex ObjectId
    """
    try:
        return coerce_object_id(value)
    except ValueError as e:
        raise ValidationError.for_field(field, f"Invalid ID format: {e}", value) from e


def index_descriptors(index_info: dict[str, dict[str, Any]]) -> list[dict[str, Any]]:
    """Flatten ``index_information()`` into ``{name, key, ...options}`` dicts."""
    descriptors = []
    for name, info in index_info.items():
        descriptor: dict[str, Any] = {"name": name, "key": dict(info.get("key", []))}
        for option, value in info.items():
            if option not in ("key", "v", "ns"):
                descriptor[option] = value
        descriptors.append(descriptor)
    return descriptors


# =============================================================================
# Driver error translation
# =============================================================================


def _duplicate_key_field(exc: DuplicateKeyError) -> str | None:
    """Extract the offending field from a duplicate key error.

    Prefers the structured ``keyValue``/``keyPattern`` details that servers
    since 4.2 include; falls back to the ``dup key: { field: ... }`` text.
    """
    details = exc.details or {}
    for key in ("keyValue", "keyPattern"):
        value = details.get(key)
        if isinstance(value, dict) and value:
            return next(iter(value))

    text = details.get("errmsg") or str(exc)
    match = re.search(r"dup key: \{\s*:?\s*\"?([\w.]+)\"?\s*:", text)
    if match:
        return match.group(1)
    match = re.search(r"index: ([\w.]+?)_-?1", text)
    return match.group(1) if match else None


# =============================================================================
# Database Manager
# =============================================================================


class DatabaseManager:
    """
    Manages the MongoDB client and database handle.

    The client is created lazily on first use so that constructing the
    manager never blocks on server selection.
    """

    def __init__(
        self,
        uri: str = DEFAULT_URI,
        database: str | None = None,
        *,
        client: MongoClient | None = None,
        server_timeout_ms: int = DEFAULT_SERVER_TIMEOUT_MS,
    ):
        """
        Initialize the database manager.

        Args:
            uri: MongoDB connection string
            database: Database name (default: the one named in the URI)
            client: Pre-built client (tests pass a mongomock client)
            server_timeout_ms: Server selection timeout for the driver
        """
        self.uri = uri
        self.server_timeout_ms = server_timeout_ms
        self._client = client
        self._database_name = database

    @property
    def client(self) -> MongoClient:
        if self._client is None:
            self._client = MongoClient(
                self.uri,
                serverSelectionTimeoutMS=self.server_timeout_ms,
            )
        return self._client

    @property
    def database_name(self) -> str:
        if self._database_name is None:
            self._database_name = self.client.get_default_database(DEFAULT_DATABASE).name
        return self._database_name

    @property
    def db(self) -> Database:
        return self.client[self.database_name]

    def collection(self, name: str) -> Collection:
        """Get a collection handle by validated name."""
        return self.db[validate_collection_name(name)]

    def list_collection_names(self) -> list[str]:
        """Names of all user collections, sorted."""
        with self.guard("listing collections"):
            names = self.db.list_collection_names()
        return sorted(n for n in names if not n.startswith(_RESERVED_PREFIX))

    def collection_exists(self, name: str) -> bool:
        return validate_collection_name(name) in self.list_collection_names()

    def ping(self) -> bool:
        """Check that the server answers."""
        try:
            self.client.admin.command("ping")
        except PyMongoError as e:
            logger.warning(f"MongoDB ping failed: {e}")
            return False
        return True

    def close(self) -> None:
        """Close the client and its connection pool."""
        if self._client is not None:
            self._client.close()
            self._client = None

    # -------------------------------------------------------------------------
    # Statistics
    # -------------------------------------------------------------------------

    def collection_stats(self, name: str) -> dict[str, Any]:
        """``collStats`` for one collection, or an empty dict if unsupported."""
        return self._run_stats({"collStats": validate_collection_name(name)})

    def database_stats(self) -> dict[str, Any]:
        """``dbStats`` for the database, or an empty dict if unsupported."""
        return self._run_stats({"dbStats": 1})

    def _run_stats(self, command: dict[str, Any]) -> dict[str, Any]:
        try:
            return dict(self.db.command(command))
        except OperationFailure as e:
            logger.debug(f"Statistics command {next(iter(command))} unavailable: {e}")
            return {}

    # -------------------------------------------------------------------------
    # Error translation
    # -------------------------------------------------------------------------

    @contextmanager
    def guard(self, action: str) -> Iterator[None]:
        """
        Translate driver exceptions raised inside the block.

        Duplicate keys become :class:`ConflictError` naming the field; every
        other driver failure becomes :class:`StoreError` with the driver
        message preserved and the original exception chained.

        Args:
            action: Short description used in the error message
                (e.g. ``"creating document"``)
        """
        try:
            yield
        except DuplicateKeyError as exc:
            field = _duplicate_key_field(exc)
            if field:
                msg = f"Duplicate value for unique field '{field}'"
            else:
                msg = "Duplicate value violates a unique index"
            raise ConflictError(msg, field=field) from exc
        except PyMongoError as exc:
            logger.error(f"MongoDB error while {action}: {exc}")
            raise StoreError(f"Error {action}: {exc}") from exc
