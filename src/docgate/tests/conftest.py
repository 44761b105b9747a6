"""
Shared fixtures for docgate tests.

Every test runs against an in-memory mongomock client, so no MongoDB server
is needed.
"""

from collections.abc import Callable
from typing import Any

import mongomock
import pytest
from fastapi.testclient import TestClient

from docgate.runtime.config import ServerConfig
from docgate.runtime.database import DatabaseManager
from docgate.runtime.document_store import DocumentStore
from docgate.runtime.model_cache import ModelCache
from docgate.runtime.schema_registry import SchemaRegistry
from docgate.runtime.server import build_services, create_app

TEST_DATABASE = "docgate_test"


class OfflineStatsDatabaseManager(DatabaseManager):
    """DatabaseManager whose server statistics commands report nothing."""

    def _run_stats(self, command: dict[str, Any]) -> dict[str, Any]:
        return {}


# =============================================================================
# Core fixtures
# =============================================================================


@pytest.fixture
def mongo_client() -> mongomock.MongoClient:
    """Fresh in-memory MongoDB client."""
    return mongomock.MongoClient()


@pytest.fixture
def make_db_manager(mongo_client) -> Callable[[], DatabaseManager]:
    """Factory for managers sharing the in-memory client."""
    return lambda: OfflineStatsDatabaseManager(database=TEST_DATABASE, client=mongo_client)


@pytest.fixture
def db_manager(make_db_manager) -> DatabaseManager:
    return make_db_manager()


@pytest.fixture
def registry(db_manager) -> SchemaRegistry:
    return SchemaRegistry(db_manager)


@pytest.fixture
def cache(registry) -> ModelCache:
    return ModelCache(registry)


@pytest.fixture
def store(db_manager, cache) -> DocumentStore:
    return DocumentStore(db_manager, cache)


# =============================================================================
# Sample schemas
# =============================================================================


@pytest.fixture
def orders_schema() -> dict[str, Any]:
    """Schema with a required, non-negative amount."""
    return {
        "collectionName": "orders",
        "displayName": "Orders",
        "fields": [{"name": "amount", "type": "Number", "required": True, "min": 0}],
    }


@pytest.fixture
def products_schema() -> dict[str, Any]:
    """Schema exercising every constraint kind."""
    return {
        "collectionName": "Products",
        "displayName": "Products",
        "description": "Catalogue items",
        "fields": [
            {"name": "name", "type": "String", "required": True, "minLength": 2, "maxLength": 40},
            {"name": "sku", "type": "String", "required": True, "pattern": "^[A-Z]{3}-\\d{3}$", "unique": True},
            {"name": "price", "type": "Number", "min": 0, "max": 10000},
            {"name": "status", "type": "String", "enum": ["draft", "live"], "default": "draft"},
            {"name": "inStock", "type": "Boolean"},
            {"name": "tags", "type": "Array"},
        ],
    }


# =============================================================================
# HTTP fixtures
# =============================================================================


@pytest.fixture
def config() -> ServerConfig:
    return ServerConfig(database=TEST_DATABASE, log_dir=None)


@pytest.fixture
def services(config, db_manager):
    return build_services(config, db_manager=db_manager)


@pytest.fixture
def client(config, services) -> TestClient:
    """Test client without lifespan, so the mongomock client stays open."""
    return TestClient(create_app(config, services=services))
