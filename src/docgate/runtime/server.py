"""
docgate server - wires the core components into a FastAPI application.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pymongo import MongoClient

from docgate import __version__
from docgate.runtime.backup import BackupRestoreEngine
from docgate.runtime.collection_manager import CollectionManager
from docgate.runtime.config import ServerConfig
from docgate.runtime.database import DatabaseManager
from docgate.runtime.document_store import DocumentStore
from docgate.runtime.errors import StoreError
from docgate.runtime.exception_handlers import register_exception_handlers
from docgate.runtime.logging import setup_logging
from docgate.runtime.model_cache import ModelCache
from docgate.runtime.query_translator import QueryTranslator
from docgate.runtime.route_generator import RouteGenerator
from docgate.runtime.schema_registry import SchemaRegistry

logger = logging.getLogger(__name__)


# =============================================================================
# Service container
# =============================================================================


@dataclass
class DocgateServices:
    """The core components shared by every request."""

    db_manager: DatabaseManager
    registry: SchemaRegistry
    cache: ModelCache
    translator: QueryTranslator
    store: DocumentStore
    collections: CollectionManager
    backups: BackupRestoreEngine


def build_services(
    config: ServerConfig,
    client: MongoClient | None = None,
    db_manager: DatabaseManager | None = None,
) -> DocgateServices:
    """
    Construct the core components for a configuration.

    Args:
        config: Server configuration
        client: Pre-built MongoDB client (tests pass a mongomock client)
        db_manager: Pre-built database manager; overrides ``client``
    """
    if db_manager is None:
        db_manager = DatabaseManager(
            config.mongodb_uri,
            config.database,
            client=client,
            server_timeout_ms=config.server_timeout_ms,
        )
    registry = SchemaRegistry(db_manager, config.schema_collection)
    cache = ModelCache(registry)
    return DocgateServices(
        db_manager=db_manager,
        registry=registry,
        cache=cache,
        translator=QueryTranslator(),
        store=DocumentStore(db_manager, cache),
        collections=CollectionManager(db_manager, registry, cache),
        backups=BackupRestoreEngine(db_manager, cache),
    )


# =============================================================================
# Application builder
# =============================================================================


class DocgateApp:
    """
    Builds the docgate FastAPI application.

    Example:
        >>> builder = DocgateApp(ServerConfig.from_env())
        >>> app = builder.build()
    """

    def __init__(self, config: ServerConfig | None = None, services: DocgateServices | None = None):
        self.config = config or ServerConfig()
        self.services = services or build_services(self.config)
        self._app: FastAPI | None = None

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI) -> AsyncIterator[None]:
        try:
            self.services.registry.ensure_indexes()
        except StoreError as e:
            logger.warning(f"Could not ensure schema registry indexes: {e.message}")
        logger.info(
            f"docgate serving database '{self.services.db_manager.database_name}' "
            f"at {self.config.api_prefix}"
        )
        yield
        self.services.db_manager.close()

    def build(self) -> FastAPI:
        """
        Build the FastAPI application.

        Returns:
            FastAPI application instance
        """
        self._app = FastAPI(
            title="docgate",
            description="Schema-aware document access layer for MongoDB",
            version=__version__,
            lifespan=self._lifespan,
        )

        if self.config.cors_origins:
            self._app.add_middleware(
                CORSMiddleware,
                allow_origins=self.config.cors_origins,
                allow_credentials=True,
                allow_methods=["*"],
                allow_headers=["*"],
            )

        register_exception_handlers(self._app)

        generator = RouteGenerator(self.services)
        self._app.include_router(generator.generate_all_routes(), prefix=self.config.api_prefix)
        return self._app

    @property
    def app(self) -> FastAPI | None:
        """Get the built application, if any."""
        return self._app


# =============================================================================
# Convenience Functions
# =============================================================================


def create_app(
    config: ServerConfig | None = None,
    client: MongoClient | None = None,
    services: DocgateServices | None = None,
) -> FastAPI:
    """
    Create the docgate FastAPI application.

    Args:
        config: Server configuration (default: ``ServerConfig.from_env()``)
        client: Pre-built MongoDB client
        services: Pre-built core components; overrides ``client``

    Example:
        >>> app = create_app()
        >>> # Run with uvicorn: uvicorn docgate.runtime.server:create_app --factory
    """
    config = config or ServerConfig.from_env()
    if services is None:
        services = build_services(config, client=client)
    return DocgateApp(config, services).build()


def run_app(
    config: ServerConfig | None = None,
    host: str | None = None,
    port: int | None = None,
    **uvicorn_options: Any,
) -> None:
    """
    Run the docgate server with uvicorn.

    Args:
        config: Server configuration (default: ``ServerConfig.from_env()``)
        host: Host to bind to (default: ``config.host``)
        port: Port to bind to (default: ``config.port``)
        **uvicorn_options: Extra options for ``uvicorn.run``
    """
    import uvicorn

    config = config or ServerConfig.from_env()
    setup_logging(config.log_dir, config.log_level)
    app = create_app(config)
    uvicorn.run(
        app,
        host=host or config.host,
        port=port or config.port,
        log_level=config.log_level.lower(),
        **uvicorn_options,
    )
