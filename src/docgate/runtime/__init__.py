"""
docgate runtime.

Turns stored schema definitions into validating models and serves
collections over HTTP.

Example:
    >>> from docgate.runtime import ServerConfig, create_app
    >>> app = create_app(ServerConfig.from_env())
"""

from docgate.runtime.backup import BackupRestoreEngine
from docgate.runtime.collection_manager import CollectionManager
from docgate.runtime.config import ServerConfig
from docgate.runtime.database import DatabaseManager
from docgate.runtime.document_store import DocumentStore
from docgate.runtime.errors import (
    ConflictError,
    DocgateError,
    NotFoundError,
    StoreError,
    ValidationError,
)
from docgate.runtime.model_cache import ModelCache
from docgate.runtime.model_compiler import CompiledModel, ModelCompiler
from docgate.runtime.query_translator import QueryTranslator
from docgate.runtime.schema_registry import SchemaRegistry
from docgate.runtime.server import DocgateApp, DocgateServices, build_services, create_app, run_app

__all__ = [
    # Core components
    "DatabaseManager",
    "SchemaRegistry",
    "ModelCompiler",
    "CompiledModel",
    "ModelCache",
    "QueryTranslator",
    "DocumentStore",
    "CollectionManager",
    "BackupRestoreEngine",
    # Errors
    "DocgateError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "StoreError",
    # Server
    "ServerConfig",
    "DocgateApp",
    "DocgateServices",
    "build_services",
    "create_app",
    "run_app",
]
