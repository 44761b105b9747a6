"""
Server configuration.

Groups the options of the HTTP server and its database connection into a
single object, loaded from environment variables by ``ServerConfig.from_env``.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from docgate.runtime.database import DEFAULT_SERVER_TIMEOUT_MS, DEFAULT_URI
from docgate.runtime.schema_registry import DEFAULT_SCHEMA_COLLECTION

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3000
DEFAULT_API_VERSION = "v1"
DEFAULT_LOG_DIR = ".docgate/logs"


def _int_env(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _list_env(env: Mapping[str, str], name: str) -> list[str] | None:
    raw = env.get(name)
    if not raw:
        return None
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class ServerConfig:
    """
    Configuration for DocgateApp.

    Attributes:
        mongodb_uri: MongoDB connection string
        database: Database name; None uses the one in the URI (or ``docgate``)
        schema_collection: Collection holding schema definitions
        host/port: Bind address for ``serve``
        api_version: Path segment of the API prefix (``/api/<version>``)
        log_dir: Directory for the JSONL log; None for console only
        log_level: Minimum log level name
        server_timeout_ms: Driver server selection timeout
        cors_origins: Allowed CORS origins; None disables CORS
    """

    # Database settings
    mongodb_uri: str = DEFAULT_URI
    database: str | None = None
    schema_collection: str = DEFAULT_SCHEMA_COLLECTION
    server_timeout_ms: int = DEFAULT_SERVER_TIMEOUT_MS

    # HTTP settings
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    api_version: str = DEFAULT_API_VERSION
    cors_origins: list[str] | None = None

    # Logging
    log_dir: Path | None = field(default_factory=lambda: Path(DEFAULT_LOG_DIR))
    log_level: str = "INFO"

    @property
    def api_prefix(self) -> str:
        return f"/api/{self.api_version.strip('/')}"

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> ServerConfig:
        """
        Load configuration from environment variables.

        Environment variables:
            - MONGODB_URI → mongodb_uri
            - DOCGATE_DATABASE → database
            - DOCGATE_SCHEMA_COLLECTION → schema_collection
            - HOST / PORT → host / port
            - API_VERSION → api_version
            - DOCGATE_LOG_DIR → log_dir (empty string disables file logging)
            - LOG_LEVEL → log_level
            - DOCGATE_SERVER_TIMEOUT_MS → server_timeout_ms
            - CORS_ORIGINS → cors_origins (comma-separated)
        """
        env = os.environ if env is None else env

        log_dir_raw = env.get("DOCGATE_LOG_DIR", DEFAULT_LOG_DIR)
        return cls(
            mongodb_uri=env.get("MONGODB_URI") or DEFAULT_URI,
            database=env.get("DOCGATE_DATABASE") or None,
            schema_collection=env.get("DOCGATE_SCHEMA_COLLECTION") or DEFAULT_SCHEMA_COLLECTION,
            server_timeout_ms=_int_env(env, "DOCGATE_SERVER_TIMEOUT_MS", DEFAULT_SERVER_TIMEOUT_MS),
            host=env.get("HOST") or DEFAULT_HOST,
            port=_int_env(env, "PORT", DEFAULT_PORT),
            api_version=env.get("API_VERSION") or DEFAULT_API_VERSION,
            cors_origins=_list_env(env, "CORS_ORIGINS"),
            log_dir=Path(log_dir_raw) if log_dir_raw else None,
            log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
        )
