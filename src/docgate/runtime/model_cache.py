"""
Process-wide cache of compiled models, keyed by collection name.

Compilation runs outside the lock. A per-name generation counter makes sure
a compile that raced with an invalidation never stores a stale model.
"""

from __future__ import annotations

import logging
import threading

from docgate.runtime.model_compiler import CompiledModel, ModelCompiler
from docgate.runtime.schema_registry import SchemaRegistry
from docgate.specs.schema import normalize_collection_name

logger = logging.getLogger(__name__)


class ModelCache:
    """
    Lazily compiled models for every collection in use.

    Subscribes to the registry so schema mutations drop the affected entry.
    """

    def __init__(self, registry: SchemaRegistry, compiler: ModelCompiler | None = None):
        self.registry = registry
        self.compiler = compiler or ModelCompiler()
        self._models: dict[str, CompiledModel] = {}
        self._generations: dict[str, int] = {}
        self._epoch = 0
        self._lock = threading.Lock()
        registry.subscribe(self.invalidate)

    def get_or_compile(self, collection_name: str) -> CompiledModel:
        """Return the cached model, compiling it from the active schema if needed."""
        key = normalize_collection_name(collection_name)
        with self._lock:
            cached = self._models.get(key)
            if cached is not None:
                return cached
            generation = self._generation(key)

        definition = self.registry.get_by_collection_name(key)
        compiled = self.compiler.compile(key, definition)

        with self._lock:
            if self._generation(key) != generation:
                # Invalidated while compiling; hand out the fresh result uncached.
                return compiled
            existing = self._models.setdefault(key, compiled)
        if existing is compiled:
            logger.debug(
                f"Cached {'schemaless' if definition is None else 'schema'} model "
                f"for '{collection_name}'"
            )
        return existing

    def invalidate(self, collection_name: str) -> None:
        """Drop the cached model for a collection."""
        key = normalize_collection_name(collection_name)
        with self._lock:
            self._generations[key] = self._generations.get(key, 0) + 1
            removed = self._models.pop(key, None)
        if removed is not None:
            logger.debug(f"Invalidated cached model for '{collection_name}'")

    def clear(self) -> None:
        """Drop every cached model."""
        with self._lock:
            self._epoch += 1
            self._models.clear()

    def _generation(self, key: str) -> tuple[int, int]:
        return (self._epoch, self._generations.get(key, 0))

    def __contains__(self, collection_name: str) -> bool:
        with self._lock:
            return normalize_collection_name(collection_name) in self._models

    def __len__(self) -> int:
        with self._lock:
            return len(self._models)
