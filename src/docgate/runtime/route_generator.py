"""
Route generator - builds the FastAPI routes of the docgate HTTP API.

Handlers are thin adapters: they parse the request, call one core
operation and wrap the result in the response envelope

    {"success": true, "message"?, "data"?, "pagination"?}

Errors raised by the core are rendered by ``exception_handlers``.
Handlers are synchronous; FastAPI runs them in its worker thread pool, which
suits the blocking MongoDB driver.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Body, Request
from fastapi.responses import JSONResponse, Response

from docgate.runtime import backup as backup_codec
from docgate.runtime import serialization
from docgate.runtime.errors import NotFoundError, ValidationError
from docgate.runtime.serialization import to_jsonable, utc_now
from docgate.specs.schema import SchemaDefinition

if TYPE_CHECKING:
    from docgate.runtime.server import DocgateServices


# =============================================================================
# Response helpers
# =============================================================================


def envelope(
    data: Any = None,
    message: str | None = None,
    pagination: dict[str, int] | None = None,
    status_code: int = 200,
    success: bool = True,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Wrap a result in the standard response envelope."""
    content: dict[str, Any] = {"success": success}
    if message:
        content["message"] = message
    if data is not None:
        content["data"] = to_jsonable(data)
    if pagination is not None:
        content["pagination"] = pagination
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def extended_json_envelope(data: Any, message: str | None = None) -> Response:
    """Envelope rendered as relaxed Extended JSON (lossless ObjectIds and dates)."""
    content: dict[str, Any] = {"success": True}
    if message:
        content["message"] = message
    content["data"] = data
    return Response(content=serialization.dumps(content), media_type="application/json")


def schema_data(schema: SchemaDefinition) -> dict[str, Any]:
    return schema.model_dump(mode="json", by_alias=True)


# =============================================================================
# Health
# =============================================================================


def create_health_handler(services: DocgateServices) -> Callable[..., Any]:
    def handler() -> JSONResponse:
        connected = services.db_manager.ping()
        return envelope(
            message="API is running",
            data={
                "database": "connected" if connected else "unavailable",
                "timestamp": utc_now(),
            },
        )

    return handler


# =============================================================================
# Schema handlers
# =============================================================================


def create_schema_list_handler(services: DocgateServices) -> Callable[..., Any]:
    def handler() -> JSONResponse:
        schemas = services.registry.list_active()
        return envelope(data=[schema_data(s) for s in schemas])

    return handler


def create_schema_create_handler(services: DocgateServices) -> Callable[..., Any]:
    def handler(payload: dict[str, Any] = Body(...)) -> JSONResponse:
        schema = services.registry.create(payload)
        return envelope(
            data=schema_data(schema),
            message="Schema created successfully",
            status_code=201,
        )

    return handler


def create_schema_read_handler(services: DocgateServices) -> Callable[..., Any]:
    def handler(schema_id: str) -> JSONResponse:
        return envelope(data=schema_data(services.registry.get(schema_id)))

    return handler


def create_schema_by_collection_handler(services: DocgateServices) -> Callable[..., Any]:
    def handler(name: str) -> JSONResponse:
        schema = services.registry.get_by_collection_name(name)
        if schema is None:
            raise NotFoundError(f"No active schema for collection '{name}'")
        return envelope(data=schema_data(schema))

    return handler


def create_schema_update_handler(services: DocgateServices) -> Callable[..., Any]:
    def handler(schema_id: str, payload: dict[str, Any] = Body(...)) -> JSONResponse:
        schema = services.registry.update(schema_id, payload)
        return envelope(data=schema_data(schema), message="Schema updated successfully")

    return handler


def create_schema_delete_handler(services: DocgateServices) -> Callable[..., Any]:
    def handler(schema_id: str) -> JSONResponse:
        services.registry.soft_delete(schema_id)
        return envelope(message="Schema deleted successfully")

    return handler


def create_schema_validate_handler(services: DocgateServices) -> Callable[..., Any]:
    def handler(schema_id: str, payload: dict[str, Any] = Body(...)) -> JSONResponse:
        """Validate ``payload["data"]`` against a schema without persisting it."""
        data = payload.get("data")
        if not isinstance(data, dict):
            raise ValidationError.for_field("data", "Data must be a JSON object", data)
        schema = services.registry.get(schema_id)
        compiled = services.cache.compiler.compile(schema.collection_name, schema)
        cleaned = compiled.validate(data)
        return envelope(data={"valid": True, "data": cleaned}, message="Data is valid")

    return handler


def create_schema_collections_handler(services: DocgateServices) -> Callable[..., Any]:
    def handler(schema_id: str) -> JSONResponse:
        """A schema with the statistics of the collection it governs."""
        return envelope(data=services.collections.schema_collection(schema_id))

    return handler


def create_schema_export_handler(services: DocgateServices) -> Callable[..., Any]:
    def handler(schema_id: str) -> JSONResponse:
        exported = services.registry.export(schema_id)
        filename = f"{exported['collectionName']}-schema.json"
        return envelope(
            data=exported,
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    return handler


# =============================================================================
# Collection and database handlers
# =============================================================================


def create_collections_list_handler(services: DocgateServices) -> Callable[..., Any]:
    def handler() -> JSONResponse:
        return envelope(data=services.collections.list_collections())

    return handler


def create_collection_describe_handler(services: DocgateServices) -> Callable[..., Any]:
    def handler(name: str) -> JSONResponse:
        return envelope(data=services.collections.describe(name))

    return handler


def create_collection_analyze_handler(services: DocgateServices) -> Callable[..., Any]:
    def handler(name: str) -> JSONResponse:
        return envelope(data=services.collections.analyze(name))

    return handler


def create_database_info_handler(services: DocgateServices) -> Callable[..., Any]:
    def handler() -> JSONResponse:
        return envelope(data=services.collections.database_info())

    return handler


def create_collection_create_handler(services: DocgateServices) -> Callable[..., Any]:
    def handler(payload: dict[str, Any] = Body(...)) -> JSONResponse:
        name = payload.get("name")
        options = payload.get("options") or {}
        if not isinstance(options, dict):
            raise ValidationError.for_field("options", "Options must be a JSON object", options)
        created = services.collections.create_collection(name, options)
        return envelope(data=created, message=f"Collection '{name}' created", status_code=201)

    return handler


def create_collection_drop_handler(services: DocgateServices) -> Callable[..., Any]:
    def handler(name: str) -> JSONResponse:
        services.collections.drop_collection(name)
        return envelope(message=f"Collection '{name}' dropped")

    return handler


def create_index_create_handler(services: DocgateServices) -> Callable[..., Any]:
    def handler(name: str, payload: dict[str, Any] = Body(...)) -> JSONResponse:
        keys = payload.get("keys") or payload.get("fields")
        options = payload.get("options") or {}
        index_name = services.collections.create_index(name, keys, options)
        return envelope(data={"name": index_name}, message="Index created", status_code=201)

    return handler


def create_index_drop_handler(services: DocgateServices) -> Callable[..., Any]:
    def handler(name: str, index_name: str) -> JSONResponse:
        services.collections.drop_index(name, index_name)
        return envelope(message=f"Index '{index_name}' dropped")

    return handler


def create_database_query_handler(services: DocgateServices) -> Callable[..., Any]:
    def handler(payload: dict[str, Any] = Body(...)) -> JSONResponse:
        """Run a read-only find, findOne, count, distinct or aggregate."""
        name = payload.get("collection")
        if not isinstance(name, str) or not name:
            raise ValidationError.for_field("collection", "Collection name is required", name)
        operation = payload.get("operation")
        if not isinstance(operation, str):
            raise ValidationError.for_field("operation", "Operation is required", operation)
        result = services.collections.run_query(
            name, operation, payload.get("query"), payload.get("options")
        )
        return envelope(data=result)

    return handler


def create_backup_handler(services: DocgateServices) -> Callable[..., Any]:
    def handler(payload: dict[str, Any] | None = Body(None)) -> Response:
        payload = payload or {}
        names = payload.get("collections") or None
        include_data = payload.get("includeData", True)
        backup = services.backups.export(names, include_data=bool(include_data))
        return extended_json_envelope(
            backup.to_document(),
            message=f"Backed up {len(backup.collections)} collections",
        )

    return handler


def create_restore_handler(services: DocgateServices) -> Callable[..., Any]:
    def handler(payload: dict[str, Any] = Body(...)) -> JSONResponse:
        if "backup" not in payload:
            raise ValidationError.for_field("backup", "Backup data is required")
        # Re-read the body as Extended JSON so $oid/$date wrappers become BSON values.
        decoded = serialization.loads(serialization.dumps(payload["backup"]))
        backup = backup_codec.parse_backup(decoded)
        report = services.backups.restore(backup, payload.get("collections") or None)
        message = (
            f"Restored {len(report.results)} collections"
            if report.completed
            else "Restore stopped at a failing collection"
        )
        return envelope(data=report.to_document(), message=message, success=report.completed)

    return handler


# =============================================================================
# Universal document handlers
# =============================================================================


def create_document_list_handler(services: DocgateServices) -> Callable[..., Any]:
    def handler(collection: str, request: Request) -> JSONResponse:
        query = services.translator.translate(request.query_params.multi_items())
        page = services.store.list(collection, query)
        return envelope(data=page.items, pagination=page.pagination())

    return handler


def create_document_create_handler(services: DocgateServices) -> Callable[..., Any]:
    def handler(collection: str, payload: dict[str, Any] = Body(...)) -> JSONResponse:
        doc = services.store.create(collection, payload)
        return envelope(data=doc, message="Document created successfully", status_code=201)

    return handler


def create_document_stats_handler(services: DocgateServices) -> Callable[..., Any]:
    def handler(collection: str) -> JSONResponse:
        return envelope(data=services.store.stats(collection))

    return handler


def create_document_bulk_handler(services: DocgateServices) -> Callable[..., Any]:
    def handler(collection: str, payload: dict[str, Any] = Body(...)) -> JSONResponse:
        result = services.store.bulk(collection, payload.get("operation"), payload.get("data"))
        return envelope(
            data=result.summary(),
            message=f"Bulk {result.operation}: {result.succeeded} of {result.requested} succeeded",
        )

    return handler


def create_document_read_handler(services: DocgateServices) -> Callable[..., Any]:
    def handler(collection: str, document_id: str) -> JSONResponse:
        return envelope(data=services.store.get_by_id(collection, document_id))

    return handler


def create_document_replace_handler(services: DocgateServices) -> Callable[..., Any]:
    def handler(
        collection: str, document_id: str, payload: dict[str, Any] = Body(...)
    ) -> JSONResponse:
        doc = services.store.replace(collection, document_id, payload)
        return envelope(data=doc, message="Document updated successfully")

    return handler


def create_document_patch_handler(services: DocgateServices) -> Callable[..., Any]:
    def handler(
        collection: str, document_id: str, payload: dict[str, Any] = Body(...)
    ) -> JSONResponse:
        doc = services.store.patch(collection, document_id, payload)
        return envelope(data=doc, message="Document updated successfully")

    return handler


def create_document_delete_handler(services: DocgateServices) -> Callable[..., Any]:
    def handler(collection: str, document_id: str) -> JSONResponse:
        services.store.delete(collection, document_id)
        return envelope(message="Document deleted successfully")

    return handler


# =============================================================================
# Route Generator
# =============================================================================


class RouteGenerator:
    """
    Builds the API router.

    Fixed routes (health, schemas, collections, database) are registered
    before the universal ``/{collection}`` routes, which would otherwise
    shadow them.
    """

    def __init__(self, services: DocgateServices):
        self.services = services
        self._router = APIRouter()

    def _add_route(
        self,
        method: str,
        path: str,
        factory: Callable[[DocgateServices], Callable[..., Any]],
        summary: str,
        tags: list[str],
    ) -> None:
        """Add a route to the router."""
        self._router.add_api_route(
            path,
            factory(self.services),
            methods=[method],
            summary=summary,
            tags=tags,
        )

    def generate_all_routes(self) -> APIRouter:
        """Register every route and return the router."""
        add = self._add_route

        add("GET", "/health", create_health_handler, "Liveness check", ["health"])

        tags = ["schemas"]
        add("GET", "/schemas", create_schema_list_handler, "List active schemas", tags)
        add("POST", "/schemas", create_schema_create_handler, "Register a schema", tags)
        add(
            "GET",
            "/schemas/collection/{name}",
            create_schema_by_collection_handler,
            "Active schema of a collection",
            tags,
        )
        add("GET", "/schemas/export/{schema_id}", create_schema_export_handler, "Export a schema", tags)
        add("GET", "/schemas/{schema_id}", create_schema_read_handler, "Get a schema", tags)
        add("PUT", "/schemas/{schema_id}", create_schema_update_handler, "Update a schema", tags)
        add("DELETE", "/schemas/{schema_id}", create_schema_delete_handler, "Deactivate a schema", tags)
        add(
            "POST",
            "/schemas/{schema_id}/validate",
            create_schema_validate_handler,
            "Validate data against a schema",
            tags,
        )
        add(
            "GET",
            "/schemas/{schema_id}/collections",
            create_schema_collections_handler,
            "Schema with collection statistics",
            tags,
        )

        tags = ["collections"]
        add("GET", "/collections", create_collections_list_handler, "List collections", tags)
        add("GET", "/collections/{name}", create_collection_describe_handler, "Describe a collection", tags)
        add(
            "POST",
            "/collections/{name}/analyze",
            create_collection_analyze_handler,
            "Analyze collection fields",
            tags,
        )

        tags = ["database"]
        add("GET", "/database/info", create_database_info_handler, "Database statistics", tags)
        add("POST", "/database/collections", create_collection_create_handler, "Create a collection", tags)
        add(
            "DELETE",
            "/database/collections/{name}",
            create_collection_drop_handler,
            "Drop a collection",
            tags,
        )
        add(
            "POST",
            "/database/collections/{name}/indexes",
            create_index_create_handler,
            "Create an index",
            tags,
        )
        add(
            "DELETE",
            "/database/collections/{name}/indexes/{index_name}",
            create_index_drop_handler,
            "Drop an index",
            tags,
        )
        add("POST", "/database/backup", create_backup_handler, "Export collections", tags)
        add("POST", "/database/restore", create_restore_handler, "Restore collections", tags)
        add("POST", "/database/query", create_database_query_handler, "Run a read-only query", tags)

        tags = ["documents"]
        add("GET", "/{collection}", create_document_list_handler, "List documents", tags)
        add("POST", "/{collection}", create_document_create_handler, "Create a document", tags)
        add("GET", "/{collection}/stats", create_document_stats_handler, "Collection statistics", tags)
        add("POST", "/{collection}/bulk", create_document_bulk_handler, "Bulk operation", tags)
        add("GET", "/{collection}/{document_id}", create_document_read_handler, "Get a document", tags)
        add("PUT", "/{collection}/{document_id}", create_document_replace_handler, "Replace a document", tags)
        add("PATCH", "/{collection}/{document_id}", create_document_patch_handler, "Patch a document", tags)
        add(
            "DELETE",
            "/{collection}/{document_id}",
            create_document_delete_handler,
            "Delete a document",
            tags,
        )

        return self._router

    @property
    def router(self) -> APIRouter:
        """Get the generated router."""
        return self._router
