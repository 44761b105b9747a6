"""
Error taxonomy for the docgate core.

Every failure the core reports is a subclass of :class:`DocgateError`. The
HTTP adapter maps them onto the JSON envelope using ``status_code``; the CLI
prints ``message`` and ``errors``.
"""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError as PydanticValidationError


class DocgateError(Exception):
    """Base class for errors raised by the docgate core."""

    status_code = 500

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None):
        self.message = message
        self.errors = errors or []
        super().__init__(message)


class ValidationError(DocgateError):
    """Malformed input: bad identifier, out-of-range pagination, wrong field type.

    ``errors`` holds one ``{"field", "message", "value"}`` entry per violation.
    """

    status_code = 400

    @classmethod
    def for_field(cls, field: str, message: str, value: Any = None) -> ValidationError:
        """Build an error that names a single offending field."""
        return cls(
            f"Validation failed: {field}: {message}",
            errors=[{"field": field, "message": message, "value": value}],
        )

    @classmethod
    def from_pydantic(
        cls,
        exc: PydanticValidationError,
        message: str = "Validation failed",
        prefix: str | None = None,
    ) -> ValidationError:
        """
        Convert a pydantic error into one entry per violation.

        Args:
            exc: The pydantic ValidationError
            message: Top-level message
            prefix: Path prepended to every field (e.g. ``items.3``)
        """
        errors = []
        for err in exc.errors():
            path = ".".join(str(part) for part in err["loc"])
            if prefix:
                path = f"{prefix}.{path}" if path else prefix
            errors.append(
                {
                    "field": path,
                    "message": err["msg"],
                    "value": None if err["type"] == "missing" else err.get("input"),
                }
            )
        return cls(message, errors=errors)

    @property
    def fields(self) -> list[str]:
        """Names of the offending fields, in report order."""
        return [e["field"] for e in self.errors if e.get("field")]


class NotFoundError(DocgateError):
    """Missing document, schema or collection."""

    status_code = 404


class ConflictError(DocgateError):
    """Duplicate schema registration or unique-index violation."""

    status_code = 409

    def __init__(
        self,
        message: str,
        errors: list[dict[str, Any]] | None = None,
        field: str | None = None,
    ):
        self.field = field
        if field and not errors:
            errors = [{"field": field, "message": message}]
        super().__init__(message, errors)


class StoreError(DocgateError):
    """Underlying database failure; the driver message is kept for diagnostics."""

    status_code = 500
