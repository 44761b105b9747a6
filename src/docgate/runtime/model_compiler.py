"""
Model compiler - builds Pydantic validators from SchemaDefinitions.

Each field definition becomes one field of a dynamically created Pydantic
model. Field names are mapped through aliases, so any MongoDB field name
(``first-name``, ``meta.version``, ``class``) compiles to a valid model.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Annotated, Any

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, create_model
from pydantic import ValidationError as PydanticValidationError

from docgate.runtime.errors import ValidationError
from docgate.specs.field_types import FieldKind, python_type_for, resolve_kind
from docgate.specs.schema import FieldDefinition, IndexDefinition, SchemaDefinition

logger = logging.getLogger(__name__)

# Owned by the DocumentStore, never validated against a schema.
SYSTEM_FIELDS = frozenset({"_id", "createdAt", "updatedAt", "__v"})

_CONSTRAINED_CONFIG = ConfigDict(extra="ignore", arbitrary_types_allowed=True)
_SCHEMALESS_CONFIG = ConfigDict(extra="allow", arbitrary_types_allowed=True)

Check = Callable[[Any], None]


# =============================================================================
# Compiled Model
# =============================================================================


@dataclass
class CompiledModel:
    """
    Runtime validator for one collection.

    Attributes:
        collection_name: Collection the model validates
        definition: Source schema, or None when schemaless
        model: Validator for full documents
        partial_model: All-optional variant for field-subset updates
        indexes: Index descriptors implied by the schema
        defaulted: Names of fields that carry a default value
        indexed_collections: Physical collections the DocumentStore has
            already created the schema indexes on
    """

    collection_name: str
    definition: SchemaDefinition | None
    model: type[BaseModel]
    partial_model: type[BaseModel]
    indexes: list[IndexDefinition] = field(default_factory=list)
    defaulted: frozenset[str] = frozenset()
    indexed_collections: set[str] = field(default_factory=set)

    @property
    def is_schemaless(self) -> bool:
        return self.definition is None

    def validate(self, document: dict[str, Any], partial: bool = False) -> dict[str, Any]:
        """
        Validate a document and return its cleaned form.

        System fields are stripped first. A full validation returns the
        supplied fields plus any defaults (and, when schemaless, every
        supplied field); a partial validation returns only supplied fields.

        Raises:
            ValidationError: With one ``{field, message, value}`` entry per
                violation
        """
        data = {k: v for k, v in document.items() if k not in SYSTEM_FIELDS}
        model = self.partial_model if partial else self.model
        try:
            instance = model.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError.from_pydantic(
                e, f"Validation failed for collection '{self.collection_name}'"
            ) from e

        keep = set(data) if partial else set(data) | self.defaulted
        dumped = instance.model_dump(by_alias=True)
        return {k: v for k, v in dumped.items() if k in keep}


# =============================================================================
# Constraint checks
# =============================================================================


def _enum_check(allowed: list[str]) -> Check:
    allowed_set = set(allowed)

    def check(value: Any) -> None:
        if value not in allowed_set:
            raise ValueError(f"must be one of: {', '.join(allowed)}")

    return check


def _pattern_check(pattern: re.Pattern[str]) -> Check:
    def check(value: Any) -> None:
        if not pattern.search(value):
            raise ValueError(f"does not match pattern '{pattern.pattern}'")

    return check


def _range_check(minimum: float | None, maximum: float | None) -> Check:
    def check(value: Any) -> None:
        if minimum is not None and value < minimum:
            raise ValueError(f"must be greater than or equal to {minimum:g}")
        if maximum is not None and value > maximum:
            raise ValueError(f"must be less than or equal to {maximum:g}")

    return check


def _length_check(min_length: int | None, max_length: int | None) -> Check:
    def check(value: Any) -> None:
        if min_length is not None and len(value) < min_length:
            raise ValueError(f"must be at least {min_length} characters")
        if max_length is not None and len(value) > max_length:
            raise ValueError(f"must be at most {max_length} characters")

    return check


def _build_checks(fd: FieldDefinition, collection_name: str) -> list[Check]:
    """Collect the value constraints that apply to the field's kind."""
    kind = resolve_kind(fd.type)
    checks: list[Check] = []

    if kind == FieldKind.STRING:
        if fd.enum:
            checks.append(_enum_check(fd.enum))
        if fd.min_length is not None or fd.max_length is not None:
            checks.append(_length_check(fd.min_length, fd.max_length))
        if fd.pattern:
            try:
                checks.append(_pattern_check(re.compile(fd.pattern)))
            except re.error as e:
                logger.warning(
                    f"Ignoring invalid pattern for {collection_name}.{fd.name}: {e}"
                )
    elif kind == FieldKind.NUMBER:
        if fd.min is not None or fd.max is not None:
            checks.append(_range_check(fd.min, fd.max))

    return checks


def _run_checks(checks: list[Check]) -> Callable[[Any], Any]:
    def validator(value: Any) -> Any:
        if value is None:
            return value
        for check in checks:
            check(value)
        return value

    return validator


# =============================================================================
# Field construction
# =============================================================================


def _field_annotation(fd: FieldDefinition, collection_name: str) -> Any:
    python_type = python_type_for(fd.type)
    checks = _build_checks(fd, collection_name)
    if checks:
        python_type = Annotated[python_type, AfterValidator(_run_checks(checks))]
    return python_type


def _optional(python_type: Any) -> Any:
    return python_type if python_type is Any else python_type | None


def _build_field_info(fd: FieldDefinition, collection_name: str) -> tuple[Any, Any]:
    """
    Build the Pydantic field tuple for create_model.

    Returns:
        Tuple of (type, FieldInfo)
    """
    python_type = _field_annotation(fd, collection_name)

    if fd.has_default:
        return (python_type, Field(default=fd.default, alias=fd.name, description=fd.description))
    if fd.required:
        return (python_type, Field(alias=fd.name, description=fd.description))
    return (_optional(python_type), Field(default=None, alias=fd.name, description=fd.description))


def _build_partial_field_info(fd: FieldDefinition, collection_name: str) -> tuple[Any, Any]:
    python_type = _field_annotation(fd, collection_name)
    return (_optional(python_type), Field(default=None, alias=fd.name))


def _model_name(collection_name: str, suffix: str = "") -> str:
    base = re.sub(r"\W", "_", collection_name).title().replace("_", "") or "Collection"
    return f"{base}Document{suffix}"


def _declared_fields(definition: SchemaDefinition) -> list[FieldDefinition]:
    """Field definitions minus system fields; a repeated name keeps its last definition."""
    by_name: dict[str, FieldDefinition] = {}
    for fd in definition.fields:
        if fd.name in SYSTEM_FIELDS:
            continue
        by_name.pop(fd.name, None)
        by_name[fd.name] = fd
    return list(by_name.values())


# =============================================================================
# Compiler
# =============================================================================


class ModelCompiler:
    """
    Compiles SchemaDefinitions into CompiledModels.

    Pure: never touches the database.

    Example:
        >>> compiled = ModelCompiler().compile("orders", definition)
        >>> compiled.validate({"customer": "A", "total": 10})
    """

    def compile(self, collection_name: str, definition: SchemaDefinition | None) -> CompiledModel:
        """
        Compile the validator for a collection.

        Args:
            collection_name: Collection the model validates
            definition: Active schema, or None for a schemaless model
        """
        if definition is None:
            model = create_model(
                _model_name(collection_name),
                __config__=_SCHEMALESS_CONFIG,
                __doc__=f"Schemaless document in {collection_name}",
            )
            return CompiledModel(
                collection_name=collection_name,
                definition=None,
                model=model,
                partial_model=model,
            )

        fields = _declared_fields(definition)
        full_fields: dict[str, Any] = {}
        partial_fields: dict[str, Any] = {}
        for i, fd in enumerate(fields):
            # Positional attribute names; the alias carries the stored name.
            attr = f"f_{i}"
            full_fields[attr] = _build_field_info(fd, collection_name)
            partial_fields[attr] = _build_partial_field_info(fd, collection_name)

        model = create_model(
            _model_name(collection_name),
            __config__=_CONSTRAINED_CONFIG,
            __doc__=definition.description or f"Document in {collection_name}",
            **full_fields,
        )
        partial_model = create_model(
            _model_name(collection_name, "Update"),
            __config__=_CONSTRAINED_CONFIG,
            __doc__=f"Partial update of a document in {collection_name}",
            **partial_fields,
        )

        logger.debug(f"Compiled model for '{collection_name}' with {len(fields)} fields")
        return CompiledModel(
            collection_name=collection_name,
            definition=definition,
            model=model,
            partial_model=partial_model,
            indexes=definition.index_definitions(),
            defaulted=frozenset(fd.name for fd in fields if fd.has_default),
        )
