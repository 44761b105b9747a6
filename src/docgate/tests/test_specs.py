"""
Tests for docgate specification types.

Covers field kinds, schema definitions, index definitions, parsed queries
and bulk results.
"""

import pydantic
import pytest
from bson import ObjectId

from docgate.specs import (
    BulkItemResult,
    BulkItemStatus,
    BulkOperation,
    BulkResult,
    DocumentPage,
    FieldDefinition,
    FilterCondition,
    FilterOperator,
    IndexDefinition,
    ParsedQuery,
    SchemaCreate,
    SchemaDefinition,
    SchemaUpdate,
    SortField,
)
from docgate.specs.field_types import (
    FieldKind,
    bson_type_name,
    coerce_object_id,
    is_object_id,
    python_type_for,
    resolve_kind,
)

# =============================================================================
# Field kinds
# =============================================================================


class TestFieldKinds:
    """Tests for the field kind catalog."""

    def test_resolve_known_kind(self):
        assert resolve_kind("String") == FieldKind.STRING
        assert resolve_kind(FieldKind.DATE) == FieldKind.DATE

    def test_unknown_kind_resolves_to_mixed(self):
        """Unknown type names fall back to the unconstrained kind."""
        assert resolve_kind("Decimal") == FieldKind.MIXED
        assert resolve_kind(None) == FieldKind.MIXED

    def test_python_type_for_mixed_is_any(self):
        from typing import Any

        assert python_type_for("Whatever") is Any

    def test_object_id_detection(self):
        oid = ObjectId()
        assert is_object_id(oid)
        assert is_object_id(str(oid))
        assert not is_object_id("not-an-id")
        assert not is_object_id(12)

    def test_coerce_object_id(self):
        oid = ObjectId()
        assert coerce_object_id(str(oid)) == oid
        with pytest.raises(ValueError):
            coerce_object_id("xyz")

    def test_bson_type_names(self):
        assert bson_type_name(None) == "null"
        assert bson_type_name(True) == "bool"
        assert bson_type_name(3) == "int"
        assert bson_type_name(2**40) == "long"
        assert bson_type_name(1.5) == "double"
        assert bson_type_name("x") == "string"
        assert bson_type_name(ObjectId()) == "objectId"
        assert bson_type_name([1]) == "array"
        assert bson_type_name({"a": 1}) == "object"


# =============================================================================
# Schema definitions
# =============================================================================


class TestFieldDefinition:
    """Tests for FieldDefinition parsing."""

    def test_camel_case_aliases(self):
        fd = FieldDefinition.model_validate(
            {"name": "title", "type": "String", "minLength": 1, "maxLength": 5}
        )
        assert fd.min_length == 1
        assert fd.max_length == 5
        assert fd.type == "String"

    def test_unknown_type_rejected_on_input(self):
        with pytest.raises(pydantic.ValidationError):
            FieldDefinition.model_validate({"name": "x", "type": "Decimal"})

    def test_invalid_pattern_rejected(self):
        with pytest.raises(pydantic.ValidationError):
            FieldDefinition.model_validate({"name": "x", "type": "String", "pattern": "("})

    def test_blank_name_rejected(self):
        with pytest.raises(pydantic.ValidationError):
            FieldDefinition.model_validate({"name": "  ", "type": "String"})

    def test_has_default(self):
        assert FieldDefinition(name="n", type="Number", default=0).has_default
        assert not FieldDefinition(name="n", type="Number").has_default


class TestSchemaDefinition:
    """Tests for SchemaCreate, SchemaDefinition and SchemaUpdate."""

    def test_collection_name_normalized(self):
        create = SchemaCreate.model_validate(
            {"collectionName": "  Orders ", "displayName": "Orders"}
        )
        assert create.collection_name == "orders"

    def test_display_name_required(self):
        with pytest.raises(pydantic.ValidationError):
            SchemaCreate.model_validate({"collectionName": "orders", "displayName": " "})

    def test_stored_definition_tolerates_legacy_types(self):
        """Rows read back from the store compile even with unknown types."""
        schema = SchemaDefinition.from_document(
            {
                "_id": ObjectId(),
                "collectionName": "legacy",
                "displayName": "Legacy",
                "fields": [{"name": "price", "type": "Decimal", "pattern": "("}],
            }
        )
        assert schema.fields[0].type == FieldKind.MIXED
        assert schema.fields[0].pattern == "("

    def test_index_definitions_include_field_flags(self):
        schema = SchemaDefinition.model_validate(
            {
                "collectionName": "users",
                "displayName": "Users",
                "fields": [
                    {"name": "email", "type": "String", "unique": True},
                    {"name": "age", "type": "Number", "index": True},
                    {"name": "bio", "type": "String"},
                ],
                "indexes": [{"fields": {"age": -1, "email": 1}}],
            }
        )
        indexes = schema.index_definitions()

        assert [ix.fields for ix in indexes] == [
            {"email": 1},
            {"age": 1},
            {"age": -1, "email": 1},
        ]
        assert indexes[0].unique is True

    def test_to_document_keeps_validation_rules(self):
        schema = SchemaDefinition.model_validate(
            {"collectionName": "a", "displayName": "A", "validationRules": None}
        )
        doc = schema.to_document()
        assert "_id" not in doc
        assert doc["validationRules"] is None
        assert doc["collectionName"] == "a"

    def test_update_set_document_only_supplied_keys(self):
        update = SchemaUpdate.model_validate(
            {"displayName": "Renamed", "collectionName": "other", "isActive": False}
        )
        assert update.to_set_document() == {"displayName": "Renamed"}


class TestIndexDefinition:
    """Tests for IndexDefinition parsing."""

    def test_nested_options_flattened(self):
        index = IndexDefinition.model_validate(
            {"fields": {"email": "asc"}, "options": {"unique": True, "name": "email_u"}}
        )
        assert index.key_spec() == [("email", 1)]
        assert index.index_options() == {"unique": True, "name": "email_u"}

    def test_direction_aliases(self):
        index = IndexDefinition.model_validate({"fields": {"a": "desc", "b": "1"}})
        assert index.fields == {"a": -1, "b": 1}

    def test_invalid_direction_rejected(self):
        with pytest.raises(pydantic.ValidationError):
            IndexDefinition.model_validate({"fields": {"a": 2}})

    def test_empty_fields_rejected(self):
        with pytest.raises(pydantic.ValidationError):
            IndexDefinition.model_validate({"fields": {}})


# =============================================================================
# Queries
# =============================================================================


class TestParsedQuery:
    """Tests for ParsedQuery rendering."""

    def test_defaults(self):
        query = ParsedQuery()
        assert query.filter == {}
        assert query.sort_spec == [("createdAt", -1)]
        assert query.projection_spec is None
        assert query.skip == 0

    def test_skip_from_page(self):
        assert ParsedQuery(page=3, limit=20).skip == 40

    def test_operator_conditions_merge(self):
        query = ParsedQuery(
            conditions=(
                FilterCondition("price", FilterOperator.GT, 100.0),
                FilterCondition("price", FilterOperator.LTE, 500.0),
            )
        )
        assert query.filter == {"price": {"$gt": 100.0, "$lte": 500.0}}

    def test_regex_and_in_rendering(self):
        query = ParsedQuery(
            conditions=(
                FilterCondition("name", FilterOperator.REGEX, "smi"),
                FilterCondition("status", FilterOperator.IN, ("a", "b")),
            )
        )
        assert query.filter == {
            "name": {"$regex": "smi", "$options": "i"},
            "status": {"$in": ["a", "b"]},
        }

    def test_sort_field_parse(self):
        assert SortField.parse("-createdAt") == SortField("createdAt", descending=True)
        assert SortField.parse("name").direction == 1

    def test_projection_spec(self):
        assert ParsedQuery(projection=("a", "b")).projection_spec == {"a": 1, "b": 1}


# =============================================================================
# Documents
# =============================================================================


class TestDocumentResults:
    """Tests for DocumentPage and BulkResult."""

    def test_pages_rounds_up(self):
        page = DocumentPage(total=12, limit=5)
        assert page.pages == 3
        assert page.pagination() == {"page": 1, "limit": 5, "total": 12, "pages": 3}

    def test_empty_page(self):
        assert DocumentPage(total=0, limit=10).pages == 0

    def test_bulk_summary_counts(self):
        result = BulkResult(
            operation=BulkOperation.DELETE,
            requested=3,
            succeeded=2,
            items=[
                BulkItemResult(index=0, id="a", status=BulkItemStatus.DELETED),
                BulkItemResult(index=1, id="b", status=BulkItemStatus.NOT_FOUND),
                BulkItemResult(index=2, id="c", status=BulkItemStatus.DELETED),
            ],
        )
        summary = result.summary()

        assert summary["operation"] == "delete"
        assert summary["notFound"] == 1
        assert summary["failed"] == 0
        assert summary["items"][1]["status"] == "not_found"
        assert not result.is_complete
