"""
docgate specification types.

Pydantic and dataclass types shared by the runtime, the HTTP adapter and
the CLI: schema definitions, parsed queries, bulk results and backup sets.
"""

from docgate.specs.backup import (
    BackupSet,
    CollectionBackup,
    CollectionRestoreResult,
    RestoreReport,
)
from docgate.specs.documents import (
    BulkItemResult,
    BulkItemStatus,
    BulkOperation,
    BulkResult,
    DocumentPage,
)
from docgate.specs.query import (
    FilterCondition,
    FilterOperator,
    ParsedQuery,
    QueryOperation,
    SortField,
)
from docgate.specs.schema import (
    FieldDefinition,
    IndexDefinition,
    SchemaCreate,
    SchemaDefinition,
    SchemaUpdate,
    normalize_collection_name,
)

__all__ = [
    # Schemas
    "FieldDefinition",
    "IndexDefinition",
    "SchemaCreate",
    "SchemaDefinition",
    "SchemaUpdate",
    "normalize_collection_name",
    # Queries
    "FilterCondition",
    "FilterOperator",
    "ParsedQuery",
    "QueryOperation",
    "SortField",
    # Documents
    "DocumentPage",
    "BulkOperation",
    "BulkItemStatus",
    "BulkItemResult",
    "BulkResult",
    # Backups
    "BackupSet",
    "CollectionBackup",
    "CollectionRestoreResult",
    "RestoreReport",
]
