"""
docgate - schema-aware document access layer for MongoDB.

Collections are described at runtime by schema definitions stored in the
database itself. Documents written through docgate are validated against
the compiled schema of their collection; collections without a schema are
served as-is.

Packages:
- docgate.specs: Schema, query, bulk and backup types
- docgate.runtime: Registry, compiler, store, HTTP server
- docgate.cli: Command-line interface
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
