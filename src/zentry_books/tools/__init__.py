"""Action catalog, validation and execution."""

from zentry_books.tools.definitions import (
    ActionCatalog,
    ActionKind,
    CatalogEntry,
    FieldSpec,
    FieldType,
    ProposedAction,
    build_catalog,
)
from zentry_books.tools.executor import ActionExecutor, ActionOutcome
from zentry_books.tools.validator import ActionValidator

__all__ = [
    # Catalog
    "ActionCatalog",
    "ActionKind",
    "CatalogEntry",
    "FieldSpec",
    "FieldType",
    "ProposedAction",
    "build_catalog",
    # Validation
    "ActionValidator",
    # Execution
    "ActionExecutor",
    "ActionOutcome",
]
