"""Document-to-relational mapping: flattening, typing, naming and schema evolution."""

from .flattener import DocumentFlattener
from .schema_evolver import SchemaEvolver
from .table_namer import DEFAULT_NAMING_RULES, TableNamer
from .type_inference import TypeInferencer
from .types import ArrayExtraction, ColumnDef, TableDef, ValueKind, classify, short_identifier

__all__ = [
    "DocumentFlattener",
    "SchemaEvolver",
    "TableNamer",
    "DEFAULT_NAMING_RULES",
    "TypeInferencer",
    "ArrayExtraction",
    "ColumnDef",
    "TableDef",
    "ValueKind",
    "classify",
    "short_identifier",
]
