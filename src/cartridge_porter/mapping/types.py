"""Value kinds, column type tags and table definitions."""

import hashlib
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from bson import ObjectId, Timestamp

from ..exceptions import UnknownTypeError

# Column type tags
INT = "int"
DOUBLE = "double"
TEXT = "text"
DATETIME = "datetime"

_VARCHAR_PATTERN = re.compile(r"^varchar\((\d+)\)$")

# Longest table or column name the relational store keeps, in UTF-8 bytes
MAX_IDENTIFIER_BYTES = 63

# A flattened document: column name -> scalar value
FlatRow = dict[str, Any]


class ValueKind(Enum):
    """Closed set of scalar kinds a flattened document may carry."""

    NULL = "null"
    INTEGER = "integer"
    DOUBLE = "double"
    STRING = "string"
    DATETIME = "datetime"
    IDENTIFIER = "identifier"


def classify(value: Any) -> ValueKind:
    """Resolve the kind of a raw source value.

    Raises:
        UnknownTypeError: If the value is not one of the supported kinds.
    """
    if value is None:
        return ValueKind.NULL
    if isinstance(value, ObjectId):
        return ValueKind.IDENTIFIER
    # bool is an int subclass and is stored as 0/1
    if isinstance(value, int):
        return ValueKind.INTEGER
    if isinstance(value, float):
        return ValueKind.DOUBLE
    if isinstance(value, str):
        return ValueKind.STRING
    if isinstance(value, (datetime, Timestamp)):
        return ValueKind.DATETIME
    raise UnknownTypeError(value)


def varchar(length: int) -> str:
    """Build a ``varchar(n)`` type tag."""
    return f"varchar({length})"


def varchar_length(type_tag: str) -> Optional[int]:
    """Return ``n`` for a ``varchar(n)`` tag, None for any other tag."""
    match = _VARCHAR_PATTERN.match(type_tag)
    if match:
        return int(match.group(1))
    return None


def short_identifier(name: str, max_bytes: int = MAX_IDENTIFIER_BYTES) -> str:
    """Fit a table or column name into ``max_bytes`` UTF-8 bytes.

    Longer names keep a prefix and end in ``_`` plus eight hex digits of their
    SHA-1, so the result is stable across runs and distinct for names that
    share the prefix.
    """
    encoded = name.encode("utf-8")
    if len(encoded) <= max_bytes:
        return name

    digest = hashlib.sha1(encoded).hexdigest()[:8]
    prefix = encoded[: max_bytes - len(digest) - 1].decode("utf-8", errors="ignore")
    return f"{prefix}_{digest}"


@dataclass
class ColumnDef:
    """Definition of a destination column."""

    name: str
    type: str
    required: bool = False


@dataclass
class TableDef:
    """Column set and primary key of a destination table."""

    columns: dict[str, ColumnDef] = field(default_factory=dict)
    primary_key: Optional[list[str]] = None

    def infer_primary_key(self) -> Optional[list[str]]:
        """Primary key implied by the current columns."""
        if "_id" in self.columns:
            return ["_id"]
        if "_parentid" in self.columns and "_index" in self.columns:
            return ["_parentid", "_index"]
        return None


@dataclass
class ArrayExtraction:
    """An array attribute of a parent row bound for a child table."""

    parent_table: str
    parent_id: Any
    column_name: str
    elements: list[Any]

    @property
    def child_table(self) -> str:
        return f"{self.parent_table}__{self.column_name}"


__all__ = [
    "INT",
    "DOUBLE",
    "TEXT",
    "DATETIME",
    "FlatRow",
    "ValueKind",
    "classify",
    "varchar",
    "varchar_length",
    "short_identifier",
    "MAX_IDENTIFIER_BYTES",
    "ColumnDef",
    "TableDef",
    "ArrayExtraction",
]
