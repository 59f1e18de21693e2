"""Flattening of nested documents into relational rows."""

from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from bson import Timestamp

from .types import FlatRow


def to_iso8601(value: Any) -> str:
    """Render a datetime or BSON timestamp as an ISO-8601 UTC string.

    Naive datetimes are taken to be UTC, which is how pymongo decodes them.
    """
    if isinstance(value, Timestamp):
        value = value.as_datetime()
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class DocumentFlattener:
    """Turns a nested document into a flat row plus its array attributes."""

    def __init__(self, max_inline_elements: int = 25):
        """Initialize the flattener.

        Args:
            max_inline_elements: Mappings with more keys than this are
                exported as child tables instead of being inlined
        """
        self.max_inline_elements = max_inline_elements

    def flatten(
        self, document: Mapping[str, Any], path_prefix: str = ""
    ) -> tuple[FlatRow, dict[str, list[Any]]]:
        """Flatten a document.

        Nested mappings are inlined with ``parent_child`` column names.
        Index-addressable collections are not inlined; they are returned in
        the second mapping, keyed by their flattened column name.

        Args:
            document: Document to flatten
            path_prefix: Prefix for the generated column names

        Returns:
            Tuple of (flat row, array attributes)
        """
        row: FlatRow = {}
        arrays: dict[str, list[Any]] = {}

        for key, value in document.items():
            name = f"{path_prefix}{key}"

            if isinstance(value, Mapping):
                if self._is_collection(value):
                    arrays[name] = list(value.values())
                else:
                    nested_row, nested_arrays = self.flatten(value, f"{name}_")
                    row.update(nested_row)
                    arrays.update(nested_arrays)
            elif isinstance(value, (list, tuple)):
                # Empty arrays have nothing to export
                if value:
                    arrays[name] = list(value)
            else:
                row[name] = self.flatten_scalar(value)

        return row, arrays

    def flatten_scalar(self, value: Any) -> Any:
        """Normalize a single scalar for storage."""
        if isinstance(value, (datetime, Timestamp)):
            return to_iso8601(value)
        return value

    def _is_collection(self, value: Mapping[str, Any]) -> bool:
        return "0" in value or 0 in value or len(value) > self.max_inline_elements


__all__ = ["DocumentFlattener", "to_iso8601"]
