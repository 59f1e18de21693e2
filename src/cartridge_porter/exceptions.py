"""Exception types raised by cartridge-porter."""

import json
from typing import Any, Optional


class PorterError(Exception):
    """Base class for errors that abort an export run."""


class UnknownTypeError(PorterError, ValueError):
    """A value whose column type cannot be inferred."""

    def __init__(
        self,
        value: Any,
        field: Optional[str] = None,
        row: Optional[dict[str, Any]] = None,
    ):
        self.value = value
        self.field = field
        self.row = row

        message = f"Unknown type for: {_describe(value)}"
        if field is not None:
            message += f" (field {field!r})"
        super().__init__(message)


class StoreError(PorterError, RuntimeError):
    """A failure reported by the relational store."""

    def __init__(self, message: str, table: Optional[str] = None):
        self.table = table
        if table is not None:
            message = f"{message} (table {table!r})"
        super().__init__(message)


def _describe(value: Any) -> str:
    try:
        return json.dumps(value)
    except (TypeError, ValueError):
        return f"<{type(value).__name__}> {value!r}"


__all__ = ["PorterError", "UnknownTypeError", "StoreError"]
