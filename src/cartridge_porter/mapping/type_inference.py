"""Column type inference and widening."""

import re
from typing import Any, Optional

import structlog
from dateutil.parser import isoparse

from ..exceptions import UnknownTypeError
from .types import (
    DATETIME,
    DOUBLE,
    INT,
    TEXT,
    FlatRow,
    ValueKind,
    classify,
    varchar,
    varchar_length,
)

logger = structlog.get_logger(__name__)

ISO_TIMESTAMP_PATTERN = re.compile(
    r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(?:\.\d{1,6})?(?:Z|[+-]00:?00)$"
)

IDENTIFIER_TYPE = varchar(24)
FALLBACK_TYPE = varchar(255)
LONGEST_VARCHAR = 512


def _parses_as_timestamp(value: str) -> bool:
    try:
        isoparse(value)
    except ValueError:
        return False
    return True


class TypeInferencer:
    """Guesses column types from values and reconciles conflicting guesses."""

    def __init__(self, max_varchar_length: int = 512):
        """Initialize the inferencer.

        Args:
            max_varchar_length: Strings longer than this are stored as text
        """
        self.max_varchar_length = max_varchar_length
        self._buckets = sorted({50, 100, 255, max_varchar_length})

    def guess_type(
        self,
        value: Any,
        field: Optional[str] = None,
        row: Optional[FlatRow] = None,
    ) -> str:
        """Guess the column type tag for a value.

        Args:
            value: Flattened scalar value
            field: Column name, for diagnostics
            row: Row the value belongs to, for diagnostics

        Returns:
            Type tag such as ``int`` or ``varchar(100)``

        Raises:
            UnknownTypeError: If the value kind is not supported
        """
        try:
            kind = classify(value)
        except UnknownTypeError:
            logger.error("Cannot infer column type", field=field, value=repr(value))
            raise UnknownTypeError(value, field=field, row=row) from None

        if kind is ValueKind.IDENTIFIER:
            return IDENTIFIER_TYPE
        if kind is ValueKind.DATETIME:
            return DATETIME
        if kind in (ValueKind.NULL, ValueKind.INTEGER):
            return INT
        if kind is ValueKind.DOUBLE:
            return DOUBLE
        return self._guess_string_type(value)

    def _guess_string_type(self, value: str) -> str:
        length = len(value)

        if length > self.max_varchar_length:
            return TEXT
        if ISO_TIMESTAMP_PATTERN.match(value) and _parses_as_timestamp(value):
            return DATETIME

        for bucket in self._buckets:
            if length <= bucket:
                return varchar(bucket)
        return varchar(LONGEST_VARCHAR)

    @staticmethod
    def widen(type_a: str, type_b: str) -> str:
        """Return the most permissive type covering both tags.

        Commutative and idempotent; the result is never narrower than a
        varchar on either side.
        """
        type_a, type_b = sorted((type_a, type_b))

        if type_a == type_b:
            return type_a
        if TEXT in (type_a, type_b):
            return TEXT
        if (type_a, type_b) == (DOUBLE, INT):
            return DOUBLE

        length_a = varchar_length(type_a)
        length_b = varchar_length(type_b)
        if length_a is not None and length_b is not None:
            return varchar(max(length_a, length_b))

        widest = max(length_a or 0, length_b or 0)
        if widest > 255:
            return varchar(widest)
        return FALLBACK_TYPE


__all__ = ["TypeInferencer", "ISO_TIMESTAMP_PATTERN"]
