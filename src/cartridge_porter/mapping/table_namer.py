"""Destination table naming from natural document keys."""

import re
from collections import Counter
from collections.abc import Mapping, Sequence
from typing import Any, Optional

import structlog

logger = structlog.get_logger(__name__)

# Ordered (pattern, replacement) rules, most specific first. They collapse
# key-value store style keys such as "tag:abc:topics" into "tag_topics".
DEFAULT_NAMING_RULES: list[tuple[str, str]] = [
    (r"^tag:[^:]+", "tag:#"),
    (r"(?<=:)(?:undefined|null|NaN)(?=:|$)", "#"),
    (r"\d+", "#"),
    (r"[:#]+", "_"),
    (r"^_+|_+$", ""),
]

_NUMERIC_PATTERN = re.compile(r"^[+-]?\d+(?:\.\d+)?$")


class TableNamer:
    """Resolves the destination table for a document."""

    def __init__(
        self,
        rules: Optional[Sequence[tuple[str, str]]] = None,
        key_field: str = "_key",
    ):
        """Initialize the namer.

        Args:
            rules: Ordered (regex, replacement) pairs applied to natural keys
            key_field: Document field holding the natural key
        """
        if rules is None:
            rules = DEFAULT_NAMING_RULES
        self.rules = [(re.compile(pattern), replacement) for pattern, replacement in rules]
        self.key_field = key_field
        self.key_counts: Counter[str] = Counter()

    def normalize(self, key: str) -> str:
        """Apply the naming rules to a natural key."""
        normalized = key
        for pattern, replacement in self.rules:
            normalized = pattern.sub(replacement, normalized)
        return normalized

    def resolve(self, document: Mapping[str, Any], collection_name: str) -> str:
        """Return the table name for a document.

        Falls back to the collection name when the document has no string
        natural key or its key normalizes to nothing usable.
        """
        raw_key = document.get(self.key_field)
        if not isinstance(raw_key, str):
            return collection_name

        key = self.normalize(raw_key)
        self.key_counts[key] += 1

        if not key or _NUMERIC_PATTERN.match(key):
            return collection_name
        return key

    def reset(self) -> None:
        self.key_counts.clear()


__all__ = ["TableNamer", "DEFAULT_NAMING_RULES"]
