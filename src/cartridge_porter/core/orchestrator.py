"""Export driver turning document collections into relational tables."""

import time
from collections import Counter
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any, Callable, Optional

import structlog

from ..connectors.base import DocumentCollection, DocumentSource, RelationalStore
from ..exceptions import PorterError
from ..mapping.flattener import DocumentFlattener
from ..mapping.schema_evolver import SchemaEvolver
from ..mapping.table_namer import TableNamer
from ..mapping.type_inference import TypeInferencer
from ..mapping.types import ArrayExtraction, FlatRow, short_identifier
from ..monitoring.metrics import MetricsCollector
from .config import ExportConfig

logger = structlog.get_logger(__name__)

SYSTEM_COLLECTION_PREFIX = "system."


class SkipReason(Enum):
    """Why a row was left out of the export."""

    SKIP_LIST = "skip_list"
    MISSING_TABLE = "missing_table"
    TOO_MANY_COLUMNS = "too_many_columns"


@dataclass
class ExportStats:
    """Counters of one export run."""

    collections: int = 0
    documents: int = 0
    rows_written: int = 0
    schema_changes: int = 0
    skipped: Counter = field(default_factory=Counter)

    @property
    def rows_skipped(self) -> int:
        return sum(self.skipped.values())


class ProgressReporter:
    """Throttled progress logging for one collection.

    A report is emitted at most once per interval and only when the
    completed percentage has moved since the previous report.
    """

    def __init__(
        self,
        label: str,
        total: int,
        interval_seconds: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.label = label
        self.total = total
        self.interval_seconds = interval_seconds
        self.clock = clock

        self.processed = 0
        self.started_at = clock()
        self._last_report_at = self.started_at
        self._last_percent = 0

    @property
    def percent(self) -> int:
        if not self.total:
            return 100
        return min(100, self.processed * 100 // self.total)

    def advance(self, count: int = 1) -> bool:
        """Count processed documents and report if due.

        Returns:
            True if a progress report was emitted
        """
        self.processed += count
        now = self.clock()
        percent = self.percent

        if now - self._last_report_at < self.interval_seconds:
            return False
        if percent <= self._last_percent:
            return False

        elapsed = now - self.started_at
        remaining = elapsed / self.processed * max(self.total - self.processed, 0)

        logger.info(
            "Export progress",
            collection=self.label,
            percent=percent,
            processed=self.processed,
            total=self.total,
            eta=str(timedelta(seconds=int(remaining))),
        )

        self._last_report_at = now
        self._last_percent = percent
        return True

    def finish(self) -> float:
        """Return the seconds elapsed since the reporter was created."""
        return self.clock() - self.started_at


class ExportOrchestrator:
    """Drives the export of a document source into a relational store.

    Per-run state (sequence counters, missing and truncated tables, natural
    key tallies, statistics) lives on the instance and is reset by ``run()``.
    Documents are processed one at a time, children and upsert included,
    before the next document is pulled.
    """

    def __init__(
        self,
        source: DocumentSource,
        store: RelationalStore,
        config: Optional[ExportConfig] = None,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the orchestrator.

        Args:
            source: Document source to read collections from
            store: Relational store receiving the rows
            config: Export settings, defaults when omitted
            metrics: Optional metrics collector
            clock: Monotonic clock used for progress reporting
        """
        self.source = source
        self.store = store
        self.config = config or ExportConfig()
        self.metrics = metrics
        self.clock = clock

        self.namer = TableNamer(
            rules=[(rule.pattern, rule.replacement) for rule in self.config.naming_rules],
            key_field=self.config.natural_key_field,
        )
        self.flattener = DocumentFlattener(self.config.max_inline_elements)
        self.inferencer = TypeInferencer(self.config.max_varchar_length)
        self.evolver = SchemaEvolver(store, self.inferencer, metrics)
        self.skip_tables = {short_identifier(name) for name in self.config.skip_tables}

        self._reset()

    def _reset(self) -> None:
        self.sequences: Counter[str] = Counter()
        self.missing_tables: set[str] = set()
        self.known_tables: set[str] = set()
        self.truncated_tables: set[str] = set()
        self.stats = ExportStats()
        self._reported_skips: set[tuple[str, SkipReason]] = set()
        self.namer.reset()

    async def run(self) -> ExportStats:
        """Export every non-system collection of the source."""
        self._reset()

        collections = await self.source.list_collections()
        logger.info(
            "Starting export",
            collections=len(collections),
            data_only=self.config.data_only,
            limit=self.config.limit,
        )

        for collection in collections:
            if collection.name.startswith(SYSTEM_COLLECTION_PREFIX):
                continue
            await self.export_collection(collection)

        logger.info(
            "Export completed",
            collections=self.stats.collections,
            documents=self.stats.documents,
            rows_written=self.stats.rows_written,
            rows_skipped=self.stats.rows_skipped,
            schema_changes=self.stats.schema_changes,
        )
        if self.namer.key_counts:
            logger.debug("Natural key tally", keys=dict(self.namer.key_counts.most_common(20)))

        return self.stats

    async def export_collection(self, collection: DocumentCollection) -> int:
        """Export all documents of one collection.

        Args:
            collection: Collection to export

        Returns:
            Number of documents processed

        Raises:
            UnknownTypeError: If a value's type cannot be inferred
            StoreError: If the store fails
        """
        log = logger.bind(collection=collection.name)

        total = await collection.count()
        if self.config.limit:
            total = min(total, self.config.limit)

        log.info("Exporting collection", documents=total)
        progress = ProgressReporter(
            collection.name, total, self.config.progress_interval_seconds, self.clock
        )

        try:
            async for document in collection.find(limit=self.config.limit):
                await self._export_document(document, collection.name)

                self.stats.documents += 1
                if self.metrics:
                    self.metrics.record_document(collection.name)
                if progress.advance() and self.metrics:
                    self.metrics.record_progress(collection.name, progress.percent)
        except PorterError as e:
            log.error(
                "Collection export failed",
                error=str(e),
                error_type=type(e).__name__,
                processed=progress.processed,
            )
            if self.metrics:
                self.metrics.record_error(collection.name, type(e).__name__)
            raise

        elapsed = progress.finish()
        self.stats.collections += 1
        if self.metrics:
            self.metrics.record_progress(collection.name, 100)

        log.info(
            "Collection exported",
            documents=progress.processed,
            elapsed=str(timedelta(seconds=int(elapsed))),
        )
        return progress.processed

    async def _export_document(self, document: Mapping[str, Any], collection_name: str) -> None:
        table = short_identifier(self.namer.resolve(document, collection_name))
        row, arrays = self.flattener.flatten(document)

        if not await self._admit(table):
            return

        for column_name, elements in arrays.items():
            await self._export_array(
                ArrayExtraction(
                    parent_table=table,
                    parent_id=row.get("_id"),
                    column_name=column_name,
                    elements=elements,
                )
            )

        await self._write_row(table, row)

    async def _admit(self, table: str) -> bool:
        """Apply the skip list and the data-only table checks."""
        if table in self.skip_tables:
            self._skip(table, SkipReason.SKIP_LIST)
            return False

        if not self.config.data_only or table in self.known_tables:
            return True

        if table in self.missing_tables:
            self._skip(table, SkipReason.MISSING_TABLE)
            return False

        if await self.store.get_table_def(table) is None:
            self.missing_tables.add(table)
            self._skip(table, SkipReason.MISSING_TABLE)
            return False

        self.known_tables.add(table)
        return True

    async def _export_array(self, extraction: ArrayExtraction) -> None:
        """Export the elements of an array attribute into its child table.

        Mapping elements are flattened, scalars are stored under the column
        name, and arrays nested inside elements are dropped.
        """
        table = short_identifier(extraction.child_table)

        for index, element in enumerate(extraction.elements):
            if isinstance(element, Mapping):
                values, nested = self.flattener.flatten(element)
                if nested:
                    logger.debug(
                        "Dropping nested arrays", table=table, columns=sorted(nested)
                    )
            elif isinstance(element, (list, tuple)):
                logger.debug("Dropping nested array element", table=table, index=index)
                continue
            else:
                values = {extraction.column_name: self.flattener.flatten_scalar(element)}

            row: FlatRow = {"_parentid": extraction.parent_id, "_index": index}
            row.update((name, value) for name, value in values.items() if name not in row)

            if not await self._admit(table):
                continue
            await self._write_row(table, row)

    async def _write_row(self, table: str, row: FlatRow) -> None:
        row = {short_identifier(name): value for name, value in row.items()}
        if len(row) > self.config.max_columns:
            self._skip(table, SkipReason.TOO_MANY_COLUMNS, columns=len(row))
            return

        self.sequences[table] += 1
        row["_num"] = self.sequences[table]

        if not self.config.data_only:
            if await self.evolver.ensure_structure(row, table):
                self.stats.schema_changes += 1

        await self._upsert(table, row)

    async def _upsert(self, table: str, row: FlatRow) -> None:
        if self.config.data_only and table not in self.truncated_tables:
            await self.store.delete(table, truncate=True)
            self.truncated_tables.add(table)

        await self.store.insert(table, row, replace=True)

        self.stats.rows_written += 1
        if self.metrics:
            self.metrics.record_row_written(table)

    def _skip(self, table: str, reason: SkipReason, **details: Any) -> None:
        self.stats.skipped[reason] += 1
        if self.metrics:
            self.metrics.record_row_skipped(table, reason.value)

        key = (table, reason)
        if key in self._reported_skips:
            logger.debug("Row skipped", table=table, reason=reason.value, **details)
        else:
            self._reported_skips.add(key)
            logger.warning("Skipping rows", table=table, reason=reason.value, **details)


__all__ = ["ExportOrchestrator", "ExportStats", "ProgressReporter", "SkipReason"]
