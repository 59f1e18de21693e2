"""Incremental evolution of destination table definitions."""

from typing import TYPE_CHECKING, Optional

import structlog

from ..monitoring.metrics import MetricsCollector
from .type_inference import TypeInferencer
from .types import ColumnDef, FlatRow, TableDef

if TYPE_CHECKING:
    from ..connectors.base import RelationalStore

logger = structlog.get_logger(__name__)


class SchemaEvolver:
    """Grows table definitions so that they can hold incoming rows."""

    def __init__(
        self,
        store: "RelationalStore",
        inferencer: TypeInferencer,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.store = store
        self.inferencer = inferencer
        self.metrics = metrics

    async def ensure_structure(self, row: FlatRow, table_name: str) -> bool:
        """Make sure the destination table can accommodate a row.

        New attributes become new columns; attributes whose inferred type
        differs from the column type widen the column. The table definition
        is written back only when something changed.

        Args:
            row: Flattened row about to be written
            table_name: Destination table

        Returns:
            True if the table definition was changed

        Raises:
            UnknownTypeError: If a value's type cannot be inferred
            StoreError: If the store cannot be read or updated
        """
        table_def = await self.store.get_table_def(table_name)
        if table_def is None:
            table_def = TableDef()

        added: list[str] = []
        retyped: list[str] = []

        for name, value in row.items():
            guessed = self.inferencer.guess_type(value, field=name, row=row)
            column = table_def.columns.get(name)

            if column is None:
                table_def.columns[name] = ColumnDef(name=name, type=guessed)
                added.append(name)
            elif column.type != guessed:
                widened = self.inferencer.widen(column.type, guessed)
                if widened != column.type:
                    logger.debug(
                        "Widening column",
                        table=table_name,
                        column=name,
                        old_type=column.type,
                        new_type=widened,
                    )
                    column.type = widened
                    retyped.append(name)

        if not added and not retyped:
            return False

        table_def.primary_key = table_def.infer_primary_key()
        await self.store.set_table_def(table_name, table_def)

        logger.info(
            "Table structure updated",
            table=table_name,
            added_columns=added,
            retyped_columns=retyped,
            primary_key=table_def.primary_key,
        )
        if self.metrics:
            self.metrics.record_schema_change(table_name, len(added), len(retyped))

        return True


__all__ = ["SchemaEvolver"]
