"""Main runner for cartridge-porter exports."""

from typing import Any, Optional

import structlog

from ..connectors.factory import ConnectorFactory
from ..monitoring.metrics import MetricsCollector
from .config import PorterConfig
from .logging import setup_logging
from .orchestrator import ExportOrchestrator, ExportStats

logger = structlog.get_logger(__name__)


class PorterRunner:
    """Wires connectors, metrics and the orchestrator for one export run."""

    def __init__(
        self,
        config: PorterConfig,
        connector_factory: Optional[ConnectorFactory] = None,
        configure_logging: bool = True,
    ):
        """Initialize the runner with configuration."""
        self.config = config
        self.connector_factory = connector_factory or ConnectorFactory()
        self.metrics = MetricsCollector(config.monitoring.prometheus)
        self.orchestrator: Optional[ExportOrchestrator] = None

        if configure_logging:
            setup_logging(config.monitoring)

    async def run(self) -> ExportStats:
        """Run the export.

        Connected connectors are always disconnected, also when the export fails.

        Returns:
            Statistics of the run
        """
        logger.info(
            "Starting cartridge-porter",
            source_database=self.config.source.database,
            destination_database=self.config.destination.database,
        )

        await self.metrics.start_server()

        source = self.connector_factory.create_source_connector(self.config.source)
        store = self.connector_factory.create_destination_connector(
            self.config.destination
        )

        try:
            async with source, store:
                self.orchestrator = ExportOrchestrator(
                    source, store, self.config.export, metrics=self.metrics
                )
                return await self.orchestrator.run()

        except Exception as e:
            logger.error("Export failed", error=str(e), error_type=type(e).__name__)
            raise
        finally:
            await self.metrics.stop_server()

    def get_status(self) -> dict[str, Any]:
        """Get current status of the runner."""
        stats = self.orchestrator.stats if self.orchestrator else None
        return {
            "source_database": self.config.source.database,
            "destination_database": self.config.destination.database,
            "data_only": self.config.export.data_only,
            "documents": stats.documents if stats else 0,
            "rows_written": stats.rows_written if stats else 0,
            "rows_skipped": stats.rows_skipped if stats else 0,
            "metrics_enabled": self.config.monitoring.prometheus.enabled,
        }


__all__ = ["PorterRunner"]
