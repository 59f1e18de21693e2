"""Prometheus metrics collection for cartridge-porter."""

from prometheus_client import CollectorRegistry, Counter, Gauge, start_http_server
import structlog

logger = structlog.get_logger(__name__)


class MetricsCollector:
    """Collects and exposes Prometheus metrics for cartridge-porter."""

    def __init__(self, prometheus_config):
        """Initialize metrics collector."""
        self.config = prometheus_config
        self.registry = CollectorRegistry()
        self._server = None

        self._init_metrics()

    def _init_metrics(self):
        """Initialize Prometheus metrics."""
        self.documents_processed_total = Counter(
            'cartridge_porter_documents_processed_total',
            'Total number of source documents processed',
            ['collection'],
            registry=self.registry
        )

        self.rows_written_total = Counter(
            'cartridge_porter_rows_written_total',
            'Total number of rows upserted into the destination',
            ['table'],
            registry=self.registry
        )

        self.rows_skipped_total = Counter(
            'cartridge_porter_rows_skipped_total',
            'Total number of rows skipped',
            ['table', 'reason'],
            registry=self.registry
        )

        self.schema_changes_total = Counter(
            'cartridge_porter_schema_changes_total',
            'Total number of column additions and type changes',
            ['table', 'change_type'],
            registry=self.registry
        )

        self.error_count_total = Counter(
            'cartridge_porter_error_count_total',
            'Total number of errors that aborted an export',
            ['collection', 'error_type'],
            registry=self.registry
        )

        self.export_progress = Gauge(
            'cartridge_porter_export_progress_percent',
            'Percentage of the current collection exported',
            ['collection'],
            registry=self.registry
        )

    async def start_server(self):
        """Start the Prometheus metrics server."""
        if not self.config.enabled:
            return

        logger.info("Starting Prometheus metrics server", port=self.config.port)
        self._server = start_http_server(self.config.port, registry=self.registry)

    async def stop_server(self):
        """Stop the Prometheus metrics server."""
        if self._server:
            logger.info("Stopping Prometheus metrics server")
            server, _thread = self._server
            server.shutdown()
            self._server = None

    def record_document(self, collection: str):
        self.documents_processed_total.labels(collection=collection).inc()

    def record_row_written(self, table: str):
        self.rows_written_total.labels(table=table).inc()

    def record_row_skipped(self, table: str, reason: str):
        self.rows_skipped_total.labels(table=table, reason=reason).inc()

    def record_schema_change(self, table: str, added: int, retyped: int):
        """Record column additions and type changes applied to a table."""
        if added:
            self.schema_changes_total.labels(table=table, change_type="add_column").inc(added)
        if retyped:
            self.schema_changes_total.labels(table=table, change_type="modify_column_type").inc(retyped)

    def record_error(self, collection: str, error_type: str):
        self.error_count_total.labels(collection=collection, error_type=error_type).inc()

    def record_progress(self, collection: str, percent: float):
        self.export_progress.labels(collection=collection).set(percent)
