"""Prometheus metrics collector for sequelae-mcp.

This module implements metrics collection using prometheus_client, tracking
statement execution, scripts, schema lookups, backups and pool usage.
"""

from prometheus_client import Counter, Gauge, Histogram, start_http_server


class MetricsCollector:
    """Centralized metrics collector using Prometheus client.

    Metrics Categories:
    - Statement metrics: counts by command/status and durations
    - Script metrics: runs by status and transaction mode
    - Schema metrics: requested tables that were not found
    - Backup metrics: runs by status/format and last output size
    - Pool metrics: connections currently borrowed

    Example:
        >>> metrics = MetricsCollector()
        >>> metrics.increment_statement(command="SELECT", status="success")
        >>> metrics.observe_statement_duration(0.012)
    """

    _instance: "MetricsCollector | None" = None

    def __new__(cls) -> "MetricsCollector":
        """Ensure singleton instance."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialize_metrics()
        return cls._instance

    def _initialize_metrics(self) -> None:
        # Statement Metrics
        self.statements: Counter = Counter(
            "sequelae_statements_total",
            "Total number of SQL statements executed",
            labelnames=["command", "status"],
        )

        self.statement_duration: Histogram = Histogram(
            "sequelae_statement_duration_seconds",
            "SQL statement execution duration in seconds",
            buckets=(0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0),
        )

        # Script Metrics
        self.scripts: Counter = Counter(
            "sequelae_scripts_total",
            "Total number of multi-statement scripts executed",
            labelnames=["status", "transactional"],
        )

        # Schema Metrics
        self.missing_tables: Counter = Counter(
            "sequelae_missing_tables_total",
            "Requested tables that were not found during introspection",
        )

        # Backup Metrics
        self.backups: Counter = Counter(
            "sequelae_backups_total",
            "Total number of backup runs",
            labelnames=["status", "format"],
        )

        self.backup_size: Gauge = Gauge(
            "sequelae_last_backup_size_bytes",
            "Size of the last successful backup in bytes",
        )

        # Pool Metrics
        self.pool_connections_in_use: Gauge = Gauge(
            "sequelae_pool_connections_in_use",
            "Number of pooled connections currently borrowed",
        )

    def start_metrics_server(self, port: int) -> None:
        """Start the Prometheus metrics HTTP server.

        Args:
            port: Port number to listen on for metrics scraping.
        """
        start_http_server(port)

    def increment_statement(self, command: str | None, status: str) -> None:
        """Increment statement counter.

        Args:
            command: Command verb (SELECT, INSERT, ...), or None if unknown.
            status: success, error or timeout.
        """
        self.statements.labels(command=command or "UNKNOWN", status=status).inc()

    def observe_statement_duration(self, duration: float) -> None:
        """Record statement duration in seconds."""
        self.statement_duration.observe(duration)

    def increment_script(self, status: str, transactional: bool) -> None:
        """Increment script counter.

        Args:
            status: success or error.
            transactional: Whether the script ran in one transaction.
        """
        self.scripts.labels(status=status, transactional=str(transactional).lower()).inc()

    def increment_missing_tables(self, count: int) -> None:
        """Count requested tables that were not found."""
        if count:
            self.missing_tables.inc(count)

    def increment_backup(self, status: str, backup_format: str) -> None:
        """Increment backup counter.

        Args:
            status: success or error.
            backup_format: pg_dump output format.
        """
        self.backups.labels(status=status, format=backup_format).inc()

    def set_backup_size(self, size_bytes: int) -> None:
        """Record the size of the last successful backup."""
        self.backup_size.set(size_bytes)

    def set_pool_connections_in_use(self, count: int) -> None:
        """Set the number of borrowed connections."""
        self.pool_connections_in_use.set(count)


# Singleton instance
metrics = MetricsCollector()
