"""Observability module for sequelae-mcp.

This module provides:
- Prometheus metrics collection
- Structured JSON/text logging with secret masking

Example:
    >>> from sequelae_mcp.observability import configure_logging, metrics
    >>>
    >>> configure_logging(level="INFO", log_format="json")
    >>> metrics.start_metrics_server(9090)
"""

from sequelae_mcp.observability.logging import (
    JSONFormatter,
    SensitiveDataFilter,
    TextFormatter,
    configure_logging,
    get_logger,
    mask_secrets,
)
from sequelae_mcp.observability.metrics import MetricsCollector, metrics

__all__ = [
    # Metrics
    "MetricsCollector",
    "metrics",
    # Logging
    "configure_logging",
    "get_logger",
    "mask_secrets",
    "JSONFormatter",
    "TextFormatter",
    "SensitiveDataFilter",
]
