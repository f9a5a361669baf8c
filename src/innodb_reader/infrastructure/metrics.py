"""Prometheus metrics for the tablespace reader."""

from __future__ import annotations

from prometheus_client import (
    Counter,
    Info,
    start_http_server,
    REGISTRY,
    CollectorRegistry,
)


class MetricsRegistry:
    """Registry of all tablespace reader metrics."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        """Initialize metrics registry."""
        self._registry = registry or REGISTRY

        # Page metrics
        self.pages_read_total = Counter(
            "innodb_pages_read_total",
            "Total number of pages read and decoded",
            ["page_type"],
            registry=self._registry,
        )

        self.checksum_mismatches_total = Counter(
            "innodb_checksum_mismatches_total",
            "Pages whose stored checksum did not validate",
            ["algorithm"],  # the pinned algorithm, or detect
            registry=self._registry,
        )

        # Record metrics
        self.records_decoded_total = Counter(
            "innodb_records_decoded_total",
            "Total index records decoded",
            ["row_format"],  # compact, redundant
            registry=self._registry,
        )

        self.chain_errors_total = Counter(
            "innodb_chain_errors_total",
            "Corrupt record or page chains encountered",
            ["kind"],  # record, page
            registry=self._registry,
        )

        # Overflow metrics
        self.external_pages_read_total = Counter(
            "innodb_external_pages_read_total",
            "Overflow pages read while resolving external fields",
            registry=self._registry,
        )

        # Index metrics
        self.btree_descents_total = Counter(
            "innodb_btree_descents_total",
            "Root-to-leaf descents performed",
            registry=self._registry,
        )

        self.info = Info(
            "innodb_reader",
            "Tablespace reader information",
            registry=self._registry,
        )


# Global metrics registry
_metrics: MetricsRegistry | None = None


def setup_metrics(port: int = 8001, registry: CollectorRegistry | None = None) -> MetricsRegistry:
    """
    Set up Prometheus metrics server.

    Args:
        port: Port for the metrics HTTP server
        registry: Optional custom registry

    Returns:
        The metrics registry
    """
    global _metrics
    _metrics = MetricsRegistry(registry)

    from innodb_reader import __version__
    _metrics.info.info({
        "version": __version__,
    })

    start_http_server(port, registry=registry or REGISTRY)

    return _metrics


def get_metrics() -> MetricsRegistry:
    """Get the global metrics registry."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsRegistry()
    return _metrics
