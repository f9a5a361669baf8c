"""Infrastructure layer - cross-cutting concerns."""

from innodb_reader.infrastructure.config import Config, get_config
from innodb_reader.infrastructure.logging import setup_logging, get_logger
from innodb_reader.infrastructure.metrics import setup_metrics, get_metrics, MetricsRegistry
from innodb_reader.infrastructure.tracing import setup_tracing, get_tracer, trace_span

__all__ = [
    "Config",
    "get_config",
    "setup_logging",
    "get_logger",
    "setup_metrics",
    "get_metrics",
    "MetricsRegistry",
    "setup_tracing",
    "get_tracer",
    "trace_span",
]
