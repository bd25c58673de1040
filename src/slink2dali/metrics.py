"""
Relay metrics in the Prometheus global REGISTRY.

Import this module at app startup; the CLI starts the HTTP exporter when
SLINK2DALI_METRICS_PORT is set.
"""

from prometheus_client import Counter, Histogram

RECORDS_TOTAL = Counter(
    "slink2dali_records_total",
    "SeedLink packets handled by the relay",
    ["type", "outcome"],  # outcome: forwarded | discarded | parse_error | abandoned
)

SINK_WRITE_LATENCY = Histogram(
    "slink2dali_sink_write_latency_seconds",
    "DataLink WRITE latency in seconds",
    buckets=[0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5],
)

SINK_RECONNECTS_TOTAL = Counter(
    "slink2dali_sink_reconnects_total",
    "DataLink connection attempts made after the initial connect",
    ["outcome"],
)

CHECKPOINT_SAVES_TOTAL = Counter(
    "slink2dali_checkpoint_saves_total",
    "State file saves",
    ["status"],
)


class MetricsRegistry:
    """Centralized access to the relay metrics."""

    records_total = RECORDS_TOTAL
    sink_write_latency = SINK_WRITE_LATENCY
    sink_reconnects_total = SINK_RECONNECTS_TOTAL
    checkpoint_saves_total = CHECKPOINT_SAVES_TOTAL


# Singleton instance
metrics_registry = MetricsRegistry()
