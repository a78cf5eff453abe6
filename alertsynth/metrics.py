"""Prometheus metrics for AlertSynth."""

from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest


CACHE_LOOKUPS = Counter(
    "alertsynth_cache_lookups_total",
    "Response cache lookups by result",
    ["result"],
)

RECORDS_GENERATED = Counter(
    "alertsynth_records_generated_total",
    "Generated records by fallback cascade level",
    ["level"],
)

BACKEND_CALLS = Counter(
    "alertsynth_backend_calls_total",
    "Backend completion calls by outcome",
    ["outcome"],
)

BACKEND_LATENCY = Histogram(
    "alertsynth_backend_latency_seconds",
    "Backend completion latency in seconds",
    buckets=(0.1, 0.25, 0.5, 1, 2, 5, 10, 20, 30, 60, 120),
)

DISPATCH_BATCH_SIZE = Gauge(
    "alertsynth_dispatch_batch_size",
    "Current adaptive store dispatch batch size",
)

BATCH_SIZE_ADJUSTMENTS = Counter(
    "alertsynth_batch_size_adjustments_total",
    "Dispatch batch size reductions by reason",
    ["reason"],
)

STORE_ITEM_ERRORS = Counter(
    "alertsynth_store_item_errors_total",
    "Per-item rejections reported by the document store",
    ["error_type"],
)


def render_metrics() -> tuple[bytes, str]:
    """Current metrics in the Prometheus text format, with its content type."""
    return generate_latest(), CONTENT_TYPE_LATEST
