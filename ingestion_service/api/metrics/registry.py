"""
ingestion_service/api/metrics/registry.py
Central Prometheus metrics registry for the ingestion service.
"""

from prometheus_client import (
    CollectorRegistry, Counter, Gauge, Histogram, generate_latest
)

# Global registry instance
REGISTRY = CollectorRegistry(auto_describe=True)

# =============================
# Metric definitions
# =============================
REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total number of HTTP requests that passed the access logger",
    ["method", "status"],
    registry=REGISTRY,
)

REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "Request handling latency (seconds)",
    ["method"],
    buckets=(0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5),
    registry=REGISTRY,
)

RATE_LIMITED = Counter(
    "rate_limited_requests_total",
    "Requests rejected by the rate limiter",
    registry=REGISTRY,
)

STORAGE_STATE = Gauge(
    "storage_connection_open",
    "1 if the storage connection is open, else 0",
    registry=REGISTRY,
)

WARMUP_REQUESTS = Counter(
    "cache_warmup_requests_total",
    "Cache warm-up triggers by target and outcome",
    ["target", "outcome"],
    registry=REGISTRY,
)

# =============================
# Updater helpers
# =============================

def track_request(method: str, status: int, latency: float):
    """Record request count and latency."""
    REQUEST_COUNT.labels(method=method, status=str(status)).inc()
    REQUEST_LATENCY.labels(method=method).observe(latency)


def mark_storage_open(is_open: bool):
    STORAGE_STATE.set(1 if is_open else 0)


def track_warmup(target: str, outcome: str):
    WARMUP_REQUESTS.labels(target=target, outcome=outcome).inc()


def render_prometheus_metrics():
    """Return text for Prometheus scrape endpoint."""
    return generate_latest(REGISTRY)
