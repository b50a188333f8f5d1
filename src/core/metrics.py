"""
Prometheus Metrics for Observability

Tracks admission decisions, inference calls, image validation and the
background recovery engine. Exposes /metrics endpoint for Prometheus scraping.
"""

from prometheus_client import (
    Counter,
    Histogram,
    Info,
    generate_latest,
    CONTENT_TYPE_LATEST,
    REGISTRY
)

# =============================================================================
# Metrics Definitions
# =============================================================================

# Admission control
admission_decisions_total = Counter(
    "admission_decisions_total",
    "Admission decisions per traffic class",
    labelnames=["traffic_class", "outcome", "backend"]
)

rate_limit_store_fallbacks_total = Counter(
    "rate_limit_store_fallbacks_total",
    "Times the shared counter store was unreachable and the in-process counter was used",
    labelnames=["traffic_class"]
)

# Inference API calls
inference_calls_total = Counter(
    "inference_calls_total",
    "Total number of external inference calls",
    labelnames=["service", "status"]
)

inference_latency_seconds = Histogram(
    "inference_latency_seconds",
    "Latency of external inference calls",
    labelnames=["service"],
    buckets=[0.25, 0.5, 1.0, 2.5, 5.0, 8.0, 10.0, 20.0, 30.0, 60.0]
)

# Image integrity and compression
image_validation_rejections_total = Counter(
    "image_validation_rejections_total",
    "Images rejected by the integrity validator",
    labelnames=["code"]
)

image_compression_ratio = Histogram(
    "image_compression_ratio",
    "Compressed size divided by original size",
    buckets=[0.05, 0.1, 0.2, 0.3, 0.5, 0.75, 1.0]
)

# Background recovery
recovery_attempts_total = Counter(
    "recovery_attempts_total",
    "Background recovery attempts by outcome",
    labelnames=["outcome"]  # processed, retry_scheduled, pending_review, deferred
)

# API Request Metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "endpoint", "status"]
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration",
    labelnames=["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0]
)

# Application Info
app_info = Info(
    "zoneguard_app",
    "Application information"
)


# =============================================================================
# Helper Functions
# =============================================================================

def set_app_info(version: str, environment: str):
    """Set application info metric."""
    app_info.info({
        "version": version,
        "environment": environment
    })


def record_admission(traffic_class: str, allowed: bool, backend: str):
    """Record an admission decision."""
    admission_decisions_total.labels(
        traffic_class=traffic_class,
        outcome="allowed" if allowed else "rejected",
        backend=backend
    ).inc()


def record_store_fallback(traffic_class: str):
    """Record a shared counter store fallback."""
    rate_limit_store_fallbacks_total.labels(traffic_class=traffic_class).inc()


def record_inference_call(service: str, success: bool, duration_ms: float):
    """Record an inference call outcome and latency."""
    inference_calls_total.labels(
        service=service,
        status="success" if success else "error"
    ).inc()
    inference_latency_seconds.labels(service=service).observe(duration_ms / 1000.0)


def record_validation_rejection(code: str):
    """Record an image rejected by the integrity validator."""
    image_validation_rejections_total.labels(code=code).inc()


def record_compression(ratio: float):
    """Record a compression ratio (identity results are not recorded)."""
    image_compression_ratio.observe(ratio)


def record_recovery_attempt(outcome: str):
    """Record a background recovery outcome."""
    recovery_attempts_total.labels(outcome=outcome).inc()


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST
