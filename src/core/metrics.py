"""
Prometheus Metrics for Observability

Tracks pipeline performance, Telegram API calls and compositor runs.
Exposes /metrics endpoint for Prometheus scraping.
"""

import time
from contextlib import contextmanager

from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    Info,
    generate_latest,
    CONTENT_TYPE_LATEST,
    REGISTRY
)

# =============================================================================
# Metrics Definitions
# =============================================================================

# Pipeline Latency - Per Stage
pipeline_latency_seconds = Histogram(
    "pipeline_latency_seconds",
    "Time spent in each pipeline stage",
    labelnames=["stage", "status"],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0]
)

# Total Pipeline Duration
pipeline_total_duration = Histogram(
    "pipeline_total_duration_seconds",
    "Total time for complete pipeline execution",
    labelnames=["status"],
    buckets=[1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0]
)

# Jobs Counter
jobs_total = Counter(
    "media_jobs_total",
    "Total number of media jobs processed",
    labelnames=["kind", "status", "failure_stage"]
)

# Active Jobs
active_jobs_gauge = Gauge(
    "media_active_jobs",
    "Number of currently processing media jobs"
)

# Compositor
compositor_runs_total = Counter(
    "compositor_runs_total",
    "Total number of ffmpeg overlay invocations",
    labelnames=["result"]
)

# Telegram API Calls
telegram_api_calls_total = Counter(
    "telegram_api_calls_total",
    "Total number of Telegram Bot API calls",
    labelnames=["method", "status"]
)

# Watermark changes
watermark_updates_total = Counter(
    "watermark_updates_total",
    "Watermark uploads, resets and rejected uploads",
    labelnames=["action"]
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
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# Application Info
app_info = Info(
    "watermark_bot",
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


@contextmanager
def track_stage_latency(stage: str):
    """
    Context manager to track stage latency.

    Usage:
        with track_stage_latency("composited"):
            # do work
    """
    start = time.time()
    status = "success"
    try:
        yield
    except Exception:
        status = "error"
        raise
    finally:
        duration = time.time() - start
        pipeline_latency_seconds.labels(stage=stage, status=status).observe(duration)


def record_job_started():
    """Record a media job entering the pipeline."""
    active_jobs_gauge.inc()


def record_job_completion(kind: str, status: str, failure_stage: str = "none", duration_seconds: float = 0.0):
    """Record job completion."""
    jobs_total.labels(kind=kind, status=status, failure_stage=failure_stage).inc()
    pipeline_total_duration.labels(status=status).observe(duration_seconds)
    active_jobs_gauge.dec()


def record_compositor_run(exit_code: int):
    """Record an ffmpeg invocation by outcome."""
    compositor_runs_total.labels(result="success" if exit_code == 0 else "failure").inc()


def record_telegram_call(method: str, status: str):
    """Record a Telegram API call."""
    telegram_api_calls_total.labels(method=method, status=status).inc()


def record_watermark_update(action: str):
    """Record a watermark upload, reset or rejection."""
    watermark_updates_total.labels(action=action).inc()


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST


# Initialize app info on module load
set_app_info(version="1.0.0", environment="development")
