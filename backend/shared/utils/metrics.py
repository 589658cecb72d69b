"""
Lightweight metrics collection for Live Crease.
Wraps prometheus_client with async-safe patterns.
"""
from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

from prometheus_client import Counter, Gauge, Histogram, Info, start_http_server

from shared.config import get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Counters ────────────────────────────────────────────────────────────
PROVIDER_REQUESTS = Counter(
    "lc_provider_requests_total",
    "Total provider HTTP requests",
    ["provider", "endpoint", "status"],
)
PROVIDER_CACHE = Counter(
    "lc_provider_cache_total",
    "Provider response cache lookups",
    ["endpoint", "outcome"],
)
CLASSIFICATIONS = Counter(
    "lc_classifications_total",
    "Status classifier verdicts",
    ["stage", "confidence"],
)
CLASSIFICATION_CONFLICTS = Counter(
    "lc_classification_conflicts_total",
    "Provider signals that contradicted a higher-priority signal",
    ["rule"],
)
NORMALIZATION_DROPS = Counter(
    "lc_normalization_drops_total",
    "Payloads dropped before persistence",
    ["reason"],
)
LIVE_UPSERTS = Counter(
    "lc_live_upserts_total",
    "Live store upserts",
    ["outcome"],
)
COMPLETED_UPSERTS = Counter(
    "lc_completed_upserts_total",
    "Completed store upserts",
    ["outcome"],
)
MIGRATIONS = Counter(
    "lc_migrations_total",
    "Live to completed migrations",
    ["outcome"],
)
JOB_RUNS = Counter(
    "lc_job_runs_total",
    "Scheduler job runs",
    ["job", "outcome"],
)
ENRICHMENT_LOOKUPS = Counter(
    "lc_enrichment_lookups_total",
    "Player-name enrichment lookups",
    ["outcome"],
)
EXPIRED_PURGED = Counter(
    "lc_live_expired_purged_total",
    "Live records removed by the expiry sweep",
)
NOTIFICATIONS = Counter(
    "lc_notifications_total",
    "Push-channel notifications published",
    ["kind"],
)

# ── Histograms ──────────────────────────────────────────────────────────
PROVIDER_LATENCY = Histogram(
    "lc_provider_latency_seconds",
    "Provider request latency in seconds",
    ["provider"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)
JOB_DURATION = Histogram(
    "lc_job_duration_seconds",
    "Wall time of one scheduler job run",
    ["job"],
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
)

# ── Gauges ──────────────────────────────────────────────────────────────
LIVE_MATCHES = Gauge(
    "lc_live_matches",
    "Number of matches currently held in the live store",
)
JOBS_RUNNING = Gauge(
    "lc_jobs_running",
    "Scheduler jobs currently executing",
    ["job"],
)

# ── Info ────────────────────────────────────────────────────────────────
SERVICE_INFO = Info("lc_service", "Service build information")


@asynccontextmanager
async def atrack_latency(histogram: Histogram, **labels: str) -> AsyncIterator[None]:
    """Async context manager to track operation latency."""
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start
        histogram.labels(**labels).observe(elapsed)


def start_metrics_server(port: int | None = None) -> None:
    """Start the Prometheus metrics HTTP server."""
    settings = get_settings()
    if not settings.metrics_enabled:
        return
    metrics_port = port or settings.metrics_port
    try:
        start_http_server(metrics_port)
        logger.info("metrics_server_started", port=metrics_port)
    except OSError as exc:
        logger.warning("metrics_server_failed", error=str(exc), port=metrics_port)
