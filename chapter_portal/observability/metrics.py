# chapter_portal/observability/metrics.py
# minimal prometheus instrumentation

from __future__ import annotations

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

BACKEND_CALLS = Counter(
    "backend_calls_total",
    "Calls made to the spreadsheet service",
    ["operation", "outcome"],
)
BACKEND_LATENCY = Histogram(
    "backend_call_seconds",
    "Spreadsheet service call latency",
    ["operation"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)
CACHE_LOOKUPS = Counter(
    "cache_lookups_total",
    "Cache lookups by result",
    ["result"],
)
LOCK_WAIT = Histogram(
    "named_lock_wait_seconds",
    "Time spent waiting to enter a critical section",
    buckets=(0.001, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0),
)
OPEN_SUBSCRIBERS = Gauge(
    "live_subscribers",
    "Open live-update connections",
)
EVICTED_SUBSCRIBERS = Counter(
    "live_subscribers_evicted_total",
    "Live-update connections dropped",
    ["reason"],
)


router = APIRouter(tags=["Metrics"])


@router.get("/metrics", include_in_schema=False)
async def prometheus_metrics() -> Response:
    """// expose /metrics"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
