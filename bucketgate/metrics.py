from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

REQS = Counter(
    "bucketgate_requests_total",
    "Requests",
    ["method", "path", "status"],
)
LAT = Histogram(
    "bucketgate_latency_seconds",
    "Latency",
    ["method", "path"],
)
DECISIONS = Counter(
    "bucketgate_decisions_total",
    "Token bucket consume decisions",
    ["outcome"],
)
SWEPT = Counter(
    "bucketgate_swept_entries_total",
    "Expired bucket entries removed by the background sweep",
)


def router() -> APIRouter:
    r = APIRouter()

    @r.get("/metrics", include_in_schema=False)
    def metrics():
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return r
