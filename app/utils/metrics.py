"""
Prometheus-based metrics for production monitoring.
Provides /metrics endpoint for scraping.
"""
from prometheus_client import Counter, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response


# Counters
captcha_challenges_issued_total = Counter(
    "captcha_challenges_issued_total",
    "Total number of captcha challenges issued",
)

captcha_verifications_total = Counter(
    "captcha_verifications_total",
    "Total captcha verifications",
    ["result"],  # success, rejected, not_found, expired, invalid_input, upstream_unavailable
)

captcha_clearances_total = Counter(
    "captcha_clearances_total",
    "Captcha clearances presented to privileged endpoints",
    ["result"],  # accepted, rejected
)

entitlement_resolutions_total = Counter(
    "entitlement_resolutions_total",
    "Total entitlement decisions",
    ["label"],
)

checkout_completions_total = Counter(
    "checkout_completions_total",
    "Checkout completion attempts",
    ["outcome"],  # created, duplicate, payment_incomplete, invalid_input, upstream_unavailable
)

checkout_provider_requests_total = Counter(
    "checkout_provider_requests_total",
    "Total Checkout Provider API requests",
    ["method", "status"],
)

login_rate_limited_total = Counter(
    "login_rate_limited_total",
    "Login attempts rejected by the rate limiter",
)

circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open)",
    ["name"],
)


# Metrics endpoint router
router = APIRouter()


@router.get("/metrics")
def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint for scraping."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
