"""
Prometheus Metrics

Exposes metrics for monitoring:
- Request counts and latencies per proxy endpoint
- Rate limiting
- Endpoint (SSRF) validation verdicts
- Token verification outcomes
- Outbound upstream calls
"""

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, Info, generate_latest

# Application info
APP_INFO = Info("playground_app", "OAuth playground proxy information")

# Request metrics
REQUESTS_TOTAL = Counter(
    "playground_requests_total",
    "Total number of proxy requests",
    ["endpoint"],
)

REQUESTS_FAILED = Counter(
    "playground_requests_failed_total",
    "Number of proxy requests answered with an error",
    ["endpoint", "error"],
)

REQUEST_LATENCY = Histogram(
    "playground_request_latency_seconds",
    "Request latency in seconds",
    ["endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

# Rate limiting metrics
RATE_LIMIT_HITS = Counter(
    "playground_rate_limit_hits_total",
    "Total requests rejected by the rate limiter",
)

RATE_LIMIT_ENTRIES = Gauge(
    "playground_rate_limit_entries",
    "Number of clients tracked by the rate limiter",
)

# Endpoint validation metrics
ENDPOINT_VALIDATIONS = Counter(
    "playground_endpoint_validations_total",
    "Outbound URL validation verdicts",
    ["verdict", "reason"],
)

# Token verification metrics
TOKEN_VERIFICATIONS = Counter(
    "playground_token_verifications_total",
    "Token verification attempts",
    ["format", "result"],  # result: ok or a failure reason
)

JWKS_CACHE_HITS = Counter(
    "playground_jwks_cache_hits_total",
    "Remote JWKS cache lookups",
    ["result"],  # hit, miss
)

# Upstream (proxy -> provider) metrics
UPSTREAM_REQUESTS = Counter(
    "playground_upstream_requests_total",
    "Outbound requests to identity providers",
    ["target", "status"],  # target: token, discovery, jwks
)

UPSTREAM_LATENCY = Histogram(
    "playground_upstream_latency_seconds",
    "Outbound request latency in seconds",
    ["target"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)


class MetricsHelper:
    """Helper class for recording metrics."""

    def __init__(self):
        self.requests_total = REQUESTS_TOTAL
        self.requests_failed = REQUESTS_FAILED
        self.request_latency = REQUEST_LATENCY
        self.upstream_requests_total = UPSTREAM_REQUESTS
        self.upstream_latency = UPSTREAM_LATENCY

    def record_request(self, endpoint: str, latency: float, error: str = None):
        """Record a proxy request."""
        self.requests_total.labels(endpoint=endpoint).inc()
        self.request_latency.labels(endpoint=endpoint).observe(latency)

        if error:
            self.requests_failed.labels(endpoint=endpoint, error=error).inc()

    def record_rate_limit(self, limited: bool, entries: int):
        """Record a rate limiter decision and the current store size."""
        RATE_LIMIT_ENTRIES.set(entries)
        if limited:
            RATE_LIMIT_HITS.inc()

    def record_endpoint_validation(self, valid: bool, reason: str = None):
        """Record an endpoint validation verdict."""
        ENDPOINT_VALIDATIONS.labels(
            verdict="valid" if valid else "invalid",
            reason=reason or "none",
        ).inc()

    def record_token_verification(self, token_format: str, result: str):
        """Record a token verification outcome."""
        TOKEN_VERIFICATIONS.labels(format=token_format, result=result).inc()

    def record_jwks_cache(self, hit: bool):
        """Record a remote JWKS cache lookup."""
        JWKS_CACHE_HITS.labels(result="hit" if hit else "miss").inc()

    def record_upstream(self, target: str, status: str, latency: float):
        """Record an outbound request."""
        self.upstream_requests_total.labels(target=target, status=status).inc()
        self.upstream_latency.labels(target=target).observe(latency)

    def set_app_info(self, version: str):
        """Publish application info."""
        APP_INFO.info({"version": version})

    @staticmethod
    def render():
        """Render all metrics in the Prometheus text format."""
        return generate_latest(), CONTENT_TYPE_LATEST


metrics = MetricsHelper()
