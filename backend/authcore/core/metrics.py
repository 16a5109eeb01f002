"""Prometheus metrics shared by the app and services."""

from prometheus_client import Counter, Histogram

REQUEST_COUNT = Counter(
    "authcore_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "authcore_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)
LOGIN_ATTEMPTS = Counter(
    "authcore_login_attempts_total",
    "Login attempts by outcome",
    ["result"],
)
TOKEN_ROTATIONS = Counter(
    "authcore_token_rotations_total",
    "Refresh token rotations by outcome",
    ["result"],
)
