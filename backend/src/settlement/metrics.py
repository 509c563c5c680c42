"""Business metrics for Prometheus monitoring."""
from prometheus_client import Counter, Histogram

# Payment metrics
payments_initiated_total = Counter(
    "payments_initiated_total",
    "Total payment attempts initiated",
    labelnames=["currency"],
)

payments_captured_total = Counter(
    "payments_captured_total",
    "Total payments settled as captured",
    labelnames=["currency", "path"],  # path: capture, reconciled, already_captured
)

payments_failed_total = Counter(
    "payments_failed_total",
    "Total payment completions that failed",
    labelnames=["error_code"],
)

# Gateway metrics
gateway_request_duration_seconds = Histogram(
    "gateway_request_duration_seconds",
    "PayPal API call duration in seconds",
    labelnames=["operation", "outcome"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 15.0, 30.0],
)
