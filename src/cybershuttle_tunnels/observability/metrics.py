from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

LEASE_REQUESTS = Counter(
    "cybershuttle_lease_requests_total",
    "Total port reservation requests",
    ["result"],  # result: reserved/exhausted/invalid
)

LEASES_PURGED = Counter(
    "cybershuttle_leases_purged_total",
    "Expired leases removed by the background sweep",
)

ACTIVE_LEASES = Gauge(
    "cybershuttle_active_leases",
    "Current live port leases",
)

ALLOCATION_DURATION = Histogram(
    "cybershuttle_allocation_duration_seconds",
    "Port allocation latency",
    buckets=(0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 5.0),
)


def generate_metrics() -> bytes:
    return generate_latest()


def get_content_type() -> str:
    return CONTENT_TYPE_LATEST
