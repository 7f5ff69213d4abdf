from prometheus_client import Counter, Histogram

# Verification cycles by terminal outcome ("skipped" / "error" when no outcome was produced)
CYCLE_COUNTER = Counter(
    "function_clarity_cycles_total",
    "Total number of verification cycles by result",
    ["result"],
)

# Enforcement side effects applied to monitored functions
ENFORCEMENT_COUNTER = Counter(
    "function_clarity_enforcements_total",
    "Total number of enforcement records applied",
    ["action", "blocked"],
)

PUBLISH_FAILURE_COUNTER = Counter(
    "function_clarity_publish_failures_total",
    "Total number of result notifications that could not be delivered",
)

CYCLE_LATENCY_HISTOGRAM = Histogram(
    "function_clarity_cycle_latency_seconds",
    "End-to-end latency of a verification cycle",
    buckets=(0.1, 0.5, 1.0, 3.0, 10.0, 30.0, 60.0, 300.0),
)
