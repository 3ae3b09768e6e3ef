from prometheus_client import Counter, Gauge

# Circuit breaker state per guarded operation: 0=closed, 1=open, 2=half-open
CIRCUIT_BREAKER_STATE = Gauge(
    "repo_coord_circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open, 2=half_open)",
    ["name"],
)

CIRCUIT_BREAKER_TRANSITIONS = Counter(
    "repo_coord_circuit_breaker_transitions_total",
    "Circuit breaker state transitions",
    ["name", "from_state", "to_state"],
)

# Remote calls dispatched by the request scheduler
REMOTE_CALLS = Counter(
    "repo_coord_remote_calls_total",
    "Remote calls by API category and outcome",
    ["category", "status"],
)

CACHE_LOOKUPS = Counter(
    "repo_coord_cache_lookups_total",
    "Cache lookups by result",
    ["result"],
)

RATE_LIMIT_REMAINING = Gauge(
    "repo_coord_rate_limit_remaining",
    "Remaining calls in the current rate-limit window",
    ["category"],
)

REQUEST_QUEUE_DEPTH = Gauge(
    "repo_coord_request_queue_depth",
    "Requests held back waiting for rate-limit capacity",
)

COORDINATED_REPO_RESULTS = Counter(
    "repo_coord_coordinated_repo_results_total",
    "Per-repository outcomes of coordinated walks",
    ["operation", "status"],
)
