from prometheus_client import Counter, Histogram

OPERATION_COUNT = Counter(
    "exhibit_operation_count",
    "Exhibit orchestration operations by outcome",
    ["operation", "status"],
)
OPERATION_LATENCY = Histogram(
    "exhibit_operation_latency_seconds",
    "Exhibit orchestration latency",
    ["operation"],
)
DEFERRED_TASKS = Counter(
    "exhibit_deferred_task_count",
    "Deferred exhibit tasks by lifecycle event",
    ["action", "event"],
)
