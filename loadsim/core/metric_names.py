"""Metric names emitted by the executors, client and scheduler."""

from __future__ import annotations

# Built-in HTTP metrics, one sample per request.
HTTP_REQ_DURATION = "http_req_duration"
HTTP_REQ_FAILED = "http_req_failed"

# Latency trends (ms).
WRITE_LATENCY = "write_latency_ms"
READ_LATENCY = "read_latency_ms"
SEARCH_LATENCY = "search_latency_ms"
DELETE_LATENCY = "delete_latency_ms"
BURST_LATENCY = "burst_phase_latency_ms"
RECOVERY_LATENCY = "recovery_phase_latency_ms"
SOAK_LATENCY_EARLY = "soak_latency_early_ms"
SOAK_LATENCY_MID = "soak_latency_mid_ms"
SOAK_LATENCY_LATE = "soak_latency_late_ms"

# Business outcome.
SUCCESS_RATE = "success_rate"
WRITE_ERRORS = "write_errors"
READ_ERRORS = "read_errors"
SEARCH_ERRORS = "search_errors"
DELETE_ERRORS = "delete_errors"
INSERTED_TOTAL = "inserted_total"
DELETED_TOTAL = "deleted_total"
EMPTY_PAGE_TOTAL = "empty_page_total"
CURSOR_REGRESSIONS = "pagination_cursor_regressions"
SEARCH_GPU_TOTAL = "search_gpu_total"
SEARCH_RAM_TOTAL = "search_ram_total"

# Replication-lag probe.
REPLICATION_LAG_DETECTED = "replication_lag_detected"
REPLICATION_LAG_RATE = "replication_lag_rate"
REPLICATION_CHECK_TOTAL = "replication_check_total"
REPLICATION_DIAGNOSTIC_CHECKS = "replication_diagnostic_checks"
REPLICATION_RETRY_RECOVERED = "replication_retry_recovered"
REPLICATION_LAG_PERSISTENT = "replication_lag_persistent"

# Duplicate-insert probe.
DUPLICATE_ATTEMPTS = "duplicate_insert_attempts"
DUPLICATE_REJECTED = "duplicate_correctly_rejected"
DUPLICATE_NOT_REJECTED = "duplicate_not_rejected"
DUPLICATE_KEY_WINS = "duplicate_key_wins"
DUPLICATE_DOUBLE_WINNER = "duplicate_double_winner"

# Harness health.
TRANSPORT_ERRORS = "transport_errors"
ITERATION_ERRORS = "iteration_errors"
ITERATIONS = "iterations"
WORKERS_ABANDONED = "workers_abandoned"

# "The tool broke / the network failed" versus "the system under test misbehaved".
INFRASTRUCTURE_METRICS = (
    TRANSPORT_ERRORS,
    ITERATION_ERRORS,
    WORKERS_ABANDONED,
    HTTP_REQ_FAILED,
)

CORRECTNESS_METRICS = (
    REPLICATION_LAG_DETECTED,
    REPLICATION_LAG_PERSISTENT,
    REPLICATION_RETRY_RECOVERED,
    DUPLICATE_NOT_REJECTED,
    DUPLICATE_DOUBLE_WINNER,
    CURSOR_REGRESSIONS,
)
