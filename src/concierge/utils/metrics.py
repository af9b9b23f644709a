"""
Prometheus metrics for the Concierge backend.

Defines custom metrics for turns, tools, search sources and the database.
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram

# Use standard Prometheus naming conventions: namespace_subsystem_name_unit
NAMESPACE = "concierge"


# ============================================================================
# Turn Metrics
# ============================================================================

turns_total = Counter(
    f"{NAMESPACE}_turns_total",
    "Total number of chat turns handled",
    ["target", "outcome"],  # target: "model" or "workflow"; outcome: "ok", "timeout", "error", "persist_failed"
)

turn_duration_seconds = Histogram(
    f"{NAMESPACE}_turn_duration_seconds",
    "Wall-clock duration of streamed model turns",
    buckets=(1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0),
)


# ============================================================================
# Tool Metrics
# ============================================================================

tool_calls_total = Counter(
    f"{NAMESPACE}_tool_calls_total",
    "Total number of tool invocations",
    ["tool_name", "status"],  # status: "success", "error", "invalid_args"
)

tool_call_duration_seconds = Histogram(
    f"{NAMESPACE}_tool_call_duration_seconds",
    "Tool invocation duration in seconds",
    ["tool_name"],
    buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
)

search_source_failures_total = Counter(
    f"{NAMESPACE}_search_source_failures_total",
    "Sub-source lookups skipped after an error",
    ["tool_name", "stage"],  # stage: "searching", "booking"
)

structured_output_repairs_total = Counter(
    f"{NAMESPACE}_structured_output_repairs_total",
    "Structured output repair passes",
    ["outcome"],  # "repaired", "failed"
)


# ============================================================================
# Database Metrics
# ============================================================================

db_query_duration_seconds = Histogram(
    f"{NAMESPACE}_db_query_duration_seconds",
    "Database query duration in seconds",
    ["query_type"],  # "select", "insert", "update", "delete"
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 5.0),
)

history_cache_lookups_total = Counter(
    f"{NAMESPACE}_history_cache_lookups_total",
    "Message history cache lookups",
    ["result"],  # "hit", "miss"
)
