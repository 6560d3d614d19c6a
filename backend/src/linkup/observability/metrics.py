"""Prometheus metrics for the matching backend.

Defines operational metrics for monitoring and alerting.
"""

from prometheus_client import Counter, Histogram, Gauge

# Queue metrics
queue_entries_total = Counter(
    "matching_queue_entries_total",
    "Queue entries by transition",
    ["transition"]  # transition: entered|cancelled|expired|matched
)

queue_waiting = Gauge(
    "matching_queue_waiting",
    "Waiting queue entries seen by the last matching cycle"
)

# Selection metrics
matches_created_total = Counter(
    "matching_matches_created_total",
    "Total committed matches",
    ["source"]  # source: request|cycle
)

commit_conflicts_total = Counter(
    "matching_commit_conflicts_total",
    "Match commits that lost a race and were rolled back"
)

candidates_skipped_total = Counter(
    "matching_candidates_skipped_total",
    "Candidates skipped during selection",
    ["reason"]  # reason: unavailable|org_constraint|below_threshold
)

match_score = Histogram(
    "matching_score",
    "Compatibility score of committed matches",
    buckets=[0.0, 0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 1.0]
)

selection_duration_seconds = Histogram(
    "matching_selection_duration_seconds",
    "Time spent selecting a match for one requester",
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

notifier_failures_total = Counter(
    "matching_notifier_failures_total",
    "Match-created notifications that failed after commit"
)

# Feedback metrics
outcomes_recorded_total = Counter(
    "matching_outcomes_recorded_total",
    "Recorded match outcomes",
    ["outcome"]  # outcome: accepted|declined|completed
)

# Learning metrics
weight_optimizations_total = Counter(
    "matching_weight_optimizations_total",
    "Weight optimization runs",
    ["status"]  # status: proposed|insufficient_data|error
)

bias_indicators_total = Counter(
    "matching_bias_indicators_total",
    "Bias indicators raised by fairness audits",
    ["dimension", "severity"]
)

# HTTP metrics
http_request_duration_seconds = Histogram(
    "matching_http_request_duration_seconds",
    "API request latency by route template",
    ["method", "route", "status_code"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0)
)
