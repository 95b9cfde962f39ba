"""Prometheus collectors for compile and deployment activity."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

resources_applied_total = Counter(
    "kroflow_resources_applied_total",
    "Resources applied to the cluster by direct deployment",
    ["kind", "action"],
)

resource_failures_total = Counter(
    "kroflow_resource_failures_total",
    "Resource-scoped deployment failures",
    ["kind", "reason"],
)

readiness_wait_seconds = Histogram(
    "kroflow_readiness_wait_seconds",
    "Time spent waiting for a resource to report ready",
    ["kind"],
    buckets=(0.5, 1, 2, 5, 10, 30, 60, 120, 300, 600),
)

deployments_total = Counter(
    "kroflow_deployments_total",
    "Completed direct deployments by overall status",
    ["status"],
)

expressions_compiled_total = Counter(
    "kroflow_expressions_compiled_total",
    "Expressions rendered into the target expression language",
)

events_delivered_total = Counter(
    "kroflow_events_delivered_total",
    "Deployment events delivered to sinks",
    ["sink", "success"],
)
