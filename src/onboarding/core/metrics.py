"""Prometheus counters for external-call outcomes.

HTTP metrics come from prometheus-fastapi-instrumentator; these cover the
best-effort calls whose failures never surface as HTTP errors.
"""

from prometheus_client import Counter

EXTERNAL_CALLS = Counter(
    "onboarding_external_calls_total",
    "Outcome of calls to external collaborators",
    ["service", "operation", "outcome"],
)

BACKGROUND_TASKS = Counter(
    "onboarding_background_tasks_total",
    "Best-effort background task outcomes",
    ["task", "outcome"],
)

WEBHOOK_EVENTS = Counter(
    "onboarding_webhook_events_total",
    "Inbound CRM webhook deliveries by routed action and outcome",
    ["provider", "action", "outcome"],
)


def record_external_call(service: str, operation: str, success: bool) -> None:
    EXTERNAL_CALLS.labels(
        service=service, operation=operation, outcome="success" if success else "failure"
    ).inc()
