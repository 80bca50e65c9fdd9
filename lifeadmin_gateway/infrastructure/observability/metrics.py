"""Prometheus metrics for import outcomes, detection quality, reminders and webhook performance"""

from prometheus_client import Counter, Histogram

# Import pipeline metrics
import_counter = Counter(
    "lifeadmin_import_total",
    "Statement imports by outcome",
    ["outcome"],  # completed | failed | duplicate
)

stage_duration_histogram = Histogram(
    "lifeadmin_import_stage_seconds",
    "Time spent in each import pipeline stage",
    ["stage"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

suggestion_counter = Counter(
    "lifeadmin_suggestions_total",
    "Recurring payment suggestions by detected frequency",
    ["frequency", "confidence"],  # confidence: high | low
)

# Confirmation metrics
confirmation_counter = Counter(
    "lifeadmin_confirmations_total",
    "Suggestion confirmations by action",
    ["action"],  # accept | reject | skipped
)

records_created_counter = Counter(
    "lifeadmin_records_created_total",
    "Domain records created from confirmed suggestions",
    ["domain"],
)

# Renewal metrics
reminder_counter = Counter(
    "lifeadmin_reminders_total",
    "Renewal reminders generated by urgency",
    ["urgency"],
)

# Webhook metrics
webhook_latency_histogram = Histogram(
    "webhook_latency_seconds",
    "Reminder webhook response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

webhook_failure_counter = Counter(
    "webhook_failures_total",
    "Failed webhook deliveries",
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_import(outcome: str) -> None:
    import_counter.labels(outcome=outcome).inc()


def record_suggestions(suggestions) -> None:
    """Record detection output for monitoring frequency mix and near-misses"""
    for suggestion in suggestions:
        confidence = "low" if suggestion.low_confidence else "high"
        suggestion_counter.labels(frequency=suggestion.frequency.value, confidence=confidence).inc()


def record_confirmation(action: str, domain: str | None = None) -> None:
    confirmation_counter.labels(action=action).inc()
    if action == "accept" and domain:
        records_created_counter.labels(domain=domain).inc()
