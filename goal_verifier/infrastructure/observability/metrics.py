"""Prometheus metrics for monitoring verification outcomes, payouts, and collaborator health"""

from prometheus_client import Counter, Histogram

from goal_verifier.domain.models import CycleReport

# Verification metrics
verification_counter = Counter(
    "goal_verification_total",
    "Goal verification attempts",
    ["outcome"],  # success | unmet | error
)

cycle_duration_histogram = Histogram(
    "verification_cycle_duration_seconds",
    "Duration of verification cycles",
    ["trigger"],  # scheduled | manual | webhook
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
)

cycle_skipped_counter = Counter(
    "verification_cycle_skipped_total",
    "Cycles that ended before verifying any goal",
    ["reason"],  # no_goals | no_data
)

# Payout metrics
payout_counter = Counter(
    "goal_payout_total",
    "Payout attempts by outcome",
    ["outcome"],  # executed | duplicate | in_progress | failed
)

ledger_latency_histogram = Histogram(
    "ledger_latency_seconds",
    "Ledger claim submission response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

ledger_failure_counter = Counter(
    "ledger_failures_total",
    "Failed ledger claim submissions",
)

# Vendor API metrics
vendor_fetch_failures_counter = Counter(
    "vendor_fetch_failures_total",
    "Failed wearable vendor API calls",
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_cycle(report: CycleReport) -> None:
    """Record cycle duration and skip reason"""
    if report.finished_at is not None:
        duration = (report.finished_at - report.started_at).total_seconds()
        cycle_duration_histogram.labels(trigger=report.trigger).observe(duration)

    if report.skipped_reason:
        cycle_skipped_counter.labels(reason=report.skipped_reason).inc()
