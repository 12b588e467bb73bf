"""Prometheus metrics for transaction execution."""

from prometheus_client import Counter, Histogram

# Transaction metrics
transactions_total = Counter(
    "billing_transactions_total",
    "Total transaction executor invocations",
    ["kind", "outcome"],
)

transaction_latency_ms = Histogram(
    "billing_transaction_latency_ms",
    "Transaction latency in milliseconds, including post-commit work",
    ["kind"],
    buckets=[5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000],
)

effects_persisted_total = Counter(
    "billing_effects_persisted_total",
    "Total effects persisted inside committed transactions",
    ["effect"],
)

post_commit_failures_total = Counter(
    "billing_post_commit_failures_total",
    "Total failed post-commit steps",
    ["stage"],
)


class PrometheusTransactionMetrics:
    """Prometheus-based transaction metrics implementation."""

    def record_transaction(
        self,
        span_name: str,
        kind: str,
        outcome: str,
        latency_ms: float,
        events_count: int,
        ledger_commands_count: int,
    ) -> None:
        """Record one executor invocation."""
        transactions_total.labels(kind=kind, outcome=outcome).inc()
        transaction_latency_ms.labels(kind=kind).observe(latency_ms)
        if events_count:
            effects_persisted_total.labels(effect="event").inc(events_count)
        if ledger_commands_count:
            effects_persisted_total.labels(effect="ledger_command").inc(ledger_commands_count)

    def inc_post_commit_failure(self, stage: str) -> None:
        """Increment post-commit failure counter."""
        post_commit_failures_total.labels(stage=stage).inc()
