from prometheus_client import Counter, Histogram, CollectorRegistry, REGISTRY

from typing import Optional

# =====================================
# METRICS COLLECTOR
# =====================================

class MetricsCollector:
    """Prometheus metrics collector for notification delivery and payment scans"""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        registry = registry if registry is not None else REGISTRY

        self.emails_sent_total = Counter(
            'emails_sent_total',
            'Total email send attempts',
            ['provider', 'kind', 'outcome'],
            registry=registry
        )

        self.email_send_duration = Histogram(
            'email_send_duration_seconds',
            'Email provider call duration',
            ['provider'],
            registry=registry
        )

        self.payment_scan_runs_total = Counter(
            'payment_scan_runs_total',
            'Total payment due scan runs',
            ['outcome'],
            registry=registry
        )

        self.payment_due_events_total = Counter(
            'payment_due_events_total',
            'Payment due events emitted by the scanner',
            registry=registry
        )

        self.overdue_records_marked_total = Counter(
            'overdue_records_marked_total',
            'Payment records flipped from Pending to Overdue',
            registry=registry
        )

        self.reminders_sent_total = Counter(
            'payment_reminders_sent_total',
            'Payment reminders sent',
            ['reminder_type'],
            registry=registry
        )

    def record_email(self, provider: str, kind: str, outcome: str, duration: Optional[float] = None):
        """Record an email send attempt"""
        self.emails_sent_total.labels(
            provider=provider,
            kind=kind or "generic",
            outcome=outcome
        ).inc()
        if duration is not None:
            self.email_send_duration.labels(provider=provider).observe(duration)

    def record_scan(self, outcome: str, payment_due_events: int = 0, overdue_marked: int = 0):
        """Record a payment scan run"""
        self.payment_scan_runs_total.labels(outcome=outcome).inc()
        if payment_due_events:
            self.payment_due_events_total.inc(payment_due_events)
        if overdue_marked:
            self.overdue_records_marked_total.inc(overdue_marked)

    def record_reminder(self, reminder_type: str):
        self.reminders_sent_total.labels(reminder_type=reminder_type).inc()

# Global metrics instance
_metrics_collector = MetricsCollector()

def get_metrics() -> MetricsCollector:
    """Dependency to get metrics collector"""
    return _metrics_collector
