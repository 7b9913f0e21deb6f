"""
In-memory metrics for the RMA desk.

Counters and gauges are keyed by name plus labels (``rma_transitions_total{to=ready}``).
Histogram observations keep their labels so stats can be read for one label
subset, e.g. request latency of a single endpoint or one email provider.
Nothing is persisted; a restart starts from zero.
"""

import time
from collections import defaultdict, deque
from contextlib import contextmanager
from datetime import datetime, timezone
from threading import Lock
from typing import Dict, Iterable, Optional


def _percentile(values, fraction: float) -> float:
    return values[min(int(len(values) * fraction), len(values) - 1)]


class MetricsCollector:
    """Counters, gauges, histograms and rate windows guarded by one lock."""

    HISTOGRAM_RETENTION = 1000
    EVENT_RETENTION = 10000

    def __init__(self):
        self.lock = Lock()
        self.counters = defaultdict(int)
        self.gauges = defaultdict(float)
        self.histograms = defaultdict(lambda: deque(maxlen=self.HISTOGRAM_RETENTION))
        self.time_windowed = defaultdict(lambda: deque(maxlen=self.EVENT_RETENTION))
        self.start_time = time.time()

    @staticmethod
    def _key(name: str, labels: Optional[Dict] = None) -> str:
        if not labels:
            return name
        return name + "{" + ",".join(f"{k}={v}" for k, v in sorted(labels.items())) + "}"

    # ---------- writes ----------

    def increment_counter(self, name: str, value: int = 1, labels: Optional[Dict] = None):
        with self.lock:
            self.counters[self._key(name, labels)] += value

    def set_gauge(self, name: str, value: float, labels: Optional[Dict] = None):
        with self.lock:
            self.gauges[self._key(name, labels)] = value

    def observe(self, name: str, value: float, labels: Optional[Dict] = None):
        with self.lock:
            self.histograms[name].append((time.time(), value, dict(labels or {})))

    def record_event(self, name: str, labels: Optional[Dict] = None):
        """Timestamp an occurrence for ``get_rate``."""
        with self.lock:
            self.time_windowed[self._key(name, labels)].append(time.time())

    @contextmanager
    def timer(self, name: str, labels: Optional[Dict] = None):
        """Observe the wall time of the ``with`` block under ``name``."""
        started = time.time()
        try:
            yield
        finally:
            self.observe(name, time.time() - started, labels)

    # ---------- reads ----------

    def get_counter(self, name: str, labels: Optional[Dict] = None) -> int:
        return self.counters.get(self._key(name, labels), 0)

    def get_counter_total(self, name: str) -> int:
        """Sum of ``name`` across every label combination."""
        with self.lock:
            return sum(v for k, v in self.counters.items() if k == name or k.startswith(name + "{"))

    def get_gauge(self, name: str, labels: Optional[Dict] = None) -> float:
        return self.gauges.get(self._key(name, labels), 0.0)

    def get_histogram_stats(self, name: str, labels: Optional[Dict] = None) -> Dict:
        """count/sum/min/max/avg and p50/p95/p99, optionally for observations carrying ``labels``."""
        with self.lock:
            observations = list(self.histograms.get(name, ()))
        wanted = (labels or {}).items()
        values = sorted(value for _, value, obs_labels in observations if wanted <= obs_labels.items())
        if not values:
            return {'count': 0, 'sum': 0, 'min': 0, 'max': 0, 'avg': 0, 'p50': 0, 'p95': 0, 'p99': 0}
        total = sum(values)
        return {
            'count': len(values),
            'sum': total,
            'min': values[0],
            'max': values[-1],
            'avg': total / len(values),
            'p50': _percentile(values, 0.50),
            'p95': _percentile(values, 0.95),
            'p99': _percentile(values, 0.99),
        }

    def get_rate(self, name: str, window_seconds: int = 60, labels: Optional[Dict] = None) -> float:
        """Events per second over the last ``window_seconds``."""
        if window_seconds <= 0:
            return 0.0
        cutoff = time.time() - window_seconds
        with self.lock:
            events = list(self.time_windowed.get(self._key(name, labels), ()))
        return sum(1 for stamp in events if stamp >= cutoff) / window_seconds

    def get_all_metrics(self) -> Dict:
        with self.lock:
            counters = dict(self.counters)
            gauges = dict(self.gauges)
            names = list(self.histograms)
        return {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'uptime_seconds': time.time() - self.start_time,
            'counters': counters,
            'gauges': gauges,
            'histograms': {name: self.get_histogram_stats(name) for name in names},
        }

    def _by_label(self, name: str, key: str, values: Iterable[str]) -> Dict[str, int]:
        return {value: self.get_counter(name, {key: value}) for value in values}

    def get_business_metrics(self) -> Dict:
        """RMA workflow, email delivery, error and latency figures for the monitoring API."""
        duration = self.get_histogram_stats('http_request_duration_seconds')
        transitions = self._by_label('rma_transitions_total', 'to', ('in_service_centre', 'ready', 'delivered'))
        return {
            'rmas': {
                'created': self.get_counter('rmas_created_total'),
                'sent_to_service_centre': transitions['in_service_centre'],
                'marked_ready': transitions['ready'],
                'delivered': transitions['delivered'],
                'otp_resends': self.get_counter('otp_resends_total'),
                'otp_rejections': self.get_counter('otp_rejections_total'),
                'products_by_status': {
                    status: self.get_gauge('rma_products', {'status': status})
                    for status in ('processing', 'in_service_centre', 'ready', 'delivered')
                },
            },
            'emails': {
                'sent_total': self.get_counter_total('emails_sent_total'),
                'sent': self._by_label('emails_sent_total', 'provider', ('brevo', 'web3forms')),
                'failed': self.get_counter('email_failures_total'),
                'skipped': self.get_counter('emails_skipped_total'),
                'avg_send_ms': {
                    provider: self.get_histogram_stats('email_send_duration_seconds', {'provider': provider})['avg'] * 1000
                    for provider in ('brevo', 'web3forms')
                },
            },
            'errors': {
                'total': self.get_counter('errors_total'),
                'rate_per_minute': self.get_rate('errors_total', window_seconds=60) * 60,
                'by_type': self._by_label('http_errors', 'type', ('4xx', '5xx')),
            },
            'performance': {
                'requests': duration['count'],
                'avg_response_time_ms': duration['avg'] * 1000,
                'p95_response_time_ms': duration['p95'] * 1000,
                'p99_response_time_ms': duration['p99'] * 1000,
            },
        }


metrics_collector = MetricsCollector()
