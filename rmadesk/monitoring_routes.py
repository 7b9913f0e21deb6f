"""
Metrics and health API endpoints.
Provides visibility into the RMA workflow, email delivery and HTTP performance.
"""

import time

from flask import Blueprint, current_app, jsonify

from rmadesk.observability.metrics_collector import metrics_collector
from rmadesk.observability.structured_logger import app_logger
from rmadesk.web import SENDER_EXTENSION

monitoring_bp = Blueprint('monitoring', __name__, url_prefix='/monitoring')


@monitoring_bp.route('/api/metrics')
def get_metrics():
    """
    API endpoint to fetch current metrics.
    Returns JSON with the business metrics plus the raw collector state.
    """
    metrics = metrics_collector.get_business_metrics()
    metrics['raw'] = metrics_collector.get_all_metrics()
    app_logger.debug("Metrics fetched")
    return jsonify({
        'status': 'success',
        'data': metrics,
        'timestamp': time.time()
    })


@monitoring_bp.route('/api/metrics/performance')
def get_performance_metrics():
    """Get detailed performance metrics."""
    duration_stats = metrics_collector.get_histogram_stats('http_request_duration_seconds')

    return jsonify({
        'avg_response_time_ms': duration_stats.get('avg', 0) * 1000,
        'p50_response_time_ms': duration_stats.get('p50', 0) * 1000,
        'p95_response_time_ms': duration_stats.get('p95', 0) * 1000,
        'max_response_time_ms': duration_stats.get('max', 0) * 1000,
        'total_requests': duration_stats.get('count', 0)
    })


@monitoring_bp.route('/api/health')
def health_check():
    """
    Health check endpoint.
    Degraded when errors exceed one per second or the email circuit is open.
    """
    uptime = time.time() - metrics_collector.start_time
    error_rate = metrics_collector.get_rate('errors_total', window_seconds=60)

    sender = current_app.extensions.get(SENDER_EXTENSION)
    breaker = getattr(sender, 'breaker', None)
    email_circuit = breaker.get_metrics() if breaker is not None else None

    is_healthy = error_rate < 1.0 and not (email_circuit and email_circuit['state'] == 'open')
    return jsonify({
        'status': 'healthy' if is_healthy else 'degraded',
        'uptime_seconds': uptime,
        'error_rate_per_second': error_rate,
        'email_circuit': email_circuit,
        'timestamp': time.time()
    }), 200 if is_healthy else 503
