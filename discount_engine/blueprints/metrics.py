"""
Prometheus metrics blueprint.

/metrics exposes request latency per route plus the discount usage
counters updated by the usage recorder. Serve it to the monitoring
network only.
"""
from flask import Blueprint, Response, request, g
from prometheus_client import Counter, Histogram, generate_latest, CollectorRegistry, CONTENT_TYPE_LATEST
from prometheus_client import multiprocess, REGISTRY
import time
import os

metrics_bp = Blueprint('metrics', __name__)

# Gunicorn workers share samples through PROMETHEUS_MULTIPROC_DIR
MULTIPROCESS_MODE = os.environ.get('PROMETHEUS_MULTIPROC_DIR') is not None

# API traffic
api_requests_total = Counter(
    'discount_api_requests_total',
    'Discount API requests',
    ['method', 'route', 'status']
)

api_request_seconds = Histogram(
    'discount_api_request_seconds',
    'Discount API request latency in seconds',
    ['method', 'route'],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5)
)

# Redemptions
discount_usage_recorded_total = Counter(
    'discount_usage_recorded_total',
    'Discount redemptions durably recorded'
)

discount_usage_rejected_total = Counter(
    'discount_usage_rejected_total',
    'Discount redemptions refused or failed',
    ['reason']
)

discount_savings_total = Counter(
    'discount_savings_total',
    'Sum of discount amounts recorded'
)


def _route_label() -> str:
    """URL rule rather than raw path, so ids do not explode label cardinality."""
    if request.url_rule is not None:
        return request.url_rule.rule
    return 'unmatched'


def setup_metrics_instrumentation(app):
    """Time every request except scrapes of /metrics itself."""

    @app.before_request
    def start_request_timer():
        g._metrics_started = time.perf_counter()

    @app.after_request
    def observe_request(response):
        started = g.pop('_metrics_started', None)
        if started is None or request.endpoint == 'metrics.metrics':
            return response

        route = _route_label()
        try:
            api_request_seconds.labels(method=request.method, route=route).observe(
                time.perf_counter() - started
            )
            api_requests_total.labels(method=request.method, route=route, status=response.status_code).inc()
        except ValueError as e:
            app.logger.warning(f"Failed to record metrics: {e}")

        return response


@metrics_bp.route('/metrics')
def metrics():
    """Prometheus scrape endpoint (not authenticated)."""
    registry = REGISTRY
    if MULTIPROCESS_MODE:
        registry = CollectorRegistry()
        multiprocess.MultiProcessCollector(registry)

    return Response(generate_latest(registry), mimetype=CONTENT_TYPE_LATEST)
