"""
metrics.py - Service metrics for monitoring
"""
from prometheus_client import Counter, Histogram, Gauge, generate_latest
from functools import wraps
import time

bus_requests = Counter(
    'nlp_bus_requests_total',
    'Total bus requests handled',
    ['topic', 'status']
)

bus_request_duration = Histogram(
    'nlp_bus_request_duration_seconds',
    'Bus request handling duration',
    ['topic']
)

models_loaded = Gauge(
    'nlp_models_loaded',
    'Whether the model port finished loading (1) or not (0)'
)

reference_workflows = Counter(
    'nlp_reference_workflows_total',
    'Reference store workflows by final state',
    ['state']
)

def track_request(topic: str):
    """Decorator to track bus handler metrics"""
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            start = time.time()
            status = "ok"
            try:
                return await func(*args, **kwargs)
            except Exception:
                status = "failed"
                raise
            finally:
                bus_requests.labels(topic, status).inc()
                bus_request_duration.labels(topic).observe(time.time() - start)
        return wrapper
    return decorator

def get_metrics():
    """Get Prometheus metrics"""
    return generate_latest()
