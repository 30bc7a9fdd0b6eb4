"""
Metrics collection for API calls, cache reads and fallback sources.
"""

import time
import logging
from typing import Dict, Optional, Any, List
from dataclasses import dataclass, field

from prometheus_client import Counter, Histogram, CollectorRegistry, start_http_server


@dataclass
class MetricPoint:
    """Individual metric data point."""
    timestamp: float
    value: float
    labels: Dict[str, str] = field(default_factory=dict)


@dataclass
class Metric:
    """Metric container with history."""
    name: str
    description: str
    metric_type: str  # counter, histogram
    points: List[MetricPoint] = field(default_factory=list)
    current_value: float = 0.0


class MetricsCollector:
    """Keeps recent metric values in memory and mirrors them to Prometheus."""

    def __init__(self, enable_prometheus: bool = False, prometheus_port: int = 8000):
        self.logger = logging.getLogger(__name__)
        self.metrics: Dict[str, Metric] = {}
        self.enable_prometheus = enable_prometheus
        self.prometheus_port = prometheus_port

        self.prometheus_registry = CollectorRegistry()
        self.prometheus_metrics = {
            'api_requests_total': Counter(
                'clinic_api_requests_total',
                'Requests sent to the clinic API',
                ['method'],
                registry=self.prometheus_registry
            ),
            'api_errors_total': Counter(
                'clinic_api_errors_total',
                'Failed requests to the clinic API',
                ['error_type'],
                registry=self.prometheus_registry
            ),
            'source_used_total': Counter(
                'clinic_source_used_total',
                'Datasets served, by the source they came from',
                ['dataset', 'source'],
                registry=self.prometheus_registry
            ),
            'cache_reads_total': Counter(
                'clinic_cache_reads_total',
                'Persistent cache reads',
                ['result'],
                registry=self.prometheus_registry
            ),
            'response_time_seconds': Histogram(
                'clinic_api_response_time_seconds',
                'Response time of the clinic API',
                registry=self.prometheus_registry
            ),
        }

    def start_prometheus_server(self):
        """Start the Prometheus metrics HTTP server."""
        if not self.enable_prometheus:
            return

        try:
            start_http_server(self.prometheus_port, registry=self.prometheus_registry)
            self.logger.info(f"Prometheus metrics server started on port {self.prometheus_port}")
        except OSError as e:
            self.logger.error(f"Failed to start Prometheus server: {e}")

    def record_metric(self, name: str, value: float, labels: Optional[Dict[str, str]] = None,
                      description: str = "", metric_type: str = "counter"):
        """Record a metric value."""
        labels = labels or {}

        if name not in self.metrics:
            self.metrics[name] = Metric(name=name, description=description, metric_type=metric_type)

        metric = self.metrics[name]
        metric.points.append(MetricPoint(timestamp=time.time(), value=value, labels=labels))
        metric.current_value = value

        # Keep only recent points
        if len(metric.points) > 500:
            metric.points = metric.points[-500:]

    def increment_counter(self, name: str, labels: Optional[Dict[str, str]] = None,
                          description: str = ""):
        """Increment a counter metric."""
        current_value = self.metrics[name].current_value if name in self.metrics else 0
        self.record_metric(name, current_value + 1, labels, description, "counter")

        prom_metric = self.prometheus_metrics.get(name)
        if prom_metric is not None:
            if labels:
                prom_metric.labels(**labels).inc()
            else:
                prom_metric.inc()

    def observe_histogram(self, name: str, value: float, description: str = ""):
        """Record a histogram observation."""
        self.record_metric(name, value, None, description, "histogram")

        prom_metric = self.prometheus_metrics.get(name)
        if prom_metric is not None:
            prom_metric.observe(value)

    def get_metric(self, name: str) -> Optional[Metric]:
        return self.metrics.get(name)

    def get_current_values(self) -> Dict[str, float]:
        """Get current values of all metrics."""
        return {name: metric.current_value for name, metric in self.metrics.items()}


class DataMonitor:
    """High-level monitoring interface for the data layer."""

    def __init__(self, metrics_collector: MetricsCollector):
        self.metrics = metrics_collector
        self.start_time = time.time()
        self.last_sources: Dict[str, str] = {}

    def record_api_request(self, method: str, response_time: float):
        self.metrics.increment_counter('api_requests_total', {'method': method}, 'API requests')
        self.metrics.observe_histogram('response_time_seconds', response_time, 'API response time')

    def record_api_error(self, error_type: str):
        self.metrics.increment_counter('api_errors_total', {'error_type': error_type}, 'API errors')

    def record_source_used(self, dataset: str, source: str):
        """Record which source of the fallback chain served a dataset."""
        self.last_sources[dataset] = source
        self.metrics.increment_counter('source_used_total', {'dataset': dataset, 'source': source},
                                       'Datasets served by source')

    def record_cache_read(self, hit: bool):
        self.metrics.increment_counter('cache_reads_total', {'result': 'hit' if hit else 'miss'},
                                       'Cache reads')

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of all metrics."""
        return {
            'runtime_seconds': time.time() - self.start_time,
            'metrics': self.metrics.get_current_values(),
            'last_sources': dict(self.last_sources),
        }


# Global monitoring instance
_global_monitor: Optional[DataMonitor] = None


def initialize_monitoring(enable_prometheus: bool = False, prometheus_port: int = 8000) -> DataMonitor:
    """Initialize global monitoring."""
    global _global_monitor

    _global_monitor = DataMonitor(MetricsCollector(enable_prometheus, prometheus_port))
    return _global_monitor


def get_monitor() -> DataMonitor:
    """Get the global monitor, creating a local-only one on first use."""
    global _global_monitor

    if _global_monitor is None:
        _global_monitor = DataMonitor(MetricsCollector())
    return _global_monitor
