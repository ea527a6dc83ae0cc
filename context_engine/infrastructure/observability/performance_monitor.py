from typing import Dict, List, Any, Callable, Iterator, Optional, TypeVar
from contextlib import contextmanager
from datetime import datetime, timedelta
from pydantic import BaseModel, Field
import csv
import io
import json
import math
import time
import psutil
import structlog

from context_engine.domain.models.config import MonitoringConfig
from context_engine.domain.models.context_state import utc_now

logger = structlog.get_logger(__name__)

T = TypeVar("T")

CSV_HEADER = [
    "timestamp", "service", "operation", "duration", "memoryUsage",
    "inputSize", "outputSize", "cacheHit", "errorOccurred",
]

PRIORITY_ORDER = {"critical": 4, "high": 3, "medium": 2, "low": 1}


class PerformanceMetric(BaseModel):
    """One monitored call"""
    timestamp: datetime = Field(default_factory=utc_now)
    service: str
    operation: str
    duration: float = Field(description="Milliseconds")
    memory_usage: int = Field(default=0, description="RSS delta in bytes")
    input_size: int = 0
    output_size: int = 0
    cache_hit: Optional[bool] = Field(default=None, description="None when the call has no cache")
    error_occurred: bool = False


class PerformanceAlert(BaseModel):
    type: str = Field(description="slow_response, high_memory, low_cache_hit or high_error_rate")
    service: str
    operation: str
    value: float
    threshold: float
    severity: str = Field(description="info, warning or critical")
    timestamp: datetime = Field(default_factory=utc_now)


class OptimizationRecommendation(BaseModel):
    service: str
    issue: str
    recommendation: str
    priority: str
    estimated_impact: str
    implementation: str


class ServicePerformanceStats(BaseModel):
    service: str
    time_window_seconds: float
    operation_count: int = 0
    average_response_time: float = 0.0
    p95_response_time: float = 0.0
    average_memory_usage: float = 0.0
    peak_memory_usage: int = 0
    error_rate: float = 0.0
    cache_hit_rate: float = 0.0
    throughput: float = Field(default=0.0, description="Operations per second over the window")
    last_updated: datetime = Field(default_factory=utc_now)


class OperationTracker:
    """Handle returned by `start_operation`; `finish` records the metric"""

    def __init__(self, monitor: "PerformanceMonitor", service: str, operation: str, input_size: int = 0):
        self.monitor = monitor
        self.service = service
        self.operation = operation
        self.input_size = input_size
        self.start_time = time.perf_counter()
        self.start_memory = monitor.get_memory_usage()
        self.finished: Optional[PerformanceMetric] = None

    def finish(
        self,
        output_size: int = 0,
        cache_hit: Optional[bool] = None,
        error: Optional[BaseException] = None,
    ) -> PerformanceMetric:
        if self.finished is not None:
            return self.finished

        metric = PerformanceMetric(
            timestamp=self.monitor.now(),
            service=self.service,
            operation=self.operation,
            duration=(time.perf_counter() - self.start_time) * 1000,
            memory_usage=self.monitor.get_memory_usage() - self.start_memory,
            input_size=self.input_size,
            output_size=output_size,
            cache_hit=cache_hit,
            error_occurred=error is not None,
        )
        self.monitor.record_metric(metric)
        self.finished = metric
        return metric


class PerformanceMonitor:
    """Records timing and memory of wrapped calls and raises threshold alerts"""

    def __init__(self, config: Optional[MonitoringConfig] = None, now: Callable[[], datetime] = utc_now):
        self.config = config or MonitoringConfig()
        self.now = now
        self.metrics: List[PerformanceMetric] = []
        self._alert_callbacks: List[Callable[[PerformanceAlert], None]] = []
        self._process = psutil.Process()

    def start_operation(self, service: str, operation: str, input_size: int = 0) -> OperationTracker:
        """Start monitoring a service operation"""
        return OperationTracker(self, service, operation, input_size)

    @contextmanager
    def track(self, service: str, operation: str, input_size: int = 0) -> Iterator[OperationTracker]:
        """Context manager form of start/finish; exceptions are recorded and re-raised"""

        tracker = self.start_operation(service, operation, input_size)
        try:
            yield tracker
        except BaseException as e:
            tracker.finish(error=e)
            raise
        else:
            tracker.finish()

    def record_metric(self, metric: PerformanceMetric) -> None:
        self.metrics.append(metric)

        # Keep metrics history manageable
        overflow = len(self.metrics) - self.config.max_history
        if overflow > 0:
            del self.metrics[:overflow]

        self._check_thresholds(metric)

    def on_alert(self, callback: Callable[[PerformanceAlert], None]) -> None:
        """Add performance alert callback"""
        self._alert_callbacks.append(callback)

    def get_service_stats(self, service: str, time_window_seconds: float = 3600) -> ServicePerformanceStats:
        """Get performance statistics for a service"""

        cutoff = self.now() - timedelta(seconds=time_window_seconds)
        service_metrics = [m for m in self.metrics if m.service == service and m.timestamp >= cutoff]

        if not service_metrics:
            return ServicePerformanceStats(service=service, time_window_seconds=time_window_seconds)

        durations = [m.duration for m in service_metrics]
        memory_usages = [m.memory_usage for m in service_metrics]
        error_count = sum(1 for m in service_metrics if m.error_occurred)

        return ServicePerformanceStats(
            service=service,
            time_window_seconds=time_window_seconds,
            operation_count=len(service_metrics),
            average_response_time=sum(durations) / len(durations),
            p95_response_time=_percentile(durations, 0.95),
            average_memory_usage=sum(memory_usages) / len(memory_usages),
            peak_memory_usage=max(memory_usages),
            error_rate=error_count / len(service_metrics),
            cache_hit_rate=_cache_hit_rate(service_metrics),
            throughput=len(service_metrics) / time_window_seconds if time_window_seconds > 0 else 0.0,
            last_updated=self.now(),
        )

    def get_optimization_recommendations(self) -> List[OptimizationRecommendation]:
        """Recommendations for every monitored service, highest priority first"""

        recommendations: List[OptimizationRecommendation] = []
        max_response = self.config.max_response_time_ms

        for service in self.services():
            stats = self.get_service_stats(service)

            if stats.average_response_time > max_response:
                recommendations.append(OptimizationRecommendation(
                    service=service,
                    issue=f"Average response time ({stats.average_response_time:.2f}ms) exceeds threshold",
                    recommendation="Cache results, simplify the hot path or reduce processing complexity",
                    priority="critical" if stats.average_response_time > max_response * 2 else "high",
                    estimated_impact=f"{max_response / stats.average_response_time * 100:.1f}% of current response time",
                    implementation="Memoize expensive operations and cache their results",
                ))

            if stats.average_memory_usage > self.config.max_memory_usage_bytes * 0.7:
                recommendations.append(OptimizationRecommendation(
                    service=service,
                    issue=f"Memory usage ({stats.average_memory_usage / 1024 / 1024:.2f}MB) is high",
                    recommendation="Reduce data copying and shrink bounded collections",
                    priority="medium",
                    estimated_impact="30-50% reduction in memory usage",
                    implementation="Lower memory tier capacities or enable cache compression",
                ))

            if self._uses_cache(service) and stats.cache_hit_rate < self.config.min_cache_hit_rate:
                recommendations.append(OptimizationRecommendation(
                    service=service,
                    issue=f"Cache hit rate ({stats.cache_hit_rate * 100:.1f}%) is below optimal",
                    recommendation="Improve cache key generation, increase cache size, or adjust TTL",
                    priority="medium",
                    estimated_impact=f"{(self.config.min_cache_hit_rate - stats.cache_hit_rate) * 100:.1f}% improvement in cache efficiency",
                    implementation="Use composite cache keys and a longer TTL",
                ))

            if stats.error_rate > self.config.max_error_rate:
                recommendations.append(OptimizationRecommendation(
                    service=service,
                    issue=f"Error rate ({stats.error_rate * 100:.1f}%) exceeds threshold",
                    recommendation="Improve input validation and add fallback paths",
                    priority="high",
                    estimated_impact=f"{self.config.max_error_rate / stats.error_rate * 100:.1f}% of current error rate",
                    implementation="Validate inputs before processing and degrade gracefully",
                ))

        return sorted(recommendations, key=lambda r: PRIORITY_ORDER.get(r.priority, 0), reverse=True)

    def services(self) -> List[str]:
        """Monitored service names in first-seen order"""
        return list(dict.fromkeys(m.service for m in self.metrics))

    def export_metrics(self, format: str = "json") -> str:
        """Export metrics for analysis as JSON records or CSV"""

        if format == "csv":
            buffer = io.StringIO()
            writer = csv.writer(buffer, lineterminator="\n")
            writer.writerow(CSV_HEADER)
            for m in self.metrics:
                writer.writerow([
                    m.timestamp.isoformat(),
                    m.service,
                    m.operation,
                    f"{m.duration:.3f}",
                    m.memory_usage,
                    m.input_size,
                    m.output_size,
                    "" if m.cache_hit is None else str(m.cache_hit).lower(),
                    str(m.error_occurred).lower(),
                ])
            return buffer.getvalue()

        return json.dumps([m.model_dump(mode="json") for m in self.metrics], indent=2)

    def clear_metrics(self) -> None:
        self.metrics = []

    def get_memory_usage(self) -> int:
        """Resident set size of this process in bytes"""
        return self._process.memory_info().rss

    def _check_thresholds(self, metric: PerformanceMetric) -> None:
        alerts: List[PerformanceAlert] = []
        max_response = self.config.max_response_time_ms

        if metric.duration > max_response:
            alerts.append(PerformanceAlert(
                type="slow_response",
                service=metric.service,
                operation=metric.operation,
                value=metric.duration,
                threshold=max_response,
                severity="critical" if metric.duration > max_response * 2 else "warning",
                timestamp=metric.timestamp,
            ))

        if metric.memory_usage > self.config.max_memory_usage_bytes:
            alerts.append(PerformanceAlert(
                type="high_memory",
                service=metric.service,
                operation=metric.operation,
                value=metric.memory_usage,
                threshold=self.config.max_memory_usage_bytes,
                severity="warning",
                timestamp=metric.timestamp,
            ))

        recent = [m for m in self.metrics if m.service == metric.service][-10:]

        cache_aware = [m for m in recent if m.cache_hit is not None]
        if cache_aware:
            hit_rate = _cache_hit_rate(cache_aware)
            if hit_rate < self.config.min_cache_hit_rate:
                alerts.append(PerformanceAlert(
                    type="low_cache_hit",
                    service=metric.service,
                    operation="cache_performance",
                    value=hit_rate,
                    threshold=self.config.min_cache_hit_rate,
                    severity="info",
                    timestamp=metric.timestamp,
                ))

        error_rate = sum(1 for m in recent if m.error_occurred) / len(recent)
        if error_rate > self.config.max_error_rate:
            alerts.append(PerformanceAlert(
                type="high_error_rate",
                service=metric.service,
                operation=metric.operation,
                value=error_rate,
                threshold=self.config.max_error_rate,
                severity="warning",
                timestamp=metric.timestamp,
            ))

        for alert in alerts:
            logger.debug("Performance alert", alert_type=alert.type, service=alert.service, value=alert.value)
            for callback in list(self._alert_callbacks):
                try:
                    callback(alert)
                except Exception as e:
                    logger.warning("Alert callback failed", alert_type=alert.type, error=str(e))

    def _uses_cache(self, service: str) -> bool:
        return any(m.cache_hit is not None for m in self.metrics if m.service == service)


def monitor_sync(
    monitor: PerformanceMonitor,
    service: str,
    operation: str,
    fn: Callable[[], T],
    input_size: int = 0,
) -> T:
    """Run `fn` under the monitor and return its result unchanged"""

    tracker = monitor.start_operation(service, operation, input_size)
    try:
        result = fn()
    except Exception as e:
        tracker.finish(error=e)
        raise
    tracker.finish(output_size=measure_output(result))
    return result


async def monitor_async(
    monitor: PerformanceMonitor,
    service: str,
    operation: str,
    fn: Callable[[], Any],
    input_size: int = 0,
) -> Any:
    """Await `fn()` under the monitor and return its result unchanged"""

    tracker = monitor.start_operation(service, operation, input_size)
    try:
        result = await fn()
    except Exception as e:
        tracker.finish(error=e)
        raise
    tracker.finish(output_size=measure_output(result))
    return result


def measure_output(result: Any) -> int:
    """Approximate serialized size of a monitored call's result"""

    if isinstance(result, str):
        return len(result)
    if isinstance(result, BaseModel):
        return len(result.model_dump_json())
    if isinstance(result, (dict, list)):
        return len(json.dumps(result, default=str))
    return 0


def _percentile(values: List[float], percentile: float) -> float:
    ordered = sorted(values)
    index = math.ceil(len(ordered) * percentile) - 1
    return ordered[max(0, index)]


def _cache_hit_rate(metrics: List[PerformanceMetric]) -> float:
    tracked = [m for m in metrics if m.cache_hit is not None]
    if not tracked:
        return 0.0
    return sum(1 for m in tracked if m.cache_hit) / len(tracked)
