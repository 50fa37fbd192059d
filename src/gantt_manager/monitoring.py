"""
Performance Monitoring

Collects store query timings and mutation statistics for the Gantt data layer
and reports process resource usage for the metrics endpoint.
"""

import functools
import logging
import time
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict

import psutil

# Performance monitoring configuration
METRICS_HISTORY_SIZE = 1000  # Keep last 1000 data points for trending
SLOW_QUERY_THRESHOLD_MS = 50
SLOW_MUTATION_THRESHOLD_MS = 200

logger = logging.getLogger(__name__)


@dataclass
class PerformanceMetric:
    """Single performance measurement with timestamp."""
    timestamp: datetime
    value: float
    operation: str


@dataclass
class SystemMetrics:
    """Current system performance metrics."""
    total_tasks: int
    total_links: int
    avg_query_time_ms: float
    avg_mutation_time_ms: float
    mutations_today: Dict[str, int] = field(default_factory=dict)
    rejected_mutations_today: int = 0
    memory_usage_mb: float = 0.0
    cpu_usage_percent: float = 0.0
    uptime_seconds: float = 0.0


class PerformanceMonitor:
    """
    Performance monitoring system for store and engine operations.

    Features:
    - Query execution time tracking with slow query warnings
    - Mutation timing and per-operation daily counters
    - Process memory and CPU usage via psutil
    """

    def __init__(self):
        self.query_times: deque = deque(maxlen=METRICS_HISTORY_SIZE)
        self.mutation_times: deque = deque(maxlen=METRICS_HISTORY_SIZE)
        self.daily_stats = defaultdict(int)
        self.start_time = datetime.now(timezone.utc)
        self._last_reset_date = datetime.now(timezone.utc).date()

    def record_query_time(self, operation: str, duration_ms: float):
        """
        Record store query execution time.

        Args:
            operation: Name of the store operation
            duration_ms: Execution time in milliseconds
        """
        self.query_times.append(PerformanceMetric(
            timestamp=datetime.now(timezone.utc),
            value=duration_ms,
            operation=operation
        ))

        if duration_ms > SLOW_QUERY_THRESHOLD_MS:
            logger.warning(f"Slow query detected: {operation} took {duration_ms:.2f}ms")

    def record_mutation(self, operation: str, duration_ms: float):
        """Record a committed engine mutation."""
        self.mutation_times.append(PerformanceMetric(
            timestamp=datetime.now(timezone.utc),
            value=duration_ms,
            operation=operation
        ))
        self.increment_daily_stat(f"mutation_{operation}")

        if duration_ms > SLOW_MUTATION_THRESHOLD_MS:
            logger.warning(f"Slow mutation: {operation} took {duration_ms:.2f}ms")

    def record_rejection(self, operation: str, error_code: str):
        """Record a mutation that was rejected or rolled back."""
        self.increment_daily_stat("mutations_rejected")
        self.increment_daily_stat(f"rejected_{error_code}")
        logger.debug(f"Mutation {operation} rejected with {error_code}")

    def increment_daily_stat(self, stat_name: str, amount: int = 1):
        self._check_daily_reset()
        self.daily_stats[stat_name] += amount

    def _check_daily_reset(self):
        """Reset daily statistics if date has changed."""
        current_date = datetime.now(timezone.utc).date()
        if current_date != self._last_reset_date:
            logger.info("Resetting daily statistics for new day")
            self.daily_stats.clear()
            self._last_reset_date = current_date

    def get_average_query_time(self) -> float:
        if not self.query_times:
            return 0.0
        return sum(m.value for m in self.query_times) / len(self.query_times)

    def get_average_mutation_time(self) -> float:
        if not self.mutation_times:
            return 0.0
        return sum(m.value for m in self.mutation_times) / len(self.mutation_times)

    def get_mutation_counts(self) -> Dict[str, int]:
        """Today's committed mutations keyed by operation name."""
        self._check_daily_reset()
        prefix = "mutation_"
        return {
            name[len(prefix):]: count
            for name, count in self.daily_stats.items()
            if name.startswith(prefix)
        }

    def get_memory_usage_mb(self) -> float:
        """Get current process memory usage in MB."""
        try:
            process = psutil.Process()
            return process.memory_info().rss / (1024 * 1024)
        except psutil.Error as e:
            logger.warning(f"Failed to get memory usage: {e}")
            return 0.0

    def get_cpu_usage_percent(self) -> float:
        """Get current process CPU usage percentage."""
        try:
            return psutil.Process().cpu_percent(interval=None)
        except psutil.Error as e:
            logger.warning(f"Failed to get CPU usage: {e}")
            return 0.0

    def get_system_metrics(self, database) -> SystemMetrics:
        """
        Collect system performance metrics.

        Args:
            database: GanttDatabase instance used for row counts

        Returns:
            SystemMetrics: Current system performance data
        """
        counts = database.get_counts()
        uptime = (datetime.now(timezone.utc) - self.start_time).total_seconds()

        return SystemMetrics(
            total_tasks=counts["tasks"],
            total_links=counts["links"],
            avg_query_time_ms=self.get_average_query_time(),
            avg_mutation_time_ms=self.get_average_mutation_time(),
            mutations_today=self.get_mutation_counts(),
            rejected_mutations_today=self.daily_stats.get("mutations_rejected", 0),
            memory_usage_mb=self.get_memory_usage_mb(),
            cpu_usage_percent=self.get_cpu_usage_percent(),
            uptime_seconds=uptime,
        )


# Global performance monitor instance
performance_monitor = PerformanceMonitor()


def timed_query(operation: str) -> Callable:
    """Decorator recording the wall time of a store method on the global monitor."""
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            start = time.perf_counter()
            try:
                return func(*args, **kwargs)
            finally:
                performance_monitor.record_query_time(
                    operation, (time.perf_counter() - start) * 1000
                )
        return wrapper
    return decorator


def get_performance_monitor() -> PerformanceMonitor:
    """Get the global performance monitor instance."""
    return performance_monitor
