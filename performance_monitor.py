#!/usr/bin/env python3
"""
Performance Monitor for the One-Page Resume pipeline

Tracks:
1. Durations of LaTeX compiles, LLM calls and PDF measurements
2. Error counts per operation
3. System resource utilization (CPU, memory, disk) via psutil

Metrics are kept in memory and sampled on demand.
"""

import threading
import time
from collections import defaultdict
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, List

import psutil

MAX_SAMPLES_PER_OPERATION = 100


class PerformanceMonitor:
    """In-memory operation timing and system health"""

    def __init__(self):
        self.response_times = defaultdict(list)
        self.error_counts = defaultdict(int)
        self.start_time = datetime.now()
        self.lock = threading.Lock()

    def record_response_time(self, operation: str, duration: float):
        """Record response time for an operation"""
        with self.lock:
            samples = self.response_times[operation]
            samples.append(duration)
            if len(samples) > MAX_SAMPLES_PER_OPERATION:
                del samples[:-MAX_SAMPLES_PER_OPERATION]

    def record_error(self, operation: str):
        with self.lock:
            self.error_counts[operation] += 1

    @contextmanager
    def track(self, operation: str):
        """Time a block; exceptions are counted against the operation and re-raised."""
        start = time.monotonic()
        try:
            yield
        except Exception:
            self.record_error(operation)
            raise
        finally:
            self.record_response_time(operation, time.monotonic() - start)

    def get_system_metrics(self) -> Dict[str, Any]:
        """Get system resource metrics"""
        try:
            memory = psutil.virtual_memory()
            disk = psutil.disk_usage('/')
            return {
                'cpu_percent': psutil.cpu_percent(interval=None),
                'memory_percent': memory.percent,
                'memory_available_gb': memory.available / (1024**3),
                'disk_percent': disk.percent,
                'disk_free_gb': disk.free / (1024**3)
            }
        except Exception as e:
            return {'error': str(e)}

    def assess_system_health(self, system: Dict[str, Any]) -> Dict[str, str]:
        if 'error' in system:
            return {'overall': 'unknown'}

        def level(percent: float) -> str:
            return 'good' if percent < 80 else 'warning' if percent < 95 else 'critical'

        health = {
            'cpu': level(system['cpu_percent']),
            'memory': level(system['memory_percent']),
        }
        if 'critical' in health.values():
            health['overall'] = 'critical'
        elif 'warning' in health.values():
            health['overall'] = 'warning'
        else:
            health['overall'] = 'good'
        return health

    def get_performance_summary(self) -> Dict[str, Any]:
        with self.lock:
            avg_response_times = {}
            for operation, times in self.response_times.items():
                if times:
                    avg_response_times[operation] = {
                        'avg': sum(times) / len(times),
                        'min': min(times),
                        'max': max(times),
                        'count': len(times)
                    }
            errors = dict(self.error_counts)

        system = self.get_system_metrics()
        return {
            'timestamp': datetime.now().isoformat(),
            'uptime_hours': (datetime.now() - self.start_time).total_seconds() / 3600,
            'avg_response_times': avg_response_times,
            'error_summary': errors,
            'system': system,
            'system_health': self.assess_system_health(system),
            'recommendations': _generate_recommendations(avg_response_times, errors),
        }


def _generate_recommendations(avg_response_times: Dict[str, Dict[str, float]],
                              errors: Dict[str, int]) -> List[str]:
    recommendations = []

    for operation, times in avg_response_times.items():
        if times['avg'] > 30:
            recommendations.append(f"Consider optimizing {operation} (avg: {times['avg']:.1f}s)")

    if sum(errors.values()) > 10:
        recommendations.append("High error rate detected - review logs/operations.json")

    if not recommendations:
        recommendations.append("System performance is within normal parameters")

    return recommendations


# Global performance monitor instance
_performance_monitor = None


def get_performance_monitor() -> PerformanceMonitor:
    """Get the global performance monitor instance"""
    global _performance_monitor
    if _performance_monitor is None:
        _performance_monitor = PerformanceMonitor()
    return _performance_monitor


def get_performance_dashboard_data() -> Dict[str, Any]:
    return get_performance_monitor().get_performance_summary()
