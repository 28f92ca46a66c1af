"""Analytics module for EMA Hunter."""

from .performance_metrics import PerformanceMetrics, print_metrics_report

__all__ = [
    'PerformanceMetrics',
    'print_metrics_report',
]
