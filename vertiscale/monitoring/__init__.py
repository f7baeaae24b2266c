"""Monitoring module."""

from vertiscale.monitoring.metrics import ScalingMetrics, get_metrics, init_metrics

__all__ = ["ScalingMetrics", "get_metrics", "init_metrics"]
