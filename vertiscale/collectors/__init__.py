"""
Metric sources for the scaling rules.

- Prometheus: instant PromQL queries evaluated by the decision engine
"""

from .prometheus import PrometheusMetrics, Sample

__all__ = [
    "PrometheusMetrics",
    "Sample",
]
