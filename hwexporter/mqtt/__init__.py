"""
MQTT publishing of rendered metrics.
"""

from .client import MetricsPublisher

__all__ = [
    "MetricsPublisher",
]
