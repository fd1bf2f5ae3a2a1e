"""
Hardware Exporter: GPU, NVSwitch and CPU telemetry rendered as Prometheus text.
"""

from .const import APP_VERSION

__version__ = APP_VERSION
