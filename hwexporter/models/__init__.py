"""
Data models for counters, metric records and device inventory.
"""

from .counter import Counter, PromType
from .device import DeviceClass, GPUInfo, MigInstance, SystemInfo
from .metric import Batch, Metric

__all__ = [
    "Counter",
    "PromType",
    "Metric",
    "Batch",
    "DeviceClass",
    "GPUInfo",
    "MigInstance",
    "SystemInfo",
]
