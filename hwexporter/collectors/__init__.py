"""
Device-class collectors and the factory used to build them.
"""

from ..config.schema import Config
from ..models.counter import Counter
from ..models.device import DeviceClass
from .base import Cleanup, Collector, CollectorError, format_value
from .cpu import CPUCollector, CPUCoreCollector
from .gpu import GPUCollector

COLLECTOR_TYPES: dict[DeviceClass, type[Collector]] = {
    DeviceClass.GPU: GPUCollector,
    DeviceClass.CPU: CPUCollector,
    DeviceClass.CPU_CORE: CPUCoreCollector,
}


def new_collector(
    counters: list[Counter],
    config: Config,
    device_class: DeviceClass,
) -> tuple[Collector, Cleanup]:
    """
    Create the collector for one device class.

    Returns:
        The collector and the callback releasing its resources

    Raises:
        CollectorError: If the class is disabled or cannot be collected here
    """
    if device_class not in config.exporter.collectors:
        raise CollectorError("disabled in configuration")

    collector_type = COLLECTOR_TYPES.get(device_class)
    if collector_type is None:
        raise CollectorError(f"{device_class.label} telemetry is not available through NVML or psutil")

    collector = collector_type(counters, config.exporter)
    return collector, collector.cleanup


__all__ = [
    "Cleanup",
    "Collector",
    "CollectorError",
    "CPUCollector",
    "CPUCoreCollector",
    "GPUCollector",
    "COLLECTOR_TYPES",
    "format_value",
    "new_collector",
]
