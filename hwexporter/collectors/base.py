"""
Base collector interface for device-class telemetry.

A collector owns the telemetry source of one device class and returns a
fresh Batch of metric records on every call to get_metrics().
"""

import math
import socket
from abc import ABC, abstractmethod
from collections.abc import Callable
from decimal import Decimal
from typing import Any

from ..config.schema import ExporterConfig
from ..models.counter import Counter
from ..models.device import DeviceClass, SystemInfo
from ..models.metric import Batch, Metric


class CollectorError(Exception):
    """Raised when a collector cannot be created or fails to collect."""

    pass


# Releases the resources a collector holds; called once at shutdown
Cleanup = Callable[[], None]


def format_value(value: Any) -> str:
    """
    Render a reading as exposition text.

    Integers are printed as is, floats in the shortest positional form
    that round-trips (no exponent, no trailing ".0"), strings unchanged.
    """
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isnan(value):
            return "NaN"
        if math.isinf(value):
            return "+Inf" if value > 0 else "-Inf"
        text = repr(value)
        if "e" in text or "E" in text:
            text = format(Decimal(text), "f")
        if text.endswith(".0"):
            text = text[:-2]
        return text
    raise CollectorError(f"Unsupported reading type: {type(value).__name__}")


class Collector(ABC):
    """
    Abstract base class for device-class collectors.

    Subclasses declare the fields they can read in SUPPORTED_FIELDS; the
    counters handed to the constructor are narrowed to those. Counters of
    type "label" are not emitted on their own: their reading is attached
    as a label to every metric of the same device.
    """

    DEVICE_CLASS: DeviceClass
    SUPPORTED_FIELDS: frozenset[str] = frozenset()

    def __init__(self, counters: list[Counter], config: ExporterConfig):
        """
        Initialize collector.

        Args:
            counters: All configured counters
            config: Exporter settings

        Raises:
            CollectorError: If none of the counters can be read by this collector
        """
        self.config = config
        self.counters = [c for c in counters if c.field_name in self.SUPPORTED_FIELDS]
        if not any(not c.is_label for c in self.counters):
            raise CollectorError(f"no fields to watch for device type: {self.DEVICE_CLASS.label}")

        self.hostname = socket.gethostname() if config.hostname else ""
        self.sys_info: SystemInfo | None = None

    @property
    def field_names(self) -> list[str]:
        """Field names this collector reads every cycle."""
        return [c.field_name for c in self.counters]

    @abstractmethod
    async def get_metrics(self) -> Batch:
        """
        Collect one snapshot.

        Returns:
            One list of metrics per device, in device order

        Raises:
            CollectorError: If the telemetry source cannot be read
        """
        pass

    def cleanup(self) -> None:
        """Release telemetry source resources."""
        pass

    def build_metrics(self, readings: dict[str, Any], **identity: str) -> list[Metric]:
        """
        Turn one device's readings into metric records.

        Args:
            readings: field name -> raw reading; None marks a blank value
            identity: Metric identity fields (gpu, gpu_uuid, ...)

        Returns:
            Metrics in counter order, blanks skipped
        """
        labels = {
            c.field_name: format_value(readings[c.field_name])
            for c in self.counters
            if c.is_label and readings.get(c.field_name) is not None
        }

        metrics = []
        for counter in self.counters:
            if counter.is_label:
                continue
            reading = readings.get(counter.field_name)
            if reading is None:
                continue
            metrics.append(Metric(
                counter=counter,
                value=format_value(reading),
                hostname=self.hostname,
                labels=dict(labels),
                **identity,
            ))

        return metrics

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.DEVICE_CLASS.label}, {len(self.counters)} fields)"
