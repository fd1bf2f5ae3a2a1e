"""
CPU and CPU core collectors.

Uses psutil for time accounting, clocks and temperatures, and sysfs for
the core-to-package topology. A CPU entity is a physical package; a CPU
core entity is a logical CPU, labelled with its parent package.

Utilization is computed from the difference of cumulative CPU times
between two collections; the first collection reports the average since
boot.
"""

from collections.abc import Iterable
from pathlib import Path
from typing import Any

import psutil

from ..config.schema import ExporterConfig
from ..models.counter import Counter
from ..models.device import DeviceClass
from ..models.metric import Batch
from .base import Collector, CollectorError

CPU_SYSFS = Path("/sys/devices/system/cpu")

UTIL_FIELDS = {
    "DCGM_FI_DEV_CPU_UTIL_USER": ("user",),
    "DCGM_FI_DEV_CPU_UTIL_NICE": ("nice",),
    "DCGM_FI_DEV_CPU_UTIL_SYS": ("system",),
    "DCGM_FI_DEV_CPU_UTIL_IRQ": ("irq", "softirq"),
}
TOTAL_UTIL = "DCGM_FI_DEV_CPU_UTIL_TOTAL"
CLOCK = "DCGM_FI_DEV_CPU_CLOCK_CURRENT"
TEMPERATURE = "DCGM_FI_DEV_CPU_TEMP_CURRENT"

# Time spent not doing work
IDLE_TIMES = ("idle", "iowait")
# Already accounted in user/nice on Linux
GUEST_TIMES = ("guest", "guest_nice")


def _read_int(path: Path, default: int = 0) -> int:
    """Read an integer from a sysfs file, returning default on error."""
    try:
        return int(path.read_text().strip())
    except (OSError, ValueError):
        return default


def package_of(cpu: int) -> int:
    """Physical package id of a logical CPU."""
    return _read_int(CPU_SYSFS / f"cpu{cpu}" / "topology" / "physical_package_id")


def _times_dict(times: Any) -> dict[str, float]:
    return {name: value for name, value in times._asdict().items() if name not in GUEST_TIMES}


def utilization(deltas: Iterable[dict[str, float]]) -> dict[str, float]:
    """
    Aggregate CPU time deltas into utilization percentages.

    Returns:
        field name -> percent, for the total and per-mode fields
    """
    summed: dict[str, float] = {}
    for delta in deltas:
        for name, value in delta.items():
            summed[name] = summed.get(name, 0.0) + value

    total = sum(summed.values())
    if total <= 0:
        return {}

    result = {TOTAL_UTIL: 100.0 * (total - sum(summed.get(n, 0.0) for n in IDLE_TIMES)) / total}
    for field, modes in UTIL_FIELDS.items():
        result[field] = 100.0 * sum(summed.get(m, 0.0) for m in modes) / total
    return {k: round(v, 2) for k, v in result.items()}


class _CPUTimesCollector(Collector):
    """Shared per-logical-CPU time tracking."""

    SUPPORTED_FIELDS = frozenset([TOTAL_UTIL, CLOCK, TEMPERATURE, *UTIL_FIELDS])

    def __init__(self, counters: list[Counter], config: ExporterConfig):
        super().__init__(counters, config)

        try:
            self._cpus = list(range(len(psutil.cpu_times(percpu=True))))
        except (OSError, psutil.Error) as e:
            raise CollectorError(f"CPU times unavailable: {e}") from e
        if not self._cpus:
            raise CollectorError("No CPUs found")

        self._packages = {cpu: package_of(cpu) for cpu in self._cpus}
        self._last_times: list[dict[str, float]] | None = None

    def _time_deltas(self) -> list[dict[str, float]]:
        """Per-CPU time spent in each mode since the previous call."""
        current = [_times_dict(t) for t in psutil.cpu_times(percpu=True)]
        previous = self._last_times
        self._last_times = current

        if previous is None or len(previous) != len(current):
            return current

        return [
            {name: max(0.0, value - before.get(name, 0.0)) for name, value in now.items()}
            for now, before in zip(current, previous)
        ]

    def _clocks(self) -> list[float]:
        """Current clock of each logical CPU in MHz (may be empty)."""
        freqs = psutil.cpu_freq(percpu=True) or []
        return [f.current for f in freqs]

    def _read_all(self) -> tuple[list[dict[str, float]], list[float]]:
        try:
            return self._time_deltas(), self._clocks()
        except (OSError, psutil.Error) as e:
            raise CollectorError(f"Failed to read CPU statistics: {e}") from e


class CPUCollector(_CPUTimesCollector):
    """Collector for per-package CPU metrics."""

    DEVICE_CLASS = DeviceClass.CPU

    def _package_temperatures(self) -> dict[int, float]:
        """Package temperatures from coretemp (Intel) or k10temp (AMD)."""
        if not hasattr(psutil, "sensors_temperatures"):
            return {}

        temps: dict[int, float] = {}
        sensors = psutil.sensors_temperatures()
        for entry in sensors.get("coretemp", []):
            if entry.label.startswith("Package id "):
                temps[int(entry.label.rsplit(" ", 1)[-1])] = entry.current
        for entry in sensors.get("k10temp", []):
            if entry.label in ("Tctl", "Tdie"):
                temps.setdefault(0, entry.current)
        return temps

    async def get_metrics(self) -> Batch:
        """Collect CPU metrics, one list per physical package."""
        deltas, clocks = self._read_all()
        try:
            temps = self._package_temperatures() if TEMPERATURE in self.field_names else {}
        except (OSError, psutil.Error) as e:
            raise CollectorError(f"Failed to read CPU temperatures: {e}") from e

        batch: Batch = []
        for package in sorted(set(self._packages.values())):
            members = [cpu for cpu in self._cpus if self._packages[cpu] == package]

            readings: dict[str, Any] = utilization(deltas[cpu] for cpu in members if cpu < len(deltas))
            member_clocks = [clocks[cpu] for cpu in members if cpu < len(clocks)]
            if member_clocks:
                readings[CLOCK] = round(sum(member_clocks) / len(member_clocks))
            readings[TEMPERATURE] = temps.get(package)

            batch.append(self.build_metrics(readings, gpu=str(package)))

        return batch


class CPUCoreCollector(_CPUTimesCollector):
    """Collector for per-logical-CPU metrics."""

    DEVICE_CLASS = DeviceClass.CPU_CORE
    SUPPORTED_FIELDS = _CPUTimesCollector.SUPPORTED_FIELDS - {TEMPERATURE}

    async def get_metrics(self) -> Batch:
        """Collect CPU core metrics, one list per logical CPU."""
        deltas, clocks = self._read_all()

        batch: Batch = []
        for cpu in self._cpus:
            readings: dict[str, Any] = utilization([deltas[cpu]]) if cpu < len(deltas) else {}
            if cpu < len(clocks):
                readings[CLOCK] = round(clocks[cpu])

            batch.append(self.build_metrics(
                readings,
                gpu=str(cpu),
                gpu_device=str(self._packages[cpu]),
            ))

        return batch
