"""
Tests for collectors and the collector factory.
"""

import asyncio
import math
from collections import namedtuple
from types import SimpleNamespace

import psutil
import pynvml
import pytest

from hwexporter.collectors import (
    Collector,
    CollectorError,
    CPUCollector,
    CPUCoreCollector,
    GPUCollector,
    format_value,
    new_collector,
)
from hwexporter.collectors import cpu as cpu_module
from hwexporter.collectors.cpu import utilization
from hwexporter.collectors.gpu import _mig_profile
from hwexporter.config.schema import Config, ExporterConfig
from hwexporter.models.counter import Counter, PromType
from hwexporter.models.device import DeviceClass
from hwexporter.models.metric import Batch


CPUTimes = namedtuple("scputimes", "user nice system idle iowait irq softirq steal guest guest_nice")
CPUFreq = namedtuple("scpufreq", "current min max")


@pytest.mark.parametrize("value, expected", [
    (42, "42"),
    (1.5, "1.5"),
    (2.0, "2"),
    (1e-05, "0.00001"),
    (1e16, "10000000000000000"),
    (True, "1"),
    (math.nan, "NaN"),
    (-math.inf, "-Inf"),
    ("535.104.05", "535.104.05"),
])
def test_format_value(value, expected: str) -> None:
    assert format_value(value) == expected


def test_format_value_rejects_unknown_types() -> None:
    with pytest.raises(CollectorError):
        format_value(object())


class FakeCollector(Collector):
    DEVICE_CLASS = DeviceClass.GPU
    SUPPORTED_FIELDS = frozenset({"A", "B", "VERSION"})

    async def get_metrics(self) -> Batch:
        return [self.build_metrics({"A": 1, "B": None, "VERSION": "1.0"}, gpu="0")]


def test_build_metrics_attaches_label_counters() -> None:
    counters = [Counter("A"), Counter("B"), Counter("VERSION", PromType.LABEL), Counter("OTHER")]
    collector = FakeCollector(counters, ExporterConfig(hostname=False))

    (metrics,) = asyncio.run(collector.get_metrics())

    assert collector.field_names == ["A", "B", "VERSION"]
    # B is blank and skipped; VERSION only appears as a label
    assert [m.counter.field_name for m in metrics] == ["A"]
    assert metrics[0].value == "1"
    assert metrics[0].labels == {"VERSION": "1.0"}
    assert metrics[0].hostname == ""


def test_build_metrics_labels_are_not_shared() -> None:
    collector = FakeCollector([Counter("A"), Counter("B"), Counter("VERSION", PromType.LABEL)], ExporterConfig())

    first, second = collector.build_metrics({"A": 1, "B": 2, "VERSION": "1.0"}, gpu="0")
    first.labels["extra"] = "x"

    assert "extra" not in second.labels


def test_hostname_label(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("socket.gethostname", lambda: "node-7")

    collector = FakeCollector([Counter("A")], ExporterConfig(hostname=True))

    assert collector.build_metrics({"A": 1}, gpu="0")[0].hostname == "node-7"


def test_no_fields_to_watch() -> None:
    with pytest.raises(CollectorError, match="no fields to watch"):
        FakeCollector([Counter("VERSION", PromType.LABEL), Counter("OTHER")], ExporterConfig())


def test_utilization() -> None:
    result = utilization([
        {"user": 30.0, "nice": 0.0, "system": 10.0, "idle": 50.0, "iowait": 10.0, "irq": 0.0, "softirq": 0.0},
    ])

    assert result["DCGM_FI_DEV_CPU_UTIL_TOTAL"] == 40.0
    assert result["DCGM_FI_DEV_CPU_UTIL_USER"] == 30.0
    assert result["DCGM_FI_DEV_CPU_UTIL_SYS"] == 10.0
    assert utilization([{"user": 0.0, "idle": 0.0}]) == {}


def cpu_counters() -> list[Counter]:
    return [
        Counter("DCGM_FI_DEV_CPU_UTIL_TOTAL"),
        Counter("DCGM_FI_DEV_CPU_UTIL_USER"),
        Counter("DCGM_FI_DEV_CPU_CLOCK_CURRENT"),
        Counter("DCGM_FI_DEV_CPU_TEMP_CURRENT"),
    ]


@pytest.fixture
def fake_cpus(monkeypatch: pytest.MonkeyPatch) -> dict:
    """Two logical CPUs on package 0 and one on package 1."""
    state = {
        "times": [
            CPUTimes(10, 0, 0, 90, 0, 0, 0, 0, 0, 0),
            CPUTimes(20, 0, 0, 80, 0, 0, 0, 0, 0, 0),
            CPUTimes(50, 0, 0, 50, 0, 0, 0, 0, 0, 0),
        ],
    }
    monkeypatch.setattr(psutil, "cpu_times", lambda percpu=False: state["times"])
    monkeypatch.setattr(psutil, "cpu_freq", lambda percpu=False: [CPUFreq(2000.0, 800, 3000)] * 3)
    monkeypatch.setattr(psutil, "sensors_temperatures", lambda: {
        "coretemp": [SimpleNamespace(label="Package id 1", current=61.0)],
    })
    monkeypatch.setattr(cpu_module, "package_of", lambda cpu: 0 if cpu < 2 else 1)
    return state


def test_cpu_core_collector(fake_cpus: dict) -> None:
    collector = CPUCoreCollector(cpu_counters(), ExporterConfig(hostname=False))

    batch = asyncio.run(collector.get_metrics())

    assert len(batch) == 3
    by_field = {m.counter.field_name: m for m in batch[2]}
    assert by_field["DCGM_FI_DEV_CPU_UTIL_TOTAL"].value == "50"
    assert by_field["DCGM_FI_DEV_CPU_CLOCK_CURRENT"].value == "2000"
    assert "DCGM_FI_DEV_CPU_TEMP_CURRENT" not in by_field
    assert (batch[2][0].gpu, batch[2][0].gpu_device) == ("2", "1")


def test_cpu_core_collector_uses_deltas(fake_cpus: dict) -> None:
    collector = CPUCoreCollector(cpu_counters(), ExporterConfig(hostname=False))
    asyncio.run(collector.get_metrics())

    fake_cpus["times"] = [
        CPUTimes(10, 0, 0, 190, 0, 0, 0, 0, 0, 0),
        CPUTimes(120, 0, 0, 80, 0, 0, 0, 0, 0, 0),
        CPUTimes(100, 0, 0, 100, 0, 0, 0, 0, 0, 0),
    ]
    batch = asyncio.run(collector.get_metrics())

    totals = [m.value for metrics in batch for m in metrics if m.counter.field_name == "DCGM_FI_DEV_CPU_UTIL_TOTAL"]
    assert totals == ["0", "100", "50"]


def test_cpu_collector_groups_by_package(fake_cpus: dict) -> None:
    collector = CPUCollector(cpu_counters(), ExporterConfig(hostname=False))

    batch = asyncio.run(collector.get_metrics())

    assert [metrics[0].gpu for metrics in batch] == ["0", "1"]
    package0 = {m.counter.field_name: m.value for m in batch[0]}
    package1 = {m.counter.field_name: m.value for m in batch[1]}
    assert package0["DCGM_FI_DEV_CPU_UTIL_TOTAL"] == "15"
    assert "DCGM_FI_DEV_CPU_TEMP_CURRENT" not in package0
    assert package1["DCGM_FI_DEV_CPU_TEMP_CURRENT"] == "61"


def test_cpu_collector_read_failure(fake_cpus: dict, monkeypatch: pytest.MonkeyPatch) -> None:
    collector = CPUCollector(cpu_counters(), ExporterConfig(hostname=False))

    def broken(percpu=False):
        raise OSError("/proc/stat unreadable")

    monkeypatch.setattr(psutil, "cpu_times", broken)

    with pytest.raises(CollectorError):
        asyncio.run(collector.get_metrics())


def not_supported(*args):
    raise pynvml.NVMLError(pynvml.NVML_ERROR_NOT_SUPPORTED)


@pytest.fixture
def fake_nvml(monkeypatch: pytest.MonkeyPatch) -> dict:
    """Two GPUs without MIG support; handles are the GPU indices."""
    calls = {"shutdown": 0, "count": 2}

    def shutdown():
        calls["shutdown"] += 1

    monkeypatch.setattr(pynvml, "nvmlInit", lambda: None)
    monkeypatch.setattr(pynvml, "nvmlShutdown", shutdown)
    monkeypatch.setattr(pynvml, "nvmlSystemGetDriverVersion", lambda: "535.104.05")
    monkeypatch.setattr(pynvml, "nvmlDeviceGetCount", lambda: calls["count"])
    monkeypatch.setattr(pynvml, "nvmlDeviceGetHandleByIndex", lambda index: index)
    monkeypatch.setattr(pynvml, "nvmlDeviceGetName", lambda h: "Tesla T4")
    monkeypatch.setattr(pynvml, "nvmlDeviceGetUUID", lambda h: f"GPU-{h:04d}")
    monkeypatch.setattr(pynvml, "nvmlDeviceGetMinorNumber", lambda h: h)
    monkeypatch.setattr(pynvml, "nvmlDeviceGetMigMode", not_supported)
    monkeypatch.setattr(pynvml, "nvmlDeviceGetTemperature", lambda h, sensor: 40 + h)
    monkeypatch.setattr(
        pynvml, "nvmlDeviceGetUtilizationRates", lambda h: SimpleNamespace(gpu=10 * (h + 1), memory=5)
    )
    monkeypatch.setattr(pynvml, "nvmlDeviceGetMemoryInfo", not_supported)
    return calls


def gpu_counters() -> list[Counter]:
    return [
        Counter("DCGM_FI_DEV_GPU_TEMP"),
        Counter("DCGM_FI_DEV_GPU_UTIL"),
        Counter("DCGM_FI_DEV_FB_USED"),
        Counter("DCGM_FI_DRIVER_VERSION", PromType.LABEL),
        Counter("DCGM_FI_DEV_CPU_UTIL_TOTAL"),
    ]


def test_gpu_collector(fake_nvml: dict) -> None:
    collector = GPUCollector(gpu_counters(), ExporterConfig(hostname=False))

    batch = asyncio.run(collector.get_metrics())

    assert len(collector.sys_info.gpus) == 2
    assert collector.sys_info.gpus[1].device == "nvidia1"
    assert len(batch) == 2
    # FB_USED is not supported by the device and left out
    assert [m.counter.field_name for m in batch[1]] == ["DCGM_FI_DEV_GPU_TEMP", "DCGM_FI_DEV_GPU_UTIL"]
    assert [m.value for m in batch[1]] == ["41", "20"]
    metric = batch[1][0]
    assert (metric.gpu, metric.gpu_uuid, metric.gpu_model_name) == ("1", "GPU-0001", "Tesla T4")
    assert metric.labels == {"DCGM_FI_DRIVER_VERSION": "535.104.05"}


def test_gpu_collector_device_filter(fake_nvml: dict) -> None:
    collector = GPUCollector(gpu_counters(), ExporterConfig(hostname=False, gpu_devices=[1]))

    batch = asyncio.run(collector.get_metrics())

    assert [metrics[0].gpu for metrics in batch] == ["1"]


def test_gpu_collector_cleanup_runs_once(fake_nvml: dict) -> None:
    collector = GPUCollector(gpu_counters(), ExporterConfig())

    collector.cleanup()
    collector.cleanup()

    assert fake_nvml["shutdown"] == 1


def test_gpu_collector_without_gpus(fake_nvml: dict) -> None:
    fake_nvml["count"] = 0

    with pytest.raises(CollectorError, match="No GPUs found"):
        GPUCollector(gpu_counters(), ExporterConfig())
    assert fake_nvml["shutdown"] == 1


def test_mig_profile() -> None:
    assert _mig_profile("NVIDIA A100-SXM4-40GB MIG 1g.5gb") == "1g.5gb"
    assert _mig_profile("1g.5gb") == "1g.5gb"


def test_new_collector_disabled_class() -> None:
    config = Config(exporter=ExporterConfig(collectors=[DeviceClass.GPU]))

    with pytest.raises(CollectorError, match="disabled"):
        new_collector([Counter("DCGM_FI_DEV_CPU_UTIL_TOTAL")], config, DeviceClass.CPU)


def test_new_collector_switch_unavailable() -> None:
    with pytest.raises(CollectorError, match="not available"):
        new_collector([Counter("DCGM_FI_DEV_GPU_TEMP")], Config(), DeviceClass.SWITCH)


def test_new_collector_returns_cleanup(fake_cpus: dict) -> None:
    collector, cleanup = new_collector(cpu_counters(), Config(), DeviceClass.CPU_CORE)

    assert isinstance(collector, CPUCoreCollector)
    cleanup()
