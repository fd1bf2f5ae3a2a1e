"""
Pytest configuration and fixtures.
"""

from collections.abc import Callable
from pathlib import Path

import pytest

from hwexporter.config.schema import Config, ExporterConfig
from hwexporter.models.counter import Counter, PromType
from hwexporter.models.metric import Metric


COUNTERS_CSV = """\
# field, type, help
DCGM_FI_DEV_GPU_TEMP, gauge, GPU temperature (in C).
DCGM_FI_DEV_GPU_UTIL, gauge, GPU utilization (in %).
DCGM_FI_DEV_FB_USED, gauge, Framebuffer memory used (in MiB).
DCGM_FI_DRIVER_VERSION, label, Driver version.
DCGM_FI_DEV_CPU_UTIL_TOTAL, gauge, CPU utilization, total (in %).
DCGM_FI_DEV_CPU_UTIL_USER, gauge, CPU utilization, user (in %).
"""


@pytest.fixture
def example_config_path() -> Path:
    """Path to the example config shipped with the project."""
    return Path(__file__).parent.parent / "config.example.conf"


@pytest.fixture
def counters_file(tmp_path: Path) -> Path:
    path = tmp_path / "counters.csv"
    path.write_text(COUNTERS_CSV)
    return path


@pytest.fixture
def config(counters_file: Path) -> Config:
    """Config reading counters_file, with hostname labels off."""
    return Config(exporter=ExporterConfig(counters=str(counters_file), hostname=False))


@pytest.fixture
def temp_counter() -> Counter:
    return Counter("DCGM_FI_DEV_GPU_TEMP", PromType.GAUGE, "GPU temperature (in C).")


@pytest.fixture
def util_counter() -> Counter:
    return Counter("DCGM_FI_DEV_GPU_UTIL", PromType.GAUGE, "GPU utilization (in %).")


@pytest.fixture
def make_metric() -> Callable[..., Metric]:
    """Factory for GPU metrics with a predictable identity."""

    def factory(counter: Counter, value: str, gpu: int = 0, **kwargs) -> Metric:
        kwargs.setdefault("gpu_uuid", f"GPU-{gpu:04d}")
        kwargs.setdefault("gpu_device", f"nvidia{gpu}")
        kwargs.setdefault("gpu_model_name", "Tesla T4")
        return Metric(counter=counter, value=value, gpu=str(gpu), **kwargs)

    return factory
