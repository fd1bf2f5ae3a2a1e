"""
Tests for the application wiring between pipeline and publisher.
"""

import asyncio
from dataclasses import replace
from unittest.mock import MagicMock

import pytest

from hwexporter import app as app_module
from hwexporter.app import Application
from hwexporter.config.schema import Config
from hwexporter.models.counter import Counter
from hwexporter.models.device import DeviceClass
from hwexporter.models.metric import Batch, Metric
from hwexporter.pipeline import MetricsPipeline


class OneGPUCollector:
    counters = [Counter("DCGM_FI_DEV_GPU_TEMP", help="GPU temperature (in C).")]
    sys_info = None

    async def get_metrics(self) -> Batch:
        return [[Metric(self.counters[0], "40", gpu="0", gpu_uuid="GPU-0", gpu_device="nvidia0")]]


class FakePublisher:
    def __init__(self, connects: bool = True):
        self.connects = connects
        self.texts: list[str] = []
        self.cancelled = False

    async def wait_connected(self, timeout: float = 30.0) -> bool:
        return self.connects

    async def run(self, source: asyncio.Queue[str]) -> None:
        try:
            while True:
                self.texts.append(await source.get())
        except asyncio.CancelledError:
            self.cancelled = True
            raise


@pytest.fixture
def fast_config(config: Config) -> Config:
    return replace(config, exporter=replace(config.exporter, collect_interval=0.01))


@pytest.fixture
def cleanup(fast_config: Config, monkeypatch: pytest.MonkeyPatch) -> MagicMock:
    cleanup = MagicMock()
    pipeline = MetricsPipeline(fast_config, OneGPUCollector.counters, {DeviceClass.GPU: OneGPUCollector()})
    monkeypatch.setattr(app_module, "new_metrics_pipeline", lambda config: (pipeline, cleanup))
    return cleanup


def test_publishes_pipeline_output_and_shuts_down(fast_config: Config, cleanup: MagicMock) -> None:
    application = Application(fast_config)
    application.publisher = FakePublisher()

    async def scenario() -> None:
        task = asyncio.create_task(application.start())
        while not application.publisher.texts:
            await asyncio.sleep(0.01)
        application._signal_handler()
        await task

    asyncio.run(asyncio.wait_for(scenario(), 5.0))

    assert application.publisher.texts[0].startswith("# HELP DCGM_FI_DEV_GPU_TEMP GPU temperature (in C).\n")
    assert application.publisher.cancelled
    cleanup.assert_called_once()


def test_gives_up_without_broker(fast_config: Config, cleanup: MagicMock) -> None:
    application = Application(fast_config)
    application.publisher = FakePublisher(connects=False)

    asyncio.run(asyncio.wait_for(application.start(), 5.0))

    assert application.publisher.texts == []
    cleanup.assert_called_once()
