"""
Metrics pipeline: collect, transform, render and publish on a schedule.

One pipeline owns at most one collector per device class. Every cycle
collects the GPU batch, runs it through the transforms, renders it and
then appends the switch, link, CPU and CPU core expositions, in that
order. The rendered text is pushed to a bounded queue; when the consumer
falls behind, new results are dropped rather than queued.
"""

import asyncio
from collections.abc import Callable

from .collectors import Cleanup, Collector, CollectorError, new_collector
from .config.schema import Config
from .counters import extract_counters
from .logging import get_logger
from .models.counter import Counter
from .models.device import DeviceClass
from .render import LAYOUTS, Layout, RenderError, format_metrics
from .transforms import PodMapper, Transform, TransformError

logger = get_logger("pipeline")

CollectorFactory = Callable[[list[Counter], Config, DeviceClass], tuple[Collector, Cleanup]]

# Rendered after the GPU block; their render failures only drop their own text
SECONDARY_CLASSES = (
    DeviceClass.SWITCH,
    DeviceClass.LINK,
    DeviceClass.CPU,
    DeviceClass.CPU_CORE,
)


class PipelineError(Exception):
    """Raised when a cycle produces no output."""

    pass


def _once(callbacks: list[Cleanup]) -> Cleanup:
    """Combine cleanup callbacks into one that only runs the first time."""
    done = False

    def cleanup() -> None:
        nonlocal done
        if done:
            return
        done = True
        for callback in callbacks:
            callback()

    return cleanup


class MetricsPipeline:
    """
    Scheduled collection and rendering across device classes.

    Build with create(); run the scheduling loop with run() as a task.
    """

    def __init__(
        self,
        config: Config,
        counters: list[Counter],
        collectors: dict[DeviceClass, Collector],
        transforms: list[Transform] | None = None,
    ):
        """
        Initialize pipeline.

        Args:
            config: Application configuration
            counters: Monitored counters
            collectors: Enabled collectors; a missing class is skipped
            transforms: Transforms applied to the GPU batch, in order
        """
        self.config = config
        self.counters = counters
        self.collectors = collectors
        self.transforms = transforms or []
        self.layouts: dict[DeviceClass, Layout] = dict(LAYOUTS)

    @classmethod
    def create(
        cls,
        config: Config,
        collector_factory: CollectorFactory = new_collector,
    ) -> tuple["MetricsPipeline", Cleanup]:
        """
        Build the pipeline and every collector the host supports.

        Device classes whose collector cannot be built are disabled for the
        lifetime of the process, as is pod attribution when its runtime
        cannot be reached.

        Returns:
            The pipeline and a callback releasing all collectors

        Raises:
            CounterError: If the counter list cannot be loaded
        """
        counters = extract_counters(config)

        collectors: dict[DeviceClass, Collector] = {}
        cleanups: list[Cleanup] = []
        for device_class in DeviceClass:
            try:
                collector, cleanup = collector_factory(counters, config, device_class)
            except CollectorError as e:
                logger.info(f"Not collecting {device_class.label} metrics: {e}")
                continue
            collectors[device_class] = collector
            cleanups.append(cleanup)

        transforms: list[Transform] = []
        if config.kubernetes.enabled:
            try:
                transforms.append(PodMapper.create(config))
            except TransformError as e:
                logger.warning(f"Could not enable kubernetes metric collection: {e}")

        return cls(config, counters, collectors, transforms), _once(cleanups)

    @classmethod
    def with_gpu_collector(cls, config: Config, collector: Collector) -> tuple["MetricsPipeline", Cleanup]:
        """Pipeline around an existing GPU collector; the caller cleans it up."""
        return cls(config, collector.counters, {DeviceClass.GPU: collector}), _once([])

    async def run_once(self) -> str:
        """
        Run one collection cycle.

        Returns:
            Concatenated exposition text of all device classes

        Raises:
            PipelineError: If any collection, a GPU transform or the GPU
                rendering fails
        """
        formatted = ""

        gpu_collector = self.collectors.get(DeviceClass.GPU)
        if gpu_collector is not None:
            try:
                metrics = await gpu_collector.get_metrics()
            except CollectorError as e:
                raise PipelineError(f"Failed to collect gpu metrics with error: {e}") from e

            for transform in self.transforms:
                try:
                    await transform.process(metrics, gpu_collector.sys_info)
                except TransformError as e:
                    raise PipelineError(
                        f"Failed to transform metrics for transform {transform.name()}: {e}"
                    ) from e

            try:
                formatted = format_metrics(self.layouts[DeviceClass.GPU], metrics)
            except RenderError as e:
                raise PipelineError(f"Failed to format metrics with error: {e}") from e

        for device_class in SECONDARY_CLASSES:
            collector = self.collectors.get(device_class)
            if collector is None:
                continue

            try:
                metrics = await collector.get_metrics()
            except CollectorError as e:
                raise PipelineError(
                    f"Failed to collect {device_class.label} metrics with error: {e}"
                ) from e

            if not metrics:
                continue

            try:
                text = format_metrics(self.layouts[device_class], metrics)
            except RenderError as e:
                logger.warning(f"Failed to format {device_class.label} metrics with error: {e}")
                continue

            if formatted and text:
                formatted += "\n"
            formatted += text

        return formatted

    def _push(self, out: asyncio.Queue[str], text: str) -> None:
        """Hand text to the consumer without blocking; drop it if the queue is full."""
        try:
            out.put_nowait(text)
        except asyncio.QueueFull:
            logger.warning("Output queue is full, dropping metrics")

    async def run(self, out: asyncio.Queue[str], stop: asyncio.Event) -> None:
        """
        Collect every collect_interval until stop is set.

        Each tick runs one cycle and pushes its text to out. A failed cycle
        pushes an empty string so the consumer does not keep serving stale
        data. If a cycle overruns the interval the next one starts right
        away; missed ticks are not made up.
        """
        interval = self.config.exporter.collect_interval
        loop = asyncio.get_running_loop()
        next_tick = loop.time() + interval

        logger.info(f"Pipeline starting (interval: {interval}s)")

        while True:
            if stop.is_set():
                break
            try:
                await asyncio.wait_for(stop.wait(), timeout=max(0.0, next_tick - loop.time()))
                break
            except asyncio.TimeoutError:
                pass

            next_tick += interval

            try:
                text = await self.run_once()
            except PipelineError as e:
                logger.error(str(e))
                self._push(out, "")
            except Exception as e:
                logger.error(f"Unexpected error in metrics cycle: {e}")
                self._push(out, "")
            else:
                self._push(out, text)

            now = loop.time()
            if next_tick < now:
                next_tick = now

        logger.info("Pipeline stopped")


def new_metrics_pipeline(
    config: Config,
    collector_factory: CollectorFactory = new_collector,
) -> tuple[MetricsPipeline, Cleanup]:
    """Build a pipeline for config. See MetricsPipeline.create."""
    return MetricsPipeline.create(config, collector_factory)
