"""
Main application orchestrator.

Handles:
- Configuration loading
- Pipeline construction and scheduling
- MQTT publishing of the rendered metrics
- Graceful shutdown
"""

import asyncio
import signal

from .collectors import Cleanup
from .config.loader import ConfigLoader
from .config.schema import Config
from .logging import LogConfig, get_logger, setup_logging
from .mqtt.client import MetricsPublisher
from .pipeline import MetricsPipeline, new_metrics_pipeline


logger = get_logger("app")


class Application:
    """
    Main application class.

    The pipeline task produces exposition text into a bounded queue and
    the publisher task drains it to MQTT.
    """

    def __init__(self, config: Config):
        """
        Initialize application.

        Args:
            config: Application configuration
        """
        self.config = config
        self.publisher = MetricsPublisher(config.mqtt)
        self.queue: asyncio.Queue[str] = asyncio.Queue(maxsize=config.exporter.queue_size)

        self.pipeline: MetricsPipeline | None = None
        self._cleanup: Cleanup | None = None

        self._pipeline_task: asyncio.Task | None = None
        self._publisher_task: asyncio.Task | None = None
        self._shutdown_event = asyncio.Event()

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._signal_handler)

    def _signal_handler(self) -> None:
        """Handle shutdown signals."""
        logger.info("Received shutdown signal")
        self._shutdown_event.set()

    async def start(self) -> None:
        """
        Start the application and block until shutdown.

        Raises:
            CounterError: If the counter list cannot be loaded
        """
        logger.info("Starting Hardware Exporter")

        self.pipeline, self._cleanup = new_metrics_pipeline(self.config)
        enabled = ", ".join(c.label for c in self.pipeline.collectors) or "none"
        logger.info(f"Collecting metrics for: {enabled}")

        self._publisher_task = asyncio.create_task(self.publisher.run(self.queue))

        if not await self.publisher.wait_connected(timeout=30.0):
            logger.error("Failed to connect to MQTT broker")
            await self.stop()
            return

        self._setup_signal_handlers()

        self._pipeline_task = asyncio.create_task(self.pipeline.run(self.queue, self._shutdown_event))

        logger.info("Hardware Exporter started successfully")

        await self._shutdown_event.wait()

        await self.stop()

    async def stop(self) -> None:
        """Stop the pipeline and publisher, then release collectors."""
        logger.info("Stopping Hardware Exporter")

        self._shutdown_event.set()

        if self._pipeline_task:
            await self._pipeline_task
            self._pipeline_task = None

        if self._publisher_task:
            self._publisher_task.cancel()
            try:
                await self._publisher_task
            except asyncio.CancelledError:
                pass
            self._publisher_task = None

        if self._cleanup:
            self._cleanup()

        logger.info("Hardware Exporter stopped")

    async def run(self) -> None:
        """Run the application until shutdown."""
        try:
            await self.start()
        except Exception as e:
            logger.error(f"Application error: {e}")
            raise


async def run_app(config_path: str, cli_log_config: LogConfig | None = None) -> None:
    """
    Load configuration and run the application.

    Args:
        config_path: Path to configuration file
        cli_log_config: Logging config from CLI args (overrides file config)
    """
    loader = ConfigLoader()
    config = loader.load_file(config_path)

    if cli_log_config is None:
        setup_logging(LogConfig.from_config(config.logging))
    else:
        # CLI level wins; file output still comes from the config file
        if not cli_log_config.file_enabled and config.logging.file:
            file_config = LogConfig.from_config(config.logging)
            cli_log_config.file_enabled = True
            cli_log_config.file_path = file_config.file_path
            cli_log_config.file_level = file_config.file_level
            cli_log_config.file_max_bytes = file_config.file_max_bytes
            cli_log_config.file_backup_count = file_config.file_backup_count
        setup_logging(cli_log_config)

    logger.info(f"Loaded configuration from {config_path}")
    logger.debug(f"MQTT: {config.mqtt.host}:{config.mqtt.port}, topic prefix: {config.mqtt.topic_prefix}")

    for warning in loader.validate(config):
        logger.warning(f"Config warning: {warning}")

    app = Application(config)
    await app.run()
