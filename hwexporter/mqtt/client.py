"""
MQTT publishing of rendered metrics using aiomqtt.

The publisher drains the pipeline's output queue and sends every text to
`{topic_prefix}/metrics`. Availability is announced on
`{topic_prefix}/status`, with a Last Will so the broker marks the
exporter offline when the connection drops.
"""

import asyncio
import uuid

import aiomqtt

from ..config.schema import MQTTConfig
from ..logging import get_logger


logger = get_logger("mqtt.client")


class MetricsPublisher:
    """
    Forwards pipeline output to the MQTT broker.

    A text taken from the queue is kept until the broker accepts it and
    is sent again after a reconnect. Output produced while the broker is
    unreachable waits in the pipeline queue, where the drop policy applies.
    """

    def __init__(
        self,
        config: MQTTConfig,
        reconnect_interval: float = 5.0,
        max_reconnect_interval: float = 60.0,
    ):
        self.config = config
        self.status_topic = f"{config.topic_prefix}/status"
        self.metrics_topic = f"{config.topic_prefix}/metrics"
        self.client_id = config.client_id or f"hwexporter_{uuid.uuid4().hex[:8]}"

        self.reconnect_interval = reconnect_interval
        self.max_reconnect_interval = max_reconnect_interval

        self._connected = asyncio.Event()
        self._unsent: str | None = None
        self.sessions = 0
        self.published = 0

    @property
    def connected(self) -> bool:
        return self._connected.is_set()

    def _create_client(self) -> aiomqtt.Client:
        will = aiomqtt.Will(
            topic=self.status_topic,
            payload="offline",
            qos=1,
            retain=self.config.should_retain_status(),
        )
        return aiomqtt.Client(
            hostname=self.config.host,
            port=self.config.port,
            username=self.config.username,
            password=self.config.password,
            identifier=self.client_id,
            keepalive=self.config.keepalive,
            will=will,
        )

    async def _announce(self, client: aiomqtt.Client, status: str) -> None:
        await client.publish(self.status_topic, status, qos=1, retain=self.config.should_retain_status())

    async def _session(self, source: asyncio.Queue[str]) -> None:
        """Publish from source over one broker connection."""
        async with self._create_client() as client:
            self._connected.set()
            self.sessions += 1
            logger.info(f"Connected to MQTT broker at {self.config.host}:{self.config.port} as {self.client_id}")
            try:
                await self._announce(client, "online")
                while True:
                    if self._unsent is None:
                        self._unsent = await source.get()
                    await client.publish(
                        self.metrics_topic,
                        self._unsent,
                        qos=self.config.qos,
                        retain=self.config.should_retain_data(),
                    )
                    logger.debug(f"Published {len(self._unsent)} bytes to {self.metrics_topic}")
                    self._unsent = None
                    self.published += 1
            except asyncio.CancelledError:
                try:
                    await self._announce(client, "offline")
                except aiomqtt.MqttError as e:
                    logger.debug(f"Could not announce offline status: {e}")
                raise
            finally:
                self._connected.clear()

    async def run(self, source: asyncio.Queue[str]) -> None:
        """
        Publish everything arriving on source until cancelled.

        Reconnects with exponential backoff when the broker is unreachable
        or the connection drops.
        """
        delay = self.reconnect_interval
        while True:
            sessions = self.sessions
            try:
                await self._session(source)
            except aiomqtt.MqttError as e:
                if self.sessions != sessions:
                    delay = self.reconnect_interval
                logger.error(f"MQTT connection failed: {e}; retrying in {delay:.0f}s")
                await asyncio.sleep(delay)
                delay = min(delay * 2, self.max_reconnect_interval)

    async def wait_connected(self, timeout: float = 30.0) -> bool:
        """
        Wait for the first broker connection.

        Returns:
            True if connected, False on timeout
        """
        try:
            await asyncio.wait_for(self._connected.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True
