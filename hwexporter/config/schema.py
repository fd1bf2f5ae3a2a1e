"""
Configuration schema.

Each section is a dataclass with defaults and a `from_block` constructor
reading the matching block of a parsed ConfigDocument.
"""

from dataclasses import dataclass, field
from enum import Enum

from ..const import (
    DEFAULT_COLLECT_INTERVAL,
    DEFAULT_COUNTERS_FILE,
    DEFAULT_DOCKER_SOCKET,
    DEFAULT_MQTT_KEEPALIVE,
    DEFAULT_MQTT_PORT,
    DEFAULT_QUEUE_SIZE,
)
from ..models.device import DeviceClass
from .parser import Block, ConfigDocument


class RetainMode(Enum):
    """MQTT retain message modes."""
    OFF = "off"        # Don't retain any messages
    ONLINE = "online"  # Only retain availability (LWT) status
    FULL = "full"      # Retain all messages (default)


class GPUIdType(Enum):
    """Which GPU identifier the container runtime reports for a workload."""
    UID = "uid"
    DEVICE_NAME = "device-name"


@dataclass
class ExporterConfig:
    """Collection and rendering settings."""
    collect_interval: float = DEFAULT_COLLECT_INTERVAL  # seconds
    counters: str = DEFAULT_COUNTERS_FILE
    hostname: bool = True
    old_namespace: bool = False
    replace_blanks_in_model_name: bool = False
    gpu_devices: list[int] | None = None  # None = all GPUs
    queue_size: int = DEFAULT_QUEUE_SIZE
    collectors: list[DeviceClass] = field(default_factory=lambda: list(DeviceClass))

    @classmethod
    def from_block(cls, block: Block | None) -> "ExporterConfig":
        """Create ExporterConfig from a parsed 'exporter' block."""
        if block is None:
            return cls()

        interval = block.get_value("collect_interval", DEFAULT_COLLECT_INTERVAL)
        if isinstance(interval, (bool, str)):
            raise ValueError(f"collect_interval must be a duration, got {interval!r}")
        if interval <= 0:
            raise ValueError(f"collect_interval must be positive, got {interval}")

        queue_size = int(block.get_value("queue_size", DEFAULT_QUEUE_SIZE))
        if queue_size < 1:
            raise ValueError(f"queue_size must be at least 1, got {queue_size}")

        gpu_devices = block.get_values("gpu_devices")
        if gpu_devices is not None:
            gpu_devices = [int(index) for index in gpu_devices]

        collectors = block.get_values("collectors")
        if collectors is None:
            enabled = list(DeviceClass)
        else:
            enabled = [DeviceClass(str(name).replace("-", "_").lower()) for name in collectors]

        return cls(
            collect_interval=float(interval),
            counters=str(block.get_value("counters", DEFAULT_COUNTERS_FILE)),
            hostname=bool(block.get_value("hostname", True)),
            old_namespace=bool(block.get_value("old_namespace", False)),
            replace_blanks_in_model_name=bool(block.get_value("replace_blanks_in_model_name", False)),
            gpu_devices=gpu_devices,
            queue_size=queue_size,
            collectors=enabled,
        )

    @property
    def uuid_label(self) -> str:
        """Label key for the GPU UUID dimension."""
        return "uuid" if self.old_namespace else "UUID"


@dataclass
class KubernetesConfig:
    """Pod attribution for GPU metrics."""
    enabled: bool = False
    gpu_id_type: GPUIdType = GPUIdType.UID
    docker_socket: str = DEFAULT_DOCKER_SOCKET

    @classmethod
    def from_block(cls, block: Block | None) -> "KubernetesConfig":
        """Create KubernetesConfig from a parsed 'kubernetes' block."""
        if block is None:
            return cls()

        return cls(
            enabled=bool(block.get_value("enabled", True)),
            gpu_id_type=GPUIdType(str(block.get_value("gpu_id_type", "uid")).lower()),
            docker_socket=str(block.get_value("docker_socket", DEFAULT_DOCKER_SOCKET)),
        )


@dataclass
class MQTTConfig:
    """MQTT connection configuration."""
    host: str = "localhost"
    port: int = DEFAULT_MQTT_PORT
    username: str | None = None
    password: str | None = None
    client_id: str | None = None
    topic_prefix: str = "hwexporter"
    qos: int = 1
    retain: RetainMode = RetainMode.FULL
    keepalive: int = DEFAULT_MQTT_KEEPALIVE

    @classmethod
    def from_block(cls, block: Block | None) -> "MQTTConfig":
        """Create MQTTConfig from a parsed 'mqtt' block."""
        if block is None:
            return cls()

        retain_val = block.get_value("retain", "full")
        if isinstance(retain_val, bool):
            retain_mode = RetainMode.FULL if retain_val else RetainMode.OFF
        else:
            retain_mode = RetainMode(str(retain_val).lower())

        return cls(
            host=block.get_value("host", "localhost"),
            port=int(block.get_value("port", DEFAULT_MQTT_PORT)),
            username=block.get_value("username"),
            password=block.get_value("password"),
            client_id=block.get_value("client_id"),
            topic_prefix=block.get_value("topic_prefix", "hwexporter"),
            qos=int(block.get_value("qos", 1)),
            retain=retain_mode,
            keepalive=int(block.get_value("keepalive", DEFAULT_MQTT_KEEPALIVE)),
        )

    def should_retain_data(self) -> bool:
        """Check if data messages should be retained."""
        return self.retain == RetainMode.FULL

    def should_retain_status(self) -> bool:
        """Check if status/availability messages should be retained."""
        return self.retain in (RetainMode.FULL, RetainMode.ONLINE)


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "info"  # debug, info, warning, error
    file: str | None = None
    file_level: str = "debug"
    file_max_size: int = 10  # MB
    file_keep: int = 5
    colors: bool = True
    format: str = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

    @classmethod
    def from_block(cls, block: Block | None) -> "LoggingConfig":
        """Create LoggingConfig from a parsed 'logging' block."""
        if block is None:
            return cls()

        return cls(
            level=block.get_value("level", "info"),
            file=block.get_value("file"),
            file_level=block.get_value("file_level", "debug"),
            file_max_size=int(block.get_value("file_max_size", 10)),
            file_keep=int(block.get_value("file_keep", 5)),
            colors=bool(block.get_value("colors", True)),
            format=block.get_value("format", cls.format),
        )


@dataclass
class Config:
    """Complete application configuration."""
    exporter: ExporterConfig = field(default_factory=ExporterConfig)
    kubernetes: KubernetesConfig = field(default_factory=KubernetesConfig)
    mqtt: MQTTConfig = field(default_factory=MQTTConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_document(cls, doc: ConfigDocument) -> "Config":
        """Create Config from a parsed ConfigDocument."""
        return cls(
            exporter=ExporterConfig.from_block(doc.get_block("exporter")),
            kubernetes=KubernetesConfig.from_block(doc.get_block("kubernetes")),
            mqtt=MQTTConfig.from_block(doc.get_block("mqtt")),
            logging=LoggingConfig.from_block(doc.get_block("logging")),
        )
