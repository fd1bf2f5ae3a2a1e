"""
Logging configuration for the exporter.

Console output is colored when attached to a TTY; file output is plain
and rotated. All loggers live under the "hwexporter" namespace.
"""

import logging
import logging.handlers
import sys
from dataclasses import dataclass
from pathlib import Path

from .config.schema import LoggingConfig

ROOT_LOGGER = "hwexporter"

RESET = "\033[0m"
BOLD = "\033[1m"
DIM = "\033[2m"
RED = "\033[31m"
GREEN = "\033[32m"
YELLOW = "\033[33m"
BLUE = "\033[34m"
MAGENTA = "\033[35m"
CYAN = "\033[36m"
BRIGHT_RED = "\033[91m"

LEVEL_COLORS = {
    logging.DEBUG: DIM + CYAN,
    logging.INFO: GREEN,
    logging.WARNING: YELLOW,
    logging.ERROR: RED,
    logging.CRITICAL: BOLD + BRIGHT_RED,
}

# Matched as substrings of the logger name
COMPONENT_COLORS = {
    "pipeline": GREEN,
    "collectors": CYAN,
    "transforms": MAGENTA,
    "mqtt": BLUE,
    "config": MAGENTA,
}


class ColoredFormatter(logging.Formatter):
    """Formatter coloring level, component name and problem messages."""

    def __init__(self, fmt: str | None = None, datefmt: str | None = None, use_colors: bool = True):
        super().__init__(fmt, datefmt)
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        if not self.use_colors:
            return super().format(record)

        saved = (record.levelname, record.name, record.msg)

        record.levelname = f"{LEVEL_COLORS.get(record.levelno, '')}{record.levelname:8}{RESET}"
        for component, color in COMPONENT_COLORS.items():
            if component in record.name:
                record.name = f"{color}{record.name}{RESET}"
                break

        if record.levelno >= logging.ERROR:
            record.msg = f"{RED}{record.msg}{RESET}"
        elif record.levelno >= logging.WARNING:
            record.msg = f"{YELLOW}{record.msg}{RESET}"

        try:
            return super().format(record)
        finally:
            record.levelname, record.name, record.msg = saved


class PlainFormatter(logging.Formatter):
    """Uncolored formatter with a fixed-width level column."""

    def format(self, record: logging.LogRecord) -> str:
        levelname = record.levelname
        record.levelname = f"{levelname:8}"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


@dataclass
class LogConfig:
    """Resolved logging settings."""

    console_level: str = "INFO"
    console_colors: bool = True

    file_enabled: bool = False
    file_path: str = "/var/log/hwexporter/hwexporter.log"
    file_level: str = "DEBUG"
    file_max_bytes: int = 10 * 1024 * 1024
    file_backup_count: int = 5

    format: str = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    date_format: str = "%Y-%m-%d %H:%M:%S"

    # Per-module levels (module_name -> level)
    module_levels: dict[str, str] | None = None

    @classmethod
    def from_config(cls, config: LoggingConfig) -> "LogConfig":
        """Build settings from the 'logging' block of the config file."""
        log_config = cls(
            console_level=config.level,
            console_colors=config.colors,
            file_level=config.file_level,
            file_max_bytes=config.file_max_size * 1024 * 1024,
            file_backup_count=config.file_keep,
            format=config.format,
        )
        if config.file:
            log_config.file_enabled = True
            log_config.file_path = config.file
        return log_config


def get_log_level(level_str: str) -> int:
    """Convert string log level to logging constant."""
    levels = {
        "debug": logging.DEBUG,
        "info": logging.INFO,
        "warning": logging.WARNING,
        "warn": logging.WARNING,
        "error": logging.ERROR,
        "critical": logging.CRITICAL,
    }
    return levels.get(level_str.lower(), logging.INFO)


def setup_logging(config: LogConfig | None = None) -> None:
    """Configure handlers on the application's root logger."""
    config = config or LogConfig()

    root_logger = logging.getLogger(ROOT_LOGGER)
    root_logger.setLevel(logging.DEBUG)  # handlers filter
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(get_log_level(config.console_level))
    use_colors = config.console_colors and sys.stdout.isatty()
    console_handler.setFormatter(
        ColoredFormatter(fmt=config.format, datefmt=config.date_format, use_colors=use_colors)
    )
    root_logger.addHandler(console_handler)

    if config.file_enabled:
        log_path = Path(config.file_path)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_path,
            maxBytes=config.file_max_bytes,
            backupCount=config.file_backup_count,
        )
        file_handler.setLevel(get_log_level(config.file_level))
        file_handler.setFormatter(PlainFormatter(fmt=config.format, datefmt=config.date_format))
        root_logger.addHandler(file_handler)

    for module_name, level_str in (config.module_levels or {}).items():
        logging.getLogger(f"{ROOT_LOGGER}.{module_name}").setLevel(get_log_level(level_str))

    # Reduce noise from external libraries
    logging.getLogger("aiomqtt").setLevel(logging.WARNING)
    logging.getLogger("paho").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger for a component.

    Args:
        name: Component name (will be prefixed with hwexporter)

    Returns:
        Logger instance
    """
    if name == ROOT_LOGGER or name.startswith(f"{ROOT_LOGGER}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
