"""
Command line entry point.

Usage:
    hwexporter [/path/to/config.conf]
    hwexporter --validate /path/to/config.conf
"""

import argparse
import asyncio
import sys
from pathlib import Path

from . import __version__
from .app import run_app
from .config.loader import ConfigError, ConfigLoader
from .counters import CounterError, extract_counters
from .logging import LogConfig, get_logger, setup_logging


logger = get_logger("main")

DEFAULT_CONFIG_PATH = "/etc/hwexporter/config.conf"

# Console level per verbosity flag; warning when none is given
VERBOSITY_LEVELS = {"debug": "debug", "verbose": "info", "quiet": "error"}


def validate_config(config_path: str) -> int:
    """Load the config and its counters file, print a summary and any warnings."""
    loader = ConfigLoader()
    try:
        config = loader.load_file(config_path)
        counters = extract_counters(config)
    except (ConfigError, CounterError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    warnings = loader.validate(config)
    for warning in warnings:
        print(f"warning: {warning}")

    collectors = ", ".join(c.label for c in config.exporter.collectors) or "none"
    summary = [
        ("broker", f"{config.mqtt.host}:{config.mqtt.port}"),
        ("metrics topic", f"{config.mqtt.topic_prefix}/metrics"),
        ("interval", f"{config.exporter.collect_interval}s"),
        ("counters", f"{len(counters)} from {config.exporter.counters}"),
        ("collectors", collectors),
        ("kubernetes", "on" if config.kubernetes.enabled else "off"),
        ("log level", config.logging.level),
    ]
    if config.logging.file:
        summary.append(("log file", config.logging.file))

    width = max(len(key) for key, _ in summary)
    for key, value in summary:
        print(f"{key:<{width}}  {value}")

    print(f"\n{config_path}: OK ({len(warnings)} warnings)")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hwexporter",
        description="GPU and CPU telemetry in Prometheus exposition format, published over MQTT",
    )
    parser.add_argument("config", nargs="?", default=DEFAULT_CONFIG_PATH,
                        help=f"configuration file (default: {DEFAULT_CONFIG_PATH})")

    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-d", "--debug", action="store_true", help="log at DEBUG level")
    verbosity.add_argument("-v", "--verbose", action="store_true", help="log at INFO level")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="log errors only")

    parser.add_argument("--log-file", metavar="PATH", help="also write logs to PATH")
    parser.add_argument("--no-color", action="store_true", help="plain console output")
    parser.add_argument("--validate", action="store_true",
                        help="check the configuration and counters file, then exit")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def cli_log_config(args: argparse.Namespace) -> tuple[LogConfig, bool]:
    """
    Translate logging flags into a LogConfig.

    Returns:
        The config and whether any flag was set explicitly
    """
    log_config = LogConfig(console_level="warning")
    explicit = False

    for flag, level in VERBOSITY_LEVELS.items():
        if getattr(args, flag):
            log_config.console_level = level
            explicit = True

    if args.no_color:
        log_config.console_colors = False
        explicit = True

    if args.log_file:
        log_config.file_enabled = True
        log_config.file_path = args.log_file
        explicit = True

    return log_config, explicit


def main() -> int:
    args = build_parser().parse_args()

    config_path = Path(args.config)
    if not config_path.exists():
        print(f"Configuration file not found: {config_path}", file=sys.stderr)
        return 1

    log_config, explicit = cli_log_config(args)
    setup_logging(log_config)

    if args.validate:
        return validate_config(str(config_path))

    try:
        asyncio.run(run_app(str(config_path), cli_log_config=log_config if explicit else None))
    except (ConfigError, CounterError) as e:
        logger.error(f"Startup failed: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted")
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
