"""
Configuration loader with file reading and validation.
"""

from pathlib import Path

from .lexer import LexerError
from .parser import Block, ConfigDocument, ParseError, parse_config, parse_config_file
from .schema import Config


class ConfigError(Exception):
    """Exception raised for configuration errors."""

    pass


class ConfigLoader:
    """
    Loads and validates configuration from files or strings.

    Usage:
        loader = ConfigLoader()
        config = loader.load_file("/etc/hwexporter/config.conf")
        warnings = loader.validate(config)
    """

    # Known directives for each block type
    KNOWN_DIRECTIVES = {
        "exporter": {
            "collect_interval",
            "counters",
            "hostname",
            "old_namespace",
            "replace_blanks_in_model_name",
            "gpu_devices",
            "queue_size",
            "collectors",
        },
        "kubernetes": {"enabled", "gpu_id_type", "docker_socket"},
        "mqtt": {
            "host",
            "port",
            "username",
            "password",
            "client_id",
            "topic_prefix",
            "qos",
            "retain",
            "keepalive",
        },
        "logging": {
            "level",
            "file",
            "file_level",
            "file_max_size",
            "file_keep",
            "colors",
            "format",
        },
    }

    def __init__(self):
        self.last_document: ConfigDocument | None = None

    def load_file(self, path: str | Path) -> Config:
        """
        Load configuration from a file.

        Raises:
            ConfigError: If the file cannot be read or parsed
        """
        path = Path(path)

        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")

        if not path.is_file():
            raise ConfigError(f"Not a file: {path}")

        try:
            document = parse_config_file(path)
        except (LexerError, ParseError) as e:
            raise ConfigError(f"Failed to parse configuration: {e}") from e
        except OSError as e:
            raise ConfigError(f"Failed to read configuration: {e}") from e

        return self._build(document)

    def load_string(
        self,
        source: str,
        filename: str = "<string>",
        base_path: str | Path | None = None,
    ) -> Config:
        """
        Load configuration from a string.

        Raises:
            ConfigError: If the configuration cannot be parsed
        """
        try:
            document = parse_config(source, filename, Path(base_path) if base_path else None)
        except (LexerError, ParseError) as e:
            raise ConfigError(f"Failed to parse configuration: {e}") from e

        return self._build(document)

    def _build(self, document: ConfigDocument) -> Config:
        self.last_document = document
        try:
            return Config.from_document(document)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

    def validate(self, config: Config) -> list[str]:
        """
        Validate configuration and return list of warnings.

        Args:
            config: Configuration to validate

        Returns:
            List of warning messages (empty if no issues)
        """
        warnings = []

        if self.last_document:
            warnings.extend(self._check_unknown_directives(self.last_document))

        exporter = config.exporter
        if not Path(exporter.counters).is_file():
            warnings.append(f"Counters file not found: {exporter.counters}")
        if not exporter.collectors:
            warnings.append("No collectors enabled, nothing will be exported")

        if config.kubernetes.enabled and not Path(config.kubernetes.docker_socket).exists():
            warnings.append(
                f"Kubernetes enrichment enabled but {config.kubernetes.docker_socket} does not exist"
            )

        if not config.mqtt.host:
            warnings.append("MQTT host is not configured")

        return warnings

    def _check_unknown_directives(self, document: ConfigDocument) -> list[str]:
        """Check for unknown blocks and directives in parsed document."""
        warnings = []

        def check_block(block: Block) -> None:
            known = self.KNOWN_DIRECTIVES.get(block.type)
            if known is None:
                warnings.append(f"Unknown block '{block.type}' (line {block.line})")
                return

            for directive in block.directives:
                if directive.name not in known:
                    warnings.append(
                        f"Unknown directive '{directive.name}' in {block.type} block (line {directive.line})"
                    )
            for nested in block.blocks:
                warnings.append(
                    f"Unexpected block '{nested.type}' in {block.type} block (line {nested.line})"
                )

        for block in document.blocks:
            check_block(block)

        for directive in document.directives:
            warnings.append(f"Unknown top-level directive '{directive.name}' (line {directive.line})")

        return warnings
