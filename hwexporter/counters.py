"""
Counter list loading.

The counters file is a CSV with one monitored field per line:

    # Format: field name, prometheus type, help message
    DCGM_FI_DEV_GPU_UTIL,  gauge,   GPU utilization (in %).
    DCGM_FI_DRIVER_VERSION, label,  Driver version.

Blank lines and lines starting with # are ignored. The help message may
itself contain commas.
"""

from collections.abc import Iterable
from pathlib import Path

from .config.schema import Config
from .logging import get_logger
from .models.counter import Counter, PromType

logger = get_logger("counters")


class CounterError(Exception):
    """Raised when the counter list cannot be loaded."""

    pass


def parse_counters(lines: Iterable[str], filename: str = "<string>") -> list[Counter]:
    """
    Parse counter definitions from CSV lines.

    Raises:
        CounterError: On malformed lines, unknown types or duplicate fields
    """
    counters: list[Counter] = []
    seen: dict[str, int] = {}

    for line_no, line in enumerate(lines, start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue

        record = stripped.split(",", 2)
        if len(record) < 3:
            raise CounterError(
                f"{filename}:{line_no}: expected 'field, type, help', got {len(record)} column(s)"
            )

        field_name = record[0].strip()
        type_name = record[1].strip().lower()
        help_text = record[2].strip()

        try:
            prom_type = PromType(type_name)
        except ValueError:
            valid = ", ".join(t.value for t in PromType)
            raise CounterError(
                f"{filename}:{line_no}: unknown type '{type_name}' for {field_name} (expected one of {valid})"
            ) from None

        if field_name in seen:
            raise CounterError(
                f"{filename}:{line_no}: duplicate field {field_name} (first defined on line {seen[field_name]})"
            )
        seen[field_name] = line_no

        counters.append(Counter(field_name=field_name, prom_type=prom_type, help=help_text))

    return counters


def extract_counters(config: Config) -> list[Counter]:
    """
    Load the counters configured for this exporter.

    Raises:
        CounterError: If the file is missing, unreadable or malformed
    """
    path = Path(config.exporter.counters)
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise CounterError(f"Could not read counters file {path}: {e}") from e

    counters = parse_counters(text.splitlines(), str(path))
    if not counters:
        raise CounterError(f"No counters defined in {path}")

    logger.info(f"Loaded {len(counters)} counters from {path}")
    return counters
