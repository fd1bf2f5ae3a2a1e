"""
Counter definitions for monitored telemetry fields.
"""

from dataclasses import dataclass
from enum import Enum


class PromType(Enum):
    """Prometheus exposition types supported for counters."""
    GAUGE = "gauge"
    COUNTER = "counter"
    LABEL = "label"  # Attached as a label to other metrics, never emitted


@dataclass(frozen=True, eq=False)
class Counter:
    """
    Static description of a monitored field.

    Counters are compared and hashed by identity: two definitions that
    share a field name are still distinct grouping keys when rendering.
    """

    field_name: str
    prom_type: PromType = PromType.GAUGE
    help: str = ""

    @property
    def is_label(self) -> bool:
        """Check if the counter only contributes a label."""
        return self.prom_type == PromType.LABEL

    def __repr__(self) -> str:
        return f"Counter({self.field_name}, {self.prom_type.value})"
