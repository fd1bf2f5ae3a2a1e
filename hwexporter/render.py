"""
Prometheus exposition rendering.

Collectors return metrics grouped by device; the exposition format groups
them by counter:

    # HELP FIELD_ID HELP_MSG
    # TYPE FIELD_ID PROM_TYPE
    FIELD_ID{gpu="0",UUID="GPU-...",device="nvidia0",modelName="...",attr...} VALUE
    FIELD_ID{gpu="1",UUID="GPU-...",device="nvidia1",modelName="...",attr...} VALUE

Each device class has its own Layout producing the leading dimension
labels; everything after them (Hostname, labels, attributes, value) is
shared.
"""

from collections.abc import Callable
from dataclasses import dataclass

from .models.counter import Counter
from .models.device import DeviceClass
from .models.metric import Batch, Metric


class RenderError(Exception):
    """Raised when a batch cannot be rendered."""

    pass


@dataclass(frozen=True)
class Layout:
    """Dimension label layout of one device class."""

    name: str
    dimensions: Callable[[Metric], list[tuple[str, str]]]


def _gpu_dimensions(metric: Metric) -> list[tuple[str, str]]:
    dims = [
        ("gpu", metric.gpu),
        (metric.uuid, metric.gpu_uuid),
        ("device", metric.gpu_device),
        ("modelName", metric.gpu_model_name),
    ]
    if metric.mig_profile:
        dims.append(("GPU_I_PROFILE", metric.mig_profile))
        dims.append(("GPU_I_ID", metric.gpu_instance_id))
    return dims


LAYOUTS: dict[DeviceClass, Layout] = {
    DeviceClass.GPU: Layout("gpu", _gpu_dimensions),
    DeviceClass.SWITCH: Layout("switch", lambda m: [("nvswitch", m.gpu)]),
    DeviceClass.LINK: Layout("link", lambda m: [("nvlink", m.gpu), ("nvswitch", m.gpu_device)]),
    DeviceClass.CPU: Layout("cpu", lambda m: [("cpu", m.gpu)]),
    DeviceClass.CPU_CORE: Layout("cpu_core", lambda m: [("cpucore", m.gpu), ("cpu", m.gpu_device)]),
}


def group_by_counter(metrics: Batch) -> dict[Counter, list[Metric]]:
    """
    Regroup per-device metric lists by counter.

    Counters are keyed by identity; groups and their members keep
    encounter order (device order, then per-device order).
    """
    grouped: dict[Counter, list[Metric]] = {}
    for device_metrics in metrics:
        for metric in device_metrics:
            grouped.setdefault(metric.counter, []).append(metric)
    return grouped


def _escape_help(text: str) -> str:
    return text.replace("\\", "\\\\").replace("\n", "\\n")


def _escape_label_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def _render_value(metric: Metric) -> str:
    value = metric.value
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise RenderError(
            f"Unsupported value type {type(value).__name__} for {metric.counter.field_name}"
        )
    return str(value)


def _render_line(layout: Layout, counter: Counter, metric: Metric) -> str:
    pairs = layout.dimensions(metric)
    if metric.hostname:
        pairs.append(("Hostname", metric.hostname))
    pairs.extend(metric.labels.items())
    pairs.extend(metric.attributes.items())

    labels = ",".join(f'{key}="{_escape_label_value(str(value))}"' for key, value in pairs)
    return f"{counter.field_name}{{{labels}}} {_render_value(metric)}"


def format_metrics(layout: Layout, metrics: Batch) -> str:
    """
    Render a batch as exposition text.

    Args:
        layout: Dimension layout of the batch's device class
        metrics: Per-device metric lists

    Returns:
        One HELP/TYPE block per counter seen in the batch, blocks
        separated by a blank line

    Raises:
        RenderError: If a record is malformed; no partial text is returned
    """
    blocks: list[str] = []
    for counter, group in group_by_counter(metrics).items():
        if not isinstance(counter, Counter):
            raise RenderError(f"Metric without counter definition in {layout.name} batch")

        lines = [
            f"# HELP {counter.field_name} {_escape_help(counter.help)}",
            f"# TYPE {counter.field_name} {counter.prom_type.value}",
        ]
        lines.extend(_render_line(layout, counter, metric) for metric in group)
        blocks.append("".join(f"{line}\n" for line in lines))

    return "\n".join(blocks)
