"""
Metric records produced by collectors for one collection cycle.
"""

from dataclasses import dataclass, field

from .counter import Counter


@dataclass
class Metric:
    """
    A single observed value and its identifying dimensions.

    The gpu/gpu_device fields carry the entity ids of whichever device
    class produced the record: for switches, links, CPUs and CPU cores
    `gpu` is the entity id and `gpu_device` the parent entity (the switch
    of a link, the package of a core).
    """

    counter: Counter
    value: str

    # Entity identity
    gpu: str = ""
    gpu_uuid: str = ""
    gpu_device: str = ""
    gpu_model_name: str = ""

    # Label key used for the UUID dimension ("UUID" or legacy "uuid")
    uuid: str = "UUID"

    # MIG instance identity (empty for full GPUs)
    mig_profile: str = ""
    gpu_instance_id: str = ""

    hostname: str = ""

    # Collector-attached labels and transform-attached attributes
    labels: dict[str, str] = field(default_factory=dict)
    attributes: dict[str, str] = field(default_factory=dict)


# One list of metrics per device, in device order
Batch = list[list[Metric]]
