"""
Device classes and the hardware inventory reported by the GPU collector.
"""

from dataclasses import dataclass, field
from enum import Enum


class DeviceClass(Enum):
    """Categories of monitored hardware, in rendering order."""
    GPU = "gpu"
    SWITCH = "switch"
    LINK = "link"
    CPU = "cpu"
    CPU_CORE = "cpu_core"

    @property
    def label(self) -> str:
        """Human-readable name used in log messages."""
        return self.value.replace("_", " ")


@dataclass
class MigInstance:
    """A MIG (multi-instance GPU) partition of a physical GPU."""

    index: int
    uuid: str
    profile: str
    gpu_instance_id: int


@dataclass
class GPUInfo:
    """Identity of one physical GPU."""

    index: int
    uuid: str
    device: str  # device node name, e.g. nvidia0
    model_name: str
    mig_enabled: bool = False
    mig_instances: list[MigInstance] = field(default_factory=list)


@dataclass
class SystemInfo:
    """GPU inventory shared with transforms."""

    gpus: list[GPUInfo] = field(default_factory=list)
    driver_version: str = ""

    def find_gpu(self, index: int | str) -> GPUInfo | None:
        """Look up a GPU by index."""
        for gpu in self.gpus:
            if str(gpu.index) == str(index):
                return gpu
        return None

    def find_mig_instance(self, gpu_index: int | str, gpu_instance_id: int | str) -> MigInstance | None:
        """Look up a MIG partition by parent GPU index and GPU instance id."""
        gpu = self.find_gpu(gpu_index)
        if gpu is None:
            return None
        for instance in gpu.mig_instances:
            if str(instance.gpu_instance_id) == str(gpu_instance_id):
                return instance
        return None
