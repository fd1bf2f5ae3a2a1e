"""
GPU collector backed by NVIDIA NVML.

Reads a fixed set of DCGM-named fields through pynvml. MIG partitions
are discovered at startup; each partition gets its own record list for
the memory fields NVML reports per instance.
"""

from collections.abc import Callable
from typing import Any

import pynvml

from ..config.schema import ExporterConfig
from ..logging import get_logger
from ..models.counter import Counter
from ..models.device import DeviceClass, GPUInfo, MigInstance, SystemInfo
from ..models.metric import Batch
from .base import Collector, CollectorError

logger = get_logger("collectors.gpu")

MIB = 1024 * 1024


def _utilization(handle: Any) -> Any:
    return pynvml.nvmlDeviceGetUtilizationRates(handle)


def _memory(handle: Any) -> Any:
    return pynvml.nvmlDeviceGetMemoryInfo(handle)


# DCGM field name -> NVML query on a device handle
GPU_FIELDS: dict[str, Callable[[Any], Any]] = {
    "DCGM_FI_DEV_GPU_UTIL": lambda h: _utilization(h).gpu,
    "DCGM_FI_DEV_MEM_COPY_UTIL": lambda h: _utilization(h).memory,
    "DCGM_FI_DEV_ENC_UTIL": lambda h: pynvml.nvmlDeviceGetEncoderUtilization(h)[0],
    "DCGM_FI_DEV_DEC_UTIL": lambda h: pynvml.nvmlDeviceGetDecoderUtilization(h)[0],
    "DCGM_FI_DEV_GPU_TEMP": lambda h: pynvml.nvmlDeviceGetTemperature(h, pynvml.NVML_TEMPERATURE_GPU),
    "DCGM_FI_DEV_POWER_USAGE": lambda h: pynvml.nvmlDeviceGetPowerUsage(h) / 1000.0,
    "DCGM_FI_DEV_TOTAL_ENERGY_CONSUMPTION": lambda h: pynvml.nvmlDeviceGetTotalEnergyConsumption(h),
    "DCGM_FI_DEV_SM_CLOCK": lambda h: pynvml.nvmlDeviceGetClockInfo(h, pynvml.NVML_CLOCK_SM),
    "DCGM_FI_DEV_MEM_CLOCK": lambda h: pynvml.nvmlDeviceGetClockInfo(h, pynvml.NVML_CLOCK_MEM),
    "DCGM_FI_DEV_FAN_SPEED": lambda h: pynvml.nvmlDeviceGetFanSpeed(h),
    "DCGM_FI_DEV_FB_FREE": lambda h: _memory(h).free // MIB,
    "DCGM_FI_DEV_FB_USED": lambda h: _memory(h).used // MIB,
    "DCGM_FI_DEV_FB_TOTAL": lambda h: _memory(h).total // MIB,
    "DCGM_FI_DEV_PCIE_REPLAY_COUNTER": lambda h: pynvml.nvmlDeviceGetPcieReplayCounter(h),
    "DCGM_FI_DEV_PCIE_LINK_GEN": lambda h: pynvml.nvmlDeviceGetCurrPcieLinkGeneration(h),
    "DCGM_FI_DEV_PCIE_LINK_WIDTH": lambda h: pynvml.nvmlDeviceGetCurrPcieLinkWidth(h),
    "DCGM_FI_DEV_SERIAL": lambda h: pynvml.nvmlDeviceGetSerial(h),
    "DCGM_FI_DEV_VBIOS_VERSION": lambda h: pynvml.nvmlDeviceGetVbiosVersion(h),
    "DCGM_FI_DRIVER_VERSION": lambda h: pynvml.nvmlSystemGetDriverVersion(),
}

# Fields NVML can answer for a MIG device handle
MIG_FIELDS = frozenset({
    "DCGM_FI_DEV_FB_FREE",
    "DCGM_FI_DEV_FB_USED",
    "DCGM_FI_DEV_FB_TOTAL",
    "DCGM_FI_DRIVER_VERSION",
})


def _mig_profile(name: str) -> str:
    """Extract the profile from a MIG device name such as "NVIDIA A100 MIG 1g.5gb"."""
    _, sep, profile = name.rpartition(" MIG ")
    return profile if sep else name


class GPUCollector(Collector):
    """
    Collector for GPU metrics.

    NVML is initialized on creation and shut down by cleanup(); NVML
    reference-counts initialization so several collectors may coexist.
    """

    DEVICE_CLASS = DeviceClass.GPU
    SUPPORTED_FIELDS = frozenset(GPU_FIELDS)

    def __init__(self, counters: list[Counter], config: ExporterConfig):
        super().__init__(counters, config)

        try:
            pynvml.nvmlInit()
        except pynvml.NVMLError as e:
            raise CollectorError(f"NVML initialization failed: {e}") from e
        self._initialized = True

        try:
            self._handles, self.sys_info = self._discover()
        except pynvml.NVMLError as e:
            self.cleanup()
            raise CollectorError(f"GPU discovery failed: {e}") from e

        if not self._handles:
            self.cleanup()
            raise CollectorError("No GPUs found")

        logger.info(f"Watching {len(self._handles)} GPU(s): {', '.join(self.field_names)}")

    def _discover(self) -> tuple[dict[int, Any], SystemInfo]:
        """Enumerate GPUs (optionally filtered) and their MIG partitions."""
        wanted = self.config.gpu_devices
        handles: dict[int, Any] = {}
        info = SystemInfo(driver_version=pynvml.nvmlSystemGetDriverVersion())

        for index in range(pynvml.nvmlDeviceGetCount()):
            if wanted is not None and index not in wanted:
                continue

            handle = pynvml.nvmlDeviceGetHandleByIndex(index)
            model_name = pynvml.nvmlDeviceGetName(handle)
            if self.config.replace_blanks_in_model_name:
                model_name = model_name.replace(" ", "-")

            gpu = GPUInfo(
                index=index,
                uuid=pynvml.nvmlDeviceGetUUID(handle),
                device=f"nvidia{pynvml.nvmlDeviceGetMinorNumber(handle)}",
                model_name=model_name,
            )

            try:
                current_mode, _pending = pynvml.nvmlDeviceGetMigMode(handle)
                gpu.mig_enabled = current_mode == pynvml.NVML_DEVICE_MIG_ENABLE
            except pynvml.NVMLError:
                gpu.mig_enabled = False  # pre-Ampere GPUs

            if gpu.mig_enabled:
                gpu.mig_instances = self._discover_mig(handle)

            handles[index] = handle
            info.gpus.append(gpu)

        return handles, info

    def _discover_mig(self, handle: Any) -> list[MigInstance]:
        instances = []
        for slot in range(pynvml.nvmlDeviceGetMaxMigDeviceCount(handle)):
            try:
                mig = pynvml.nvmlDeviceGetMigDeviceHandleByIndex(handle, slot)
            except pynvml.NVMLError:
                continue  # empty slot
            instances.append(MigInstance(
                index=slot,
                uuid=pynvml.nvmlDeviceGetUUID(mig),
                profile=_mig_profile(pynvml.nvmlDeviceGetName(mig)),
                gpu_instance_id=pynvml.nvmlDeviceGetGpuInstanceId(mig),
            ))
        return instances

    def _read(self, handle: Any, fields: list[str]) -> dict[str, Any]:
        """Query each field, mapping "not supported" to a blank reading."""
        readings: dict[str, Any] = {}
        for name in fields:
            try:
                readings[name] = GPU_FIELDS[name](handle)
            except pynvml.NVMLError as e:
                if e.value != pynvml.NVML_ERROR_NOT_SUPPORTED:
                    raise
                readings[name] = None
        return readings

    async def get_metrics(self) -> Batch:
        """Collect GPU metrics, one list per GPU and per MIG partition."""
        uuid_label = self.config.uuid_label
        mig_fields = [f for f in self.field_names if f in MIG_FIELDS]
        batch: Batch = []

        try:
            for gpu in self.sys_info.gpus:
                handle = self._handles[gpu.index]
                identity = {
                    "gpu": str(gpu.index),
                    "gpu_uuid": gpu.uuid,
                    "gpu_device": gpu.device,
                    "gpu_model_name": gpu.model_name,
                    "uuid": uuid_label,
                }
                batch.append(self.build_metrics(self._read(handle, self.field_names), **identity))

                for instance in gpu.mig_instances:
                    if not mig_fields:
                        break
                    mig = pynvml.nvmlDeviceGetMigDeviceHandleByIndex(handle, instance.index)
                    batch.append(self.build_metrics(
                        self._read(mig, mig_fields),
                        mig_profile=instance.profile,
                        gpu_instance_id=str(instance.gpu_instance_id),
                        **identity,
                    ))
        except pynvml.NVMLError as e:
            raise CollectorError(f"NVML query failed: {e}") from e

        return batch

    def cleanup(self) -> None:
        """Shut NVML down (once)."""
        if not getattr(self, "_initialized", False):
            return
        self._initialized = False
        try:
            pynvml.nvmlShutdown()
        except pynvml.NVMLError as e:
            logger.warning(f"NVML shutdown failed: {e}")
