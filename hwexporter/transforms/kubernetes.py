"""
Kubernetes pod attribution for GPU metrics.

Asks the container runtime which running pod containers hold which GPUs
and tags each GPU metric with the owning pod, namespace and container.
GPU assignments may be reported as indices, GPU UUIDs, MIG UUIDs or
"gpu:mig" index pairs; they are normalized against the collector's
SystemInfo before matching.
"""

from dataclasses import dataclass

from ..config.schema import Config, GPUIdType
from ..logging import get_logger
from ..models.device import GPUInfo, SystemInfo
from ..models.metric import Batch, Metric
from ..utils.docker_api import ContainerInfo, DockerClient, DockerError
from .base import Transform, TransformError

logger = get_logger("transforms.kubernetes")


@dataclass(frozen=True)
class PodInfo:
    """Workload owning a GPU."""

    name: str
    namespace: str
    container: str


class PodMapper(Transform):
    """Adds pod, namespace and container attributes to GPU metrics."""

    def __init__(self, client: DockerClient, gpu_id_type: GPUIdType = GPUIdType.UID, old_namespace: bool = False):
        self.client = client
        self.gpu_id_type = gpu_id_type
        if old_namespace:
            self.attribute_names = ("pod_name", "pod_namespace", "container_name")
        else:
            self.attribute_names = ("pod", "namespace", "container")

    @classmethod
    def create(cls, config: Config) -> "PodMapper":
        """
        Build a mapper for the configured container runtime socket.

        Raises:
            TransformError: If the runtime socket is not present
        """
        client = DockerClient(config.kubernetes.docker_socket)
        if not client.available:
            raise TransformError(f"container runtime socket {client.socket_path} not found")

        logger.info(f"Pod attribution enabled via {client.socket_path} ({config.kubernetes.gpu_id_type.value})")
        return cls(client, config.kubernetes.gpu_id_type, config.exporter.old_namespace)

    def name(self) -> str:
        return "podMapper"

    def _gpu_key(self, gpu: GPUInfo) -> str:
        return gpu.uuid if self.gpu_id_type == GPUIdType.UID else gpu.device

    def _resolve(self, device_id: str, sys_info: SystemInfo | None) -> str:
        """Normalize a runtime device id to the key used for matching."""
        if sys_info is None or device_id.startswith("MIG-"):
            return device_id

        gpu_part, sep, mig_part = device_id.partition(":")
        if sep:
            gpu = sys_info.find_gpu(gpu_part)
            for instance in gpu.mig_instances if gpu else []:
                if str(instance.index) == mig_part:
                    return instance.uuid
            return device_id

        if device_id.isdigit():
            gpu = sys_info.find_gpu(device_id)
            return self._gpu_key(gpu) if gpu else device_id

        for gpu in sys_info.gpus:
            if device_id in (gpu.uuid, gpu.device):
                return self._gpu_key(gpu)
        return device_id

    def device_to_pod(self, containers: list[ContainerInfo], sys_info: SystemInfo | None) -> dict[str, PodInfo]:
        """Map every assigned device key to the pod container holding it."""
        mapping: dict[str, PodInfo] = {}
        for container in containers:
            if not container.pod_name:
                continue
            pod = PodInfo(container.pod_name, container.pod_namespace, container.container_name)
            for device_id in container.device_ids:
                mapping[self._resolve(device_id, sys_info)] = pod
        return mapping

    def _metric_key(self, metric: Metric, sys_info: SystemInfo | None) -> str:
        if metric.mig_profile and sys_info is not None:
            instance = sys_info.find_mig_instance(metric.gpu, metric.gpu_instance_id)
            if instance is not None:
                return instance.uuid
        return metric.gpu_uuid if self.gpu_id_type == GPUIdType.UID else metric.gpu_device

    async def process(self, metrics: Batch, sys_info: SystemInfo | None) -> None:
        """Attach pod attributes to metrics of GPUs assigned to pods."""
        try:
            containers = await self.client.list_pod_containers()
        except (OSError, DockerError, ValueError, KeyError) as e:
            raise TransformError(f"could not list pod containers: {e}") from e

        mapping = self.device_to_pod(containers, sys_info)
        if not mapping:
            return

        pod_attr, namespace_attr, container_attr = self.attribute_names
        for device_metrics in metrics:
            for metric in device_metrics:
                pod = mapping.get(self._metric_key(metric, sys_info))
                if pod is None:
                    continue
                metric.attributes[pod_attr] = pod.name
                metric.attributes[namespace_attr] = pod.namespace
                metric.attributes[container_attr] = pod.container
