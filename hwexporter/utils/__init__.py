"""
Utility clients and helpers.
"""

from .docker_api import ContainerInfo, DockerClient, DockerError, gpu_device_ids

__all__ = [
    "ContainerInfo",
    "DockerClient",
    "DockerError",
    "gpu_device_ids",
]
