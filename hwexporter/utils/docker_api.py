"""
Docker engine API client over the Unix socket.

Only what pod attribution needs: listing running containers and reading
the GPU assignment of each one. Talks HTTP/1.1 directly with asyncio
streams, without docker-py.
"""

import asyncio
import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import quote

from ..const import DEFAULT_DOCKER_SOCKET

STATUS_LINE = re.compile(r"HTTP/\d\.\d (\d+)")

# Labels kubelet puts on the containers it starts
POD_NAME_LABEL = "io.kubernetes.pod.name"
POD_NAMESPACE_LABEL = "io.kubernetes.pod.namespace"
CONTAINER_NAME_LABEL = "io.kubernetes.container.name"

VISIBLE_DEVICES_ENV = "NVIDIA_VISIBLE_DEVICES"


class DockerError(Exception):
    """Exception for Docker API errors."""

    def __init__(self, status: int, message: str):
        self.status = status
        super().__init__(f"Docker API error {status}: {message}")


@dataclass
class ContainerInfo:
    """A running container and the GPUs assigned to it."""

    id: str
    name: str
    labels: dict[str, str] = field(default_factory=dict)
    device_ids: list[str] = field(default_factory=list)

    @property
    def pod_name(self) -> str | None:
        return self.labels.get(POD_NAME_LABEL)

    @property
    def pod_namespace(self) -> str:
        return self.labels.get(POD_NAMESPACE_LABEL, "")

    @property
    def container_name(self) -> str:
        return self.labels.get(CONTAINER_NAME_LABEL, self.name)


def gpu_device_ids(inspect: dict[str, Any]) -> list[str]:
    """
    GPU ids assigned to a container, from its inspect document.

    Device requests (`--gpus`) take precedence over the
    NVIDIA_VISIBLE_DEVICES environment variable; "all", "none" and
    "void" are not specific assignments.
    """
    ids: list[str] = []
    for request in (inspect.get("HostConfig") or {}).get("DeviceRequests") or []:
        if "gpu" in [cap for caps in request.get("Capabilities") or [] for cap in caps]:
            ids.extend(request.get("DeviceIDs") or [])
    if ids:
        return ids

    for entry in (inspect.get("Config") or {}).get("Env") or []:
        name, _, value = entry.partition("=")
        if name == VISIBLE_DEVICES_ENV and value not in ("all", "none", "void", ""):
            return [v.strip() for v in value.split(",") if v.strip()]

    return []


class DockerClient:
    """Async Docker API client using the Unix socket."""

    def __init__(self, socket_path: str = DEFAULT_DOCKER_SOCKET):
        self.socket_path = socket_path

    @property
    def available(self) -> bool:
        """Check if the Docker socket exists."""
        return Path(self.socket_path).exists()

    async def _request(self, path: str, query: dict[str, str] | None = None) -> tuple[int, bytes]:
        """Send a GET request and return (status, body)."""
        if query:
            path = f"{path}?" + "&".join(f"{k}={quote(str(v))}" for k, v in query.items())

        reader, writer = await asyncio.open_unix_connection(self.socket_path)
        try:
            writer.write(
                f"GET {path} HTTP/1.1\r\nHost: localhost\r\nConnection: close\r\n\r\n".encode()
            )
            await writer.drain()
            response = await reader.read()
        finally:
            writer.close()
            await writer.wait_closed()

        head, _, body = response.partition(b"\r\n\r\n")
        lines = head.decode(errors="replace").split("\r\n")
        match = STATUS_LINE.match(lines[0])
        status = int(match.group(1)) if match else 0

        headers = {}
        for line in lines[1:]:
            key, sep, value = line.partition(": ")
            if sep:
                headers[key.lower()] = value

        if headers.get("transfer-encoding") == "chunked":
            body = self._decode_chunked(body)

        return status, body

    @staticmethod
    def _decode_chunked(data: bytes) -> bytes:
        """Decode chunked transfer encoding."""
        chunks = []
        pos = 0
        while pos < len(data):
            line_end = data.find(b"\r\n", pos)
            if line_end == -1:
                break
            try:
                size = int(data[pos:line_end].split(b";")[0], 16)
            except ValueError:
                break
            if size == 0:
                break
            start = line_end + 2
            chunks.append(data[start:start + size])
            pos = start + size + 2
        return b"".join(chunks)

    async def _get_json(self, path: str, query: dict[str, str] | None = None) -> Any:
        status, body = await self._request(path, query)

        if status >= 400:
            try:
                message = json.loads(body).get("message", body.decode())
            except (ValueError, AttributeError):
                message = body.decode(errors="replace")
            raise DockerError(status, message)

        return json.loads(body) if body else None

    async def list_containers(self, filters: dict[str, list[str]] | None = None) -> list[dict[str, Any]]:
        """List running containers (raw API summaries)."""
        query = {"filters": json.dumps(filters)} if filters else None
        return await self._get_json("/containers/json", query) or []

    async def inspect_container(self, container_id: str) -> dict[str, Any]:
        """Full inspect document of a container."""
        return await self._get_json(f"/containers/{container_id}/json")

    async def list_pod_containers(self) -> list[ContainerInfo]:
        """Running Kubernetes-managed containers with their GPU assignment."""
        containers = []
        for summary in await self.list_containers(filters={"label": [POD_NAME_LABEL]}):
            try:
                inspect = await self.inspect_container(summary["Id"])
            except DockerError as e:
                if e.status == 404:
                    continue  # exited between list and inspect
                raise

            containers.append(ContainerInfo(
                id=summary["Id"],
                name=(summary.get("Names") or ["/unknown"])[0].lstrip("/"),
                labels=summary.get("Labels") or {},
                device_ids=gpu_device_ids(inspect),
            ))
        return containers

