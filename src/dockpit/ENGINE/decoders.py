# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Decoding of raw engine API responses into dockpit models.

The functions here are pure: they take the JSON documents returned by the
Docker Engine API and return models, raising EngineDecodeError when a
document does not have the expected shape.
"""
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from ..MODELS.entities import ContainerRecord, ImageRecord, NetworkRecord
from ..MODELS.details import ContainerDetail, ContainerStats, PortMapping, VolumeMount
from .errors import EngineDecodeError, InvalidStateError

SHORT_ID_LENGTH = 12
NO_TAG = "<none>:<none>"
# Stats read time reported by the engine for containers that are not running
NEVER_READ = "0001-01-01"


@contextmanager
def _decoding(operation: str, entity_id: Optional[str] = None):
    try:
        yield
    except (KeyError, TypeError, ValueError, AttributeError, ValidationError) as e:
        raise EngineDecodeError(
            f"Malformed engine response for {operation}: {e}",
            operation=operation,
            entity_id=entity_id,
        ) from e


def short_id(raw_id: str) -> str:
    """
    Shortens an engine identifier the way the engine CLI displays it.

    :param raw_id: Full identifier, optionally prefixed with 'sha256:'.
    :return: The first 12 characters of the hex digest.
    """
    if raw_id.startswith("sha256:"):
        raw_id = raw_id[len("sha256:"):]
    return raw_id[:SHORT_ID_LENGTH]


def decode_container(raw: Dict[str, Any]) -> ContainerRecord:
    with _decoding("list_containers"):
        names = raw.get("Names") or []
        name = names[0] if names else "Unknown"
        if name.startswith("/"):
            name = name[1:]
        return ContainerRecord(
            id=short_id(raw["Id"]),
            name=name,
            image=raw.get("Image") or "",
            state=raw.get("State") or "unknown",
            status=raw.get("Status") or "",
        )


def decode_containers(raw: List[Dict[str, Any]]) -> List[ContainerRecord]:
    with _decoding("list_containers"):
        return [decode_container(item) for item in raw]


def decode_image(raw: Dict[str, Any]) -> ImageRecord:
    with _decoding("list_images"):
        # Dangling images are reported with no tags or a '<none>' placeholder
        tags = [t for t in (raw.get("RepoTags") or []) if t != NO_TAG]
        return ImageRecord(
            id=short_id(raw["Id"]),
            repo_tags=tags,
            size=int(raw.get("Size") or 0),
            created=int(raw.get("Created") or 0),
        )


def decode_images(raw: List[Dict[str, Any]]) -> List[ImageRecord]:
    with _decoding("list_images"):
        return [decode_image(item) for item in raw]


def decode_network(raw: Dict[str, Any]) -> NetworkRecord:
    with _decoding("list_networks"):
        return NetworkRecord(
            id=short_id(raw["Id"]),
            name=raw.get("Name") or "Unknown",
            driver=raw.get("Driver") or "Unknown",
            scope=raw.get("Scope") or "local",
        )


def decode_networks(raw: List[Dict[str, Any]]) -> List[NetworkRecord]:
    with _decoding("list_networks"):
        return [decode_network(item) for item in raw]


def _decode_ports(port_bindings: Optional[Dict[str, Any]]) -> List[PortMapping]:
    ports = []
    for container_port, bindings in (port_bindings or {}).items():
        # Exposed but unpublished ports have no bindings
        if not bindings:
            continue
        number, _, protocol = container_port.partition("/")
        for binding in bindings:
            try:
                host_port = int(binding.get("HostPort") or 0)
            except ValueError:
                host_port = 0
            ports.append(
                PortMapping(
                    container_port=int(number) if number.isdigit() else 0,
                    host_ip=binding.get("HostIp") or "0.0.0.0",
                    host_port=host_port,
                    protocol=protocol or "tcp",
                )
            )
    return ports


def decode_container_detail(raw: Dict[str, Any], entity_id: Optional[str] = None) -> ContainerDetail:
    """
    Decodes the output of a container inspection.

    :param raw: The inspection document.
    :param entity_id: Container the document belongs to, for error reporting.
    :return: The decoded detail.
    """
    with _decoding("get_container_detail", entity_id):
        config = raw.get("Config") or {}
        network_settings = raw.get("NetworkSettings") or {}
        host_config = raw.get("HostConfig") or {}
        restart_policy = (host_config.get("RestartPolicy") or {}).get("Name") or "no"

        volumes = [
            VolumeMount(
                source=mount.get("Source") or "",
                destination=mount.get("Destination") or "",
                mode=mount.get("Mode") or "",
                rw=mount.get("RW", True),
            )
            for mount in raw.get("Mounts") or []
        ]

        return ContainerDetail(
            env=list(config.get("Env") or []),
            ports=_decode_ports(network_settings.get("Ports")),
            volumes=volumes,
            networks=list((network_settings.get("Networks") or {}).keys()),
            hostname=config.get("Hostname") or "Unknown",
            image_id=raw.get("Image") or "",
            created=raw.get("Created") or "",
            restart_policy=restart_policy,
        )


def _cpu_percentage(cpu_stats: Dict[str, Any], precpu_stats: Dict[str, Any]) -> float:
    cpu_delta = float((cpu_stats.get("cpu_usage") or {}).get("total_usage") or 0) - float(
        (precpu_stats.get("cpu_usage") or {}).get("total_usage") or 0
    )
    system_delta = float(cpu_stats.get("system_cpu_usage") or 0) - float(
        precpu_stats.get("system_cpu_usage") or 0
    )
    if system_delta > 0 and cpu_delta > 0:
        online_cpus = cpu_stats.get("online_cpus") or 1
        return (cpu_delta / system_delta) * online_cpus * 100.0
    return 0.0


def decode_container_stats(raw: Optional[Dict[str, Any]], entity_id: Optional[str] = None) -> ContainerStats:
    """
    Decodes a single stats document into a point-in-time sample.

    :param raw: The stats document returned by a non-streaming stats request.
    :param entity_id: Container the document belongs to, for error reporting.
    :return: The decoded sample.
    """
    if not isinstance(raw, dict) or not raw:
        raise EngineDecodeError(
            "No stats available", operation="get_container_stats", entity_id=entity_id
        )
    if str(raw.get("read") or "").startswith(NEVER_READ):
        raise InvalidStateError(
            f"Container {entity_id} is not running",
            operation="get_container_stats",
            entity_id=entity_id,
        )

    with _decoding("get_container_stats", entity_id):
        cpu_percentage = _cpu_percentage(
            raw.get("cpu_stats") or {}, raw.get("precpu_stats") or {}
        )

        memory_stats = raw.get("memory_stats") or {}
        memory_usage = int(memory_stats.get("usage") or 0)
        memory_limit = int(memory_stats.get("limit") or 1)
        memory_percentage = memory_usage / memory_limit * 100.0

        network_rx = 0
        network_tx = 0
        for interface in (raw.get("networks") or {}).values():
            network_rx += int(interface.get("rx_bytes") or 0)
            network_tx += int(interface.get("tx_bytes") or 0)

        block_read = 0
        block_write = 0
        blkio = (raw.get("blkio_stats") or {}).get("io_service_bytes_recursive") or []
        for entry in blkio:
            op = (entry.get("op") or "").lower()
            if op == "read":
                block_read += int(entry.get("value") or 0)
            elif op == "write":
                block_write += int(entry.get("value") or 0)

        return ContainerStats(
            cpu_percentage=cpu_percentage,
            memory_usage=memory_usage,
            memory_limit=memory_limit,
            memory_percentage=memory_percentage,
            network_rx=network_rx,
            network_tx=network_tx,
            block_read=block_read,
            block_write=block_write,
        )
