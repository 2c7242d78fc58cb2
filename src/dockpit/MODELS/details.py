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
Models for data fetched on demand while a container is being observed:
inspection details and point-in-time resource statistics.
"""
from typing import List
from pydantic import BaseModel, ConfigDict


class PortMapping(BaseModel):
    """
    A published port of a container.
    """
    model_config = ConfigDict(frozen=True)

    container_port: int
    host_ip: str = "0.0.0.0"
    host_port: int = 0
    protocol: str = "tcp"


class VolumeMount(BaseModel):
    """
    A mount between a host (or volume) source and a container destination.
    """
    model_config = ConfigDict(frozen=True)

    source: str
    destination: str
    mode: str = ""
    rw: bool = True


class ContainerDetail(BaseModel):
    """
    Inspection data for one container. Fetched once when an observation
    session opens and not refreshed while it stays open.
    """
    model_config = ConfigDict(frozen=True)

    env: List[str] = []
    ports: List[PortMapping] = []
    volumes: List[VolumeMount] = []
    networks: List[str] = []
    hostname: str = "Unknown"
    image_id: str = ""
    created: str = ""
    restart_policy: str = "no"


class ContainerStats(BaseModel):
    """
    A single resource usage sample. Values are absolute, not deltas.
    """
    model_config = ConfigDict(frozen=True)

    cpu_percentage: float = 0.0
    memory_usage: int = 0
    memory_limit: int = 0
    memory_percentage: float = 0.0
    network_rx: int = 0
    network_tx: int = 0
    block_read: int = 0
    block_write: int = 0
