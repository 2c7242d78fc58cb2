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
Models for the entities listed by the container engine: containers, images
and networks, plus the entity-class variant used to switch between them.
"""
from typing import List
from enum import Enum
from pydantic import BaseModel, ConfigDict

UNTAGGED = "<untagged>"


class EntityClass(str, Enum):
    """
    The kinds of entity the monitor can list. Exactly one is active at a time.
    """
    CONTAINER = "container"
    IMAGE = "image"
    NETWORK = "network"


class ContainerState(str, Enum):
    """
    Lifecycle states reported by the engine. The engine owns the vocabulary;
    records keep whatever tag it reports, these are the ones the action gate
    knows about.
    """
    CREATED = "created"
    RUNNING = "running"
    PAUSED = "paused"
    RESTARTING = "restarting"
    EXITED = "exited"
    DEAD = "dead"


class ContainerRecord(BaseModel):
    """
    A container as it appears in the periodic listing.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    image: str
    state: str
    status: str = ""

    @property
    def is_running(self) -> bool:
        return self.state == ContainerState.RUNNING


class ImageRecord(BaseModel):
    """
    A local image. ``repo_tags`` may be empty; the first tag, if present,
    is the one shown to the user.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    repo_tags: List[str] = []
    size: int = 0
    created: int = 0

    @property
    def primary_tag(self):
        return self.repo_tags[0] if self.repo_tags else None

    @property
    def display_tag(self) -> str:
        """Primary tag, or an explicit marker for untagged images."""
        return self.primary_tag or UNTAGGED

    @property
    def extra_tags(self) -> List[str]:
        return list(self.repo_tags[1:])


class NetworkRecord(BaseModel):
    """
    A network known to the engine. Networks have no lifecycle here.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    driver: str
    scope: str
