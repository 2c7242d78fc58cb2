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
Error taxonomy shared by the engine gateway and everything built on it.
"""
from typing import Optional


class DockpitError(Exception):
    """Base class for all errors raised by dockpit."""


class ConfigError(DockpitError):
    """Raised when configuration cannot be loaded or is invalid."""


class EngineError(DockpitError):
    """
    A call to the container engine failed.

    :param message: Human readable reason.
    :param operation: Gateway operation that failed (e.g. 'stop_container').
    :param entity_id: Target entity, when the operation has one.
    """

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        entity_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.entity_id = entity_id

    def __str__(self) -> str:
        return self.message


class EngineUnreachableError(EngineError):
    """The engine could not be reached or did not answer in time."""


class EntityNotFoundError(EngineError):
    """The entity disappeared between the snapshot and the request."""


class InvalidStateError(EngineError):
    """The engine rejected a transition for the entity's current state."""


class EngineDecodeError(EngineError):
    """The engine answered with something that could not be decoded."""
