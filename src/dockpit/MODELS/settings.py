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
Runtime settings for the monitor.
"""
from typing import Optional
from pydantic import BaseModel, ConfigDict, field_validator

from .entities import EntityClass


class MonitorSettings(BaseModel):
    """
    Connection, polling and streaming settings. By default lists are polled
    every 5 seconds, stats sampled every 2 seconds and the last 100 log
    lines replayed when a stream opens.
    """
    model_config = ConfigDict(extra="forbid")

    docker_host: Optional[str] = None
    api_timeout: float = 10.0

    container_refresh_interval: float = 5.0
    image_refresh_interval: float = 5.0
    network_refresh_interval: float = 5.0
    stats_interval: float = 2.0

    log_tail: int = 100
    log_timestamps: bool = True

    connect_attempts: int = 3
    log_level: str = "WARNING"

    @field_validator(
        "api_timeout",
        "container_refresh_interval",
        "image_refresh_interval",
        "network_refresh_interval",
        "stats_interval",
    )
    @classmethod
    def _positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value

    @field_validator("log_tail")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("must not be negative")
        return value

    @field_validator("connect_attempts")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @field_validator("log_level")
    @classmethod
    def _level_name(cls, value: str) -> str:
        value = value.upper()
        if value not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level {value!r}")
        return value

    def refresh_interval(self, entity_class: EntityClass) -> float:
        """Poll interval for an entity class."""
        return {
            EntityClass.CONTAINER: self.container_refresh_interval,
            EntityClass.IMAGE: self.image_refresh_interval,
            EntityClass.NETWORK: self.network_refresh_interval,
        }[entity_class]
