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
Loading of monitor settings from a YAML file, a .env file and the
environment.
"""
import os
from typing import Any, Dict, Mapping, Optional

import yaml
from dotenv import dotenv_values
from pydantic import ValidationError

from ..ENGINE.errors import ConfigError
from ..MODELS.settings import MonitorSettings

DEFAULT_CONFIG_FILE = "dockpit.yml"
ENV_PREFIX = "DOCKPIT_"


class ConfigLoader:
    """
    Builds MonitorSettings from, lowest precedence first: built-in defaults,
    the YAML config file, a .env file, DOCKPIT_* environment variables and
    explicit overrides (e.g. command line flags).
    """

    def __init__(
        self,
        base_dir: str = ".",
        environ: Optional[Mapping[str, str]] = None,
        dotenv_file: Optional[str] = ".env",
    ):
        """
        :param base_dir: Directory relative paths are resolved against.
        :param environ: Environment to read; defaults to the process environment.
        :param dotenv_file: .env file to read, or None to skip it.
        """
        self.base_dir = base_dir
        self.environ = environ if environ is not None else os.environ
        self.dotenv_file = dotenv_file

    def load(
        self,
        config_path: Optional[str] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> MonitorSettings:
        """
        Loads settings.

        :param config_path: YAML file to read. If omitted, dockpit.yml is used
            when present.
        :param overrides: Values taking precedence over every other source;
            None values are ignored.
        :return: Validated settings.
        :raises ConfigError: if a file cannot be read or a value is invalid.
        """
        values: Dict[str, Any] = {}
        values.update(self._from_file(config_path))
        values.update(self._from_environment())
        values.update({k: v for k, v in (overrides or {}).items() if v is not None})

        try:
            return MonitorSettings(**values)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

    def _resolve(self, path: str) -> str:
        return path if os.path.isabs(path) else os.path.join(self.base_dir, path)

    def _from_file(self, config_path: Optional[str]) -> Dict[str, Any]:
        if config_path is None:
            path = self._resolve(DEFAULT_CONFIG_FILE)
            if not os.path.exists(path):
                return {}
        else:
            path = self._resolve(config_path)
            if not os.path.exists(path):
                raise ConfigError(f"Config file {config_path} not found")

        try:
            with open(path, 'r') as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Could not read config file {path}: {e}") from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")
        return data

    def _from_environment(self) -> Dict[str, Any]:
        merged: Dict[str, Optional[str]] = {}
        if self.dotenv_file:
            dotenv_path = self._resolve(self.dotenv_file)
            if os.path.exists(dotenv_path):
                merged.update(dotenv_values(dotenv_path))
        # The real environment wins over the .env file
        merged.update(self.environ)

        values = {}
        for key, value in merged.items():
            if not key.startswith(ENV_PREFIX) or value is None:
                continue
            field_name = key[len(ENV_PREFIX):].lower()
            if field_name in MonitorSettings.model_fields:
                values[field_name] = value
        return values
