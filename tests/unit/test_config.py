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
Unit tests for settings and the config loader.
"""
import pytest
from pydantic import ValidationError

from dockpit.ENGINE.errors import ConfigError
from dockpit.MODELS.entities import EntityClass
from dockpit.MODELS.settings import MonitorSettings
from dockpit.PARSERS.config_parser import ConfigLoader


class TestMonitorSettings:
    def test_defaults(self):
        settings = MonitorSettings()
        assert settings.docker_host is None
        assert settings.refresh_interval(EntityClass.CONTAINER) == 5.0
        assert settings.stats_interval == 2.0
        assert settings.log_tail == 100
        assert settings.log_timestamps is True

    @pytest.mark.parametrize("field, value", [
        ("stats_interval", 0),
        ("container_refresh_interval", -1),
        ("api_timeout", 0),
        ("log_tail", -5),
        ("connect_attempts", 0),
        ("log_level", "chatty"),
    ])
    def test_invalid_values(self, field, value):
        with pytest.raises(ValidationError):
            MonitorSettings(**{field: value})

    def test_unknown_field(self):
        with pytest.raises(ValidationError):
            MonitorSettings(refresh=3)

    def test_log_level_case(self):
        assert MonitorSettings(log_level="debug").log_level == "DEBUG"

    def test_zero_tail_allowed(self):
        assert MonitorSettings(log_tail=0).log_tail == 0


class TestConfigLoader:
    """Tests for ConfigLoader."""

    def test_defaults_without_sources(self, tmp_path):
        settings = ConfigLoader(str(tmp_path), environ={}).load()
        assert settings == MonitorSettings()

    def test_default_file_is_picked_up(self, tmp_path):
        (tmp_path / "dockpit.yml").write_text("stats_interval: 1.5\nlog_tail: 20\n")
        settings = ConfigLoader(str(tmp_path), environ={}).load()
        assert settings.stats_interval == 1.5
        assert settings.log_tail == 20

    def test_explicit_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            ConfigLoader(str(tmp_path), environ={}).load("missing.yml")

    def test_empty_file(self, tmp_path):
        (tmp_path / "empty.yml").write_text("")
        assert ConfigLoader(str(tmp_path), environ={}).load("empty.yml") == MonitorSettings()

    def test_non_mapping_file(self, tmp_path):
        (tmp_path / "list.yml").write_text("- a\n- b\n")
        with pytest.raises(ConfigError):
            ConfigLoader(str(tmp_path), environ={}).load("list.yml")

    def test_malformed_yaml(self, tmp_path):
        (tmp_path / "bad.yml").write_text("log_tail: [1, 2\n")
        with pytest.raises(ConfigError):
            ConfigLoader(str(tmp_path), environ={}).load("bad.yml")

    def test_invalid_value_becomes_config_error(self, tmp_path):
        (tmp_path / "dockpit.yml").write_text("stats_interval: 0\n")
        with pytest.raises(ConfigError) as exc_info:
            ConfigLoader(str(tmp_path), environ={}).load()
        assert "stats_interval" in str(exc_info.value)

    def test_environment_overrides_file(self, tmp_path):
        (tmp_path / "dockpit.yml").write_text("log_tail: 20\ndocker_host: unix:///file.sock\n")
        environ = {"DOCKPIT_LOG_TAIL": "50", "DOCKPIT_LOG_TIMESTAMPS": "false", "PATH": "/bin"}
        settings = ConfigLoader(str(tmp_path), environ=environ).load()
        assert settings.log_tail == 50
        assert settings.log_timestamps is False
        assert settings.docker_host == "unix:///file.sock"

    def test_unknown_environment_keys_are_ignored(self, tmp_path):
        settings = ConfigLoader(str(tmp_path), environ={"DOCKPIT_COLOUR": "blue"}).load()
        assert settings == MonitorSettings()

    def test_dotenv_below_environment(self, tmp_path):
        (tmp_path / ".env").write_text("DOCKPIT_STATS_INTERVAL=4\nDOCKPIT_LOG_TAIL=7\n")
        settings = ConfigLoader(str(tmp_path), environ={"DOCKPIT_LOG_TAIL": "9"}).load()
        assert settings.stats_interval == 4.0
        assert settings.log_tail == 9

    def test_dotenv_can_be_skipped(self, tmp_path):
        (tmp_path / ".env").write_text("DOCKPIT_LOG_TAIL=7\n")
        settings = ConfigLoader(str(tmp_path), environ={}, dotenv_file=None).load()
        assert settings.log_tail == 100

    def test_overrides_win_and_none_is_ignored(self, tmp_path):
        environ = {"DOCKPIT_DOCKER_HOST": "tcp://env:2375"}
        loader = ConfigLoader(str(tmp_path), environ=environ)
        assert loader.load(overrides={"docker_host": None}).docker_host == "tcp://env:2375"
        assert loader.load(overrides={"docker_host": "tcp://flag:2375"}).docker_host == "tcp://flag:2375"
