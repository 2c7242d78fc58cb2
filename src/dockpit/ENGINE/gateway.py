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
Typed gateway to the container engine.

Every other component talks to the engine through EngineGateway. Each
method is a single fresh round trip; nothing is batched or cached, and
docker SDK exceptions never escape this module.
"""
import logging
from contextlib import contextmanager
from typing import Iterable, Iterator, List, Optional

import docker
import requests
from docker.errors import APIError, DockerException, NotFound
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from ..MODELS.details import ContainerDetail, ContainerStats
from ..MODELS.entities import ContainerRecord, ImageRecord, NetworkRecord
from ..MODELS.settings import MonitorSettings
from . import decoders
from .errors import (
    EngineDecodeError,
    EngineError,
    EngineUnreachableError,
    EntityNotFoundError,
    InvalidStateError,
)
from .log_stream import LogStream

logger = logging.getLogger(__name__)

# 304 is returned when starting a started or stopping a stopped container
_INVALID_STATE_CODES = (304, 409)


@contextmanager
def engine_call(operation: str, entity_id: Optional[str] = None):
    """
    Translates docker SDK and transport exceptions into the dockpit error
    taxonomy for the duration of one engine call.

    :param operation: Name of the gateway operation, used in messages.
    :param entity_id: Target entity, if any.
    """
    target = f" {entity_id}" if entity_id else ""
    try:
        yield
    except EngineError:
        raise
    except NotFound as e:
        raise EntityNotFoundError(
            f"{operation}{target}: not found ({e.explanation or e})",
            operation=operation,
            entity_id=entity_id,
        ) from e
    except APIError as e:
        if e.status_code in _INVALID_STATE_CODES:
            raise InvalidStateError(
                f"{operation}{target}: {e.explanation or e}",
                operation=operation,
                entity_id=entity_id,
            ) from e
        raise EngineError(
            f"{operation}{target}: engine error ({e.explanation or e})",
            operation=operation,
            entity_id=entity_id,
        ) from e
    except requests.exceptions.JSONDecodeError as e:
        raise EngineDecodeError(
            f"{operation}{target}: malformed response ({e})",
            operation=operation,
            entity_id=entity_id,
        ) from e
    except (requests.exceptions.RequestException, OSError) as e:
        raise EngineUnreachableError(
            f"{operation}{target}: engine unreachable ({e})",
            operation=operation,
            entity_id=entity_id,
        ) from e
    except DockerException as e:
        # The SDK raises the bare base class when it cannot reach the daemon;
        # subclasses are client-side problems (arguments, contexts, TLS)
        if type(e) is DockerException:
            raise EngineUnreachableError(
                f"{operation}{target}: {e}",
                operation=operation,
                entity_id=entity_id,
            ) from e
        raise EngineError(
            f"{operation}{target}: {e}",
            operation=operation,
            entity_id=entity_id,
        ) from e


class EngineGateway:
    """
    One method per engine verb. Queries return models, mutations return
    nothing and signal failure by raising an EngineError subclass.
    """

    def __init__(self, client: docker.DockerClient, settings: Optional[MonitorSettings] = None):
        """
        :param client: A connected docker client.
        :param settings: Streaming options (log tail, timestamps).
        """
        self.client = client
        self.settings = settings or MonitorSettings()

    @classmethod
    def connect(cls, settings: Optional[MonitorSettings] = None) -> "EngineGateway":
        """
        Connects to the engine, retrying a few times if it does not answer.

        :param settings: Connection settings.
        :return: A gateway bound to the connected client.
        :raises EngineUnreachableError: if every attempt fails.
        """
        settings = settings or MonitorSettings()
        retrying = Retrying(
            stop=stop_after_attempt(settings.connect_attempts),
            wait=wait_fixed(1),
            retry=retry_if_exception_type(EngineUnreachableError),
            reraise=True,
        )
        for attempt in retrying:
            with attempt:
                client = cls._open_client(settings)
        return cls(client, settings)

    @staticmethod
    def _open_client(settings: MonitorSettings) -> docker.DockerClient:
        with engine_call("connect"):
            if settings.docker_host:
                client = docker.DockerClient(
                    base_url=settings.docker_host, timeout=settings.api_timeout
                )
            else:
                client = docker.from_env(timeout=settings.api_timeout)
            try:
                client.ping()
            except Exception:
                client.close()
                raise
        logger.info("Connected to container engine at %s", client.api.base_url)
        return client

    def close(self) -> None:
        self.client.close()

    # Queries

    def list_containers(self) -> List[ContainerRecord]:
        with engine_call("list_containers"):
            raw = self.client.api.containers(all=True)
        return decoders.decode_containers(raw)

    def list_images(self) -> List[ImageRecord]:
        with engine_call("list_images"):
            raw = self.client.api.images(all=False)
        return decoders.decode_images(raw)

    def list_networks(self) -> List[NetworkRecord]:
        with engine_call("list_networks"):
            raw = self.client.api.networks()
        return decoders.decode_networks(raw)

    def get_container_detail(self, container_id: str) -> ContainerDetail:
        with engine_call("get_container_detail", container_id):
            raw = self.client.api.inspect_container(container_id)
        return decoders.decode_container_detail(raw, container_id)

    def get_container_stats(self, container_id: str) -> ContainerStats:
        with engine_call("get_container_stats", container_id):
            raw = self.client.api.stats(container_id, stream=False)
        return decoders.decode_container_stats(raw, container_id)

    # Mutations

    def start_container(self, container_id: str) -> None:
        with engine_call("start_container", container_id):
            self.client.api.start(container_id)

    def stop_container(self, container_id: str) -> None:
        with engine_call("stop_container", container_id):
            self.client.api.stop(container_id)

    def restart_container(self, container_id: str) -> None:
        with engine_call("restart_container", container_id):
            self.client.api.restart(container_id)

    def remove_container(self, container_id: str) -> None:
        with engine_call("remove_container", container_id):
            self.client.api.remove_container(container_id)

    # Streams

    def open_log_stream(self, container_id: str) -> LogStream:
        """
        Opens a following log stream for a container, replaying the last
        ``log_tail`` lines first.

        :param container_id: Container to follow.
        :return: An open stream; the caller must close it.
        """
        with engine_call("open_log_stream", container_id):
            raw = self.client.api.logs(
                container_id,
                stdout=True,
                stderr=True,
                stream=True,
                follow=True,
                timestamps=self.settings.log_timestamps,
                tail=self.settings.log_tail,
            )
        return LogStream(container_id, self._translated(raw, container_id), on_close=raw.close)

    @staticmethod
    def _translated(chunks: Iterable[bytes], container_id: str) -> Iterator[bytes]:
        with engine_call("read_log_stream", container_id):
            for chunk in chunks:
                yield chunk
